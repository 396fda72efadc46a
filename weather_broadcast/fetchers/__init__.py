"""Weather sources for broadcast data acquisition"""

from abc import ABC, abstractmethod

from ..models import Location


class WeatherSource(ABC):
    """Fetches the two raw documents a broadcast needs"""

    @abstractmethod
    async def fetch_discussion(self, location: Location) -> str:
        """Return the raw area forecast discussion text"""
        pass

    @abstractmethod
    async def fetch_digital_forecast(self, location: Location) -> str:
        """Return the raw tabular digital forecast"""
        pass

    @property
    @abstractmethod
    def name(self) -> str:
        """Source name for logging"""
        pass
