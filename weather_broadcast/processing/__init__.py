"""Narration, caching and timeline processing"""

from abc import ABC, abstractmethod

from ..models import NarrationResult, WeatherRecord


class NarrationGenerator(ABC):
    """Turns a weather record into narration text with embedded cues"""

    @abstractmethod
    async def generate(self, weather: WeatherRecord, context: dict) -> NarrationResult:
        """
        Generate narration.

        context carries broadcast_date, broadcast_time, episode_number,
        is_stale, stale_age, location and the time context.
        """
        pass
