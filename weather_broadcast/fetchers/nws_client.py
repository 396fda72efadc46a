"""National Weather Service client"""

import aiohttp
from bs4 import BeautifulSoup

from . import WeatherSource
from ..config import NWS_USER_AGENT, WEATHER_TIMEOUT_SECS
from ..models import Location
from ..utils.logging import get_logger

logger = get_logger(__name__)


class NWSClient(WeatherSource):
    """Fetch the area forecast discussion and digital forecast from forecast.weather.gov"""

    base_url = "https://forecast.weather.gov"

    def __init__(self, timeout: float = WEATHER_TIMEOUT_SECS, user_agent: str = NWS_USER_AGENT):
        self.timeout = aiohttp.ClientTimeout(total=timeout)
        self.headers = {"User-Agent": user_agent}

    @property
    def name(self) -> str:
        return "nws"

    def discussion_url(self, location: Location) -> str:
        office = location.nws_office
        return (f"{self.base_url}/product.php?site={office}&issuedby={office}"
                f"&product=AFD&format=txt&version=1&glossary=0")

    def forecast_url(self, location: Location) -> str:
        return (f"{self.base_url}/MapClick.php?lat={location.lat}&lon={location.lon}"
                f"&unit=0&lg=english&FcstType=digital")

    async def _get_text(self, url: str, label: str) -> str:
        async with aiohttp.ClientSession(timeout=self.timeout, headers=self.headers) as session:
            async with session.get(url) as resp:
                if resp.status != 200:
                    raise aiohttp.ClientResponseError(
                        resp.request_info, resp.history, status=resp.status,
                        message=f"{label} fetch failed: {resp.status} {resp.reason}"
                    )
                return await resp.text()

    async def fetch_discussion(self, location: Location) -> str:
        """Fetch the AFD and strip its HTML wrapper"""
        text = await self._get_text(self.discussion_url(location), "AFD")
        soup = BeautifulSoup(text, 'html.parser')
        product = soup.find('pre', class_='glossaryProduct') or soup.find('pre')
        if product is None:
            logger.debug("No <pre> block in AFD page, using the full page text")
            return soup.get_text()
        return product.get_text()

    async def fetch_digital_forecast(self, location: Location) -> str:
        """Fetch the digital forecast table page"""
        return await self._get_text(self.forecast_url(location), "Forecast")
