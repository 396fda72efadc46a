"""Shared test configuration and fixtures for weather broadcast tests"""

import asyncio
import sys
import tempfile
from types import SimpleNamespace
from pathlib import Path
from datetime import datetime, timezone
from typing import List, Optional

import pytest
from faker import Faker

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from weather_broadcast.database import BroadcastDatabase
from weather_broadcast.exceptions import GenerationError
from weather_broadcast.fetchers import WeatherSource
from weather_broadcast.media import AudioSynthesizer, Compositor, ImageSynthesizer
from weather_broadcast.models import (
    CurrentConditions, DiscussionData, ForecastData, Hazard, HourlyForecast,
    Location, NarrationResult, WeatherRecord
)
from weather_broadcast.monitoring import StageMonitor
from weather_broadcast.processing import NarrationGenerator
from weather_broadcast.processing.cue_parser import parse_cues

# Initialize faker for test data generation
fake = Faker()

BROADCAST_TARGET = "2025-01-15 21:00"
BROADCAST_DATE = "2025-01-15"

SAMPLE_SCRIPT = (
    "Good evening, Denver. This is Elliot Skyfall. [pause] "
    "[GRAPHIC: Current conditions - 34°F, clear skies | DURATION: 5s] "
    "The air tonight is crisp and still. "
    "[GRAPHIC: Stars over the Front Range | DURATION: 5s] "
    "A front arrives *tomorrow* afternoon. "
    "[GRAPHIC: Wind gusts along the foothills | DURATION: 5s] "
    "Until tomorrow night, clear skies and restful dreams. "
    "[GRAPHIC: Studio host signing off | DURATION: 5s]"
)

SAMPLE_AFD = """
Area Forecast Discussion
National Weather Service Denver/Boulder CO
215 PM MST Wed Jan 15 2025

.KEY MESSAGES...

- Dry and mild conditions continue through Thursday with temperatures above normal.
- A cold front brings gusty north winds and a chance of snow Friday night.

&&

.SHORT TERM /THROUGH THURSDAY/...
Issued at 215 PM MST Wed Jan 15 2025

Upper ridge remains over the region with dry northwest flow aloft.

&&

.AVIATION...
VFR conditions through the period with light drainage winds.

&&

.BOU WATCHES/WARNINGS/ADVISORIES...
Wind Advisory from 6 PM Friday to 6 AM Saturday for COZ035-036.

&&

$$

SHORT TERM...Smith
"""

SAMPLE_FORECAST_HTML = """
<html><body>
<table>
<tr><td>Date</td><td>01/15</td><td>01/15</td><td>01/15</td></tr>
<tr><td>Hour (MST)</td><td>21</td><td>22</td><td>23</td></tr>
<tr><td>Temperature (°F)</td><td>34</td><td>32</td><td>30</td></tr>
<tr><td>Dewpoint (°F)</td><td>12</td><td>12</td><td>11</td></tr>
<tr><td>Relative Humidity (%)</td><td>40</td><td>43</td><td>45</td></tr>
<tr><td>Surface Wind (mph)</td><td>8</td><td>7</td><td>6</td></tr>
<tr><td>Wind Dir</td><td>NW</td><td>NW</td><td>W</td></tr>
<tr><td>Sky Cover (%)</td><td>5</td><td>10</td><td>20</td></tr>
<tr><td>Precipitation Potential (%)</td><td>0</td><td>0</td><td>5</td></tr>
</table>
</body></html>
"""


def pytest_configure(config):
    config.addinivalue_line("markers", "unit: fast isolated tests")
    config.addinivalue_line("markers", "integration: tests across module boundaries with mocked HTTP")
    config.addinivalue_line("markers", "e2e: full pipeline tests with fake collaborators")


# ===== Configuration Fixtures =====

@pytest.fixture
def temp_dir():
    """Create a temporary directory for test files"""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def location():
    return Location(
        key="denver",
        name="Denver, Colorado",
        nws_office="BOU",
        lat=39.77,
        lon=-104.89,
        timezone="America/Denver",
    )


@pytest.fixture
def other_location():
    return Location(
        key="nyc",
        name="New York City",
        nws_office="OKX",
        lat=40.7128,
        lon=-74.0060,
        timezone="America/New_York",
    )


# ===== Database Fixtures =====

@pytest.fixture
def test_db(temp_dir):
    """Create a test database"""
    return BroadcastDatabase(temp_dir / 'test.db')


@pytest.fixture
def monitor(temp_dir):
    return StageMonitor(temp_dir / 'monitoring')


# ===== Model Factories =====

def create_weather_record(fetched_at: Optional[datetime] = None,
                          temperature: Optional[float] = None,
                          is_stale: bool = False) -> WeatherRecord:
    """Factory for creating test weather records"""
    fetched_at = fetched_at or datetime.now(timezone.utc)
    temperature = temperature if temperature is not None else fake.random_int(min=-10, max=95)
    hourly = [
        HourlyForecast(
            hour=(21 + i) % 24,
            date="01/15",
            temperature=temperature - i,
            dewpoint=12,
            humidity=40 + i,
            wind_speed=fake.random_int(min=0, max=25),
            wind_direction=fake.random_element(["N", "NW", "W", "SW", "S"]),
            sky_cover=10,
            precip_probability=0,
            weather_description="",
        )
        for i in range(12)
    ]
    return WeatherRecord(
        discussion=DiscussionData(
            key_messages=[fake.sentence(nb_words=12)],
            discussion=fake.paragraph(),
            hazards=[Hazard(type="Wind Advisory", areas=["COZ035"], timing="Friday night")],
            aviation="VFR",
            issue_time="215 PM MST Wed Jan 15 2025",
            forecaster=fake.last_name(),
            raw_text="raw discussion",
        ),
        forecast=ForecastData(
            hourly=hourly,
            current=CurrentConditions(
                temperature=temperature,
                dewpoint=12,
                humidity=40,
                wind_speed=hourly[0].wind_speed,
                wind_direction=hourly[0].wind_direction,
                sky_cover=10,
                conditions="Clear",
                observation_time="01/15 21:00",
            ),
            raw_text="<html></html>",
        ),
        fetched_at=fetched_at.isoformat(),
        is_stale=is_stale,
    )


# ===== Fake collaborators =====

class FakeWeatherSource(WeatherSource):
    """Weather source that fails a set number of times before answering"""

    def __init__(self, failures: int = 0, discussion: str = SAMPLE_AFD,
                 forecast: str = SAMPLE_FORECAST_HTML):
        self.failures = failures
        self.discussion = discussion
        self.forecast = forecast
        self.discussion_calls = 0
        self.forecast_calls = 0

    @property
    def name(self) -> str:
        return "fake"

    async def fetch_discussion(self, location: Location) -> str:
        self.discussion_calls += 1
        if self.discussion_calls <= self.failures:
            raise ConnectionError(f"upstream unavailable (call {self.discussion_calls})")
        return self.discussion

    async def fetch_digital_forecast(self, location: Location) -> str:
        self.forecast_calls += 1
        return self.forecast


class FakeNarrator(NarrationGenerator):
    def __init__(self, script: str = SAMPLE_SCRIPT, error: Optional[Exception] = None):
        self.script = script
        self.error = error
        self.calls = 0
        self.contexts: List[dict] = []

    async def generate(self, weather, context: dict) -> NarrationResult:
        self.calls += 1
        self.contexts.append(context)
        if self.error is not None:
            raise self.error
        return NarrationResult(text=self.script, cues=parse_cues(self.script))


class FakeAudioSynthesizer(AudioSynthesizer):
    def __init__(self, duration: float = 27.0, error: Optional[Exception] = None,
                 write_file: bool = True):
        self.duration = duration
        self.error = error
        self.write_file = write_file
        self.calls = 0

    async def synthesize(self, text: str, output_path: str):
        self.calls += 1
        await asyncio.sleep(0)
        if self.error is not None:
            raise self.error
        if self.write_file:
            Path(output_path).parent.mkdir(parents=True, exist_ok=True)
            Path(output_path).write_bytes(b"ID3 fake audio")
        return output_path, self.duration


class FakeImageSynthesizer(ImageSynthesizer):
    def __init__(self, delay: float = 0, error: Optional[Exception] = None):
        self.delay = delay
        self.error = error
        self.calls: List[str] = []
        self.cancelled = False

    @property
    def name(self) -> str:
        return "fake-images"

    async def synthesize(self, descriptor, category, output_path, time_context=None) -> str:
        self.calls.append(descriptor)
        try:
            await asyncio.sleep(self.delay)
        except asyncio.CancelledError:
            self.cancelled = True
            raise
        if self.error is not None:
            raise self.error
        Path(output_path).parent.mkdir(parents=True, exist_ok=True)
        Path(output_path).write_bytes(b"\x89PNG fake image")
        return output_path


class FakeCompositor(Compositor):
    def __init__(self, error: Optional[Exception] = None):
        self.error = error
        self.timelines = []

    async def render(self, timeline, output_path: str) -> str:
        self.timelines.append(timeline)
        if self.error is not None:
            raise self.error
        for segment in timeline.segments:
            if segment.duration_frames > 0 and not Path(segment.image_path).exists():
                raise GenerationError(f"Image file not found: {segment.image_path}")
        Path(output_path).parent.mkdir(parents=True, exist_ok=True)
        Path(output_path).write_bytes(b"fake video")
        return output_path


@pytest.fixture
def weather_source():
    return FakeWeatherSource()


@pytest.fixture
def narrator():
    return FakeNarrator()


@pytest.fixture
def audio():
    return FakeAudioSynthesizer()


@pytest.fixture
def images():
    return FakeImageSynthesizer()


@pytest.fixture
def compositor():
    return FakeCompositor()


@pytest.fixture
def make_weather_record():
    """Factory fixture for weather records"""
    return create_weather_record


@pytest.fixture
def fakes():
    """Fake collaborator classes for tests that need custom behaviour"""
    return SimpleNamespace(
        WeatherSource=FakeWeatherSource,
        Narrator=FakeNarrator,
        Audio=FakeAudioSynthesizer,
        Images=FakeImageSynthesizer,
        Compositor=FakeCompositor,
    )


@pytest.fixture
def sample_script():
    return SAMPLE_SCRIPT


@pytest.fixture
def sample_afd():
    return SAMPLE_AFD


@pytest.fixture
def sample_forecast_html():
    return SAMPLE_FORECAST_HTML


@pytest.fixture
def broadcast_target():
    return BROADCAST_TARGET
