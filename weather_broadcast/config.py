"""Configuration and constants for the weather broadcast generator"""

import os
import re
from pathlib import Path
from typing import Dict

import yaml
from dotenv import load_dotenv

from .exceptions import ConfigurationError
from .models import Location

# Load environment variables
load_dotenv()

# Directories
BASE_DIR = Path.cwd()
OUTPUT_DIR = Path(os.getenv("OUTPUT_DIR", str(BASE_DIR / "output")))
DB_PATH = Path(os.getenv("DATABASE_PATH", str(BASE_DIR / "data" / "broadcasts.db")))
MONITORING_DIR = BASE_DIR / "monitoring_data"
LOG_FILE = os.getenv("LOG_FILE", str(BASE_DIR / "weather_broadcast.log"))

# Create directories
for dir_path in [OUTPUT_DIR, DB_PATH.parent]:
    dir_path.mkdir(parents=True, exist_ok=True)

# Episode settings
BROADCAST_TIME = os.getenv("BROADCAST_TIME", "22:00")
TARGET_DURATION_SECS = int(os.getenv("TARGET_DURATION_SECS", "180"))
EPISODE_START_NUMBER = int(os.getenv("EPISODE_START_NUMBER", "1"))
DEFAULT_LOCATION = os.getenv("DEFAULT_LOCATION", "denver")

# Bumping the epoch orphans every cached image generated under the old style
STYLE_EPOCH = int(os.getenv("STYLE_EPOCH", "1"))
VIDEO_FPS = int(os.getenv("VIDEO_FPS", "30"))
VIDEO_WIDTH = int(os.getenv("VIDEO_WIDTH", "1920"))
VIDEO_HEIGHT = int(os.getenv("VIDEO_HEIGHT", "1080"))

# Weather acquisition
WEATHER_MAX_ATTEMPTS = int(os.getenv("WEATHER_MAX_ATTEMPTS", "3"))
WEATHER_RETRY_DELAY = float(os.getenv("WEATHER_RETRY_DELAY", "1.0"))
WEATHER_TIMEOUT_SECS = float(os.getenv("WEATHER_TIMEOUT_SECS", "30"))
NWS_USER_AGENT = os.getenv("NWS_USER_AGENT", "WeatherBroadcast/1.0 (weather broadcast generator)")

# API Keys
OPENAI_API_KEY = os.getenv("OPENAI_API_KEY")

# Models
NARRATION_MODEL = os.getenv("NARRATION_MODEL", "gpt-4o")
NARRATION_TEMPERATURE = float(os.getenv("NARRATION_TEMPERATURE", "0.8"))
TTS_MODEL = os.getenv("TTS_MODEL", "tts-1-hd")
TTS_VOICE = os.getenv("TTS_VOICE", "onyx")
IMAGE_MODEL = os.getenv("IMAGE_MODEL", "gpt-image-1")
IMAGE_SIZE = os.getenv("IMAGE_SIZE", "1536x1024")

# Rendering
FFMPEG_BINARY = os.getenv("FFMPEG_BINARY", "ffmpeg")

DEBUG = os.getenv("DEBUG", "false").lower() == "true"

DEFAULT_LOCATIONS = {
    "denver": {
        "name": "Denver, Colorado",
        "nws_office": "BOU",
        "lat": 39.77,
        "lon": -104.89,
        "timezone": "America/Denver",
    },
    "nyc": {
        "name": "New York City",
        "nws_office": "OKX",
        "lat": 40.7128,
        "lon": -74.0060,
        "timezone": "America/New_York",
    },
}


def load_locations(yaml_file: Path = BASE_DIR / "locations.yaml") -> Dict[str, Location]:
    """Load broadcast locations from locations.yaml, falling back to the built-in set"""
    raw = DEFAULT_LOCATIONS
    if yaml_file.exists():
        with open(yaml_file, 'r') as f:
            data = yaml.safe_load(f) or {}
        raw = data.get('locations') or DEFAULT_LOCATIONS

    locations = {}
    for key, entry in raw.items():
        locations[key.lower()] = Location(
            key=key.lower(),
            name=entry['name'],
            nws_office=entry['nws_office'],
            lat=float(entry['lat']),
            lon=float(entry['lon']),
            timezone=entry.get('timezone', 'UTC'),
        )
    return locations


LOCATIONS = load_locations()


def get_location(key: str = None) -> Location:
    """Resolve a location key to its configuration"""
    key = (key or DEFAULT_LOCATION).lower()
    if key not in LOCATIONS:
        raise ConfigurationError(
            f"Unknown location: {key}. Available: {', '.join(sorted(LOCATIONS))}"
        )
    return LOCATIONS[key]


def validate_broadcast_time(value: str) -> str:
    """Broadcast times are HH:MM"""
    if not re.match(r'^\d{2}:\d{2}$', value):
        raise ConfigurationError(f"BROADCAST_TIME must be HH:MM, got {value!r}")
    return value


def validate_api_keys(operation: str) -> None:
    """Fail fast when a stage's paid service has no credentials.

    operation is one of 'script', 'audio', 'image' or 'all'.
    """
    if operation not in ('script', 'audio', 'image', 'all'):
        raise ValueError(f"Unknown operation: {operation}")

    # Read the environment at call time so keys added after import are honoured
    missing = []
    if not os.getenv("OPENAI_API_KEY"):
        missing.append(f"OPENAI_API_KEY (required for {operation} generation)")

    if missing:
        raise ConfigurationError(
            "Missing required API keys:\n"
            + "\n".join(f"  - {m}" for m in missing)
            + "\n\nCopy .env.example to .env and add your API keys."
        )
