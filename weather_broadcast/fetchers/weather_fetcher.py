"""Weather acquisition with retries and fallback to stored snapshots"""

import asyncio
import json
from datetime import datetime, timedelta
from typing import Callable, Optional

from . import WeatherSource
from .weather_parser import parse_weather
from ..config import WEATHER_MAX_ATTEMPTS, WEATHER_RETRY_DELAY
from ..database import BroadcastDatabase
from ..models import Location, WeatherFetchResult, WeatherRecord, WeatherSnapshot
from ..utils.helpers import (
    exponential_backoff, generate_id, hours_between, parse_timestamp, utc_now
)
from ..utils.logging import get_logger

logger = get_logger(__name__)


class WeatherFetcher:
    """Fetch fresh weather, degrading to the newest stored snapshot for the same location.

    Ordinary upstream unavailability never raises: the result carries
    `success=False` only when every attempt failed and no snapshot exists.
    """

    def __init__(self, source: WeatherSource, db: BroadcastDatabase,
                 max_attempts: int = WEATHER_MAX_ATTEMPTS,
                 base_delay: float = WEATHER_RETRY_DELAY,
                 parser: Callable[[str, str], WeatherRecord] = parse_weather,
                 clock: Callable[[], datetime] = utc_now):
        self.source = source
        self.db = db
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.parser = parser
        self.clock = clock

    async def fetch(self, location: Location, episode_id: Optional[str] = None) -> WeatherFetchResult:
        """Fetch both weather documents with retries, then fall back to a snapshot"""
        last_error: Optional[Exception] = None

        for attempt in range(1, self.max_attempts + 1):
            try:
                logger.info(f"🌦️  Fetching weather for {location.name} "
                            f"(attempt {attempt}/{self.max_attempts})...")
                discussion_raw, forecast_raw = await asyncio.gather(
                    self.source.fetch_discussion(location),
                    self.source.fetch_digital_forecast(location),
                )
                record = self.parser(discussion_raw, forecast_raw)

                self._save_snapshot(location, record, discussion_raw, forecast_raw, episode_id)

                return WeatherFetchResult(success=True, data=record, used_fallback=False)

            except Exception as e:
                last_error = e
                logger.warning(f"   Attempt {attempt} failed: {str(e)[:200]}")

                if attempt < self.max_attempts:
                    delay = exponential_backoff(attempt, self.base_delay)
                    logger.info(f"   Retrying in {delay:.1f}s...")
                    await asyncio.sleep(delay)

        logger.warning("Fresh fetch failed, attempting fallback to stored weather data...")
        fallback = self._get_fallback(location)
        if fallback is not None:
            logger.warning(f"⚠️  Using cached weather data ({fallback.stale_age}h old)")
            return WeatherFetchResult(success=True, data=fallback, used_fallback=True)

        error = str(last_error) if last_error else "Unknown error fetching weather data"
        logger.error(f"❌ No weather data available for {location.name}: {error}")
        return WeatherFetchResult(success=False, error=error, used_fallback=False)

    def _save_snapshot(self, location: Location, record: WeatherRecord,
                       discussion_raw: str, forecast_raw: str,
                       episode_id: Optional[str]) -> None:
        """Best-effort snapshot write; a failure here must not fail the fetch"""
        try:
            self.db.save_weather_snapshot(WeatherSnapshot(
                id=generate_id(),
                episode_id=episode_id,
                location=location.key,
                discussion_raw=discussion_raw,
                forecast_raw=forecast_raw,
                parsed_data=json.dumps(record.to_dict()),
                fetched_at=record.fetched_at,
                issued_at=record.discussion.issue_time or None,
            ))
        except Exception as e:
            logger.warning(f"   Warning: Failed to save weather snapshot: {e}")

    def _get_fallback(self, location: Location) -> Optional[WeatherRecord]:
        """Newest snapshot for the location, marked stale with its age in hours"""
        try:
            snapshot = self.db.get_latest_snapshot(location.key)
            if snapshot is None or not snapshot.parsed_data:
                return None

            record = WeatherRecord.from_dict(json.loads(snapshot.parsed_data))
            fetched_at = parse_timestamp(snapshot.fetched_at)
            record.is_stale = True
            record.stale_age = hours_between(fetched_at, self.clock())
            return record
        except Exception as e:
            logger.warning(f"   Warning: Failed to get fallback data: {e}")
            return None

    def has_recent_weather_data(self, location: Location, max_age_hours: float = 6) -> bool:
        """True when a snapshot younger than max_age_hours exists for the location"""
        try:
            snapshot = self.db.get_latest_snapshot(location.key)
        except Exception as e:
            logger.warning(f"Could not check weather snapshots: {e}")
            return False
        if snapshot is None:
            return False
        age = self.clock() - parse_timestamp(snapshot.fetched_at)
        return age < timedelta(hours=max_age_hours)
