"""Unit tests for weather acquisition, retries and fallback"""

import json
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, Mock

import pytest

from weather_broadcast.fetchers.weather_fetcher import WeatherFetcher
from weather_broadcast.models import WeatherSnapshot

NOW = datetime(2025, 1, 15, 21, 0, tzinfo=timezone.utc)


def save_snapshot(db, record, location_key, fetched_at):
    record.fetched_at = fetched_at.isoformat()
    db.save_weather_snapshot(WeatherSnapshot(
        id=f"snap-{location_key}-{fetched_at.timestamp()}",
        location=location_key,
        fetched_at=fetched_at.isoformat(),
        parsed_data=json.dumps(record.to_dict()),
    ))


class TestWeatherFetcher:
    """Retry, snapshot and fallback behaviour"""

    @pytest.fixture
    def make_fetcher(self, test_db):
        def factory(source, **kwargs):
            kwargs.setdefault('base_delay', 0)
            return WeatherFetcher(source, test_db, clock=lambda: NOW, **kwargs)
        return factory

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_fresh_fetch_saves_snapshot(self, make_fetcher, fakes, location, test_db):
        source = fakes.WeatherSource()
        result = await make_fetcher(source).fetch(location, episode_id=None)

        assert result.success is True
        assert result.used_fallback is False
        assert result.data.is_stale is False
        assert result.data.forecast.current.temperature == 34
        assert test_db.count_snapshots("denver") == 1
        assert source.discussion_calls == 1
        assert source.forecast_calls == 1

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_recovers_on_third_attempt(self, make_fetcher, fakes, location):
        source = fakes.WeatherSource(failures=2)
        result = await make_fetcher(source).fetch(location)

        assert result.success is True
        assert result.used_fallback is False
        assert source.discussion_calls == 3

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_fallback_to_five_hour_old_snapshot(self, make_fetcher, fakes, location,
                                                      test_db, make_weather_record):
        save_snapshot(test_db, make_weather_record(temperature=41), "denver", NOW - timedelta(hours=5))
        source = fakes.WeatherSource(failures=3)

        result = await make_fetcher(source).fetch(location)

        assert result.success is True
        assert result.used_fallback is True
        assert result.data.is_stale is True
        assert result.data.stale_age == 5
        assert result.data.forecast.current.temperature == 41
        assert source.discussion_calls == 3

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_stale_age_rounds_half_up(self, make_fetcher, fakes, location,
                                            test_db, make_weather_record):
        save_snapshot(test_db, make_weather_record(), "denver", NOW - timedelta(hours=2, minutes=30))

        result = await make_fetcher(fakes.WeatherSource(failures=3)).fetch(location)

        assert result.data.stale_age == 3

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_newest_snapshot_wins(self, make_fetcher, fakes, location,
                                        test_db, make_weather_record):
        save_snapshot(test_db, make_weather_record(temperature=10), "denver", NOW - timedelta(hours=9))
        save_snapshot(test_db, make_weather_record(temperature=20), "denver", NOW - timedelta(hours=1))
        save_snapshot(test_db, make_weather_record(temperature=15), "denver", NOW - timedelta(hours=4))

        result = await make_fetcher(fakes.WeatherSource(failures=3)).fetch(location)

        assert result.data.forecast.current.temperature == 20
        assert result.data.stale_age == 1

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_no_history_is_a_failure(self, make_fetcher, fakes, location):
        result = await make_fetcher(fakes.WeatherSource(failures=3)).fetch(location)

        assert result.success is False
        assert result.data is None
        assert result.used_fallback is False
        assert "upstream unavailable" in result.error

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_fallback_is_scoped_to_location(self, make_fetcher, fakes, location,
                                                  other_location, test_db, make_weather_record):
        save_snapshot(test_db, make_weather_record(), "nyc", NOW - timedelta(hours=1))

        denver = await make_fetcher(fakes.WeatherSource(failures=3)).fetch(location)
        nyc = await make_fetcher(fakes.WeatherSource(failures=3)).fetch(other_location)

        assert denver.success is False
        assert nyc.success is True
        assert nyc.used_fallback is True

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_backoff_doubles_between_attempts(self, test_db, fakes, location, mocker):
        sleep = mocker.patch('weather_broadcast.fetchers.weather_fetcher.asyncio.sleep',
                             new=AsyncMock())
        fetcher = WeatherFetcher(fakes.WeatherSource(failures=3), test_db,
                                 max_attempts=3, base_delay=1.0, clock=lambda: NOW)

        await fetcher.fetch(location)

        assert [c.args[0] for c in sleep.await_args_list] == [1.0, 2.0]

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_snapshot_write_failure_is_swallowed(self, fakes, location, test_db):
        db = Mock(wraps=test_db)
        db.save_weather_snapshot.side_effect = RuntimeError("disk full")
        fetcher = WeatherFetcher(fakes.WeatherSource(), db, base_delay=0, clock=lambda: NOW)

        result = await fetcher.fetch(location)

        assert result.success is True
        assert result.used_fallback is False
        db.save_weather_snapshot.assert_called_once()

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_forecast_failure_fails_the_attempt(self, make_fetcher, location):
        source = Mock()
        source.fetch_discussion = AsyncMock(return_value="discussion")
        source.fetch_digital_forecast = AsyncMock(side_effect=TimeoutError("forecast timed out"))

        result = await make_fetcher(source, max_attempts=2).fetch(location)

        assert result.success is False
        assert source.fetch_digital_forecast.await_count == 2
        assert "forecast timed out" in result.error

    @pytest.mark.unit
    def test_has_recent_weather_data(self, make_fetcher, fakes, location, test_db, make_weather_record):
        fetcher = make_fetcher(fakes.WeatherSource())
        assert fetcher.has_recent_weather_data(location) is False

        save_snapshot(test_db, make_weather_record(), "denver", NOW - timedelta(hours=8))
        assert fetcher.has_recent_weather_data(location) is False

        save_snapshot(test_db, make_weather_record(), "denver", NOW - timedelta(hours=2))
        assert fetcher.has_recent_weather_data(location) is True
