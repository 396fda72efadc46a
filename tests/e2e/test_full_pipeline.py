"""End-to-end tests of the broadcast pipeline with fake collaborators"""

import json
from datetime import datetime, timedelta, timezone

import pytest

from weather_broadcast.app import BroadcastPipeline, resume_stage
from weather_broadcast.exceptions import GenerationError
from weather_broadcast.fetchers.weather_fetcher import WeatherFetcher
from weather_broadcast.media import Compositor
from weather_broadcast.models import EpisodeStage, WeatherSnapshot


class GhostCompositor(Compositor):
    """Claims success without writing anything"""

    async def render(self, timeline, output_path):
        return output_path


@pytest.fixture
def make_pipeline(test_db, monitor, temp_dir, fakes):
    def factory(source=None, **overrides):
        collaborators = {
            'narrator': fakes.Narrator(),
            'audio': fakes.Audio(),
            'images': fakes.Images(),
            'compositor': fakes.Compositor(),
        }
        collaborators.update(overrides)
        fetcher = WeatherFetcher(source or fakes.WeatherSource(), test_db, base_delay=0)
        pipeline = BroadcastPipeline(
            db=test_db,
            weather_fetcher=fetcher,
            monitor=monitor,
            output_dir=temp_dir / "output",
            **collaborators,
        )
        return pipeline
    return factory


class TestFullRun:

    @pytest.mark.e2e
    @pytest.mark.asyncio
    async def test_generates_broadcast(self, make_pipeline, location, broadcast_target, temp_dir, test_db):
        pipeline = make_pipeline()

        result = await pipeline.run(broadcast_target, location)

        assert result.success is True
        assert result.skipped is False
        assert result.episode.stage is EpisodeStage.DONE
        assert result.episode.completed_at is not None
        assert result.episode.episode_number == 1
        assert result.episode.duration_secs == 27.0

        episode_dir = temp_dir / "output" / "2025-01-15"
        assert result.video_path == str(episode_dir / "broadcast.mp4")
        assert (episode_dir / "broadcast.mp4").exists()
        assert (episode_dir / "graphic-04.png").exists()

        assert pipeline.narrator.calls == 1
        assert pipeline.audio.calls == 1
        assert len(pipeline.images.calls) == 4
        timeline = pipeline.compositor.timelines[0]
        assert timeline.total_frames == 810
        assert timeline.weather_summary.temperature == "34°F"

        saved = json.loads((episode_dir / "timeline.json").read_text())
        assert len(saved['segments']) == 4
        assert test_db.count_snapshots("denver") == 1

    @pytest.mark.e2e
    @pytest.mark.asyncio
    async def test_narrator_receives_broadcast_context(self, make_pipeline, location, broadcast_target):
        pipeline = make_pipeline()

        await pipeline.run(broadcast_target, location)

        context = pipeline.narrator.contexts[0]
        assert context['broadcast_date'] == "2025-01-15"
        assert context['broadcast_time'] == "21:00"
        assert context['is_stale'] is False
        assert context['time_context'].time_of_day == 'evening'

    @pytest.mark.e2e
    @pytest.mark.asyncio
    async def test_done_episode_is_a_no_op(self, make_pipeline, location, broadcast_target, monitor):
        first = await make_pipeline().run(broadcast_target, location)
        pipeline = make_pipeline()

        second = await pipeline.run(broadcast_target, location)

        assert second.success is True
        assert second.skipped is True
        assert second.video_path == first.video_path
        assert pipeline.narrator.calls == 0
        assert pipeline.audio.calls == 0
        assert pipeline.images.calls == []
        assert pipeline.compositor.timelines == []

    @pytest.mark.e2e
    @pytest.mark.asyncio
    async def test_next_date_gets_next_number(self, make_pipeline, location):
        await make_pipeline().run("2025-01-15 21:00", location)
        result = await make_pipeline().run("2025-01-16 21:00", location)

        assert result.episode.episode_number == 2

    @pytest.mark.e2e
    @pytest.mark.asyncio
    async def test_stale_weather_flows_to_narration(self, make_pipeline, fakes, location,
                                                    broadcast_target, test_db, make_weather_record):
        fetched_at = datetime.now(timezone.utc) - timedelta(hours=4)
        record = make_weather_record(fetched_at=fetched_at, temperature=28)
        test_db.save_weather_snapshot(WeatherSnapshot(
            id="older", location="denver", fetched_at=fetched_at.isoformat(),
            parsed_data=json.dumps(record.to_dict()),
        ))
        pipeline = make_pipeline(source=fakes.WeatherSource(failures=3))

        result = await pipeline.run(broadcast_target, location)

        assert result.success is True
        assert result.episode.weather_is_stale is True
        assert result.episode.stale_age_hours == 4
        assert pipeline.narrator.contexts[0]['is_stale'] is True
        assert pipeline.compositor.timelines[0].weather_summary.temperature == "28°F"


class TestFailureAndResume:

    @pytest.mark.e2e
    @pytest.mark.asyncio
    async def test_weather_failure_then_resume(self, make_pipeline, fakes, location,
                                               broadcast_target, test_db):
        failed = await make_pipeline(source=fakes.WeatherSource(failures=3)).run(broadcast_target, location)

        assert failed.success is False
        assert failed.error.startswith("fetching:")
        stored = test_db.get_episode_by_date("2025-01-15")
        assert stored.stage is EpisodeStage.ERROR
        assert stored.error == failed.error

        recovered = await make_pipeline().run(broadcast_target, location)

        assert recovered.success is True
        assert recovered.episode.id == stored.id
        assert recovered.episode.error is None
        assert recovered.episode.stage is EpisodeStage.DONE

    @pytest.mark.e2e
    @pytest.mark.asyncio
    async def test_resume_skips_persisted_script(self, make_pipeline, location, broadcast_target,
                                                 test_db, sample_script):
        episode = test_db.create_episode("2025-01-15", "21:00", "denver")
        test_db.update_episode_fields(episode.id, script=sample_script)
        test_db.update_episode_stage(episode.id, EpisodeStage.GENERATING)
        pipeline = make_pipeline()

        result = await pipeline.run(broadcast_target, location)

        assert result.success is True
        assert pipeline.narrator.calls == 0
        assert pipeline.audio.calls == 1
        assert len(pipeline.images.calls) == 4

    @pytest.mark.e2e
    @pytest.mark.asyncio
    @pytest.mark.timeout(10)
    async def test_audio_failure_cancels_images(self, make_pipeline, fakes, location,
                                                broadcast_target, test_db):
        images = fakes.Images(delay=10)
        pipeline = make_pipeline(audio=fakes.Audio(error=GenerationError("TTS quota exceeded")),
                                 images=images)

        result = await pipeline.run(broadcast_target, location)

        assert result.success is False
        assert result.error == "synthesizing: TTS quota exceeded"
        assert images.cancelled is True
        assert pipeline.cache.stats() == []
        assert test_db.get_episode_by_date("2025-01-15").stage is EpisodeStage.ERROR

    @pytest.mark.e2e
    @pytest.mark.asyncio
    async def test_resume_after_render_failure_reuses_cached_images(self, make_pipeline, fakes,
                                                                    location, broadcast_target):
        first = await make_pipeline(
            compositor=fakes.Compositor(error=GenerationError("ffmpeg exited with 1"))
        ).run(broadcast_target, location)
        assert first.error == "composing: ffmpeg exited with 1"
        assert resume_stage(first.episode) is EpisodeStage.SYNCING

        pipeline = make_pipeline()
        result = await pipeline.run(broadcast_target, location)

        assert result.success is True
        assert pipeline.narrator.calls == 0
        assert pipeline.audio.calls == 0
        assert pipeline.images.calls == []
        assert len(pipeline.compositor.timelines) == 1

    @pytest.mark.e2e
    @pytest.mark.asyncio
    async def test_missing_video_is_an_integrity_failure(self, make_pipeline, location, broadcast_target):
        result = await make_pipeline(compositor=GhostCompositor()).run(broadcast_target, location)

        assert result.success is False
        assert result.error.startswith("composing: Video file not found")

    @pytest.mark.e2e
    @pytest.mark.asyncio
    async def test_empty_script_fails_generation(self, make_pipeline, fakes, location, broadcast_target):
        result = await make_pipeline(narrator=fakes.Narrator(script="   ")).run(broadcast_target, location)

        assert result.success is False
        assert result.error.startswith("generating:")

    @pytest.mark.e2e
    @pytest.mark.asyncio
    async def test_failures_reach_the_monitor(self, make_pipeline, fakes, location,
                                              broadcast_target, monitor):
        await make_pipeline(narrator=fakes.Narrator(error=GenerationError("rate limited"))).run(
            broadcast_target, location
        )

        assert monitor.stage_stats['fetching'].successful == 1
        assert monitor.stage_stats['generating'].failed == 1
        assert monitor.get_recent_failures()[0].broadcast_date == "2025-01-15"


class TestImages:

    @pytest.mark.e2e
    @pytest.mark.asyncio
    async def test_script_without_cues_gets_a_placeholder_image(self, make_pipeline, fakes,
                                                                location, broadcast_target, temp_dir):
        script = "Clear and calm tonight along the Front Range. Lows near twenty by morning."
        pipeline = make_pipeline(narrator=fakes.Narrator(script=script))

        result = await pipeline.run(broadcast_target, location)

        assert result.success is True
        assert result.episode.stage is EpisodeStage.DONE
        assert len(pipeline.images.calls) == 1
        placeholder = temp_dir / "output" / "2025-01-15" / "placeholder.png"
        assert placeholder.exists()
        timeline = pipeline.compositor.timelines[0]
        assert len(timeline.segments) == 1
        assert timeline.segments[0].image_path == str(placeholder)
        assert timeline.segments[0].end_frame == timeline.total_frames

    @pytest.mark.e2e
    @pytest.mark.asyncio
    async def test_placeholder_is_reused_on_resume(self, make_pipeline, fakes, location, broadcast_target):
        script = "Quiet skies, light winds, nothing to report."
        first = await make_pipeline(
            narrator=fakes.Narrator(script=script),
            compositor=fakes.Compositor(error=GenerationError("ffmpeg exited with 1")),
        ).run(broadcast_target, location)
        assert first.success is False

        pipeline = make_pipeline()
        result = await pipeline.run(broadcast_target, location)

        assert result.success is True
        assert pipeline.images.calls == []

    @pytest.mark.e2e
    @pytest.mark.asyncio
    async def test_images_off_renders_blank_frames(self, make_pipeline, location, broadcast_target, temp_dir):
        pipeline = make_pipeline()

        result = await pipeline.run(broadcast_target, location, images=False)

        assert result.success is True
        assert pipeline.images.calls == []
        assert pipeline.cache.stats() == []
        blank = temp_dir / "output" / "2025-01-15" / "blank.png"
        assert blank.exists()
        timeline = pipeline.compositor.timelines[0]
        assert len(timeline.segments) == 4
        assert {segment.image_path for segment in timeline.segments} == {str(blank)}


class TestStopAfter:

    @pytest.mark.e2e
    @pytest.mark.asyncio
    async def test_preview_stops_after_script(self, make_pipeline, location, broadcast_target, test_db):
        pipeline = make_pipeline()

        result = await pipeline.run(broadcast_target, location, stop_after=EpisodeStage.GENERATING)

        assert result.success is True
        assert result.stopped_after is EpisodeStage.GENERATING
        assert result.video_path is None
        assert result.episode.script
        assert pipeline.audio.calls == 0
        assert pipeline.images.calls == []
        assert test_db.get_episode_by_date("2025-01-15").stage is EpisodeStage.GENERATING

        # A full run picks up from the saved script
        resumed = make_pipeline()
        final = await resumed.run(broadcast_target, location)
        assert final.success is True
        assert final.stopped_after is None
        assert final.episode.stage is EpisodeStage.DONE
        assert resumed.narrator.calls == 0

    @pytest.mark.e2e
    @pytest.mark.asyncio
    async def test_audio_only_stops_before_video(self, make_pipeline, location, broadcast_target, temp_dir):
        pipeline = make_pipeline()

        result = await pipeline.run(broadcast_target, location, stop_after=EpisodeStage.SYNTHESIZING)

        assert result.success is True
        assert result.stopped_after is EpisodeStage.SYNTHESIZING
        assert result.audio_path == str(temp_dir / "output" / "2025-01-15" / "broadcast.mp3")
        assert pipeline.compositor.timelines == []
        assert len(pipeline.images.calls) == 4

        resumed = make_pipeline()
        final = await resumed.run(broadcast_target, location)
        assert final.episode.stage is EpisodeStage.DONE
        assert resumed.audio.calls == 0
        assert resumed.images.calls == []

    @pytest.mark.e2e
    @pytest.mark.asyncio
    async def test_preview_of_episode_with_audio_runs_nothing(self, make_pipeline, location,
                                                              broadcast_target):
        await make_pipeline().run(broadcast_target, location, stop_after=EpisodeStage.SYNTHESIZING)
        pipeline = make_pipeline()

        result = await pipeline.run(broadcast_target, location, stop_after=EpisodeStage.GENERATING)

        assert result.success is True
        assert result.stopped_after is EpisodeStage.GENERATING
        assert pipeline.narrator.calls == 0
        assert pipeline.audio.calls == 0

    @pytest.mark.e2e
    @pytest.mark.asyncio
    async def test_cannot_stop_after_composing(self, make_pipeline, location, broadcast_target):
        with pytest.raises(ValueError):
            await make_pipeline().run(broadcast_target, location, stop_after=EpisodeStage.COMPOSING)


class TestClosingSlide:

    @pytest.mark.e2e
    @pytest.mark.asyncio
    async def test_resume_uses_the_episodes_own_weather(self, make_pipeline, fakes, location,
                                                        broadcast_target, test_db, make_weather_record):
        first = make_pipeline(compositor=fakes.Compositor(error=GenerationError("ffmpeg exited with 1")))
        await first.run(broadcast_target, location)
        original = first.compositor.timelines[0].weather_summary

        # A later fetch for another episode must not leak into this one
        other = test_db.create_episode("2025-01-16", "21:00", "denver")
        fetched_at = datetime.now(timezone.utc) + timedelta(hours=1)
        newer = make_weather_record(fetched_at=fetched_at, temperature=99)
        test_db.save_weather_snapshot(WeatherSnapshot(
            id="newer", location="denver", fetched_at=fetched_at.isoformat(),
            episode_id=other.id, parsed_data=json.dumps(newer.to_dict()),
        ))

        pipeline = make_pipeline()
        result = await pipeline.run(broadcast_target, location)

        assert result.success is True
        summary = pipeline.compositor.timelines[0].weather_summary
        assert summary == original
        assert summary.temperature != "99°F"
