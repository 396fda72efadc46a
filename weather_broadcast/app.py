"""Broadcast pipeline: a resumable stage machine from weather data to finished video"""

import asyncio
import json
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional, Tuple, Union

from .config import EPISODE_START_NUMBER, OUTPUT_DIR, STYLE_EPOCH, VIDEO_FPS, get_location
from .database import BroadcastDatabase
from .exceptions import GenerationError, IntegrityError, WeatherUnavailableError
from .fetchers.nws_client import NWSClient
from .fetchers.weather_fetcher import WeatherFetcher
from .fetchers.weather_parser import summarize_weather
from .media import AudioSynthesizer, Compositor, ImageSynthesizer
from .media.audio_synthesizer import OpenAIAudioSynthesizer
from .media.compositor import FFmpegCompositor
from .media.image_synthesizer import OpenAIImageSynthesizer, write_blank_image
from .models import (
    Cue, Episode, EpisodeStage, ImageCategory, Location, PipelineResult, Timeline, WeatherRecord,
    WeatherSummary, next_stage
)
from .monitoring import StageMonitor
from .processing import NarrationGenerator
from .processing.artifact_cache import ArtifactCache
from .processing.cue_parser import parse_cues
from .processing.narrator import OpenAINarrator
from .processing.timeline import (
    BLANK_IMAGE, PLACEHOLDER_IMAGE, build_timeline, cue_image_name, serialize_timeline,
    validate_timeline
)
from .utils.helpers import correlation_id, file_exists
from .utils.logging import get_logger
from .utils.time_context import BroadcastTimeContext, build_time_context

logger = get_logger(__name__)

AUDIO_FILENAME = "broadcast.mp3"
VIDEO_FILENAME = "broadcast.mp4"
TIMELINE_FILENAME = "timeline.json"

# Stages a run may be told to stop after: script preview, or audio without video
STOPPABLE_STAGES = (EpisodeStage.GENERATING, EpisodeStage.SYNTHESIZING)


def resume_stage(episode: Episode) -> EpisodeStage:
    """First stage whose output is not yet persisted on the episode"""
    if file_exists(episode.video_path):
        return EpisodeStage.DONE
    if not (episode.script or "").strip():
        return EpisodeStage.FETCHING
    if not file_exists(episode.audio_path):
        return EpisodeStage.SYNTHESIZING
    return EpisodeStage.SYNCING


def remaining_stages(stage: EpisodeStage) -> List[EpisodeStage]:
    """`stage` and every stage after it, up to but excluding DONE"""
    stages = []
    while stage is not EpisodeStage.DONE:
        stages.append(stage)
        stage = next_stage(stage)
    return stages


@dataclass
class RunState:
    """In-memory outputs handed from one stage to the next within a run"""
    episode: Episode
    location: Location
    time_context: BroadcastTimeContext
    episode_dir: Path
    correlation_id: str
    use_images: bool = True
    weather: Optional[WeatherRecord] = None
    cues: Optional[List[Cue]] = None
    image_paths: Dict[int, str] = field(default_factory=dict)
    timeline: Optional[Timeline] = None


class BroadcastPipeline:
    """Generate one broadcast per date, resuming from the last persisted stage"""

    def __init__(self, db: Optional[BroadcastDatabase] = None,
                 weather_fetcher: Optional[WeatherFetcher] = None,
                 narrator: Optional[NarrationGenerator] = None,
                 audio: Optional[AudioSynthesizer] = None,
                 images: Optional[ImageSynthesizer] = None,
                 compositor: Optional[Compositor] = None,
                 cache: Optional[ArtifactCache] = None,
                 monitor: Optional[StageMonitor] = None,
                 fps: int = VIDEO_FPS,
                 output_dir: Union[str, Path] = OUTPUT_DIR,
                 start_number: int = EPISODE_START_NUMBER):
        self.db = db or BroadcastDatabase()
        self.weather_fetcher = weather_fetcher or WeatherFetcher(NWSClient(), self.db)
        self.narrator = narrator or OpenAINarrator()
        self.audio = audio or OpenAIAudioSynthesizer()
        self.images = images or OpenAIImageSynthesizer()
        self.compositor = compositor or FFmpegCompositor()
        self.cache = cache or ArtifactCache(self.db, STYLE_EPOCH, self.images.name)
        self.monitor = monitor or StageMonitor()
        self.fps = fps
        self.output_dir = Path(output_dir)
        self.start_number = start_number

    async def run(self, target: Union[str, datetime, None] = None,
                  location: Union[str, Location, None] = None,
                  stop_after: Optional[EpisodeStage] = None,
                  images: bool = True) -> PipelineResult:
        """
        Produce (or resume) the broadcast for the target date.

        Args:
            target: When the broadcast airs; None means now
            location: Location key or Location; None means the configured default
            stop_after: GENERATING for a script preview, SYNTHESIZING for audio
                without video. The episode keeps its outputs and a later run
                resumes after them.
            images: False renders every segment over a blank frame and never
                calls the image generator

        Returns:
            PipelineResult. Failures are persisted on the episode and reported
            here rather than raised, so the caller can simply re-run to resume.
        """
        if stop_after is not None and stop_after not in STOPPABLE_STAGES:
            raise ValueError(f"Cannot stop after {stop_after.value}")

        cid = correlation_id()
        if not isinstance(location, Location):
            location = get_location(location)
        time_context = build_time_context(target, location)

        episode = self.db.get_episode_by_date(time_context.date)
        if episode is None:
            episode = self.db.create_episode(
                time_context.date, time_context.time, location.key, self.start_number
            )
        if episode.stage is EpisodeStage.DONE:
            logger.info(f"[{cid}] ✅ Episode #{episode.episode_number} for {episode.broadcast_date} "
                        f"is already done, nothing to do")
            return PipelineResult(
                success=True,
                episode=episode,
                audio_path=episode.audio_path,
                video_path=episode.video_path,
                skipped=True,
            )

        state = RunState(
            episode=episode,
            location=location,
            time_context=time_context,
            episode_dir=self.output_dir / episode.broadcast_date,
            correlation_id=cid,
            use_images=images,
        )
        current = resume_stage(episode)
        if stop_after is not None and stop_after not in remaining_stages(current):
            logger.info(f"[{cid}] Episode #{episode.episode_number} is already past "
                        f"{stop_after.value}, nothing to do")
            return self._stopped(episode, stop_after)

        if episode.stage is not EpisodeStage.INIT:
            logger.info(f"[{cid}] ♻️  Resuming episode #{episode.episode_number} "
                        f"(was {episode.stage.value}) at {current.value}")
        else:
            logger.info(f"[{cid}] 🎬 Starting episode #{episode.episode_number} "
                        f"for {episode.broadcast_date} {episode.broadcast_time} ({location.name})")

        try:
            while current is not EpisodeStage.DONE:
                state.episode = self.db.update_episode_stage(episode.id, current)
                await self._run_stage(current, state)
                self.monitor.record_success(current.value)
                if current is stop_after:
                    logger.info(f"[{cid}] ⏸️  Stopping after {current.value} as requested")
                    return self._stopped(state.episode, current)
                current = next_stage(current)
        except Exception as e:
            message = f"{current.value}: {e}"
            logger.error(f"[{cid}] ❌ Stage {current.value} failed: {e}")
            self.monitor.record_failure(current.value, episode.broadcast_date, e)
            failed = self.db.update_episode_stage(episode.id, EpisodeStage.ERROR, error=message)
            return PipelineResult(success=False, episode=failed, error=message)

        finished = self.db.update_episode_stage(episode.id, EpisodeStage.DONE)
        logger.info(f"[{cid}] ✅ Episode #{finished.episode_number} complete: {finished.video_path}")
        return PipelineResult(
            success=True,
            episode=finished,
            audio_path=finished.audio_path,
            video_path=finished.video_path,
        )

    @staticmethod
    def _stopped(episode: Episode, stage: EpisodeStage) -> PipelineResult:
        return PipelineResult(
            success=True,
            episode=episode,
            audio_path=episode.audio_path,
            stopped_after=stage,
        )

    async def _run_stage(self, stage: EpisodeStage, state: RunState) -> None:
        if stage is EpisodeStage.FETCHING:
            await self._fetch(state)
        elif stage is EpisodeStage.GENERATING:
            await self._generate(state)
        elif stage is EpisodeStage.SYNTHESIZING:
            await self._synthesize(state)
        elif stage is EpisodeStage.SYNCING:
            await self._sync(state)
        elif stage is EpisodeStage.COMPOSING:
            await self._compose(state)
        elif stage in (EpisodeStage.INIT, EpisodeStage.DONE, EpisodeStage.ERROR):
            raise ValueError(f"{stage.value} has no entry action")
        else:
            raise ValueError(f"Unhandled stage: {stage!r}")

    # ===== Stages =====

    async def _fetch(self, state: RunState) -> None:
        result = await self.weather_fetcher.fetch(state.location, state.episode.id)
        if not result.success:
            raise WeatherUnavailableError(result.error or "No weather data available")

        record = result.data
        state.weather = record
        state.episode = self.db.update_episode_fields(
            state.episode.id,
            weather_data_timestamp=record.fetched_at,
            weather_is_stale=record.is_stale,
            stale_age_hours=record.stale_age,
        )

    async def _generate(self, state: RunState) -> None:
        if state.weather is None:
            raise WeatherUnavailableError("No weather data for narration")

        context = {
            'broadcast_date': state.episode.broadcast_date,
            'broadcast_time': state.episode.broadcast_time,
            'episode_number': state.episode.episode_number,
            'is_stale': state.weather.is_stale,
            'stale_age': state.weather.stale_age,
            'location': state.location,
            'time_context': state.time_context,
        }
        narration = await self.narrator.generate(state.weather, context)
        if not (narration.text or "").strip():
            raise GenerationError("Narration generator returned an empty script")

        state.cues = list(narration.cues)
        state.episode = self.db.update_episode_fields(state.episode.id, script=narration.text)

    async def _synthesize(self, state: RunState) -> None:
        cues = self._cues(state)
        audio_target = state.episode_dir / AUDIO_FILENAME

        if state.use_images:
            (audio_path, duration), image_paths = await self._fan_out(
                self.audio.synthesize(state.episode.script, str(audio_target)),
                self._resolve_images(cues, state),
            )
        else:
            audio_path, duration = await self.audio.synthesize(
                state.episode.script, str(audio_target)
            )
            image_paths = self._blank_images(cues, state)
        if not file_exists(audio_path):
            raise IntegrityError(f"Audio file not found after synthesis: {audio_path}")

        state.image_paths = image_paths
        state.episode = self.db.update_episode_fields(
            state.episode.id, audio_path=str(audio_path), duration_secs=duration
        )

    async def _sync(self, state: RunState) -> None:
        cues = self._cues(state)
        if not state.image_paths:
            if state.use_images:
                # Resumed run: images are already paid for and come back from the cache
                state.image_paths = await self._resolve_images(cues, state)
            else:
                state.image_paths = self._blank_images(cues, state)

        if state.episode.duration_secs is None:
            raise IntegrityError("Audio duration was never recorded")

        timeline = build_timeline(
            cues,
            state.episode.duration_secs,
            fps=self.fps,
            audio_path=state.episode.audio_path,
            images_dir=state.episode_dir,
            image_paths=state.image_paths,
            broadcast_date=state.episode.broadcast_date,
            location=state.location.name,
            weather_summary=self._weather_summary(state),
        )
        problems = validate_timeline(timeline)
        if problems:
            raise GenerationError(f"Invalid timeline: {'; '.join(problems)}")

        timeline_path = state.episode_dir / TIMELINE_FILENAME
        timeline_path.parent.mkdir(parents=True, exist_ok=True)
        timeline_path.write_text(serialize_timeline(timeline), encoding='utf-8')
        state.timeline = timeline
        logger.info(f"[{state.correlation_id}] 🧮 Timeline: {len(timeline.segments)} segments, "
                    f"{timeline.total_frames} frames")

    async def _compose(self, state: RunState) -> None:
        if state.timeline is None:
            raise GenerationError("No timeline to render")

        video_path = await self.compositor.render(
            state.timeline, str(state.episode_dir / VIDEO_FILENAME)
        )
        if not file_exists(video_path):
            raise IntegrityError(f"Video file not found after rendering: {video_path}")
        state.episode = self.db.update_episode_fields(state.episode.id, video_path=str(video_path))

    # ===== Helpers =====

    @staticmethod
    async def _fan_out(first, second) -> Tuple:
        """Run two coroutines together; the first failure cancels the other and is raised"""
        tasks = [asyncio.ensure_future(first), asyncio.ensure_future(second)]
        try:
            done, pending = await asyncio.wait(tasks, return_when=asyncio.FIRST_EXCEPTION)
        except asyncio.CancelledError:
            for task in tasks:
                task.cancel()
            raise

        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

        for task in tasks:
            if task in done and task.exception() is not None:
                raise task.exception()
        return tasks[0].result(), tasks[1].result()

    def _cues(self, state: RunState) -> List[Cue]:
        if state.cues is None:
            state.cues = parse_cues(state.episode.script or "")
        return state.cues

    async def _resolve_images(self, cues: List[Cue], state: RunState) -> Dict[int, str]:
        """Image per cue through the artifact cache; only misses reach the generator"""
        if not cues:
            # A script without cues still needs one frame to hold for the whole broadcast
            return {0: await self._resolve_placeholder(state)}

        paths = {}
        hits = 0
        for position, cue in enumerate(cues):
            path, cached = await self._resolve_image(
                cue.description, cue.category, state.episode_dir / cue_image_name(position), state
            )
            paths[position] = path
            hits += int(cached)

        logger.info(f"[{state.correlation_id}] 🖼️  {len(cues)} images "
                    f"({hits} from cache, {len(cues) - hits} generated)")
        return paths

    async def _resolve_placeholder(self, state: RunState) -> str:
        descriptor = (f"Quiet {state.time_context.time_of_day} sky over "
                      f"{state.location.name}, no weather events")
        path, _ = await self._resolve_image(
            descriptor, ImageCategory.ATMOSPHERIC, state.episode_dir / PLACEHOLDER_IMAGE, state
        )
        return path

    async def _resolve_image(self, descriptor: str, category: ImageCategory,
                             output_path: Path, state: RunState) -> Tuple[str, bool]:
        async def generate():
            return await self.images.synthesize(
                descriptor, category, str(output_path), state.time_context
            )

        return await self.cache.resolve(descriptor, category, generate)

    @staticmethod
    def _blank_images(cues: List[Cue], state: RunState) -> Dict[int, str]:
        blank = write_blank_image(str(state.episode_dir / BLANK_IMAGE))
        return {position: blank for position in range(max(1, len(cues)))}

    def _weather_summary(self, state: RunState) -> Optional[WeatherSummary]:
        record = state.weather
        if record is None:
            # Resumed run: use the snapshot this episode was narrated from
            snapshot = self.db.get_episode_snapshot(
                state.episode.id, state.location.key, state.episode.weather_data_timestamp
            )
            if snapshot is None:
                snapshot = self.db.get_latest_snapshot(state.location.key)
            if snapshot is None or not snapshot.parsed_data:
                return None
            record = WeatherRecord.from_dict(json.loads(snapshot.parsed_data))
        return summarize_weather(record)
