"""Data models for the weather broadcast generator"""

from dataclasses import dataclass, field, asdict
from enum import Enum
from typing import Any, Dict, List, Optional


class EpisodeStage(Enum):
    """Lifecycle stage of a broadcast episode"""
    INIT = "init"
    FETCHING = "fetching"
    GENERATING = "generating"
    SYNTHESIZING = "synthesizing"
    SYNCING = "syncing"
    COMPOSING = "composing"
    DONE = "done"
    ERROR = "error"


def next_stage(stage: EpisodeStage) -> EpisodeStage:
    """Stage that follows `stage` on the success path"""
    if stage is EpisodeStage.INIT:
        return EpisodeStage.FETCHING
    elif stage is EpisodeStage.FETCHING:
        return EpisodeStage.GENERATING
    elif stage is EpisodeStage.GENERATING:
        return EpisodeStage.SYNTHESIZING
    elif stage is EpisodeStage.SYNTHESIZING:
        return EpisodeStage.SYNCING
    elif stage is EpisodeStage.SYNCING:
        return EpisodeStage.COMPOSING
    elif stage is EpisodeStage.COMPOSING:
        return EpisodeStage.DONE
    elif stage in (EpisodeStage.DONE, EpisodeStage.ERROR):
        raise ValueError(f"{stage.value} is terminal")
    raise ValueError(f"Unhandled stage: {stage!r}")


class ImageCategory(Enum):
    """Visual treatment of a generated image; partitions the artifact cache"""
    CHARACTER = "character"
    ATMOSPHERIC = "atmospheric"
    WEATHER_GRAPHIC = "weather_graphic"


@dataclass
class Location:
    """A broadcast location and the NWS office that covers it"""
    key: str
    name: str
    nws_office: str
    lat: float
    lon: float
    timezone: str = "UTC"


@dataclass
class Episode:
    """One broadcast, uniquely keyed by its broadcast date"""
    id: str
    broadcast_date: str
    broadcast_time: str
    episode_number: int
    stage: EpisodeStage = EpisodeStage.INIT
    location: Optional[str] = None
    weather_data_timestamp: Optional[str] = None
    weather_is_stale: bool = False
    stale_age_hours: Optional[int] = None
    script: Optional[str] = None
    audio_path: Optional[str] = None
    video_path: Optional[str] = None
    duration_secs: Optional[float] = None
    error: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None
    completed_at: Optional[str] = None

    def __post_init__(self):
        if isinstance(self.stage, str):
            self.stage = EpisodeStage(self.stage)
        self.weather_is_stale = bool(self.weather_is_stale)

    def to_dict(self) -> dict:
        """Convert to a row dictionary"""
        data = asdict(self)
        data['stage'] = self.stage.value
        data['weather_is_stale'] = int(self.weather_is_stale)
        return data

    @classmethod
    def from_dict(cls, data: dict) -> 'Episode':
        """Create from a row dictionary"""
        known = {k: v for k, v in data.items() if k in cls.__dataclass_fields__}
        return cls(**known)


@dataclass
class Hazard:
    """Hazard called out in an area forecast discussion"""
    type: str
    areas: List[str] = field(default_factory=list)
    timing: str = ""
    description: str = ""


@dataclass
class DiscussionData:
    """Parsed area forecast discussion"""
    key_messages: List[str]
    discussion: str
    hazards: List[Hazard]
    aviation: str
    issue_time: str
    forecaster: str
    raw_text: str


@dataclass
class HourlyForecast:
    """One hour of the tabular digital forecast"""
    hour: int
    date: str
    temperature: float
    dewpoint: float
    humidity: float
    wind_speed: float
    wind_direction: str
    sky_cover: float
    precip_probability: float
    weather_description: str


@dataclass
class CurrentConditions:
    """Conditions for the first forecast hour"""
    temperature: float
    dewpoint: float
    humidity: float
    wind_speed: float
    wind_direction: str
    sky_cover: float
    conditions: str
    observation_time: str


@dataclass
class ForecastData:
    """Parsed digital forecast"""
    hourly: List[HourlyForecast]
    current: CurrentConditions
    raw_text: str


@dataclass
class WeatherRecord:
    """Typed weather package handed to narration"""
    discussion: DiscussionData
    forecast: ForecastData
    fetched_at: str
    is_stale: bool = False
    stale_age: Optional[int] = None

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> 'WeatherRecord':
        disc = dict(data['discussion'])
        disc['hazards'] = [Hazard(**h) for h in disc.get('hazards', [])]
        fc = dict(data['forecast'])
        fc['hourly'] = [HourlyForecast(**h) for h in fc.get('hourly', [])]
        fc['current'] = CurrentConditions(**fc['current'])
        return cls(
            discussion=DiscussionData(**disc),
            forecast=ForecastData(**fc),
            fetched_at=data['fetched_at'],
            is_stale=data.get('is_stale', False),
            stale_age=data.get('stale_age'),
        )


@dataclass
class WeatherFetchResult:
    """Outcome of weather acquisition"""
    success: bool
    data: Optional[WeatherRecord] = None
    error: Optional[str] = None
    used_fallback: bool = False


@dataclass
class WeatherSnapshot:
    """A previously fetched weather package kept for fallback"""
    id: str
    location: str
    fetched_at: str
    episode_id: Optional[str] = None
    discussion_raw: Optional[str] = None
    forecast_raw: Optional[str] = None
    parsed_data: Optional[str] = None
    issued_at: Optional[str] = None


@dataclass
class CacheEntry:
    """Artifact cache row, addressed by (fingerprint, category, epoch)"""
    id: str
    fingerprint: str
    category: ImageCategory
    epoch: int
    artifact_path: str
    descriptor: str
    generator: str
    created_at: Optional[str] = None
    last_used_at: Optional[str] = None
    use_count: int = 1

    def __post_init__(self):
        # Raises ValueError for anything outside the closed set
        self.category = ImageCategory(self.category)
        if isinstance(self.epoch, bool) or not isinstance(self.epoch, int):
            raise ValueError(f"epoch must be an integer, got {self.epoch!r}")
        if self.epoch < 1:
            raise ValueError(f"epoch must be >= 1, got {self.epoch}")
        if not self.fingerprint:
            raise ValueError("fingerprint is required")


@dataclass
class Cue:
    """Narrative marker with a prompt and an advisory duration in seconds"""
    index: int
    description: str
    duration: float = 5.0
    category: ImageCategory = ImageCategory.ATMOSPHERIC
    position: int = 0
    context_text: str = ""


@dataclass
class NarrationResult:
    """Narration text and the cues embedded in it"""
    text: str
    cues: List[Cue]
    word_count: int = 0
    estimated_duration_secs: int = 0


@dataclass
class Segment:
    """Span of frames showing one image; end_frame is exclusive"""
    start_frame: int
    end_frame: int
    image_path: str
    caption: Optional[str] = None

    @property
    def duration_frames(self) -> int:
        return self.end_frame - self.start_frame


@dataclass
class WeatherSummary:
    """Closing-slide summary"""
    temperature: str
    conditions: str
    wind: str
    hazards: List[str] = field(default_factory=list)
    outlook: str = ""


@dataclass
class Timeline:
    """Frame-accurate schedule of segments over the audio track"""
    segments: List[Segment]
    total_frames: int
    fps: int
    audio_path: str
    audio_duration: float
    broadcast_date: str = ""
    location: str = ""
    weather_summary: Optional[WeatherSummary] = None

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        for seg_dict, seg in zip(data['segments'], self.segments):
            seg_dict['duration_frames'] = seg.duration_frames
        return data


@dataclass
class PipelineResult:
    """What a pipeline run reports back to its caller"""
    success: bool
    episode: Optional[Episode] = None
    audio_path: Optional[str] = None
    video_path: Optional[str] = None
    error: Optional[str] = None
    skipped: bool = False
    # Set when the run was asked to stop early; the episode resumes from here
    stopped_after: Optional[EpisodeStage] = None
