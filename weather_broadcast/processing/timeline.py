"""Build frame-accurate timelines from advisory cue durations and measured audio length"""

import json
import math
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Union

from ..models import Cue, Segment, Timeline, WeatherSummary
from ..utils.helpers import round_half_up
from .cue_parser import DEFAULT_CUE_SECONDS

DEFAULT_FPS = 30
PLACEHOLDER_IMAGE = "placeholder.png"
BLANK_IMAGE = "blank.png"


def cue_image_name(index: int) -> str:
    """File name of the image generated for the cue at index"""
    return f"graphic-{index + 1:02d}.png"


def build_timeline(cues: Sequence[Cue], audio_duration: float, fps: int = DEFAULT_FPS,
                   audio_path: str = "", images_dir: Union[str, Path] = ".",
                   image_paths: Optional[Dict[int, str]] = None,
                   broadcast_date: str = "", location: str = "",
                   weather_summary: Optional[WeatherSummary] = None) -> Timeline:
    """
    Distribute cues across the audio track.

    Cue durations are hints authored before the audio existed; the measured
    audio duration is authoritative. Cue hints are scaled proportionally so
    they sum to the audio duration, every segment is clamped to the total
    frame count, and the last segment absorbs any rounding shortfall. The
    result always starts at frame 0 and ends exactly at total_frames with no
    gaps or overlaps.

    Args:
        cues: Cues in narration order
        audio_duration: Measured audio length in seconds (>= 0)
        fps: Frames per second
        audio_path: Audio file the timeline plays against
        images_dir: Directory holding graphic-NN.png images
        image_paths: Optional explicit image path per cue index
        broadcast_date, location, weather_summary: Metadata for the closing slide

    Returns:
        A Timeline satisfying validate_timeline()
    """
    audio_duration = max(0.0, float(audio_duration))
    images_dir = Path(images_dir)
    image_paths = image_paths or {}
    total_frames = int(math.ceil(audio_duration * fps))

    def make_timeline(segments: List[Segment]) -> Timeline:
        return Timeline(
            segments=segments,
            total_frames=total_frames,
            fps=fps,
            audio_path=str(audio_path),
            audio_duration=audio_duration,
            broadcast_date=broadcast_date,
            location=location,
            weather_summary=weather_summary,
        )

    if not cues:
        return make_timeline([
            Segment(0, total_frames, image_paths.get(0) or str(images_dir / PLACEHOLDER_IMAGE))
        ])

    hints = [cue.duration if cue.duration and cue.duration > 0 else DEFAULT_CUE_SECONDS
             for cue in cues]
    nominal_sum = sum(hints)

    segments = []
    current_frame = 0
    for position, (cue, hint) in enumerate(zip(cues, hints)):
        # hint * (audio_duration / nominal_sum) * fps, ordered to keep exact ties exact
        duration_frames = round_half_up(hint * audio_duration * fps / nominal_sum)
        start_frame = current_frame
        end_frame = min(current_frame + duration_frames, total_frames)
        image_path = image_paths.get(position) or str(images_dir / cue_image_name(position))
        segments.append(Segment(start_frame, end_frame, image_path, caption=cue.description))
        current_frame = end_frame

    if current_frame < total_frames:
        segments[-1].end_frame = total_frames

    return make_timeline(segments)


def validate_timeline(timeline: Timeline) -> List[str]:
    """Return every violated invariant; an empty list means the timeline is valid"""
    problems = []
    segments = timeline.segments
    if not segments:
        return ["timeline has no segments"]

    if segments[0].start_frame != 0:
        problems.append(f"first segment starts at {segments[0].start_frame}, not 0")
    if segments[-1].end_frame != timeline.total_frames:
        problems.append(f"last segment ends at {segments[-1].end_frame}, "
                        f"not {timeline.total_frames}")
    for i, segment in enumerate(segments):
        if segment.duration_frames < 0:
            problems.append(f"segment {i} has negative length")
        if i + 1 < len(segments) and segment.end_frame != segments[i + 1].start_frame:
            problems.append(f"gap or overlap between segments {i} and {i + 1}")
    return problems


def serialize_timeline(timeline: Timeline) -> str:
    return json.dumps(timeline.to_dict(), indent=2)


def deserialize_timeline(data: str) -> Timeline:
    raw = json.loads(data)
    summary = raw.get('weather_summary')
    return Timeline(
        segments=[
            Segment(s['start_frame'], s['end_frame'], s['image_path'], s.get('caption'))
            for s in raw['segments']
        ],
        total_frames=raw['total_frames'],
        fps=raw['fps'],
        audio_path=raw['audio_path'],
        audio_duration=raw['audio_duration'],
        broadcast_date=raw.get('broadcast_date', ''),
        location=raw.get('location', ''),
        weather_summary=WeatherSummary(**summary) if summary else None,
    )
