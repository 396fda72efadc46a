"""Render a timeline to video with ffmpeg"""

import asyncio
import shutil
from pathlib import Path
from typing import List

from . import Compositor
from ..config import FFMPEG_BINARY, VIDEO_HEIGHT, VIDEO_WIDTH
from ..exceptions import GenerationError
from ..models import Timeline
from ..utils.helpers import correlation_id, ensure_parent_dir, file_exists
from ..utils.logging import get_logger

logger = get_logger(__name__)


def build_concat_list(timeline: Timeline) -> str:
    """ffmpeg concat-demuxer script showing each segment's image for its frame span"""
    lines = ["ffconcat version 1.0"]
    for segment in timeline.segments:
        if segment.duration_frames <= 0:
            continue
        path = Path(segment.image_path).resolve().as_posix().replace("'", r"'\''")
        lines.append(f"file '{path}'")
        lines.append(f"duration {segment.duration_frames / timeline.fps:.6f}")
    # The demuxer ignores the duration of the final entry unless the file is repeated
    if len(lines) > 1:
        lines.append(lines[-2])
    return "\n".join(lines) + "\n"


class FFmpegCompositor(Compositor):
    """Slideshow renderer: timeline images over the narration track"""

    def __init__(self, binary: str = FFMPEG_BINARY, width: int = VIDEO_WIDTH,
                 height: int = VIDEO_HEIGHT):
        self.binary = binary
        self.width = width
        self.height = height

    def _command(self, concat_file: Path, timeline: Timeline, output_path: Path) -> List[str]:
        scale = (f"scale={self.width}:{self.height}:force_original_aspect_ratio=decrease,"
                 f"pad={self.width}:{self.height}:(ow-iw)/2:(oh-ih)/2,format=yuv420p")
        return [
            self.binary,
            '-y',
            '-f', 'concat', '-safe', '0', '-i', str(concat_file),
            '-i', str(timeline.audio_path),
            '-vf', scale,
            '-r', str(timeline.fps),
            '-frames:v', str(timeline.total_frames),
            '-c:v', 'libx264',
            '-c:a', 'aac',
            '-shortest',
            str(output_path),
        ]

    async def render(self, timeline: Timeline, output_path: str) -> str:
        cid = correlation_id()
        if not shutil.which(self.binary):
            raise GenerationError(f"{self.binary} not found on PATH")
        if not file_exists(timeline.audio_path):
            raise GenerationError(f"Audio file not found: {timeline.audio_path}")
        for segment in timeline.segments:
            if segment.duration_frames > 0 and not file_exists(segment.image_path):
                raise GenerationError(f"Image file not found: {segment.image_path}")

        output = ensure_parent_dir(output_path)
        concat_file = output.with_suffix('.ffconcat')
        concat_file.write_text(build_concat_list(timeline), encoding='utf-8')

        logger.info(f"[{cid}] 🎬 Rendering {timeline.total_frames} frames at {timeline.fps}fps...")
        try:
            process = await asyncio.create_subprocess_exec(
                *self._command(concat_file, timeline, output),
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE
            )
            stdout, stderr = await process.communicate()
        finally:
            concat_file.unlink(missing_ok=True)

        if process.returncode != 0:
            logger.error(f"[{cid}] ffmpeg failed: {stderr.decode(errors='replace')[-1000:]}")
            raise GenerationError(f"Video rendering failed with exit code {process.returncode}")
        if not output.exists():
            raise GenerationError(f"Video rendering failed: output file not created at {output}")

        logger.info(f"[{cid}] ✅ Video written: {output}")
        return str(output)
