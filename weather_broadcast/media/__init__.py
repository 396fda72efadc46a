"""Media synthesis and rendering collaborators"""

from abc import ABC, abstractmethod
from typing import Optional, Tuple

from ..models import ImageCategory, Timeline
from ..utils.time_context import BroadcastTimeContext


class AudioSynthesizer(ABC):
    """Speech synthesis for narration scripts"""

    @abstractmethod
    async def synthesize(self, text: str, output_path: str) -> Tuple[str, float]:
        """Write audio for text and return (path, measured duration in seconds)"""
        pass


class ImageSynthesizer(ABC):
    """Image generation for graphic cues"""

    @property
    @abstractmethod
    def name(self) -> str:
        """Generator name recorded on cache entries"""
        pass

    @abstractmethod
    async def synthesize(self, descriptor: str, category: ImageCategory, output_path: str,
                         time_context: Optional[BroadcastTimeContext] = None) -> str:
        """Write an image for descriptor, lit for the broadcast time, and return its path"""
        pass


class Compositor(ABC):
    """Renders a timeline and its audio track to a video file"""

    @abstractmethod
    async def render(self, timeline: Timeline, output_path: str) -> str:
        pass
