"""Extract [GRAPHIC: ...] cues from narration scripts"""

import re
from typing import List

from ..models import Cue, ImageCategory

DEFAULT_CUE_SECONDS = 5
WORDS_PER_MINUTE = 150

# [GRAPHIC: description | DURATION: 8s] or [GRAPHIC: description]
CUE_PATTERN = re.compile(
    r'\[GRAPHIC:\s*([^|\]]+?)\s*(?:\|\s*DURATION:\s*(\d+(?:\.\d+)?)\s*s?\s*)?\]',
    re.IGNORECASE
)
ANY_CUE = re.compile(r'\[GRAPHIC:[^\]]+\]', re.IGNORECASE)
PAUSE = re.compile(r'\[pause\]', re.IGNORECASE)

CHARACTER_WORDS = ('host', 'broadcaster', 'anchor', 'presenter', 'studio')
WEATHER_GRAPHIC_WORDS = (
    'temperature', 'wind', 'humidity', 'forecast', 'conditions', 'hazard',
    'warning', 'watch', 'radar', 'map', '°',
)
ATMOSPHERIC_WORDS = ('background', 'scene', 'sky', 'sunset', 'sunrise', 'night')


def infer_category(description: str) -> ImageCategory:
    """Pick the visual treatment for a cue description"""
    lower = description.lower()
    if any(word in lower for word in CHARACTER_WORDS):
        return ImageCategory.CHARACTER
    if any(word in lower for word in WEATHER_GRAPHIC_WORDS):
        return ImageCategory.WEATHER_GRAPHIC
    return ImageCategory.ATMOSPHERIC


def _context_text(script: str, start: int, end: int, radius: int = 100) -> str:
    """Narration around a cue; markers are stripped before the window is cut"""
    before = PAUSE.sub('', ANY_CUE.sub('', script[:start]))[-radius:]
    after = PAUSE.sub('', ANY_CUE.sub('', script[end:]))[:radius]
    return re.sub(r'\s+', ' ', f"{before} {after}").strip()


def parse_cues(script: str) -> List[Cue]:
    """Parse graphic cues in script order"""
    cues = []
    for index, match in enumerate(CUE_PATTERN.finditer(script or "")):
        description = match.group(1).strip()
        duration = float(match.group(2)) if match.group(2) else float(DEFAULT_CUE_SECONDS)
        cues.append(Cue(
            index=index,
            description=description,
            duration=duration,
            category=infer_category(description),
            position=match.start(),
            context_text=_context_text(script, match.start(), match.end()),
        ))
    return cues


def remove_cues(script: str) -> str:
    """Strip graphic cues and collapse whitespace"""
    return re.sub(r'\s+', ' ', ANY_CUE.sub('', script)).strip()


def extract_audio_script(script: str) -> str:
    """Clean text for speech synthesis: no cues, pauses as ellipses, no emphasis markers"""
    text = ANY_CUE.sub('', script)
    text = PAUSE.sub(' ... ', text)
    text = re.sub(r'\*([^*]+)\*', r'\1', text)
    return re.sub(r'\s+', ' ', text).strip()


def count_words(script: str) -> int:
    cleaned = remove_cues(PAUSE.sub('', script))
    return len([word for word in cleaned.split() if word])


def estimate_duration(script: str) -> int:
    """Seconds of speech at an average speaking rate"""
    return round(count_words(script) / WORDS_PER_MINUTE * 60)
