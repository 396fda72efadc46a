"""Image generation for graphic cues"""

import asyncio
import base64
from typing import Optional

import aiofiles

from . import ImageSynthesizer
from ..config import IMAGE_MODEL, IMAGE_SIZE, validate_api_keys
from ..exceptions import GenerationError
from ..models import ImageCategory
from ..utils.clients import get_openai_client, is_dry_run
from ..utils.helpers import correlation_id, ensure_parent_dir
from ..utils.logging import get_logger
from ..utils.time_context import BroadcastTimeContext

logger = get_logger(__name__)

# 1x1 transparent PNG written in dry-run mode
PLACEHOLDER_PNG = base64.b64decode(
    "iVBORw0KGgoAAAANSUhEUgAAAAEAAAABCAYAAAAfFcSJAAAADUlEQVR42mNkYPhfDwAChwGA60e6kgAAAABJRU5ErkJggg=="
)

LIGHTING = {
    'early-morning': 'deep blue sky giving way to a lighter horizon, first hints of sunrise, stars fading',
    'morning': 'golden sunrise light, warm orange and yellow tones, long shadows',
    'afternoon': 'full daylight, bright blue sky, direct sunlight, high contrast',
    'evening': 'golden hour fading to dusk, orange and pink sky, city lights emerging',
    'late-night': 'deep night, glowing city lights, visible stars, dramatic shadows',
}

CATEGORY_DIRECTIONS = {
    ImageCategory.ATMOSPHERIC: (
        "Create a moody, atmospheric background scene for a weather broadcast. "
        "Evoke mystery and contemplation with a cinematic composition.\n\nScene concept: {prompt}"
    ),
    ImageCategory.WEATHER_GRAPHIC: (
        "Create a purely visual weather scene that shows the conditions through imagery: "
        "swaying trees for wind, falling flakes for snow, wet reflective streets for rain, "
        "dramatic clouds for storms. Make it look like a movie still.\n\n"
        "Weather to visualize: {prompt}"
    ),
    ImageCategory.CHARACTER: (
        "Create a stylized portrait of a mysterious radio weather broadcaster. "
        "Film noir meets 1990s talk radio, dramatic side lighting, vintage radio equipment "
        "with glowing dials in the background.\n\nCharacter notes: {prompt}"
    ),
}


def build_style_prompt(prompt: str, category: ImageCategory,
                       time_context: Optional[BroadcastTimeContext] = None) -> str:
    """Wrap a cue description in the house style for its category and time of day"""
    time_of_day = time_context.time_of_day if time_context is not None else 'late-night'
    mood = ', '.join(time_context.image_mood) if time_context is not None else 'mysterious, contemplative'

    return "\n".join([
        "Do not include any text, words, letters, numbers or labels in this image.",
        "Style: cinematic, broadcast quality, 16:9 aspect ratio.",
        f"Lighting: {LIGHTING[time_of_day]}",
        f"Mood keywords: {mood}",
        "",
        CATEGORY_DIRECTIONS[ImageCategory(category)].format(prompt=prompt),
    ])


def write_blank_image(output_path: str) -> str:
    """Write the blank frame shown when image generation is switched off"""
    output = ensure_parent_dir(output_path)
    output.write_bytes(PLACEHOLDER_PNG)
    return str(output)


class OpenAIImageSynthesizer(ImageSynthesizer):
    """Generate cue images with the OpenAI images API"""

    def __init__(self, model: str = IMAGE_MODEL, size: str = IMAGE_SIZE):
        self.model = model
        self.size = size

    @property
    def name(self) -> str:
        # Placeholder images must never share cache entries with real ones
        if is_dry_run():
            return f"{self.model}-dry-run"
        return self.model

    async def synthesize(self, descriptor: str, category: ImageCategory, output_path: str,
                         time_context: Optional[BroadcastTimeContext] = None) -> str:
        cid = correlation_id()
        output = ensure_parent_dir(output_path)

        if is_dry_run():
            logger.info(f"[{cid}] 🧪 DRY RUN: Writing placeholder image for '{descriptor[:40]}'")
            image_bytes = PLACEHOLDER_PNG
        else:
            validate_api_keys('image')
            image_bytes = await self._generate(descriptor, category, time_context, cid)

        async with aiofiles.open(output, 'wb') as f:
            await f.write(image_bytes)
        logger.info(f"[{cid}] 🖼️  Image written: {output}")
        return str(output)

    async def _generate(self, descriptor: str, category: ImageCategory,
                        time_context: Optional[BroadcastTimeContext], cid: str) -> bytes:
        client = get_openai_client()
        prompt = build_style_prompt(descriptor, category, time_context)
        loop = asyncio.get_running_loop()

        def sync_api_call():
            return client.images.generate(
                model=self.model,
                prompt=prompt,
                size=self.size,
                n=1,
            )

        try:
            response = await loop.run_in_executor(None, sync_api_call)
        except Exception as e:
            logger.error(f"[{cid}] Image generation failed: {e}")
            raise GenerationError(f"Image generation failed: {e}") from e

        if not response.data or not response.data[0].b64_json:
            raise GenerationError("No image data in response")
        return base64.b64decode(response.data[0].b64_json)
