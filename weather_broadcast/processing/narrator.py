"""Broadcast narration using OpenAI's chat API"""

import asyncio
from typing import Optional

from . import NarrationGenerator
from .cue_parser import WORDS_PER_MINUTE, count_words, estimate_duration, parse_cues
from ..config import (
    NARRATION_MODEL, NARRATION_TEMPERATURE, TARGET_DURATION_SECS, validate_api_keys
)
from ..exceptions import GenerationError
from ..fetchers.weather_parser import format_weather_for_script
from ..models import NarrationResult, WeatherRecord
from ..utils.clients import get_openai_client, is_dry_run
from ..utils.helpers import correlation_id
from ..utils.logging import get_logger

logger = get_logger(__name__)

HOST_NAME = "Elliot Skyfall"

SYSTEM_PROMPT = (
    f"You are {HOST_NAME}, a seasoned weather broadcaster with a calm, resonant voice. "
    "You write scripts meant to be read aloud, never markdown documents."
)

DRY_RUN_SCRIPT = (
    "Good evening. This is a dry-run broadcast. [pause] "
    "[GRAPHIC: Current conditions - temperature and sky | DURATION: 5s] "
    "In normal operation this would be the narrated forecast. "
    "[GRAPHIC: Night sky over the city | DURATION: 5s] "
    "Until tomorrow, clear skies."
)


def build_prompt(weather_text: str, context: dict,
                 target_duration_secs: int = TARGET_DURATION_SECS) -> str:
    """Assemble the narration prompt from formatted weather and broadcast metadata"""
    target_words = round(target_duration_secs / 60 * WORDS_PER_MINUTE)
    min_words = round(target_words * 0.8)
    max_words = round(target_words * 1.2)

    time_context = context.get('time_context')
    location = context.get('location')
    place = location.name if location is not None else "your city"
    greeting = time_context.greeting if time_context is not None else f"Good evening, {place}"
    tone = time_context.atmospheric_tone if time_context is not None else "late-night intimacy"

    stale_line = ""
    stale_instructions = ""
    if context.get('is_stale'):
        stale_line = (f"- Data Note: Using cached weather data from "
                      f"{context.get('stale_age')} hours ago (fresh data unavailable)\n")
        stale_instructions = (
            "\n7. Stale Data: Since you're working from cached data, acknowledge it "
            "naturally, e.g. that the latest observations were unavailable at broadcast time.\n"
        )

    return f"""You are delivering the weather broadcast for {place}.

## BROADCAST METADATA

- Date: {context.get('broadcast_date')}
- Time: {context.get('broadcast_time')}
- Episode: #{context.get('episode_number')}
{stale_line}
## WEATHER DATA

{weather_text}

## OUTPUT REQUIREMENTS

1. Length: Target {target_words} words ({min_words}-{max_words} range), about {round(target_duration_secs / 60)} minutes spoken.

2. Structure:
   - Opening: "{greeting}. This is {HOST_NAME}." with the date and time
   - Current Conditions: vivid, sensory description
   - Forecast Discussion: accessible narrative of what's coming
   - Hazard Warnings: clear, calm, actionable (only if any are active)
   - Closing: signature sign-off

3. Graphic Cues: insert markers in this exact format:
   [GRAPHIC: brief description | DURATION: Xs]
   Include 3-5 graphics covering current conditions, temperature and wind, any hazards, and the outlook.

4. Pauses: mark natural pauses with [pause]

5. Emphasis: mark key words with *asterisks*

6. Tone: {tone}. Avoid weather-anchor cliches and forced enthusiasm.
{stale_instructions}
Generate the broadcast script now."""


class OpenAINarrator(NarrationGenerator):
    """Generate narration scripts with a chat model"""

    def __init__(self, model: str = NARRATION_MODEL, temperature: float = NARRATION_TEMPERATURE,
                 max_tokens: int = 2000, target_duration_secs: int = TARGET_DURATION_SECS):
        self.model = model
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.target_duration_secs = target_duration_secs

    async def generate(self, weather: WeatherRecord, context: dict) -> NarrationResult:
        weather_text = format_weather_for_script(weather, context.get('time_context'))
        prompt = build_prompt(weather_text, context, self.target_duration_secs)
        script = await self._call_openai_api(prompt)

        cues = parse_cues(script)
        logger.info(f"📝 Script generated: {count_words(script)} words, {len(cues)} graphic cues")
        return NarrationResult(
            text=script,
            cues=cues,
            word_count=count_words(script),
            estimated_duration_secs=estimate_duration(script),
        )

    async def _call_openai_api(self, prompt: str) -> str:
        cid = correlation_id()

        if is_dry_run():
            logger.info(f"[{cid}] 🧪 DRY RUN: Skipping OpenAI narration API call")
            return DRY_RUN_SCRIPT

        validate_api_keys('script')
        client = get_openai_client()
        loop = asyncio.get_running_loop()

        def sync_api_call():
            return client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": SYSTEM_PROMPT},
                    {"role": "user", "content": prompt},
                ],
                max_tokens=self.max_tokens,
                temperature=self.temperature,
            )

        try:
            response = await loop.run_in_executor(None, sync_api_call)
        except Exception as e:
            logger.error(f"[{cid}] Narration API call failed: {e}")
            raise GenerationError(f"Narration failed: {e}") from e

        content: Optional[str] = None
        if response and response.choices:
            content = response.choices[0].message.content
        if not content:
            raise GenerationError("Empty response from narration model")

        logger.info(f"[{cid}] ✅ Narration generated: {len(content)} characters")
        return content
