"""Text-to-speech for broadcast narration"""

import asyncio
from pathlib import Path
from typing import Tuple

import aiofiles
from pydub import AudioSegment

from . import AudioSynthesizer
from ..config import TTS_MODEL, TTS_VOICE, validate_api_keys
from ..exceptions import GenerationError
from ..processing.cue_parser import extract_audio_script
from ..utils.clients import get_openai_client, is_dry_run
from ..utils.helpers import correlation_id, ensure_parent_dir
from ..utils.logging import get_logger

logger = get_logger(__name__)

# The speech endpoint rejects inputs longer than this
MAX_TTS_CHARS = 4096


def split_for_tts(text: str, limit: int = MAX_TTS_CHARS):
    """Split text at sentence boundaries into chunks under limit"""
    if len(text) <= limit:
        return [text]

    chunks = []
    current = ""
    for sentence in text.replace('! ', '!|').replace('? ', '?|').replace('. ', '.|').split('|'):
        if len(current) + len(sentence) + 1 > limit and current:
            chunks.append(current.strip())
            current = ""
        current += sentence + " "
    if current.strip():
        chunks.append(current.strip())
    return chunks


def measure_duration(audio_path: str) -> float:
    """Duration of an audio file in seconds"""
    audio = AudioSegment.from_file(audio_path)
    duration = len(audio) / 1000.0
    if duration <= 0:
        raise GenerationError(f"Invalid audio duration for {audio_path}: {duration}")
    return duration


class OpenAIAudioSynthesizer(AudioSynthesizer):
    """Synthesize narration with the OpenAI speech API"""

    def __init__(self, model: str = TTS_MODEL, voice: str = TTS_VOICE):
        self.model = model
        self.voice = voice

    async def synthesize(self, text: str, output_path: str) -> Tuple[str, float]:
        cid = correlation_id()
        audio_script = extract_audio_script(text)
        output = ensure_parent_dir(output_path)
        logger.info(f"[{cid}] 🎙️  Synthesizing {len(audio_script)} characters...")

        if is_dry_run():
            logger.info(f"[{cid}] 🧪 DRY RUN: Writing silent audio instead of calling TTS")
            silence = AudioSegment.silent(duration=10_000)
            await asyncio.get_running_loop().run_in_executor(
                None, lambda: silence.export(str(output), format="mp3")
            )
        else:
            validate_api_keys('audio')
            chunks = split_for_tts(audio_script)
            parts = []
            for i, chunk in enumerate(chunks):
                parts.append(await self._synthesize_chunk(chunk, cid, i + 1, len(chunks)))

            if len(parts) == 1:
                async with aiofiles.open(output, 'wb') as f:
                    await f.write(parts[0])
            else:
                await self._write_joined(parts, output)

        loop = asyncio.get_running_loop()
        duration = await loop.run_in_executor(None, measure_duration, str(output))
        logger.info(f"[{cid}] ✅ Audio written: {output} ({duration:.1f}s)")
        return str(output), duration

    async def _synthesize_chunk(self, text: str, cid: str, number: int, total: int) -> bytes:
        client = get_openai_client()
        loop = asyncio.get_running_loop()

        def sync_api_call():
            response = client.audio.speech.create(
                model=self.model,
                voice=self.voice,
                input=text,
                response_format="mp3",
            )
            return response.content

        try:
            logger.debug(f"[{cid}] TTS chunk {number}/{total}")
            return await loop.run_in_executor(None, sync_api_call)
        except Exception as e:
            logger.error(f"[{cid}] Speech synthesis failed on chunk {number}/{total}: {e}")
            raise GenerationError(f"Speech synthesis failed: {e}") from e

    async def _write_joined(self, parts, output: Path) -> None:
        """Concatenate mp3 chunks through pydub so the result has one clean header"""
        temp_files = []
        try:
            for i, data in enumerate(parts):
                temp_path = output.with_name(f"{output.stem}.part{i}.mp3")
                async with aiofiles.open(temp_path, 'wb') as f:
                    await f.write(data)
                temp_files.append(temp_path)

            def join():
                combined = AudioSegment.empty()
                for path in temp_files:
                    combined += AudioSegment.from_file(str(path))
                combined.export(str(output), format="mp3")

            await asyncio.get_running_loop().run_in_executor(None, join)
        finally:
            for path in temp_files:
                path.unlink(missing_ok=True)
