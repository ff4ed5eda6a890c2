"""
Text-to-speech via edge-tts.
"""
import logging
from pathlib import Path
from typing import Optional

import edge_tts

from core.errors import RenderError
from rendering.base import SpeechSynthesizer
from rendering.downloader import validate_min_size
from services.retry import RetryPolicy

logger = logging.getLogger(__name__)

DEFAULT_VOICE = "en-US-GuyNeural"


class EdgeSpeechSynthesizer(SpeechSynthesizer):
    def __init__(
        self,
        voice: str = DEFAULT_VOICE,
        *,
        min_bytes: int = 1024,
        retry_policy: Optional[RetryPolicy] = None,
    ):
        self.voice = voice
        self.min_bytes = min_bytes
        self.retry_policy = retry_policy or RetryPolicy(max_attempts=3, base_delay=1.0)

    async def _save(self, text: str, path: Path, voice: str) -> None:
        communicate = edge_tts.Communicate(text, voice)
        await communicate.save(str(path))

    async def synthesize_speech(
        self,
        text: str,
        output_path: str,
        voice: Optional[str] = None,
    ) -> str:
        voice = voice or self.voice
        path = Path(output_path).resolve()
        path.parent.mkdir(parents=True, exist_ok=True)

        logger.info(f"Generating speech ({len(text)} chars, voice={voice}) -> {path}")

        try:
            await self.retry_policy.run(
                lambda: self._save(text, path, voice),
                label="speech-synthesis",
            )
        except Exception as e:
            path.unlink(missing_ok=True)
            raise RenderError(f"Speech synthesis failed: {e}") from e

        validate_min_size(path, self.min_bytes)
        return str(path)
