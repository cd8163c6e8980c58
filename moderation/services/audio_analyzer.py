"""
Audio Analyzer

Extracts the soundtrack, transcribes it and scores profanity density
against a fixed lexicon. Best-effort: every failure resolves to a score of 0.
"""
import asyncio
import re
from pathlib import Path
from typing import Awaitable, Callable, Iterable, Optional
from moderation.config import ClassificationConfig
from moderation.exceptions import AudioUnavailableError
from moderation.services.media_toolkit import FFmpegToolkit
from moderation.services.inference import Transcriber
import logging

logger = logging.getLogger(__name__)

NON_ALPHA = re.compile(r"[^a-z]")


def profanity_score(transcript: str, lexicon: Iterable[str], multiplier: float = 3.0, precision: int = 4) -> float:
    """
    min(1, profane tokens / total tokens * multiplier).
    A token is profane when, stripped to lowercase letters, it contains any lexicon entry.
    """
    tokens = transcript.lower().split()
    if not tokens:
        return 0.0

    lexicon = list(lexicon)
    profane = 0
    for token in tokens:
        cleaned = NON_ALPHA.sub("", token)
        if cleaned and any(word in cleaned for word in lexicon):
            profane += 1

    return min(1.0, round(profane / len(tokens) * multiplier, precision))


class AudioAnalyzer:
    def __init__(
        self,
        toolkit: FFmpegToolkit,
        transcriber: Transcriber,
        config: Optional[ClassificationConfig] = None
    ):
        self.toolkit = toolkit
        self.transcriber = transcriber
        self.config = config or ClassificationConfig()

    async def analyze(
        self,
        video_path: str,
        audio_path: Path,
        on_transcribing: Optional[Callable[[], Awaitable[None]]] = None
    ) -> float:
        """Language score in [0, 1] for the video's audio track; never raises"""
        try:
            try:
                await self.toolkit.extract_audio(video_path, audio_path)
            except AudioUnavailableError as e:
                logger.warning(f"Audio extraction skipped: {e}")
                return 0.0

            if on_transcribing is not None:
                await on_transcribing()

            return await self.score_audio(audio_path)
        except Exception as e:
            logger.warning(f"Audio/language analysis failed, skipping: {e}")
            return 0.0

    async def score_audio(self, audio_path: Path) -> float:
        audio_path = Path(audio_path)
        if not audio_path.exists():
            return 0.0

        audio = await asyncio.to_thread(audio_path.read_bytes)
        if len(audio) < self.config.min_audio_bytes:
            logger.info(f"Audio is {len(audio)} bytes, treating as silence")
            return 0.0

        transcript = await self.transcriber.transcribe(audio)
        if not transcript.strip():
            return 0.0

        score = profanity_score(
            transcript,
            self.config.profanity_lexicon,
            self.config.profanity_multiplier,
            self.config.score_precision
        )
        logger.info(f"Language score {score} from {len(transcript.split())} transcribed words")
        return score

    async def close(self):
        """Cleanup resources"""
        await self.transcriber.close()
