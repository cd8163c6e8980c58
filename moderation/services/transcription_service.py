from faster_whisper import WhisperModel
from typing import Optional
import asyncio
import io
import logging

logger = logging.getLogger(__name__)


class WhisperTranscriber:
    """Local transcription with faster-whisper, loaded on first use"""

    def __init__(self, model_size: str = "base", device: str = "cpu", compute_type: str = "int8"):
        # Options: tiny, base, small, medium, large
        self.model_size = model_size
        self.device = device
        self.compute_type = compute_type
        self._model: Optional[WhisperModel] = None

    @property
    def model(self) -> WhisperModel:
        if self._model is None:
            self._model = WhisperModel(self.model_size, device=self.device, compute_type=self.compute_type)
            logger.info(f"WhisperTranscriber initialized with Whisper {self.model_size} model")
        return self._model

    async def transcribe(self, audio: bytes) -> str:
        return await asyncio.to_thread(self._transcribe, audio)

    def _transcribe(self, audio: bytes) -> str:
        segments, info = self.model.transcribe(io.BytesIO(audio), beam_size=5)
        # segments is a lazy generator; decoding happens here
        text = " ".join(segment.text.strip() for segment in segments)
        logger.info(f"Transcribed {len(audio)} bytes of audio (language: {info.language})")
        return text

    async def close(self) -> None:
        self._model = None
