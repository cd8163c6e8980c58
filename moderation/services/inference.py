"""
Inference Services
Capability interfaces for image classification and speech transcription,
plus clients for the Hugging Face hosted inference API
"""
import asyncio
import httpx
from typing import Any, List, Optional, Protocol, Tuple
from moderation.config import Settings, get_settings
from moderation.exceptions import InferenceError, UnsupportedBackendError
import logging

logger = logging.getLogger(__name__)

TRANSCRIBER_BACKENDS = ["huggingface", "whisper"]


class ImageClassifier(Protocol):
    async def classify(self, image: bytes) -> List[Tuple[str, float]]:
        """Return (label, score) pairs for one image"""
        ...

    async def close(self) -> None:
        ...


class Transcriber(Protocol):
    async def transcribe(self, audio: bytes) -> str:
        """Return the transcript text of a WAV payload"""
        ...

    async def close(self) -> None:
        ...


class HuggingFaceInferenceClient:
    """
    Client for one model on the Hugging Face inference API.
    Handles auth, retries on rate limits / server errors, and JSON decoding.
    """

    def __init__(
        self,
        model: str,
        api_token: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: Optional[int] = None,
        max_retries: Optional[int] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        settings = get_settings()
        self.model = model
        self.api_token = api_token if api_token is not None else settings.HUGGINGFACE_API_TOKEN
        self.base_url = (base_url or settings.HUGGINGFACE_BASE_URL).rstrip("/")
        if max_retries is None:
            max_retries = settings.INFERENCE_MAX_RETRIES
        # At least one request is always sent
        self.max_retries = max(1, max_retries)

        headers = {}
        if self.api_token:
            headers["Authorization"] = f"Bearer {self.api_token}"
        else:
            logger.warning("HUGGINGFACE_API_TOKEN not set, inference requests will be anonymous")

        self.client = httpx.AsyncClient(
            timeout=timeout if timeout is not None else settings.INFERENCE_TIMEOUT_SECONDS,
            headers=headers,
            transport=transport
        )

    @property
    def url(self) -> str:
        return f"{self.base_url}/{self.model}"

    async def post(self, data: bytes, content_type: str) -> Any:
        for attempt in range(self.max_retries):
            try:
                response = await self.client.post(
                    self.url,
                    content=data,
                    headers={"Content-Type": content_type}
                )
                response.raise_for_status()
                return response.json()

            except httpx.HTTPStatusError as e:
                status = e.response.status_code
                # 503 is returned while a model is loading
                if (status == 429 or status >= 500) and attempt < self.max_retries - 1:
                    wait_time = 2 ** attempt  # Exponential backoff
                    logger.warning(f"{self.model} returned {status}, retrying in {wait_time}s...")
                    await asyncio.sleep(wait_time)
                    continue
                raise InferenceError(f"{self.model} request failed with status {status}") from e
            except httpx.TransportError as e:
                if attempt < self.max_retries - 1:
                    wait_time = 2 ** attempt
                    logger.warning(f"{self.model} transport error ({e}), retrying in {wait_time}s...")
                    await asyncio.sleep(wait_time)
                    continue
                raise InferenceError(f"{self.model} request failed: {e}") from e
            except ValueError as e:
                raise InferenceError(f"{self.model} returned invalid JSON") from e

        raise InferenceError(f"{self.model} request failed after {self.max_retries} attempts")

    async def close(self):
        await self.client.aclose()


class HuggingFaceImageClassifier(HuggingFaceInferenceClient):
    """Image classification, e.g. Falconsai/nsfw_image_detection"""

    async def classify(self, image: bytes) -> List[Tuple[str, float]]:
        results = await self.post(image, "image/jpeg")
        if not isinstance(results, list):
            raise InferenceError(f"Unexpected classification response from {self.model}: {results!r}")
        return [(str(r.get("label", "")), float(r.get("score", 0.0))) for r in results]


class HuggingFaceTranscriber(HuggingFaceInferenceClient):
    """Automatic speech recognition, e.g. openai/whisper-large-v3"""

    async def transcribe(self, audio: bytes) -> str:
        result = await self.post(audio, "audio/wav")
        if not isinstance(result, dict):
            raise InferenceError(f"Unexpected transcription response from {self.model}: {result!r}")
        return result.get("text") or ""


def build_image_classifier(settings: Optional[Settings] = None) -> ImageClassifier:
    settings = settings or get_settings()
    return HuggingFaceImageClassifier(settings.NSFW_MODEL)


def build_transcriber(settings: Optional[Settings] = None) -> Transcriber:
    """Pick the transcription backend named by TRANSCRIBER_BACKEND"""
    settings = settings or get_settings()
    backend = settings.TRANSCRIBER_BACKEND.lower()

    if backend == "huggingface":
        return HuggingFaceTranscriber(settings.WHISPER_MODEL)
    if backend == "whisper":
        from moderation.services.transcription_service import WhisperTranscriber
        return WhisperTranscriber(settings.LOCAL_WHISPER_MODEL)

    raise UnsupportedBackendError(backend, TRANSCRIBER_BACKENDS)
