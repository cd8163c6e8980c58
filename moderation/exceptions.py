"""Exception hierarchy for the moderation pipeline."""

from typing import List, Optional

# Substrings of ffmpeg errors that mean the container has no usable audio
NO_AUDIO_MARKERS = (
    "does not contain any stream",
    "no audio",
    "Conversion failed",
    "Invalid data",
    "matches no streams",
)


class ModerationError(Exception):
    """Base exception for moderation errors."""

    pass


class ExtractionError(ModerationError):
    """Raised when a source file cannot be probed for metadata."""

    pass


class SourceMissingError(ModerationError):
    """Raised when the video file is absent on disk."""

    def __init__(self, filepath: str):
        super().__init__("Video file not found on disk")
        self.filepath = filepath


class MediaToolkitError(ModerationError):
    """Raised when an ffmpeg or ffprobe invocation fails."""

    def __init__(self, message: str, stderr: Optional[str] = None):
        super().__init__(message)
        self.stderr = stderr


class AudioUnavailableError(MediaToolkitError):
    """Raised when audio extraction fails because there is no usable audio track."""

    pass


class InferenceError(ModerationError):
    """Raised when an inference service call fails."""

    pass


class VideoNotFoundError(ModerationError):
    """Raised when the record store has no such video."""

    def __init__(self, video_id: str):
        super().__init__(f"Video {video_id} not found")
        self.video_id = video_id


class RunInProgressError(ModerationError):
    """Raised when a pipeline run is already active for a video."""

    def __init__(self, video_id: str, run_id: str):
        super().__init__(f"Video {video_id} is already being processed (run {run_id})")
        self.video_id = video_id
        self.run_id = run_id


class PipelineCancelledError(ModerationError):
    """Raised at a stage boundary when the run was asked to stop."""

    def __init__(self):
        super().__init__("Processing cancelled")


class UnsupportedBackendError(ModerationError):
    """Raised when an unsupported inference backend is requested."""

    def __init__(self, backend: str, supported: List[str]):
        super().__init__(f"Backend '{backend}' is not supported. Supported backends: {', '.join(supported)}")
        self.backend = backend
        self.supported = supported


def is_missing_audio(message: str) -> bool:
    """Whether an ffmpeg error message indicates a missing or unsupported audio track"""
    return any(marker in message for marker in NO_AUDIO_MARKERS)
