from pathlib import Path
from typing import Iterable, Optional
from moderation.config import get_settings
import logging

logger = logging.getLogger(__name__)


class StorageService:
    """Run-scoped file layout: sampled frames, extracted audio and thumbnails"""

    def __init__(self, base_path: Optional[Path] = None):
        self.base_path = Path(base_path) if base_path else get_settings().BASE_STORAGE_PATH

    def get_frames_directory(self, video_id: str) -> Path:
        """Directory holding a run's ephemeral frames and audio (not created here)"""
        return self.base_path / "frames" / video_id

    def get_audio_path(self, video_id: str) -> Path:
        return self.get_frames_directory(video_id) / "audio.wav"

    def get_thumbnail_path(self, video_id: str) -> Path:
        path = self.base_path / "thumbnails"
        path.mkdir(parents=True, exist_ok=True)
        return path / f"{video_id}.jpg"

    @staticmethod
    def cleanup_run_files(paths: Iterable[Path], directory: Path) -> None:
        """
        Delete a run's ephemeral files, then the directory if nothing else is left in it.
        Failures are logged, never raised.
        """
        for path in paths:
            try:
                Path(path).unlink(missing_ok=True)
            except OSError as e:
                logger.error(f"Failed to delete {path}: {e}")

        try:
            if directory.exists() and not any(directory.iterdir()):
                directory.rmdir()
                logger.info(f"Deleted directory: {directory}")
        except OSError as e:
            logger.error(f"Failed to remove directory {directory}: {e}")
