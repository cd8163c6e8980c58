from dataclasses import dataclass
import math
from pathlib import Path
from typing import Optional
from moderation.config import SamplingConfig
from moderation.exceptions import ExtractionError
from moderation.services.media_toolkit import FFmpegToolkit
import logging

logger = logging.getLogger(__name__)

DEFAULT_WIDTH = 1920
DEFAULT_HEIGHT = 1080


def round_half_up(seconds: float) -> int:
    """Whole seconds, halves rounded up"""
    return int(math.floor(seconds + 0.5))


@dataclass(frozen=True)
class VideoMetadata:
    duration: int  # whole seconds
    width: int
    height: int


class VideoProcessor:
    """Metadata extraction and thumbnail generation"""

    def __init__(self, toolkit: FFmpegToolkit, sampling: Optional[SamplingConfig] = None):
        self.toolkit = toolkit
        self.sampling = sampling or SamplingConfig()

    async def extract_metadata(self, video_path: str) -> VideoMetadata:
        """
        Probe the file for duration and resolution.
        Falls back to 1920x1080 when no video stream is reported.
        Raises ExtractionError if the probe itself fails.
        """
        try:
            probe = await self.toolkit.probe(video_path)
        except Exception as e:
            logger.error(f"Metadata extraction failed for {video_path}: {e}")
            raise ExtractionError(f"Metadata extraction failed: {e}") from e

        metadata = VideoMetadata(
            duration=round_half_up(probe.duration),
            width=probe.width or DEFAULT_WIDTH,
            height=probe.height or DEFAULT_HEIGHT
        )
        logger.info(f"Extracted metadata from {video_path}: {metadata}")
        return metadata

    async def generate_thumbnail(self, video_path: str, output_path: Path, duration: int) -> Optional[str]:
        """
        Extract one scaled preview frame near the start of the video.
        Best-effort: returns None instead of raising.
        """
        seek = min(self.sampling.thumbnail_seek, duration)
        try:
            await self.toolkit.extract_frame(
                video_path,
                seek,
                output_path,
                width=self.sampling.thumbnail_width
            )
            logger.info(f"Thumbnail created: {output_path}")
            return str(output_path)
        except Exception as e:
            logger.warning(f"Thumbnail generation failed, continuing without: {e}")
            return None
