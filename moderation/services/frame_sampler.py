"""
Frame Sampler

Hybrid sampling: fixed-interval timestamps picked from a duration table,
topped up with scene-change timestamps that are not already covered.
"""
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional
from moderation.config import SamplingConfig
from moderation.services.media_toolkit import FFmpegToolkit
import logging

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FrameSample:
    timestamp: float
    path: Path


def sampling_interval(duration: float, config: SamplingConfig) -> int:
    """Interval in seconds for a video of the given duration"""
    for max_duration, interval in config.interval_table:
        if duration <= max_duration:
            return interval
    return config.fallback_interval


def regular_timestamps(duration: float, config: SamplingConfig) -> List[float]:
    """
    Timestamps from first_offset, stepping by the interval, strictly below duration.
    A near-zero duration falls back to the midpoint.
    """
    interval = sampling_interval(duration, config)
    timestamps = []
    i = 0
    while True:
        t = round(config.first_offset + i * interval, config.timestamp_precision)
        if t >= duration:
            break
        timestamps.append(t)
        i += 1

    if not timestamps and duration > 0:
        timestamps.append(round(duration / 2, config.timestamp_precision))
    return timestamps


def merge_timestamps(regular: List[float], scene_changes: List[float], window: float) -> List[float]:
    """
    Add scene-change timestamps that are at least `window` seconds away from
    every timestamp already kept, then sort.
    """
    merged = list(regular)
    for st in scene_changes:
        if not any(abs(t - st) < window for t in merged):
            merged.append(st)
    merged.sort()
    return merged


class FrameSampler:
    def __init__(self, toolkit: FFmpegToolkit, config: Optional[SamplingConfig] = None):
        self.toolkit = toolkit
        self.config = config or SamplingConfig()

    async def plan(self, video_path: str, duration: float) -> List[float]:
        """Merged, ascending timestamps to sample; scene detection failure is non-fatal"""
        regular = regular_timestamps(duration, self.config)

        try:
            scene_changes = await self.toolkit.detect_scene_changes(
                video_path, duration, self.config.scene_threshold
            )
        except Exception as e:
            logger.warning(f"Scene detection failed, continuing without: {e}")
            scene_changes = []

        timestamps = merge_timestamps(regular, scene_changes, self.config.dedupe_window)
        logger.info(
            f"Frame plan: {len(regular)} regular + {len(scene_changes)} scene-change "
            f"-> {len(timestamps)} unique timestamps for {duration}s video"
        )
        return timestamps

    async def sample(self, video_path: str, duration: float, output_dir: Path) -> List[FrameSample]:
        """
        Extract one frame per planned timestamp, in order.
        Individual failures are skipped; if nothing was extracted a single
        frame from the start of the file is attempted. May return an empty list.
        """
        output_dir = Path(output_dir)
        output_dir.mkdir(parents=True, exist_ok=True)

        frames: List[FrameSample] = []
        for i, timestamp in enumerate(await self.plan(video_path, duration)):
            output_path = output_dir / f"frame_{i:04d}.jpg"
            try:
                await self.toolkit.extract_frame(video_path, timestamp, output_path)
                frames.append(FrameSample(timestamp=timestamp, path=output_path))
            except Exception as e:
                logger.warning(f"Failed to extract frame at {timestamp}s, skipping: {e}")

        if not frames:
            logger.warning("No frames could be extracted - falling back to single frame at t=0")
            fallback_path = output_dir / "frame_fallback.jpg"
            try:
                await self.toolkit.extract_frame(video_path, None, fallback_path)
                frames.append(FrameSample(timestamp=0.0, path=fallback_path))
            except Exception as e:
                logger.warning(f"Fallback frame extraction also failed: {e}")

        logger.info(f"Extracted {len(frames)} frames")
        return frames
