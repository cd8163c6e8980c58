"""
Media Toolkit adapter over ffmpeg / ffprobe.

Every call runs the blocking ffmpeg process in a worker thread so that a
pipeline run only suspends at these boundaries.
"""
import asyncio
import re
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

import ffmpeg
import logging

from moderation.exceptions import AudioUnavailableError, MediaToolkitError, is_missing_audio

logger = logging.getLogger(__name__)

PTS_TIME_PATTERN = re.compile(r"pts_time:\s*([\d.]+)")


@dataclass(frozen=True)
class ProbeResult:
    duration: float
    width: Optional[int] = None
    height: Optional[int] = None


def _stderr_text(error: ffmpeg.Error) -> str:
    return error.stderr.decode(errors="replace") if error.stderr else str(error)


class FFmpegToolkit:
    """probe / extract_frame / extract_audio / detect_scene_changes"""

    async def probe(self, path: str) -> ProbeResult:
        return await asyncio.to_thread(self._probe, path)

    async def extract_frame(
        self,
        path: str,
        timestamp: Optional[float],
        output_path: Path,
        width: Optional[int] = None
    ) -> None:
        await asyncio.to_thread(self._extract_frame, path, timestamp, output_path, width)

    async def extract_audio(self, path: str, output_path: Path) -> None:
        await asyncio.to_thread(self._extract_audio, path, output_path)

    async def detect_scene_changes(self, path: str, duration: float, threshold: float) -> List[float]:
        return await asyncio.to_thread(self._detect_scene_changes, path, duration, threshold)

    @staticmethod
    def _probe(path: str) -> ProbeResult:
        try:
            probe = ffmpeg.probe(path)
        except ffmpeg.Error as e:
            raise MediaToolkitError(f"ffprobe failed: {_stderr_text(e)}", _stderr_text(e))

        video_stream = next(
            (s for s in probe.get('streams', []) if s.get('codec_type') == 'video'),
            None
        )
        width = height = None
        if video_stream:
            width = int(video_stream['width']) if video_stream.get('width') else None
            height = int(video_stream['height']) if video_stream.get('height') else None

        return ProbeResult(
            duration=float(probe.get('format', {}).get('duration', 0) or 0),
            width=width,
            height=height
        )

    @staticmethod
    def _extract_frame(path: str, timestamp: Optional[float], output_path: Path, width: Optional[int]) -> None:
        Path(output_path).parent.mkdir(parents=True, exist_ok=True)

        stream = ffmpeg.input(path, ss=timestamp) if timestamp is not None else ffmpeg.input(path)
        if width:
            stream = stream.filter('scale', width, -2)  # Keep aspect ratio

        try:
            (
                stream
                .output(str(output_path), vframes=1, format='image2', **{'q:v': 2})
                .overwrite_output()
                .run(capture_stdout=True, capture_stderr=True)
            )
        except ffmpeg.Error as e:
            stderr = _stderr_text(e)
            raise MediaToolkitError(f"Frame extraction failed at {timestamp}s: {stderr.strip()[-300:]}", stderr)

        # Seeking past the last frame exits cleanly without writing anything
        if not Path(output_path).exists():
            raise MediaToolkitError(f"Frame extraction produced no output at {timestamp}s")

    @staticmethod
    def _extract_audio(path: str, output_path: Path) -> None:
        Path(output_path).parent.mkdir(parents=True, exist_ok=True)
        try:
            (
                ffmpeg
                .input(path)
                .output(
                    str(output_path),
                    vn=None,
                    acodec='pcm_s16le',  # 16-bit PCM
                    ac=1,  # Mono channel
                    ar='16000',  # 16kHz sample rate
                    format='wav'
                )
                .overwrite_output()
                .run(capture_stdout=True, capture_stderr=True)
            )
        except ffmpeg.Error as e:
            stderr = _stderr_text(e)
            if is_missing_audio(stderr):
                raise AudioUnavailableError(f"No usable audio track: {stderr.strip()[-300:]}", stderr)
            raise MediaToolkitError(f"Audio extraction failed: {stderr.strip()[-300:]}", stderr)

    @staticmethod
    def _detect_scene_changes(path: str, duration: float, threshold: float) -> List[float]:
        try:
            _, stderr = (
                ffmpeg
                .input(path)
                .output('-', vf=f"select='gt(scene,{threshold})',showinfo", format='null', vsync='vfr')
                .run(capture_stdout=True, capture_stderr=True)
            )
        except ffmpeg.Error as e:
            raise MediaToolkitError(f"Scene detection failed: {_stderr_text(e).strip()[-300:]}", _stderr_text(e))

        return parse_scene_timestamps(stderr.decode(errors="replace"), duration)


def parse_scene_timestamps(showinfo_log: str, duration: float, precision: int = 2) -> List[float]:
    """Pull pts_time values out of showinfo output, keeping those strictly inside (0, duration)"""
    timestamps = []
    for line in showinfo_log.splitlines():
        match = PTS_TIME_PATTERN.search(line)
        if not match:
            continue
        t = float(match.group(1))
        if 0 < t < duration:
            timestamps.append(round(t, precision))
    return timestamps
