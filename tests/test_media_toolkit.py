import asyncio

import ffmpeg
import pytest

from moderation.exceptions import AudioUnavailableError, MediaToolkitError, is_missing_audio
from moderation.services.media_toolkit import FFmpegToolkit, parse_scene_timestamps
from moderation.services.storage import StorageService

SHOWINFO_LOG = """\
[Parsed_showinfo_1 @ 0x55d] config in time_base: 1/12800, frame_rate: 25/1
[Parsed_showinfo_1 @ 0x55d] n:   0 pts:      0 pts_time:0       duration: 512
[Parsed_showinfo_1 @ 0x55d] n:   1 pts:  52736 pts_time:4.12    duration: 512
[Parsed_showinfo_1 @ 0x55d] n:   2 pts: 118272 pts_time:9.2399  duration: 512
[Parsed_showinfo_1 @ 0x55d] n:   3 pts: 256000 pts_time:20      duration: 512
frame=    4 fps=0.0 q=-0.0 Lsize=N/A time=00:00:20.04
"""


def test_parse_scene_timestamps_keeps_interior_points():
    assert parse_scene_timestamps(SHOWINFO_LOG, 20) == [4.12, 9.24]


def test_parse_scene_timestamps_empty_log():
    assert parse_scene_timestamps("", 20) == []


@pytest.mark.parametrize(
    "message",
    [
        "Output file #0 does not contain any stream",
        "Stream map '0:a' matches no streams.",
        "Conversion failed!",
        "pipe:0: Invalid data found when processing input",
    ],
)
def test_missing_audio_messages(message):
    assert is_missing_audio(message)


def test_other_errors_are_not_missing_audio():
    assert not is_missing_audio("Permission denied")


def test_probe_failure_is_wrapped(monkeypatch):
    def fail(path):
        raise ffmpeg.Error("ffprobe", b"", b"clip.mp4: No such file or directory")

    monkeypatch.setattr(ffmpeg, "probe", fail)

    with pytest.raises(MediaToolkitError) as exc:
        asyncio.run(FFmpegToolkit().probe("clip.mp4"))
    assert "No such file or directory" in str(exc.value)


def test_probe_reads_duration_and_video_stream(monkeypatch):
    monkeypatch.setattr(ffmpeg, "probe", lambda path: {
        "format": {"duration": "12.6"},
        "streams": [
            {"codec_type": "audio"},
            {"codec_type": "video", "width": 640, "height": 360},
        ],
    })

    result = asyncio.run(FFmpegToolkit().probe("clip.mp4"))

    assert result.duration == 12.6
    assert (result.width, result.height) == (640, 360)


def test_probe_without_video_stream(monkeypatch):
    monkeypatch.setattr(ffmpeg, "probe", lambda path: {"format": {"duration": "3"}, "streams": []})

    result = asyncio.run(FFmpegToolkit().probe("clip.mp4"))

    assert result.width is None and result.height is None


def test_audio_extraction_without_audio_track(monkeypatch, tmp_path):
    class FailingStream:
        def output(self, *args, **kwargs):
            return self

        def overwrite_output(self):
            return self

        def run(self, **kwargs):
            raise ffmpeg.Error("ffmpeg", b"", b"Output file #0 does not contain any stream")

    monkeypatch.setattr(ffmpeg, "input", lambda *args, **kwargs: FailingStream())

    with pytest.raises(AudioUnavailableError):
        asyncio.run(FFmpegToolkit().extract_audio("clip.mp4", tmp_path / "audio.wav"))


def test_cleanup_removes_files_and_empty_directory(tmp_path):
    storage = StorageService(tmp_path)
    frames_dir = storage.get_frames_directory("vid")
    frames_dir.mkdir(parents=True)
    files = [frames_dir / "frame_0000.jpg", frames_dir / "audio.wav"]
    for f in files:
        f.write_bytes(b"x")

    storage.cleanup_run_files(files + [frames_dir / "frame_9999.jpg"], frames_dir)

    assert not frames_dir.exists()


def test_cleanup_keeps_directory_with_foreign_files(tmp_path):
    frames_dir = tmp_path / "frames" / "vid"
    frames_dir.mkdir(parents=True)
    (frames_dir / "frame_0000.jpg").write_bytes(b"x")
    (frames_dir / "notes.txt").write_text("keep")

    StorageService.cleanup_run_files([frames_dir / "frame_0000.jpg"], frames_dir)

    assert frames_dir.exists()
    assert not (frames_dir / "frame_0000.jpg").exists()
