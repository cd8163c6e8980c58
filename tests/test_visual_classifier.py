import asyncio

from moderation.config import ClassificationConfig
from moderation.services.frame_sampler import FrameSample
from moderation.services.visual_classifier import VisualClassifier, nsfw_score

from .conftest import FakeClassifier


def make_frames(tmp_path, timestamps):
    frames = []
    for i, t in enumerate(timestamps):
        path = tmp_path / f"frame_{i:04d}.jpg"
        path.write_bytes(f"frame@{t}".encode())
        frames.append(FrameSample(timestamp=t, path=path))
    return frames


def test_nsfw_score_label_is_case_insensitive():
    assert nsfw_score([("normal", 0.2), ("NSFW", 0.8)]) == 0.8
    assert nsfw_score([("normal", 1.0)]) == 0.0
    assert nsfw_score([]) == 0.0


def test_scores_frames_in_order(tmp_path):
    frames = make_frames(tmp_path, [0.5, 1.5, 2.5])
    classifier = FakeClassifier({0.5: 0.1, 1.5: 0.9, 2.5: 0.3})

    scores = asyncio.run(VisualClassifier(classifier).score_frames(frames))

    assert scores == [0.1, 0.9, 0.3]


def test_failed_frame_scores_zero_without_touching_others(tmp_path):
    timestamps = [0.5, 1.5, 2.5, 3.5, 4.5, 5.5]
    frames = make_frames(tmp_path, timestamps)
    classifier = FakeClassifier({t: 0.5 for t in timestamps})
    classifier.failing = {1.5}

    scores = asyncio.run(VisualClassifier(classifier).score_frames(frames))

    assert scores == [0.5, 0.0, 0.5, 0.5, 0.5, 0.5]
    assert classifier.calls == 6


def test_unreadable_frame_scores_zero(tmp_path):
    frames = make_frames(tmp_path, [0.5, 1.5])
    frames[0].path.unlink()
    classifier = FakeClassifier({1.5: 0.7})

    scores = asyncio.run(VisualClassifier(classifier).score_frames(frames))

    assert scores == [0.0, 0.7]


def test_reports_progress_per_batch(tmp_path):
    frames = make_frames(tmp_path, [0.5 + i for i in range(10)])
    progress = []

    async def on_batch(done, total):
        progress.append((done, total))

    asyncio.run(VisualClassifier(FakeClassifier(), ClassificationConfig()).score_frames(frames, on_batch))

    assert progress == [(4, 10), (8, 10), (10, 10)]


def test_batch_runs_concurrently_and_batches_sequentially(tmp_path):
    frames = make_frames(tmp_path, [0.5 + i for i in range(6)])
    in_flight = []
    peak = []

    class SlowClassifier:
        async def classify(self, image):
            in_flight.append(image)
            peak.append(len(in_flight))
            await asyncio.sleep(0.05)
            in_flight.remove(image)
            return [("nsfw", 0.2)]

    config = ClassificationConfig(batch_size=3)
    scores = asyncio.run(VisualClassifier(SlowClassifier(), config).score_frames(frames))

    assert scores == [0.2] * 6
    assert max(peak) == 3


def test_no_frames(tmp_path):
    calls = []

    async def on_batch(done, total):
        calls.append(done)

    assert asyncio.run(VisualClassifier(FakeClassifier()).score_frames([], on_batch)) == []
    assert calls == []
