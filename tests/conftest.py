import asyncio
from pathlib import Path
from typing import Dict, List, Optional

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from moderation.config import ClassificationConfig, SamplingConfig
from moderation.database import Base
from moderation.exceptions import MediaToolkitError
from moderation.services.audio_analyzer import AudioAnalyzer
from moderation.services.broadcaster import ProgressBroadcaster
from moderation.services.classification import ClassificationEngine
from moderation.services.events import EventHub
from moderation.services.frame_sampler import FrameSampler
from moderation.services.media_toolkit import ProbeResult
from moderation.services.pipeline import PipelineOrchestrator
from moderation.services.storage import StorageService
from moderation.services.store import SqlVideoStore
from moderation.services.video_processor import VideoProcessor
from moderation.services.visual_classifier import VisualClassifier

OWNER_ID = "user-1"


class FakeToolkit:
    """Writes small marker files instead of running ffmpeg"""

    def __init__(
        self,
        duration: float = 20.0,
        width: Optional[int] = 1280,
        height: Optional[int] = 720,
        scene_changes: Optional[List[float]] = None,
    ):
        self.duration = duration
        self.width = width
        self.height = height
        self.scene_changes = scene_changes or []
        self.probe_error: Optional[Exception] = None
        self.scene_error: Optional[Exception] = None
        self.audio_error: Optional[Exception] = None
        self.audio_bytes = b"\x00" * 4000
        self.failing_timestamps = set()
        self.fail_all_frames = False
        self.fail_thumbnail = False
        self.frame_calls: List[Optional[float]] = []
        self.thumbnail_calls: List[float] = []

    async def probe(self, path: str) -> ProbeResult:
        if self.probe_error:
            raise self.probe_error
        return ProbeResult(duration=self.duration, width=self.width, height=self.height)

    async def detect_scene_changes(self, path: str, duration: float, threshold: float) -> List[float]:
        if self.scene_error:
            raise self.scene_error
        return list(self.scene_changes)

    async def extract_frame(self, path, timestamp, output_path, width=None) -> None:
        if width is not None:
            self.thumbnail_calls.append(timestamp)
            if self.fail_thumbnail:
                raise MediaToolkitError("thumbnail failed")
        else:
            self.frame_calls.append(timestamp)
            if self.fail_all_frames or timestamp in self.failing_timestamps:
                raise MediaToolkitError(f"cannot seek to {timestamp}")
        Path(output_path).parent.mkdir(parents=True, exist_ok=True)
        Path(output_path).write_bytes(f"frame@{timestamp}".encode())

    async def extract_audio(self, path, output_path) -> None:
        if self.audio_error:
            raise self.audio_error
        Path(output_path).parent.mkdir(parents=True, exist_ok=True)
        Path(output_path).write_bytes(self.audio_bytes)


class FakeClassifier:
    """Scores frames by the timestamp encoded in the fake frame bytes"""

    def __init__(self, scores: Optional[Dict[float, float]] = None, label: str = "nsfw"):
        self.scores = scores or {}
        self.label = label
        self.failing = set()
        self.calls = 0
        self.closed = False

    async def classify(self, image: bytes):
        self.calls += 1
        marker = image.decode().split("@", 1)[1]
        timestamp = None if marker == "None" else float(marker)
        if timestamp in self.failing:
            raise RuntimeError(f"inference failed for {timestamp}")
        score = self.scores.get(timestamp, 0.0)
        return [(self.label, score), ("normal", 1.0 - score)]

    async def close(self) -> None:
        self.closed = True


class FakeTranscriber:
    def __init__(self, text: str = ""):
        self.text = text
        self.error: Optional[Exception] = None
        self.calls = 0
        self.closed = False

    async def transcribe(self, audio: bytes) -> str:
        self.calls += 1
        if self.error:
            raise self.error
        return self.text

    async def close(self) -> None:
        self.closed = True


@pytest.fixture
def session_factory():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield sessionmaker(autocommit=False, autoflush=False, bind=engine)
    engine.dispose()


@pytest.fixture
def store(session_factory):
    return SqlVideoStore(session_factory)


@pytest.fixture
def source_file(tmp_path):
    path = tmp_path / "uploads" / "clip.mp4"
    path.parent.mkdir(parents=True)
    path.write_bytes(b"not really a video")
    return path


@pytest.fixture
def video(store, source_file):
    return store.create(owner_id=OWNER_ID, filepath=str(source_file), title="Clip")


@pytest.fixture
def toolkit():
    return FakeToolkit()


@pytest.fixture
def classifier():
    return FakeClassifier()


@pytest.fixture
def transcriber():
    return FakeTranscriber()


@pytest.fixture
def hub():
    return EventHub(queue_size=1000)


@pytest.fixture
def storage(tmp_path):
    return StorageService(tmp_path / "storage")


@pytest.fixture
def orchestrator(store, hub, toolkit, classifier, transcriber, storage):
    sampling = SamplingConfig()
    classification = ClassificationConfig()
    return PipelineOrchestrator(
        store=store,
        broadcaster=ProgressBroadcaster(store, hub),
        processor=VideoProcessor(toolkit, sampling),
        sampler=FrameSampler(toolkit, sampling),
        visual=VisualClassifier(classifier, classification),
        audio=AudioAnalyzer(toolkit, transcriber, classification),
        engine=ClassificationEngine(classification),
        storage=storage,
    )


def drain(queue: asyncio.Queue) -> list:
    events = []
    while not queue.empty():
        events.append(queue.get_nowait())
    return events
