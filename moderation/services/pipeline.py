"""
Pipeline Orchestrator

Runs one video through the moderation stages:

    Validate (0-10) -> Metadata + frames + thumbnail (10-30)
    -> Visual analysis (30-60) -> Audio analysis (60-75)
    -> Classify (75-90) -> Finalize (90-100)

Each stage takes the immutable run context and returns an extended copy,
writing its results to the record store as it goes. Validation and metadata
failures (and anything unexpected) abort the run; the analysis stages
degrade to zero scores instead.
"""
import asyncio
import uuid
from dataclasses import dataclass, replace
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional, Tuple
from sqlalchemy.orm import sessionmaker
from moderation.config import Settings, get_settings
from moderation.exceptions import (
    PipelineCancelledError, RunInProgressError, SourceMissingError, VideoNotFoundError
)
from moderation.models.video import ProcessingStatus
from moderation.services.audio_analyzer import AudioAnalyzer
from moderation.services.broadcaster import ProgressBroadcaster
from moderation.services.classification import ClassificationEngine, SensitivityVerdict
from moderation.services.events import EventHub
from moderation.services.frame_sampler import FrameSample, FrameSampler
from moderation.services.inference import build_image_classifier, build_transcriber
from moderation.services.media_toolkit import FFmpegToolkit
from moderation.services.storage import StorageService
from moderation.services.store import SqlVideoStore
from moderation.services.video_processor import VideoMetadata, VideoProcessor
from moderation.services.visual_classifier import VisualClassifier
import logging

logger = logging.getLogger(__name__)

VISUAL_START = 32
VISUAL_SPAN = 28
VISUAL_CAP = 58


@dataclass(frozen=True)
class PipelineContext:
    video_id: str
    owner_id: str
    filepath: str
    frames_dir: Path
    audio_path: Path
    metadata: Optional[VideoMetadata] = None
    frames: Tuple[FrameSample, ...] = ()
    thumbnail_path: Optional[str] = None
    adult_scores: Tuple[float, ...] = ()
    language_score: float = 0.0
    verdict: Optional[SensitivityVerdict] = None

    def ephemeral_paths(self) -> List[Path]:
        """Frames and audio owned by this run, including any written before an abort"""
        paths = {Path(f.path) for f in self.frames}
        if self.frames_dir.exists():
            paths.update(self.frames_dir.glob("frame_*.jpg"))
        paths.add(self.audio_path)
        return sorted(paths)


class RunHandle:
    """Identity and control for one pipeline execution"""

    def __init__(self, video_id: str):
        self.run_id = uuid.uuid4().hex
        self.video_id = video_id
        self.started_at = datetime.utcnow()
        self.status: Optional[ProcessingStatus] = None
        self.task: Optional[asyncio.Task] = None
        self.cancel_requested = False

    def cancel(self) -> None:
        """Ask the run to stop at the next stage boundary"""
        self.cancel_requested = True

    def raise_if_cancelled(self) -> None:
        if self.cancel_requested:
            raise PipelineCancelledError()

    async def wait(self) -> ProcessingStatus:
        if self.task is None:
            raise RuntimeError(f"Run {self.run_id} was never started")
        return await self.task


class PipelineOrchestrator:
    def __init__(
        self,
        store: SqlVideoStore,
        broadcaster: ProgressBroadcaster,
        processor: VideoProcessor,
        sampler: FrameSampler,
        visual: VisualClassifier,
        audio: AudioAnalyzer,
        engine: ClassificationEngine,
        storage: StorageService
    ):
        self.store = store
        self.broadcaster = broadcaster
        self.processor = processor
        self.sampler = sampler
        self.visual = visual
        self.audio = audio
        self.engine = engine
        self.storage = storage
        self._runs: Dict[str, RunHandle] = {}

    # -- single-flight lease -------------------------------------------------

    def active_run(self, video_id: str) -> Optional[RunHandle]:
        return self._runs.get(video_id)

    def _acquire(self, video_id: str) -> RunHandle:
        current = self._runs.get(video_id)
        if current is not None:
            raise RunInProgressError(video_id, current.run_id)
        handle = RunHandle(video_id)
        self._runs[video_id] = handle
        return handle

    def _release(self, handle: RunHandle) -> None:
        if self._runs.get(handle.video_id) is handle:
            del self._runs[handle.video_id]

    # -- entry points ----------------------------------------------------------

    def start(self, video_id: str) -> RunHandle:
        """
        Schedule a run on the current event loop and return its handle.
        Raises VideoNotFoundError / RunInProgressError before anything is scheduled.
        """
        self.store.get(video_id)
        handle = self._acquire(video_id)
        handle.task = asyncio.create_task(self._run(handle))
        return handle

    def reprocess(self, video_id: str) -> RunHandle:
        """Reset the video's processing and classification fields, then start a fresh run"""
        self.store.get(video_id)
        handle = self._acquire(video_id)
        try:
            self.store.reset_for_reprocess(video_id)
        except Exception:
            self._release(handle)
            raise
        handle.task = asyncio.create_task(self._run(handle))
        return handle

    async def run(self, video_id: str) -> ProcessingStatus:
        """Run the pipeline to a terminal state in the caller's task"""
        handle = self._acquire(video_id)
        return await self._run(handle)

    async def _run(self, handle: RunHandle) -> ProcessingStatus:
        try:
            handle.status = await self._execute(handle)
            return handle.status
        finally:
            if handle.status is None:
                handle.status = ProcessingStatus.FAILED
            self._release(handle)

    async def close(self) -> None:
        """Stop in-flight runs, then release the inference clients"""
        tasks = [h.task for h in self._runs.values() if h.task is not None and not h.task.done()]
        for task in tasks:
            task.cancel()
        if tasks:
            logger.info(f"Cancelling {len(tasks)} in-flight run(s) on shutdown")
            await asyncio.gather(*tasks, return_exceptions=True)
        await self.visual.close()
        await self.audio.close()

    # -- run body ------------------------------------------------------------

    async def _execute(self, handle: RunHandle) -> ProcessingStatus:
        video_id = handle.video_id
        try:
            record = self.store.get(video_id)
        except VideoNotFoundError as e:
            logger.error(f"Processing failed for video {video_id}: {e}")
            return ProcessingStatus.FAILED

        ctx = PipelineContext(
            video_id=video_id,
            owner_id=record.owner_id,
            filepath=record.filepath,
            frames_dir=self.storage.get_frames_directory(video_id),
            audio_path=self.storage.get_audio_path(video_id),
        )
        self.broadcaster.begin(video_id)
        logger.info(f"Starting run {handle.run_id} for video {video_id}")

        stages = (
            self._validate,
            self._extract,
            self._analyze_visual,
            self._analyze_audio,
            self._classify,
            self._finalize,
        )
        try:
            for stage in stages:
                handle.raise_if_cancelled()
                ctx = await stage(ctx)
            return ProcessingStatus.COMPLETED
        except asyncio.CancelledError:
            await self._fail(ctx, PipelineCancelledError())
            raise
        except Exception as e:
            await self._fail(ctx, e)
            return ProcessingStatus.FAILED

    async def _progress(self, ctx: PipelineContext, progress: int, message: str) -> None:
        await self.broadcaster.progress(ctx.video_id, ctx.owner_id, progress, message)

    async def _validate(self, ctx: PipelineContext) -> PipelineContext:
        await self._progress(ctx, 5, "Validating upload...")
        if not Path(ctx.filepath).is_file():
            raise SourceMissingError(ctx.filepath)
        await self._progress(ctx, 10, "Upload validated")
        return ctx

    async def _extract(self, ctx: PipelineContext) -> PipelineContext:
        await self._progress(ctx, 15, "Extracting metadata with FFmpeg...")
        metadata = await self.processor.extract_metadata(ctx.filepath)
        self.store.update(
            ctx.video_id,
            duration=metadata.duration,
            width=metadata.width,
            height=metadata.height
        )
        await self._progress(ctx, 20, "Metadata extracted")

        await self._progress(ctx, 25, "Extracting video frames...")
        frames = await self.sampler.sample(ctx.filepath, metadata.duration, ctx.frames_dir)
        ctx = replace(ctx, metadata=metadata, frames=tuple(frames))
        await self._progress(ctx, 28, f"Extracted {len(frames)} frame(s)")

        thumbnail_path = await self.processor.generate_thumbnail(
            ctx.filepath,
            self.storage.get_thumbnail_path(ctx.video_id),
            metadata.duration
        )
        if thumbnail_path:
            self.store.update(ctx.video_id, thumbnail_path=thumbnail_path)

        await self._progress(ctx, 30, "Frame extraction complete")
        return replace(ctx, thumbnail_path=thumbnail_path)

    async def _analyze_visual(self, ctx: PipelineContext) -> PipelineContext:
        await self._progress(ctx, VISUAL_START, "Starting visual sensitivity analysis (NSFW)...")

        async def on_batch(done: int, total: int) -> None:
            progress = min(VISUAL_START + round(done / total * VISUAL_SPAN), VISUAL_CAP)
            await self._progress(ctx, progress, f"Analysed frames {done}/{total} (adult / NSFW)")

        scores = await self.visual.score_frames(ctx.frames, on_batch=on_batch)
        await self._progress(ctx, 60, "Visual analysis complete")
        return replace(ctx, adult_scores=tuple(scores))

    async def _analyze_audio(self, ctx: PipelineContext) -> PipelineContext:
        await self._progress(ctx, 62, "Extracting audio for language analysis...")
        language_score = await self.audio.analyze(
            ctx.filepath,
            ctx.audio_path,
            on_transcribing=lambda: self._progress(ctx, 66, "Transcribing audio for profanity detection...")
        )
        await self._progress(ctx, 75, "All sensitivity analysis complete")
        return replace(ctx, language_score=language_score)

    async def _classify(self, ctx: PipelineContext) -> PipelineContext:
        await self._progress(ctx, 77, "Classifying content...")
        verdict = self.engine.classify(ctx.adult_scores, ctx.language_score)
        self.store.update(
            ctx.video_id,
            sensitivity_classification=verdict.classification,
            sensitivity_score=verdict.score,
            sensitivity_details=verdict.details
        )
        await self._progress(
            ctx, 85, f"Classified as: {verdict.classification.value.upper()} - {verdict.summary()}"
        )
        await self._progress(ctx, 90, "Classification complete")
        return replace(ctx, verdict=verdict)

    async def _finalize(self, ctx: PipelineContext) -> PipelineContext:
        await self._progress(ctx, 95, "Finalising...")
        self.storage.cleanup_run_files(ctx.ephemeral_paths(), ctx.frames_dir)

        self.store.update(
            ctx.video_id,
            is_stream_ready=True,
            processing_status=ProcessingStatus.COMPLETED,
            processing_progress=100
        )
        await self.broadcaster.complete(ctx.video_id, ctx.owner_id, ctx.verdict)
        logger.info(f"Video processed: {ctx.video_id} -> {ctx.verdict.classification.value} - {ctx.verdict.summary()}")
        return ctx

    async def _fail(self, ctx: PipelineContext, error: Exception) -> None:
        message = str(error) or error.__class__.__name__
        logger.error(f"Processing failed for video {ctx.video_id}: {message}")

        self.storage.cleanup_run_files(ctx.ephemeral_paths(), ctx.frames_dir)
        try:
            self.store.update(
                ctx.video_id,
                processing_status=ProcessingStatus.FAILED,
                processing_error=message
            )
        except Exception as e:
            logger.error(f"Could not persist failure for video {ctx.video_id}: {e}")
        await self.broadcaster.error(ctx.video_id, ctx.owner_id, message)


def create_orchestrator(
    session_factory: sessionmaker,
    hub: EventHub,
    settings: Optional[Settings] = None
) -> PipelineOrchestrator:
    """Wire the production pipeline: ffmpeg toolkit + Hugging Face inference"""
    settings = settings or get_settings()
    toolkit = FFmpegToolkit()
    store = SqlVideoStore(session_factory)
    return PipelineOrchestrator(
        store=store,
        broadcaster=ProgressBroadcaster(store, hub),
        processor=VideoProcessor(toolkit, settings.SAMPLING),
        sampler=FrameSampler(toolkit, settings.SAMPLING),
        visual=VisualClassifier(build_image_classifier(settings), settings.CLASSIFICATION),
        audio=AudioAnalyzer(toolkit, build_transcriber(settings), settings.CLASSIFICATION),
        engine=ClassificationEngine(settings.CLASSIFICATION),
        storage=StorageService(settings.BASE_STORAGE_PATH),
    )
