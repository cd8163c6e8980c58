"""
Video Record Store
Persists pipeline state on the `videos` table
"""
from typing import Optional
from sqlalchemy.orm import sessionmaker
from moderation.models.video import Video, VideoRecord, ProcessingStatus, SensitivityClass
from moderation.exceptions import VideoNotFoundError
import logging

logger = logging.getLogger(__name__)

UPDATABLE_FIELDS = frozenset({
    "title",
    "duration",
    "width",
    "height",
    "processing_status",
    "processing_progress",
    "processing_error",
    "sensitivity_classification",
    "sensitivity_score",
    "sensitivity_details",
    "thumbnail_path",
    "is_stream_ready",
})


class SqlVideoStore:
    """Get/update access to persisted videos, one short session per call"""

    def __init__(self, session_factory: sessionmaker):
        self.session_factory = session_factory

    def get(self, video_id: str) -> VideoRecord:
        db = self.session_factory()
        try:
            video = db.query(Video).filter(Video.id == video_id).first()
            if not video:
                raise VideoNotFoundError(video_id)
            return video.to_record()
        finally:
            db.close()

    def update(self, video_id: str, **fields) -> None:
        """
        Apply a partial update.
        Raises ValueError for fields that are not part of the pipeline state.
        """
        unknown = set(fields) - UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Unknown video fields: {sorted(unknown)}")

        db = self.session_factory()
        try:
            video = db.query(Video).filter(Video.id == video_id).first()
            if not video:
                raise VideoNotFoundError(video_id)
            for name, value in fields.items():
                setattr(video, name, value)
            db.commit()
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    def create(
        self,
        owner_id: str,
        filepath: str,
        title: Optional[str] = None,
        video_id: Optional[str] = None
    ) -> VideoRecord:
        """Insert a pending video (upload handling lives outside this service)"""
        db = self.session_factory()
        try:
            video = Video(owner_id=owner_id, filepath=filepath, title=title)
            if video_id:
                video.id = video_id
            db.add(video)
            db.commit()
            db.refresh(video)
            logger.info(f"Created video {video.id} for owner {owner_id}")
            return video.to_record()
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    def reset_for_reprocess(self, video_id: str) -> None:
        """Return a video to its pre-run state so the next run is indistinguishable from a first run"""
        self.update(
            video_id,
            processing_status=ProcessingStatus.PENDING,
            processing_progress=0,
            processing_error=None,
            sensitivity_classification=SensitivityClass.UNPROCESSED,
            sensitivity_score=None,
            sensitivity_details={"adult": 0.0, "language": 0.0},
            thumbnail_path=None,
            is_stream_ready=False,
        )
        logger.info(f"Reset video {video_id} for reprocessing")
