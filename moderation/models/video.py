from sqlalchemy import (
    Column, String, Integer, Float, Boolean, JSON,
    Enum as SQLEnum, Index, Text
)
from moderation.database import Base
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Optional
import enum
import uuid


class ProcessingStatus(str, enum.Enum):
    PENDING = "pending"               # Waiting for a run
    PROCESSING = "processing"         # Run in progress
    COMPLETED = "completed"           # Run finished, stream ready
    FAILED = "failed"                 # Run aborted


class SensitivityClass(str, enum.Enum):
    SAFE = "safe"
    FLAGGED = "flagged"
    UNPROCESSED = "unprocessed"


def _default_details() -> Dict[str, float]:
    return {"adult": 0.0, "language": 0.0}


class Video(Base):
    __tablename__ = "videos"

    # Primary identification
    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    owner_id = Column(String(50), nullable=False)  # Uploading user
    title = Column(String(255))

    # Source file
    filepath = Column(String(500), nullable=False)

    # Technical metadata (null until extracted)
    duration = Column(Integer)  # whole seconds
    width = Column(Integer)
    height = Column(Integer)

    # Processing pipeline
    processing_status = Column(SQLEnum(ProcessingStatus), default=ProcessingStatus.PENDING, nullable=False)
    processing_progress = Column(Integer, default=0, nullable=False)
    processing_error = Column(Text)  # If status = FAILED

    # Sensitivity analysis
    sensitivity_classification = Column(
        SQLEnum(SensitivityClass), default=SensitivityClass.UNPROCESSED, nullable=False
    )
    sensitivity_score = Column(Float)
    sensitivity_details = Column(JSON, default=_default_details)  # {adult, language}

    # Streaming
    thumbnail_path = Column(String(500))
    is_stream_ready = Column(Boolean, default=False, nullable=False)

    # Timestamps
    created_at = Column(String, default=lambda: datetime.utcnow().isoformat(), nullable=False)
    updated_at = Column(String, default=lambda: datetime.utcnow().isoformat(),
                        onupdate=lambda: datetime.utcnow().isoformat(), nullable=False)

    __table_args__ = (
        Index('idx_video_status', 'processing_status'),
        Index('idx_video_owner', 'owner_id'),
        Index('idx_video_classification', 'sensitivity_classification'),
    )

    def to_record(self) -> "VideoRecord":
        return VideoRecord(
            id=self.id,
            owner_id=self.owner_id,
            title=self.title,
            filepath=self.filepath,
            duration=self.duration,
            width=self.width,
            height=self.height,
            processing_status=ProcessingStatus(self.processing_status),
            processing_progress=self.processing_progress or 0,
            processing_error=self.processing_error,
            sensitivity_classification=SensitivityClass(self.sensitivity_classification),
            sensitivity_score=self.sensitivity_score,
            sensitivity_details=dict(self.sensitivity_details or _default_details()),
            thumbnail_path=self.thumbnail_path,
            is_stream_ready=bool(self.is_stream_ready),
        )


@dataclass(frozen=True)
class VideoRecord:
    """Read-only snapshot of a persisted video, detached from any session"""

    id: str
    owner_id: str
    filepath: str
    title: Optional[str] = None
    duration: Optional[int] = None
    width: Optional[int] = None
    height: Optional[int] = None
    processing_status: ProcessingStatus = ProcessingStatus.PENDING
    processing_progress: int = 0
    processing_error: Optional[str] = None
    sensitivity_classification: SensitivityClass = SensitivityClass.UNPROCESSED
    sensitivity_score: Optional[float] = None
    sensitivity_details: Dict[str, float] = field(default_factory=_default_details)
    thumbnail_path: Optional[str] = None
    is_stream_ready: bool = False

    @property
    def resolution(self) -> Optional[Dict[str, int]]:
        if self.width is None or self.height is None:
            return None
        return {"width": self.width, "height": self.height}

    def status_payload(self) -> Dict:
        """Persisted processing state as sent to API clients"""
        return {
            "videoId": self.id,
            "status": self.processing_status.value,
            "progress": self.processing_progress,
            "error": self.processing_error,
            "sensitivityClassification": self.sensitivity_classification.value,
            "sensitivityScore": self.sensitivity_score,
            "sensitivityDetails": self.sensitivity_details,
            "duration": self.duration,
            "resolution": self.resolution,
            "thumbnailPath": self.thumbnail_path,
            "isStreamReady": self.is_stream_ready,
        }
