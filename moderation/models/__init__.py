"""
Database models for the moderation service.
"""
from moderation.models.video import (
    Video,
    VideoRecord,
    ProcessingStatus,
    SensitivityClass,
)

__all__ = [
    "Video",
    "VideoRecord",
    "ProcessingStatus",
    "SensitivityClass",
]
