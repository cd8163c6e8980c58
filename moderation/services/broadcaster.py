"""
Progress Broadcaster
Persists each update on the video record, then publishes it to the
video's subscribers and to the owning user
"""
from typing import Dict
from moderation.models.video import ProcessingStatus
from moderation.services.classification import SensitivityVerdict
from moderation.services.events import EventHub, PROGRESS, COMPLETE, ERROR, video_group, user_group
from moderation.services.store import SqlVideoStore
import logging

logger = logging.getLogger(__name__)


class ProgressBroadcaster:
    def __init__(self, store: SqlVideoStore, hub: EventHub):
        self.store = store
        self.hub = hub
        self._last_progress: Dict[str, int] = {}

    def begin(self, video_id: str) -> None:
        """Start a fresh progress sequence for a run"""
        self._last_progress[video_id] = 0

    def end(self, video_id: str) -> None:
        self._last_progress.pop(video_id, None)

    async def _publish(self, video_id: str, owner_id: str, kind: str, payload: dict) -> None:
        payload = {"videoId": video_id, **payload}
        await self.hub.publish(video_group(video_id), kind, payload)
        await self.hub.publish(user_group(owner_id), kind, payload)

    async def progress(self, video_id: str, owner_id: str, progress: int, message: str) -> None:
        last = self._last_progress.get(video_id, 0)
        if progress < last:
            logger.warning(f"Progress for {video_id} went backwards ({last} -> {progress}), holding at {last}")
            progress = last
        self._last_progress[video_id] = progress

        self.store.update(
            video_id,
            processing_status=ProcessingStatus.PROCESSING,
            processing_progress=progress
        )
        await self._publish(video_id, owner_id, PROGRESS, {
            "status": ProcessingStatus.PROCESSING.value,
            "progress": progress,
            "message": message,
        })
        logger.debug(f"[{video_id}] {progress}% {message}")

    async def complete(self, video_id: str, owner_id: str, verdict: SensitivityVerdict) -> None:
        """Publish the final classification; the record is written by the orchestrator"""
        await self._publish(video_id, owner_id, COMPLETE, {
            "status": ProcessingStatus.COMPLETED.value,
            "progress": 100,
            "sensitivityClassification": verdict.classification.value,
            "sensitivityScore": verdict.score,
            "sensitivityDetails": verdict.details,
            "message": "Processing complete",
        })
        self.end(video_id)

    async def error(self, video_id: str, owner_id: str, message: str) -> None:
        await self._publish(video_id, owner_id, ERROR, {"error": message})
        self.end(video_id)
