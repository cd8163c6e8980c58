import asyncio
from pathlib import Path
from typing import Awaitable, Callable, List, Optional, Sequence
from moderation.config import ClassificationConfig
from moderation.services.frame_sampler import FrameSample
from moderation.services.inference import ImageClassifier
import logging

logger = logging.getLogger(__name__)

NSFW_LABEL = "nsfw"

# Called after each batch with (frames completed, total frames)
BatchCallback = Callable[[int, int], Awaitable[None]]


def nsfw_score(labels: Sequence) -> float:
    """Score of the label matching 'nsfw' case-insensitively, 0 if absent"""
    for label, score in labels:
        if label.lower() == NSFW_LABEL:
            return float(score)
    return 0.0


class VisualClassifier:
    """
    Scores sampled frames for adult content.
    Frames inside a batch are classified concurrently, batches run one after another.
    """

    def __init__(self, classifier: ImageClassifier, config: Optional[ClassificationConfig] = None):
        self.classifier = classifier
        self.config = config or ClassificationConfig()

    async def score_frame(self, frame: FrameSample) -> float:
        image = await asyncio.to_thread(Path(frame.path).read_bytes)
        return nsfw_score(await self.classifier.classify(image))

    async def score_frames(
        self,
        frames: Sequence[FrameSample],
        on_batch: Optional[BatchCallback] = None
    ) -> List[float]:
        """
        Returns one adult score per frame, in frame order.
        A frame whose classification fails scores 0 without affecting its batch.
        """
        total = len(frames)
        batch_size = self.config.batch_size
        scores: List[float] = []

        for batch_start in range(0, total, batch_size):
            batch = frames[batch_start:batch_start + batch_size]
            results = await asyncio.gather(
                *(self.score_frame(frame) for frame in batch),
                return_exceptions=True
            )

            for offset, result in enumerate(results):
                if isinstance(result, Exception):
                    logger.warning(f"Failed to analyse frame {batch_start + offset + 1}: {result}")
                    scores.append(0.0)
                else:
                    logger.debug(f"Frame {batch_start + offset + 1} at {batch[offset].timestamp}s: {result:.4f}")
                    scores.append(result)

            if on_batch is not None:
                await on_batch(len(scores), total)

        logger.info(f"Scored {total} frames (max {max(scores, default=0.0):.4f})")
        return scores

    async def close(self):
        """Cleanup resources"""
        await self.classifier.close()
