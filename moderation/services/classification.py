from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence
from moderation.config import ClassificationConfig
from moderation.models.video import SensitivityClass


@dataclass(frozen=True)
class SensitivityVerdict:
    classification: SensitivityClass
    score: float  # overall, max(adult, language)
    adult: float  # weighted adult score
    language: float
    max_adult: float
    adult_flagged: bool
    language_flagged: bool

    @property
    def details(self) -> Dict[str, float]:
        return {"adult": self.adult, "language": self.language}

    @property
    def reasons(self) -> List[str]:
        reasons = []
        if self.adult_flagged:
            reasons.append(f"Adult {self.adult * 100:.1f}%")
        if self.language_flagged:
            reasons.append(f"Language {self.language * 100:.1f}%")
        return reasons

    def summary(self) -> str:
        if self.reasons:
            return " · ".join(self.reasons)
        return f"All clear (max {self.score * 100:.1f}%)"


class ClassificationEngine:
    """Combines per-frame adult scores and the language score into one verdict"""

    def __init__(self, config: Optional[ClassificationConfig] = None):
        self.config = config or ClassificationConfig()

    def weighted_adult(self, scores: Sequence[float]) -> float:
        """max/top-N mean/overall mean blend; 0 for no frames"""
        if not scores:
            return 0.0
        c = self.config
        top = sorted(scores, reverse=True)[:c.top_n]
        return (
            max(scores) * c.max_weight
            + sum(top) / len(top) * c.top_weight
            + sum(scores) / len(scores) * c.mean_weight
        )

    def classify(self, adult_scores: Sequence[float], language_score: float) -> SensitivityVerdict:
        c = self.config
        max_adult = max(adult_scores, default=0.0)
        weighted = self.weighted_adult(adult_scores)

        adult = round(weighted, c.score_precision)
        language = round(language_score, c.score_precision)
        overall = round(max(adult, language), c.score_precision)

        adult_flagged = (
            weighted > c.weighted_threshold
            or max_adult > c.max_threshold
            or sum(1 for s in adult_scores if s > c.moderate_threshold) >= c.moderate_min_count
        )
        language_flagged = language_score > c.language_threshold

        return SensitivityVerdict(
            classification=SensitivityClass.FLAGGED if adult_flagged or language_flagged else SensitivityClass.SAFE,
            score=overall,
            adult=adult,
            language=language,
            max_adult=max_adult,
            adult_flagged=adult_flagged,
            language_flagged=language_flagged,
        )
