# ========================================
# services/local_scoring.py - Heuristic answer metrics
# ========================================

import re
from typing import Iterable, Optional

from interview_coach.models.interview import AnswerMetrics

FILLER_WORDS = ["um", "uh", "like", "you know", "basically", "actually"]
FRAMEWORK_SEPARATOR = "→"

WEIGHTS = {
    "confidence": 0.25,
    "clarity": 0.25,
    "structure": 0.2,
    "filler_words": 0.15,
    "length": 0.15,
}

_FILLER_PATTERNS = [re.compile(rf"\b{re.escape(f)}\b", re.IGNORECASE) for f in FILLER_WORDS]


def analyze_answer_locally(transcript: str, answer_framework: str = "", target_word_count: int = 120) -> AnswerMetrics:
    """Cheap, offline metrics for one transcript."""
    text = transcript or ""
    words = text.split()
    word_count = len(words)

    filler_count = sum(len(p.findall(text)) for p in _FILLER_PATTERNS)
    filler_score = max(0.0, 1 - filler_count / 10)

    length_score = min(word_count / target_word_count, 1.0) if target_word_count > 0 else 0.0

    unique = len({w.lower() for w in words}) or 1
    clarity = min(unique / (word_count or 1), 1.0)

    parts = [p.strip() for p in (answer_framework or "").split(FRAMEWORK_SEPARATOR)]
    structure = 0.5
    if len(parts) >= 2 and word_count > 50:
        structure = 0.7
    if len(parts) >= 3 and word_count > 100:
        structure = 0.9

    return AnswerMetrics(
        confidence=0.7,
        clarity=clarity,
        filler_words=filler_score,
        structure=structure,
        length=length_score,
    )


def to_ten_point_score(metrics: AnswerMetrics) -> float:
    score = sum(getattr(metrics, field) * weight for field, weight in WEIGHTS.items())
    return round(score * 10, 1)


def average_metrics(metrics: Iterable[Optional[AnswerMetrics]]) -> Optional[AnswerMetrics]:
    present = [m for m in metrics if m is not None]
    if not present:
        return None
    n = len(present)
    return AnswerMetrics(**{
        field: sum(getattr(m, field) for m in present) / n
        for field in AnswerMetrics.model_fields
    })
