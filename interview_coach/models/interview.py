# ========================================
# models/interview.py - Answers and analysis results
# ========================================

from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

NOT_ANALYZED = "Not analyzed"
MAX_IMPROVEMENTS = 3


class AnswerMetrics(BaseModel):
    confidence: float  # 0-1, placeholder until video cues are scored
    clarity: float  # 0-1, vocabulary variety
    filler_words: float  # 0-1, 1 = none
    structure: float  # 0-1
    length: float  # 0-1, relative to target length


class AnswerRecord(BaseModel):
    """One recorded answer. Only the transcript may change, via an explicit correction."""

    model_config = ConfigDict(frozen=True)

    question_index: int = Field(..., ge=0)
    question_text: str
    transcript: str = ""
    duration_seconds: float = 0
    media_ref: Optional[str] = None
    local_metrics: Optional[AnswerMetrics] = None
    local_score: Optional[float] = None

    def with_corrected_transcript(self, transcript: str, framework: str = "") -> "AnswerRecord":
        """Return a copy with the corrected transcript and a recomputed local score."""
        from interview_coach.services.local_scoring import analyze_answer_locally, to_ten_point_score

        metrics = analyze_answer_locally(transcript, framework)
        return self.model_copy(update={
            "transcript": transcript,
            "local_metrics": metrics,
            "local_score": to_ten_point_score(metrics),
        })


class DimensionKey(str, Enum):
    EMOTIONS = "emotions"
    CONFIDENCE = "confidence"
    BODY_LANGUAGE = "body_language"
    DELIVERY = "delivery"
    VOICE = "voice"
    TIMING = "timing"
    LIP_SYNC = "lip_sync"


class DimensionAnalysis(BaseModel):
    model_config = ConfigDict(frozen=True)

    score: float = Field(5, ge=0, le=10)
    notes: str = NOT_ANALYZED
    suggestions: List[str] = []

    @classmethod
    def placeholder(cls) -> "DimensionAnalysis":
        return cls(score=5, notes=NOT_ANALYZED, suggestions=[])


class MultimodalAnalysis(BaseModel):
    model_config = ConfigDict(frozen=True)

    overall_score: float = Field(..., ge=0, le=10)
    dimensions: Dict[DimensionKey, DimensionAnalysis]
    top_improvements: List[str] = Field(default_factory=list, max_length=MAX_IMPROVEMENTS)

    @field_validator("dimensions")
    @classmethod
    def _exact_dimension_set(cls, value: Dict[DimensionKey, DimensionAnalysis]):
        if set(value) != set(DimensionKey):
            missing = sorted(k.value for k in set(DimensionKey) - set(value))
            raise ValueError(f"dimensions must contain every key; missing {missing}")
        return value


class AnalysisResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    score: float = Field(..., ge=0, le=10)
    feedback: str
    improvements: List[str] = Field(default_factory=list, max_length=MAX_IMPROVEMENTS)
    multimodal: Optional[MultimodalAnalysis] = None


class MediaPayload(BaseModel):
    """Raw media bytes handed to the analysis pipeline."""

    data: bytes
    mime_type: str = "video/webm"
    display_name: str = "answer-recording"

    @property
    def size(self) -> int:
        return len(self.data)
