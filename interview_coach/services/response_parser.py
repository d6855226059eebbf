# services/response_parser.py
"""
Turns whatever the analysis backend sent back into an AnalysisResult.

Three shapes are recognised and tagged:

* STRUCTURED   - the JSON document the prompt asks for (code fences allowed)
* LEGACY_TEXT  - the older ``SCORE: / FEEDBACK: / IMPROVEMENTS:`` text format
* UNPARSEABLE  - neither; the caller still gets a usable default result
"""
import json
import math
import re
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional

from interview_coach.errors import MalformedAnalysisReply
from interview_coach.models.interview import (
    MAX_IMPROVEMENTS,
    AnalysisResult,
    DimensionAnalysis,
    DimensionKey,
    MultimodalAnalysis,
)
from interview_coach.utils.logger import get_logger

logger = get_logger("ResponseParser")

DEFAULT_SCORE = 5.0
DEFAULT_FEEDBACK = "Good effort! Keep practicing."

# used when a structured reply has no improvements list at all
GENERIC_IMPROVEMENTS = [
    "Practice speaking more confidently",
    "Use specific examples",
    "Improve structure",
]

# appended to a legacy reply until it has exactly three improvements
LEGACY_FILLER_IMPROVEMENTS = [
    "Practice speaking more confidently",
    "Use specific examples from your experience",
    "Structure your answers with clear beginning, middle, and end",
]

_FENCE_RE = re.compile(r"^```[a-zA-Z0-9_-]*\s*|\s*```$")
_SCORE_RE = re.compile(r"SCORE:\s*(\d+(?:\.\d+)?)")
_FEEDBACK_RE = re.compile(r"FEEDBACK:\s*([\s\S]*?)IMPROVEMENTS:")
_IMPROVEMENTS_RE = re.compile(r"IMPROVEMENTS:([\s\S]*)$")


class ReplyKind(str, Enum):
    STRUCTURED = "structured"
    LEGACY_TEXT = "legacy_text"
    UNPARSEABLE = "unparseable"


@dataclass(frozen=True)
class ParsedReply:
    kind: ReplyKind
    result: AnalysisResult


def strip_code_fences(text: str) -> str:
    """Remove a surrounding markdown code fence (```json ... ```), if any."""
    cleaned = (text or "").strip()
    if cleaned.startswith("```"):
        cleaned = _FENCE_RE.sub("", cleaned).strip()
    return cleaned


def _load_json_object(text: str) -> Optional[Dict[str, Any]]:
    cleaned = strip_code_fences(text)
    candidates = [cleaned]
    start, end = cleaned.find("{"), cleaned.rfind("}")
    if 0 <= start < end and (start, end) != (0, len(cleaned) - 1):
        candidates.append(cleaned[start:end + 1])
    for candidate in candidates:
        try:
            value = json.loads(candidate)
        except ValueError:
            continue
        if isinstance(value, dict):
            return value
    return None


# ---------------------------------------------------------------------- #
# Normalisation helpers
# ---------------------------------------------------------------------- #

def _score(value: Any, default: float = DEFAULT_SCORE) -> float:
    if isinstance(value, bool):
        return default
    if isinstance(value, str):
        try:
            value = float(value.strip())
        except ValueError:
            return default
    if not isinstance(value, (int, float)) or math.isnan(value):
        return default
    return float(min(max(value, 0.0), 10.0))


def _text(value: Any, default: str) -> str:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return default


def _string_list(value: Any) -> Optional[List[str]]:
    if not isinstance(value, list):
        return None
    return [str(item).strip() for item in value if str(item).strip()]


def _camel(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part.capitalize() for part in rest)


def _lookup(source: Dict[str, Any], key: str) -> Any:
    """snake_case first, then the camelCase spelling some replies use."""
    value = source.get(key)
    return value if value is not None else source.get(_camel(key))


def _dimension(value: Any) -> DimensionAnalysis:
    if not isinstance(value, dict):
        return DimensionAnalysis.placeholder()
    placeholder = DimensionAnalysis.placeholder()
    return DimensionAnalysis(
        score=_score(value.get("score")),
        notes=_text(value.get("notes"), placeholder.notes),
        suggestions=_string_list(value.get("suggestions")) or [],
    )


def _multimodal(value: Any, main_score: float) -> Optional[MultimodalAnalysis]:
    if not isinstance(value, dict):
        return None
    # some replies nest the dimensions, most put them at the top level
    source = value.get("dimensions") if isinstance(value.get("dimensions"), dict) else value
    dimensions = {key: _dimension(_lookup(source, key.value)) for key in DimensionKey}
    overall = _lookup(value, "overall_score")
    top = _string_list(_lookup(value, "top_improvements")) or []
    return MultimodalAnalysis(
        overall_score=_score(overall, default=main_score),
        dimensions=dimensions,
        top_improvements=top[:MAX_IMPROVEMENTS],
    )


def normalize_structured(parsed: Dict[str, Any]) -> AnalysisResult:
    score = _score(parsed.get("score"))
    improvements = _string_list(parsed.get("improvements"))
    if improvements is None:
        improvements = list(GENERIC_IMPROVEMENTS)
    return AnalysisResult(
        score=score,
        feedback=_text(parsed.get("feedback"), DEFAULT_FEEDBACK),
        improvements=improvements[:MAX_IMPROVEMENTS],
        multimodal=_multimodal(parsed.get("multimodal"), score),
    )


def parse_legacy_text(text: str) -> Optional[AnalysisResult]:
    """SCORE:/FEEDBACK:/IMPROVEMENTS: extraction. None when no label is present at all."""
    score_match = _SCORE_RE.search(text)
    feedback_match = _FEEDBACK_RE.search(text)
    improvements_match = _IMPROVEMENTS_RE.search(text)
    if not (score_match or feedback_match or improvements_match):
        return None

    improvements_text = improvements_match.group(1) if improvements_match else ""
    improvements = [
        re.sub(r"^-+\s*", "", line.strip()).strip()
        for line in improvements_text.split("\n")
        if line.strip().startswith("-")
    ]
    improvements = [i for i in improvements if i]
    if len(improvements) < MAX_IMPROVEMENTS:
        improvements.extend(LEGACY_FILLER_IMPROVEMENTS)

    return AnalysisResult(
        score=_score(score_match.group(1) if score_match else None),
        feedback=_text(feedback_match.group(1) if feedback_match else None, DEFAULT_FEEDBACK),
        improvements=improvements[:MAX_IMPROVEMENTS],
    )


def default_result() -> AnalysisResult:
    return AnalysisResult(
        score=DEFAULT_SCORE,
        feedback=DEFAULT_FEEDBACK,
        improvements=list(LEGACY_FILLER_IMPROVEMENTS),
    )


def parse_analysis_reply(text: str) -> ParsedReply:
    """Never raises: every reply yields a usable result, tagged by how it was read."""
    parsed = _load_json_object(text)
    if parsed is not None:
        return ParsedReply(ReplyKind.STRUCTURED, normalize_structured(parsed))

    problem = MalformedAnalysisReply("Analysis reply is not valid JSON", raw=text)
    legacy = parse_legacy_text(text or "")
    if legacy is not None:
        logger.warning(f"{problem.message}; recovered with legacy text parser")
        return ParsedReply(ReplyKind.LEGACY_TEXT, legacy)

    logger.warning(f"{problem.message}; no recognisable fields, using default result. "
                   f"Raw (truncated): {(text or '')[:200]!r}")
    return ParsedReply(ReplyKind.UNPARSEABLE, default_result())
