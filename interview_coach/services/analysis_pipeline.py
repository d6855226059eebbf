# services/analysis_pipeline.py
"""
Final analysis of a finished session.

    shape payload -> pick backend -> call with retry -> parse -> clean up

Retries are sequential with exponential backoff; one attempt in flight at a
time. Temporary uploads are always deleted, whatever happened to the call.
"""
import asyncio
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, List, Optional, Sequence

from interview_coach.config import get_settings
from interview_coach.errors import (
    BackendDisabled,
    EmptyInput,
    MediaTooLarge,
    NoAnalysisBackendAvailable,
    TransientBackendFailure,
)
from interview_coach.llm_interface.classify import ErrorKind, classify_error
from interview_coach.models.interview import AnalysisResult, AnswerMetrics, AnswerRecord, MediaPayload
from interview_coach.services.analysis_backends import (
    AnalysisBackend,
    Available,
    BackendHandle,
    InlinePart,
    MediaPart,
    UploadedPart,
    default_backends,
)
from interview_coach.services.local_scoring import analyze_answer_locally, average_metrics
from interview_coach.services.response_parser import ReplyKind, parse_analysis_reply
from interview_coach.utils.logger import get_logger

logger = get_logger("AnalysisPipeline")

DEFAULT_FRAMEWORK = "Problem → Solution → Impact"

VIDEO_HINT = (
    "A video recording is provided. Analyze speaking pace, pauses, filler words, articulation, "
    "lip sync, confidence, posture, gaze, body language, emotions, and timing from the video."
)
NO_VIDEO_HINT = "No video provided. Infer delivery and speaking style from the transcript only."
VISUAL_UNAVAILABLE_NOTE = (
    "Visual analysis unavailable: the recording could not be included with this request. "
    "Infer delivery and speaking style from the transcript only, and say in the notes of "
    "visual dimensions that they were not observed."
)
PARTIAL_VIDEO_NOTE = "Some recordings could not be included; judge visual cues from the ones provided."

ANALYSIS_PROMPT = """
You are an expert interview coach. Analyze this interview answer and provide concise feedback.

Question: {question}
Framework: {framework}
Transcript: {transcript}
{duration_line}
Local Metrics (already calculated, 0-1):
- Confidence: {metrics.confidence}
- Clarity: {metrics.clarity}
- Structure: {metrics.structure}
- Filler Words Score: {metrics.filler_words}
- Answer Length: {metrics.length}

{media_hint}

Return JSON ONLY in this exact shape:
{{
  "score": number 0-10,
  "feedback": "2 sentences",
  "improvements": ["item1", "item2", "item3"],
  "multimodal": {{
    "overall_score": number 0-10,
    "emotions": {{ "score": number 0-10, "notes": "string", "suggestions": ["", ""] }},
    "confidence": {{ "score": number 0-10, "notes": "string", "suggestions": ["", ""] }},
    "body_language": {{ "score": number 0-10, "notes": "string", "suggestions": ["", ""] }},
    "delivery": {{ "score": number 0-10, "notes": "string", "suggestions": ["", ""] }},
    "voice": {{ "score": number 0-10, "notes": "string", "suggestions": ["", ""] }},
    "timing": {{ "score": number 0-10, "notes": "string", "suggestions": ["", ""] }},
    "lip_sync": {{ "score": number 0-10, "notes": "string", "suggestions": ["", ""] }},
    "top_improvements": ["", "", ""]
  }}
}}

Rules:
- Always return valid JSON.
- Keep suggestions concise and actionable.
- Be encouraging but honest.
"""


@dataclass(frozen=True)
class AnalysisInput:
    transcript: str
    question: str
    framework: Optional[str] = None
    media: Sequence[MediaPayload] = ()
    duration_seconds: Optional[float] = None
    local_metrics: Optional[AnswerMetrics] = None


@dataclass
class ShapedPayload:
    parts: List[MediaPart] = field(default_factory=list)
    uploads: List[Any] = field(default_factory=list)
    media_hint: str = NO_VIDEO_HINT


class _ModelNotFound(Exception):
    """Raised internally so the walk moves on to the next candidate."""


def build_analysis_prompt(request: AnalysisInput, metrics: AnswerMetrics, media_hint: str) -> str:
    duration_line = ""
    if request.duration_seconds:
        duration_line = f"Answer Duration: {request.duration_seconds:.0f} seconds\n"
    return ANALYSIS_PROMPT.format(
        question=request.question,
        framework=request.framework or "None provided",
        transcript=request.transcript,
        duration_line=duration_line,
        metrics=metrics,
        media_hint=media_hint,
    )


class AnalysisPipeline:
    def __init__(
        self,
        backends: Optional[Sequence[AnalysisBackend]] = None,
        *,
        max_attempts: Optional[int] = None,
        base_delay: Optional[float] = None,
        inline_budget: Optional[int] = None,
        max_media_bytes: Optional[int] = None,
        upload_enabled: Optional[bool] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        settings = get_settings()
        self.backends = list(backends) if backends is not None else default_backends(settings)
        self.max_attempts = max_attempts or settings.analysis_max_attempts
        self.base_delay = settings.analysis_base_delay_seconds if base_delay is None else base_delay
        self.inline_budget = settings.analysis_inline_media_bytes if inline_budget is None else inline_budget
        self.max_media_bytes = settings.analysis_max_media_bytes if max_media_bytes is None else max_media_bytes
        self.upload_enabled = settings.analysis_upload_enabled if upload_enabled is None else upload_enabled
        self._sleep = sleep

    # ------------------------------------------------------------------ #
    # Entry points
    # ------------------------------------------------------------------ #

    async def analyze(self, request: AnalysisInput) -> AnalysisResult:
        if not request.transcript or not request.transcript.strip():
            raise EmptyInput("Missing transcript", field="transcript")
        if not request.question or not request.question.strip():
            raise EmptyInput("Missing question", field="question")
        for media in request.media:
            if media.size > self.max_media_bytes:
                raise MediaTooLarge(media.size, self.max_media_bytes)

        metrics = request.local_metrics or analyze_answer_locally(request.transcript, request.framework or "")
        reasons = {}
        for backend in self.backends:
            probe = backend.probe()
            if not isinstance(probe, Available):
                logger.warning(f"Analysis backend {backend.name} unavailable: {probe.reason}")
                reasons[backend.name] = probe.reason
                continue

            handle = probe.handle
            logger.info(f"🔎 Analyzing with {handle.name} ({len(request.media)} media item(s))")
            try:
                text = await self._run(handle, request, metrics)
            except _ModelNotFound as e:
                logger.warning(f"Model not available on {handle.name}, trying next backend: {e}")
                reasons[handle.name] = f"model not found: {e}"
                continue

            parsed = parse_analysis_reply(text)
            if parsed.kind is not ReplyKind.STRUCTURED:
                logger.warning(f"Analysis reply from {handle.name} read as {parsed.kind.value}")
            logger.info(f"✅ Analysis complete with {handle.name} (score {parsed.result.score})")
            return parsed.result

        logger.error(f"❌ No analysis backend available: {reasons}")
        raise NoAnalysisBackendAvailable(reasons=reasons)

    async def analyze_answers(
        self,
        records: Sequence[AnswerRecord],
        media: Optional[Sequence[MediaPayload]] = None,
        framework: Optional[str] = None,
    ) -> AnalysisResult:
        """Whole-session analysis: every answer's transcript in one request."""
        if not records:
            raise EmptyInput("No answers to analyze", field="records")
        transcript = "\n\n".join(
            f"Q{i + 1}: {r.transcript or 'No answer'}" for i, r in enumerate(records)
        )
        request = AnalysisInput(
            transcript=transcript,
            question=records[0].question_text or "Interview practice",
            framework=framework or DEFAULT_FRAMEWORK,
            media=list(media or ()),
            duration_seconds=sum(r.duration_seconds for r in records),
            local_metrics=average_metrics(r.local_metrics for r in records),
        )
        return await self.analyze(request)

    # ------------------------------------------------------------------ #
    # One backend
    # ------------------------------------------------------------------ #

    async def _run(self, handle: BackendHandle, request: AnalysisInput, metrics: AnswerMetrics) -> str:
        payload = ShapedPayload()
        try:
            await self._shape_payload(handle, request.media, payload)
            prompt = build_analysis_prompt(request, metrics, payload.media_hint)
            return await self._invoke_with_retry(handle, prompt, payload.parts)
        finally:
            await self._cleanup(handle, payload.uploads)

    async def _shape_payload(self, handle: BackendHandle, media: Sequence[MediaPayload],
                             payload: ShapedPayload) -> None:
        """Fill payload in place so uploads made before a failure are still cleaned up."""
        if not media:
            return
        if not handle.supports_media:
            logger.warning(f"{handle.name} is text only; analysing transcript without video")
            payload.media_hint = VISUAL_UNAVAILABLE_NOTE
            return

        inline_total = 0
        dropped = 0
        for item in media:
            if inline_total + item.size <= self.inline_budget:
                payload.parts.append(InlinePart(item))
                inline_total += item.size
                continue
            if handle.supports_upload and self.upload_enabled:
                try:
                    ref = await handle.upload(item)
                except Exception as e:
                    logger.warning(f"Upload of {item.display_name} failed, continuing without it: {e}")
                    dropped += 1
                    continue
                payload.uploads.append(ref)
                payload.parts.append(UploadedPart(ref))
                continue
            logger.warning(
                f"{item.display_name} ({item.size / 1024 / 1024:.2f}MB) exceeds the inline budget; "
                "continuing without it"
            )
            dropped += 1

        if not payload.parts:
            payload.media_hint = VISUAL_UNAVAILABLE_NOTE
        elif dropped:
            payload.media_hint = f"{VIDEO_HINT}\n{PARTIAL_VIDEO_NOTE}"
        else:
            payload.media_hint = VIDEO_HINT

    async def _invoke_with_retry(self, handle: BackendHandle, prompt: str, parts: Sequence[MediaPart]) -> str:
        for attempt in range(1, self.max_attempts + 1):
            try:
                return await handle.generate(prompt, parts)
            except Exception as e:
                kind = classify_error(e)
                if kind is ErrorKind.MODEL_NOT_FOUND:
                    raise _ModelNotFound(str(e)) from e
                if kind is ErrorKind.DISABLED:
                    logger.error(f"{handle.name} disabled or not activated: {e}")
                    raise BackendDisabled(
                        f"{handle.name} API is not enabled for this project", backend=handle.name
                    ) from e

                logger.warning(f"Analysis attempt {attempt}/{self.max_attempts} failed ({handle.name}): {e}")
                if kind is not ErrorKind.TRANSIENT:
                    raise
                if attempt == self.max_attempts:
                    raise TransientBackendFailure(
                        f"{handle.name} unavailable after {attempt} attempts. Please retry.",
                        attempts=attempt,
                    ) from e
                await self._sleep(self.base_delay * 2 ** (attempt - 1))
        # unreachable: the loop either returns or raises
        raise TransientBackendFailure(f"{handle.name} unavailable", attempts=self.max_attempts)

    async def _cleanup(self, handle: BackendHandle, uploads: Sequence[Any]) -> None:
        for ref in uploads:
            try:
                await handle.delete_upload(ref)
            except Exception as e:
                logger.warning(f"Failed to delete temporary upload {getattr(ref, 'name', ref)}: {e}")
