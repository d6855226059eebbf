import json

import pytest
from conftest import FakeBackend, FakeHandle

from interview_coach.errors import (
    BackendDisabled,
    EmptyInput,
    MediaTooLarge,
    NoAnalysisBackendAvailable,
    TransientBackendFailure,
)
from interview_coach.models.interview import AnswerMetrics, AnswerRecord, MediaPayload
from interview_coach.services.analysis_backends import InlinePart, UploadedPart
from interview_coach.services.analysis_pipeline import (
    DEFAULT_FRAMEWORK,
    NO_VIDEO_HINT,
    PARTIAL_VIDEO_NOTE,
    VIDEO_HINT,
    VISUAL_UNAVAILABLE_NOTE,
    AnalysisInput,
    AnalysisPipeline,
)

GOOD_REPLY = json.dumps({"score": 8, "feedback": "Clear story with measurable impact.",
                         "improvements": ["Shorten the intro"]})
OVERLOADED = "503 UNAVAILABLE: The model is overloaded. Please try again later."


def overloaded():
    return RuntimeError(OVERLOADED)


def make_pipeline(*backends, sleeps=None, **kwargs):
    kwargs.setdefault("max_attempts", 4)
    kwargs.setdefault("base_delay", 0.75)
    kwargs.setdefault("inline_budget", 100)
    kwargs.setdefault("max_media_bytes", 1000)
    kwargs.setdefault("upload_enabled", True)
    if sleeps is not None:
        kwargs["sleep"] = sleeps
    return AnalysisPipeline(list(backends), **kwargs)


def request(*media, **kwargs):
    kwargs.setdefault("transcript", "I led the migration to a new billing system and cut costs by 30%.")
    kwargs.setdefault("question", "Tell me about a project you are proud of.")
    return AnalysisInput(media=list(media), **kwargs)


def video(size, name="answer-q1"):
    return MediaPayload(data=b"\x00" * size, display_name=name)


class TestBackendSelection:
    async def test_first_available_backend_answers(self, sleeps):
        handle = FakeHandle(GOOD_REPLY, name="primary")
        spare = FakeBackend(FakeHandle(GOOD_REPLY, name="spare"))
        pipeline = make_pipeline(FakeBackend(handle), spare, sleeps=sleeps)

        result = await pipeline.analyze(request())

        assert result.score == 8
        assert result.improvements == ["Shorten the intro"]
        assert len(handle.calls) == 1
        assert spare.probes == 0

    async def test_unavailable_backends_are_skipped(self, sleeps):
        handle = FakeHandle(GOOD_REPLY, name="fallback")
        pipeline = make_pipeline(FakeBackend(reason="no key", name="primary"), FakeBackend(handle), sleeps=sleeps)

        result = await pipeline.analyze(request())

        assert result.score == 8

    async def test_no_backend_available(self, sleeps):
        pipeline = make_pipeline(
            FakeBackend(reason="Gemini API key not configured", name="gemini"),
            FakeBackend(reason="Groq API key not configured", name="groq"),
            sleeps=sleeps,
        )

        with pytest.raises(NoAnalysisBackendAvailable) as exc:
            await pipeline.analyze(request())

        assert exc.value.status_code == 503
        assert exc.value.reasons == {
            "gemini": "Gemini API key not configured",
            "groq": "Groq API key not configured",
        }

    async def test_model_not_found_moves_to_next_candidate(self, sleeps):
        missing = FakeHandle(RuntimeError("404 models/gemini-9-pro is not found"), name="gemini:gemini-9-pro")
        fallback = FakeHandle(GOOD_REPLY, name="gemini:gemini-2.5-flash")
        pipeline = make_pipeline(FakeBackend(missing), FakeBackend(fallback), sleeps=sleeps)

        result = await pipeline.analyze(request())

        assert result.score == 8
        assert len(missing.calls) == 1
        assert sleeps.delays == []

    async def test_every_model_missing_reports_reasons(self, sleeps):
        missing = FakeHandle(RuntimeError("404 model does not exist"), name="gemini:old")
        pipeline = make_pipeline(FakeBackend(missing), sleeps=sleeps)

        with pytest.raises(NoAnalysisBackendAvailable) as exc:
            await pipeline.analyze(request())

        assert exc.value.reasons["gemini:old"].startswith("model not found")

    async def test_legacy_text_reply_still_yields_a_result(self, sleeps):
        handle = FakeHandle("SCORE: 6\nFEEDBACK: Decent.\nIMPROVEMENTS:\n- Add numbers")
        pipeline = make_pipeline(FakeBackend(handle), sleeps=sleeps)

        result = await pipeline.analyze(request())

        assert result.score == 6
        assert result.improvements[0] == "Add numbers"
        assert len(result.improvements) == 3


class TestRetry:
    async def test_transient_errors_back_off_exponentially(self, sleeps):
        handle = FakeHandle(overloaded(), overloaded(), overloaded(), GOOD_REPLY)
        pipeline = make_pipeline(FakeBackend(handle), sleeps=sleeps)

        result = await pipeline.analyze(request())

        assert result.score == 8
        assert len(handle.calls) == 4
        assert sleeps.delays == [0.75, 1.5, 3.0]

    async def test_gives_up_after_max_attempts(self, sleeps):
        handle = FakeHandle(*(overloaded() for _ in range(4)))
        spare = FakeBackend(FakeHandle(GOOD_REPLY, name="spare"))
        pipeline = make_pipeline(FakeBackend(handle), spare, sleeps=sleeps)

        with pytest.raises(TransientBackendFailure) as exc:
            await pipeline.analyze(request())

        assert exc.value.attempts == 4
        assert exc.value.status_code == 503
        assert len(handle.calls) == 4
        assert sleeps.delays == [0.75, 1.5, 3.0]
        assert spare.probes == 0

    async def test_rate_limit_is_transient(self, sleeps):
        handle = FakeHandle(RuntimeError("429 RESOURCE_EXHAUSTED"), GOOD_REPLY)
        pipeline = make_pipeline(FakeBackend(handle), sleeps=sleeps)

        await pipeline.analyze(request())

        assert sleeps.delays == [0.75]

    async def test_disabled_backend_is_never_retried(self, sleeps):
        handle = FakeHandle(RuntimeError(
            "403 SERVICE_DISABLED: Generative Language API has not been used in project 123"
        ), name="gemini:gemini-2.5-pro")
        pipeline = make_pipeline(FakeBackend(handle), sleeps=sleeps)

        with pytest.raises(BackendDisabled) as exc:
            await pipeline.analyze(request())

        assert exc.value.payload == {"backend": "gemini:gemini-2.5-pro"}
        assert len(handle.calls) == 1
        assert sleeps.delays == []

    async def test_other_errors_propagate_immediately(self, sleeps):
        handle = FakeHandle(ValueError("invalid argument: prompt too long"))
        pipeline = make_pipeline(FakeBackend(handle), sleeps=sleeps)

        with pytest.raises(ValueError):
            await pipeline.analyze(request())

        assert len(handle.calls) == 1
        assert sleeps.delays == []


class TestPayloadShaping:
    async def test_no_media_uses_transcript_hint(self, sleeps):
        handle = FakeHandle(GOOD_REPLY)
        pipeline = make_pipeline(FakeBackend(handle), sleeps=sleeps)

        await pipeline.analyze(request())

        prompt, parts = handle.calls[0]
        assert NO_VIDEO_HINT in prompt
        assert parts == []

    async def test_small_media_goes_inline(self, sleeps):
        handle = FakeHandle(GOOD_REPLY)
        pipeline = make_pipeline(FakeBackend(handle), sleeps=sleeps)
        clip = video(60)

        await pipeline.analyze(request(clip))

        prompt, parts = handle.calls[0]
        assert parts == [InlinePart(clip)]
        assert VIDEO_HINT in prompt
        assert handle.uploaded == []

    async def test_inline_budget_is_cumulative(self, sleeps):
        handle = FakeHandle(GOOD_REPLY)
        pipeline = make_pipeline(FakeBackend(handle), sleeps=sleeps)
        first, second = video(60, "q1"), video(60, "q2")

        await pipeline.analyze(request(first, second))

        _, parts = handle.calls[0]
        assert parts == [InlinePart(first), UploadedPart("files/q2")]

    async def test_large_media_is_uploaded_and_deleted_after_success(self, sleeps):
        handle = FakeHandle(GOOD_REPLY)
        pipeline = make_pipeline(FakeBackend(handle), sleeps=sleeps)

        await pipeline.analyze(request(video(500, "big")))

        _, parts = handle.calls[0]
        assert parts == [UploadedPart("files/big")]
        assert handle.deleted == ["files/big"]

    async def test_uploads_are_deleted_when_the_call_fails(self, sleeps):
        handle = FakeHandle(ValueError("bad request"))
        pipeline = make_pipeline(FakeBackend(handle), sleeps=sleeps)

        with pytest.raises(ValueError):
            await pipeline.analyze(request(video(500, "big")))

        assert handle.deleted == ["files/big"]

    async def test_uploads_are_deleted_when_retries_run_out(self, sleeps):
        handle = FakeHandle(*(overloaded() for _ in range(4)))
        pipeline = make_pipeline(FakeBackend(handle), sleeps=sleeps)

        with pytest.raises(TransientBackendFailure):
            await pipeline.analyze(request(video(500, "big")))

        assert handle.uploaded == ["files/big"]
        assert handle.deleted == ["files/big"]

    async def test_failed_upload_continues_without_video(self, sleeps):
        handle = FakeHandle(GOOD_REPLY, upload_error=RuntimeError("upload rejected"))
        pipeline = make_pipeline(FakeBackend(handle), sleeps=sleeps)

        result = await pipeline.analyze(request(video(500)))

        prompt, parts = handle.calls[0]
        assert parts == []
        assert VISUAL_UNAVAILABLE_NOTE in prompt
        assert result.score == 8

    async def test_partially_dropped_media_is_noted(self, sleeps):
        handle = FakeHandle(GOOD_REPLY, upload_error=RuntimeError("upload rejected"))
        pipeline = make_pipeline(FakeBackend(handle), sleeps=sleeps)

        await pipeline.analyze(request(video(40, "q1"), video(500, "q2")))

        prompt, parts = handle.calls[0]
        assert len(parts) == 1
        assert VIDEO_HINT in prompt
        assert PARTIAL_VIDEO_NOTE in prompt

    async def test_upload_disabled_drops_large_media(self, sleeps):
        handle = FakeHandle(GOOD_REPLY)
        pipeline = make_pipeline(FakeBackend(handle), sleeps=sleeps, upload_enabled=False)

        await pipeline.analyze(request(video(500)))

        prompt, parts = handle.calls[0]
        assert parts == []
        assert handle.uploaded == []
        assert VISUAL_UNAVAILABLE_NOTE in prompt

    async def test_text_only_backend_gets_transcript_and_note(self, sleeps):
        handle = FakeHandle(GOOD_REPLY, name="groq:llama", supports_media=False, supports_upload=False)
        pipeline = make_pipeline(FakeBackend(handle), sleeps=sleeps)

        await pipeline.analyze(request(video(60)))

        prompt, parts = handle.calls[0]
        assert parts == []
        assert VISUAL_UNAVAILABLE_NOTE in prompt

    async def test_media_over_hard_cap_is_rejected_before_any_backend(self, sleeps):
        backend = FakeBackend(FakeHandle(GOOD_REPLY))
        pipeline = make_pipeline(backend, sleeps=sleeps, max_media_bytes=200)

        with pytest.raises(MediaTooLarge) as exc:
            await pipeline.analyze(request(video(201)))

        assert exc.value.status_code == 413
        assert backend.probes == 0


class TestInputs:
    @pytest.mark.parametrize("field", ["transcript", "question"])
    async def test_missing_text_is_rejected(self, sleeps, field):
        backend = FakeBackend(FakeHandle(GOOD_REPLY))
        pipeline = make_pipeline(backend, sleeps=sleeps)

        with pytest.raises(EmptyInput) as exc:
            await pipeline.analyze(request(**{field: "  "}))

        assert exc.value.payload == {"field": field}
        assert backend.probes == 0

    async def test_prompt_carries_question_metrics_and_duration(self, sleeps):
        handle = FakeHandle(GOOD_REPLY)
        pipeline = make_pipeline(FakeBackend(handle), sleeps=sleeps)
        metrics = AnswerMetrics(confidence=0.7, clarity=0.9, filler_words=1.0, structure=0.5, length=0.25)

        await pipeline.analyze(request(duration_seconds=42.4, local_metrics=metrics, framework="STAR"))

        prompt, _ = handle.calls[0]
        assert "Question: Tell me about a project you are proud of." in prompt
        assert "Framework: STAR" in prompt
        assert "Answer Duration: 42 seconds" in prompt
        assert "- Clarity: 0.9" in prompt
        assert "- Answer Length: 0.25" in prompt

    async def test_analyze_answers_combines_the_session(self, sleeps):
        handle = FakeHandle(GOOD_REPLY)
        pipeline = make_pipeline(FakeBackend(handle), sleeps=sleeps)
        low = AnswerMetrics(confidence=0.7, clarity=0.6, filler_words=0.8, structure=0.5, length=0.2)
        high = AnswerMetrics(confidence=0.7, clarity=1.0, filler_words=1.0, structure=0.5, length=0.6)
        records = [
            AnswerRecord(question_index=0, question_text="Why this role?", transcript="Because I love it.",
                         duration_seconds=30, local_metrics=low),
            AnswerRecord(question_index=1, question_text="Biggest failure?", transcript="",
                         duration_seconds=45, local_metrics=high),
        ]

        result = await pipeline.analyze_answers(records)

        prompt, _ = handle.calls[0]
        assert "Transcript: Q1: Because I love it.\n\nQ2: No answer" in prompt
        assert "Question: Why this role?" in prompt
        assert f"Framework: {DEFAULT_FRAMEWORK}" in prompt
        assert "Answer Duration: 75 seconds" in prompt
        assert "- Clarity: 0.8" in prompt
        assert result.score == 8

    async def test_analyze_answers_needs_records(self, sleeps):
        pipeline = make_pipeline(FakeBackend(FakeHandle(GOOD_REPLY)), sleeps=sleeps)

        with pytest.raises(EmptyInput):
            await pipeline.analyze_answers([])
