import pytest

from interview_coach.config import Settings
from interview_coach.errors import LLMServiceError, TransientBackendFailure
from interview_coach.llm_interface import gemini
from interview_coach.models.interview import MediaPayload
from interview_coach.services.analysis_backends import (
    Available,
    GeminiAnalysisBackend,
    GroqAnalysisBackend,
    InlinePart,
    Unavailable,
    UploadedPart,
    default_backends,
)
from interview_coach.services.gemini_service import GeminiService
from interview_coach.services.groq_service import DEFAULT_GROQ_MODEL, GroqService
from interview_coach.services.tts_service import TTSService


class GeminiCalls(list):
    """Records calls to the patched SDK wrapper; queued outcomes are returned or raised."""

    def __init__(self):
        super().__init__()
        self.outcomes = []


@pytest.fixture
def gemini_calls(monkeypatch):
    calls = GeminiCalls()

    async def fake_generate(model_name, contents, temperature, max_output_tokens, response_mime_type=None):
        calls.append({"model": model_name, "contents": list(contents), "mime": response_mime_type})
        outcome = calls.outcomes.pop(0) if calls.outcomes else '{"ok": true}'
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome

    monkeypatch.setattr(gemini, "configure", lambda api_key: None)
    monkeypatch.setattr(gemini, "generate_from_gemini", fake_generate)
    return calls


class TestGeminiAnalysisBackend:
    def test_unavailable_without_key(self):
        probe = GeminiAnalysisBackend("gemini-2.5-pro", api_key="").probe()

        assert isinstance(probe, Unavailable)
        assert "key" in probe.reason

    def test_unavailable_without_model(self, gemini_calls):
        probe = GeminiAnalysisBackend("", api_key="key").probe()

        assert isinstance(probe, Unavailable)

    async def test_parts_precede_the_prompt(self, gemini_calls):
        probe = GeminiAnalysisBackend("gemini-2.5-pro", api_key="key").probe()
        assert isinstance(probe, Available)
        handle = probe.handle
        clip = MediaPayload(data=b"clip", mime_type="video/mp4")
        uploaded = object()

        text = await handle.generate("analyze this", [InlinePart(clip), UploadedPart(uploaded)])

        assert text == '{"ok": true}'
        call = gemini_calls[0]
        assert call["model"] == "gemini-2.5-pro"
        assert call["contents"] == [{"mime_type": "video/mp4", "data": b"clip"}, uploaded, "analyze this"]
        assert call["mime"] == "application/json"
        assert handle.name == "gemini:gemini-2.5-pro"
        assert handle.supports_media and handle.supports_upload


class TestGroqAnalysisBackend:
    def test_unavailable_without_key(self):
        probe = GroqAnalysisBackend(api_key="").probe()

        assert isinstance(probe, Unavailable)

    def test_available_with_key_is_text_only(self):
        probe = GroqAnalysisBackend(api_key="gsk_test", model="llama-3.1-8b-instant").probe()

        assert isinstance(probe, Available)
        assert probe.handle.supports_media is False
        assert probe.handle.name == "groq:llama-3.1-8b-instant"


def test_default_backend_order():
    settings = Settings(analysis_primary_model="gemini-2.5-pro", analysis_fallback_model="gemini-2.5-flash")

    names = [b.name for b in default_backends(settings)]

    assert names == ["gemini:gemini-2.5-pro", "gemini:gemini-2.5-flash", "groq"]


def test_identical_fallback_model_is_not_tried_twice():
    settings = Settings(analysis_primary_model="gemini-2.5-pro", analysis_fallback_model="gemini-2.5-pro")

    assert [b.name for b in default_backends(settings)] == ["gemini:gemini-2.5-pro", "groq"]


class TestGeminiService:
    async def test_unconfigured(self):
        with pytest.raises(LLMServiceError):
            await GeminiService(api_key="").generate_text("hello")

    async def test_returns_text(self, gemini_calls):
        gemini_calls.outcomes.append('{"text": "hi"}')

        text = await GeminiService(model_name="gemini-2.5-flash", api_key="key").generate_text("hello")

        assert text == '{"text": "hi"}'
        assert gemini_calls[0]["contents"] == ["hello"]

    async def test_overload_becomes_transient_failure(self, gemini_calls):
        gemini_calls.outcomes.append(RuntimeError("503 The model is overloaded"))

        with pytest.raises(TransientBackendFailure) as exc:
            await GeminiService(api_key="key").generate_text("hello")

        assert exc.value.status_code == 503

    async def test_empty_reply(self, gemini_calls):
        gemini_calls.outcomes.append("")

        with pytest.raises(LLMServiceError):
            await GeminiService(api_key="key").generate_text("hello")


def test_groq_guard_model_falls_back_to_chat_model():
    service = GroqService(api_key="", model="llama-guard-3-8b")

    assert service.model == DEFAULT_GROQ_MODEL
    assert service.configured is False


async def test_groq_unconfigured():
    with pytest.raises(LLMServiceError):
        await GroqService(api_key="").generate_text("hello")


class TestTTSService:
    async def test_audio_becomes_data_url(self, monkeypatch):
        service = TTSService(voice="en-US-JennyNeural")

        async def fake_tts(text):
            return b"ID3"

        monkeypatch.setattr(service, "text_to_speech", fake_tts)

        assert await service.synthesize_audio_ref("Hello there") == "data:audio/mpeg;base64,SUQz"

    async def test_empty_text_has_no_audio(self):
        assert await TTSService().synthesize_audio_ref("   ") is None
