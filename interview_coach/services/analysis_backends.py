# services/analysis_backends.py
"""
Analysis backends, tried in order by the pipeline.

Each backend answers ``probe()`` with Available(handle) or Unavailable(reason)
before it is used; a handle does the actual generate / upload / delete calls.
"""
from dataclasses import dataclass
from typing import Any, List, Optional, Protocol, Sequence, Union

from interview_coach.config import Settings, get_settings
from interview_coach.llm_interface import gemini
from interview_coach.models.interview import MediaPayload
from interview_coach.services.groq_service import GroqService
from interview_coach.utils.logger import get_logger

logger = get_logger("AnalysisBackends")


# ---------------------------------------------------------------------- #
# Request parts
# ---------------------------------------------------------------------- #

@dataclass(frozen=True)
class InlinePart:
    media: MediaPayload


@dataclass(frozen=True)
class UploadedPart:
    ref: Any  # whatever the backend's upload() returned


MediaPart = Union[InlinePart, UploadedPart]


class BackendHandle(Protocol):
    name: str
    supports_media: bool
    supports_upload: bool

    async def generate(self, prompt: str, parts: Sequence[MediaPart] = ()) -> str: ...

    async def upload(self, media: MediaPayload) -> Any: ...

    async def delete_upload(self, ref: Any) -> None: ...


@dataclass(frozen=True)
class Available:
    handle: BackendHandle


@dataclass(frozen=True)
class Unavailable:
    reason: str


ProbeResult = Union[Available, Unavailable]


class AnalysisBackend(Protocol):
    name: str

    def probe(self) -> ProbeResult: ...


# ---------------------------------------------------------------------- #
# Gemini (multimodal)
# ---------------------------------------------------------------------- #

class GeminiAnalysisHandle:
    supports_media = True
    supports_upload = True

    def __init__(self, model_name: str, temperature: float, max_output_tokens: int):
        self.name = f"gemini:{model_name}"
        self.model_name = model_name
        self.temperature = temperature
        self.max_output_tokens = max_output_tokens

    async def generate(self, prompt: str, parts: Sequence[MediaPart] = ()) -> str:
        contents: List[Any] = []
        for part in parts:
            if isinstance(part, InlinePart):
                contents.append({"mime_type": part.media.mime_type, "data": part.media.data})
            else:
                contents.append(part.ref)
        contents.append(prompt)
        return await gemini.generate_from_gemini(
            self.model_name,
            contents,
            temperature=self.temperature,
            max_output_tokens=self.max_output_tokens,
            response_mime_type="application/json",
        )

    async def upload(self, media: MediaPayload) -> Any:
        return await gemini.upload_to_gemini(media.data, media.mime_type, media.display_name)

    async def delete_upload(self, ref: Any) -> None:
        await gemini.delete_from_gemini(ref.name)


class GeminiAnalysisBackend:
    def __init__(self, model_name: str, api_key: Optional[str] = None, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()
        self.model_name = model_name
        self.api_key = api_key if api_key is not None else self.settings.llm_api_key
        self.name = f"gemini:{model_name}"

    def probe(self) -> ProbeResult:
        if not self.api_key:
            return Unavailable("Gemini API key not configured")
        if not self.model_name:
            return Unavailable("No Gemini model configured")
        try:
            gemini.configure(self.api_key)
        except Exception as e:
            logger.error(f"Failed to configure Gemini SDK: {e}", exc_info=True)
            return Unavailable(f"Gemini SDK could not be configured: {e}")
        return Available(GeminiAnalysisHandle(
            self.model_name,
            temperature=self.settings.analysis_temperature,
            max_output_tokens=self.settings.llm_max_tokens,
        ))


# ---------------------------------------------------------------------- #
# Groq (text only)
# ---------------------------------------------------------------------- #

class GroqAnalysisHandle:
    supports_media = False
    supports_upload = False

    def __init__(self, service: GroqService):
        self.service = service
        self.name = f"groq:{service.model}"

    async def generate(self, prompt: str, parts: Sequence[MediaPart] = ()) -> str:
        if parts:
            logger.warning(f"{self.name} is text only; ignoring {len(parts)} media part(s)")
        return await self.service.generate_text(prompt)

    async def upload(self, media: MediaPayload) -> Any:
        raise NotImplementedError(f"{self.name} does not accept uploads")

    async def delete_upload(self, ref: Any) -> None:
        return None


class GroqAnalysisBackend:
    def __init__(self, api_key: Optional[str] = None, model: Optional[str] = None):
        self.api_key = api_key
        self.model = model
        self.name = "groq"

    def probe(self) -> ProbeResult:
        service = GroqService(api_key=self.api_key, model=self.model)
        if not service.configured:
            return Unavailable("Groq API key not configured")
        return Available(GroqAnalysisHandle(service))


def default_backends(settings: Optional[Settings] = None) -> List[AnalysisBackend]:
    """Primary Gemini model, then the fallback Gemini model, then Groq."""
    settings = settings or get_settings()
    backends: List[AnalysisBackend] = [GeminiAnalysisBackend(settings.analysis_primary_model, settings=settings)]
    if settings.analysis_fallback_model and settings.analysis_fallback_model != settings.analysis_primary_model:
        backends.append(GeminiAnalysisBackend(settings.analysis_fallback_model, settings=settings))
    backends.append(GroqAnalysisBackend())
    return backends
