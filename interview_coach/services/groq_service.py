# services/groq_service.py
import asyncio
from typing import Optional

from groq import Groq

from interview_coach.config import get_settings
from interview_coach.errors import LLMServiceError
from interview_coach.utils.logger import get_logger

logger = get_logger("GroqService")
settings = get_settings()

DEFAULT_GROQ_MODEL = "llama-3.1-8b-instant"


class GroqService:
    """Groq LLM client using the official SDK. Text only; used as the last analysis fallback."""

    def __init__(self, api_key: Optional[str] = None, model: Optional[str] = None):
        # Guard models are not suitable for chat; pick a valid default
        self.model = model or settings.groq_model
        m = (self.model or "").lower()
        if ("guard" in m) or (not m.strip()):
            logger.warning(f"Invalid Groq model '{self.model}' for chat; falling back to '{DEFAULT_GROQ_MODEL}'")
            self.model = DEFAULT_GROQ_MODEL
        self.max_tokens = settings.llm_max_tokens
        self.temperature = settings.analysis_temperature

        api_key = api_key if api_key is not None else settings.groq_api_key
        if not api_key:
            logger.error("Groq API key not configured")
            self.client = None
        else:
            self.client = Groq(api_key=api_key)

    @property
    def configured(self) -> bool:
        return self.client is not None

    async def generate_text(self, prompt: str, temperature: Optional[float] = None) -> str:
        """Generate text using Groq Chat Completions via SDK. SDK errors propagate to the caller."""
        if not self.client:
            raise LLMServiceError("Groq service not configured")
        chat_completion = await asyncio.to_thread(
            self.client.chat.completions.create,
            messages=[{"role": "user", "content": prompt}],
            model=self.model,
            temperature=(temperature if temperature is not None else self.temperature),
            max_tokens=self.max_tokens,
            response_format={"type": "json_object"},
            stream=False,
        )
        choice = (chat_completion.choices or [None])[0]
        message = getattr(choice, "message", None) if choice else None
        content = message.content if message else None
        if not content:
            raise LLMServiceError("No response generated")
        return content
