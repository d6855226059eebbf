# ========================================
# services/gemini_service.py - Gemini text generation for the interviewer
# ========================================

from typing import Optional

from interview_coach.config import get_settings
from interview_coach.errors import LLMServiceError
from interview_coach.llm_interface import gemini
from interview_coach.llm_interface.classify import to_coach_error
from interview_coach.utils.logger import get_logger

logger = get_logger("GeminiService")
settings = get_settings()


class GeminiService:
    def __init__(self, model_name: Optional[str] = None, api_key: Optional[str] = None):
        api_key = api_key if api_key is not None else settings.llm_api_key
        if api_key:
            gemini.configure(api_key)
            self.model_name = model_name or settings.llm_model
            logger.info(f"Gemini service initialized ({self.model_name})")
        else:
            logger.error("Gemini API key not configured")
            self.model_name = None

    async def generate_text(self, prompt: str, temperature: Optional[float] = None) -> str:
        """Generate text response from Gemini"""
        if not self.model_name:
            raise LLMServiceError("LLM service not configured")

        temp = temperature if temperature is not None else settings.llm_temperature
        try:
            text = await gemini.generate_from_gemini(
                self.model_name,
                [prompt],
                temperature=temp,
                max_output_tokens=settings.llm_max_tokens,
                response_mime_type="application/json",
            )
        except Exception as e:
            logger.error(f"Gemini generation error: {e}", exc_info=True)
            raise to_coach_error(e, backend="gemini") from e

        if not text:
            raise LLMServiceError("No response generated")
        return text
