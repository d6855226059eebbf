# ========================================
# config.py - Service configuration
# ========================================

import os
from functools import lru_cache
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # ---------- LLM Configuration (Gemini) ----------------------------- #
    llm_api_key: str = ""
    llm_model: str = "gemini-2.5-flash"
    llm_temperature: float = 0.7
    llm_max_tokens: int = 6000

    # ---------- Analysis Backends -------------------------------------- #
    analysis_primary_model: str = "gemini-2.5-pro"
    analysis_fallback_model: str = "gemini-2.5-flash"
    analysis_temperature: float = 0.3
    groq_api_key: str = ""
    groq_model: str = "llama-3.1-8b-instant"

    # ---------- Analysis Retry / Payload ------------------------------- #
    analysis_max_attempts: int = 4
    analysis_base_delay_seconds: float = 0.75
    analysis_inline_media_bytes: int = 8 * 1024 * 1024
    analysis_max_media_bytes: int = 80 * 1024 * 1024
    analysis_upload_enabled: bool = True

    # ---------- Speech Services ---------------------------------------- #
    deepgram_api_key: str = ""
    deepgram_model: str = "nova-2"
    speech_language: str = "en-US"
    speech_final_confidence: float = 0.4
    speech_interim_confidence: float = 0.6
    speech_restart_delay_seconds: float = 0.25
    speech_max_restart_attempts: int = 5

    # TTS (Edge neural voices)
    tts_voice: str = "en-US-GuyNeural"
    tts_rate: str = "+0%"
    tts_pitch: str = "+0Hz"

    # ---------- Session Store ------------------------------------------ #
    redis_host: str = "localhost"
    redis_port: int = 6379
    redis_db: int = 0
    redis_password: str = ""
    session_ttl_seconds: int = 3600
    session_actor_idle_seconds: float = 300.0

    # ---------- Security ----------------------------------------------- #
    api_token: str = os.getenv("API_TOKEN", "")

    # ---------- CORS --------------------------------------------------- #
    allowed_origins: str = "http://localhost:3000,http://localhost:5173"

    # ---------- Interview Settings ------------------------------------- #
    max_recording_seconds: int = 120
    conversation_context_turns: int = 6
    target_answer_words: int = 120

    # ---------- Logging ------------------------------------------------ #
    log_level: str = "INFO"
    log_format: str = "console"

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False)


@lru_cache
def get_settings() -> Settings:
    return Settings()
