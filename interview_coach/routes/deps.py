# routes/deps.py
"""
Shared service instances for the routers.

Built lazily on first use so importing the app does not open connections;
tests swap them through ``app.dependency_overrides``.
"""
from functools import lru_cache
from typing import Callable, Optional

from interview_coach.services.analysis_pipeline import AnalysisPipeline
from interview_coach.services.conversation_orchestrator import ConversationOrchestrator
from interview_coach.services.deepgram_service import create_recognizer
from interview_coach.services.gemini_service import GeminiService
from interview_coach.services.interview_service import InterviewService
from interview_coach.services.session_state import SessionStateMachine
from interview_coach.services.speech_accumulator import SpeechRecognizer
from interview_coach.services.tts_service import TTSService
from interview_coach.utils.redis_client import RedisSessionStore

RecognizerFactory = Callable[[], Optional[SpeechRecognizer]]


@lru_cache
def get_session_machine() -> SessionStateMachine:
    return SessionStateMachine(RedisSessionStore())


@lru_cache
def get_interview_service() -> InterviewService:
    return InterviewService(
        sessions=get_session_machine(),
        orchestrator=ConversationOrchestrator(GeminiService()),
        tts=TTSService(),
    )


@lru_cache
def get_analysis_pipeline() -> AnalysisPipeline:
    return AnalysisPipeline()


def get_recognizer_factory() -> RecognizerFactory:
    return create_recognizer
