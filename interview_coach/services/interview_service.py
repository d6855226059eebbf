# services/interview_service.py
import asyncio
import uuid
from typing import Optional, Sequence

from interview_coach.errors import EmptyInput, InvalidTransition, SessionNotFound, TurnInProgress
from interview_coach.models.request import AvatarResponse, TurnResponse
from interview_coach.models.session import (
    AvatarEmotion,
    AvatarState,
    ConversationMessage,
    MessageRole,
    SessionState,
    SessionStatus,
    now_ms,
)
from interview_coach.services.avatar_videos import AvatarPhase, get_avatar_video_tag
from interview_coach.services.conversation_orchestrator import ConversationOrchestrator, OrchestratorDecision
from interview_coach.services.session_state import SessionStateMachine
from interview_coach.services.tts_service import TTSService
from interview_coach.utils.logger import get_logger, session_context

logger = get_logger("InterviewService")

# a new answer is only taken while nobody is mid-turn
TURN_OPEN_STATES = (SessionStatus.IDLE, SessionStatus.LISTENING)


def generate_session_id() -> str:
    return f"session_{now_ms()}_{uuid.uuid4().hex[:9]}"


def _idle_avatar() -> AvatarState:
    return AvatarState(
        emotion=AvatarEmotion.NEUTRAL,
        video_ref=get_avatar_video_tag(AvatarEmotion.NEUTRAL, AvatarPhase.IDLE),
        is_playing=False,
    )


class InterviewService:
    """Runs turns: answer in, avatar reply out, session record kept in step."""

    def __init__(
        self,
        sessions: SessionStateMachine,
        orchestrator: ConversationOrchestrator,
        tts: Optional[TTSService] = None,
    ):
        self.sessions = sessions
        self.orchestrator = orchestrator
        self.tts = tts

    async def start_session(self, owner: str, session_id: Optional[str] = None) -> SessionState:
        return await self.sessions.create(session_id or generate_session_id(), owner)

    async def get_session(self, session_id: str) -> SessionState:
        state = await self.sessions.read(session_id)
        if state is None:
            raise SessionNotFound(session_id)
        return state

    async def submit_answer(
        self,
        session_id: str,
        transcript: str,
        history: Optional[Sequence[ConversationMessage]] = None,
    ) -> TurnResponse:
        """
        One turn. The session goes idle -> processing -> speaking; on any
        failure it goes back to idle with the history untouched, so the same
        answer can be submitted again.
        """
        answer = (transcript or "").strip()
        if not answer:
            raise EmptyInput(field="user_transcript")

        with session_context(session_id):
            return await self._run_turn(session_id, answer, history)

    async def _run_turn(
        self,
        session_id: str,
        answer: str,
        history: Optional[Sequence[ConversationMessage]],
    ) -> TurnResponse:
        state = await self.get_session(session_id)
        if state.status not in TURN_OPEN_STATES:
            raise TurnInProgress(session_id, state.status.value)

        thinking = AvatarState(
            emotion=AvatarEmotion.THINKING,
            video_ref=get_avatar_video_tag(AvatarEmotion.THINKING, AvatarPhase.IDLE),
            is_playing=True,
        )
        try:
            state = await self.sessions.transition(
                session_id, SessionStatus.PROCESSING, from_states=TURN_OPEN_STATES, avatar_state=thinking
            )
        except InvalidTransition as e:
            # another turn got in between the read and the transition
            raise TurnInProgress(session_id, e.payload["from"]) from e

        context = list(history) if history else list(state.conversation_history)
        completed = False
        try:
            decision = await self.orchestrator.respond(context, answer)
            audio_ref = await self._synthesize(decision.text)
            video_ref = get_avatar_video_tag(decision.emotion, AvatarPhase.SPEAKING)
            speaking = AvatarState(emotion=decision.emotion, video_ref=video_ref, audio_ref=audio_ref,
                                   is_playing=True)

            new_messages = [
                ConversationMessage(role=MessageRole.USER, text=answer),
                ConversationMessage(role=MessageRole.ASSISTANT, text=decision.text),
            ]
            await self.sessions.transition(
                session_id,
                SessionStatus.SPEAKING,
                lambda current: {"conversation_history": list(current.conversation_history) + new_messages},
                avatar_state=speaking,
            )
            completed = True
        except asyncio.CancelledError:
            logger.warning(f"Turn cancelled for {session_id}")
            raise
        except Exception as e:
            logger.error(f"❌ Turn failed for {session_id}: {e}")
            raise
        finally:
            if not completed:
                # the reset must land even when the caller is being cancelled
                await asyncio.shield(self._reset_after_failure(session_id))

        logger.info(f"🗣️ Session {session_id} speaking ({decision.emotion.value})")
        return self._turn_response(decision, video_ref, audio_ref)

    async def playback_finished(self, session_id: str) -> SessionState:
        """Avatar audio ended: back to idle for the next answer."""
        return await self.sessions.transition(
            session_id,
            SessionStatus.IDLE,
            from_states=(SessionStatus.SPEAKING, SessionStatus.IDLE),
            avatar_state=_idle_avatar(),
        )

    async def advance_question(self, session_id: str) -> SessionState:
        state = await self.sessions.transition(
            session_id,
            SessionStatus.IDLE,
            lambda current: {"current_question_index": current.current_question_index + 1},
            from_states=(SessionStatus.SPEAKING, SessionStatus.IDLE, SessionStatus.LISTENING),
            avatar_state=_idle_avatar(),
        )
        logger.info(f"➡️ Session {session_id} moved to question {state.current_question_index}")
        return state

    async def _reset_after_failure(self, session_id: str) -> None:
        try:
            await self.sessions.transition(session_id, SessionStatus.IDLE, avatar_state=_idle_avatar())
        except Exception as reset_error:
            logger.error(f"Could not reset session {session_id} after failed turn: {reset_error}", exc_info=True)

    async def _synthesize(self, text: str) -> Optional[str]:
        if self.tts is None:
            return None
        try:
            return await self.tts.synthesize_audio_ref(text)
        except Exception as e:
            # the clip can still play without audio
            logger.warning(f"TTS failed, continuing without audio: {e}")
            return None

    @staticmethod
    def _turn_response(decision: OrchestratorDecision, video_ref: Optional[str],
                       audio_ref: Optional[str]) -> TurnResponse:
        return TurnResponse(
            avatar_response=AvatarResponse(
                text=decision.text,
                emotion=decision.emotion,
                video_ref=video_ref,
                audio_ref=audio_ref,
                ready_to_advance=decision.ready_to_advance,
            ),
            next_question=decision.next_question,
            follow_up=decision.follow_up,
        )
