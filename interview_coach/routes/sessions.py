# ========================================
# routes/sessions.py - Session lifecycle and avatar turns
# ========================================

from fastapi import APIRouter, Depends, HTTPException

from interview_coach.errors import InterviewCoachError
from interview_coach.models.request import CreateSessionRequest, TurnRequest, TurnResponse
from interview_coach.models.session import SessionState
from interview_coach.routes.deps import get_interview_service
from interview_coach.services.interview_service import InterviewService
from interview_coach.utils.auth import verify_api_token
from interview_coach.utils.logger import get_logger

router = APIRouter(tags=["Sessions"], dependencies=[Depends(verify_api_token)])
logger = get_logger("SessionRoutes")


@router.post("/sessions", response_model=SessionState, status_code=201)
async def create_session(
    request: CreateSessionRequest,
    service: InterviewService = Depends(get_interview_service),
):
    """Start a new question set"""
    try:
        return await service.start_session(request.owner, request.session_id)
    except InterviewCoachError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    except Exception as e:
        logger.error(f"Error creating session: {e}", exc_info=True)
        raise HTTPException(500, "Failed to create session")


@router.get("/sessions/{session_id}", response_model=SessionState)
async def get_session(
    session_id: str,
    service: InterviewService = Depends(get_interview_service),
):
    try:
        return await service.get_session(session_id)
    except InterviewCoachError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    except Exception as e:
        logger.error(f"Error reading session {session_id}: {e}", exc_info=True)
        raise HTTPException(500, "Failed to read session")


@router.post("/avatar/respond", response_model=TurnResponse)
async def avatar_respond(
    request: TurnRequest,
    service: InterviewService = Depends(get_interview_service),
):
    """Submit an answer and get the avatar's reply"""
    try:
        return await service.submit_answer(
            request.session_id,
            request.user_transcript,
            request.conversation_history,
        )
    except InterviewCoachError as e:
        logger.warning(f"Turn rejected for {request.session_id}: {e.message}")
        raise HTTPException(status_code=e.status_code, detail=e.message)
    except Exception as e:
        logger.error(f"Error generating avatar response: {e}", exc_info=True)
        raise HTTPException(500, "Failed to generate avatar response")


@router.post("/sessions/{session_id}/playback-finished", response_model=SessionState)
async def playback_finished(
    session_id: str,
    service: InterviewService = Depends(get_interview_service),
):
    try:
        return await service.playback_finished(session_id)
    except InterviewCoachError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    except Exception as e:
        logger.error(f"Error finishing playback for {session_id}: {e}", exc_info=True)
        raise HTTPException(500, "Failed to update session")


@router.post("/sessions/{session_id}/advance", response_model=SessionState)
async def advance_question(
    session_id: str,
    service: InterviewService = Depends(get_interview_service),
):
    try:
        return await service.advance_question(session_id)
    except InterviewCoachError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    except Exception as e:
        logger.error(f"Error advancing session {session_id}: {e}", exc_info=True)
        raise HTTPException(500, "Failed to advance question")
