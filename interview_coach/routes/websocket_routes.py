# routes/websocket_routes.py
"""
WebSocket routes for the avatar interview
"""
from fastapi import APIRouter, Depends, WebSocket

from interview_coach.routes.deps import RecognizerFactory, get_interview_service, get_recognizer_factory
from interview_coach.services.interview_service import InterviewService
from interview_coach.services.interview_websocket import InterviewWebSocketHandler

router = APIRouter(prefix="/ws", tags=["WebSocket"])


@router.websocket("/session/{session_id}")
async def session_websocket(
    websocket: WebSocket,
    session_id: str,
    service: InterviewService = Depends(get_interview_service),
    recognizer_factory: RecognizerFactory = Depends(get_recognizer_factory),
):
    """
    WebSocket endpoint for one interview session

    Client sends:
    - Audio chunks (bytes)
    - Control messages (JSON)

    Server sends:
    - Session snapshots on every change
    - Live transcript
    - Avatar replies
    - Status updates and errors
    """
    handler = InterviewWebSocketHandler(websocket, session_id, service, recognizer_factory)
    await handler.handle_connection()
