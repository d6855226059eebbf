from pydantic import BaseModel, Field
from typing import Optional, List

from interview_coach.models.session import AvatarEmotion, ConversationMessage


class CreateSessionRequest(BaseModel):
    owner: str = Field(..., min_length=1, examples=["user_123"])
    session_id: Optional[str] = Field(None, description="caller-generated unique id")


class TurnRequest(BaseModel):
    session_id: str = Field(..., min_length=1)
    user_transcript: str = Field(..., min_length=1, examples=["I led a team of 5 engineers..."])
    conversation_history: List[ConversationMessage] = []


class AvatarResponse(BaseModel):
    text: str
    emotion: AvatarEmotion
    video_ref: Optional[str] = None
    audio_ref: Optional[str] = None
    ready_to_advance: bool = False


class TurnResponse(BaseModel):
    avatar_response: AvatarResponse
    next_question: Optional[str] = None
    follow_up: bool = False


class AnalysisRequest(BaseModel):
    transcript: str = Field(..., min_length=1)
    question: str = Field(..., min_length=1)
    framework: Optional[str] = None
    media_refs: Optional[List[str]] = Field(None, description="data: or http(s) URLs")
    duration_seconds: Optional[float] = Field(None, ge=0)


class TranscriptCorrectionRequest(BaseModel):
    question_index: int = Field(..., ge=0)
    question_text: str
    transcript: str
    framework: str = ""
    duration_seconds: float = 0
    media_ref: Optional[str] = None
