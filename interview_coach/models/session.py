import time
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


def now_ms() -> int:
    return int(time.time() * 1000)


class MessageRole(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"


class SessionStatus(str, Enum):
    IDLE = "idle"
    LISTENING = "listening"  # push-to-talk indicator; treated like idle
    PROCESSING = "processing"
    SPEAKING = "speaking"


class AvatarEmotion(str, Enum):
    NEUTRAL = "neutral"
    ENCOURAGING = "encouraging"
    THINKING = "thinking"
    CONCERNED = "concerned"


class ConversationMessage(BaseModel):
    model_config = ConfigDict(frozen=True)

    role: MessageRole
    text: str
    timestamp: int = Field(default_factory=now_ms)


class AvatarState(BaseModel):
    model_config = ConfigDict(frozen=True)

    emotion: AvatarEmotion = AvatarEmotion.NEUTRAL
    video_ref: Optional[str] = None
    audio_ref: Optional[str] = None
    is_playing: bool = False

    @classmethod
    def neutral(cls, is_playing: bool = False) -> "AvatarState":
        return cls(emotion=AvatarEmotion.NEUTRAL, is_playing=is_playing)


class SessionState(BaseModel):
    """Shared state of one interview question set, as stored in the session store."""

    model_config = ConfigDict(extra="forbid")

    session_id: str
    owner: str
    status: SessionStatus = SessionStatus.IDLE
    current_question_index: int = 0
    conversation_history: List[ConversationMessage] = []
    avatar_state: AvatarState = Field(default_factory=AvatarState.neutral)
    created_at: int = Field(default_factory=now_ms)
    updated_at: int = Field(default_factory=now_ms)
