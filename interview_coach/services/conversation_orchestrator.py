# services/conversation_orchestrator.py
"""
Decides what the avatar says after each answer.

Pure request/response: history and transcript in, a validated decision out.
Session state is left to the caller.
"""
import json
from dataclasses import dataclass
from typing import Any, Optional, Protocol, Sequence

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError, field_validator

from interview_coach.config import get_settings
from interview_coach.errors import EmptyInput, MalformedOrchestratorReply
from interview_coach.models.session import AvatarEmotion, ConversationMessage, MessageRole
from interview_coach.services.response_parser import strip_code_fences
from interview_coach.utils.logger import get_logger

logger = get_logger("ConversationOrchestrator")

DEFAULT_ACKNOWLEDGEMENT = "Thank you for sharing that."
MAX_REPLY_SENTENCES = 3

ORCHESTRATOR_PROMPT = """You are Alex, a warm but rigorous interviewer running a mock behavioral interview.

CONVERSATION SO FAR:
{history}

CANDIDATE'S LATEST ANSWER:
"{transcript}"

Decide how to respond:
- If the answer is vague or misses a key part (situation, action, result), ask ONE short follow-up question.
- If the answer is complete enough, acknowledge it briefly and signal that you are ready to move on.
- Pick the emotion that fits your reaction.

Return JSON ONLY in this exact shape:
{{
  "text": "what you say aloud, at most {max_sentences} sentences",
  "emotion": "neutral" | "encouraging" | "thinking" | "concerned",
  "next_question": "the follow-up question, or empty string",
  "ready_to_advance": true | false,
  "follow_up": true | false
}}

Rules:
- Always return valid JSON.
- Do not set ready_to_advance and ask a follow-up at the same time.
- Never mention that you are an AI.
"""


class LLMClient(Protocol):
    async def generate_text(self, prompt: str, temperature: Optional[float] = None) -> str: ...


class OrchestratorReply(BaseModel):
    """Wire shape of the model's reply. camelCase keys are accepted too."""

    model_config = ConfigDict(extra="ignore")

    text: str = ""
    emotion: AvatarEmotion = AvatarEmotion.NEUTRAL
    next_question: str = Field("", validation_alias=AliasChoices("next_question", "nextQuestion"))
    ready_to_advance: bool = Field(False, validation_alias=AliasChoices("ready_to_advance", "readyToAdvance"))
    follow_up: bool = Field(False, validation_alias=AliasChoices("follow_up", "followUp"))

    @field_validator("text", "next_question", mode="before")
    @classmethod
    def _none_to_empty(cls, value: Any) -> Any:
        if value is None:
            return ""
        return value if isinstance(value, str) else str(value)

    @field_validator("emotion", mode="before")
    @classmethod
    def _coerce_emotion(cls, value: Any) -> AvatarEmotion:
        try:
            return AvatarEmotion(str(value).strip().lower())
        except ValueError:
            logger.warning(f"Unknown avatar emotion {value!r}; using neutral")
            return AvatarEmotion.NEUTRAL

    @field_validator("ready_to_advance", "follow_up", mode="before")
    @classmethod
    def _none_to_false(cls, value: Any) -> Any:
        return False if value is None else value


@dataclass(frozen=True)
class OrchestratorDecision:
    text: str
    emotion: AvatarEmotion
    next_question: Optional[str]
    ready_to_advance: bool
    follow_up: bool


def format_history(history: Sequence[ConversationMessage]) -> str:
    if not history:
        return "(this is the first answer)"
    lines = []
    for message in history:
        speaker = "Interviewer" if message.role == MessageRole.ASSISTANT else "Candidate"
        lines.append(f"{speaker}: {message.text}")
    return "\n".join(lines)


def parse_orchestrator_reply(raw: str) -> OrchestratorDecision:
    """Validate and sanitise the model's reply. Anything but the expected JSON object is fatal."""
    cleaned = strip_code_fences(raw)
    try:
        payload = json.loads(cleaned)
    except ValueError as e:
        raise MalformedOrchestratorReply(f"Interviewer reply is not valid JSON: {e}", raw=raw) from e
    if not isinstance(payload, dict):
        raise MalformedOrchestratorReply("Interviewer reply is not a JSON object", raw=raw)
    try:
        reply = OrchestratorReply.model_validate(payload)
    except ValidationError as e:
        raise MalformedOrchestratorReply(f"Interviewer reply has invalid fields: {e}", raw=raw) from e

    text = reply.text.strip() or DEFAULT_ACKNOWLEDGEMENT
    next_question = reply.next_question.strip() or None
    follow_up = reply.follow_up

    if reply.ready_to_advance:
        # advancing wins over any follow-up the model also asked for
        if next_question:
            logger.info("Reply both advances and asks a follow-up; dropping the follow-up")
        next_question = None
        follow_up = False
    elif next_question and not follow_up:
        follow_up = True
    elif not next_question:
        follow_up = False

    return OrchestratorDecision(
        text=text,
        emotion=reply.emotion,
        next_question=next_question,
        ready_to_advance=reply.ready_to_advance,
        follow_up=follow_up,
    )


class ConversationOrchestrator:
    def __init__(self, llm: LLMClient, context_turns: Optional[int] = None,
                 temperature: Optional[float] = None):
        settings = get_settings()
        self.llm = llm
        self.context_turns = (
            context_turns if context_turns is not None else settings.conversation_context_turns
        )
        self.temperature = temperature

    def build_prompt(self, history: Sequence[ConversationMessage], transcript: str) -> str:
        return ORCHESTRATOR_PROMPT.format(
            history=format_history(history),
            transcript=transcript,
            max_sentences=MAX_REPLY_SENTENCES,
        )

    async def respond(self, history: Sequence[ConversationMessage], transcript: str) -> OrchestratorDecision:
        if not transcript or not transcript.strip():
            raise EmptyInput(field="user_transcript")

        recent = list(history)[-self.context_turns:] if self.context_turns > 0 else []
        prompt = self.build_prompt(recent, transcript.strip())
        raw = await self.llm.generate_text(prompt, temperature=self.temperature)
        decision = parse_orchestrator_reply(raw)
        logger.info(
            f"🤖 Reply ready (emotion={decision.emotion.value}, advance={decision.ready_to_advance}, "
            f"follow_up={decision.follow_up})"
        )
        return decision
