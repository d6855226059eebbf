import asyncio
import copy
from typing import Any, Awaitable, Callable, Dict, List, Optional

import pytest

from interview_coach.models.interview import MediaPayload
from interview_coach.services.analysis_backends import Available, Unavailable
from interview_coach.services.session_state import SessionStateMachine
from interview_coach.services.speech_accumulator import (
    EventSink,
    RecognizerEvent,
    ResultEvent,
    SpeechAlternative,
    SpeechSegment,
)


# ---------------------------------------------------------------------- #
# Session store
# ---------------------------------------------------------------------- #

class MemorySubscription:
    def __init__(self, store: "MemorySessionStore", session_id: str, callback):
        self.store = store
        self.session_id = session_id
        self.callback = callback

    async def cancel(self) -> None:
        subscribers = self.store.subscribers.get(self.session_id, [])
        if self.callback in subscribers:
            subscribers.remove(self.callback)


class MemorySessionStore:
    """Dict-backed store. Notifications arrive on separate tasks, like pub/sub."""

    def __init__(self):
        self.docs: Dict[str, Dict[str, Any]] = {}
        self.subscribers: Dict[str, List[Callable[[Dict[str, Any]], Awaitable[None]]]] = {}
        self.writes = 0
        self._pending: List[asyncio.Task] = []

    async def get(self, session_id: str) -> Optional[Dict[str, Any]]:
        await asyncio.sleep(0)  # let concurrent writers interleave if they can
        doc = self.docs.get(session_id)
        return copy.deepcopy(doc) if doc is not None else None

    async def set(self, session_id: str, data: Dict[str, Any]) -> None:
        await asyncio.sleep(0)
        self.docs[session_id] = copy.deepcopy(data)
        self.writes += 1
        self._notify(session_id)

    async def create(self, session_id: str, data: Dict[str, Any]) -> bool:
        if session_id in self.docs:
            return False
        self.docs[session_id] = copy.deepcopy(data)
        self._notify(session_id)
        return True

    async def subscribe(self, session_id: str, callback) -> MemorySubscription:
        self.subscribers.setdefault(session_id, []).append(callback)
        return MemorySubscription(self, session_id, callback)

    async def settle(self) -> None:
        """Wait until every notification sent so far has been delivered."""
        while self._pending:
            pending, self._pending = self._pending, []
            await asyncio.gather(*pending)

    def _notify(self, session_id: str) -> None:
        loop = asyncio.get_running_loop()
        for callback in list(self.subscribers.get(session_id, [])):
            self._pending.append(loop.create_task(callback(copy.deepcopy(self.docs[session_id]))))


@pytest.fixture
def store() -> MemorySessionStore:
    return MemorySessionStore()


@pytest.fixture
async def machine(store):
    state_machine = SessionStateMachine(store, actor_idle_seconds=5)
    yield state_machine
    await state_machine.close()


# ---------------------------------------------------------------------- #
# Speech
# ---------------------------------------------------------------------- #

def segment(text: str, confidence: float, is_final: bool) -> SpeechSegment:
    return SpeechSegment(alternatives=[SpeechAlternative(text, confidence)], is_final=is_final)


class FakeRecognizer:
    """Records lifecycle calls; the test pushes events through emit()."""

    def __init__(self, fail_starts_after: Optional[int] = None, start_error: Optional[Exception] = None):
        self.sinks: List[EventSink] = []
        self.starts = 0
        self.stops = 0
        self.fail_starts_after = fail_starts_after
        self.start_error = start_error
        self.audio: List[bytes] = []

    @property
    def sink(self) -> EventSink:
        return self.sinks[-1]

    async def start(self, sink: EventSink) -> None:
        self.starts += 1
        if self.start_error is not None:
            raise self.start_error
        if self.fail_starts_after is not None and self.starts > self.fail_starts_after:
            raise RuntimeError("network unreachable")
        self.sinks.append(sink)

    async def stop(self) -> None:
        self.stops += 1

    def emit(self, event: RecognizerEvent) -> None:
        self.sink(event)


class ScriptedRecognizer(FakeRecognizer):
    """Each audio frame is treated as one confidently recognised final segment."""

    def __init__(self):
        super().__init__()
        self._results: List[SpeechSegment] = []

    async def start(self, sink: EventSink) -> None:
        await super().start(sink)
        self._results = []

    async def send_audio(self, audio: bytes) -> None:
        self.audio.append(audio)
        self._results.append(segment(audio.decode("utf-8"), 0.95, True))
        self.emit(ResultEvent(results=list(self._results), result_index=len(self._results) - 1))


# ---------------------------------------------------------------------- #
# LLM / TTS
# ---------------------------------------------------------------------- #

class FakeLLM:
    """Returns queued replies in order; queued exceptions are raised instead."""

    def __init__(self, *replies):
        self.replies = list(replies)
        self.prompts: List[str] = []

    def queue(self, *replies) -> None:
        self.replies.extend(replies)

    async def generate_text(self, prompt: str, temperature: Optional[float] = None) -> str:
        self.prompts.append(prompt)
        reply = self.replies.pop(0)
        if isinstance(reply, BaseException):
            raise reply
        return reply


class FakeTTS:
    def __init__(self, error: Optional[Exception] = None):
        self.error = error
        self.texts: List[str] = []

    async def synthesize_audio_ref(self, text: str) -> Optional[str]:
        self.texts.append(text)
        if self.error is not None:
            raise self.error
        return "data:audio/mpeg;base64,SUQz"


# ---------------------------------------------------------------------- #
# Analysis backends
# ---------------------------------------------------------------------- #

class FakeHandle:
    def __init__(self, *outcomes, name: str = "fake", supports_media: bool = True,
                 supports_upload: bool = True, upload_error: Optional[Exception] = None):
        self.name = name
        self.supports_media = supports_media
        self.supports_upload = supports_upload
        self.outcomes = list(outcomes)
        self.upload_error = upload_error
        self.calls: List[tuple] = []
        self.uploaded: List[str] = []
        self.deleted: List[str] = []

    async def generate(self, prompt: str, parts=()) -> str:
        self.calls.append((prompt, list(parts)))
        outcome = self.outcomes.pop(0)
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome

    async def upload(self, media: MediaPayload) -> str:
        if self.upload_error is not None:
            raise self.upload_error
        ref = f"files/{media.display_name}"
        self.uploaded.append(ref)
        return ref

    async def delete_upload(self, ref: str) -> None:
        self.deleted.append(ref)


class FakeBackend:
    def __init__(self, handle: Optional[FakeHandle] = None, reason: str = "not configured",
                 name: Optional[str] = None):
        self.handle = handle
        self.reason = reason
        self.name = name or (handle.name if handle else "unavailable")
        self.probes = 0

    def probe(self):
        self.probes += 1
        if self.handle is None:
            return Unavailable(self.reason)
        return Available(self.handle)


class SleepRecorder:
    def __init__(self):
        self.delays: List[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


@pytest.fixture
def sleeps() -> SleepRecorder:
    return SleepRecorder()
