# services/speech_accumulator.py
"""
Continuous speech capture.

Folds the segment-by-segment results of a live recognizer into one stable
transcript per recording. The recognizer is flaky by nature: streams end on
their own, networks drop. Transient failures restart the stream after a short
delay, but only while the caller still wants capture running.

Lifecycle::

    STOPPED -> STARTING -> ACTIVE -> RESTARTING -> ACTIVE
                                  \\-> STOPPED      \\-> STOPPED
    any -> UNAVAILABLE   (missing capability, permission denied, too many restarts)
"""
import asyncio
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional, Protocol, Sequence, Union

from interview_coach.config import get_settings
from interview_coach.errors import CapturePermissionDenied, CaptureUnavailable, InterviewCoachError
from interview_coach.utils.logger import get_logger

logger = get_logger("SpeechAccumulator")

NO_SPEECH = "no-speech"
# permission denied (browser / service) and device inaccessible
FATAL_ERRORS = frozenset({"not-allowed", "service-not-allowed", "audio-capture"})


# ---------------------------------------------------------------------- #
# Recognizer events
# ---------------------------------------------------------------------- #

@dataclass(frozen=True)
class SpeechAlternative:
    text: str
    confidence: float


@dataclass(frozen=True)
class SpeechSegment:
    alternatives: Sequence[SpeechAlternative] = ()
    is_final: bool = False

    def best(self) -> Optional[SpeechAlternative]:
        if not self.alternatives:
            return None
        return max(self.alternatives, key=lambda a: a.confidence)


@dataclass(frozen=True)
class ResultEvent:
    """All segments of the current stream; segments before result_index are unchanged."""
    results: Sequence[SpeechSegment]
    result_index: int = 0


@dataclass(frozen=True)
class ErrorEvent:
    code: str
    message: str = ""


@dataclass(frozen=True)
class EndEvent:
    pass


RecognizerEvent = Union[ResultEvent, ErrorEvent, EndEvent]
EventSink = Callable[[RecognizerEvent], None]


class SpeechRecognizer(Protocol):
    """A live transcription stream. Events are pushed into the sink on the event loop."""

    async def start(self, sink: EventSink) -> None: ...

    async def stop(self) -> None: ...


class CaptureState(str, Enum):
    STOPPED = "stopped"
    STARTING = "starting"
    ACTIVE = "active"
    RESTARTING = "restarting"
    UNAVAILABLE = "unavailable"


_LIVE_STATES = (CaptureState.STARTING, CaptureState.ACTIVE, CaptureState.RESTARTING)


class SpeechAccumulator:
    """Builds one transcript per recording from a restartable recognizer stream."""

    def __init__(
        self,
        recognizer: Optional[SpeechRecognizer],
        *,
        final_threshold: Optional[float] = None,
        interim_threshold: Optional[float] = None,
        restart_delay: Optional[float] = None,
        max_restart_attempts: Optional[int] = None,
        on_transcript: Optional[Callable[[str], None]] = None,
        on_fatal: Optional[Callable[[InterviewCoachError], None]] = None,
    ):
        settings = get_settings()
        self.recognizer = recognizer
        self.final_threshold = settings.speech_final_confidence if final_threshold is None else final_threshold
        self.interim_threshold = settings.speech_interim_confidence if interim_threshold is None else interim_threshold
        self.restart_delay = settings.speech_restart_delay_seconds if restart_delay is None else restart_delay
        self.max_restart_attempts = (
            settings.speech_max_restart_attempts if max_restart_attempts is None else max_restart_attempts
        )
        self.on_transcript = on_transcript
        self.on_fatal = on_fatal

        self.state = CaptureState.STOPPED
        self.error: Optional[InterviewCoachError] = None

        self._committed = ""
        self._interim = ""
        self._cursor = 0
        self._frozen: Optional[str] = None
        self._generation = 0
        self._restart_task: Optional[asyncio.Task] = None
        self._release_task: Optional[asyncio.Task] = None
        self._restart_failures = 0
        self._permanently_unavailable = recognizer is None

    # ------------------------------------------------------------------ #
    # Public surface
    # ------------------------------------------------------------------ #

    @property
    def is_active(self) -> bool:
        return self.state in _LIVE_STATES

    @property
    def is_available(self) -> bool:
        return self.state is not CaptureState.UNAVAILABLE

    @property
    def committed_text(self) -> str:
        return self._committed

    @property
    def transcript(self) -> str:
        """What the candidate sees right now; frozen to the committed text after stop()."""
        if self._frozen is not None:
            return self._frozen
        if not self._interim:
            return self._committed
        return " ".join(p for p in (self._committed.strip(), self._interim) if p)

    async def start(self) -> None:
        if self.is_active:
            await self._halt()
        self._reset()

        if self._permanently_unavailable:
            self.state = CaptureState.UNAVAILABLE
            self._frozen = ""
            if self.error is None:
                self.error = CaptureUnavailable()
            logger.info("Speech capture unavailable; recording continues without transcript")
            return

        self._generation += 1
        generation = self._generation
        self.state = CaptureState.STARTING
        try:
            await self.recognizer.start(self._sink_for(generation))
        except CapturePermissionDenied as e:
            self._fail(e, permanent=True)
            return
        except Exception as e:
            logger.warning(f"Speech recognizer failed to start: {e}")
            self._fail(CaptureUnavailable(f"Speech capture unavailable: {e}"), permanent=False)
            return

        if generation != self._generation:
            # stopped (or restarted) while the stream was opening
            await self._release_recognizer()
            return
        if self.state is CaptureState.STARTING:
            self.state = CaptureState.ACTIVE
            logger.info("🎤 Speech capture started")

    async def stop(self) -> str:
        """Stop capture and return the final transcript (committed text only)."""
        if not self.is_active:
            return self.transcript

        self.state = CaptureState.STOPPED
        self._generation += 1
        self._cancel_restart()
        self._interim = ""
        self._frozen = self._committed.strip()
        await self._release_recognizer()
        self._notify()
        logger.info(f"🛑 Speech capture stopped ({len(self._frozen.split())} words)")
        return self._frozen

    # ------------------------------------------------------------------ #
    # Event handling
    # ------------------------------------------------------------------ #

    def _sink_for(self, generation: int) -> EventSink:
        def sink(event: RecognizerEvent) -> None:
            if generation != self._generation:
                logger.debug(f"Dropping stale recognizer event {type(event).__name__}")
                return
            if isinstance(event, ResultEvent):
                self._on_result(event)
            elif isinstance(event, ErrorEvent):
                self._on_error(event)
            elif isinstance(event, EndEvent):
                self._on_end()

        return sink

    def _on_result(self, event: ResultEvent) -> None:
        if self.state not in (CaptureState.STARTING, CaptureState.ACTIVE):
            return

        interim_parts = []
        for i in range(event.result_index, len(event.results)):
            segment = event.results[i]
            best = segment.best()
            if segment.is_final:
                if i < self._cursor:
                    continue
                self._cursor = i + 1
                if best and best.confidence >= self.final_threshold and best.text.strip():
                    self._committed += best.text.strip() + " "
                elif best:
                    logger.debug(f"Rejected final segment (confidence {best.confidence:.2f})")
            elif best and best.confidence >= self.interim_threshold and best.text.strip():
                interim_parts.append(best.text.strip())

        self._interim = " ".join(interim_parts)
        self._restart_failures = 0
        self._notify()

    def _on_error(self, event: ErrorEvent) -> None:
        if event.code == NO_SPEECH:
            logger.debug("No speech detected")
            return
        if event.code in FATAL_ERRORS:
            self._fail(
                CapturePermissionDenied(f"Speech capture blocked: {event.message or event.code}", code=event.code),
                permanent=True,
            )
            return
        logger.warning(f"Speech stream error '{event.code}': {event.message}")
        self._schedule_restart()

    def _on_end(self) -> None:
        if self.state in (CaptureState.STARTING, CaptureState.ACTIVE):
            logger.info("Speech stream ended while capturing; restarting")
            self._schedule_restart()

    # ------------------------------------------------------------------ #
    # Restart handling
    # ------------------------------------------------------------------ #

    def _schedule_restart(self) -> None:
        if not self.is_active or self.state is CaptureState.RESTARTING:
            return
        self.state = CaptureState.RESTARTING
        if self._interim:
            self._interim = ""
            self._notify()
        self._restart_task = asyncio.get_running_loop().create_task(self._restart_after(self._generation))

    async def _restart_after(self, generation: int) -> None:
        await asyncio.sleep(self.restart_delay)
        if generation != self._generation or self.state is not CaptureState.RESTARTING:
            return
        self._restart_task = None

        await self._release_recognizer()
        if generation != self._generation or self.state is not CaptureState.RESTARTING:
            return

        self._generation += 1
        new_generation = self._generation
        self._cursor = 0
        try:
            await self.recognizer.start(self._sink_for(new_generation))
        except CapturePermissionDenied as e:
            self._fail(e, permanent=True)
            return
        except Exception as e:
            if new_generation != self._generation:
                return
            self._restart_failures += 1
            logger.warning(f"Speech restart {self._restart_failures}/{self.max_restart_attempts} failed: {e}")
            if self._restart_failures >= self.max_restart_attempts:
                self._fail(CaptureUnavailable("Speech capture gave up after repeated restarts"), permanent=False)
                return
            self.state = CaptureState.ACTIVE
            self._schedule_restart()
            return

        if new_generation != self._generation:
            await self._release_recognizer()
            return
        if self.state is CaptureState.RESTARTING:
            self.state = CaptureState.ACTIVE
            logger.info("🔁 Speech capture restarted")

    def _cancel_restart(self) -> None:
        if self._restart_task is not None:
            self._restart_task.cancel()
            self._restart_task = None

    # ------------------------------------------------------------------ #
    # Internals
    # ------------------------------------------------------------------ #

    def _fail(self, error: InterviewCoachError, permanent: bool) -> None:
        was_live = self.is_active
        self.state = CaptureState.UNAVAILABLE
        self._generation += 1
        self._cancel_restart()
        self._permanently_unavailable = self._permanently_unavailable or permanent
        self.error = error
        self._interim = ""
        self._frozen = self._committed.strip()
        logger.error(f"❌ Speech capture disabled: {error.message}")
        if was_live and self.recognizer is not None:
            self._release_task = asyncio.get_running_loop().create_task(self._release_recognizer())
        self._notify()
        if self.on_fatal:
            self.on_fatal(error)

    async def _halt(self) -> None:
        self.state = CaptureState.STOPPED
        self._generation += 1
        self._cancel_restart()
        await self._release_recognizer()

    async def _release_recognizer(self) -> None:
        if self.recognizer is None:
            return
        try:
            await self.recognizer.stop()
        except Exception as e:
            logger.warning(f"Error stopping speech recognizer: {e}")

    def _reset(self) -> None:
        self._committed = ""
        self._interim = ""
        self._cursor = 0
        self._frozen = None
        self._restart_failures = 0
        if not self._permanently_unavailable:
            self.error = None
        if self.state is CaptureState.UNAVAILABLE and not self._permanently_unavailable:
            self.state = CaptureState.STOPPED

    def _notify(self) -> None:
        if self.on_transcript:
            self.on_transcript(self.transcript)
