# services/deepgram_service.py
"""
Deepgram Speech-to-Text recognizer
Streams candidate audio to Deepgram and pushes results to a SpeechAccumulator
"""
import asyncio
from typing import List, Optional

from deepgram import DeepgramClient, DeepgramClientOptions, LiveTranscriptionEvents, LiveOptions

from interview_coach.config import get_settings
from interview_coach.errors import CaptureUnavailable
from interview_coach.services.speech_accumulator import (
    EndEvent,
    ErrorEvent,
    EventSink,
    RecognizerEvent,
    ResultEvent,
    SpeechAlternative,
    SpeechSegment,
)
from interview_coach.utils.logger import get_logger

logger = get_logger("DeepgramService")
settings = get_settings()


class DeepgramRecognizer:
    """Real-time recognizer over a Deepgram live connection.

    Deepgram reports one utterance per callback. They are folded into a
    cumulative result list (finals appended, the trailing interim replaced)
    so the accumulator sees the same shape as any other recognizer.
    """

    def __init__(self, api_key: Optional[str] = None):
        api_key = api_key if api_key is not None else settings.deepgram_api_key
        if not api_key:
            raise CaptureUnavailable("Deepgram API key not configured")

        config = DeepgramClientOptions(options={"keepalive": "true"})
        self.client = DeepgramClient(api_key, config)
        self.connection = None
        self.is_connected = False
        self._sink: Optional[EventSink] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._results: List[SpeechSegment] = []
        self._closing = False

    async def start(self, sink: EventSink) -> None:
        """Open a fresh WebSocket stream to Deepgram."""
        self._sink = sink
        self._loop = asyncio.get_running_loop()
        self._results = []
        self._closing = False

        options = LiveOptions(
            model=settings.deepgram_model,
            language=settings.speech_language,
            smart_format=True,
            interim_results=True,
            utterance_end_ms=1000,
            vad_events=True,
            endpointing=300,
            punctuate=True,
        )

        self.connection = self.client.listen.websocket.v("1")
        self.connection.on(LiveTranscriptionEvents.Transcript, self._on_transcript)
        self.connection.on(LiveTranscriptionEvents.Error, self._on_error)
        self.connection.on(LiveTranscriptionEvents.Close, self._on_close)

        started = await asyncio.to_thread(self.connection.start, options)
        if not started:
            self.connection = None
            raise CaptureUnavailable("Failed to start Deepgram connection")

        self.is_connected = True
        logger.info("✅ Deepgram connection established")

    async def send_audio(self, audio_data: bytes):
        """
        Send audio chunk to Deepgram for transcription

        Args:
            audio_data: Raw audio bytes (16kHz, 16-bit PCM, mono) or WebM/Opus
        """
        if not self.is_connected or not self.connection:
            logger.debug("Dropping audio: not connected")
            return
        try:
            await asyncio.to_thread(self.connection.send, audio_data)
        except Exception as e:
            logger.warning(f"Error sending audio: {e}")
            self._emit(ErrorEvent("network", str(e)))

    async def stop(self) -> None:
        """Close the Deepgram connection"""
        connection, self.connection = self.connection, None
        self._closing = True
        self.is_connected = False
        if connection is None:
            return
        try:
            await asyncio.to_thread(connection.finish)
            logger.info("Deepgram connection closed")
        except Exception as e:
            logger.error(f"Error closing connection: {e}")

    # Event handlers (called on the SDK's thread)

    def _on_transcript(self, *args, **kwargs):
        result = kwargs.get("result")
        if not result:
            return
        try:
            alternatives = [
                SpeechAlternative(text=a.transcript or "", confidence=float(a.confidence or 0.0))
                for a in result.channel.alternatives
            ]
        except AttributeError as e:
            logger.error(f"Unexpected Deepgram payload: {e}")
            return
        if not any(a.text.strip() for a in alternatives):
            return

        segment = SpeechSegment(alternatives=alternatives, is_final=bool(result.is_final))
        if self._results and not self._results[-1].is_final:
            self._results[-1] = segment
        else:
            self._results.append(segment)
        index = len(self._results) - 1
        self._emit(ResultEvent(results=list(self._results), result_index=index))

    def _on_error(self, *args, **kwargs):
        error = kwargs.get("error")
        message = str(error or "")
        logger.error(f"Deepgram error: {message}")
        code = "not-allowed" if ("401" in message or "403" in message) else "network"
        self._emit(ErrorEvent(code, message))

    def _on_close(self, *args, **kwargs):
        self.is_connected = False
        if not self._closing:
            logger.info("Deepgram connection dropped")
            self._emit(EndEvent())

    def _emit(self, event: RecognizerEvent):
        if self._sink is None or self._loop is None or self._loop.is_closed():
            return
        self._loop.call_soon_threadsafe(self._sink, event)


def create_recognizer() -> Optional[DeepgramRecognizer]:
    """Recognizer for a new capture, or None when speech capture is not configured."""
    try:
        return DeepgramRecognizer()
    except CaptureUnavailable as e:
        logger.warning(f"Speech capture disabled: {e.message}")
        return None
