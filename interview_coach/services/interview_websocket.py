# services/interview_websocket.py
"""
WebSocket handler for one avatar interview session.

Server -> client: every session snapshot, live transcript, recorded answers,
avatar replies, status and errors.
Client -> server: audio frames (bytes) and JSON control messages:
start_recording, stop_recording, playback_finished, advance, ping.
"""
import asyncio
import json
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Set

from fastapi import WebSocket, WebSocketDisconnect

from interview_coach.errors import CapturePermissionDenied, InterviewCoachError
from interview_coach.models.interview import AnswerRecord
from interview_coach.models.session import SessionState, SessionStatus
from interview_coach.services.interview_service import InterviewService
from interview_coach.services.recorder import AnswerRecorder
from interview_coach.services.speech_accumulator import SpeechAccumulator, SpeechRecognizer
from interview_coach.utils.logger import get_logger, session_context

logger = get_logger("InterviewWebSocket")


class InterviewWebSocketHandler:
    def __init__(
        self,
        websocket: WebSocket,
        session_id: str,
        interview_service: InterviewService,
        recognizer_factory: Callable[[], Optional[SpeechRecognizer]],
    ):
        self.websocket = websocket
        self.session_id = session_id
        self.interview_service = interview_service
        self.recognizer_factory = recognizer_factory

        self.recognizer: Optional[SpeechRecognizer] = None
        self.accumulator: Optional[SpeechAccumulator] = None
        self.recorder: Optional[AnswerRecorder] = None
        self.subscription = None
        self.answers: List[AnswerRecord] = []
        self.closing = False
        self._tasks: Set[asyncio.Task] = set()

    @property
    def sessions(self):
        return self.interview_service.sessions

    async def handle_connection(self):
        """Main connection handler"""
        with session_context(self.session_id):
            await self._serve()

    async def _serve(self):
        await self.websocket.accept()
        logger.info(f"✅ WebSocket connected: {self.session_id}")
        try:
            if await self.sessions.read(self.session_id) is None:
                await self.send_error("Session not found", status_code=404)
                await self.websocket.close(code=4404)
                return

            self.recognizer = self.recognizer_factory()
            self.accumulator = SpeechAccumulator(
                self.recognizer,
                on_transcript=self._on_transcript,
                on_fatal=self._on_capture_fatal,
            )
            self.recorder = AnswerRecorder(self.accumulator, on_complete=self._on_answer_recorded)
            self.subscription = await self.sessions.subscribe(self.session_id, self.send_snapshot)

            await self.send_status("connected")
            await self._message_loop()
        except WebSocketDisconnect:
            logger.info(f"Client disconnected: {self.session_id}")
        except Exception as e:
            logger.error(f"WebSocket error: {e}", exc_info=True)
            await self.send_error(str(e))
        finally:
            await self.cleanup()

    async def _message_loop(self):
        while True:
            data = await self.websocket.receive()
            if data.get("type") == "websocket.disconnect":
                break
            if data.get("bytes") is not None:
                await self._handle_audio(data["bytes"])
                continue
            if data.get("text") is None:
                continue
            try:
                message = json.loads(data["text"])
            except json.JSONDecodeError as e:
                logger.error(f"Invalid JSON: {e}")
                await self.send_error("Invalid message format", status_code=400)
                continue
            if not isinstance(message, dict):
                await self.send_error("Invalid message format", status_code=400)
                continue
            try:
                await self._handle_message(message)
            except InterviewCoachError as e:
                await self.send_error(e.message, status_code=e.status_code)
            except Exception as e:
                logger.error(f"Message processing error: {e}", exc_info=True)
                await self.send_error("Message processing failed")

    async def _handle_message(self, message: Dict[str, Any]):
        msg_type = message.get("type")

        if msg_type == "start_recording":
            await self._start_recording(message)
        elif msg_type == "stop_recording":
            record = await self.recorder.stop(media_ref=message.get("media_ref"))
            if record is None:
                await self.send_error("Not recording", status_code=409)
        elif msg_type == "playback_finished":
            await self.interview_service.playback_finished(self.session_id)
        elif msg_type == "advance":
            await self.interview_service.advance_question(self.session_id)
        elif msg_type == "ping":
            await self.send_message({"type": "pong"})
        else:
            logger.warning(f"Unknown message type: {msg_type}")
            await self.send_error(f"Unknown message type: {msg_type}", status_code=400)

    async def _start_recording(self, message: Dict[str, Any]):
        # no new answer while the avatar is thinking or talking
        await self.sessions.transition(
            self.session_id,
            SessionStatus.LISTENING,
            from_states=(SessionStatus.IDLE, SessionStatus.LISTENING),
        )
        await self.recorder.start(
            question_index=int(message.get("question_index", 0)),
            question_text=str(message.get("question_text", "")),
            max_duration_seconds=message.get("max_duration_seconds"),
        )
        if not self.accumulator.is_available:
            await self.send_status("capture_unavailable")
        else:
            await self.send_status("recording")

    async def _handle_audio(self, audio_bytes: bytes):
        if self.accumulator is None or not self.accumulator.is_active:
            logger.debug("Ignoring audio - not recording")
            return
        send_audio = getattr(self.recognizer, "send_audio", None)
        if send_audio is not None:
            await send_audio(audio_bytes)

    # ------------------------------------------------------------------ #
    # Callbacks
    # ------------------------------------------------------------------ #

    def _on_transcript(self, text: str):
        self._spawn(self.send_message({"type": "transcript", "text": text}))

    def _on_capture_fatal(self, error: InterviewCoachError):
        status = "capture_denied" if isinstance(error, CapturePermissionDenied) else "capture_unavailable"
        self._spawn(self.send_status(status))

    def _on_answer_recorded(self, record: AnswerRecord):
        self.answers.append(record)
        if self.closing:
            logger.info(
                f"Answer to Q{record.question_index} recorded after disconnect "
                f"({len(record.transcript.split())} words, {record.duration_seconds}s); not submitted"
            )
            return
        self._spawn(self._submit(record))

    async def _submit(self, record: AnswerRecord):
        await self.send_message({"type": "answer_recorded", "record": record.model_dump(mode="json")})
        try:
            if not record.transcript.strip():
                await self.sessions.transition(self.session_id, SessionStatus.IDLE)
                await self.send_error("No speech captured; please try again", status_code=400)
                return
            response = await self.interview_service.submit_answer(self.session_id, record.transcript)
            await self.send_message({"type": "avatar_response", **response.model_dump(mode="json")})
        except InterviewCoachError as e:
            await self.send_error(e.message, status_code=e.status_code)
        except Exception as e:
            logger.error(f"Turn submission failed: {e}", exc_info=True)
            await self.send_error("Failed to generate avatar response")

    async def _release_session(self):
        """Client left mid-answer: back to idle so the question can be answered again."""
        try:
            await self.sessions.transition(
                self.session_id, SessionStatus.IDLE, from_states=(SessionStatus.LISTENING,)
            )
        except InterviewCoachError as e:
            logger.warning(f"Session {self.session_id} left as is after disconnect: {e.message}")

    def _spawn(self, coro):
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    # ------------------------------------------------------------------ #
    # Outgoing messages
    # ------------------------------------------------------------------ #

    async def send_snapshot(self, state: SessionState):
        await self.send_message({"type": "session", "state": state.model_dump(mode="json")})

    async def send_status(self, status: str):
        await self.send_message({"type": "status", "status": status})

    async def send_error(self, error_message: str, status_code: int = 500):
        await self.send_message({"type": "error", "message": error_message, "status_code": status_code})

    async def send_message(self, message: Dict[str, Any]):
        """Send message with error handling"""
        if self.closing:
            return
        message.setdefault("timestamp", datetime.now(timezone.utc).isoformat())
        try:
            await self.websocket.send_json(message)
        except Exception as e:
            logger.error(f"Failed to send message: {e}")

    async def cleanup(self):
        """Cleanup resources"""
        logger.info(f"🧹 Cleaning up session: {self.session_id}")
        self.closing = True
        if self.recorder is not None and self.recorder.recording:
            await self.recorder.stop()
            await self._release_session()
        if self.subscription is not None:
            await self.subscription.cancel()
        for task in list(self._tasks):
            task.cancel()
