# services/recorder.py
"""
One recording per question: speech capture, duration timer, AnswerRecord.
"""
import asyncio
import time
from typing import Callable, Optional

from interview_coach.config import get_settings
from interview_coach.models.interview import AnswerRecord
from interview_coach.services.local_scoring import analyze_answer_locally, to_ten_point_score
from interview_coach.services.speech_accumulator import SpeechAccumulator
from interview_coach.utils.logger import get_logger

logger = get_logger("AnswerRecorder")
settings = get_settings()


class AnswerRecorder:
    """Drives a SpeechAccumulator for one answer at a time.

    Recording continues even when speech capture is unavailable; the record
    then simply carries an empty transcript.
    """

    def __init__(
        self,
        accumulator: SpeechAccumulator,
        on_complete: Optional[Callable[[AnswerRecord], None]] = None,
        framework: str = "",
    ):
        self.accumulator = accumulator
        self.on_complete = on_complete
        self.framework = framework
        self.recording = False
        self.expired = False

        self._question_index = 0
        self._question_text = ""
        self._started_at: Optional[float] = None
        self._timer_task: Optional[asyncio.Task] = None
        self._max_duration: float = settings.max_recording_seconds

    @property
    def elapsed_seconds(self) -> float:
        if self._started_at is None:
            return 0.0
        return time.monotonic() - self._started_at

    async def start(self, question_index: int, question_text: str,
                    max_duration_seconds: Optional[float] = None) -> None:
        if self.recording:
            self._cancel_timer()
        self.expired = False
        self._question_index = question_index
        self._question_text = question_text
        self._max_duration = max_duration_seconds or settings.max_recording_seconds

        await self.accumulator.start()
        self._started_at = time.monotonic()
        self.recording = True
        self._timer_task = asyncio.create_task(self._expire_after(self._max_duration))
        logger.info(f"⏺️ Recording Q{question_index} (limit {self._max_duration:.0f}s)")

    async def stop(self, media_ref: Optional[str] = None) -> Optional[AnswerRecord]:
        """Stop recording and build the answer record; None when not recording."""
        if not self.recording:
            return None
        self._cancel_timer()
        return await self._finish(media_ref)

    async def _expire_after(self, seconds: float) -> None:
        await asyncio.sleep(seconds)
        if not self.recording:
            return
        self._timer_task = None
        self.expired = True
        logger.info(f"⏱️ Time limit reached for Q{self._question_index}")
        await self._finish(None)

    async def _finish(self, media_ref: Optional[str]) -> AnswerRecord:
        self.recording = False
        duration = min(self.elapsed_seconds, self._max_duration)
        transcript = await self.accumulator.stop()

        metrics = analyze_answer_locally(transcript, self.framework, settings.target_answer_words)
        record = AnswerRecord(
            question_index=self._question_index,
            question_text=self._question_text,
            transcript=transcript,
            duration_seconds=round(duration, 2),
            media_ref=media_ref,
            local_metrics=metrics,
            local_score=to_ten_point_score(metrics),
        )
        if self.on_complete:
            self.on_complete(record)
        return record

    def _cancel_timer(self) -> None:
        task, self._timer_task = self._timer_task, None
        if task is not None and not task.done():
            task.cancel()
