"""services/tts_service.py

Edge TTS Service (neural voices via Microsoft Edge)

Notes:
- This relies on the `edge-tts` Python package.
- Output is MP3 bytes, handed to the avatar as a base64 data URL so no
  storage upload is needed for short replies.
"""

from __future__ import annotations

import base64
from dataclasses import dataclass
from typing import Optional

import edge_tts

from interview_coach.config import get_settings
from interview_coach.utils.logger import get_logger

logger = get_logger("TTSService")


@dataclass(frozen=True)
class EdgeTTSConfig:
    voice: str = "en-US-GuyNeural"
    rate: str = "+0%"  # e.g. "+10%", "-10%"
    pitch: str = "+0Hz"  # e.g. "+2Hz", "-2Hz"


class TTSService:
    """Text-to-Speech using Edge neural voices."""

    def __init__(self, voice: Optional[str] = None, rate: Optional[str] = None, pitch: Optional[str] = None):
        settings = get_settings()
        self._cfg = EdgeTTSConfig(
            voice=voice or settings.tts_voice,
            rate=rate or settings.tts_rate,
            pitch=pitch or settings.tts_pitch,
        )
        logger.info(
            f"✅ Edge TTS initialized with voice={self._cfg.voice} rate={self._cfg.rate} pitch={self._cfg.pitch}"
        )

    @property
    def content_type(self) -> str:
        return "audio/mpeg"

    async def text_to_speech(self, text: str) -> bytes:
        """Convert text to MP3 bytes. Errors propagate."""
        clean = (text or "").strip()
        if not clean:
            logger.warning("Empty text provided for Edge TTS")
            return b""

        logger.info(f"🗣️ [EdgeTTS] Generating speech: {clean[:60]}...")
        communicate = edge_tts.Communicate(
            text=clean,
            voice=self._cfg.voice,
            rate=self._cfg.rate,
            pitch=self._cfg.pitch,
        )

        audio = bytearray()
        async for chunk in communicate.stream():
            if chunk.get("type") == "audio" and chunk.get("data"):
                audio.extend(chunk["data"])

        audio_bytes = bytes(audio)
        logger.info(f"✅ [EdgeTTS] Generated {len(audio_bytes)} bytes")
        return audio_bytes

    async def synthesize_audio_ref(self, text: str) -> Optional[str]:
        """MP3 as a data URL, or None when nothing was produced."""
        audio = await self.text_to_speech(text)
        if not audio:
            return None
        return f"data:{self.content_type};base64,{base64.b64encode(audio).decode('ascii')}"
