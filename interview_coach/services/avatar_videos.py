# services/avatar_videos.py
"""Avatar clip registry. Clips are referenced by tag; the frontend maps tags to files."""
import random
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional

from interview_coach.models.session import AvatarEmotion


class AvatarPhase(str, Enum):
    IDLE = "idle"
    SPEAKING = "speaking"
    WRAPUP = "wrapup"


@dataclass(frozen=True)
class AvatarVideo:
    emotion: AvatarEmotion
    phase: AvatarPhase
    tag: str


AVATAR_VIDEOS: List[AvatarVideo] = [
    # Idle
    AvatarVideo(AvatarEmotion.NEUTRAL, AvatarPhase.IDLE, "idle-neutral"),
    AvatarVideo(AvatarEmotion.NEUTRAL, AvatarPhase.IDLE, "idle-neutral-2"),
    AvatarVideo(AvatarEmotion.ENCOURAGING, AvatarPhase.IDLE, "idle-encouraging"),
    AvatarVideo(AvatarEmotion.THINKING, AvatarPhase.IDLE, "idle-thinking"),
    AvatarVideo(AvatarEmotion.CONCERNED, AvatarPhase.IDLE, "idle-concerned"),
    # Speaking
    AvatarVideo(AvatarEmotion.NEUTRAL, AvatarPhase.SPEAKING, "speaking-neutral-01"),
    AvatarVideo(AvatarEmotion.NEUTRAL, AvatarPhase.SPEAKING, "speaking-neutral-02"),
    AvatarVideo(AvatarEmotion.ENCOURAGING, AvatarPhase.SPEAKING, "speaking-encouraging-01"),
    AvatarVideo(AvatarEmotion.ENCOURAGING, AvatarPhase.SPEAKING, "speaking-encouraging-02"),
    AvatarVideo(AvatarEmotion.ENCOURAGING, AvatarPhase.SPEAKING, "speaking-encouraging-03"),
    AvatarVideo(AvatarEmotion.CONCERNED, AvatarPhase.SPEAKING, "speaking-concerned-01"),
    # Wrap-up
    AvatarVideo(AvatarEmotion.NEUTRAL, AvatarPhase.WRAPUP, "speaking-wrapup-01"),
]


def get_avatar_video(emotion: AvatarEmotion, phase: AvatarPhase,
                     rng: Optional[random.Random] = None) -> Optional[AvatarVideo]:
    """Random clip for emotion and phase; any clip of the phase when none matches the emotion."""
    choose = (rng or random).choice
    matches = [v for v in AVATAR_VIDEOS if v.emotion == emotion and v.phase == phase]
    if matches:
        return choose(matches)
    phase_matches = [v for v in AVATAR_VIDEOS if v.phase == phase]
    if phase_matches:
        return choose(phase_matches)
    return None


def get_avatar_video_tag(emotion: AvatarEmotion, phase: AvatarPhase = AvatarPhase.SPEAKING) -> Optional[str]:
    video = get_avatar_video(emotion, phase)
    return video.tag if video else None
