import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

from time_of_day import TimeOfDay, classify_time_of_day


class Emotion(str, Enum):
    # declaration order is the tie-break order for the dominant emotion
    HAPPY = "happy"
    SAD = "sad"
    ANGRY = "angry"
    FEARFUL = "fearful"
    SURPRISED = "surprised"
    DISGUSTED = "disgusted"
    NEUTRAL = "neutral"


def _local_now():
    return datetime.now().astimezone()


def _as_aware(timestamp):
    return timestamp if timestamp.tzinfo is not None else timestamp.astimezone()


@dataclass(frozen=True)
class EmotionLogEntry:
    emotion: Emotion
    confidence: float          # 0.0 - 1.0
    timestamp: datetime        # capture time, timezone-aware
    time_of_day: TimeOfDay     # derived once at creation, never recomputed
    id: str = field(default_factory=lambda: uuid.uuid4().hex)

    def __post_init__(self):
        object.__setattr__(self, "emotion", Emotion(self.emotion))
        object.__setattr__(self, "time_of_day", TimeOfDay(self.time_of_day))
        object.__setattr__(self, "timestamp", _as_aware(self.timestamp))
        confidence = float(self.confidence)
        if not 0.0 <= confidence <= 1.0:
            raise ValueError(f"confidence must be within [0, 1], got {confidence}")
        object.__setattr__(self, "confidence", confidence)

    @classmethod
    def create(cls, emotion, confidence, timestamp=None):
        """Build a new entry, deriving its time-of-day bucket from ``timestamp`` (default: now)."""
        timestamp = _as_aware(timestamp) if timestamp is not None else _local_now()
        return cls(
            emotion=emotion,
            confidence=confidence,
            timestamp=timestamp,
            time_of_day=classify_time_of_day(timestamp),
        )

    def to_dict(self):
        return {
            "id": self.id,
            "emotion": self.emotion.value,
            "confidence": self.confidence,
            "timestamp": self.timestamp.isoformat(),
            "timeOfDay": self.time_of_day.value,
        }

    @classmethod
    def from_dict(cls, data):
        """Rebuild an entry from its persisted form.

        Raises KeyError, TypeError or ValueError when ``data`` is not a valid entry.
        """
        return cls(
            id=str(data["id"]),
            emotion=data["emotion"],
            confidence=data["confidence"],
            timestamp=datetime.fromisoformat(data["timestamp"]),
            time_of_day=data["timeOfDay"],
        )
