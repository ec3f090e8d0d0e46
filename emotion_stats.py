"""
Summary statistics over the emotion log.

Everything here is recomputed from the log on each call; nothing is cached
or persisted:
- compute_stats: counts, distributions and average confidence
- recent_entries: entries inside a trailing time window
- emotion_percentages: share of each observed emotion
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta

DEFAULT_EMOTION = "neutral"
DEFAULT_WINDOW_HOURS = 24


@dataclass
class EmotionStats:
    total_emotions: int = 0
    most_common_emotion: str = DEFAULT_EMOTION
    average_confidence: float = 0.0
    emotion_counts: dict = field(default_factory=dict)
    time_patterns: dict = field(default_factory=dict)


def compute_stats(log) -> EmotionStats:
    """Build EmotionStats for ``log``. An empty log gives the defaults, not an error."""
    if not log:
        return EmotionStats()

    emotion_counts = {}
    time_patterns = {}
    total_confidence = 0.0

    for entry in log:
        emotion = entry.emotion.value
        bucket = entry.time_of_day.value
        emotion_counts[emotion] = emotion_counts.get(emotion, 0) + 1
        time_patterns[bucket] = time_patterns.get(bucket, 0) + 1
        total_confidence += entry.confidence

    # sorted() is stable: equal counts keep first-seen order
    ranked = sorted(emotion_counts.items(), key=lambda item: item[1], reverse=True)

    return EmotionStats(
        total_emotions=len(log),
        most_common_emotion=ranked[0][0],
        average_confidence=total_confidence / len(log),
        emotion_counts=emotion_counts,
        time_patterns=time_patterns,
    )


def recent_entries(log, window_hours: float = DEFAULT_WINDOW_HOURS, now: datetime = None) -> list:
    """Entries captured strictly after ``now - window_hours``, in log order."""
    now = now if now is not None else datetime.now().astimezone()
    if now.tzinfo is None:
        now = now.astimezone()
    cutoff = now - timedelta(hours=window_hours)
    return [entry for entry in log if entry.timestamp > cutoff]


def emotion_percentages(stats: EmotionStats) -> dict:
    if not stats.total_emotions:
        return {}
    return {
        emotion: count * 100.0 / stats.total_emotions
        for emotion, count in stats.emotion_counts.items()
    }
