from datetime import datetime
from enum import Enum


class TimeOfDay(str, Enum):
    MORNING = "morning"
    AFTERNOON = "afternoon"
    EVENING = "evening"
    NIGHT = "night"


def classify_hour(hour):
    """Map a wall-clock hour (0-23) to its bucket. The lower bound of each range is inclusive."""
    if 5 <= hour < 12:
        return TimeOfDay.MORNING
    if 12 <= hour < 17:
        return TimeOfDay.AFTERNOON
    if 17 <= hour < 21:
        return TimeOfDay.EVENING
    return TimeOfDay.NIGHT


def classify_time_of_day(timestamp: datetime) -> TimeOfDay:
    # naive values are already local, aware ones are shifted to local time
    if timestamp.tzinfo is not None:
        timestamp = timestamp.astimezone()
    return classify_hour(timestamp.hour)
