import logging
import math
import threading
from datetime import datetime

from emotion_log.emotion_log_entry import Emotion, EmotionLogEntry
from emotion_log.log_store import StorageWriteError

logger = logging.getLogger(__name__)

CONFIDENCE_THRESHOLD = 0.6
DEBOUNCE_MS = 5000


class LoggingGate:
    """
    Decides which (emotion, confidence) candidates become persisted entries.

    A candidate is accepted when its confidence is strictly above the
    threshold and either the emotion changed since the last accepted entry or
    more than ``debounce_ms`` passed since then.
    """

    def __init__(self, store, confidence_threshold=CONFIDENCE_THRESHOLD, debounce_ms=DEBOUNCE_MS):
        self.store = store
        self.confidence_threshold = confidence_threshold
        self.debounce_ms = debounce_ms

        self.last_emotion = None
        self.last_time = None
        self.last_entry = None
        self._lock = threading.Lock()

    def should_log(self, emotion, confidence, now):
        if confidence <= self.confidence_threshold:
            return False
        if self.last_time is None or emotion != self.last_emotion:
            return True
        elapsed_ms = (now - self.last_time).total_seconds() * 1000
        return elapsed_ms > self.debounce_ms

    def offer(self, emotion, confidence, now=None):
        """Returns the persisted entry, or None if the candidate was rejected or could not be stored."""
        emotion = Emotion(emotion)
        now = now if now is not None else datetime.now().astimezone()
        if not (math.isfinite(confidence) and 0.0 <= confidence <= 1.0):
            logger.warning("Rejected %s with invalid confidence %r", emotion.value, confidence)
            return None

        with self._lock:
            if not self.should_log(emotion, confidence, now):
                logger.debug("Rejected %s (%.2f)", emotion.value, confidence)
                return None
            self.last_emotion = emotion
            self.last_time = now

        entry = EmotionLogEntry.create(emotion, confidence, timestamp=now)
        try:
            self.store.append([entry])
        except StorageWriteError as e:
            logger.warning("Dropped %s entry, log write failed: %s", emotion.value, e)
            return None

        with self._lock:
            self.last_entry = entry
        logger.info("Logged %s (%.2f) at %s", emotion.value, confidence, entry.time_of_day.value)
        return entry

    def reset(self):
        with self._lock:
            self.last_emotion = None
            self.last_time = None
            self.last_entry = None
