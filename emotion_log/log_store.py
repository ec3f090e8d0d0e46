import json
import logging
import os
import sqlite3
import threading

from emotion_log.emotion_log_entry import EmotionLogEntry

logger = logging.getLogger(__name__)

STORAGE_KEY = "emotion-tracker-logs"

CREATE_TABLE_SQL = """
    CREATE TABLE IF NOT EXISTS kv_store (
        key TEXT PRIMARY KEY,
        value TEXT NOT NULL,
        revision INTEGER NOT NULL DEFAULT 0
    )
"""

UPSERT_SQL = """
    INSERT INTO kv_store (key, value, revision) VALUES (?, ?, 1)
    ON CONFLICT(key) DO UPDATE SET value = excluded.value, revision = kv_store.revision + 1
"""


class EmotionTrackerError(Exception):
    """Base class for errors raised by the emotion tracker."""


class StorageWriteError(EmotionTrackerError):
    """The emotion log could not be written; nothing was persisted."""


def init_db(db_path):
    conn = sqlite3.connect(db_path)
    try:
        conn.execute(CREATE_TABLE_SQL)
        conn.commit()
    finally:
        conn.close()


def encode_log(entries):
    return json.dumps([entry.to_dict() for entry in entries])


def decode_log(raw):
    """Parse a serialized log. ``None`` or an empty string is an empty log.

    Raises ValueError (or KeyError/TypeError) on malformed data.
    """
    if not raw:
        return []
    data = json.loads(raw)
    if not isinstance(data, list):
        raise ValueError(f"expected a JSON array, got {type(data).__name__}")
    return [EmotionLogEntry.from_dict(item) for item in data]


class ChangeChannel:
    """Payload-free change signal shared by every store opened on the same database file.

    A channel lives in the registry while it has subscribers and is dropped
    with its last one.
    """

    _channels = {}
    _registry_lock = threading.Lock()

    def __init__(self, key):
        self.key = key
        self._subscribers = []

    @classmethod
    def for_database(cls, db_path):
        """The live channel for ``db_path``, or None if nobody is subscribed to it."""
        with cls._registry_lock:
            return cls._channels.get(os.path.realpath(db_path))

    @classmethod
    def join(cls, db_path, callback):
        """Subscribe ``callback`` to the channel of ``db_path``. Returns (channel, leave)."""
        key = os.path.realpath(db_path)
        with cls._registry_lock:
            channel = cls._channels.get(key)
            if channel is None:
                channel = cls._channels[key] = cls(key)
            channel._subscribers.append(callback)

        def leave():
            with cls._registry_lock:
                if callback in channel._subscribers:
                    channel._subscribers.remove(callback)
                if not channel._subscribers and cls._channels.get(key) is channel:
                    del cls._channels[key]

        return channel, leave

    def publish(self):
        with self._registry_lock:
            subscribers = list(self._subscribers)
        for callback in subscribers:
            try:
                callback()
            except Exception:
                logger.exception("Change subscriber %r failed", callback)


class EmotionLogStore:
    """
    Append-only emotion log persisted in SQLite under a single key.

    Each store keeps its own in-memory replica. Writers publish a change signal
    after every successful ``append``/``clear``; every store on the same file,
    the writer included, reloads its replica when the signal arrives. Stores in
    other processes pick the change up through ``start_watching()``, which polls
    the key's revision counter.
    """

    def __init__(self, db_path, key=STORAGE_KEY, quota_bytes=None, watch_interval=0.5, timeout=5.0):
        self.db_path = db_path
        self.key = key
        self.quota_bytes = quota_bytes
        self.watch_interval = watch_interval
        self.timeout = timeout

        self._entries = []
        self._revision = None
        self._lock = threading.Lock()
        self._listeners = []
        self._listeners_lock = threading.Lock()

        self._watch_stop = threading.Event()
        self._watch_thread = None

        self.channel, self._leave_channel = ChangeChannel.join(db_path, self._on_change)
        self.load()

    # --- Reading ---
    @property
    def entries(self):
        with self._lock:
            return tuple(self._entries)

    @property
    def revision(self):
        with self._lock:
            return self._revision

    def _read_row(self):
        if not os.path.exists(self.db_path):
            return None, 0
        conn = sqlite3.connect(self.db_path, timeout=self.timeout)
        try:
            cursor = conn.cursor()
            cursor.execute(
                "SELECT name FROM sqlite_master WHERE type = 'table' AND name = 'kv_store'"
            )
            if cursor.fetchone() is None:
                return None, 0
            cursor.execute("SELECT value, revision FROM kv_store WHERE key = ?", (self.key,))
            row = cursor.fetchone()
        finally:
            conn.close()
        if row is None:
            return None, 0
        return row[0], row[1]

    def load(self):
        """Reload the replica from disk and return it. Unreadable or malformed data is an empty log."""
        revision = None
        try:
            raw, revision = self._read_row()
            entries = decode_log(raw)
        except sqlite3.Error as e:
            logger.warning("Emotion log in %s is unreadable, starting empty: %s", self.db_path, e)
            entries = []
        except (ValueError, KeyError, TypeError) as e:
            logger.warning("Emotion log in %s is malformed, starting empty: %s", self.db_path, e)
            entries = []

        with self._lock:
            self._entries = entries
            self._revision = revision
        return list(entries)

    # --- Writing ---
    def _write(self, transform):
        parent = os.path.dirname(os.path.abspath(self.db_path))
        os.makedirs(parent, exist_ok=True)
        conn = sqlite3.connect(self.db_path, timeout=self.timeout, isolation_level=None)
        try:
            cursor = conn.cursor()
            cursor.execute(CREATE_TABLE_SQL)
            cursor.execute("BEGIN IMMEDIATE")
            cursor.execute("SELECT value FROM kv_store WHERE key = ?", (self.key,))
            row = cursor.fetchone()
            try:
                current = decode_log(row[0] if row else None)
            except (ValueError, KeyError, TypeError) as e:
                logger.warning("Overwriting malformed emotion log in %s: %s", self.db_path, e)
                current = []

            payload = encode_log(transform(current))
            if self.quota_bytes is not None and len(payload.encode("utf-8")) > self.quota_bytes:
                raise StorageWriteError(
                    f"emotion log needs {len(payload.encode('utf-8'))} bytes, quota is {self.quota_bytes}"
                )
            cursor.execute(UPSERT_SQL, (self.key, payload))
            cursor.execute("COMMIT")
        finally:
            # closing with an open transaction rolls it back
            conn.close()

    def _commit(self, transform, action):
        try:
            self._write(transform)
        except (sqlite3.Error, OSError, StorageWriteError) as e:
            logger.error("Could not %s emotion log in %s: %s", action, self.db_path, e)
            self.load()
            if isinstance(e, StorageWriteError):
                raise
            raise StorageWriteError(f"could not {action} emotion log: {e}") from e
        # publish on whichever channel is live, even if this store already left it
        channel = ChangeChannel.for_database(self.db_path)
        if channel is not None:
            channel.publish()

    def append(self, entries):
        """Append entries to the durable log, then signal the change.

        Raises StorageWriteError if nothing could be written; the replica is
        reloaded from disk before the error propagates.
        """
        new_entries = list(entries)
        if not new_entries:
            return
        self._commit(lambda current: current + new_entries, "append to")
        logger.debug("Appended %d entries to %s", len(new_entries), self.db_path)

    def clear(self):
        self._commit(lambda current: [], "clear")
        logger.info("Cleared emotion log in %s", self.db_path)

    # --- Change notification ---
    def subscribe(self, callback):
        """Call ``callback()`` after every change-triggered reload. Returns an unsubscribe function."""
        with self._listeners_lock:
            self._listeners.append(callback)

        def unsubscribe():
            with self._listeners_lock:
                if callback in self._listeners:
                    self._listeners.remove(callback)

        return unsubscribe

    def _on_change(self):
        self.load()
        with self._listeners_lock:
            listeners = list(self._listeners)
        for callback in listeners:
            try:
                callback()
            except Exception:
                logger.exception("Emotion log listener %r failed", callback)

    def poll_changes(self):
        """Reload if another process moved the revision. Returns True when a reload happened."""
        try:
            _, revision = self._read_row()
        except sqlite3.Error as e:
            logger.debug("Revision check on %s failed: %s", self.db_path, e)
            return False
        if revision == self.revision:
            return False
        self._on_change()
        return True

    def _watch_loop(self):
        while not self._watch_stop.wait(self.watch_interval):
            self.poll_changes()

    def start_watching(self):
        if self._watch_thread and self._watch_thread.is_alive():
            return
        self._watch_stop.clear()
        self._watch_thread = threading.Thread(
            target=self._watch_loop, name="emotion-log-watcher", daemon=True
        )
        self._watch_thread.start()

    def stop_watching(self):
        self._watch_stop.set()
        if self._watch_thread and self._watch_thread.is_alive():
            self._watch_thread.join(timeout=2.0)
            if self._watch_thread.is_alive():
                logger.warning("Emotion log watcher did not stop in time")
        self._watch_thread = None

    def close(self):
        self.stop_watching()
        self._leave_channel()
