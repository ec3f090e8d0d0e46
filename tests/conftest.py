from __future__ import annotations

import sys
from datetime import datetime, timedelta
from pathlib import Path

import pytest


def _find_repo_root(start: Path) -> Path:
    cur = start.resolve()
    for candidate in [cur, *cur.parents]:
        if (candidate / "emotion_log").is_dir() and (candidate / "tests").is_dir():
            return candidate
    return cur


repo_root = _find_repo_root(Path(__file__).parent)
repo_root_str = str(repo_root)
if repo_root_str not in sys.path:
    sys.path.insert(0, repo_root_str)


@pytest.fixture
def db_path(tmp_path):
    return str(tmp_path / "emotion_log.db")


@pytest.fixture
def now():
    return datetime(2024, 6, 12, 14, 30).astimezone()


@pytest.fixture
def make_entry(now):
    from emotion_log.emotion_log_entry import EmotionLogEntry

    def _make(emotion="happy", confidence=0.9, age=timedelta(0)):
        return EmotionLogEntry.create(emotion, confidence, timestamp=now - age)

    return _make
