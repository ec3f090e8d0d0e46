from __future__ import annotations

from datetime import timedelta

import pytest

from emotion_stats import EmotionStats, compute_stats, emotion_percentages, recent_entries


def test_empty_log_defaults():
    stats = compute_stats([])
    assert stats == EmotionStats(
        total_emotions=0,
        most_common_emotion="neutral",
        average_confidence=0.0,
        emotion_counts={},
        time_patterns={},
    )
    assert emotion_percentages(stats) == {}


def test_counts_and_average(make_entry):
    log = [make_entry("happy", 0.9), make_entry("happy", 0.8), make_entry("sad", 0.7)]
    stats = compute_stats(log)
    assert stats.total_emotions == 3
    assert stats.emotion_counts == {"happy": 2, "sad": 1}
    assert stats.most_common_emotion == "happy"
    assert stats.average_confidence == pytest.approx(0.8)
    assert stats.time_patterns == {"afternoon": 3}


def test_tie_goes_to_first_seen(make_entry):
    log = [make_entry("sad"), make_entry("angry"), make_entry("angry"), make_entry("sad")]
    assert compute_stats(log).most_common_emotion == "sad"


def test_time_patterns_use_stored_bucket(make_entry):
    log = [make_entry(age=timedelta(hours=h)) for h in (0, 6, 10)]  # 14:30, 08:30, 04:30
    assert compute_stats(log).time_patterns == {"afternoon": 1, "morning": 1, "night": 1}


def test_stats_are_idempotent(make_entry):
    log = [make_entry("happy", 0.9), make_entry("neutral", 0.65)]
    snapshot = list(log)
    assert compute_stats(log) == compute_stats(log)
    assert log == snapshot


def test_percentages(make_entry):
    stats = compute_stats([make_entry("happy"), make_entry("happy"), make_entry("sad"), make_entry("angry")])
    assert emotion_percentages(stats) == {"happy": 50.0, "sad": 25.0, "angry": 25.0}


def test_recent_entries_window(make_entry, now):
    old = make_entry("sad", age=timedelta(hours=25))
    recent = make_entry("happy", age=timedelta(hours=1))
    newest = make_entry("angry")
    assert recent_entries([old, recent, newest], now=now) == [recent, newest]


def test_recent_entries_cutoff_is_exclusive(make_entry, now):
    edge = make_entry(age=timedelta(hours=2))
    assert recent_entries([edge], window_hours=2, now=now) == []
    assert recent_entries([edge], window_hours=2.01, now=now) == [edge]
