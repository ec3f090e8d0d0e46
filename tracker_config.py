from __future__ import annotations

import logging
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any

import yaml

logger = logging.getLogger(__name__)


@dataclass
class TrackerConfig:
    db_path: str = field(default="emotion_log/emotion_log.db")
    storage_key: str = field(default="emotion-tracker-logs")
    sample_interval: float = field(default=0.1)  # seconds, 10 samples/s
    confidence_threshold: float = field(default=0.6)
    debounce_ms: int = field(default=5000)
    recent_window_hours: float = field(default=24.0)
    watch_interval: float = field(default=0.5)
    quota_bytes: int | None = field(default=None)
    model_path: str = field(default="./models/emotion_final4.keras")
    camera_index: int = field(default=0)
    log_level: str = field(default="INFO")


def load_config(path: str | Path | None = "config/emotion_tracker.yaml") -> TrackerConfig:
    if path is None:
        return TrackerConfig()
    cfg_path = Path(path)
    if not cfg_path.exists():
        return TrackerConfig()
    try:
        payload = yaml.safe_load(cfg_path.read_text(encoding="utf-8")) or {}
    except (OSError, yaml.YAMLError) as e:
        logger.warning("Ignoring unreadable config %s: %s", cfg_path, e)
        return TrackerConfig()
    if not isinstance(payload, dict):
        logger.warning("Ignoring config %s: expected a mapping", cfg_path)
        return TrackerConfig()
    return apply_overrides(TrackerConfig(), payload)


def apply_overrides(cfg: TrackerConfig, overrides: dict[str, Any]) -> TrackerConfig:
    """Return a copy of ``cfg`` with known, non-None keys from ``overrides`` applied."""
    data = cfg.__dict__.copy()
    known = {f.name for f in fields(TrackerConfig)}
    for key, value in (overrides or {}).items():
        if key not in known or value is None:
            continue
        data[key] = value
    return TrackerConfig(**data)
