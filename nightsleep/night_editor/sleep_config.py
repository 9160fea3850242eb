# sleep_config.py
"""
Sleep Config

Loads night editor parameters from configs/config_night_sleep.yaml and
validates them. The YAML file is nested by concern; SleepConfig is flat.
"""
from __future__ import annotations

import os
from datetime import time
from pathlib import Path
from typing import Any, Dict, List, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field, field_validator

from nightsleep.utils.config_loader import clear_config_cache, load_config
from nightsleep.utils.logging_config import get_logger

load_dotenv()

logger = get_logger(__name__)

CONFIG_FILE = Path(__file__).resolve().parent.parent / "configs" / "config_night_sleep.yaml"


class SleepConfig(BaseModel):
    anchor_time: time = time(17, 30)
    window_minutes: int = Field(default=990, gt=0)

    anomaly_max_span_minutes: int = Field(default=1440, gt=0)
    min_fix_span_minutes: int = Field(default=30, ge=0)
    target_span_minutes: int = Field(default=600, gt=0)
    over_window_weight: float = 2.0
    fix_day_offsets: List[int] = Field(default_factory=lambda: [0, 1, 2])

    debounce_ms: int = Field(default=250, ge=0)
    busy_retry_ms: int = Field(default=300, gt=0)

    default_wake_minutes: int = Field(default=15, ge=1)
    min_persisted_seconds: int = Field(default=60, ge=0)

    local_timezone: str = "Europe/Berlin"

    @field_validator("anchor_time", mode="before")
    @classmethod
    def _parse_clock_time(cls, value: Any) -> Any:
        if isinstance(value, str):
            hours_text, minutes_text = value.strip().split(":")[:2]
            return time(int(hours_text), int(minutes_text))
        return value

    @property
    def anchor_minutes(self) -> int:
        return self.anchor_time.hour * 60 + self.anchor_time.minute

    @property
    def debounce_seconds(self) -> float:
        return self.debounce_ms / 1000.0

    @property
    def busy_retry_seconds(self) -> float:
        return self.busy_retry_ms / 1000.0

    @classmethod
    def from_yaml_dict(cls, raw: Dict[str, Any]) -> "SleepConfig":
        night_window = raw.get("night_window") or {}
        anomaly = raw.get("anomaly") or {}
        persistence = raw.get("persistence") or {}
        wake_proposal = raw.get("wake_proposal") or {}
        entries = raw.get("entries") or {}

        values: Dict[str, Any] = {
            "anchor_time": night_window.get("anchor_time"),
            "window_minutes": night_window.get("window_minutes"),
            "anomaly_max_span_minutes": anomaly.get("max_span_minutes"),
            "min_fix_span_minutes": anomaly.get("min_fix_span_minutes"),
            "target_span_minutes": anomaly.get("target_span_minutes"),
            "over_window_weight": anomaly.get("over_window_weight"),
            "fix_day_offsets": anomaly.get("day_offsets"),
            "debounce_ms": persistence.get("debounce_ms"),
            "busy_retry_ms": persistence.get("busy_retry_ms"),
            "default_wake_minutes": wake_proposal.get("default_wake_minutes"),
            "min_persisted_seconds": entries.get("min_persisted_seconds"),
            "local_timezone": raw.get("local_timezone"),
        }
        # Missing keys fall back to model defaults
        return cls(**{k: v for k, v in values.items() if v is not None})


_config: Optional[SleepConfig] = None


def get_sleep_config(config_path: Optional[str] = None) -> SleepConfig:
    """
    Cached SleepConfig. NIGHTSLEEP_CONFIG overrides the bundled YAML file.
    """
    global _config
    if _config is not None and config_path is None:
        return _config

    path = config_path or os.getenv("NIGHTSLEEP_CONFIG") or str(CONFIG_FILE)
    try:
        cfg = SleepConfig.from_yaml_dict(load_config(path))
    except FileNotFoundError:
        logger.warning(f"Sleep config not found at {path}; using defaults")
        cfg = SleepConfig()

    if config_path is None:
        _config = cfg
    return cfg


def reset_sleep_config() -> None:
    """Forget the cached config so the next call rereads the YAML file."""
    global _config
    _config = None
    clear_config_cache()
