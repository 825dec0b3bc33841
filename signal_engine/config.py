from __future__ import annotations

import os
from pathlib import Path


def _int_env(name: str, default: int, lo: int, hi: int) -> int:
    try:
        v = int(str(os.getenv(name, str(default)) or "").strip())
    except Exception:
        v = default
    if v < lo:
        v = lo
    if v > hi:
        v = hi
    return v


def _flag_env(name: str, default: bool = True) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    v = str(raw).strip().lower()
    if not v:
        return default
    return v not in {"0", "false", "no", "off"}


def data_dir() -> Path:
    return Path(os.getenv("SCOUT_DATA_DIR", "data")).resolve()


def artifact_dir() -> Path:
    return Path(os.getenv("SCOUT_ARTIFACT_DIR", str(data_dir() / "models"))).resolve()


def rl_model_path() -> Path:
    return Path(os.getenv("SCOUT_RL_MODEL_PATH", str(artifact_dir() / "confidence_agent.joblib"))).resolve()


def minute_cache_ttl_seconds() -> int:
    return _int_env("SCOUT_LAST_MINUTE_CACHE_SEC", 90, 10, 3600)


def stale_minute_threshold_seconds() -> int:
    return _int_env("SCOUT_STALE_MINUTE_THRESHOLD_SEC", 120, 10, 3600)


def tracking_idle_seconds() -> int:
    return _int_env("SCOUT_MINUTE_TRACKING_IDLE_SEC", 6 * 3600, 600, 7 * 24 * 3600)


def use_starting_at_fallback() -> bool:
    return _flag_env("SCOUT_USE_STARTING_AT_FALLBACK", True)


def use_periods_events_fallback() -> bool:
    return _flag_env("SCOUT_USE_PERIODS_EVENTS_FALLBACK", True)


def tick_deadline_ms() -> int:
    return _int_env("SCOUT_TICK_DEADLINE_MS", 25_000, 1_000, 120_000)
