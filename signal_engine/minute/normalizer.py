from __future__ import annotations

import logging
import math
import time
from dataclasses import dataclass
from typing import Any, Callable

from signal_engine import config
from signal_engine.minute.extractors import MINUTE_CAP, extract_raw_minute


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MinuteConfig:
    stale_threshold_seconds: float = 120.0
    cache_ttl_seconds: float = 90.0
    tracking_idle_seconds: float = 6 * 3600.0
    use_periods_events_fallback: bool = True
    use_starting_at_fallback: bool = True

    @classmethod
    def from_env(cls) -> "MinuteConfig":
        return cls(
            stale_threshold_seconds=float(config.stale_minute_threshold_seconds()),
            cache_ttl_seconds=float(config.minute_cache_ttl_seconds()),
            tracking_idle_seconds=float(config.tracking_idle_seconds()),
            use_periods_events_fallback=config.use_periods_events_fallback(),
            use_starting_at_fallback=config.use_starting_at_fallback(),
        )


@dataclass
class MinuteTrackingState:
    last_raw_minute: int = 0
    last_raw_change_unix: float = 0.0
    cached_minute: int = 0
    cached_unix: float = 0.0
    normalized_minute: int = 0
    normalized_unix: float = 0.0
    last_seen_unix: float = 0.0


@dataclass(frozen=True)
class MinuteReading:
    minute: int
    raw: int
    stale: bool
    guard_applied: bool
    source: str


def _elapsed_minutes(now: float, since: float) -> int:
    d = float(now) - float(since)
    if not math.isfinite(d) or d <= 0:
        return 0
    return int(math.floor(d / 60.0))


class MinuteNormalizer:
    def __init__(self, cfg: MinuteConfig | None = None, *, clock: Callable[[], float] | None = None) -> None:
        self._cfg = cfg or MinuteConfig()
        self._clock = clock or time.time
        self._tracking: dict[str, MinuteTrackingState] = {}

    @property
    def config(self) -> MinuteConfig:
        return self._cfg

    def __len__(self) -> int:
        return len(self._tracking)

    def state_for(self, match_id: str) -> MinuteTrackingState | None:
        return self._tracking.get(str(match_id))

    def extract(self, payload: Any, now: float | None = None) -> tuple[int, str]:
        t = self._clock() if now is None else float(now)
        return extract_raw_minute(
            payload,
            now_unix=t,
            use_periods_events=self._cfg.use_periods_events_fallback,
            use_starting_at=self._cfg.use_starting_at_fallback,
        )

    def _is_stale(self, st: MinuteTrackingState | None, raw: int, now: float) -> bool:
        if st is None or raw <= 0:
            return False
        if raw != st.last_raw_minute:
            return False
        return (float(now) - float(st.last_raw_change_unix)) > float(self._cfg.stale_threshold_seconds)

    def needs_fallback(self, match_id: str, raw: int, now: float | None = None) -> bool:
        t = self._clock() if now is None else float(now)
        r = int(raw or 0)
        if r <= 0:
            return True
        return self._is_stale(self._tracking.get(str(match_id)), r, t)

    def normalize(self, match_id: str, raw_minute: int, now: float | None = None, *, source: str = "raw") -> MinuteReading:
        t = self._clock() if now is None else float(now)
        mid = str(match_id)
        raw = max(0, min(MINUTE_CAP, int(raw_minute or 0)))
        st = self._tracking.get(mid)
        stale = self._is_stale(st, raw, t)

        if st is None:
            st = MinuteTrackingState(last_raw_minute=raw, last_raw_change_unix=t)
            self._tracking[mid] = st
        elif raw != st.last_raw_minute:
            st.last_raw_minute = raw
            st.last_raw_change_unix = t
        st.last_seen_unix = t

        if raw > st.cached_minute:
            st.cached_minute = raw
            st.cached_unix = t

        minute = raw
        guard_applied = False
        if raw <= 0 or stale:
            candidate = raw
            if st.cached_minute > 0 and (t - st.cached_unix) <= float(self._cfg.cache_ttl_seconds):
                candidate = min(MINUTE_CAP, st.cached_minute + _elapsed_minutes(t, st.cached_unix))
            if st.normalized_minute > 0:
                projected = min(MINUTE_CAP, st.normalized_minute + _elapsed_minutes(t, st.normalized_unix))
                if projected > candidate:
                    candidate = projected
                    guard_applied = True
            minute = max(raw, candidate)

        if minute < st.normalized_minute:
            minute = st.normalized_minute
            guard_applied = True
        minute = max(0, min(MINUTE_CAP, int(minute)))

        if minute > st.normalized_minute:
            st.normalized_minute = minute
            st.normalized_unix = t

        if stale or guard_applied:
            logger.debug("minute match=%s raw=%s minute=%s stale=%s guard=%s", mid, raw, minute, stale, guard_applied)
        return MinuteReading(minute=minute, raw=raw, stale=stale, guard_applied=guard_applied, source=str(source))

    def normalize_payload(self, payload: Any, match_id: str, now: float | None = None) -> MinuteReading:
        t = self._clock() if now is None else float(now)
        raw, source = self.extract(payload, t)
        return self.normalize(match_id, raw, t, source=source)

    def sweep(self, now: float | None = None) -> int:
        t = self._clock() if now is None else float(now)
        limit = float(self._cfg.tracking_idle_seconds)
        drop = [k for k, st in self._tracking.items() if (t - float(st.last_seen_unix)) > limit]
        for k in drop:
            self._tracking.pop(k, None)
        if drop:
            logger.info("minute tracking evicted=%s remaining=%s", len(drop), len(self._tracking))
        return len(drop)
