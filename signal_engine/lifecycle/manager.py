from __future__ import annotations

import logging
import time
from collections import deque
from collections.abc import Iterable
from typing import Any, Callable

from signal_engine.lifecycle.markets import PROMOTION_MARGIN, LifecycleConfig, market_bucket
from signal_engine.models import (
    ActiveSignalSnapshot,
    ActiveSignalSummary,
    SignalCandidate,
    SignalState,
)


logger = logging.getLogger(__name__)

EXPIRED_BACKLOG = 1000


class SignalLifecycleManager:
    def __init__(self, cfg: LifecycleConfig | None = None, *, clock: Callable[[], float] | None = None) -> None:
        self._cfg = cfg or LifecycleConfig()
        self._clock = clock or time.time
        self._signals: dict[str, SignalCandidate] = {}
        self._cooldown: dict[str, float] = {}
        self._expired: deque[SignalCandidate] = deque(maxlen=EXPIRED_BACKLOG)

    @property
    def config(self) -> LifecycleConfig:
        return self._cfg

    def __len__(self) -> int:
        return len(self._signals)

    def get(self, signal_id: str) -> SignalCandidate | None:
        return self._signals.get(str(signal_id))

    def _now(self, now: float | None) -> float:
        return float(self._clock() if now is None else now)

    def _priority(self, s: SignalCandidate, now: float) -> tuple[float, float]:
        return (-float(s.confidence), s.ttl_left(now))

    def in_cooldown(self, signal_id: str, now: float | None = None) -> bool:
        last = self._cooldown.get(str(signal_id))
        if last is None:
            return False
        return (self._now(now) - last) < float(self._cfg.cooldown_seconds)

    def _promote(self, s: SignalCandidate, now: float) -> None:
        before = s.state
        threshold = self._cfg.threshold(s.market)

        if s.state == SignalState.PRE and s.confidence >= threshold - PROMOTION_MARGIN and s.liquidity_ok:
            s.state = SignalState.CANDIDATE
            logger.debug("signal PRE->CANDIDATE id=%s conf=%.1f req=%.1f", s.id, s.confidence, threshold - PROMOTION_MARGIN)

        if (
            s.state == SignalState.CANDIDATE
            and s.confidence >= threshold
            and s.age_seconds(now) >= float(self._cfg.maturation_seconds)
            and s.liquidity_ok
            and not self.in_cooldown(s.id, now)
        ):
            s.state = SignalState.ACTIVE
            self._cooldown[s.id] = now
            logger.info("signal CANDIDATE->ACTIVE id=%s conf=%.1f age=%.0fs", s.id, s.confidence, s.age_seconds(now))

        if s.state != before:
            s.last_update_unix = now

    def _merge(self, existing: SignalCandidate, incoming: SignalCandidate, now: float) -> SignalCandidate:
        existing.confidence = float(incoming.confidence)
        existing.minute = int(incoming.minute)
        existing.liquidity_ok = bool(incoming.liquidity_ok)
        existing.reasoning = incoming.reasoning
        existing.selection = incoming.selection
        existing.odds = incoming.odds
        existing.bookmaker = incoming.bookmaker
        existing.is_value_bet = incoming.is_value_bet
        existing.implied_probability = incoming.implied_probability
        existing.value_score = incoming.value_score
        existing.meta = {**existing.meta, **incoming.meta}
        existing.last_update_unix = now
        return existing

    def _select_active(self, now: float) -> list[SignalCandidate]:
        by_match: dict[str, list[SignalCandidate]] = {}
        for s in self._signals.values():
            if s.state == SignalState.ACTIVE and s.ttl_left(now) > 0:
                by_match.setdefault(s.match_id, []).append(s)

        limited: list[SignalCandidate] = []
        for signals in by_match.values():
            signals = sorted(signals, key=lambda x: self._priority(x, now))
            per_bucket: dict[str, list[SignalCandidate]] = {}
            for s in signals:
                per_bucket.setdefault(market_bucket(s.market), []).append(s)
            for bucket_signals in per_bucket.values():
                limit = self._cfg.per_match_limit(bucket_signals[0].market)
                limited.extend(bucket_signals[:limit])

        limited.sort(key=lambda x: self._priority(x, now))
        return limited[: int(self._cfg.max_active)]

    def _summary(self, s: SignalCandidate, now: float) -> ActiveSignalSummary:
        return ActiveSignalSummary(
            id=s.id,
            match_id=s.match_id,
            market=s.market,
            selection=s.selection,
            home_team=s.home_team,
            away_team=s.away_team,
            league=s.league,
            confidence=float(s.confidence),
            minute=int(s.minute),
            ttl_left=int(round(s.ttl_left(now))),
            state=s.state.value,
            reasoning=s.reasoning,
            odds=s.odds,
            bookmaker=s.bookmaker,
            is_value_bet=bool(s.is_value_bet),
            created_unix=float(s.created_unix),
            evaluation_id=s.meta.get("evaluation_id") if isinstance(s.meta.get("evaluation_id"), str) else None,
        )

    def update(self, candidates: Iterable[SignalCandidate], now: float | None = None) -> list[ActiveSignalSummary]:
        t = self._now(now)
        for c in candidates:
            existing = self._signals.get(c.id)
            if existing is not None:
                s = self._merge(existing, c, t)
            else:
                c.created_unix = t if c.created_unix > t else c.created_unix
                c.last_update_unix = t
                s = c
            self._signals[s.id] = s
            if s.state in (SignalState.PRE, SignalState.CANDIDATE):
                self._promote(s, t)

        for sid in [k for k, s in self._signals.items() if s.ttl_left(t) <= 0]:
            s = self._signals.pop(sid)
            s.state = SignalState.EXPIRED
            s.last_update_unix = t
            self._expired.append(s)
            logger.debug("signal EXPIRED id=%s", sid)

        selected = self._select_active(t)
        logger.debug("signals selected=%s live=%s", len(selected), len(self._signals))
        return [self._summary(s, t) for s in selected]

    def get_snapshot(self, now: float | None = None) -> ActiveSignalSnapshot:
        t = self._now(now)
        counts = {SignalState.PRE.value: 0, SignalState.CANDIDATE.value: 0, SignalState.ACTIVE.value: 0}
        for s in self._signals.values():
            if s.ttl_left(t) <= 0:
                continue
            if s.state.value in counts:
                counts[s.state.value] += 1
        return ActiveSignalSnapshot(
            active=[self._summary(s, t) for s in self._select_active(t)],
            counts=counts,
            generated_at_unix=t,
        )

    def drain_expired(self) -> list[SignalCandidate]:
        """Expired signals since the last drain, oldest first. Only the newest
        EXPIRED_BACKLOG are kept when nobody drains."""
        out = list(self._expired)
        self._expired.clear()
        return out

    def active_count(self, match_id: str, market: str, exclude: str | None = None) -> int:
        bucket = market_bucket(market)
        n = 0
        for s in self._signals.values():
            if s.state != SignalState.ACTIVE or s.match_id != str(match_id):
                continue
            if exclude is not None and s.id == exclude:
                continue
            if market_bucket(s.market) == bucket:
                n += 1
        return n

    def has_capacity(self, match_id: str, market: str) -> bool:
        identity = f"{match_id}:{market}"
        return self.active_count(match_id, market, exclude=identity) < self._cfg.per_match_limit(market)

    def sweep_cooldowns(self, now: float | None = None) -> int:
        t = self._now(now)
        window = float(self._cfg.cooldown_seconds)
        drop = [k for k, ts in self._cooldown.items() if (t - ts) >= window]
        for k in drop:
            self._cooldown.pop(k, None)
        return len(drop)

    def stats(self, now: float | None = None) -> dict[str, Any]:
        t = self._now(now)
        by_state: dict[str, int] = {}
        by_bucket: dict[str, int] = {}
        matches: set[str] = set()
        for s in self._signals.values():
            by_state[s.state.value] = by_state.get(s.state.value, 0) + 1
            by_bucket[market_bucket(s.market)] = by_bucket.get(market_bucket(s.market), 0) + 1
            matches.add(s.match_id)
        return {
            "total": len(self._signals),
            "by_state": by_state,
            "by_market": by_bucket,
            "matches": len(matches),
            "cooldowns": sum(1 for ts in self._cooldown.values() if (t - ts) < float(self._cfg.cooldown_seconds)),
            "config": {
                "confidence_active": self._cfg.confidence_active,
                "max_active": self._cfg.max_active,
                "cooldown_seconds": self._cfg.cooldown_seconds,
                "maturation_seconds": self._cfg.maturation_seconds,
                "signal_ttl_minutes": self._cfg.signal_ttl_minutes,
            },
        }

    def clear(self) -> None:
        self._signals.clear()
        self._cooldown.clear()
        self._expired.clear()
        logger.info("signal lifecycle cleared")
