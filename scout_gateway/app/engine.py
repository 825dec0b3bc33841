from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any, Callable

from scout_gateway.app.pipeline import PAUSED_STATUSES, build_match_context, league_name, select_relevant
from scout_gateway.app.plugins import MarketAnalyzer, TrendProvider, call_analyzer, call_trend_provider
from scout_gateway.app.providers.sportmonks import MatchFeed
from scout_gateway.app.state import SignalStore, SnapshotSink
from signal_engine import config
from signal_engine.lifecycle.manager import SignalLifecycleManager
from signal_engine.lifecycle.markets import LifecycleConfig, MarketConfig
from signal_engine.minute.extractors import extract_match_id, extract_status
from signal_engine.minute.normalizer import MinuteConfig, MinuteNormalizer
from signal_engine.models import ActiveSignalSnapshot, ActiveSignalSummary, MarketAnalysis, MatchContext, SignalCandidate
from signal_engine.resilience.bulkheads import FetchBulkhead, run_io
from signal_engine.resilience.circuit_breaker import BreakerRegistry
from signal_engine.resilience.degradation import Degradation, build_degradation
from signal_engine.resilience.timeouts import bounded_timeout, deadline_low, default_deadline_ms, reset_deadline, set_deadline_ms
from signal_engine.rl.agent import AgentConfig, ConfidenceAgent
from signal_engine.rl.persistence import read_checkpoint, write_checkpoint


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EngineConfig:
    league_ids: tuple[int, ...] = ()
    max_concurrent_matches: int = 50
    use_fixture_fallback: bool = True
    emergency_live_fallback: bool = False
    fallback_concurrency: int = 6
    fallback_timeout_seconds: float = 5.0
    feed_timeout_seconds: float = 15.0
    tick_seconds: float = 30.0
    tick_deadline_ms: int = field(default_factory=default_deadline_ms)
    checkpoint_every: int = 50
    model_path: str | None = None


@dataclass
class TickReport:
    started_unix: float
    duration_ms: int = 0
    matches_seen: int = 0
    matches_live: int = 0
    fallback_attempts: int = 0
    fallback_recovered: int = 0
    analyses: int = 0
    candidates: int = 0
    rejected: dict[str, int] = field(default_factory=dict)
    expired: int = 0
    active: list[ActiveSignalSummary] = field(default_factory=list)
    counts: dict[str, int] = field(default_factory=dict)
    degradation: Degradation = field(default_factory=lambda: Degradation(level=0, warnings=[]))

    def reject(self, reason: str) -> None:
        self.rejected[reason] = self.rejected.get(reason, 0) + 1

    def to_dict(self) -> dict[str, Any]:
        return {
            "started_unix": self.started_unix,
            "duration_ms": self.duration_ms,
            "matches_seen": self.matches_seen,
            "matches_live": self.matches_live,
            "fallback_attempts": self.fallback_attempts,
            "fallback_recovered": self.fallback_recovered,
            "analyses": self.analyses,
            "candidates": self.candidates,
            "rejected": dict(self.rejected),
            "expired": self.expired,
            "active": len(self.active),
            "counts": dict(self.counts),
            "degradation": {"level": self.degradation.level, "warnings": list(self.degradation.warnings)},
        }


def _opt_float(v: Any) -> float | None:
    if isinstance(v, bool) or not isinstance(v, (int, float)):
        return None
    return float(v)


class ScoutEngine:
    def __init__(
        self,
        feed: MatchFeed,
        *,
        normalizer: MinuteNormalizer | None = None,
        agent: ConfidenceAgent | None = None,
        lifecycle: SignalLifecycleManager | None = None,
        analyzer: MarketAnalyzer | None = None,
        trend_provider: TrendProvider | None = None,
        store: SignalStore | None = None,
        sinks: Sequence[SnapshotSink] = (),
        cfg: EngineConfig | None = None,
        clock: Callable[[], float] | None = None,
    ) -> None:
        self._cfg = cfg or EngineConfig()
        self._clock = clock or time.time
        self._feed = feed
        self.normalizer = normalizer or MinuteNormalizer(MinuteConfig.from_env(), clock=self._clock)
        self.agent = agent or ConfidenceAgent(clock=self._clock)
        self.lifecycle = lifecycle or SignalLifecycleManager(clock=self._clock)
        self._analyzer = analyzer
        self._trend_provider = trend_provider
        self._store = store
        self._sinks = list(sinks)
        self._bulkhead = FetchBulkhead(concurrency=self._cfg.fallback_concurrency, timeout_seconds=self._cfg.fallback_timeout_seconds)
        self._breakers = BreakerRegistry()
        self._tick_count = 0
        self._last_report: TickReport | None = None
        self._last_checkpoint_counter = 0

    @property
    def config(self) -> EngineConfig:
        return self._cfg

    @property
    def last_report(self) -> TickReport | None:
        return self._last_report

    @property
    def bulkhead(self) -> FetchBulkhead:
        return self._bulkhead

    def snapshot(self) -> ActiveSignalSnapshot:
        return self.lifecycle.get_snapshot()

    async def _fetch_live(self) -> list[dict[str, Any]] | None:
        breaker = self._breakers.get("feed.live")
        try:
            timeout = bounded_timeout(self._cfg.feed_timeout_seconds)
            payloads = await asyncio.wait_for(breaker.call_async(self._feed.fetch_live_matches), timeout=max(0.01, timeout))
        except Exception as e:
            logger.warning("live feed unavailable err=%s", str(e) or type(e).__name__)
            return None
        return [p for p in payloads if isinstance(p, dict)] if isinstance(payloads, list) else []

    async def _fixture_minute(self, match_id: str, now: float) -> tuple[int, str] | None:
        breaker = self._breakers.get("feed.fixture")
        detail = await self._bulkhead.run(lambda: breaker.call_async(self._feed.fetch_fixture, match_id), label=f"fixture:{match_id}")
        if not isinstance(detail, dict):
            return None
        raw, _source = self.normalizer.extract(detail, now)
        if raw <= 0:
            return None
        return raw, "fixture"

    async def _resolve_minutes(self, payloads: list[dict[str, Any]], now: float, report: TickReport) -> list[tuple[dict[str, Any], str, int, str]]:
        rows: list[tuple[dict[str, Any], str, int, str]] = []
        for p in payloads:
            mid = extract_match_id(p)
            raw, source = self.normalizer.extract(p, now)
            rows.append((p, mid, raw, source))

        if not self._cfg.use_fixture_fallback:
            return rows

        wanted = [
            i
            for i, (p, mid, raw, _src) in enumerate(rows)
            if mid != "unknown" and extract_status(p) not in PAUSED_STATUSES and self.normalizer.needs_fallback(mid, raw, now)
        ]
        if not wanted:
            return rows
        report.fallback_attempts = len(wanted)
        results = await asyncio.gather(*(self._fixture_minute(rows[i][1], now) for i in wanted))
        for i, res in zip(wanted, results):
            if res is None:
                continue
            p, mid, _raw, _src = rows[i]
            rows[i] = (p, mid, res[0], res[1])
            report.fallback_recovered += 1
        return rows

    async def _trends_for(self, ctx: MatchContext) -> Any:
        if self._trend_provider is None:
            return None
        try:
            return await call_trend_provider(self._trend_provider, ctx)
        except Exception as e:
            logger.warning("trend provider failed match=%s err=%s", ctx.match_id, e)
            return None

    async def _analyses_for(self, ctx: MatchContext, trends: Any) -> list[MarketAnalysis]:
        if self._analyzer is None:
            return []
        try:
            return await call_analyzer(self._analyzer, ctx, trends)
        except Exception as e:
            logger.warning("market analyzer failed match=%s err=%s", ctx.match_id, e)
            return []

    def _candidate_for(self, ctx: MatchContext, league: str, a: MarketAnalysis, trends: Any, now: float, report: TickReport) -> SignalCandidate | None:
        lc = self.lifecycle.config
        if not lc.enabled(a.market):
            report.reject("market_disabled")
            return None
        if float(a.confidence) < lc.threshold(a.market):
            report.reject("below_min_confidence")
            logger.debug("candidate below minimum match=%s market=%s conf=%.1f", ctx.match_id, a.market, a.confidence)
            return None
        if not self.lifecycle.has_capacity(ctx.match_id, a.market):
            report.reject("capacity")
            logger.debug("candidate capacity reached match=%s market=%s", ctx.match_id, a.market)
            return None

        result = self.agent.evaluate_signal(a, ctx, trends)
        if not result.should_generate:
            report.reject("agent_reject")
            return None

        data = a.data
        meta: dict[str, Any] = {
            "original_confidence": float(a.confidence),
            "minute_stale": ctx.minute_stale,
            "minute_guarded": ctx.minute_guarded,
        }
        if result.evaluation_id:
            meta["evaluation_id"] = result.evaluation_id
        if result.action is not None:
            meta["action"] = int(result.action)
        return SignalCandidate(
            match_id=ctx.match_id,
            market=a.market,
            selection=a.selection,
            confidence=float(result.adjusted_confidence),
            ttl_seconds=lc.signal_ttl_seconds,
            home_team=ctx.home_team,
            away_team=ctx.away_team,
            league=league,
            minute=ctx.minute,
            liquidity_ok=bool(data.get("liquidity_ok", True)),
            reasoning=result.reasoning,
            created_unix=now,
            last_update_unix=now,
            odds=a.odds,
            bookmaker=str(data["bookmaker"]) if isinstance(data.get("bookmaker"), str) else None,
            is_value_bet=bool(data.get("is_value_bet", False)),
            implied_probability=_opt_float(data.get("implied_probability")),
            value_score=_opt_float(data.get("value_score")),
            meta=meta,
        )

    async def _process_match(self, ctx: MatchContext, payload: dict[str, Any], now: float, report: TickReport) -> list[SignalCandidate]:
        trends = await self._trends_for(ctx)
        analyses = await self._analyses_for(ctx, trends)
        report.analyses += len(analyses)
        league = league_name(payload)
        out: list[SignalCandidate] = []
        for a in analyses:
            c = self._candidate_for(ctx, league, a, trends, now, report)
            if c is not None:
                out.append(c)
        return out

    async def checkpoint(self, *, force: bool = False) -> bool:
        path = self._cfg.model_path
        if not path:
            return False
        due = (self.agent.update_counter - self._last_checkpoint_counter) >= max(1, int(self._cfg.checkpoint_every))
        if not (force or due):
            return False
        counter = self.agent.update_counter
        data = self.agent.save_model()
        try:
            await run_io(write_checkpoint, data, path)
        except Exception as e:
            logger.warning("agent checkpoint failed path=%s err=%s", path, e)
            return False
        self._last_checkpoint_counter = counter
        return True

    async def load_checkpoint(self) -> bool:
        path = self._cfg.model_path
        if not path:
            return False
        try:
            data = await run_io(read_checkpoint, path)
        except Exception as e:
            logger.warning("agent checkpoint load failed path=%s err=%s", path, e)
            return False
        ok = data is not None and self.agent.load_model(data)
        if ok:
            self._last_checkpoint_counter = self.agent.update_counter
        return bool(ok)

    async def _publish(self, snapshot: ActiveSignalSnapshot) -> bool:
        failed = False
        for sink in self._sinks:
            try:
                await sink.publish(snapshot)
            except Exception as e:
                failed = True
                logger.warning("snapshot sink failed sink=%s err=%s", type(sink).__name__, e)
        return failed

    async def tick(self) -> TickReport:
        token = set_deadline_ms(self._cfg.tick_deadline_ms)
        try:
            return await self._tick()
        finally:
            reset_deadline(token)

    async def _tick(self) -> TickReport:
        now = float(self._clock())
        t0 = time.monotonic()
        report = TickReport(started_unix=now)
        self._tick_count += 1

        payloads = await self._fetch_live()
        feed_unavailable = payloads is None
        rows = await self._resolve_minutes(payloads or [], now, report)
        report.matches_seen = len(rows)

        contexts: list[MatchContext] = []
        by_id: dict[str, dict[str, Any]] = {}
        for p, mid, raw, source in rows:
            reading = self.normalizer.normalize(mid, raw, now, source=source)
            ctx = build_match_context(p, reading)
            contexts.append(ctx)
            by_id.setdefault(ctx.match_id, p)

        relevant = select_relevant(
            contexts,
            league_ids=self._cfg.league_ids,
            limit=self._cfg.max_concurrent_matches,
            emergency_fallback=self._cfg.emergency_live_fallback,
        )
        report.matches_live = len(relevant)

        candidates: list[SignalCandidate] = []
        match_errors = 0
        for ctx in relevant:
            try:
                candidates.extend(await self._process_match(ctx, by_id.get(ctx.match_id, {}), now, report))
            except Exception as e:
                match_errors += 1
                logger.exception("match processing failed match=%s err=%s", ctx.match_id, e)
        report.candidates = len(candidates)

        report.active = self.lifecycle.update(candidates, now)
        report.expired = len(self.lifecycle.drain_expired())
        self.normalizer.sweep(now)
        self.lifecycle.sweep_cooldowns(now)

        self.agent.replay_experience()
        await self.checkpoint()

        snapshot = self.lifecycle.get_snapshot(now)
        report.counts = dict(snapshot.counts)
        sink_failed = await self._publish(snapshot)

        report.degradation = build_degradation(
            feed_unavailable=feed_unavailable,
            fallback_failures=report.fallback_attempts - report.fallback_recovered,
            match_errors=match_errors,
            sink_failed=sink_failed,
            deadline_low=deadline_low(),
        )
        report.duration_ms = int((time.monotonic() - t0) * 1000.0)
        self._last_report = report
        logger.info(
            "tick=%s matches=%s live=%s candidates=%s active=%s degradation=%s",
            self._tick_count,
            report.matches_seen,
            report.matches_live,
            report.candidates,
            len(report.active),
            report.degradation.level,
        )
        return report

    async def run_forever(self) -> None:
        while True:
            try:
                await self.tick()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.exception("tick failed err=%s", e)
            await asyncio.sleep(float(self._cfg.tick_seconds))

    async def _resolve_evaluation(self, ref: str) -> str | None:
        if self.agent.has_pending(ref):
            return ref
        if self._store is not None:
            try:
                found = await self._store.find_evaluation(ref)
            except Exception as e:
                logger.warning("signal store lookup failed ref=%s err=%s", ref, e)
                found = None
            if found:
                return found
        live = self.lifecycle.get(ref)
        if live is not None and isinstance(live.meta.get("evaluation_id"), str):
            return str(live.meta["evaluation_id"])
        return None

    async def report_outcome(self, ref: str, outcome: str, profit: float | None = None) -> float | None:
        eval_id = await self._resolve_evaluation(str(ref))
        if eval_id is None:
            logger.warning("outcome for unknown signal ref=%s", ref)
            return None
        reward = self.agent.update_from_result(eval_id, outcome, profit)
        if reward is None:
            return None
        if self._store is not None:
            try:
                await self._store.record_outcome(eval_id, outcome, profit)
            except Exception as e:
                logger.warning("signal store outcome failed ref=%s err=%s", ref, e)
        await self.checkpoint()
        return reward

    def status(self) -> dict[str, Any]:
        return {
            "ticks": self._tick_count,
            "last_tick": self._last_report.to_dict() if self._last_report is not None else None,
            "tracked_matches": len(self.normalizer),
            "live_signals": len(self.lifecycle),
            "pending_evaluations": self.agent.pending_count,
            "fallback_peak_in_flight": self._bulkhead.peak_in_flight,
            "breakers": [b.to_dict() for b in self._breakers.snapshots()],
        }


def lifecycle_config_from_settings(s: Any) -> LifecycleConfig:
    return LifecycleConfig(
        confidence_active=float(s.confidence_active),
        max_active=int(s.max_active),
        cooldown_seconds=float(s.cooldown_seconds),
        maturation_seconds=float(s.maturation_seconds),
        signal_ttl_minutes=float(s.signal_ttl_minutes),
        markets={
            "ou": MarketConfig(bool(s.over_under_enabled), float(s.over_under_min_confidence), int(s.over_under_max_per_match)),
            "btts": MarketConfig(bool(s.btts_enabled), float(s.btts_min_confidence), int(s.btts_max_per_match)),
            "next_goal": MarketConfig(bool(s.next_goal_enabled), float(s.next_goal_min_confidence), int(s.next_goal_max_per_match)),
        },
    )


def build_engine(
    s: Any,
    feed: MatchFeed,
    *,
    analyzer: MarketAnalyzer | None = None,
    trend_provider: TrendProvider | None = None,
    store: SignalStore | None = None,
    sinks: Sequence[SnapshotSink] = (),
) -> ScoutEngine:
    normalizer = MinuteNormalizer(
        MinuteConfig(
            stale_threshold_seconds=float(s.stale_minute_threshold_seconds),
            cache_ttl_seconds=float(s.last_minute_cache_seconds),
            tracking_idle_seconds=float(s.minute_tracking_idle_seconds),
            use_periods_events_fallback=bool(s.use_periods_events_fallback),
            use_starting_at_fallback=bool(s.use_starting_at_fallback),
        )
    )
    agent = ConfidenceAgent(
        AgentConfig(
            learning_rate=float(s.rl_learning_rate),
            epsilon=float(s.rl_epsilon),
            batch_size=int(s.rl_batch_size),
            buffer_size=int(s.rl_buffer_size),
            target_update_frequency=int(s.rl_target_update_frequency),
            prioritized_replay=bool(s.rl_prioritized_replay),
            double_q_learning=bool(s.rl_double_q_learning),
            max_states=int(s.rl_max_states),
        )
    )
    cfg = EngineConfig(
        league_ids=tuple(int(x) for x in (s.supported_league_ids or [])),
        max_concurrent_matches=int(s.max_concurrent_matches),
        use_fixture_fallback=bool(s.use_fixture_fallback),
        emergency_live_fallback=bool(s.emergency_live_fallback),
        fallback_concurrency=int(s.fallback_concurrency),
        fallback_timeout_seconds=float(s.fallback_timeout_seconds),
        tick_seconds=float(s.tick_seconds),
        tick_deadline_ms=int(s.tick_deadline_ms),
        checkpoint_every=int(s.rl_checkpoint_every),
        model_path=str(s.rl_model_path or config.rl_model_path()),
    )
    return ScoutEngine(
        feed,
        normalizer=normalizer,
        agent=agent,
        lifecycle=SignalLifecycleManager(lifecycle_config_from_settings(s)),
        analyzer=analyzer,
        trend_provider=trend_provider,
        store=store,
        sinks=sinks,
        cfg=cfg,
    )
