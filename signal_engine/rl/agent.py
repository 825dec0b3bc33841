from __future__ import annotations

import logging
import time
import uuid
from collections import OrderedDict
from dataclasses import asdict, dataclass, replace
from typing import Any, Callable

import numpy as np

from signal_engine.features.builder import build_state, state_key
from signal_engine.features.schema import FEATURE_VERSION
from signal_engine.models import MarketAnalysis, MatchContext
from signal_engine.rl.actions import ACTION_COUNT, ACTIONS, action_for
from signal_engine.rl.replay import Experience, ExperienceBuffer, experience_priority


logger = logging.getLogger(__name__)

PENDING_MAX_AGE_SECONDS = 24 * 3600.0
OUTCOMES = ("won", "lost", "expired")


@dataclass(frozen=True)
class AgentConfig:
    learning_rate: float = 0.001
    epsilon: float = 0.3
    epsilon_decay: float = 0.9995
    epsilon_fast_decay: float = 0.999
    epsilon_growth: float = 1.01
    min_epsilon: float = 0.05
    max_epsilon: float = 0.3
    discount_factor: float = 0.95
    buffer_size: int = 50_000
    batch_size: int = 64
    target_update_frequency: int = 1000
    prioritized_replay: bool = True
    double_q_learning: bool = True
    priority_alpha: float = 0.6
    max_states: int = 200_000
    max_pending: int = 100_000
    seed: int | None = None


@dataclass(frozen=True)
class EvaluationResult:
    should_generate: bool
    adjusted_confidence: float
    reasoning: str
    evaluation_id: str | None = None
    action: int | None = None


@dataclass(frozen=True)
class PendingEvaluation:
    state: tuple[float, ...]
    action: int
    created_unix: float
    match_id: str | None
    original_confidence: float | None
    market: str | None


def outcome_reward(outcome: str, profit: float | None = None, original_confidence: float | None = None) -> float:
    o = str(outcome or "").strip().lower()
    if o not in OUTCOMES:
        raise ValueError(f"unknown_outcome:{outcome}")
    p = float(profit) if isinstance(profit, (int, float)) and not isinstance(profit, bool) else 0.0
    reward = 0.0
    if o == "won":
        reward = 1.0
        if p > 0:
            reward += min(p / 100.0, 0.5)
    elif o == "lost":
        reward = -1.0
        if p < 0:
            reward += max(p / 100.0, -0.5)
    else:
        reward = -0.2

    if original_confidence:
        c = float(original_confidence) / 100.0
        if o == "lost" and c > 0.8:
            reward -= 0.3
        elif o == "won" and c < 0.6:
            reward += 0.2
    return reward


def _variance(values: list[float]) -> float:
    if not values:
        return 0.0
    return float(np.var(np.asarray(values, dtype=float)))


class ConfidenceAgent:
    def __init__(self, cfg: AgentConfig | None = None, *, clock: Callable[[], float] | None = None) -> None:
        self._cfg = cfg or AgentConfig()
        self._clock = clock or time.time
        self._rng = np.random.default_rng(self._cfg.seed)
        self._epsilon = float(self._cfg.epsilon)
        self._q: OrderedDict[str, np.ndarray] = OrderedDict()
        self._target_q: dict[str, np.ndarray] = {}
        self._buffer = ExperienceBuffer(self._cfg.buffer_size)
        self._pending: OrderedDict[str, PendingEvaluation] = OrderedDict()
        self._update_counter = 0
        self._replay_count = 0
        self._target_syncs = 0
        self._performance: list[float] = []
        self._convergence: list[float] = []

    @property
    def config(self) -> AgentConfig:
        return self._cfg

    @property
    def epsilon(self) -> float:
        return self._epsilon

    @property
    def update_counter(self) -> int:
        return self._update_counter

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    @property
    def buffer(self) -> ExperienceBuffer:
        return self._buffer

    def q_values(self, key: str) -> np.ndarray:
        row = self._q.get(key)
        return row.copy() if row is not None else np.zeros(ACTION_COUNT, dtype=float)

    def has_pending(self, evaluation_id: str) -> bool:
        return str(evaluation_id) in self._pending

    def q_table_size(self) -> int:
        return len(self._q)

    def _row(self, key: str) -> np.ndarray:
        row = self._q.get(key)
        if row is None:
            row = np.zeros(ACTION_COUNT, dtype=float)
            self._q[key] = row
        else:
            self._q.move_to_end(key)
        if len(self._q) > int(self._cfg.max_states):
            old, _ = self._q.popitem(last=False)
            self._target_q.pop(old, None)
        return row

    def _target_row(self, key: str) -> np.ndarray:
        if self._cfg.double_q_learning:
            row = self._target_q.get(key)
            return row if row is not None else np.zeros(ACTION_COUNT, dtype=float)
        return self.q_values(key)

    def _select_action(self, key: str) -> int:
        if float(self._rng.random()) < self._epsilon:
            return int(self._rng.integers(0, ACTION_COUNT))
        return int(np.argmax(self.q_values(key)))

    def _new_evaluation_id(self) -> str:
        return f"eval_{int(self._clock() * 1000)}_{uuid.uuid4().hex[:9]}"

    def _sweep_pending(self, now: float) -> None:
        cutoff = float(now) - PENDING_MAX_AGE_SECONDS
        stale = [k for k, p in self._pending.items() if p.created_unix < cutoff]
        for k in stale:
            self._pending.pop(k, None)
        while len(self._pending) > int(self._cfg.max_pending):
            self._pending.popitem(last=False)

    def _track_decision(self, key: str, action: int) -> None:
        q = self.q_values(key)
        best = float(q.max())
        self._convergence.append(float(q[action]) / best if best > 0 else 0.5)
        if len(self._convergence) > 1000:
            del self._convergence[0]

    def evaluate_signal(self, analysis: MarketAnalysis | dict[str, Any], match: MatchContext, trends: Any = None) -> EvaluationResult:
        a = MarketAnalysis.from_obj(analysis)
        if a is None:
            conf = analysis.get("confidence", 0.0) if isinstance(analysis, dict) else 0.0
            reason = analysis.get("reasoning", "") if isinstance(analysis, dict) else ""
            return EvaluationResult(True, float(conf or 0.0), str(reason or ""))
        try:
            now = float(self._clock())
            state = build_state(a, match, trends=trends, performance_history=self._performance)
            key = state_key(state)
            action = self._select_action(key)
            act = action_for(action)

            reasoning = f"{a.reasoning} (agent: {act.note})".strip()
            adjusted = act.apply(a.confidence)

            eval_id = self._new_evaluation_id()
            self._pending[eval_id] = PendingEvaluation(
                state=state,
                action=action,
                created_unix=now,
                match_id=str(match.match_id) if match.match_id is not None else None,
                original_confidence=float(a.confidence),
                market=a.market,
            )
            self._sweep_pending(now)
            self._track_decision(key, action)
            return EvaluationResult(act.generate, float(adjusted), reasoning, eval_id, action)
        except Exception as e:
            logger.exception("agent evaluate failed market=%s err=%s", a.market, e)
            return EvaluationResult(True, float(a.confidence), a.reasoning)

    def update_from_result(self, evaluation_id: str, outcome: str, profit: float | None = None) -> float | None:
        if str(outcome or "").strip().lower() not in OUTCOMES:
            logger.warning("agent feedback rejected id=%s outcome=%s", evaluation_id, outcome)
            return None
        pending = self._pending.pop(str(evaluation_id), None)
        if pending is None:
            logger.warning("agent feedback for unknown evaluation id=%s", evaluation_id)
            return None
        try:
            reward = outcome_reward(outcome, profit, pending.original_confidence)
            key = state_key(pending.state)
            row = self._row(key)
            row[pending.action] += self._cfg.learning_rate * (reward - row[pending.action])

            self._update_counter += 1
            if self._cfg.double_q_learning and self._update_counter % max(1, int(self._cfg.target_update_frequency)) == 0:
                self._sync_target()

            self._buffer.append(
                Experience(
                    state=pending.state,
                    action=pending.action,
                    reward=reward,
                    next_state=None,
                    done=True,
                    priority=experience_priority(reward, pending.original_confidence),
                    timestamp=float(self._clock()),
                    match_id=pending.match_id,
                    profit=float(profit) if isinstance(profit, (int, float)) and not isinstance(profit, bool) else 0.0,
                )
            )
            self._performance.append(reward)
            if len(self._performance) > 1000:
                del self._performance[0]
            if abs(reward) > 0.5:
                logger.info("agent outcome=%s reward=%.3f profit=%s", outcome, reward, profit)
            self._update_epsilon()

            if self._update_counter % max(1, int(self._cfg.batch_size)) == 0:
                self.replay_experience()
            return reward
        except Exception as e:
            logger.exception("agent update failed id=%s err=%s", evaluation_id, e)
            return None

    def _sync_target(self) -> None:
        self._target_q = {k: v.copy() for k, v in self._q.items()}
        self._target_syncs += 1
        logger.info("agent target table synced states=%s", len(self._target_q))

    def recent_positive_share(self) -> float:
        if len(self._performance) < 10:
            return 0.5
        recent = self._performance[-20:]
        return sum(1 for r in recent if r > 0) / len(recent)

    def _update_epsilon(self) -> None:
        share = self.recent_positive_share()
        if share > 0.6:
            self._epsilon = max(self._cfg.min_epsilon, self._epsilon * self._cfg.epsilon_fast_decay)
        elif share < 0.4:
            self._epsilon = min(self._cfg.max_epsilon, self._epsilon * self._cfg.epsilon_growth)
        else:
            self._epsilon = max(self._cfg.min_epsilon, self._epsilon * self._cfg.epsilon_decay)

    def replay_experience(self, batch_size: int | None = None) -> int:
        bs = int(batch_size or self._cfg.batch_size)
        if len(self._buffer) < bs:
            return 0
        try:
            if self._cfg.prioritized_replay:
                idx = self._buffer.sample_prioritized(bs, self._rng, alpha=self._cfg.priority_alpha)
            else:
                idx = self._buffer.sample_uniform(bs, self._rng)

            total_td = 0.0
            for i in idx:
                exp = self._buffer[i]
                row = self._row(state_key(exp.state))
                target = float(exp.reward)
                if not exp.done and exp.next_state:
                    target += self._cfg.discount_factor * float(self._target_row(state_key(exp.next_state)).max())
                td = target - float(row[exp.action])
                row[exp.action] += self._cfg.learning_rate * td
                total_td += abs(td)
                if self._cfg.prioritized_replay:
                    self._buffer.replace_priority(i, abs(td) + 0.01)

            self._replay_count += 1
            if idx and (total_td / len(idx)) > 0.1:
                logger.info("agent replay batch=%s avg_td=%.4f", len(idx), total_td / len(idx))
            return len(idx)
        except Exception as e:
            logger.exception("agent replay failed err=%s", e)
            return 0

    def convergence_score(self) -> float:
        if len(self._convergence) < 50:
            return 0.0
        return max(0.0, 1.0 - _variance(self._convergence[-50:]))

    def _status(self) -> str:
        n = len(self._buffer)
        if n < 50:
            return "initializing"
        if n < 200:
            return "training"
        if self._epsilon > 0.1:
            return "exploring"
        if self.convergence_score() > 0.8:
            return "converged"
        return "learning"

    def _learning_phase(self) -> str:
        conv = self.convergence_score()
        perf = self.recent_positive_share()
        if conv > 0.9 and perf > 0.7:
            return "mastery"
        if conv > 0.7 and perf > 0.6:
            return "advanced"
        if conv > 0.5 and perf > 0.5:
            return "intermediate"
        if len(self._buffer) > 100:
            return "developing"
        return "novice"

    def performance_metrics(self) -> dict[str, Any]:
        recent = self._buffer.tail(100)
        won = sum(1 for e in recent if e.reward > 0)
        profits = [e.profit for e in self._buffer.ordered()]
        total_profit = float(sum(profits))

        dist_src = self._buffer.tail(200)
        counts = [0] * ACTION_COUNT
        for e in dist_src:
            if 0 <= e.action < ACTION_COUNT:
                counts[e.action] += 1
        total = sum(counts)
        distribution = {a.name: (round(counts[a.index] / total * 100.0, 1) if total else 0.0) for a in ACTIONS}

        return {
            "learning_rate": self._cfg.learning_rate,
            "epsilon": self._epsilon,
            "buffer_size": len(self._buffer),
            "buffer_capacity": self._buffer.capacity,
            "recent_performance": (won / len(recent) * 100.0) if recent else 0.0,
            "status": self._status(),
            "q_table_size": len(self._q),
            "pending_evaluations": len(self._pending),
            "convergence_score": self.convergence_score(),
            "average_reward": round(float(np.mean(self._performance)), 4) if self._performance else 0.0,
            "update_counter": self._update_counter,
            "target_network_updates": self._target_syncs,
            "experience_replay_count": self._replay_count,
            "total_profit": round(total_profit, 2),
            "average_profit": round(total_profit / len(profits), 2) if profits else 0.0,
            "profit_volatility": round(_variance(profits), 4),
            "action_distribution": distribution,
            "learning_phase": self._learning_phase(),
            "double_q_learning": self._cfg.double_q_learning,
            "prioritized_replay": self._cfg.prioritized_replay,
        }

    def save_model(self, *, max_experiences: int = 1000) -> dict[str, Any]:
        return {
            "version": 1,
            "feature_version": FEATURE_VERSION,
            "config": asdict(self._cfg),
            "epsilon": self._epsilon,
            "update_counter": self._update_counter,
            "q_table": {k: v.tolist() for k, v in self._q.items()},
            "target_q_table": {k: v.tolist() for k, v in self._target_q.items()},
            "experiences": [e.to_dict() for e in self._buffer.tail(max_experiences)],
            "performance_history": list(self._performance),
        }

    def load_model(self, data: Any) -> bool:
        if not isinstance(data, dict):
            logger.warning("agent load skipped: payload is %s", type(data).__name__)
            return False
        fv = data.get("feature_version")
        if fv is not None and fv != FEATURE_VERSION:
            logger.warning("agent load skipped: feature_version=%s expected=%s", fv, FEATURE_VERSION)
            return False
        try:
            cfg_raw = data.get("config")
            if isinstance(cfg_raw, dict):
                known = {k: v for k, v in cfg_raw.items() if k in AgentConfig.__dataclass_fields__}
                known.pop("seed", None)
                self._cfg = replace(self._cfg, **known)

            q = OrderedDict()
            for k, v in (data.get("q_table") or {}).items():
                row = np.asarray(v, dtype=float)
                if row.shape == (ACTION_COUNT,):
                    q[str(k)] = row
            target = {}
            for k, v in (data.get("target_q_table") or {}).items():
                row = np.asarray(v, dtype=float)
                if row.shape == (ACTION_COUNT,):
                    target[str(k)] = row

            buf = ExperienceBuffer(self._cfg.buffer_size)
            for d in data.get("experiences") or []:
                if isinstance(d, dict):
                    buf.append(Experience.from_dict(d))

            self._q = q
            self._target_q = target
            self._buffer = buf
            eps = data.get("epsilon")
            if isinstance(eps, (int, float)):
                self._epsilon = min(self._cfg.max_epsilon, max(self._cfg.min_epsilon, float(eps)))
            self._update_counter = int(data.get("update_counter") or 0)
            self._performance = [float(x) for x in (data.get("performance_history") or [])][-1000:]
            logger.info("agent model loaded states=%s experiences=%s", len(self._q), len(self._buffer))
            return True
        except Exception as e:
            logger.exception("agent load failed err=%s", e)
            return False
