from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Any

import numpy as np


@dataclass(frozen=True)
class Experience:
    state: tuple[float, ...]
    action: int
    reward: float
    next_state: tuple[float, ...] | None
    done: bool
    priority: float
    timestamp: float
    match_id: str | None = None
    profit: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "state": list(self.state),
            "action": int(self.action),
            "reward": float(self.reward),
            "next_state": list(self.next_state) if self.next_state is not None else None,
            "done": bool(self.done),
            "priority": float(self.priority),
            "timestamp": float(self.timestamp),
            "match_id": self.match_id,
            "profit": float(self.profit),
        }

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> "Experience":
        nxt = d.get("next_state")
        return cls(
            state=tuple(float(x) for x in d.get("state") or ()),
            action=int(d.get("action") or 0),
            reward=float(d.get("reward") or 0.0),
            next_state=tuple(float(x) for x in nxt) if isinstance(nxt, (list, tuple)) and nxt else None,
            done=bool(d.get("done", True)),
            priority=float(d.get("priority") or 0.0),
            timestamp=float(d.get("timestamp") or 0.0),
            match_id=str(d["match_id"]) if d.get("match_id") is not None else None,
            profit=float(d.get("profit") or 0.0),
        )


def experience_priority(reward: float, original_confidence: float | None) -> float:
    if original_confidence:
        expected = (float(original_confidence) / 100.0) * 2.0 - 1.0
        return abs(float(reward) - expected) + 0.1
    return abs(float(reward))


class ExperienceBuffer:
    def __init__(self, capacity: int = 50_000) -> None:
        self._capacity = max(1, int(capacity))
        self._items: list[Experience] = []
        self._start = 0

    @property
    def capacity(self) -> int:
        return self._capacity

    def __len__(self) -> int:
        return len(self._items)

    def _physical(self, i: int) -> int:
        return (self._start + int(i)) % len(self._items)

    def __getitem__(self, i: int) -> Experience:
        if i < 0:
            i += len(self._items)
        if i < 0 or i >= len(self._items):
            raise IndexError(i)
        return self._items[self._physical(i)]

    def append(self, exp: Experience) -> None:
        if len(self._items) < self._capacity:
            self._items.append(exp)
            return
        self._items[self._start] = exp
        self._start = (self._start + 1) % self._capacity

    def replace_priority(self, i: int, priority: float) -> None:
        p = self._physical(i)
        self._items[p] = replace(self._items[p], priority=float(priority))

    def ordered(self) -> list[Experience]:
        return self._items[self._start :] + self._items[: self._start]

    def tail(self, n: int) -> list[Experience]:
        items = self.ordered()
        return items[-int(n) :] if n > 0 else []

    def clear(self) -> None:
        self._items = []
        self._start = 0

    def sample_uniform(self, batch_size: int, rng: np.random.Generator) -> list[int]:
        n = len(self._items)
        if n == 0:
            return []
        return [int(i) for i in rng.integers(0, n, size=int(batch_size))]

    def sample_prioritized(self, batch_size: int, rng: np.random.Generator, *, alpha: float = 0.6) -> list[int]:
        ordered = self.ordered()
        eligible = [i for i, e in enumerate(ordered) if e.priority > 0]
        if len(eligible) < int(batch_size):
            return self.sample_uniform(batch_size, rng)
        weights = np.power(np.array([ordered[i].priority for i in eligible], dtype=float), float(alpha))
        total = float(weights.sum())
        if not np.isfinite(total) or total <= 0:
            return self.sample_uniform(batch_size, rng)

        picked: list[int] = []
        taken = np.zeros(len(eligible), dtype=bool)
        for _ in range(int(batch_size)):
            live = np.where(taken, 0.0, weights)
            remaining = float(live.sum())
            if remaining <= 0:
                break
            cum = np.cumsum(live)
            j = int(np.searchsorted(cum, rng.random() * remaining, side="right"))
            j = min(j, len(eligible) - 1)
            if taken[j] or live[j] <= 0:
                j = int(np.flatnonzero(live > 0)[0])
            taken[j] = True
            picked.append(eligible[j])
        return picked
