from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class ConfidenceAction:
    index: int
    name: str
    generate: bool
    scale: float
    cap: float
    note: str

    def apply(self, confidence: float) -> float:
        if not self.generate:
            return float(confidence)
        return min(float(confidence) * self.scale, self.cap)


ACTIONS: tuple[ConfidenceAction, ...] = (
    ConfidenceAction(0, "reject", False, 0.0, 0.0, "signal rejected, high risk pattern"),
    ConfidenceAction(1, "very_low", True, 0.6, 50.0, "very low confidence, experimental signal"),
    ConfidenceAction(2, "low", True, 0.8, 65.0, "low confidence, conservative approach"),
    ConfidenceAction(3, "medium", True, 0.95, 80.0, "medium confidence, standard signal"),
    ConfidenceAction(4, "high", True, 1.15, 95.0, "high confidence, strong pattern"),
)

ACTION_COUNT = len(ACTIONS)


def action_for(index: int) -> ConfidenceAction:
    return ACTIONS[int(index)]
