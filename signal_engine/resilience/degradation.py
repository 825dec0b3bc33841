from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class Degradation:
    level: int
    warnings: list[str]

    @property
    def degraded(self) -> bool:
        return self.level > 0


def build_degradation(
    *,
    feed_unavailable: bool,
    fallback_failures: int = 0,
    match_errors: int = 0,
    sink_failed: bool = False,
    deadline_low: bool = False,
) -> Degradation:
    level = 0
    warnings: list[str] = []
    if feed_unavailable:
        level = max(level, 2)
        warnings.append("feed_unavailable")
    if fallback_failures > 0:
        level = max(level, 1)
        warnings.append(f"fixture_fallback_failed:{int(fallback_failures)}")
    if match_errors > 0:
        level = max(level, 1)
        warnings.append(f"match_errors:{int(match_errors)}")
    if sink_failed:
        level = max(level, 1)
        warnings.append("sink_failed")
    if deadline_low:
        level = max(level, 1)
        warnings.append("deadline_low")
    return Degradation(level=level, warnings=warnings)
