from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any

import joblib

from signal_engine.rl.agent import ConfidenceAgent


logger = logging.getLogger(__name__)


def write_checkpoint(data: dict[str, Any], path: str | Path) -> Path:
    p = Path(path)
    p.parent.mkdir(parents=True, exist_ok=True)
    tmp = p.with_suffix(p.suffix + ".tmp")
    joblib.dump(data, tmp)
    os.replace(tmp, p)
    q = data.get("q_table")
    logger.info("agent checkpoint written path=%s states=%s", p, len(q) if isinstance(q, dict) else 0)
    return p


def save_agent(agent: ConfidenceAgent, path: str | Path) -> Path:
    return write_checkpoint(agent.save_model(), path)


def read_checkpoint(path: str | Path) -> dict[str, Any] | None:
    p = Path(path)
    if not p.exists():
        return None
    try:
        data = joblib.load(p)
    except Exception as e:
        logger.warning("agent checkpoint unreadable path=%s err=%s", p, e)
        return None
    return data if isinstance(data, dict) else None


def load_agent(agent: ConfidenceAgent, path: str | Path) -> bool:
    data = read_checkpoint(path)
    if data is None:
        return False
    return agent.load_model(data)
