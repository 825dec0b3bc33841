from __future__ import annotations

import asyncio
import json
import logging
import sqlite3
import time
from pathlib import Path
from typing import Any, Protocol

from signal_engine.models import ActiveSignalSnapshot, ActiveSignalSummary
from signal_engine.resilience.bulkheads import run_io


logger = logging.getLogger(__name__)


class SnapshotSink(Protocol):
    async def publish(self, snapshot: ActiveSignalSnapshot) -> Any: ...


class SignalStore:
    def __init__(self, db_path: str) -> None:
        self._db_path = str(db_path or "data/scout_state.sqlite3")
        self._lock = asyncio.Lock()
        self._db_enabled = False
        self._init_db()

    @property
    def db_enabled(self) -> bool:
        return self._db_enabled

    def _connect(self) -> sqlite3.Connection:
        return sqlite3.connect(self._db_path, timeout=5)

    def _init_db(self) -> None:
        p = Path(self._db_path)
        try:
            if p.parent:
                p.parent.mkdir(parents=True, exist_ok=True)
            with self._connect() as con:
                con.execute("PRAGMA journal_mode=WAL;")
                con.execute(
                    """
                    CREATE TABLE IF NOT EXISTS active_signals (
                        signal_id TEXT NOT NULL,
                        created_unix REAL NOT NULL,
                        match_id TEXT NOT NULL,
                        market TEXT NOT NULL,
                        selection TEXT NOT NULL,
                        confidence REAL NOT NULL,
                        minute INTEGER NOT NULL,
                        evaluation_id TEXT,
                        activated_unix REAL NOT NULL,
                        payload_json TEXT NOT NULL,
                        outcome TEXT,
                        profit REAL,
                        resolved_unix REAL,
                        PRIMARY KEY (signal_id, created_unix)
                    );
                    """
                )
                con.execute("CREATE INDEX IF NOT EXISTS idx_active_signals_activated ON active_signals(activated_unix DESC);")
                con.execute("CREATE INDEX IF NOT EXISTS idx_active_signals_eval ON active_signals(evaluation_id);")
            self._db_enabled = True
        except Exception as e:
            logger.warning("signal store disabled path=%s err=%s", self._db_path, e)
            self._db_enabled = False

    def _insert_rows(self, rows: list[ActiveSignalSummary], now: float) -> list[str]:
        inserted: list[str] = []
        with self._connect() as con:
            for s in rows:
                cur = con.execute(
                    """
                    INSERT OR IGNORE INTO active_signals (
                        signal_id, created_unix, match_id, market, selection, confidence, minute,
                        evaluation_id, activated_unix, payload_json
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        s.id,
                        float(s.created_unix),
                        s.match_id,
                        s.market,
                        s.selection,
                        float(s.confidence),
                        int(s.minute),
                        s.evaluation_id,
                        float(now),
                        json.dumps(s.to_dict(), ensure_ascii=False),
                    ),
                )
                if cur.rowcount:
                    inserted.append(s.id)
        return inserted

    async def publish(self, snapshot: ActiveSignalSnapshot) -> list[str]:
        if not self._db_enabled or not snapshot.active:
            return []
        async with self._lock:
            inserted = await run_io(self._insert_rows, list(snapshot.active), float(snapshot.generated_at_unix))
        if inserted:
            logger.info("signal store saved new active signals=%s", len(inserted))
        return inserted

    def _find_evaluation(self, signal_id: str) -> str | None:
        with self._connect() as con:
            row = con.execute(
                """
                SELECT evaluation_id FROM active_signals
                WHERE signal_id = ? AND outcome IS NULL AND evaluation_id IS NOT NULL
                ORDER BY created_unix DESC LIMIT 1
                """,
                (str(signal_id),),
            ).fetchone()
        return str(row[0]) if row and row[0] else None

    async def find_evaluation(self, signal_id: str) -> str | None:
        if not self._db_enabled:
            return None
        async with self._lock:
            return await run_io(self._find_evaluation, signal_id)

    def _record_outcome(self, evaluation_id: str, outcome: str, profit: float | None, now: float) -> int:
        with self._connect() as con:
            cur = con.execute(
                """
                UPDATE active_signals SET outcome = ?, profit = ?, resolved_unix = ?
                WHERE evaluation_id = ? AND outcome IS NULL
                """,
                (str(outcome), profit, float(now), str(evaluation_id)),
            )
            return int(cur.rowcount or 0)

    async def record_outcome(self, evaluation_id: str, outcome: str, profit: float | None = None) -> int:
        if not self._db_enabled:
            return 0
        async with self._lock:
            return await run_io(self._record_outcome, evaluation_id, outcome, profit, time.time())

    def _recent(self, limit: int) -> list[dict[str, Any]]:
        with self._connect() as con:
            rows = con.execute(
                """
                SELECT payload_json, activated_unix, outcome, profit, resolved_unix
                FROM active_signals ORDER BY activated_unix DESC LIMIT ?
                """,
                (int(limit),),
            ).fetchall()
        out: list[dict[str, Any]] = []
        for payload_json, activated_unix, outcome, profit, resolved_unix in rows:
            try:
                payload = json.loads(payload_json)
            except Exception:
                payload = {}
            if not isinstance(payload, dict):
                payload = {}
            payload["activated_unix"] = float(activated_unix)
            payload["outcome"] = outcome
            payload["profit"] = float(profit) if isinstance(profit, (int, float)) else None
            payload["resolved_unix"] = float(resolved_unix) if isinstance(resolved_unix, (int, float)) else None
            out.append(payload)
        return out

    async def recent(self, limit: int = 50) -> list[dict[str, Any]]:
        if not self._db_enabled:
            return []
        async with self._lock:
            return await run_io(self._recent, max(1, min(500, int(limit))))

    def _outcome_counts(self) -> dict[str, int]:
        with self._connect() as con:
            rows = con.execute("SELECT COALESCE(outcome, 'open'), COUNT(*) FROM active_signals GROUP BY 1").fetchall()
        return {str(k): int(v) for k, v in rows}

    async def outcome_counts(self) -> dict[str, int]:
        if not self._db_enabled:
            return {}
        async with self._lock:
            return await run_io(self._outcome_counts)
