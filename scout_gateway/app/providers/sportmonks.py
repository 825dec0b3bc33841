from __future__ import annotations

import json
import logging
import ssl
from typing import Any, Protocol
from urllib.parse import urlencode
from urllib.request import Request, urlopen

import certifi

from signal_engine.resilience.bulkheads import run_io


logger = logging.getLogger(__name__)

LIVE_INCLUDE = "participants;statistics;scores;league;state"
EXTENDED_INCLUDE = "periods;events"
FIXTURE_INCLUDE = "participants;scores;state;periods;events"


class MatchFeed(Protocol):
    async def fetch_live_matches(self) -> list[dict[str, Any]]: ...

    async def fetch_fixture(self, match_id: str) -> dict[str, Any] | None: ...


class ProviderError(RuntimeError):
    pass


def _ssl_context() -> ssl.SSLContext:
    return ssl.create_default_context(cafile=certifi.where())


def http_get_json(url: str, *, headers: dict[str, str], timeout: float = 10.0) -> Any:
    req = Request(url, headers=headers, method="GET")
    context = _ssl_context() if str(url).lower().startswith("https://") else None
    with urlopen(req, timeout=timeout, context=context) as resp:
        raw = resp.read().decode("utf-8")
    return json.loads(raw)


def _unwrap_data(payload: Any) -> Any:
    if isinstance(payload, dict) and "data" in payload:
        return payload.get("data")
    return payload


class SportMonksFeed:
    def __init__(
        self,
        *,
        api_key: str,
        base_url: str = "https://api.sportmonks.com/v3/football",
        timeout_seconds: float = 10.0,
        include_periods_events: bool = True,
    ) -> None:
        key = str(api_key or "").strip().strip('"').strip("'").strip()
        if not key:
            raise ProviderError("sportmonks_api_key_missing")
        self._api_key = key
        self._base_url = str(base_url).rstrip("/")
        self._timeout = float(timeout_seconds)
        self._include_periods_events = bool(include_periods_events)

    def _url(self, endpoint: str, params: dict[str, str]) -> str:
        q = {"api_token": self._api_key, **params}
        return f"{self._base_url}/{endpoint.lstrip('/')}?{urlencode(q)}"

    def _get(self, endpoint: str, params: dict[str, str]) -> Any:
        return http_get_json(self._url(endpoint, params), headers={"Accept": "application/json"}, timeout=self._timeout)

    def live_include(self) -> str:
        if self._include_periods_events:
            return f"{LIVE_INCLUDE};{EXTENDED_INCLUDE};odds"
        return f"{LIVE_INCLUDE};odds"

    async def fetch_live_matches(self) -> list[dict[str, Any]]:
        payload = await run_io(self._get, "livescores/inplay", {"include": self.live_include()})
        data = _unwrap_data(payload)
        if not isinstance(data, list):
            raise ProviderError("sportmonks_unexpected_payload")
        out = [m for m in data if isinstance(m, dict)]
        logger.debug("sportmonks live matches=%s", len(out))
        return out

    async def fetch_fixture(self, match_id: str) -> dict[str, Any] | None:
        payload = await run_io(self._get, f"fixtures/{match_id}", {"include": FIXTURE_INCLUDE})
        data = _unwrap_data(payload)
        return data if isinstance(data, dict) else None


class StaticFeed:
    def __init__(self, matches: list[dict[str, Any]] | None = None, fixtures: dict[str, dict[str, Any]] | None = None) -> None:
        self.matches = list(matches or [])
        self.fixtures = dict(fixtures or {})

    async def fetch_live_matches(self) -> list[dict[str, Any]]:
        return list(self.matches)

    async def fetch_fixture(self, match_id: str) -> dict[str, Any] | None:
        return self.fixtures.get(str(match_id))
