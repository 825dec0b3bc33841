from __future__ import annotations

import importlib
import inspect
import logging
from typing import Any, Callable, Protocol

from signal_engine.models import MarketAnalysis, MatchContext


logger = logging.getLogger(__name__)

MarketAnalyzer = Callable[[MatchContext, Any], Any]


class TrendProvider(Protocol):
    def fetch_trends(self, match: MatchContext) -> Any: ...


class PluginError(RuntimeError):
    pass


def load_object(path: str) -> Any:
    p = str(path or "").strip()
    if not p:
        raise PluginError("plugin_path_empty")
    if ":" in p:
        mod_name, _, attr = p.partition(":")
    else:
        mod_name, _, attr = p.rpartition(".")
    if not mod_name or not attr:
        raise PluginError(f"plugin_path_invalid:{p}")
    try:
        mod = importlib.import_module(mod_name)
    except Exception as e:
        raise PluginError(f"plugin_import_failed:{mod_name}") from e
    obj: Any = mod
    for part in attr.split("."):
        if not hasattr(obj, part):
            raise PluginError(f"plugin_attr_missing:{p}")
        obj = getattr(obj, part)
    return obj


def load_analyzer(path: str | None) -> MarketAnalyzer | None:
    if not path:
        return None
    obj = load_object(path)
    if inspect.isclass(obj):
        obj = obj()
    if not callable(obj):
        raise PluginError(f"analyzer_not_callable:{path}")
    logger.info("market analyzer loaded path=%s", path)
    return obj


def load_trend_provider(path: str | None) -> TrendProvider | None:
    if not path:
        return None
    obj = load_object(path)
    if inspect.isclass(obj):
        obj = obj()
    if not callable(getattr(obj, "fetch_trends", None)):
        raise PluginError(f"trend_provider_invalid:{path}")
    logger.info("trend provider loaded path=%s", path)
    return obj


async def _maybe_await(v: Any) -> Any:
    if inspect.isawaitable(v):
        return await v
    return v


async def call_analyzer(analyzer: MarketAnalyzer, match: MatchContext, trends: Any) -> list[MarketAnalysis]:
    raw = await _maybe_await(analyzer(match, trends))
    if raw is None:
        return []
    if not isinstance(raw, (list, tuple)):
        raw = [raw]
    out: list[MarketAnalysis] = []
    for item in raw:
        a = MarketAnalysis.from_obj(item)
        if a is None:
            logger.debug("analysis dropped match=%s item=%r", match.match_id, item)
            continue
        out.append(a)
    return out


async def call_trend_provider(provider: TrendProvider, match: MatchContext) -> Any:
    return await _maybe_await(provider.fetch_trends(match))
