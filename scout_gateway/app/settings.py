import json
from typing import Annotated

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


def _split_list(v: object) -> list[str] | None:
    if v is None:
        return None
    if isinstance(v, (list, tuple)):
        return [str(x).strip() for x in v if str(x).strip()]
    if isinstance(v, (int, float)) and not isinstance(v, bool):
        return [str(v)]
    if isinstance(v, str):
        s = v.strip()
        if not s:
            return []
        try:
            parsed = json.loads(s)
            if isinstance(parsed, list):
                return [str(x).strip() for x in parsed if str(x).strip()]
            if isinstance(parsed, (str, int)):
                s = str(parsed).strip()
        except Exception:
            pass
        return [p.strip() for p in s.split(",") if p.strip()]
    return None


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="SCOUT_", env_file=".env", extra="ignore")

    app_name: str = "Scout Signal Engine API"
    log_level: str = "INFO"
    cors_allow_origins: Annotated[list[str], NoDecode] = ["http://localhost:3000", "http://localhost:5173"]
    cors_allow_origin_regex: str | None = None

    data_provider: str = "sportmonks"
    sportmonks_api_key: str | None = None
    sportmonks_base_url: str = "https://api.sportmonks.com/v3/football"
    sportmonks_timeout_seconds: float = 10.0
    supported_league_ids: Annotated[list[int], NoDecode] = []
    max_concurrent_matches: int = 50

    tick_seconds: float = 30.0
    tick_deadline_ms: int = 25_000
    engine_enabled: bool = True

    stale_minute_threshold_seconds: float = 120.0
    last_minute_cache_seconds: float = 90.0
    minute_tracking_idle_seconds: float = 6 * 3600.0
    use_fixture_fallback: bool = True
    use_periods_events_fallback: bool = True
    use_starting_at_fallback: bool = True
    emergency_live_fallback: bool = False
    fallback_concurrency: int = 6
    fallback_timeout_seconds: float = 5.0

    confidence_active: float = 65.0
    max_active: int = 10
    cooldown_seconds: float = 300.0
    maturation_seconds: float = 60.0
    signal_ttl_minutes: float = 15.0
    over_under_enabled: bool = True
    over_under_min_confidence: float = 65.0
    over_under_max_per_match: int = 2
    btts_enabled: bool = True
    btts_min_confidence: float = 60.0
    btts_max_per_match: int = 2
    next_goal_enabled: bool = True
    next_goal_min_confidence: float = 70.0
    next_goal_max_per_match: int = 1

    rl_learning_rate: float = 0.001
    rl_epsilon: float = 0.3
    rl_batch_size: int = 64
    rl_buffer_size: int = 50_000
    rl_target_update_frequency: int = 1000
    rl_prioritized_replay: bool = True
    rl_double_q_learning: bool = True
    rl_max_states: int = 200_000
    rl_model_path: str | None = None
    rl_checkpoint_every: int = 50

    state_db_path: str = "data/scout_state.sqlite3"
    analyzer_path: str | None = None
    trend_provider_path: str | None = None

    @field_validator("data_provider", mode="before")
    @classmethod
    def _normalize_data_provider(cls, v: object) -> object:
        if v is None:
            return v
        return str(v).strip().lower()

    @field_validator("log_level", mode="before")
    @classmethod
    def _normalize_log_level(cls, v: object) -> object:
        if v is None:
            return v
        return str(v).strip().upper()

    @field_validator("cors_allow_origins", mode="before")
    @classmethod
    def _parse_cors_allow_origins(cls, v: object) -> object:
        out = _split_list(v)
        return v if out is None else out

    @field_validator("supported_league_ids", mode="before")
    @classmethod
    def _parse_league_ids(cls, v: object) -> object:
        out = _split_list(v)
        if out is None:
            return v
        ids: list[int] = []
        for x in out:
            try:
                ids.append(int(x))
            except Exception:
                raise ValueError(f"invalid_league_id:{x}")
        return ids

    @model_validator(mode="after")
    def _check_ranges(self) -> "Settings":
        if self.fallback_concurrency < 1:
            raise ValueError("fallback_concurrency_must_be_positive")
        if self.max_active < 1:
            raise ValueError("max_active_must_be_positive")
        if self.tick_seconds <= 0:
            raise ValueError("tick_seconds_must_be_positive")
        return self


settings = Settings()
