# bidsync/config.py
from typing import Any, Mapping

from pydantic import BaseModel, Field

from utils.time import parse_tf

class ApiConfig(BaseModel):
    base_url: str = "http://localhost:5000/api"
    token: str = ""
    timeout_ms: int = 10_000
    max_attempts: int = 3
    backoff_ms: int = 200

class PushConfig(BaseModel):
    url: str = ""
    enabled: bool = True
    ping_interval: int = 20
    reconnect_cap_s: int = 20

class PollingConfig(BaseModel):
    interval: str = Field(default="30s")

    @property
    def interval_s(self) -> float:
        return parse_tf(self.interval) / 1000.0

class EngineSettings(BaseModel):
    """Sync engine runtime configuration."""
    api: ApiConfig = ApiConfig()
    push: PushConfig = PushConfig()
    polling: PollingConfig = PollingConfig()

    @classmethod
    def from_cfg(cls, cfg: Mapping[str, Any]) -> "EngineSettings":
        api_cfg = dict(cfg.get("api") or {})
        timeouts_cfg = cfg.get("timeouts") or {}
        retries_cfg = cfg.get("retries") or {}
        if "rest_ms" in timeouts_cfg:
            api_cfg.setdefault("timeout_ms", timeouts_cfg["rest_ms"])
        if "rest_max_attempts" in retries_cfg:
            api_cfg.setdefault("max_attempts", retries_cfg["rest_max_attempts"])
        if "backoff_ms" in retries_cfg:
            api_cfg.setdefault("backoff_ms", retries_cfg["backoff_ms"])
        return cls(
            api=ApiConfig(**api_cfg),
            push=PushConfig(**(cfg.get("push") or {})),
            polling=PollingConfig(**(cfg.get("polling") or {})),
        )
