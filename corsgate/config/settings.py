from __future__ import annotations
import os
from dataclasses import dataclass
from typing import Any, Mapping, Optional, Protocol


class ConfigProvider(Protocol):
    def get(self, key: str, default: Any = None) -> Any: ...
    def get_int(self, key: str, default: int = 0) -> int: ...
    def get_float(self, key: str, default: float = 0.0) -> float: ...


class EnvConfigProvider:
    def __init__(self, environ: Optional[Mapping[str, str]] = None) -> None:
        self.environ = os.environ if environ is None else environ

    def get(self, key: str, default: Any = None) -> Any:
        v = self.environ.get(key)
        return default if v is None or v.strip() == "" else v.strip()

    def get_int(self, key: str, default: int = 0) -> int:
        try:
            return int(self.environ.get(key, ""))
        except ValueError:
            return default

    def get_float(self, key: str, default: float = 0.0) -> float:
        try:
            return float(self.environ.get(key, ""))
        except ValueError:
            return default


@dataclass(frozen=True)
class Settings:
    """Runtime knobs. Target and header allowlists are not among them."""

    log_level: str = "INFO"
    timeout_seconds: float = 30.0
    max_connections: int = 100
    host: str = "0.0.0.0"
    port: int = 3001


def load_settings(provider: Optional[ConfigProvider] = None) -> Settings:
    p = provider or EnvConfigProvider()
    timeout = p.get_float("PROXY_TIMEOUT_SECONDS", 30.0)
    max_conns = p.get_int("PROXY_MAX_CONNECTIONS", 100)
    return Settings(
        log_level=str(p.get("LOG_LEVEL", "INFO")).upper(),
        timeout_seconds=timeout if timeout > 0 else 30.0,
        max_connections=max_conns if max_conns > 0 else 100,
        host=str(p.get("HOST", "0.0.0.0")),
        port=p.get_int("PORT", 3001),
    )
