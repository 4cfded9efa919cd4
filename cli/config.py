"""Connection settings for the command line client."""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Callable, Optional, TypeVar

DEFAULT_BASE_URL = "http://localhost:8000"
DEFAULT_TIMEOUT = 30.0
DEFAULT_ALERT_HOURS = 24

_BASE_URL_ENV = "API_BASE_URL"
_TIMEOUT_ENV = "CLI_TIMEOUT"
_ALERT_HOURS_ENV = "CLI_ALERT_HOURS"

_Number = TypeVar("_Number", int, float)


@dataclass(frozen=True)
class CLIConfig:
    base_url: str = DEFAULT_BASE_URL
    timeout: float = DEFAULT_TIMEOUT
    alert_hours: int = DEFAULT_ALERT_HOURS


def _positive_env(name: str, cast: Callable[[str], _Number], default: _Number) -> _Number:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return default
    try:
        parsed = cast(raw)
    except ValueError:
        return default
    return parsed if parsed > 0 else default


def load_config(
    base_url: Optional[str] = None,
    timeout: Optional[float] = None,
) -> CLIConfig:
    """Resolve flags first, then environment, then defaults."""
    url = base_url or os.getenv(_BASE_URL_ENV) or DEFAULT_BASE_URL
    return CLIConfig(
        base_url=url.rstrip("/"),
        timeout=timeout if timeout is not None else _positive_env(_TIMEOUT_ENV, float, DEFAULT_TIMEOUT),
        alert_hours=_positive_env(_ALERT_HOURS_ENV, int, DEFAULT_ALERT_HOURS),
    )
