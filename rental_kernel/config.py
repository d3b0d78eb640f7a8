"""
Engine configuration (``rental_kernel.config``).

Responsibility
--------------
Builds the single immutable ``EngineConfig`` the engine runs with.  Values
come from three layers, later layers winning:

1. Dataclass defaults (safe for local runs and tests).
2. An optional YAML file (``load_config(path)``).
3. ``RENTAL_*`` environment variables.

Operator-tunable business values (``tax_rate``, ``late_fee_per_day``) are
read from the SettingsStore at call time; the values here are their
fallbacks.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Unknown keys in the YAML file  -> ``ValueError`` (no silent typos).
* Non-numeric money/rate values  -> ``ValueError``.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, fields, replace
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any

import yaml

DEFAULT_DATABASE_URL = "sqlite:///rental_engine.db"

_ENV_PREFIX = "RENTAL_"


@dataclass(frozen=True)
class EngineConfig:
    """
    Immutable runtime configuration.

    Attributes:
        database_url: SQLAlchemy URL (PostgreSQL in production, SQLite locally).
        tax_rate: Flat tax rate fallback when the SettingsStore has none.
        late_fee_per_day: Late fee fallback when the SettingsStore has none.
        reminder_lookahead_hours: How far ahead the reminder scan looks.
        reminder_interval_seconds: Reminder scan cadence (hourly).
        overdue_interval_seconds: Overdue scan cadence (every 6 hours).
        scheduler_enabled: Whether the scan scheduler may start.
        max_retry_attempts: Attempts for operations that hit a concurrency conflict.
        retry_backoff_seconds: Base backoff between attempts (jittered, linear).
        payment_gateway_secret: Shared secret for confirmation signatures.
        log_level: Level name for the rental_kernel loggers.
    """

    database_url: str = DEFAULT_DATABASE_URL
    tax_rate: Decimal = Decimal("0.18")
    late_fee_per_day: Decimal = Decimal("100")
    reminder_lookahead_hours: int = 24
    reminder_interval_seconds: int = 3600
    overdue_interval_seconds: int = 6 * 3600
    scheduler_enabled: bool = True
    max_retry_attempts: int = 10
    retry_backoff_seconds: float = 0.02
    payment_gateway_secret: str = ""
    log_level: str = "INFO"

    def __post_init__(self) -> None:
        for name in ("tax_rate", "late_fee_per_day"):
            value = getattr(self, name)
            if isinstance(value, float):
                raise TypeError(f"{name} must not be a float")
            if not isinstance(value, Decimal):
                object.__setattr__(self, name, _to_decimal(name, value))
        if self.max_retry_attempts < 1:
            raise ValueError("max_retry_attempts must be at least 1")
        if self.reminder_lookahead_hours < 0:
            raise ValueError("reminder_lookahead_hours must not be negative")


def _to_decimal(name: str, value: Any) -> Decimal:
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError) as exc:
        raise ValueError(f"{name} must be numeric, got {value!r}") from exc


def _coerce(name: str, raw: Any) -> Any:
    """Coerce a raw YAML/env value to the declared field type."""
    if name in ("tax_rate", "late_fee_per_day"):
        return _to_decimal(name, raw)
    if name == "scheduler_enabled":
        if isinstance(raw, bool):
            return raw
        return str(raw).strip().lower() not in ("false", "0", "no", "off")
    if name in (
        "reminder_lookahead_hours",
        "reminder_interval_seconds",
        "overdue_interval_seconds",
        "max_retry_attempts",
    ):
        return int(raw)
    if name == "retry_backoff_seconds":
        return float(raw)
    return str(raw)


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
        ValueError: if the top level is not a mapping.
    """
    with open(path, encoding="utf-8") as f:
        data = yaml.safe_load(f)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"Configuration file {path} must contain a mapping")
    return data


def load_config(
    path: str | Path | None = None,
    environ: dict[str, str] | None = None,
) -> EngineConfig:
    """
    Build the EngineConfig from defaults, an optional YAML file and the environment.

    Args:
        path: Optional YAML file with top-level keys matching EngineConfig fields.
        environ: Environment mapping (defaults to ``os.environ``).

    Returns:
        A frozen EngineConfig.
    """
    env = os.environ if environ is None else environ
    known = {f.name for f in fields(EngineConfig)}
    overrides: dict[str, Any] = {}

    if path is not None:
        for key, raw in load_yaml_file(Path(path)).items():
            if key not in known:
                raise ValueError(f"Unknown configuration key: {key}")
            overrides[key] = _coerce(key, raw)

    for name in known:
        env_key = f"{_ENV_PREFIX}{name.upper()}"
        if env_key in env:
            overrides[name] = _coerce(name, env[env_key])

    return replace(EngineConfig(), **overrides)
