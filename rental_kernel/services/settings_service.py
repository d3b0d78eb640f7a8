"""
SettingsService -- typed access to operator-tunable settings.

Responsibility:
    Reads and writes rows of the ``settings`` table, converting the stored
    string according to its ``value_type``.  Numbers come back as Decimal so
    rates and fees never pass through a float.

Architecture position:
    Kernel > Services.  Read by PricingService (``tax_rate``) and
    OrderService / the scanner (``late_fee_per_day``).

Failure modes:
    - A stored value that does not convert is logged (``setting_invalid``)
      and the caller's default is returned; a bad setting never blocks a
      checkout or a return.
"""

from __future__ import annotations

import json
from decimal import Decimal, InvalidOperation
from typing import Any
from uuid import UUID

from sqlalchemy import select

from rental_kernel.logging_config import get_logger
from rental_kernel.models.setting import Setting
from rental_kernel.services.base import SYSTEM_ACTOR_ID, BaseService

logger = get_logger("services.settings")

TAX_RATE = "tax_rate"
LATE_FEE_PER_DAY = "late_fee_per_day"

VALUE_TYPES = ("number", "boolean", "json", "string")

DEFAULT_SETTINGS: tuple[dict[str, str], ...] = (
    {"key": TAX_RATE, "value": "0.18", "value_type": "number", "category": "system"},
    {"key": LATE_FEE_PER_DAY, "value": "100", "value_type": "number", "category": "rental"},
    {"key": "company_name", "value": "", "value_type": "string", "category": "company"},
    {"key": "company_address", "value": "", "value_type": "string", "category": "company"},
    {"key": "company_gst", "value": "", "value_type": "string", "category": "company"},
)


def _convert(raw: str, value_type: str) -> Any:
    if value_type == "number":
        return Decimal(raw.strip())
    if value_type == "boolean":
        return raw.strip().lower() == "true"
    if value_type == "json":
        return json.loads(raw)
    return raw


def _serialize(value: Any, value_type: str) -> str:
    if isinstance(value, float):
        raise TypeError("Settings do not accept float values; use Decimal or str")
    if value_type == "boolean":
        return "true" if value else "false"
    if value_type == "json":
        return json.dumps(value, sort_keys=True)
    return str(value)


class SettingsService(BaseService):
    """
    Key/value settings store.

    Guarantees:
        - ``get`` never raises for a missing or malformed value; it returns
          the default.
        - ``initialize_defaults`` never overwrites an existing value.
    """

    def _load(self, key: str) -> Setting | None:
        return self.session.execute(
            select(Setting).where(Setting.key == key)
        ).scalar_one_or_none()

    def get(self, key: str, default: Any = None) -> Any:
        setting = self._load(key)
        if setting is None:
            return default
        try:
            return _convert(setting.value, setting.value_type)
        except (InvalidOperation, ValueError) as exc:
            logger.warning(
                "setting_invalid",
                extra={
                    "key": key,
                    "value_type": setting.value_type,
                    "error": str(exc),
                },
            )
            return default

    def get_decimal(self, key: str, default: Decimal) -> Decimal:
        value = self.get(key, default)
        if not isinstance(value, Decimal):
            logger.warning(
                "setting_invalid",
                extra={"key": key, "value_type": type(value).__name__},
            )
            return default
        return value

    def get_by_category(self, category: str) -> dict[str, Any]:
        rows = self.session.execute(
            select(Setting).where(Setting.category == category).order_by(Setting.key)
        ).scalars()
        return {row.key: self.get(row.key) for row in rows}

    def set(
        self,
        key: str,
        value: Any,
        value_type: str = "string",
        category: str = "system",
        actor_id: UUID = SYSTEM_ACTOR_ID,
    ) -> None:
        """Upsert a setting; an existing row keeps its category."""
        if value_type not in VALUE_TYPES:
            raise ValueError(f"Unknown setting value_type: {value_type}")
        serialized = _serialize(value, value_type)
        setting = self._load(key)
        if setting is None:
            setting = Setting(
                key=key,
                value=serialized,
                value_type=value_type,
                category=category,
                created_by_id=actor_id,
            )
            self.session.add(setting)
        else:
            setting.value = serialized
            setting.value_type = value_type
            setting.updated_by_id = actor_id
        self.session.flush()
        logger.info("setting_updated", extra={"key": key, "value_type": value_type})

    def initialize_defaults(self) -> int:
        """Insert missing default settings.  Returns the number inserted."""
        inserted = 0
        for default in DEFAULT_SETTINGS:
            if self._load(default["key"]) is None:
                self.session.add(Setting(created_by_id=SYSTEM_ACTOR_ID, **default))
                inserted += 1
        self.session.flush()
        if inserted:
            logger.info("settings_defaults_initialized", extra={"inserted": inserted})
        return inserted
