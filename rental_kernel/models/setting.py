"""
Module: rental_kernel.models.setting
Responsibility: ORM persistence for operator-tunable settings
    (``tax_rate``, ``late_fee_per_day``, ...).  Values are stored as strings
    and converted by SettingsService according to value_type.
Architecture position: Kernel > Models.
"""

from sqlalchemy import String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from rental_kernel.db.base import TrackedBase


class Setting(TrackedBase):
    __tablename__ = "settings"

    __table_args__ = (UniqueConstraint("key", name="uq_setting_key"),)

    key: Mapped[str] = mapped_column(String(100), nullable=False)

    value: Mapped[str] = mapped_column(String(4000), nullable=False)

    # number | boolean | json | string
    value_type: Mapped[str] = mapped_column(String(10), default="string", nullable=False)

    category: Mapped[str] = mapped_column(String(50), default="general", nullable=False)

    description: Mapped[str | None] = mapped_column(String(500), nullable=True)

    def __repr__(self) -> str:
        return f"<Setting {self.key}={self.value!r}>"
