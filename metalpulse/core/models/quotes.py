"""Quote snapshot and contract label models."""

from __future__ import annotations

from datetime import UTC, date, datetime, tzinfo
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, computed_field, field_serializer, field_validator

_ZERO = Decimal("0")


def _require_aware(value: datetime) -> datetime:
    if value.tzinfo is None or value.utcoffset() is None:
        raise ValueError("timestamp must be timezone-aware")
    return value.astimezone(UTC)


class QuoteSnapshot(BaseModel):
    """A single price observation for one instrument.

    ``price``, ``delta`` and ``delta_percent`` stay ``None`` when the upstream
    value is unknown; :meth:`normalized` is the only place that turns missing
    deltas into zero.
    """

    model_config = ConfigDict(frozen=True)

    family: str
    contract_month: str | None = None
    slot: int | None = None
    observed_at: datetime
    price: Decimal | None = None
    delta: Decimal | None = None
    delta_percent: Decimal | None = None
    source: str = "scheduled-poll"

    @field_validator("observed_at")
    @classmethod
    def check_observed_at(cls, value: datetime) -> datetime:
        return _require_aware(value)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def instrument_key(self) -> str:
        if self.contract_month:
            return f"{self.family}:{self.contract_month}"
        return self.family

    def normalized(self) -> QuoteSnapshot:
        """Return a copy with missing delta fields replaced by zero."""

        return self.model_copy(
            update={
                "delta": self.delta if self.delta is not None else _ZERO,
                "delta_percent": self.delta_percent if self.delta_percent is not None else _ZERO,
            }
        )

    def observed_date(self, zone: tzinfo) -> date:
        """Calendar date of the observation in ``zone``."""

        return self.observed_at.astimezone(zone).date()

    @field_serializer("price", "delta", "delta_percent", when_used="json")
    def serialize_decimal(self, value: Decimal | None) -> str | None:
        """Serialize Decimal to string."""
        if value is None:
            return None
        return str(value)


class ContractLabel(BaseModel):
    """Latest label bound to a contract slot (1 = current month) of a family."""

    model_config = ConfigDict(frozen=True)

    family: str
    slot: int
    label: str
    observed_at: datetime

    @field_validator("observed_at")
    @classmethod
    def check_observed_at(cls, value: datetime) -> datetime:
        return _require_aware(value)


__all__ = ["ContractLabel", "QuoteSnapshot"]
