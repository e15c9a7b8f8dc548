"""Normalize upstream feed payloads into :class:`QuoteSnapshot` records.

Supported payload shapes:

* contract map: ``{"date", "timestamp", "prices": {label: {"price", "site_rate_change"}}}``
* flat spot: ``{"spot_price", "price_change", "change_percentage", "last_updated"}``
* stream envelope: ``{"success": true, "data": {"Value", "Rate of Change", "Timestamp"}}``
* company-update array: ``[{"stockName", "priceChange", "timestamp"}]``
* company-update map: ``{name: {"amount", "sign", "last_updated"} | null}``

Server-sent-event framing (``data: {...}``) is stripped before decoding. A
payload is either converted completely or rejected with :class:`ParseError`.
"""

from __future__ import annotations

import json
import re
from collections.abc import Mapping, Sequence
from datetime import UTC, datetime, tzinfo
from decimal import Decimal, InvalidOperation
from typing import Any

from pydantic import ValidationError

from metalpulse.core.exceptions import ParseError
from metalpulse.core.models.quotes import QuoteSnapshot

_ZERO = Decimal("0")

_CHANGE_PATTERN = re.compile(r"^([-+]?\d+\.?\d*)\s*(?:\(([-+]?\d+\.?\d*)%\)|\(\(([-+]?\d+\.?\d*)%\)\))$")

_MONTHS = {
    name: index
    for index, names in enumerate(
        (
            ("jan", "january"),
            ("feb", "february"),
            ("mar", "march"),
            ("apr", "april"),
            ("may",),
            ("jun", "june"),
            ("jul", "july"),
            ("aug", "august"),
            ("sep", "sept", "september"),
            ("oct", "october"),
            ("nov", "november"),
            ("dec", "december"),
        ),
        start=1,
    )
    for name in names
}
_LABEL_COMPACT = re.compile(r"^([a-z]+)[\s\-]?(\d{2}|\d{4})$")
_LABEL_ISO = re.compile(r"^(\d{4})-(\d{1,2})$")
_EVENT_FIELD = re.compile(r"^(?:data|event|id|retry):|^:")

MAX_CONTRACT_SLOTS = 3
# Largest magnitude that fits the DECIMAL(18, 4) price columns.
MAX_MAGNITUDE = Decimal("1e14")


def parse_change(text: Any) -> tuple[Decimal, Decimal]:
    """Extract ``(delta, delta_percent)`` from strings like ``"-0.4 (-0.17%)"``.

    The double-parenthesis form ``"-5.45 ((-0.23%))"`` is accepted as well.
    Anything else yields ``(0, 0)``; this function never raises.
    """

    if not isinstance(text, str):
        return _ZERO, _ZERO
    match = _CHANGE_PATTERN.match(text.strip())
    if not match:
        return _ZERO, _ZERO
    try:
        delta, percent = Decimal(match.group(1)), Decimal(match.group(2) or match.group(3))
    except InvalidOperation:
        return _ZERO, _ZERO
    if not (_storable(delta) and _storable(percent)):
        return _ZERO, _ZERO
    return delta, percent


def contract_sort_key(label: str) -> tuple[int, int] | None:
    """Return ``(year, month)`` for labels like ``JAN25``, ``January 2025`` or ``2025-03``."""

    text = label.strip().lower()
    iso = _LABEL_ISO.match(text)
    if iso:
        year, month = int(iso.group(1)), int(iso.group(2))
        return (year, month) if 1 <= month <= 12 else None
    compact = _LABEL_COMPACT.match(text)
    if compact and compact.group(1) in _MONTHS:
        year = int(compact.group(2))
        if year < 100:
            year += 2000
        return year, _MONTHS[compact.group(1)]
    return None


def order_contract_labels(labels: Sequence[str]) -> list[str]:
    """Order labels chronologically; unrecognised labels keep feed order after the dated ones."""

    dated: list[tuple[tuple[int, int], int, str]] = []
    undated: list[str] = []
    for position, label in enumerate(labels):
        key = contract_sort_key(label)
        if key is None:
            undated.append(label)
        else:
            dated.append((key, position, label))
    dated.sort()
    return [label for _, _, label in dated] + undated


def unwrap_event_stream(text: str) -> str:
    """Return the data of the first complete server-sent event, or ``text`` unchanged."""

    body = text.lstrip()
    if not _EVENT_FIELD.match(body):
        return text
    data_lines: list[str] = []
    for line in body.splitlines():
        if not line.strip():
            if data_lines:
                break
            continue
        if line.startswith("data:"):
            data_lines.append(line[5:].lstrip())
    if not data_lines:
        raise ParseError("event stream contained no data")
    return "\n".join(data_lines)


def parse_payload(
    raw: bytes | str | Mapping[str, Any] | Sequence[Any],
    *,
    source: str,
    family: str,
    received_at: datetime,
    local_zone: tzinfo = UTC,
) -> list[QuoteSnapshot]:
    """Convert one upstream payload into snapshots.

    Args:
        raw: Response body or already decoded JSON.
        source: Provenance tag stored on every snapshot.
        family: Instrument family the feed belongs to.
        received_at: Ingestion instant used when the payload carries no valid timestamp.
        local_zone: Zone applied to naive upstream timestamps.

    Raises:
        ParseError: The payload is not JSON, matches no known shape, has a
            structurally invalid entry, or yields no snapshots.
    """

    if received_at.tzinfo is None:
        raise ValueError("received_at must be timezone-aware")
    document = _decode(raw)
    context = _Context(source=source, family=family, received_at=received_at, local_zone=local_zone)

    if isinstance(document, Mapping):
        if isinstance(document.get("prices"), Mapping):
            snapshots = _parse_contract_map(document, context)
        elif "spot_price" in document:
            snapshots = _parse_flat_spot(document, context)
        elif "success" in document and "data" in document:
            snapshots = _parse_stream_envelope(document, context)
        elif document and all(value is None or _is_supplier_entry(value) for value in document.values()):
            snapshots = _parse_company_map(document, context)
        else:
            raise ParseError("unrecognised payload shape", {"keys": sorted(str(k) for k in document)[:10]})
    elif isinstance(document, list):
        snapshots = _parse_company_array(document, context)
    else:
        raise ParseError("unrecognised payload shape", {"type": type(document).__name__})

    if not snapshots:
        raise ParseError("payload contained no usable entries")
    return snapshots


class _Context:
    __slots__ = ("source", "family", "received_at", "local_zone")

    def __init__(self, *, source: str, family: str, received_at: datetime, local_zone: tzinfo) -> None:
        self.source = source
        self.family = family
        self.received_at = received_at
        self.local_zone = local_zone

    def timestamp(self, value: Any) -> datetime:
        parsed = _parse_timestamp(value, self.local_zone)
        return parsed if parsed is not None else self.received_at


def _decode(raw: bytes | str | Mapping[str, Any] | Sequence[Any]) -> Any:
    if isinstance(raw, bytes):
        try:
            raw = raw.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise ParseError("payload is not valid UTF-8") from exc
    if isinstance(raw, str):
        try:
            return json.loads(unwrap_event_stream(raw), parse_float=Decimal)
        except json.JSONDecodeError as exc:
            raise ParseError("payload is not valid JSON", {"position": exc.pos}) from exc
    if isinstance(raw, Mapping):
        return raw
    if isinstance(raw, Sequence):
        return list(raw)
    raise ParseError("unsupported payload type", {"type": type(raw).__name__})


def _parse_timestamp(value: Any, local_zone: tzinfo) -> datetime | None:
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str) and value.strip():
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return None
    else:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=local_zone)
    return parsed.astimezone(UTC)


def _storable(value: Decimal) -> bool:
    return value.is_finite() and abs(value) < MAX_MAGNITUDE


def _to_decimal(value: Any, field: str) -> Decimal | None:
    """Numeric field conversion: ``None`` stays ``None``, garbage is a structural error.

    NaN, infinities and magnitudes the store cannot hold count as garbage.
    """

    if value is None:
        return None
    if isinstance(value, bool):
        raise ParseError(f"field {field!r} is not numeric", {"value": value})
    if isinstance(value, (int, Decimal)):
        number = Decimal(value)
    elif isinstance(value, float):
        number = Decimal(str(value))
    elif isinstance(value, str):
        text = value.replace(",", "").strip()
        if not text:
            return None
        try:
            number = Decimal(text)
        except InvalidOperation as exc:
            raise ParseError(f"field {field!r} is not numeric", {"value": value}) from exc
    else:
        raise ParseError(f"field {field!r} is not numeric", {"value": repr(value)})
    if not _storable(number):
        raise ParseError(f"field {field!r} is out of range", {"value": str(value)})
    return number


def _snapshot(context: _Context, **fields: Any) -> QuoteSnapshot:
    try:
        return QuoteSnapshot(family=context.family, source=context.source, **fields)
    except ValidationError as exc:
        raise ParseError("entry failed validation", {"errors": exc.errors(include_url=False)}) from exc


def _change_fields(value: Any) -> tuple[Decimal | None, Decimal | None]:
    if value is None:
        return None, None
    return parse_change(value)


def _parse_contract_map(document: Mapping[str, Any], context: _Context) -> list[QuoteSnapshot]:
    prices: Mapping[str, Any] = document["prices"]
    observed_at = context.timestamp(document.get("timestamp"))
    ordered = order_contract_labels(list(prices))

    snapshots: list[QuoteSnapshot] = []
    for position, label in enumerate(ordered, start=1):
        entry = prices[label]
        if not isinstance(entry, Mapping):
            raise ParseError("contract entry is not an object", {"label": label})
        delta, delta_percent = _change_fields(entry.get("site_rate_change"))
        snapshots.append(
            _snapshot(
                context,
                contract_month=label,
                slot=position if position <= MAX_CONTRACT_SLOTS else None,
                observed_at=observed_at,
                price=_to_decimal(entry.get("price"), "price"),
                delta=delta,
                delta_percent=delta_percent,
            )
        )
    return snapshots


def _parse_flat_spot(document: Mapping[str, Any], context: _Context) -> list[QuoteSnapshot]:
    return [
        _snapshot(
            context,
            observed_at=context.timestamp(document.get("last_updated")),
            price=_to_decimal(document.get("spot_price"), "spot_price"),
            delta=_to_decimal(document.get("price_change"), "price_change"),
            delta_percent=_to_decimal(document.get("change_percentage"), "change_percentage"),
        )
    ]


def _parse_stream_envelope(document: Mapping[str, Any], context: _Context) -> list[QuoteSnapshot]:
    if document.get("success") is not True:
        raise ParseError("stream envelope reported failure", {"success": document.get("success")})
    data = document["data"]
    if not isinstance(data, Mapping) or "Value" not in data:
        raise ParseError("stream envelope has no value")
    delta, delta_percent = _change_fields(data.get("Rate of Change"))
    return [
        _snapshot(
            context,
            observed_at=context.timestamp(data.get("Timestamp")),
            price=_to_decimal(data.get("Value"), "Value"),
            delta=delta,
            delta_percent=delta_percent,
        )
    ]


def _parse_company_array(entries: list[Any], context: _Context) -> list[QuoteSnapshot]:
    snapshots: list[QuoteSnapshot] = []
    for index, entry in enumerate(entries):
        if not isinstance(entry, Mapping) or not isinstance(entry.get("stockName"), str):
            raise ParseError("company update entry is malformed", {"index": index})
        snapshots.append(
            _snapshot(
                context,
                contract_month=entry["stockName"].strip(),
                observed_at=context.timestamp(entry.get("timestamp")),
                price=_to_decimal(entry.get("priceChange"), "priceChange"),
            )
        )
    return snapshots


def _is_supplier_entry(value: Any) -> bool:
    return isinstance(value, Mapping) and "amount" in value


def _parse_company_map(document: Mapping[str, Any], context: _Context) -> list[QuoteSnapshot]:
    snapshots: list[QuoteSnapshot] = []
    for name, entry in document.items():
        if entry is None:
            continue
        amount = _to_decimal(entry.get("amount"), "amount")
        if amount is not None and entry.get("sign") == "-":
            amount = -abs(amount)
        snapshots.append(
            _snapshot(
                context,
                contract_month=str(name).strip(),
                observed_at=context.timestamp(entry.get("last_updated")),
                price=amount,
            )
        )
    return snapshots


__all__ = [
    "MAX_CONTRACT_SLOTS",
    "MAX_MAGNITUDE",
    "contract_sort_key",
    "order_contract_labels",
    "parse_change",
    "parse_payload",
    "unwrap_event_stream",
]
