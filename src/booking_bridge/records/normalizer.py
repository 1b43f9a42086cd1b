"""Utilities to transform raw platform payloads into canonical records."""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, Mapping, Optional, Sequence

from .models import (
    DEFAULT_CURRENCY,
    CanonicalBooking,
    CanonicalIdea,
    CanonicalPackage,
    ClientInfo,
    Duration,
    Money,
)


def _lookup(raw: Mapping[str, Any], path: str) -> Any:
    current: Any = raw
    for part in path.split("."):
        if not isinstance(current, Mapping):
            return None
        current = current.get(part)
    return current


def _present(value: Any) -> bool:
    return value is not None and value != ""


def first_value(raw: Mapping[str, Any], paths: Sequence[str], default: Any = None) -> Any:
    """Return the first present value among dotted ``paths``, else ``default``."""
    for path in paths:
        value = _lookup(raw, path)
        if _present(value):
            return value
    return default


def _text(value: Any) -> Optional[str]:
    return str(value) if _present(value) else None


def _as_list(value: Any) -> list[Any]:
    if isinstance(value, list):
        return list(value)
    return []


def _as_dict(value: Any) -> Dict[str, Any]:
    if isinstance(value, Mapping):
        return dict(value)
    return {}


def _as_number(value: Any) -> float:
    if isinstance(value, bool):
        return 0.0
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0


def _as_int(value: Any) -> Optional[int]:
    if not _present(value) or isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _money(value: Any, currency: Optional[str] = None) -> Money:
    """Accept either ``{"amount", "currency"}`` or a bare number."""
    if isinstance(value, Mapping):
        return Money(
            amount=_as_number(value.get("amount")),
            currency=str(value.get("currency") or currency or DEFAULT_CURRENCY),
        )
    return Money(amount=_as_number(value), currency=currency or DEFAULT_CURRENCY)


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def normalize_booking(raw: Dict[str, Any], requested_id: str) -> CanonicalBooking:
    booking_id = str(first_value(raw, ("id",), requested_id))
    currency = _text(raw.get("currency"))
    total = first_value(raw, ("totalPrice.amount", "totalPrice"), 0)
    return CanonicalBooking(
        id=booking_id,
        booking_reference=str(first_value(raw, ("bookingReference", "id"), requested_id)),
        title=str(first_value(raw, ("title", "name"), f"Booking {requested_id}")),
        client=ClientInfo(
            name=str(first_value(raw, ("client.name", "clientName"), "Unknown Client")),
            email=str(first_value(raw, ("client.email", "clientEmail"), "")),
            phone=str(first_value(raw, ("client.phone", "clientPhone"), "")),
        ),
        destination=str(first_value(raw, ("destination",), "Unknown Destination")),
        start_date=_text(first_value(raw, ("startDate", "departureDate"))),
        end_date=_text(first_value(raw, ("endDate", "returnDate"))),
        status=str(first_value(raw, ("status",), "Confirmed")),
        total_price=_money(total, currency),
        accommodations=_as_list(first_value(raw, ("accommodations", "hotels"), [])),
        activities=_as_list(first_value(raw, ("activities", "tickets"), [])),
        transports=_as_list(first_value(raw, ("transports",), [])),
        vouchers=_as_list(first_value(raw, ("vouchers", "transfers"), [])),
        imported_at=_now(),
        original_data=raw,
    )


def normalize_idea(raw: Dict[str, Any], requested_id: str) -> CanonicalIdea:
    return CanonicalIdea(
        id=str(first_value(raw, ("id",), requested_id)),
        title=str(first_value(raw, ("title", "largeTitle"), f"Travel Idea {requested_id}")),
        description=str(first_value(raw, ("description",), "")),
        image_url=str(first_value(raw, ("imageUrl",), "")),
        creation_date=str(first_value(raw, ("creationDate",), "")),
        departure_date=str(first_value(raw, ("departureDate",), "")),
        themes=_as_list(raw.get("themes")),
        price_per_person=_money(raw.get("pricePerPerson")),
        total_price=_money(raw.get("totalPrice")),
        destinations=_as_list(raw.get("destinations")),
        customer=_as_dict(raw.get("customer")),
        counters=_as_dict(raw.get("counters")),
        imported_at=_now(),
        original_data=raw,
    )


def normalize_package(raw: Dict[str, Any], requested_id: str) -> CanonicalPackage:
    return CanonicalPackage(
        id=str(first_value(raw, ("id",), requested_id)),
        title=str(first_value(raw, ("title", "name", "packageName"), f"Holiday Package {requested_id}")),
        description=str(first_value(raw, ("description", "shortDescription"), "")),
        price=Money(
            amount=_as_number(first_value(raw, ("price.amount", "priceFrom.amount"), 0)),
            currency=str(first_value(raw, ("price.currency", "currency"), DEFAULT_CURRENCY)),
        ),
        start_date=_text(first_value(raw, ("startDate", "validFrom"))),
        end_date=_text(first_value(raw, ("endDate", "validTo"))),
        theme=_text(first_value(raw, ("theme", "category", "type"))),
        duration=Duration(
            nights=_as_int(first_value(raw, ("nights", "duration.nights"))),
            days=_as_int(first_value(raw, ("days", "duration.days"))),
        ),
        destinations=_as_list(first_value(raw, ("destinations", "locations"), [])),
        images=_as_list(first_value(raw, ("images", "photos"), [])),
        imported_at=_now(),
        original_data=raw,
    )
