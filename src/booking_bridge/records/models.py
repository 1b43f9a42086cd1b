"""Dataclasses for canonical booking, travel idea and holiday package records."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

DEFAULT_CURRENCY = "EUR"


@dataclass(slots=True)
class Money:
    amount: float = 0.0
    currency: str = DEFAULT_CURRENCY

    def to_dict(self) -> dict[str, object]:
        return {"amount": self.amount, "currency": self.currency}


@dataclass(slots=True)
class Duration:
    nights: Optional[int] = None
    days: Optional[int] = None

    def to_dict(self) -> dict[str, object]:
        return {"nights": self.nights, "days": self.days}


@dataclass(slots=True)
class ClientInfo:
    """Traveller contact details attached to a booking."""

    name: str = "Unknown Client"
    email: str = ""
    phone: str = ""

    def to_dict(self) -> dict[str, object]:
        return {"name": self.name, "email": self.email, "phone": self.phone}


@dataclass(slots=True)
class CanonicalBooking:
    """Platform booking flattened into the shape downstream consumers expect."""

    id: str
    booking_reference: str
    title: str
    client: ClientInfo
    destination: str
    start_date: Optional[str]
    end_date: Optional[str]
    status: str
    total_price: Money
    accommodations: List[Any] = field(default_factory=list)
    activities: List[Any] = field(default_factory=list)
    transports: List[Any] = field(default_factory=list)
    vouchers: List[Any] = field(default_factory=list)
    imported_at: str = ""
    original_data: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, object]:
        return {
            "id": self.id,
            "booking_reference": self.booking_reference,
            "title": self.title,
            "client": self.client.to_dict(),
            "destination": self.destination,
            "start_date": self.start_date,
            "end_date": self.end_date,
            "status": self.status,
            "total_price": self.total_price.to_dict(),
            "accommodations": list(self.accommodations),
            "activities": list(self.activities),
            "transports": list(self.transports),
            "vouchers": list(self.vouchers),
            "imported_at": self.imported_at,
            "original_data": self.original_data,
        }


@dataclass(slots=True)
class CanonicalIdea:
    id: str
    title: str
    description: str
    image_url: str
    creation_date: str
    departure_date: str
    themes: List[Any]
    price_per_person: Money
    total_price: Money
    destinations: List[Any] = field(default_factory=list)
    customer: Dict[str, Any] = field(default_factory=dict)
    counters: Dict[str, Any] = field(default_factory=dict)
    imported_at: str = ""
    original_data: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, object]:
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "image_url": self.image_url,
            "creation_date": self.creation_date,
            "departure_date": self.departure_date,
            "themes": list(self.themes),
            "price_per_person": self.price_per_person.to_dict(),
            "total_price": self.total_price.to_dict(),
            "destinations": list(self.destinations),
            "customer": dict(self.customer),
            "counters": dict(self.counters),
            "imported_at": self.imported_at,
            "original_data": self.original_data,
        }


@dataclass(slots=True)
class CanonicalPackage:
    id: str
    title: str
    description: str
    price: Money
    start_date: Optional[str]
    end_date: Optional[str]
    theme: Optional[str]
    duration: Duration
    destinations: List[Any] = field(default_factory=list)
    images: List[Any] = field(default_factory=list)
    imported_at: str = ""
    original_data: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, object]:
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "price": self.price.to_dict(),
            "start_date": self.start_date,
            "end_date": self.end_date,
            "theme": self.theme,
            "duration": self.duration.to_dict(),
            "destinations": list(self.destinations),
            "images": list(self.images),
            "imported_at": self.imported_at,
            "original_data": self.original_data,
        }
