"""Canonical record models and normalization helpers."""

from .models import (
    CanonicalBooking,
    CanonicalIdea,
    CanonicalPackage,
    ClientInfo,
    Duration,
    Money,
)
from .normalizer import (
    first_value,
    normalize_booking,
    normalize_idea,
    normalize_package,
)

__all__ = [
    "CanonicalBooking",
    "CanonicalIdea",
    "CanonicalPackage",
    "ClientInfo",
    "Duration",
    "Money",
    "first_value",
    "normalize_booking",
    "normalize_idea",
    "normalize_package",
]
