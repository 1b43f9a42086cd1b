"""Direct, per-id imports of bookings, travel ideas and holiday packages."""

from .models import (
    ImportAttempt,
    ImportFailure,
    ImportRequest,
    ImportResult,
    RecordType,
    UserRecords,
)
from .universal import UniversalImporter, check_permission

__all__ = [
    "ImportAttempt",
    "ImportFailure",
    "ImportRequest",
    "ImportResult",
    "RecordType",
    "UniversalImporter",
    "UserRecords",
    "check_permission",
]
