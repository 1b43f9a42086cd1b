"""Request and result types for single-record imports."""
from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Union

FAILURE_NOT_FOUND = "not_found"
FAILURE_UNAVAILABLE = "unavailable"
FAILURE_FORBIDDEN = "forbidden"
FAILURE_INVALID = "invalid"

OUTCOME_FOUND = "found"
OUTCOME_ABSENT = "absent"
OUTCOME_UNAVAILABLE = "unavailable"


class RecordType(str, enum.Enum):
    BOOKING = "booking"
    IDEA = "idea"
    PACKAGE = "package"


@dataclass(slots=True)
class ImportRequest:
    """One record to import; ``account_hint`` narrows the search to a single account."""

    type: Union[RecordType, str]
    id: str
    account_hint: Optional[str] = None
    user_email: Optional[str] = None
    user_role: Optional[str] = None

    def to_dict(self) -> dict[str, object]:
        record_type = self.type.value if isinstance(self.type, RecordType) else self.type
        return {
            "type": record_type,
            "id": self.id,
            "account_hint": self.account_hint,
            "user_email": self.user_email,
            "user_role": self.user_role,
        }


@dataclass(slots=True)
class ImportAttempt:
    account_id: str
    outcome: str
    detail: str = ""

    def to_dict(self) -> dict[str, object]:
        return {"account_id": self.account_id, "outcome": self.outcome, "detail": self.detail}


@dataclass(slots=True)
class ImportFailure:
    kind: str
    message: str

    def to_dict(self) -> dict[str, object]:
        return {"kind": self.kind, "message": self.message}


@dataclass(slots=True)
class ImportResult:
    request: ImportRequest
    success: bool
    record: Optional[Dict[str, Any]] = None
    account_id: Optional[str] = None
    method: Optional[str] = None
    failure: Optional[ImportFailure] = None
    attempts: List[ImportAttempt] = field(default_factory=list)

    @property
    def attempted_accounts(self) -> List[str]:
        return [attempt.account_id for attempt in self.attempts]

    def to_dict(self) -> dict[str, object]:
        return {
            "request": self.request.to_dict(),
            "success": self.success,
            "record": self.record,
            "account_id": self.account_id,
            "method": self.method,
            "failure": self.failure.to_dict() if self.failure else None,
            "attempts": [attempt.to_dict() for attempt in self.attempts],
        }


@dataclass(slots=True)
class UserRecords:
    """Every booking or idea one account holds for a client e-mail.

    ``outcome`` tells an empty answer (``absent``) apart from an account that
    could not be asked (``unavailable``).
    """

    account_id: str
    email: str
    type: RecordType
    outcome: str
    records: List[Dict[str, Any]] = field(default_factory=list)
    endpoint: Optional[str] = None
    detail: str = ""

    def to_dict(self) -> dict[str, object]:
        return {
            "account_id": self.account_id,
            "email": self.email,
            "type": self.type.value,
            "outcome": self.outcome,
            "count": len(self.records),
            "records": list(self.records),
            "endpoint": self.endpoint,
            "detail": self.detail,
        }
