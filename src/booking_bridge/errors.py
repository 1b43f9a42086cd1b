"""Exception types shared across the booking bridge."""
from __future__ import annotations

from typing import Optional


class BookingBridgeError(RuntimeError):
    """Base class for errors raised by the booking bridge."""


class AuthenticationError(BookingBridgeError):
    """Raised when an account cannot obtain a session token."""

    def __init__(self, account_id: str, message: str, *, status: Optional[int] = None) -> None:
        super().__init__(f"Authentication failed for account {account_id}: {message}")
        self.account_id = account_id
        self.status = status


class PlatformResponseError(BookingBridgeError):
    """Raised when the booking platform answers with a non-success status or unreadable body."""

    def __init__(self, url: str, status: int, body: str) -> None:
        super().__init__(f"Booking platform request failed ({status}) for {url}")
        self.url = url
        self.status = status
        self.body = body


class TransientFetchError(BookingBridgeError):
    """Raised when a single listing page cannot be retrieved."""

    def __init__(self, account_id: str, window: str, offset: int, cause: Exception) -> None:
        super().__init__(
            f"Page at offset {offset} of window {window} failed for account {account_id}: {cause}"
        )
        self.account_id = account_id
        self.window = window
        self.offset = offset
        self.cause = cause


class UnknownAccountError(BookingBridgeError):
    """Raised when an account id is not part of the registry."""

    def __init__(self, account_id: str, known: tuple[str, ...] = ()) -> None:
        known_text = ", ".join(known) if known else "none"
        super().__init__(f"Account '{account_id}' is not configured. Known accounts: {known_text}")
        self.account_id = account_id

