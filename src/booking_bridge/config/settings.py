"""Runtime configuration for the booking bridge.

Relies on pydantic-settings so that environment variables (prefixed with
``BOOKING_BRIDGE_``) can override defaults. Accounts can be supplied as a JSON
list through ``BOOKING_BRIDGE_ACCOUNTS`` or through a TOML accounts file.
"""
from __future__ import annotations

import json
import logging
from datetime import date
from pathlib import Path
from typing import TYPE_CHECKING, Annotated, Optional, Tuple

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

if TYPE_CHECKING:  # pragma: no cover
    from booking_bridge.services.record_fetcher import FetchOptions

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://online.travelcompositor.com"


def _default_fetch_years() -> Tuple[int, ...]:
    current = date.today().year
    return (current - 1, current, current + 1)


class Settings(BaseSettings):
    """Captures runtime configuration for the booking bridge."""

    base_url: str = Field(default=DEFAULT_BASE_URL, description="Booking platform root URL")
    http_timeout_s: float = Field(default=20.0, description="Per-request HTTP timeout in seconds")
    user_agent: str = Field(default="booking-bridge/0.1.0")
    log_level: str = Field(default="INFO")
    log_dir: Path = Field(default=Path("data/logs"))

    accounts: Tuple[dict[str, object], ...] = Field(
        default=(),
        description="Ordered account entries (id, name, login_id, secret, site_id)",
    )
    accounts_file: Optional[Path] = Field(
        default=None, description="Optional TOML file with [[accounts]] tables"
    )

    token_safety_margin_s: float = Field(
        default=60.0, description="Seconds before expiry at which a token is no longer used"
    )
    default_token_ttl_s: float = Field(
        default=7200.0, description="Token lifetime assumed when the platform omits one"
    )

    fetch_years: Annotated[Tuple[int, ...], NoDecode] = Field(
        default_factory=_default_fetch_years,
        description="Calendar years scanned during a bulk sync; comma-separated when provided via env",
    )
    fetch_custom_from: Optional[date] = Field(
        default=None, description="Start of an extra date window scanned after the calendar years"
    )
    fetch_custom_to: Optional[date] = Field(default=None, description="End of the extra date window")
    page_size: int = Field(default=50, description="Records requested per listing page")
    max_pages_per_window: int = Field(
        default=40, description="Hard cap on listing pages fetched for one date window"
    )

    warmup_timeout_s: float = Field(
        default=30.0, description="Upper bound for one full sync pass across all accounts"
    )
    warmup_delay_s: float = Field(
        default=1.0, description="Delay between start() and the initial warm-up"
    )
    refresh_interval_s: float = Field(
        default=900.0, description="Seconds between background cache refreshes"
    )

    content_language: str = Field(default="nl", description="Language requested for ideas and packages")

    model_config = SettingsConfigDict(
        env_prefix="BOOKING_BRIDGE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    @field_validator("log_dir", mode="before")
    def _expand_log_dir(cls, value: str | Path) -> Path:  # noqa: D401
        if isinstance(value, Path):
            return value
        return Path(value).expanduser()

    @field_validator("accounts_file", mode="before")
    def _expand_accounts_file(cls, value: str | Path | None) -> Optional[Path]:
        if value in (None, ""):
            return None
        return Path(value).expanduser()

    @field_validator("accounts", mode="before")
    def _parse_accounts(cls, value: object) -> Tuple[dict[str, object], ...]:
        if value in (None, "", ()):
            return ()
        if isinstance(value, str):
            try:
                value = json.loads(value)
            except json.JSONDecodeError as exc:  # noqa: TRY003
                raise ValueError("accounts must be valid JSON") from exc
        if isinstance(value, dict):
            value = [value]
        if not isinstance(value, (list, tuple)):
            raise TypeError("accounts must be a sequence of account entries")
        entries: list[dict[str, object]] = []
        for entry in value:
            if not isinstance(entry, dict):
                raise TypeError("Each account entry must be a mapping")
            entries.append(dict(entry))
        return tuple(entries)

    @field_validator("fetch_years", mode="before")
    def _parse_fetch_years(cls, value: object) -> Tuple[int, ...]:
        if value is None or value == "":
            return _default_fetch_years()
        if isinstance(value, int):
            return (value,)
        if isinstance(value, str):
            parts = [part.strip() for part in value.split(",")]
            return tuple(int(part) for part in parts if part)
        if isinstance(value, (list, tuple)):
            return tuple(int(item) for item in value)
        raise TypeError("fetch_years must be provided as a comma-separated string or list")

    @field_validator("fetch_custom_from", "fetch_custom_to", mode="before")
    def _parse_custom_dates(cls, value: str | date | None) -> Optional[date]:
        if value in (None, ""):
            return None
        if isinstance(value, date):
            return value
        return date.fromisoformat(value)

    @field_validator("page_size", "max_pages_per_window")
    def _validate_positive(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("page_size and max_pages_per_window must be positive")
        return value

    @model_validator(mode="after")
    def _check_custom_window(self) -> "Settings":
        if (self.fetch_custom_from is None) != (self.fetch_custom_to is None):
            raise ValueError("fetch_custom_from and fetch_custom_to must be provided together")
        if self.fetch_custom_from and self.fetch_custom_to and self.fetch_custom_from > self.fetch_custom_to:
            raise ValueError("fetch_custom_from must not be after fetch_custom_to")
        return self

    def ensure_directories(self) -> None:
        """Create directories that must exist at runtime."""
        self.log_dir.mkdir(parents=True, exist_ok=True)

    def fetch_options(self) -> "FetchOptions":
        from booking_bridge.services.record_fetcher import DateWindow, FetchOptions

        custom = None
        if self.fetch_custom_from and self.fetch_custom_to:
            custom = DateWindow(start=self.fetch_custom_from, end=self.fetch_custom_to, label="custom")
        return FetchOptions(
            date_windows=tuple(DateWindow.calendar_year(year) for year in self.fetch_years),
            page_size=self.page_size,
            max_pages_per_window=self.max_pages_per_window,
            custom_window=custom,
        )
