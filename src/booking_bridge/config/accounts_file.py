"""TOML accounts file loader.

An accounts file lists one ``[[accounts]]`` table per booking platform tenant::

    [[accounts]]
    id = "primary"
    name = "Primary Microsite"
    login_id = "agent@example.com"
    secret = "..."
    site_id = "rondreis-planner"

Order in the file is the order in which accounts are tried.
"""
from __future__ import annotations

import tomllib
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, Field, field_validator


class AccountSection(BaseModel):
    """One account entry decoded from the accounts file."""

    id: Optional[str] = None
    name: Optional[str] = None
    login_id: Optional[str] = Field(default=None, description="Platform login (username)")
    secret: Optional[str] = Field(default=None, description="Platform password")
    site_id: Optional[str] = Field(default=None, description="Remote microsite identifier")

    @field_validator("id", "name", "login_id", "secret", "site_id", mode="before")
    @classmethod
    def _blank_to_none(cls, value: object) -> object:
        if isinstance(value, str) and not value.strip():
            return None
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return str(value)
        return value


class AccountsFile(BaseModel):
    accounts: list[AccountSection] = Field(default_factory=list)

    @classmethod
    def load(cls, path: Path) -> "AccountsFile":
        if not path.exists():
            raise FileNotFoundError(f"Accounts file not found at {path}")
        with path.open("rb") as handle:
            data = tomllib.load(handle)
        return cls.model_validate(data)

    def entries(self) -> list[dict[str, object]]:
        return [section.model_dump() for section in self.accounts]
