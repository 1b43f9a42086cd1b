"""Account registry: the ordered list of booking platform tenants we may query."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Iterable, Iterator, List, Mapping, Optional, Sequence

from booking_bridge.errors import UnknownAccountError

if TYPE_CHECKING:  # pragma: no cover
    from booking_bridge.config.settings import Settings

logger = logging.getLogger(__name__)

# Accepted spellings per field, first match wins.
_ENTRY_KEYS: dict[str, tuple[str, ...]] = {
    "account_id": ("id", "account_id", "accountId"),
    "name": ("name", "label"),
    "login_id": ("login_id", "loginId", "username"),
    "secret": ("secret", "password"),
    "remote_site_id": ("site_id", "remote_site_id", "siteId", "micrositeId", "microsite"),
}


@dataclass(frozen=True)
class AccountConfig:
    """Connection settings for one booking platform account."""

    account_id: str
    login_id: Optional[str] = None
    secret: Optional[str] = None
    remote_site_id: Optional[str] = None
    name: Optional[str] = None

    @property
    def label(self) -> str:
        return self.name or self.account_id

    def missing_fields(self) -> List[str]:
        missing: List[str] = []
        if not self.login_id:
            missing.append("login_id")
        if not self.secret:
            missing.append("secret")
        if not self.remote_site_id:
            missing.append("remote_site_id")
        return missing

    def is_ready(self) -> bool:
        return not self.missing_fields()

    def __repr__(self) -> str:
        return (
            f"AccountConfig(account_id={self.account_id!r}, login_id={self.login_id!r}, "
            f"remote_site_id={self.remote_site_id!r}, name={self.name!r})"
        )


@dataclass(frozen=True)
class SkippedAccount:
    account_id: str
    missing: tuple[str, ...]


def _pick(entry: Mapping[str, object], field_name: str) -> Optional[str]:
    for key in _ENTRY_KEYS[field_name]:
        value = entry.get(key)
        if value is None:
            continue
        text = str(value).strip()
        if text:
            return text
    return None


def account_from_entry(entry: Mapping[str, object], *, position: int) -> AccountConfig:
    account_id = _pick(entry, "account_id") or _pick(entry, "remote_site_id") or f"account-{position}"
    return AccountConfig(
        account_id=account_id,
        login_id=_pick(entry, "login_id"),
        secret=_pick(entry, "secret"),
        remote_site_id=_pick(entry, "remote_site_id"),
        name=_pick(entry, "name"),
    )


class AccountRegistry:
    """Ordered, validated set of ready accounts."""

    def __init__(
        self,
        accounts: Sequence[AccountConfig],
        *,
        skipped: Sequence[SkippedAccount] = (),
    ) -> None:
        ordered: dict[str, AccountConfig] = {}
        for account in accounts:
            if account.account_id in ordered:
                raise ValueError(f"Duplicate account id '{account.account_id}'")
            ordered[account.account_id] = account
        self._accounts = ordered
        self._skipped = tuple(skipped)

    @classmethod
    def from_entries(cls, entries: Iterable[Mapping[str, object]]) -> "AccountRegistry":
        ready: list[AccountConfig] = []
        skipped: list[SkippedAccount] = []
        for position, entry in enumerate(entries, start=1):
            account = account_from_entry(entry, position=position)
            missing = account.missing_fields()
            if missing:
                logger.warning(
                    "Skipping account %s; missing settings: %s",
                    account.account_id,
                    ", ".join(missing),
                )
                skipped.append(SkippedAccount(account.account_id, tuple(missing)))
                continue
            ready.append(account)
        if not ready:
            logger.warning("No complete account configuration found; all remote operations will be skipped")
        return cls(ready, skipped=skipped)

    @classmethod
    def from_settings(cls, settings: "Settings") -> "AccountRegistry":
        entries: list[Mapping[str, object]] = list(settings.accounts)
        if settings.accounts_file is not None:
            from booking_bridge.config.accounts_file import AccountsFile

            entries.extend(AccountsFile.load(settings.accounts_file).entries())
        return cls.from_entries(entries)

    @property
    def skipped(self) -> tuple[SkippedAccount, ...]:
        return self._skipped

    def get(self, account_id: str) -> AccountConfig:
        try:
            return self._accounts[account_id]
        except KeyError as exc:
            raise UnknownAccountError(account_id, tuple(self._accounts)) from exc

    def find(self, key: str) -> Optional[AccountConfig]:
        """Resolve an account by id or by remote site id."""
        if key in self._accounts:
            return self._accounts[key]
        lowered = key.lower()
        for account in self._accounts.values():
            if account.account_id.lower() == lowered or (account.remote_site_id or "").lower() == lowered:
                return account
        return None

    def ids(self) -> tuple[str, ...]:
        return tuple(self._accounts)

    def __iter__(self) -> Iterator[AccountConfig]:
        return iter(self._accounts.values())

    def __len__(self) -> int:
        return len(self._accounts)

    def __contains__(self, account_id: object) -> bool:
        return account_id in self._accounts
