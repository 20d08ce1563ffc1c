"""Administrator account record and the repository interface used by the auth flow."""

import itertools
import threading
from dataclasses import dataclass, replace
from typing import Optional, Protocol


@dataclass
class AdministratorAccount:
    id: int | None
    username: str
    password_hash: str | None
    enabled: bool = True
    two_factor_enabled: bool = False
    totp_secret: str | None = None  # Base32, written only once enrollment is confirmed

    @property
    def has_totp_secret(self) -> bool:
        return bool(self.totp_secret and self.totp_secret.strip())


class AdminRepository(Protocol):
    def find_enabled_by_username(self, username: str) -> Optional[AdministratorAccount]:
        ...

    def find_by_id(self, admin_id: int) -> Optional[AdministratorAccount]:
        ...

    def save(self, account: AdministratorAccount) -> AdministratorAccount:
        ...


class InMemoryAdminRepository:
    """Process-local account store.

    Hands out copies so callers cannot mutate stored records without ``save``.
    """

    def __init__(self, accounts: list[AdministratorAccount] | None = None):
        self._lock = threading.Lock()
        self._ids = itertools.count(1)
        self._by_id: dict[int, AdministratorAccount] = {}
        for account in accounts or []:
            self.save(account)

    def find_enabled_by_username(self, username: str) -> Optional[AdministratorAccount]:
        with self._lock:
            for account in self._by_id.values():
                if account.username == username and account.enabled:
                    return replace(account)
        return None

    def find_by_username(self, username: str) -> Optional[AdministratorAccount]:
        with self._lock:
            for account in self._by_id.values():
                if account.username == username:
                    return replace(account)
        return None

    def find_by_id(self, admin_id: int) -> Optional[AdministratorAccount]:
        with self._lock:
            account = self._by_id.get(admin_id)
            return replace(account) if account else None

    def save(self, account: AdministratorAccount) -> AdministratorAccount:
        with self._lock:
            if account.id is None:
                if any(a.username == account.username for a in self._by_id.values()):
                    raise ValueError(f"Username already exists: {account.username}")
                account = replace(account, id=next(self._ids))
            self._by_id[account.id] = replace(account)
            return replace(account)
