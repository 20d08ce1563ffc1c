"""Process-scoped wiring of the auth components.

One ``AuthContext`` per application instance; tests build their own.
"""

import time
from dataclasses import dataclass
from typing import Callable

from adminauth.config import Settings, clear_settings_cache, get_settings
from adminauth.models.admin import AdminRepository, InMemoryAdminRepository
from adminauth.security.keys import KeyManager, KeySet
from adminauth.security.tokens import TokenService
from adminauth.services.auth_service import AdminAuthService
from adminauth.services.passwords import BcryptPasswordVerifier, PasswordVerifier


def _fresh_settings() -> Settings:
    clear_settings_cache()
    return get_settings()


@dataclass
class AuthContext:
    settings: Settings
    repository: AdminRepository
    key_manager: KeyManager
    token_service: TokenService
    auth_service: AdminAuthService
    settings_provider: Callable[[], Settings] = _fresh_settings

    def load_keys(self) -> KeySet:
        """Initial key load. Raises KeyLoadError, which is fatal at startup."""
        return self.key_manager.reload(self.settings)

    def reload_keys(self) -> KeySet:
        """Re-read configuration and swap in a new key set (all or nothing)."""
        return self.key_manager.reload(self.settings_provider())


def build_auth_context(
    settings: Settings,
    repository: AdminRepository | None = None,
    password_verifier: PasswordVerifier | None = None,
    clock: Callable[[], float] = time.time,
    settings_provider: Callable[[], Settings] | None = None,
) -> AuthContext:
    repository = repository if repository is not None else InMemoryAdminRepository()
    key_manager = KeyManager(settings)
    token_service = TokenService(
        key_manager,
        issuer=settings.JWT_ISSUER,
        clock_skew_seconds=settings.JWT_CLOCK_SKEW_SECONDS,
        clock=clock,
    )
    auth_service = AdminAuthService(
        repository=repository,
        password_verifier=password_verifier or BcryptPasswordVerifier(),
        token_service=token_service,
        settings=settings,
        clock=clock,
    )
    return AuthContext(
        settings=settings,
        repository=repository,
        key_manager=key_manager,
        token_service=token_service,
        auth_service=auth_service,
        settings_provider=settings_provider or _fresh_settings,
    )
