"""
Bootstrap administrator account.

Creates the account named by ADMIN_USERNAME with ADMIN_PASSWORD_HASH if it
does not exist yet. Idempotent: safe to run on every startup.

Generate a hash with:
    python -m adminauth.seed 'the-password'
"""

import argparse
import logging

from adminauth.config import Settings
from adminauth.models.admin import AdministratorAccount, InMemoryAdminRepository
from adminauth.services.passwords import hash_password

logger = logging.getLogger(__name__)


def seed_admin(repository: InMemoryAdminRepository, settings: Settings) -> AdministratorAccount | None:
    username = settings.ADMIN_USERNAME.strip()
    if not username or not settings.ADMIN_PASSWORD_HASH:
        logger.info("seed: ADMIN_USERNAME/ADMIN_PASSWORD_HASH not set, no bootstrap admin created")
        return None

    existing = repository.find_by_username(username)
    if existing is not None:
        logger.info("seed: admin %s already exists", username)
        return existing

    account = repository.save(
        AdministratorAccount(
            id=None,
            username=username,
            password_hash=settings.ADMIN_PASSWORD_HASH,
            enabled=True,
            two_factor_enabled=False,
        )
    )
    logger.info("seed: created admin %s (TOTP enrollment pending)", username)
    return account


def main() -> None:
    parser = argparse.ArgumentParser(description="Print a bcrypt hash for ADMIN_PASSWORD_HASH")
    parser.add_argument("password")
    args = parser.parse_args()
    print(hash_password(args.password))


if __name__ == "__main__":
    main()
