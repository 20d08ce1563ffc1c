"""
Periodic sweep of expired login challenges.

Expired challenges are already rejected lazily when they are used, so a
skipped or late cycle only delays freeing memory.
"""

import asyncio
import logging

from adminauth.services.auth_service import AdminAuthService

logger = logging.getLogger(__name__)


def run_challenge_sweep(auth_service: AdminAuthService) -> int:
    removed = auth_service.sweep_expired()
    if removed > 0:
        logger.info("[TOTP] cleaned %d expired challenges", removed)
    else:
        logger.debug("[TOTP] no expired challenges to clean")
    return removed


async def challenge_cleanup_loop(auth_service: AdminAuthService, interval_seconds: float = 60) -> None:
    """Background loop started from the app lifespan; runs until cancelled."""
    logger.info("challenge_cleanup_loop: started (every %ss)", interval_seconds)

    while True:
        await asyncio.sleep(interval_seconds)
        try:
            run_challenge_sweep(auth_service)
        except Exception as e:
            logger.error("challenge_cleanup_loop: cleanup failed: %s", e, exc_info=True)
