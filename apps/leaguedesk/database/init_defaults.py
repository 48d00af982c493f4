#!/usr/bin/env python3
"""
Initialize default database values.
This script is run on startup to promote the configured global administrators.
"""

import os
import asyncio
import logging
from leaguedesk.database import db
from leaguedesk.services import user_service

logger = logging.getLogger(__name__)


async def init_defaults():
    """Initialize default database values."""
    admin_ids = [u for u in os.getenv("SYSTEM_ADMIN_USER_IDS", "").split(",") if u.strip()]
    if not admin_ids:
        logger.info("No SYSTEM_ADMIN_USER_IDS configured, skipping admin setup")
        return

    async with db.AsyncSessionLocal() as session:
        promoted = await user_service.set_global_admins(session, admin_ids)
        await session.commit()

    if promoted:
        logger.info(f"✓ Promoted global admins: {', '.join(promoted)}")
    else:
        logger.info("✓ Global admins already configured")


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    asyncio.run(init_defaults())
