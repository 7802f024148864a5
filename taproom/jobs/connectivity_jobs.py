"""
Connectivity Jobs

Periodic check of the inventory backend. The platform's own online/offline
events arrive through the device API; the check catches the cases they miss.
"""

import logging

logger = logging.getLogger(__name__)


async def check_connectivity(sync_service) -> bool:
    """Ping the backend and record the result on the sync service."""
    online = await sync_service.api.ping()
    if online != sync_service.is_online:
        logger.info(f"Connectivity check: backend {'reachable' if online else 'unreachable'}")
    await sync_service.set_connectivity(online)
    return online
