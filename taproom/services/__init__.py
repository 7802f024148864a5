# Services module
from taproom.services.notification_service import NotificationService, NotificationType
from taproom.services.cache_service import CacheService, get_cache
from taproom.services.inventory_api_client import InventoryApiClient
from taproom.services.keg_level_service import KegLevelService
from taproom.services.offline_sync_service import OfflineSyncService
from taproom.services.session_controller import SessionController

__all__ = [
    "NotificationService",
    "NotificationType",
    "CacheService",
    "get_cache",
    "InventoryApiClient",
    "KegLevelService",
    "OfflineSyncService",
    # Counting
    "SessionController",
]
