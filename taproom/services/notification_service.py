"""
Operator Notification Service

Transient notifications ("toasts") shown to the operator on the counting
device. Every user-initiated failure and every connectivity change ends up
here instead of as a hard error. The UI drains the queue after each call.
"""
import logging
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Deque, Dict, List, Optional
from uuid import uuid4


logger = logging.getLogger(__name__)


class NotificationVariant(str, Enum):
    DEFAULT = "default"
    DESTRUCTIVE = "destructive"


class NotificationType(str, Enum):
    """Types of operator notifications."""
    # Session
    SESSION_ACTIVE = "session_active"
    SESSION_CONFLICT = "session_conflict"
    SESSION_SUBMITTED = "session_submitted"
    SESSION_CANCELLED = "session_cancelled"

    # Counting
    COUNT_SAVED = "count_saved"
    COUNT_SAVED_OFFLINE = "count_saved_offline"
    SAVE_FAILED = "save_failed"
    KEG_DATA_LOADING = "keg_data_loading"
    KEG_DATA_FAILED = "keg_data_failed"
    KEG_KICKED = "keg_kicked"
    PRODUCT_NOT_FOUND = "product_not_found"

    # Connectivity
    OFFLINE = "offline"
    BACK_ONLINE = "back_online"
    SYNC_COMPLETE = "sync_complete"
    SYNC_PARTIAL = "sync_partial"

    ERROR = "error"


# Titles shown on the toast
NOTIFICATION_TITLES: Dict[NotificationType, str] = {
    NotificationType.SESSION_ACTIVE: "Session Active",
    NotificationType.SESSION_CONFLICT: "Count Already Running",
    NotificationType.SESSION_SUBMITTED: "Count Submitted",
    NotificationType.SESSION_CANCELLED: "Count Cancelled",
    NotificationType.COUNT_SAVED: "Saved",
    NotificationType.COUNT_SAVED_OFFLINE: "Saved Offline",
    NotificationType.SAVE_FAILED: "Save Failed",
    NotificationType.KEG_DATA_LOADING: "Loading",
    NotificationType.KEG_DATA_FAILED: "Keg Data Unavailable",
    NotificationType.KEG_KICKED: "Keg Kicked!",
    NotificationType.PRODUCT_NOT_FOUND: "Not Found",
    NotificationType.OFFLINE: "Offline Mode",
    NotificationType.BACK_ONLINE: "Back Online",
    NotificationType.SYNC_COMPLETE: "Sync Complete",
    NotificationType.SYNC_PARTIAL: "Sync Incomplete",
    NotificationType.ERROR: "Error",
}


@dataclass
class OperatorNotification:
    type: NotificationType
    title: str
    description: str
    variant: NotificationVariant = NotificationVariant.DEFAULT
    id: str = field(default_factory=lambda: str(uuid4()))
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class NotificationService:
    """
    Bounded in-memory queue of operator notifications.

    Older notifications are dropped once ``max_pending`` is reached; they are
    transient by nature.
    """

    def __init__(self, max_pending: int = 50):
        self._pending: Deque[OperatorNotification] = deque(maxlen=max_pending)

    def notify(
        self,
        notification_type: NotificationType,
        description: str,
        variant: NotificationVariant = NotificationVariant.DEFAULT,
        title: Optional[str] = None,
    ) -> OperatorNotification:
        notification = OperatorNotification(
            type=notification_type,
            title=title or NOTIFICATION_TITLES.get(notification_type, "Notice"),
            description=description,
            variant=variant,
        )
        self._pending.append(notification)
        logger.info(f"[NOTIFICATION] {notification.title}: {description}")
        return notification

    def error(self, notification_type: NotificationType, description: str) -> OperatorNotification:
        return self.notify(notification_type, description, variant=NotificationVariant.DESTRUCTIVE)

    def pending(self) -> List[OperatorNotification]:
        return list(self._pending)

    def drain(self) -> List[OperatorNotification]:
        """Return and clear pending notifications."""
        drained = list(self._pending)
        self._pending.clear()
        return drained
