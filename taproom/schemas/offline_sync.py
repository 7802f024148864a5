"""
Offline Sync Schemas.

Device-side views of the offline count queue and the result of a replay.
"""
from typing import List, Optional

from pydantic import Field

from taproom.schemas.base import DeviceSchema


class QueuedOfflineCount(DeviceSchema):
    """A queue entry as shown to the operator."""
    queue_id: int
    session_id: int
    product_id: int
    product_name: str
    counted_bottles: int
    partial_percent: float
    total_units: float
    is_manual_estimate: bool
    scale_weight_grams: Optional[float] = None
    timestamp: int
    bottle_size_ml: int
    is_keg: bool
    status: str
    retry_count: int = 0
    last_error: Optional[str] = None


class SyncResult(DeviceSchema):
    """Outcome of one replay pass over the queue."""
    attempted: int = 0
    synced: int = 0
    failed: int = 0
    abandoned: int = 0  # Entries that reached the attempt limit this pass
    remaining: int = 0
    skipped_offline: bool = False
    errors: List[str] = Field(default_factory=list)


class ConnectivityStatus(DeviceSchema):
    is_online: bool
    pending_count: int
    failed_count: int = 0
    is_syncing: bool = False
