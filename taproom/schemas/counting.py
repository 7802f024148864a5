"""
Counting Device API Schemas.

Request bodies for the device-local counting API and the snapshot the UI
renders after every call.
"""
from datetime import datetime
from typing import List, Optional, Union

from pydantic import Field

from taproom.schemas.base import DeviceSchema
from taproom.schemas.catalog import Product, Zone
from taproom.schemas.inventory_session import (
    BottleDraft, CompletedSession, CountData, InventorySession, KegDraft,
    KegLevel, KegSummary, VarianceReport,
)


# ============================================================================
# REQUESTS
# ============================================================================

class SelectZoneRequest(DeviceSchema):
    zone_id: int


class StartSessionRequest(DeviceSchema):
    zone_id: Optional[int] = None  # Defaults to the selected zone


class QuickScanRequest(DeviceSchema):
    enabled: bool


class SelectProductRequest(DeviceSchema):
    product_id: int


class ScanRequest(DeviceSchema):
    code: str = Field(..., min_length=1, max_length=64)


class PartialPercentRequest(DeviceSchema):
    partial_percent: float = Field(..., ge=0, le=100)


class ScaleWeightRequest(DeviceSchema):
    weight_grams: float = Field(..., ge=0)


class StepperRequest(DeviceSchema):
    value: int = Field(..., ge=0)


# ============================================================================
# RESPONSES
# ============================================================================

class NotificationResponse(DeviceSchema):
    id: str
    type: str
    title: str
    description: str
    variant: str
    created_at: datetime


class CounterSnapshot(DeviceSchema):
    """Everything the counting screen needs to render the current mode."""
    mode: str
    allowed_modes: List[str] = []
    quick_scan: bool = False
    is_online: bool = True
    pending_offline_count: int = 0

    zone_id: Optional[int] = None
    session: Optional[InventorySession] = None
    counted_product_ids: List[int] = []

    # list / scan
    search_query: Optional[str] = None
    last_scanned_code: Optional[str] = None

    # input
    product: Optional[Product] = None
    draft: Optional[Union[BottleDraft, KegDraft]] = None
    keg_summary: Optional[KegSummary] = None
    keg_loading: bool = False
    keg_summary_failed: bool = False
    live_levels: List[KegLevel] = []
    total_units: Optional[float] = None
    can_save: bool = False

    # review / view_completed
    report: Optional[VarianceReport] = None
    completed: Optional[CompletedSession] = None

    notifications: List[NotificationResponse] = []


class CatalogResponse(DeviceSchema):
    zones: List[Zone]
    products: List[Product]
    from_cache: bool = False


class SaveCountResponse(DeviceSchema):
    count: CountData
    queued_offline: bool = False
    snapshot: CounterSnapshot
