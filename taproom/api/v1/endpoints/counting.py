"""
Counting API Endpoints.

Device-local API the counting UI drives. Every mutation answers with a fresh
snapshot of the counter so the UI never has to reason about mode changes:
- Catalogue, zone selection and the quick scan preference
- Session start / resume / finish / submit / cancel
- Product selection by list, search or barcode scan
- Per-product input (slider, scale, steppers) and save
- Read-only view of finished sessions
"""
from typing import List

from fastapi import APIRouter, Depends, Query, status

from taproom.api.deps import get_controller
from taproom.schemas.catalog import Product
from taproom.schemas.counting import (
    CatalogResponse, CounterSnapshot, PartialPercentRequest, QuickScanRequest,
    SaveCountResponse, ScaleWeightRequest, ScanRequest, SelectProductRequest,
    SelectZoneRequest, StartSessionRequest, StepperRequest,
)
from taproom.services.session_controller import SessionController

router = APIRouter()


# ============================================================================
# STATE & CATALOGUE
# ============================================================================

@router.get(
    "/state",
    response_model=CounterSnapshot,
    response_model_by_alias=False,
    summary="Current Counter State"
)
async def get_state(controller: SessionController = Depends(get_controller)):
    """Current mode and its payload, plus pending notifications."""
    return await controller.snapshot()


@router.get(
    "/catalog",
    response_model=CatalogResponse,
    response_model_by_alias=False,
    summary="Zones and Products"
)
async def get_catalog(controller: SessionController = Depends(get_controller)):
    return CatalogResponse(zones=controller.zones, products=controller.products)


@router.post(
    "/catalog/reload",
    response_model=CatalogResponse,
    response_model_by_alias=False,
    summary="Reload Catalogue"
)
async def reload_catalog(controller: SessionController = Depends(get_controller)):
    """Refetch zones and products; falls back to the local snapshot when offline."""
    from_cache = await controller.load_catalog()
    return CatalogResponse(zones=controller.zones, products=controller.products, from_cache=from_cache)


@router.post(
    "/zone",
    response_model=CounterSnapshot,
    response_model_by_alias=False,
    summary="Select Zone"
)
async def select_zone(
    data: SelectZoneRequest,
    controller: SessionController = Depends(get_controller),
):
    controller.select_zone(data.zone_id)
    return await controller.snapshot()


@router.put(
    "/quick-scan",
    response_model=CounterSnapshot,
    response_model_by_alias=False,
    summary="Set Quick Scan Mode"
)
async def set_quick_scan(
    data: QuickScanRequest,
    controller: SessionController = Depends(get_controller),
):
    """Persisted on the device; decides whether saves return to the scanner."""
    await controller.set_quick_scan(data.enabled)
    return await controller.snapshot()


# ============================================================================
# SESSION LIFECYCLE
# ============================================================================

@router.post(
    "/sessions",
    response_model=CounterSnapshot,
    response_model_by_alias=False,
    status_code=status.HTTP_201_CREATED,
    summary="Start Count Session"
)
async def start_session(
    data: StartSessionRequest,
    controller: SessionController = Depends(get_controller),
):
    """Start a session for the zone, or adopt the one already running there."""
    await controller.start_session(data.zone_id)
    return await controller.snapshot()


@router.post(
    "/sessions/resume",
    response_model=CounterSnapshot,
    response_model_by_alias=False,
    summary="Resume Active Session"
)
async def resume_session(controller: SessionController = Depends(get_controller)):
    await controller.resume_active_session()
    return await controller.snapshot()


@router.post(
    "/finish",
    response_model=CounterSnapshot,
    response_model_by_alias=False,
    summary="Finish Session (Review)"
)
async def finish_session(controller: SessionController = Depends(get_controller)):
    """Open the variance review."""
    await controller.finish_session()
    return await controller.snapshot()


@router.post(
    "/submit",
    response_model=CounterSnapshot,
    response_model_by_alias=False,
    summary="Submit Session"
)
async def submit_session(controller: SessionController = Depends(get_controller)):
    """Sync offline counts, mark the session completed and return to setup."""
    await controller.submit_session()
    return await controller.snapshot()


@router.post(
    "/cancel",
    response_model=CounterSnapshot,
    response_model_by_alias=False,
    summary="Cancel Session"
)
async def cancel_session(controller: SessionController = Depends(get_controller)):
    await controller.cancel_session()
    return await controller.snapshot()


@router.post(
    "/back",
    response_model=CounterSnapshot,
    response_model_by_alias=False,
    summary="Back"
)
async def back(controller: SessionController = Depends(get_controller)):
    controller.back()
    return await controller.snapshot()


# ============================================================================
# BROWSING & SCANNING
# ============================================================================

@router.post(
    "/view/list",
    response_model=CounterSnapshot,
    response_model_by_alias=False,
    summary="Show Product List"
)
async def show_list(controller: SessionController = Depends(get_controller)):
    controller.show_list()
    return await controller.snapshot()


@router.post(
    "/view/scanner",
    response_model=CounterSnapshot,
    response_model_by_alias=False,
    summary="Show Scanner"
)
async def show_scanner(controller: SessionController = Depends(get_controller)):
    controller.show_scanner()
    return await controller.snapshot()


@router.get(
    "/products/search",
    response_model=List[Product],
    response_model_by_alias=False,
    summary="Search Products"
)
async def search_products(
    q: str = Query("", max_length=100),
    controller: SessionController = Depends(get_controller),
):
    """Case-insensitive match on product name or UPC."""
    return controller.search_products(q)


@router.post(
    "/products/select",
    response_model=CounterSnapshot,
    response_model_by_alias=False,
    summary="Select Product"
)
async def select_product(
    data: SelectProductRequest,
    controller: SessionController = Depends(get_controller),
):
    await controller.select_product(data.product_id)
    return await controller.snapshot()


@router.post(
    "/scan",
    response_model=CounterSnapshot,
    response_model_by_alias=False,
    summary="Handle Barcode Scan"
)
async def handle_scan(
    data: ScanRequest,
    controller: SessionController = Depends(get_controller),
):
    """Duplicate reads are ignored; unknown codes keep the scanner open."""
    await controller.handle_scan(data.code)
    return await controller.snapshot()


# ============================================================================
# INPUT
# ============================================================================

@router.put(
    "/input/partial",
    response_model=CounterSnapshot,
    response_model_by_alias=False,
    summary="Set Partial Fill (Slider)"
)
async def set_partial_percent(
    data: PartialPercentRequest,
    controller: SessionController = Depends(get_controller),
):
    controller.set_partial_percent(data.partial_percent)
    return await controller.snapshot()


@router.put(
    "/input/scale",
    response_model=CounterSnapshot,
    response_model_by_alias=False,
    summary="Apply Scale Reading"
)
async def apply_scale_weight(
    data: ScaleWeightRequest,
    controller: SessionController = Depends(get_controller),
):
    controller.apply_scale_weight(data.weight_grams)
    return await controller.snapshot()


@router.put(
    "/input/backup",
    response_model=CounterSnapshot,
    response_model_by_alias=False,
    summary="Set Backup Count"
)
async def set_backup_count(
    data: StepperRequest,
    controller: SessionController = Depends(get_controller),
):
    controller.set_backup_count(data.value)
    return await controller.snapshot()


@router.put(
    "/input/cooler",
    response_model=CounterSnapshot,
    response_model_by_alias=False,
    summary="Set Cooler Stock"
)
async def set_cooler_stock(
    data: StepperRequest,
    controller: SessionController = Depends(get_controller),
):
    controller.set_cooler_stock(data.value)
    return await controller.snapshot()


@router.post(
    "/input/keg-summary/reload",
    response_model=CounterSnapshot,
    response_model_by_alias=False,
    summary="Retry Keg Data"
)
async def reload_keg_summary(controller: SessionController = Depends(get_controller)):
    await controller.reload_keg_summary()
    return await controller.snapshot()


@router.post(
    "/input/save",
    response_model=SaveCountResponse,
    response_model_by_alias=False,
    summary="Save Count"
)
async def save_count(controller: SessionController = Depends(get_controller)):
    """Save the product on screen and return to the scanner or list."""
    outcome = await controller.save_count()
    return SaveCountResponse(
        count=outcome.count,
        queued_offline=outcome.queued_offline,
        snapshot=await controller.snapshot(),
    )


# ============================================================================
# FINISHED SESSIONS
# ============================================================================

@router.get(
    "/sessions/{session_id}/completed",
    response_model=CounterSnapshot,
    response_model_by_alias=False,
    summary="View Finished Session"
)
async def open_completed_session(
    session_id: int,
    controller: SessionController = Depends(get_controller),
):
    await controller.open_completed_session(session_id)
    return await controller.snapshot()


@router.post(
    "/completed/new-count",
    response_model=CounterSnapshot,
    response_model_by_alias=False,
    summary="Start New Count For Zone"
)
async def start_new_count_for_zone(controller: SessionController = Depends(get_controller)):
    controller.start_new_count_for_zone()
    return await controller.snapshot()
