"""
Connectivity API Endpoints.

Platform online/offline events, the offline count queue and manual sync.
"""
from typing import List

from fastapi import APIRouter, Depends

from taproom.api.deps import get_sync_service
from taproom.models.local_store import OfflineCountStatus
from taproom.schemas.offline_sync import ConnectivityStatus, QueuedOfflineCount, SyncResult
from taproom.services.offline_sync_service import OfflineSyncService

router = APIRouter()


@router.get(
    "",
    response_model=ConnectivityStatus,
    summary="Connectivity Status"
)
async def get_status(sync: OfflineSyncService = Depends(get_sync_service)):
    return await sync.status()


@router.post(
    "/online",
    response_model=ConnectivityStatus,
    summary="Report Online"
)
async def report_online(sync: OfflineSyncService = Depends(get_sync_service)):
    """Platform reports the connection is back; queued counts are replayed."""
    await sync.set_connectivity(True)
    return await sync.status()


@router.post(
    "/offline",
    response_model=ConnectivityStatus,
    summary="Report Offline"
)
async def report_offline(sync: OfflineSyncService = Depends(get_sync_service)):
    await sync.set_connectivity(False)
    return await sync.status()


@router.get(
    "/queue",
    response_model=List[QueuedOfflineCount],
    summary="Offline Count Queue"
)
async def get_queue(
    status: OfflineCountStatus = OfflineCountStatus.PENDING,
    sync: OfflineSyncService = Depends(get_sync_service),
):
    """Queued counts in capture order. ``status=FAILED`` lists abandoned entries."""
    return await sync.pending_counts(status)


@router.post(
    "/sync",
    response_model=SyncResult,
    summary="Sync Offline Counts"
)
async def sync_now(sync: OfflineSyncService = Depends(get_sync_service)):
    return await sync.sync_offline_counts()


@router.post(
    "/queue/retry-failed",
    response_model=SyncResult,
    summary="Retry Failed Counts"
)
async def retry_failed(sync: OfflineSyncService = Depends(get_sync_service)):
    """Put abandoned entries back in the queue and replay."""
    await sync.retry_failed()
    return await sync.sync_offline_counts()
