"""
Offline Queue & Sync Manager

Keeps counting usable without a connection:
- Tracks the device's connectivity flag and tells the operator when it flips
- Queues counts captured offline in the local store, in capture order
- Replays the queue through the inventory backend when the connection returns
- Keeps a catalogue snapshot and operator preferences for offline use

Entries leave the queue only when the backend acknowledges them. An entry
that keeps failing is marked FAILED after the configured number of attempts
and stays in the store.
"""
import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, List, Optional, Sequence

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from taproom.config import settings
from taproom.core.errors import TaproomError
from taproom.database import async_session_factory
from taproom.models.local_store import (
    CachedProduct, CachedZone, DevicePreference, OfflineCountEntry, OfflineCountStatus,
)
from taproom.schemas.catalog import Product, Zone
from taproom.schemas.inventory_session import OfflineCount
from taproom.schemas.offline_sync import ConnectivityStatus, QueuedOfflineCount, SyncResult
from taproom.services.inventory_api_client import InventoryApiClient
from taproom.services.notification_service import NotificationService, NotificationType
from taproom.services.reconciliation import replay_request

logger = logging.getLogger(__name__)


def _entry_to_offline_count(entry: OfflineCountEntry) -> OfflineCount:
    return OfflineCount(
        session_id=entry.session_id,
        product_id=entry.product_id,
        product_name=entry.product_name,
        counted_bottles=entry.counted_bottles,
        partial_percent=entry.partial_percent,
        total_units=entry.total_units,
        is_manual_estimate=entry.is_manual_estimate,
        scale_weight_grams=entry.scale_weight_grams,
        timestamp=entry.captured_at,
        bottle_size_ml=entry.bottle_size_ml,
        is_keg=entry.is_keg,
    )


def _entry_to_view(entry: OfflineCountEntry) -> QueuedOfflineCount:
    return QueuedOfflineCount(
        queue_id=entry.id,
        status=entry.status,
        retry_count=entry.retry_count,
        last_error=entry.last_error,
        **_entry_to_offline_count(entry).model_dump(),
    )


class OfflineSyncService:
    """One per device: connectivity flag, durable queue and catalogue snapshot."""

    def __init__(
        self,
        api: InventoryApiClient,
        session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
        notifier: Optional[NotificationService] = None,
        max_attempts: Optional[int] = None,
        online: bool = True,
    ):
        self.api = api
        self.session_factory = session_factory or async_session_factory
        self.notifier = notifier or NotificationService()
        self.max_attempts = max_attempts or settings.OFFLINE_MAX_REPLAY_ATTEMPTS
        self._online = online
        self._sync_lock = asyncio.Lock()

    # ==================== CONNECTIVITY ====================

    @property
    def is_online(self) -> bool:
        return self._online

    @property
    def is_syncing(self) -> bool:
        return self._sync_lock.locked()

    async def set_connectivity(self, online: bool) -> Optional[SyncResult]:
        """
        Record a connectivity change.

        Going back online replays the queue and returns the result; anything
        else returns None.
        """
        if online == self._online:
            return None

        self._online = online

        if not online:
            logger.warning("Device went offline; counts will be queued locally")
            self.notifier.notify(
                NotificationType.OFFLINE,
                "Counts will be saved on this device and synced when you reconnect.",
            )
            return None

        logger.info("Device back online")
        pending = await self.pending_count()
        self.notifier.notify(
            NotificationType.BACK_ONLINE,
            f"Syncing {pending} offline count(s)." if pending else "Connection restored.",
        )
        return await self.sync_offline_counts()

    async def status(self) -> ConnectivityStatus:
        return ConnectivityStatus(
            is_online=self._online,
            pending_count=await self.pending_count(),
            failed_count=await self.pending_count(OfflineCountStatus.FAILED),
            is_syncing=self.is_syncing,
        )

    # ==================== QUEUE ====================

    async def enqueue(self, count: OfflineCount) -> int:
        """Append a count to the queue and commit it right away."""
        async with self.session_factory() as db:
            entry = OfflineCountEntry(
                session_id=count.session_id,
                product_id=count.product_id,
                product_name=count.product_name,
                counted_bottles=count.counted_bottles,
                partial_percent=count.partial_percent,
                total_units=count.total_units,
                is_manual_estimate=count.is_manual_estimate,
                scale_weight_grams=count.scale_weight_grams,
                bottle_size_ml=count.bottle_size_ml,
                is_keg=count.is_keg,
                captured_at=count.timestamp,
                status=OfflineCountStatus.PENDING.value,
                retry_count=0,
            )
            db.add(entry)
            await db.commit()
            logger.info(
                f"Queued offline count #{entry.id}: product {count.product_id} "
                f"({count.product_name}) for session {count.session_id}"
            )
            return entry.id

    async def _entries(self, db: AsyncSession, status: OfflineCountStatus) -> Sequence[OfflineCountEntry]:
        result = await db.execute(
            select(OfflineCountEntry)
            .where(OfflineCountEntry.status == status.value)
            .order_by(OfflineCountEntry.id, OfflineCountEntry.captured_at)
        )
        return result.scalars().all()

    async def pending_counts(
        self,
        status: OfflineCountStatus = OfflineCountStatus.PENDING,
    ) -> List[QueuedOfflineCount]:
        """Queued entries in capture order."""
        async with self.session_factory() as db:
            return [_entry_to_view(e) for e in await self._entries(db, status)]

    async def pending_count(self, status: OfflineCountStatus = OfflineCountStatus.PENDING) -> int:
        async with self.session_factory() as db:
            result = await db.execute(
                select(func.count(OfflineCountEntry.id))
                .where(OfflineCountEntry.status == status.value)
            )
            return result.scalar_one()

    async def outstanding_for_session(self, session_id: int) -> int:
        """Entries of one session the backend has not accepted yet, PENDING or FAILED."""
        async with self.session_factory() as db:
            result = await db.execute(
                select(func.count(OfflineCountEntry.id))
                .where(OfflineCountEntry.session_id == session_id)
            )
            return result.scalar_one()

    async def retry_failed(self) -> int:
        """Put FAILED entries back in line for another replay."""
        async with self.session_factory() as db:
            entries = await self._entries(db, OfflineCountStatus.FAILED)
            for entry in entries:
                entry.status = OfflineCountStatus.PENDING.value
                entry.retry_count = 0
            await db.commit()
            return len(entries)

    async def sync_offline_counts(self) -> SyncResult:
        """
        Replay the queue in capture order, one entry at a time.

        A failing entry does not stop the pass. Concurrent calls run one
        after another; the second sees whatever the first left behind.
        """
        async with self._sync_lock:
            if not self._online:
                return SyncResult(remaining=await self.pending_count(), skipped_offline=True)

            result = SyncResult()
            async with self.session_factory() as db:
                entries = await self._entries(db, OfflineCountStatus.PENDING)

                for entry in entries:
                    result.attempted += 1
                    try:
                        await self.api.save_count(replay_request(_entry_to_offline_count(entry)))
                    except TaproomError as e:
                        entry.retry_count += 1
                        entry.last_error = e.message
                        entry.last_attempt_at = datetime.now(timezone.utc)
                        if entry.retry_count >= self.max_attempts:
                            entry.status = OfflineCountStatus.FAILED.value
                            result.abandoned += 1
                            logger.error(
                                f"Giving up on offline count #{entry.id} (product {entry.product_id}) "
                                f"after {entry.retry_count} attempts: {e.message}"
                            )
                        else:
                            logger.warning(
                                f"Failed to sync offline count #{entry.id} "
                                f"(product {entry.product_id}): {e.message}"
                            )
                        result.failed += 1
                        result.errors.append(f"{entry.product_name}: {e.message}")
                        await db.commit()
                        continue

                    await db.delete(entry)
                    await db.commit()
                    result.synced += 1

            result.remaining = await self.pending_count()

        if result.failed:
            self.notifier.error(
                NotificationType.SYNC_PARTIAL,
                f"Synced {result.synced} count(s); {result.failed} could not be saved.",
            )
        elif result.synced:
            self.notifier.notify(
                NotificationType.SYNC_COMPLETE,
                f"Synced {result.synced} offline count(s).",
            )
        logger.info(
            f"Offline sync: {result.synced} synced, {result.failed} failed, "
            f"{result.remaining} remaining"
        )
        return result

    # ==================== CATALOGUE SNAPSHOT ====================

    async def cache_catalog(self, zones: List[Zone], products: List[Product]) -> None:
        """Replace the local catalogue snapshot."""
        async with self.session_factory() as db:
            await db.execute(delete(CachedZone))
            await db.execute(delete(CachedProduct))
            db.add_all([
                CachedZone(id=z.id, name=z.name, description=z.description) for z in zones
            ])
            db.add_all([
                CachedProduct(
                    id=p.id,
                    name=p.name,
                    upc=p.upc,
                    payload=p.model_dump(mode="json"),
                ) for p in products
            ])
            await db.commit()
        logger.info(f"Cached catalogue snapshot: {len(zones)} zones, {len(products)} products")

    async def cached_products(self) -> List[Product]:
        async with self.session_factory() as db:
            result = await db.execute(select(CachedProduct).order_by(CachedProduct.name))
            return [Product.model_validate(row.payload) for row in result.scalars().all()]

    async def cached_zones(self) -> List[Zone]:
        async with self.session_factory() as db:
            result = await db.execute(select(CachedZone).order_by(CachedZone.name))
            return [Zone.model_validate(row) for row in result.scalars().all()]

    async def find_cached_product_by_upc(self, code: str) -> Optional[Product]:
        async with self.session_factory() as db:
            result = await db.execute(select(CachedProduct).where(CachedProduct.upc == code).limit(1))
            row = result.scalar_one_or_none()
            return Product.model_validate(row.payload) if row else None

    # ==================== PREFERENCES ====================

    async def get_preference(self, key: str, default: Any = None) -> Any:
        async with self.session_factory() as db:
            pref = await db.get(DevicePreference, key)
            if pref is None:
                return default
            return pref.value.get("value", default)

    async def set_preference(self, key: str, value: Any) -> None:
        async with self.session_factory() as db:
            pref = await db.get(DevicePreference, key)
            if pref is None:
                db.add(DevicePreference(key=key, value={"value": value}))
            else:
                pref.value = {"value": value}
            await db.commit()
