"""
Local Store Models

Device-local tables backing offline counting:
- Catalogue snapshot (products and zones) for offline lookup/display
- Offline count queue, replayed in capture order when connectivity returns
- Operator preferences (quick scan mode)
"""
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from sqlalchemy import (
    String, Integer, Float, Boolean, DateTime, Text, Index, JSON
)
from sqlalchemy.orm import Mapped, mapped_column

from taproom.database import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ============================================================================
# ENUMS
# ============================================================================

class OfflineCountStatus(str, Enum):
    """Replay status of a queued count."""
    PENDING = "PENDING"
    FAILED = "FAILED"  # Gave up after the configured number of replay attempts


# ============================================================================
# MODELS
# ============================================================================

class CachedProduct(Base):
    """
    Snapshot of a catalogue product.

    The full product payload is stored as JSON so the snapshot does not
    depend on which attributes the backend adds over time.
    """
    __tablename__ = "cached_products"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    upc: Mapped[Optional[str]] = mapped_column(String(64), nullable=True, index=True)
    payload: Mapped[dict] = mapped_column(JSON, nullable=False)
    cached_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    def __repr__(self) -> str:
        return f"<CachedProduct(id={self.id}, name='{self.name}')>"


class CachedZone(Base):
    """Snapshot of a counting zone."""
    __tablename__ = "cached_zones"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    cached_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)


class OfflineCountEntry(Base):
    """
    A count captured while disconnected.

    Denormalised: carries the bottle size and keg flag so it can be replayed
    without the live catalogue. The partial figure is the raw slider percent;
    the volume conversion happens at replay time.
    """
    __tablename__ = "offline_count_queue"
    __table_args__ = (
        Index('ix_offline_count_queue_status', 'status'),
        Index('ix_offline_count_queue_captured', 'captured_at'),
    )

    # Autoincrement id doubles as the FIFO sequence
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    session_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    product_id: Mapped[int] = mapped_column(Integer, nullable=False)
    product_name: Mapped[str] = mapped_column(String(255), nullable=False)

    counted_bottles: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    partial_percent: Mapped[float] = mapped_column(Float, nullable=False, default=0)
    total_units: Mapped[float] = mapped_column(Float, nullable=False, default=0)
    is_manual_estimate: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    scale_weight_grams: Mapped[Optional[float]] = mapped_column(Float, nullable=True)

    bottle_size_ml: Mapped[int] = mapped_column(Integer, nullable=False)
    is_keg: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    # Epoch milliseconds at capture time
    captured_at: Mapped[int] = mapped_column(Integer, nullable=False)

    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=OfflineCountStatus.PENDING.value
    )
    retry_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    last_attempt_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    def __repr__(self) -> str:
        return (
            f"<OfflineCountEntry(id={self.id}, session={self.session_id}, "
            f"product={self.product_id}, status={self.status})>"
        )


class DevicePreference(Base):
    """Operator preference persisted on the device."""
    __tablename__ = "device_preferences"

    key: Mapped[str] = mapped_column(String(100), primary_key=True)
    value: Mapped[dict] = mapped_column(JSON, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)
