"""
Inventory ledger models: one counter row per (variant, location) plus an
append-only journal of every movement.
"""
from datetime import datetime, timezone

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    text,
)

from .base import Base


class InventoryLevelModel(Base):
    __tablename__ = "inventory_levels"
    __table_args__ = (
        UniqueConstraint("variant_id", "location_id", name="uq_inventory_levels_variant_location"),
        CheckConstraint("available >= 0", name="ck_inventory_levels_available"),
        CheckConstraint("reserved >= 0", name="ck_inventory_levels_reserved"),
        CheckConstraint("committed >= 0", name="ck_inventory_levels_committed"),
        {"comment": "Stock counters per variant and location"},
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    variant_id = Column(String(100), nullable=False, comment="Product variant")
    location_id = Column(String(100), nullable=False, comment="Stock location")
    available = Column(Integer, nullable=False, default=0, server_default=text("0"), comment="Sellable units")
    reserved = Column(Integer, nullable=False, default=0, server_default=text("0"), comment="Held for unpaid orders")
    committed = Column(Integer, nullable=False, default=0, server_default=text("0"), comment="Sold, awaiting shipment")
    updated_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
        nullable=False,
    )


class InventoryAdjustmentModel(Base):
    __tablename__ = "inventory_adjustments"
    __table_args__ = (
        Index("ix_inventory_adjustments_variant_created", "variant_id", "created_at"),
        Index("ix_inventory_adjustments_reference", "reference_type", "reference_id"),
        {"comment": "Append-only journal of ledger movements"},
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    variant_id = Column(String(100), nullable=False)
    location_id = Column(String(100), nullable=False)
    movement = Column(String(20), nullable=False, comment="reserve/commit/release/restock/receive")
    requested = Column(Integer, nullable=False, comment="Quantity asked for")
    applied = Column(Integer, nullable=False, comment="Quantity actually moved")
    reference_type = Column(String(30), nullable=True, comment="Usually 'order'")
    reference_id = Column(String(100), nullable=True)
    inconsistent = Column(Boolean, nullable=False, default=False, server_default=text("false"),
                          comment="Movement was clamped to the held quantity")
    note = Column(Text, nullable=True)
    created_by = Column(String(100), nullable=True)
    created_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
    )
