import uuid
from datetime import datetime, date, timezone
from decimal import Decimal
from enum import Enum
from typing import TYPE_CHECKING, Optional, List

from sqlalchemy import String, Date, DateTime, ForeignKey, Numeric, Text, Index, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from fulfillment.database import Base
from fulfillment.db_types import UUIDType

if TYPE_CHECKING:
    from fulfillment.models.order import Order
    from fulfillment.models.user import User
    from fulfillment.models.warehouse import Warehouse
    from fulfillment.models.address import Address


class ConsignmentStatus(str, Enum):
    """Consignment status enumeration."""
    PENDING = "PENDING"           # Created, no driver yet
    ASSIGNED = "ASSIGNED"         # Driver assigned
    PICKED = "PICKED"             # Picked and packed at the warehouse
    PICKED_UP = "PICKED_UP"       # Collected by the driver
    IN_TRANSIT = "IN_TRANSIT"
    DELIVERED = "DELIVERED"
    FAILED = "FAILED"             # Delivery attempt failed, can be retried
    CANCELLED = "CANCELLED"


class Consignment(Base):
    """
    The portion of an order shipped from one warehouse.

    At most one consignment exists per (order, warehouse).
    Format: CONYYMMDDNNNN (e.g., CON2610190001)
    """
    __tablename__ = "consignments"
    __table_args__ = (
        UniqueConstraint("order_id", "warehouse_id", name="uq_consignment_order_warehouse"),
        Index("ix_consignment_driver_status", "driver_id", "status"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        primary_key=True,
        default=uuid.uuid4
    )
    consignment_number: Mapped[str] = mapped_column(
        String(30),
        unique=True,
        nullable=False,
        index=True
    )

    order_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        ForeignKey("orders.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    warehouse_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        ForeignKey("warehouses.id", ondelete="RESTRICT"),
        nullable=False,
        index=True
    )
    driver_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUIDType,
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True
    )

    status: Mapped[str] = mapped_column(
        String(50),
        default=ConsignmentStatus.PENDING.value,
        nullable=False,
        index=True,
        comment="PENDING, ASSIGNED, PICKED, PICKED_UP, IN_TRANSIT, DELIVERED, FAILED, CANCELLED"
    )

    pickup_address_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        ForeignKey("addresses.id", ondelete="RESTRICT"),
        nullable=False
    )
    delivery_address_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        ForeignKey("addresses.id", ondelete="RESTRICT"),
        nullable=False
    )

    estimated_delivery_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    actual_delivery_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
        nullable=False
    )
    delivered_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    # Relationships
    order: Mapped["Order"] = relationship("Order", back_populates="consignments")
    warehouse: Mapped["Warehouse"] = relationship("Warehouse")
    driver: Mapped[Optional["User"]] = relationship("User")
    pickup_address: Mapped["Address"] = relationship("Address", foreign_keys=[pickup_address_id])
    delivery_address: Mapped["Address"] = relationship("Address", foreign_keys=[delivery_address_id])
    events: Mapped[List["ConsignmentEvent"]] = relationship(
        "ConsignmentEvent",
        back_populates="consignment",
        cascade="all, delete-orphan",
        order_by="ConsignmentEvent.created_at"
    )

    def __repr__(self) -> str:
        return f"<Consignment(consignment_number='{self.consignment_number}', status='{self.status}')>"


class ConsignmentEvent(Base):
    """Tracking event. Append-only; rows are never updated or deleted."""
    __tablename__ = "consignment_events"

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        primary_key=True,
        default=uuid.uuid4
    )
    consignment_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        ForeignKey("consignments.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    status: Mapped[str] = mapped_column(String(50), nullable=False)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    latitude: Mapped[Optional[Decimal]] = mapped_column(Numeric(10, 8), nullable=True)
    longitude: Mapped[Optional[Decimal]] = mapped_column(Numeric(11, 8), nullable=True)
    recorded_by: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUIDType,
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False
    )

    consignment: Mapped["Consignment"] = relationship("Consignment", back_populates="events")
