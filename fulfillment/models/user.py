import uuid
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import TYPE_CHECKING, Optional, List

from sqlalchemy import String, Boolean, DateTime, ForeignKey, Numeric, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from fulfillment.database import Base
from fulfillment.db_types import UUIDType

if TYPE_CHECKING:
    from fulfillment.models.warehouse import Warehouse
    from fulfillment.models.address import Address


class UserRole(str, Enum):
    """Platform roles. Identity itself is owned by the auth service."""
    ADMIN = "ADMIN"
    OPS = "OPS"          # Warehouse operations, scoped to assigned warehouses
    BUYER = "BUYER"
    DRIVER = "DRIVER"


class User(Base):
    """Platform user as seen by the fulfillment pipeline."""
    __tablename__ = "users"

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        primary_key=True,
        default=uuid.uuid4
    )
    phone: Mapped[str] = mapped_column(String(20), unique=True, nullable=False, index=True)
    name: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    business_name: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    role: Mapped[str] = mapped_column(
        String(20),
        default=UserRole.BUYER.value,
        nullable=False,
        index=True,
        comment="ADMIN, OPS, BUYER, DRIVER"
    )
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False
    )

    # Relationships
    warehouse_assignments: Mapped[List["WarehouseOpsAssignment"]] = relationship(
        "WarehouseOpsAssignment",
        back_populates="user",
        cascade="all, delete-orphan"
    )
    driver_profile: Mapped[Optional["DriverProfile"]] = relationship(
        "DriverProfile",
        back_populates="user",
        uselist=False
    )
    addresses: Mapped[List["Address"]] = relationship("Address", back_populates="user")

    @property
    def warehouse_ids(self) -> List[uuid.UUID]:
        return [a.warehouse_id for a in self.warehouse_assignments]

    def __repr__(self) -> str:
        return f"<User(phone='{self.phone}', role='{self.role}')>"


class WarehouseOpsAssignment(Base):
    """Links an OPS user to a warehouse they operate."""
    __tablename__ = "warehouse_ops_assignments"
    __table_args__ = (
        UniqueConstraint("user_id", "warehouse_id", name="uq_ops_assignment_user_warehouse"),
    )

    id: Mapped[uuid.UUID] = mapped_column(UUIDType, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    warehouse_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        ForeignKey("warehouses.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False
    )

    user: Mapped["User"] = relationship("User", back_populates="warehouse_assignments")
    warehouse: Mapped["Warehouse"] = relationship("Warehouse")


class DriverProfile(Base):
    """Driver vehicle details and last reported position."""
    __tablename__ = "driver_profiles"

    id: Mapped[uuid.UUID] = mapped_column(UUIDType, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        ForeignKey("users.id", ondelete="CASCADE"),
        unique=True,
        nullable=False
    )
    license_number: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    vehicle_number: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    vehicle_type: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    is_available: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    current_latitude: Mapped[Optional[Decimal]] = mapped_column(Numeric(10, 8), nullable=True)
    current_longitude: Mapped[Optional[Decimal]] = mapped_column(Numeric(11, 8), nullable=True)
    location_updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    user: Mapped["User"] = relationship("User", back_populates="driver_profile")
