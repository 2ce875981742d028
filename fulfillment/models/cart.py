import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import TYPE_CHECKING

from sqlalchemy import DateTime, ForeignKey, Integer, Numeric, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from fulfillment.database import Base
from fulfillment.db_types import UUIDType

if TYPE_CHECKING:
    from fulfillment.models.product import Product
    from fulfillment.models.warehouse import Warehouse


class CartItem(Base):
    """One buyer's intent to order a product from a specific warehouse."""
    __tablename__ = "cart_items"
    __table_args__ = (
        UniqueConstraint("buyer_id", "product_id", "warehouse_id", name="uq_cart_buyer_product_warehouse"),
    )

    id: Mapped[uuid.UUID] = mapped_column(UUIDType, primary_key=True, default=uuid.uuid4)
    buyer_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    product_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        ForeignKey("products.id", ondelete="CASCADE"),
        nullable=False
    )
    warehouse_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        ForeignKey("warehouses.id", ondelete="CASCADE"),
        nullable=False
    )
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    unit_price: Mapped[Decimal] = mapped_column(
        Numeric(12, 2),
        nullable=False,
        comment="Catalog price when last added; refreshed on order creation"
    )

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

    product: Mapped["Product"] = relationship("Product")
    warehouse: Mapped["Warehouse"] = relationship("Warehouse")

    @property
    def line_total(self) -> Decimal:
        return self.unit_price * self.quantity
