"""
Inventory ledger.

Every mutation is one conditional UPDATE whose WHERE clause carries the
invariant it must preserve (0 <= reserved_quantity <= quantity). If the row
does not match, nothing changes and the caller gets a typed error; there is
never a read followed by a write.
"""
from typing import Optional
import logging
import uuid

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from fulfillment.core.exceptions import (
    InsufficientInventoryError,
    InventoryLedgerError,
    NotFoundError,
    ValidationError,
)
from fulfillment.models.inventory import InventoryRecord


logger = logging.getLogger(__name__)


class InventoryService:
    """Reserve / commit / release protocol over the inventory table."""

    def __init__(self, db: AsyncSession):
        self.db = db

    @staticmethod
    def _check_quantity(quantity: int) -> None:
        if quantity is None or quantity <= 0:
            raise ValidationError("Quantity must be a positive integer", quantity=quantity)

    def _key(self, warehouse_id: uuid.UUID, product_id: uuid.UUID):
        return (
            InventoryRecord.warehouse_id == warehouse_id,
            InventoryRecord.product_id == product_id,
        )

    async def get_record(self, warehouse_id: uuid.UUID, product_id: uuid.UUID) -> Optional[InventoryRecord]:
        result = await self.db.execute(
            select(InventoryRecord)
            .where(*self._key(warehouse_id, product_id))
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def available(self, warehouse_id: uuid.UUID, product_id: uuid.UUID) -> int:
        """Units that can still be reserved (0 when there is no record)."""
        record = await self.get_record(warehouse_id, product_id)
        return record.available_quantity if record else 0

    async def _apply(self, stmt) -> int:
        result = await self.db.execute(stmt.execution_options(synchronize_session=False))
        return result.rowcount

    async def reserve(self, warehouse_id: uuid.UUID, product_id: uuid.UUID, quantity: int) -> None:
        """Set aside units for an order. Fails if fewer than `quantity` are available."""
        self._check_quantity(quantity)
        rows = await self._apply(
            update(InventoryRecord)
            .where(
                *self._key(warehouse_id, product_id),
                InventoryRecord.quantity - InventoryRecord.reserved_quantity >= quantity,
            )
            .values(reserved_quantity=InventoryRecord.reserved_quantity + quantity)
        )
        if rows == 0:
            record = await self.get_record(warehouse_id, product_id)
            if record is None:
                raise NotFoundError("Inventory", message="Product is not stocked in this warehouse")
            raise InsufficientInventoryError(
                warehouse_id, product_id, quantity, available=record.available_quantity
            )
        logger.debug(f"Reserved {quantity} of {product_id} at {warehouse_id}")

    async def release(self, warehouse_id: uuid.UUID, product_id: uuid.UUID, quantity: int) -> None:
        """Hand a reservation back without touching on-hand stock."""
        self._check_quantity(quantity)
        rows = await self._apply(
            update(InventoryRecord)
            .where(
                *self._key(warehouse_id, product_id),
                InventoryRecord.reserved_quantity >= quantity,
            )
            .values(reserved_quantity=InventoryRecord.reserved_quantity - quantity)
        )
        if rows == 0:
            raise InventoryLedgerError(
                f"Cannot release {quantity} units of {product_id}: not reserved",
                warehouse_id=warehouse_id,
                product_id=product_id,
                quantity=quantity,
            )
        logger.debug(f"Released {quantity} of {product_id} at {warehouse_id}")

    async def commit(self, warehouse_id: uuid.UUID, product_id: uuid.UUID, quantity: int) -> None:
        """Convert a reservation into a deduction from on-hand stock."""
        self._check_quantity(quantity)
        rows = await self._apply(
            update(InventoryRecord)
            .where(
                *self._key(warehouse_id, product_id),
                InventoryRecord.reserved_quantity >= quantity,
                InventoryRecord.quantity >= quantity,
            )
            .values(
                quantity=InventoryRecord.quantity - quantity,
                reserved_quantity=InventoryRecord.reserved_quantity - quantity,
            )
        )
        if rows == 0:
            raise InventoryLedgerError(
                f"Cannot commit {quantity} units of {product_id}: not reserved",
                warehouse_id=warehouse_id,
                product_id=product_id,
                quantity=quantity,
            )
        logger.debug(f"Committed {quantity} of {product_id} at {warehouse_id}")

    async def restock(self, warehouse_id: uuid.UUID, product_id: uuid.UUID, quantity: int) -> None:
        """Put previously committed units back on the shelf."""
        self._check_quantity(quantity)
        rows = await self._apply(
            update(InventoryRecord)
            .where(*self._key(warehouse_id, product_id))
            .values(quantity=InventoryRecord.quantity + quantity)
        )
        if rows == 0:
            raise NotFoundError("Inventory", message="Product is not stocked in this warehouse")
        logger.debug(f"Restocked {quantity} of {product_id} at {warehouse_id}")

    async def receive(self, warehouse_id: uuid.UUID, product_id: uuid.UUID, quantity: int) -> InventoryRecord:
        """Add on-hand stock, creating the record on first receipt."""
        self._check_quantity(quantity)
        rows = await self._apply(
            update(InventoryRecord)
            .where(*self._key(warehouse_id, product_id))
            .values(quantity=InventoryRecord.quantity + quantity)
        )
        if rows == 0:
            self.db.add(InventoryRecord(
                warehouse_id=warehouse_id,
                product_id=product_id,
                quantity=quantity,
                reserved_quantity=0,
            ))
            await self.db.flush()
        return await self.get_record(warehouse_id, product_id)
