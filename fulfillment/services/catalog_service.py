from typing import Optional
import uuid

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from fulfillment.core.exceptions import NotFoundError, ValidationError
from fulfillment.models.address import Address
from fulfillment.models.product import Product
from fulfillment.models.user import User, UserRole
from fulfillment.models.warehouse import Warehouse


class CatalogService:
    """
    Read-only lookups into data owned by other services (catalog, warehouses,
    user profiles). The pipeline never writes these tables.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_product(self, product_id: uuid.UUID) -> Product:
        product = await self.db.get(Product, product_id)
        if product is None:
            raise NotFoundError("Product", product_id)
        return product

    async def get_warehouse(self, warehouse_id: uuid.UUID) -> Warehouse:
        warehouse = await self.db.get(Warehouse, warehouse_id)
        if warehouse is None:
            raise NotFoundError("Warehouse", warehouse_id)
        return warehouse

    async def get_user(self, user_id: uuid.UUID, role: Optional[str] = None) -> User:
        """Get a user, optionally requiring a role. A role mismatch reads as not found."""
        user = await self.db.get(User, user_id)
        if user is None or (role is not None and user.role != role):
            raise NotFoundError((role or "User").title(), user_id)
        return user

    async def get_buyer_address(self, address_id: uuid.UUID, buyer_id: uuid.UUID) -> Address:
        result = await self.db.execute(
            select(Address).where(Address.id == address_id, Address.user_id == buyer_id)
        )
        address = result.scalar_one_or_none()
        if address is None:
            raise NotFoundError("Address", address_id, message="Delivery address not found")
        return address

    async def get_active_buyer(self, buyer_id: uuid.UUID) -> User:
        buyer = await self.get_user(buyer_id, role=UserRole.BUYER.value)
        if not buyer.is_active:
            raise ValidationError("Buyer account is inactive")
        return buyer
