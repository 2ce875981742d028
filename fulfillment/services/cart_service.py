from dataclasses import dataclass, field
from decimal import Decimal
from typing import List, Optional
import logging
import uuid

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from fulfillment.core.access_policy import Actor, ensure, policy_for
from fulfillment.core.exceptions import InsufficientInventoryError, NotFoundError, ValidationError
from fulfillment.models.cart import CartItem
from fulfillment.models.product import Product
from fulfillment.services.catalog_service import CatalogService
from fulfillment.services.inventory_service import InventoryService


logger = logging.getLogger(__name__)


@dataclass
class CartSummary:
    """A buyer's cart with running totals."""
    buyer_id: uuid.UUID
    items: List[CartItem] = field(default_factory=list)

    @property
    def item_count(self) -> int:
        return len(self.items)

    @property
    def total_items(self) -> int:
        return sum(item.quantity for item in self.items)

    @property
    def subtotal(self) -> Decimal:
        return sum((item.line_total for item in self.items), Decimal("0"))


class CartService:
    """Buyer carts. Nothing here touches the inventory ledger; availability is only checked."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.catalog = CatalogService(db)
        self.inventory = InventoryService(db)

    def _resolve_buyer(self, actor: Actor, buyer_id: Optional[uuid.UUID]) -> uuid.UUID:
        buyer_id = buyer_id or actor.id
        ensure(policy_for(actor).can_manage_cart(buyer_id))
        return buyer_id

    async def _check_orderable(self, product: Product, warehouse_id: uuid.UUID, quantity: int) -> None:
        if quantity < product.moq:
            raise ValidationError(
                f"Minimum order quantity for {product.name} is {product.moq}",
                moq=product.moq,
            )
        available = await self.inventory.available(warehouse_id, product.id)
        if available < quantity:
            raise InsufficientInventoryError(
                warehouse_id, product.id, quantity, available=available, product_name=product.name
            )

    async def _get_item(self, item_id: uuid.UUID, actor: Actor) -> CartItem:
        result = await self.db.execute(
            select(CartItem)
            .options(selectinload(CartItem.product), selectinload(CartItem.warehouse))
            .where(CartItem.id == item_id)
            .execution_options(populate_existing=True)
        )
        item = result.scalar_one_or_none()
        if item is None:
            raise NotFoundError("Cart item", item_id)
        ensure(policy_for(actor).can_manage_cart(item.buyer_id))
        return item

    async def get_items(self, buyer_id: uuid.UUID) -> List[CartItem]:
        result = await self.db.execute(
            select(CartItem)
            .options(selectinload(CartItem.product), selectinload(CartItem.warehouse))
            .where(CartItem.buyer_id == buyer_id)
            .order_by(CartItem.created_at)
            .execution_options(populate_existing=True)
        )
        return list(result.scalars().all())

    async def get_cart(self, actor: Actor, buyer_id: Optional[uuid.UUID] = None) -> CartSummary:
        buyer_id = self._resolve_buyer(actor, buyer_id)
        return CartSummary(buyer_id=buyer_id, items=await self.get_items(buyer_id))

    async def add_to_cart(
        self,
        actor: Actor,
        product_id: uuid.UUID,
        warehouse_id: uuid.UUID,
        quantity: int,
        buyer_id: Optional[uuid.UUID] = None,
    ) -> CartItem:
        """
        Add a product to the cart, merging with an existing line for the same
        product and warehouse. The stored unit price is refreshed from the
        catalog on every add.
        """
        buyer_id = self._resolve_buyer(actor, buyer_id)
        if quantity <= 0:
            raise ValidationError("Quantity must be a positive integer")

        product = await self.catalog.get_product(product_id)
        if not product.is_active:
            raise ValidationError(f"Product {product.name} is not available")
        warehouse = await self.catalog.get_warehouse(warehouse_id)
        if not warehouse.is_active:
            raise ValidationError(f"Warehouse {warehouse.name} is not active")

        result = await self.db.execute(
            select(CartItem).where(
                CartItem.buyer_id == buyer_id,
                CartItem.product_id == product_id,
                CartItem.warehouse_id == warehouse_id,
            )
        )
        item = result.scalar_one_or_none()
        new_quantity = quantity + (item.quantity if item else 0)
        await self._check_orderable(product, warehouse_id, new_quantity)

        if item:
            item.quantity = new_quantity
            item.unit_price = product.price
        else:
            item = CartItem(
                buyer_id=buyer_id,
                product_id=product_id,
                warehouse_id=warehouse_id,
                quantity=quantity,
                unit_price=product.price,
            )
            self.db.add(item)

        await self.db.commit()
        logger.info(f"Cart {buyer_id}: {product.sku} x{new_quantity} from {warehouse.code}")
        return await self._get_item(item.id, actor)

    async def update_cart_item(self, actor: Actor, item_id: uuid.UUID, quantity: int) -> CartItem:
        item = await self._get_item(item_id, actor)
        if quantity <= 0:
            raise ValidationError("Quantity must be a positive integer")

        product = await self.catalog.get_product(item.product_id)
        if not product.is_active:
            raise ValidationError(f"Product {product.name} is not available")
        await self._check_orderable(product, item.warehouse_id, quantity)

        item.quantity = quantity
        item.unit_price = product.price
        await self.db.commit()
        return await self._get_item(item_id, actor)

    async def remove_from_cart(self, actor: Actor, item_id: uuid.UUID) -> None:
        item = await self._get_item(item_id, actor)
        await self.db.delete(item)
        await self.db.commit()

    async def clear_cart(self, actor: Actor, buyer_id: Optional[uuid.UUID] = None) -> int:
        buyer_id = self._resolve_buyer(actor, buyer_id)
        removed = await self.delete_items(buyer_id)
        await self.db.commit()
        return removed

    async def delete_items(self, buyer_id: uuid.UUID) -> int:
        """Delete a buyer's cart lines inside the caller's transaction."""
        result = await self.db.execute(
            delete(CartItem)
            .where(CartItem.buyer_id == buyer_id)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount
