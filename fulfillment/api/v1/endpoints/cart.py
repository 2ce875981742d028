from typing import Optional
import uuid

from fastapi import APIRouter, Query, status

from fulfillment.api.deps import DB, CurrentActor
from fulfillment.schemas.cart import (
    CartClearResponse,
    CartItemCreate,
    CartItemResponse,
    CartItemUpdate,
    CartResponse,
)
from fulfillment.services.cart_service import CartService


router = APIRouter(tags=["Cart"])


@router.get("", response_model=CartResponse)
async def get_cart(
    db: DB,
    actor: CurrentActor,
    buyer_id: Optional[uuid.UUID] = Query(None, description="Admin only: view a buyer's cart"),
):
    """Get the cart with totals."""
    cart = await CartService(db).get_cart(actor, buyer_id)
    return CartResponse.model_validate(cart)


@router.post("/items", response_model=CartItemResponse, status_code=status.HTTP_201_CREATED)
async def add_to_cart(data: CartItemCreate, db: DB, actor: CurrentActor):
    """Add a product from a warehouse; an existing line for the same pair is increased."""
    item = await CartService(db).add_to_cart(
        actor,
        product_id=data.product_id,
        warehouse_id=data.warehouse_id,
        quantity=data.quantity,
        buyer_id=data.buyer_id,
    )
    return CartItemResponse.model_validate(item)


@router.put("/items/{item_id}", response_model=CartItemResponse)
async def update_cart_item(item_id: uuid.UUID, data: CartItemUpdate, db: DB, actor: CurrentActor):
    item = await CartService(db).update_cart_item(actor, item_id, data.quantity)
    return CartItemResponse.model_validate(item)


@router.delete("/items/{item_id}", status_code=status.HTTP_204_NO_CONTENT)
async def remove_from_cart(item_id: uuid.UUID, db: DB, actor: CurrentActor):
    await CartService(db).remove_from_cart(actor, item_id)


@router.delete("", response_model=CartClearResponse)
async def clear_cart(
    db: DB,
    actor: CurrentActor,
    buyer_id: Optional[uuid.UUID] = Query(None),
):
    removed = await CartService(db).clear_cart(actor, buyer_id)
    return CartClearResponse(removed=removed)
