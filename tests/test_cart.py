from decimal import Decimal

import pytest
from sqlalchemy import select

from fulfillment.core.exceptions import (
    ForbiddenError,
    InsufficientInventoryError,
    NotFoundError,
    ValidationError,
)
from fulfillment.models.cart import CartItem
from fulfillment.models.product import Product
from fulfillment.services.cart_service import CartService


async def test_adding_same_product_and_warehouse_merges(db, seed, actors, stock):
    cart = CartService(db)
    first = await cart.add_to_cart(actors.buyer, seed.p1, seed.w1, 2)
    second = await cart.add_to_cart(actors.buyer, seed.p1, seed.w1, 3)

    assert second.id == first.id
    assert second.quantity == 5
    assert second.line_total == Decimal("500.00")
    # Carts never touch the ledger
    assert await stock(seed.w1, seed.p1) == (10, 0)


async def test_same_product_from_another_warehouse_is_a_new_line(db, seed, actors):
    cart = CartService(db)
    await cart.add_to_cart(actors.buyer, seed.p1, seed.w1, 2)
    await cart.add_to_cart(actors.buyer, seed.p1, seed.w2, 2)

    summary = await cart.get_cart(actors.buyer)
    assert summary.item_count == 2
    assert summary.total_items == 4
    assert summary.subtotal == Decimal("400.00")


async def test_minimum_order_quantity(db, seed, actors):
    cart = CartService(db)
    with pytest.raises(ValidationError) as exc_info:
        await cart.add_to_cart(actors.buyer, seed.bulk, seed.w1, 4)
    assert "Minimum order quantity" in exc_info.value.message

    item = await cart.add_to_cart(actors.buyer, seed.bulk, seed.w1, 5)
    assert item.quantity == 5


async def test_cannot_cart_more_than_available(db, seed, actors):
    cart = CartService(db)
    await cart.add_to_cart(actors.buyer, seed.p1, seed.w1, 8)

    with pytest.raises(InsufficientInventoryError) as exc_info:
        await cart.add_to_cart(actors.buyer, seed.p1, seed.w1, 3)
    assert exc_info.value.available == 10

    items = await cart.get_items(seed.buyer_id)
    assert [i.quantity for i in items] == [8]


async def test_unstocked_or_unknown_products(db, seed, actors):
    cart = CartService(db)
    with pytest.raises(InsufficientInventoryError):
        await cart.add_to_cart(actors.buyer, seed.p2, seed.w1, 1)
    with pytest.raises(NotFoundError):
        await cart.add_to_cart(actors.buyer, seed.w1, seed.w1, 1)


async def test_inactive_product_cannot_be_added(db, seed, actors):
    product = await db.get(Product, seed.p1)
    product.is_active = False
    await db.commit()

    with pytest.raises(ValidationError):
        await CartService(db).add_to_cart(actors.buyer, seed.p1, seed.w1, 1)


async def test_inactive_product_cannot_be_updated(db, seed, actors):
    cart = CartService(db)
    item_id = (await cart.add_to_cart(actors.buyer, seed.p1, seed.w1, 1)).id
    product = await db.get(Product, seed.p1)
    product.is_active = False
    await db.commit()

    with pytest.raises(ValidationError):
        await cart.update_cart_item(actors.buyer, item_id, 3)

    quantity = (await db.execute(select(CartItem.quantity).where(CartItem.id == item_id))).scalar_one()
    assert quantity == 1


async def test_price_is_refreshed_on_add(db, seed, actors):
    cart = CartService(db)
    await cart.add_to_cart(actors.buyer, seed.p1, seed.w1, 1)
    product = await db.get(Product, seed.p1)
    product.price = Decimal("120.00")
    await db.commit()

    item = await cart.add_to_cart(actors.buyer, seed.p1, seed.w1, 1)
    assert item.unit_price == Decimal("120.00")
    assert item.line_total == Decimal("240.00")


async def test_update_and_remove_items(db, seed, actors):
    cart = CartService(db)
    item = await cart.add_to_cart(actors.buyer, seed.p1, seed.w1, 1)
    item_id = item.id

    updated = await cart.update_cart_item(actors.buyer, item_id, 4)
    assert updated.quantity == 4
    with pytest.raises(InsufficientInventoryError):
        await cart.update_cart_item(actors.buyer, item_id, 11)
    with pytest.raises(ForbiddenError):
        await cart.update_cart_item(actors.other_buyer, item_id, 2)

    await cart.remove_from_cart(actors.buyer, item_id)
    assert await cart.get_items(seed.buyer_id) == []
    with pytest.raises(NotFoundError):
        await cart.remove_from_cart(actors.buyer, item_id)


async def test_clear_cart(db, seed, actors):
    cart = CartService(db)
    await cart.add_to_cart(actors.buyer, seed.p1, seed.w1, 1)
    await cart.add_to_cart(actors.buyer, seed.p2, seed.w2, 1)

    assert await cart.clear_cart(actors.buyer) == 2
    assert (await cart.get_cart(actors.buyer)).item_count == 0


async def test_carts_are_private(db, seed, actors):
    cart = CartService(db)
    with pytest.raises(ForbiddenError):
        await cart.get_cart(actors.buyer, buyer_id=seed.other_buyer_id)
    with pytest.raises(ForbiddenError):
        await cart.add_to_cart(actors.driver, seed.p1, seed.w1, 1)

    item = await cart.add_to_cart(actors.admin, seed.p1, seed.w1, 1, buyer_id=seed.other_buyer_id)
    assert item.buyer_id == seed.other_buyer_id
