from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy import select

from fulfillment.core.exceptions import (
    ConflictError,
    ForbiddenError,
    InsufficientInventoryError,
    InvalidStatusTransitionError,
    NotFoundError,
    ValidationError,
)
from fulfillment.models.audit_log import AuditLog
from fulfillment.models.order import InventoryState, OrderStatus, PaymentStatus
from fulfillment.services.cart_service import CartService
from fulfillment.services.inventory_service import InventoryService
from fulfillment.services.order_service import OrderService, line_amounts


async def test_create_order_snapshots_cart_and_reserves(db, seed, actors, stock, place_order):
    order_id = await place_order(
        [(seed.p1, seed.w1, 2), (seed.p2, seed.w2, 1)],
        notes="Deliver before noon",
        on_date=date(2026, 10, 19),
    )
    order = await OrderService(db).get_order(order_id, actors.buyer)

    assert order.order_number == "ORD2610190001"
    assert order.status == OrderStatus.PENDING.value
    assert order.inventory_state == InventoryState.RESERVED.value
    assert order.payment_status == PaymentStatus.PENDING.value
    assert order.subtotal == Decimal("450.50")
    assert order.tax_amount == Decimal("81.09")
    assert order.total_amount == Decimal("531.59")
    assert {item.product_sku for item in order.items} == {"SKU-FAN-01", "SKU-GEY-01"}
    assert [(h.from_status, h.to_status) for h in order.status_history] == [(None, "PENDING")]

    assert await stock(seed.w1, seed.p1) == (10, 2)
    assert await stock(seed.w2, seed.p2) == (10, 1)
    assert await CartService(db).get_items(seed.buyer_id) == []


def test_line_amounts_round_half_up():
    assert line_amounts(Decimal("250.50"), 1) == (Decimal("250.50"), Decimal("45.09"))
    assert line_amounts(Decimal("0.25"), 1) == (Decimal("0.25"), Decimal("0.05"))


async def test_failed_line_releases_earlier_reservations(db, seed, actors, stock):
    cart = CartService(db)
    await cart.add_to_cart(actors.buyer, seed.p1, seed.w1, 5)
    await cart.add_to_cart(actors.buyer, seed.p2, seed.w2, 8)
    # Someone else takes half the water heaters after they were carted
    await InventoryService(db).reserve(seed.w2, seed.p2, 5)
    await db.commit()

    with pytest.raises(InsufficientInventoryError) as exc_info:
        await OrderService(db).create_order_from_cart(actors.buyer, seed.address_id)

    assert "Water Heater" in exc_info.value.message
    assert await stock(seed.w1, seed.p1) == (10, 0)
    assert await stock(seed.w2, seed.p2) == (10, 5)
    assert len(await cart.get_items(seed.buyer_id)) == 2
    _, total = await OrderService(db).list_orders(actors.admin)
    assert total == 0


async def test_empty_cart_cannot_be_ordered(db, seed, actors):
    with pytest.raises(ValidationError):
        await OrderService(db).create_order_from_cart(actors.buyer, seed.address_id)


async def test_delivery_address_must_belong_to_buyer(db, seed, actors):
    await CartService(db).add_to_cart(actors.buyer, seed.p1, seed.w1, 1)
    with pytest.raises(NotFoundError):
        await OrderService(db).create_order_from_cart(actors.buyer, seed.other_address_id)


async def test_buyer_cannot_order_for_someone_else(db, seed, actors):
    with pytest.raises(ForbiddenError):
        await OrderService(db).create_order_from_cart(
            actors.buyer, seed.other_address_id, buyer_id=seed.other_buyer_id
        )


async def test_confirm_commits_reservation(db, seed, actors, stock, place_order):
    order_id = await place_order([(seed.p1, seed.w1, 3)])
    assert await stock(seed.w1, seed.p1) == (10, 3)

    order = await OrderService(db).update_order_status(order_id, "confirmed", actors.ops, notes="Stock checked")

    assert order.status == OrderStatus.CONFIRMED.value
    assert order.inventory_state == InventoryState.COMMITTED.value
    assert order.confirmed_at is not None
    assert "Stock checked" in order.notes
    assert ("PENDING", "CONFIRMED") in {(h.from_status, h.to_status) for h in order.status_history}
    assert await stock(seed.w1, seed.p1) == (7, 0)


async def test_cancel_pending_releases_reservation(db, seed, actors, stock, place_order):
    order_id = await place_order([(seed.p1, seed.w1, 3)])

    order = await OrderService(db).update_order_status(order_id, OrderStatus.CANCELLED, actors.admin)

    assert order.status == OrderStatus.CANCELLED.value
    assert order.inventory_state == InventoryState.RELEASED.value
    assert order.cancelled_at is not None
    assert await stock(seed.w1, seed.p1) == (10, 0)


async def test_cancel_confirmed_restocks(db, seed, actors, stock, place_order):
    order_id = await place_order([(seed.p1, seed.w1, 3)])
    service = OrderService(db)
    await service.update_order_status(order_id, OrderStatus.CONFIRMED, actors.admin)
    await service.update_order_status(order_id, OrderStatus.PROCESSING, actors.admin)

    order = await service.update_order_status(order_id, OrderStatus.CANCELLED, actors.admin)

    assert order.inventory_state == InventoryState.RESTOCKED.value
    assert await stock(seed.w1, seed.p1) == (10, 0)


async def test_cancel_after_shipping_leaves_stock_alone(db, seed, actors, stock, place_order):
    order_id = await place_order([(seed.p1, seed.w1, 3)])
    service = OrderService(db)
    for status in (OrderStatus.CONFIRMED, OrderStatus.PROCESSING, OrderStatus.SHIPPED, OrderStatus.CANCELLED):
        order = await service.update_order_status(order_id, status, actors.admin)

    assert order.status == OrderStatus.CANCELLED.value
    assert order.inventory_state == InventoryState.COMMITTED.value
    assert await stock(seed.w1, seed.p1) == (7, 0)


async def test_cancelled_order_is_final(db, seed, actors, place_order):
    order_id = await place_order([(seed.p1, seed.w1, 1)])
    service = OrderService(db)
    await service.update_order_status(order_id, OrderStatus.CANCELLED, actors.admin)

    with pytest.raises(InvalidStatusTransitionError) as exc_info:
        await service.update_order_status(order_id, OrderStatus.CONFIRMED, actors.admin)
    assert "final state" in exc_info.value.message


async def test_manual_delivery_needs_delivered_consignments(db, seed, actors, place_order):
    order_id = await place_order([(seed.p1, seed.w1, 1)])
    service = OrderService(db)
    for status in (OrderStatus.CONFIRMED, OrderStatus.PROCESSING, OrderStatus.SHIPPED):
        await service.update_order_status(order_id, status, actors.admin)

    with pytest.raises(ConflictError):
        await service.update_order_status(order_id, OrderStatus.DELIVERED, actors.admin)

    order = await service.get_order(order_id, actors.admin)
    assert order.status == OrderStatus.SHIPPED.value


async def test_unknown_status_is_a_validation_error(db, seed, actors, place_order):
    order_id = await place_order([(seed.p1, seed.w1, 1)])
    with pytest.raises(ValidationError):
        await OrderService(db).update_order_status(order_id, "SHIPPING", actors.admin)


async def test_order_visibility_by_role(db, seed, actors, place_order):
    order_id = await place_order([(seed.p2, seed.w2, 1)])
    service = OrderService(db)

    assert (await service.get_order(order_id, actors.buyer)).id == order_id
    assert (await service.get_order(order_id, actors.admin)).id == order_id
    with pytest.raises(ForbiddenError):
        await service.get_order(order_id, actors.other_buyer)
    # Ops only operates W1
    with pytest.raises(ForbiddenError):
        await service.get_order(order_id, actors.ops)
    with pytest.raises(ForbiddenError):
        await service.update_order_status(order_id, OrderStatus.CONFIRMED, actors.ops)
    with pytest.raises(ForbiddenError):
        await service.update_order_status(order_id, OrderStatus.CONFIRMED, actors.buyer)


async def test_list_orders_is_scoped(db, seed, actors, place_order):
    mine = await place_order([(seed.p1, seed.w1, 1)])
    theirs = await place_order(
        [(seed.p2, seed.w2, 1)], actor=actors.other_buyer, address_id=seed.other_address_id
    )
    service = OrderService(db)

    orders, total = await service.list_orders(actors.buyer)
    assert total == 1 and orders[0].id == mine

    orders, total = await service.list_orders(actors.ops)
    assert total == 1 and orders[0].id == mine

    _, total = await service.list_orders(actors.admin)
    assert total == 2

    orders, _ = await service.list_orders(actors.admin, buyer_id=seed.other_buyer_id)
    assert [o.id for o in orders] == [theirs]

    orders, _ = await service.list_orders(actors.admin, warehouse_id=seed.w2)
    assert [o.id for o in orders] == [theirs]

    with pytest.raises(ForbiddenError):
        await service.list_orders(actors.buyer, buyer_id=seed.other_buyer_id)
    with pytest.raises(ForbiddenError):
        await service.list_orders(actors.driver)


async def test_list_orders_paginates(db, seed, actors, place_order):
    for _ in range(3):
        await place_order([(seed.p1, seed.w1, 1)])

    orders, total = await OrderService(db).list_orders(actors.buyer, page=2, limit=2, sort_by="order_number", sort_order="asc")

    assert total == 3
    assert len(orders) == 1
    assert orders[0].order_number.endswith("0003")


async def test_order_lookup_by_number(db, seed, actors, place_order):
    order_id = await place_order([(seed.p1, seed.w1, 1)])
    order = await OrderService(db).get_order(order_id, actors.buyer)

    found = await OrderService(db).get_order_by_number(order.order_number, actors.buyer)
    assert found.id == order_id
    with pytest.raises(NotFoundError):
        await OrderService(db).get_order_by_number("ORD0000000000", actors.admin)


async def test_payment_status_is_independent_of_order_status(db, seed, actors, place_order):
    order_id = await place_order([(seed.p1, seed.w1, 1)])
    service = OrderService(db)

    order = await service.update_payment_status(order_id, "PAID", actors.admin, payment_reference="UTR-8812")
    assert order.payment_status == PaymentStatus.PAID.value
    assert order.payment_reference == "UTR-8812"
    assert order.payment_date is not None
    assert order.status == OrderStatus.PENDING.value

    order = await service.update_payment_status(order_id, PaymentStatus.REFUNDED, actors.admin)
    assert order.payment_date is None


async def test_mark_paid_is_audited_as_system(db, seed, actors, place_order):
    order_id = await place_order([(seed.p1, seed.w1, 1)])

    await OrderService(db).mark_order_paid(order_id, payment_reference="GW-1")

    entry = (await db.execute(
        select(AuditLog).where(AuditLog.resource_id == order_id, AuditLog.action == "PAYMENT_UPDATE")
    )).scalar_one()
    assert entry.actor_role == "SYSTEM"
    assert entry.actor_id is None
    assert entry.new_values["payment_status"] == "PAID"
