import random

import pytest

from fulfillment.core.exceptions import (
    InsufficientInventoryError,
    InventoryLedgerError,
    NotFoundError,
    ValidationError,
)
from fulfillment.services.inventory_service import InventoryService


async def test_reserve_commit_release_move_the_right_columns(db, seed, stock):
    ledger = InventoryService(db)

    await ledger.reserve(seed.w1, seed.p1, 4)
    assert await stock(seed.w1, seed.p1) == (10, 4)
    assert await ledger.available(seed.w1, seed.p1) == 6

    await ledger.commit(seed.w1, seed.p1, 3)
    assert await stock(seed.w1, seed.p1) == (7, 1)

    await ledger.release(seed.w1, seed.p1, 1)
    assert await stock(seed.w1, seed.p1) == (7, 0)

    await ledger.restock(seed.w1, seed.p1, 3)
    assert await stock(seed.w1, seed.p1) == (10, 0)


async def test_reserve_more_than_available_changes_nothing(db, seed, stock):
    ledger = InventoryService(db)
    await ledger.reserve(seed.w1, seed.p1, 8)

    with pytest.raises(InsufficientInventoryError) as exc_info:
        await ledger.reserve(seed.w1, seed.p1, 3)

    assert exc_info.value.requested == 3
    assert exc_info.value.available == 2
    assert await stock(seed.w1, seed.p1) == (10, 8)


async def test_release_and_commit_refuse_unreserved_units(db, seed, stock):
    ledger = InventoryService(db)
    await ledger.reserve(seed.w1, seed.p1, 2)

    with pytest.raises(InventoryLedgerError):
        await ledger.release(seed.w1, seed.p1, 3)
    with pytest.raises(InventoryLedgerError):
        await ledger.commit(seed.w1, seed.p1, 3)

    assert await stock(seed.w1, seed.p1) == (10, 2)


async def test_double_release_is_rejected(db, seed, stock):
    ledger = InventoryService(db)
    await ledger.reserve(seed.w1, seed.p1, 5)
    await ledger.release(seed.w1, seed.p1, 5)

    with pytest.raises(InventoryLedgerError):
        await ledger.release(seed.w1, seed.p1, 5)
    assert await stock(seed.w1, seed.p1) == (10, 0)


@pytest.mark.parametrize("quantity", [0, -1])
async def test_non_positive_quantities_are_invalid(db, seed, quantity):
    ledger = InventoryService(db)
    with pytest.raises(ValidationError):
        await ledger.reserve(seed.w1, seed.p1, quantity)
    with pytest.raises(ValidationError):
        await ledger.release(seed.w1, seed.p1, quantity)


async def test_unstocked_product_is_not_found(db, seed):
    # P2 is only stocked in W2
    with pytest.raises(NotFoundError):
        await InventoryService(db).reserve(seed.w1, seed.p2, 1)
    assert await InventoryService(db).available(seed.w1, seed.p2) == 0


async def test_receive_creates_then_adds(db, seed, stock):
    ledger = InventoryService(db)

    record = await ledger.receive(seed.w1, seed.p2, 4)
    assert (record.quantity, record.reserved_quantity) == (4, 0)

    await ledger.receive(seed.w1, seed.p2, 6)
    assert await stock(seed.w1, seed.p2) == (10, 0)


async def test_reserved_stays_within_bounds_for_any_sequence(db, seed, stock):
    ledger = InventoryService(db)
    rng = random.Random(20261019)
    operations = [ledger.reserve, ledger.commit, ledger.release]

    for _ in range(200):
        operation = rng.choice(operations)
        try:
            await operation(seed.w1, seed.p1, rng.randint(1, 4))
        except (InsufficientInventoryError, InventoryLedgerError):
            pass
        quantity, reserved = await stock(seed.w1, seed.p1)
        assert 0 <= reserved <= quantity
        if quantity == 0:
            await ledger.restock(seed.w1, seed.p1, 10)
