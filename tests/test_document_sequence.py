from datetime import date

import pytest

from fulfillment.core.exceptions import ValidationError
from fulfillment.models.order import OrderStatus
from fulfillment.services.consignment_service import ConsignmentService
from fulfillment.services.document_sequence_service import (
    DocumentSequenceService,
    format_document_number,
)
from fulfillment.services.order_service import OrderService


def test_format_pads_the_counter():
    assert format_document_number("ORD", date(2026, 1, 5), 7) == "ORD2601050007"
    assert format_document_number("CON", date(2026, 12, 31), 12345) == "CON26123112345"


async def test_counter_is_per_prefix_and_day(db, seed):
    sequences = DocumentSequenceService(db)
    day = date(2026, 10, 19)

    assert await sequences.get_next_number("ORD", day) == "ORD2610190001"
    assert await sequences.get_next_number("ORD", day) == "ORD2610190002"
    assert await sequences.get_next_number("CON", day) == "CON2610190001"
    assert await sequences.get_next_number("ORD", date(2026, 10, 20)) == "ORD2610200001"
    assert await sequences.get_next_number("ORD", day) == "ORD2610190003"


async def test_unknown_prefix(db, seed):
    with pytest.raises(ValidationError):
        await DocumentSequenceService(db).next_value("INV")


async def test_consignment_numbers_reset_the_next_day(db, seed, actors, place_order):
    orders = OrderService(db)
    consignments = ConsignmentService(db)
    order_ids = []
    for _ in range(3):
        order_id = await place_order([(seed.p1, seed.w1, 1)])
        await orders.update_order_status(order_id, OrderStatus.CONFIRMED, actors.admin)
        order_ids.append(order_id)

    first = await consignments.create_consignment(actors.admin, order_ids[0], seed.w1, on_date=date(2026, 10, 19))
    second = await consignments.create_consignment(actors.admin, order_ids[1], seed.w1, on_date=date(2026, 10, 19))
    next_day = await consignments.create_consignment(actors.admin, order_ids[2], seed.w1, on_date=date(2026, 10, 20))

    assert first.consignment_number == "CON2610190001"
    assert second.consignment_number == "CON2610190002"
    assert next_day.consignment_number == "CON2610200001"
