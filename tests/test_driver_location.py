from datetime import date
from decimal import Decimal
import logging

import pytest
from sqlalchemy import select

from fulfillment.core.exceptions import ForbiddenError, NotFoundError, ValidationError
from fulfillment.models.consignment import ConsignmentEvent, ConsignmentStatus
from fulfillment.models.order import OrderStatus
from fulfillment.models.user import DriverProfile
from fulfillment.services.consignment_service import ConsignmentService, DriverService
from fulfillment.services.order_service import OrderService


@pytest.fixture
def consignment_for(db, seed, actors, place_order):
    """Create a consignment from W1 for the driver and advance it to `status`."""

    async def _make(status=ConsignmentStatus.ASSIGNED, driver_id=None, estimated=None):
        order_id = await place_order([(seed.p1, seed.w1, 1)])
        await OrderService(db).update_order_status(order_id, OrderStatus.CONFIRMED, actors.admin)
        service = ConsignmentService(db)
        consignment = await service.create_consignment(
            actors.admin, order_id, seed.w1,
            driver_id=driver_id or seed.driver_id,
            estimated_delivery_date=estimated,
        )
        consignment_id = consignment.id
        if status in (ConsignmentStatus.PICKED_UP, ConsignmentStatus.IN_TRANSIT):
            await service.mark_picked_up(consignment_id, actors.admin)
        if status == ConsignmentStatus.IN_TRANSIT:
            await service.mark_in_transit(consignment_id, actors.admin)
        return consignment_id

    return _make


async def _location_events(db, consignment_id):
    result = await db.execute(
        select(ConsignmentEvent).where(
            ConsignmentEvent.consignment_id == consignment_id,
            ConsignmentEvent.latitude.is_not(None),
        )
    )
    return list(result.scalars().all())


async def test_location_tags_only_consignments_on_the_road(db, seed, actors, consignment_for):
    assigned = await consignment_for(ConsignmentStatus.ASSIGNED)
    picked_up = await consignment_for(ConsignmentStatus.PICKED_UP)
    in_transit = await consignment_for(ConsignmentStatus.IN_TRANSIT)

    result = await DriverService(db).update_location(
        seed.driver_id, 18.5204, 73.8567, actors.driver, address="Near Shivaji Nagar"
    )

    assert result.consignments_tagged == 2
    assert result.consignments_skipped == 0
    assert await _location_events(db, assigned) == []
    events = await _location_events(db, picked_up) + await _location_events(db, in_transit)
    assert {e.notes for e in events} == {"Location updated: Near Shivaji Nagar"}
    assert {e.status for e in events} == {"PICKED_UP", "IN_TRANSIT"}

    profile = (await db.execute(
        select(DriverProfile).where(DriverProfile.user_id == seed.driver_id)
    )).scalar_one()
    assert profile.current_latitude == Decimal("18.5204")
    assert profile.location_updated_at is not None


async def test_failed_event_is_logged_and_skipped(db, seed, actors, consignment_for, monkeypatch, caplog):
    first = await consignment_for(ConsignmentStatus.IN_TRANSIT)
    second = await consignment_for(ConsignmentStatus.IN_TRANSIT)
    service = DriverService(db)
    original = service._location_event

    def flaky_event(consignment, latitude, longitude, address, actor):
        event = original(consignment, latitude, longitude, address, actor)
        if consignment.id == first:
            event.status = None
        return event

    monkeypatch.setattr(service, "_location_event", flaky_event)

    with caplog.at_level(logging.ERROR, logger="fulfillment.services.consignment_service"):
        result = await service.update_location(seed.driver_id, 19.07, 72.87, actors.driver)

    assert result.consignments_tagged == 1
    assert result.consignments_skipped == 1
    assert "Failed to record location" in caplog.text
    assert await _location_events(db, first) == []
    assert len(await _location_events(db, second)) == 1

    profile = (await db.execute(
        select(DriverProfile).where(DriverProfile.user_id == seed.driver_id)
    )).scalar_one()
    assert profile.current_longitude == Decimal("72.87")


@pytest.mark.parametrize("latitude,longitude", [(91, 0), (-90.5, 0), (0, 180.1), (0, -181)])
async def test_coordinates_are_range_checked(db, seed, actors, latitude, longitude):
    with pytest.raises(ValidationError):
        await DriverService(db).update_location(seed.driver_id, latitude, longitude, actors.driver)


async def test_location_updates_are_self_service(db, seed, actors):
    service = DriverService(db)
    with pytest.raises(ForbiddenError):
        await service.update_location(seed.other_driver_id, 18.5, 73.8, actors.driver)
    with pytest.raises(NotFoundError):
        await service.update_location(seed.buyer_id, 18.5, 73.8, actors.admin)

    result = await service.update_location(seed.driver_id, 18.5, 73.8, actors.ops)
    assert result.consignments_tagged == 0


async def test_driver_work_list(db, seed, actors, consignment_for):
    later = await consignment_for(estimated=date(2026, 10, 25))
    sooner = await consignment_for(estimated=date(2026, 10, 21))
    undated = await consignment_for()
    done = await consignment_for(ConsignmentStatus.IN_TRANSIT)
    await ConsignmentService(db).mark_delivered(done, actors.driver)
    await consignment_for(driver_id=seed.other_driver_id)

    service = DriverService(db)
    work = await service.list_driver_consignments(seed.driver_id, actors.driver)
    assert [c.id for c in work] == [sooner, later, undated]

    everything = await service.list_driver_consignments(seed.driver_id, actors.driver, include_completed=True)
    assert done in {c.id for c in everything}

    with pytest.raises(ForbiddenError):
        await service.list_driver_consignments(seed.driver_id, actors.other_driver)


async def test_ops_only_see_and_tag_their_own_warehouses(db, seed, actors, place_order, consignment_for):
    order_id = await place_order([(seed.p1, seed.w2, 1)])
    await OrderService(db).update_order_status(order_id, OrderStatus.CONFIRMED, actors.admin)
    consignments = ConsignmentService(db)
    other_warehouse = (await consignments.create_consignment(
        actors.admin, order_id, seed.w2, driver_id=seed.driver_id
    )).id
    await consignments.mark_picked_up(other_warehouse, actors.admin)
    own_warehouse = await consignment_for(ConsignmentStatus.PICKED_UP)

    service = DriverService(db)
    visible = await service.list_driver_consignments(seed.driver_id, actors.ops)
    assert [c.id for c in visible] == [own_warehouse]

    result = await service.update_location(seed.driver_id, 18.5, 73.8, actors.ops)
    assert result.consignments_tagged == 1
    assert await _location_events(db, other_warehouse) == []
    assert len(await _location_events(db, own_warehouse)) == 1

    everything = await service.list_driver_consignments(seed.driver_id, actors.admin)
    assert {c.id for c in everything} == {own_warehouse, other_warehouse}
