from types import SimpleNamespace
import uuid

import pytest

from fulfillment.core.access_policy import (
    AccessPolicy,
    Actor,
    AdminPolicy,
    BuyerPolicy,
    DriverPolicy,
    OpsPolicy,
    SYSTEM_ACTOR,
    SystemPolicy,
    ensure,
    policy_for,
)
from fulfillment.core.exceptions import ForbiddenError


W1, W2 = uuid.uuid4(), uuid.uuid4()
BUYER, OTHER_BUYER, DRIVER = uuid.uuid4(), uuid.uuid4(), uuid.uuid4()

admin = Actor(id=uuid.uuid4(), role="ADMIN")
ops = Actor(id=uuid.uuid4(), role="OPS", warehouse_ids=frozenset({W1}))
buyer = Actor(id=BUYER, role="BUYER")
driver = Actor(id=DRIVER, role="DRIVER")


def make_order(buyer_id=BUYER, warehouses=(W1,)):
    return SimpleNamespace(id=uuid.uuid4(), buyer_id=buyer_id, warehouse_ids=list(warehouses))


def make_consignment(warehouse_id=W1, driver_id=DRIVER, buyer_id=BUYER):
    return SimpleNamespace(
        id=uuid.uuid4(),
        warehouse_id=warehouse_id,
        driver_id=driver_id,
        order=make_order(buyer_id, (warehouse_id,)),
    )


@pytest.mark.parametrize("actor,policy_class", [
    (admin, AdminPolicy),
    (ops, OpsPolicy),
    (buyer, BuyerPolicy),
    (driver, DriverPolicy),
    (SYSTEM_ACTOR, SystemPolicy),
    (Actor(id=uuid.uuid4(), role="AUDITOR"), AccessPolicy),
])
def test_policy_for_role(actor, policy_class):
    assert type(policy_for(actor)) is policy_class


def test_unknown_role_is_denied_everything():
    policy = policy_for(Actor(id=uuid.uuid4(), role="AUDITOR"))
    assert not policy.can_view_order(make_order())
    assert not policy.can_list_orders()
    assert not policy.can_view_consignment(make_consignment())


def test_admin_sees_everything_unscoped():
    policy = policy_for(admin)
    assert policy.can_view_order(make_order(OTHER_BUYER, (W2,)))
    assert policy.can_assign_driver(make_consignment(W2))
    assert policy.order_scope() is None
    assert policy.consignment_scope() is None


def test_ops_is_bound_to_assigned_warehouses():
    policy = policy_for(ops)
    assert policy.can_view_order(make_order(warehouses=(W1, W2)))
    assert not policy.can_view_order(make_order(warehouses=(W2,)))
    assert policy.can_update_consignment(make_consignment(W1), {"driver_id"})
    assert not policy.can_update_consignment(make_consignment(W2), {"notes"})
    assert policy.can_create_consignment(W1)
    assert not policy.can_create_consignment(W2)
    assert not policy.can_filter_by_buyer()
    assert policy.order_scope() is not None


def test_buyer_sees_only_own_orders_and_consignments():
    policy = policy_for(buyer)
    assert policy.can_view_order(make_order())
    decision = policy.can_view_order(make_order(OTHER_BUYER))
    assert not decision
    assert decision.reason == "You can only view your own orders"
    assert policy.can_view_consignment(make_consignment())
    assert not policy.can_view_consignment(make_consignment(buyer_id=OTHER_BUYER))
    assert not policy.can_update_consignment(make_consignment(), {"notes"})
    assert policy.can_manage_cart(BUYER)
    assert not policy.can_manage_cart(OTHER_BUYER)
    assert not policy.can_create_consignment(W1)


def test_driver_edits_only_status_date_and_notes():
    policy = policy_for(driver)
    mine = make_consignment()
    assert policy.can_update_consignment(mine, {"status", "notes", "actual_delivery_date"})

    decision = policy.can_update_consignment(mine, {"status", "driver_id"})
    assert not decision
    assert "driver_id" in decision.reason

    assert not policy.can_update_consignment(make_consignment(driver_id=uuid.uuid4()), {"status"})
    assert not policy.can_update_consignment(make_consignment(driver_id=None), {"status"})
    assert not policy.can_assign_driver(mine)
    assert not policy.can_cancel_consignment(mine)


def test_driver_location_is_self_only():
    policy = policy_for(driver)
    assert policy.can_update_driver_location(DRIVER)
    assert not policy.can_update_driver_location(uuid.uuid4())
    assert policy.can_view_driver_consignments(DRIVER)
    assert not policy.can_view_driver_consignments(uuid.uuid4())
    assert not policy.can_list_orders()


def test_ensure_raises_with_reason():
    ensure(policy_for(admin).can_list_orders())
    with pytest.raises(ForbiddenError) as exc_info:
        ensure(policy_for(driver).can_assign_driver(make_consignment()))
    assert exc_info.value.message == "Drivers cannot reassign consignments"
