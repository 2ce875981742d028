"""
Access policy for the fulfillment pipeline.

One policy object per role, built from the authenticated Actor. Services ask
the policy pure questions (``can_*``) and get an AccessDecision back, then
call ``ensure`` to turn a denial into ForbiddenError. List endpoints use the
``*_scope`` clauses so a role only ever sees rows it is entitled to.
"""
import uuid
from dataclasses import dataclass, field
from typing import FrozenSet, Iterable, Optional

from sqlalchemy import ColumnElement, false, select

from fulfillment.core.enum_utils import get_enum_value
from fulfillment.core.exceptions import ForbiddenError
from fulfillment.models.consignment import Consignment
from fulfillment.models.order import Order, OrderItem
from fulfillment.models.user import UserRole


# Fields a driver may change on a consignment assigned to them.
DRIVER_EDITABLE_FIELDS: FrozenSet[str] = frozenset({"status", "actual_delivery_date", "notes"})


@dataclass(frozen=True)
class Actor:
    """The authenticated caller, as resolved from the bearer token."""
    id: Optional[uuid.UUID]
    role: str
    warehouse_ids: FrozenSet[uuid.UUID] = field(default_factory=frozenset)


# Internal callers (payment callbacks, auto-completion) act as this.
SYSTEM_ROLE = "SYSTEM"
SYSTEM_ACTOR = Actor(id=None, role=SYSTEM_ROLE)


@dataclass(frozen=True)
class AccessDecision:
    allowed: bool
    reason: str = ""

    def __bool__(self) -> bool:
        return self.allowed


ALLOW = AccessDecision(True)


def deny(reason: str) -> AccessDecision:
    return AccessDecision(False, reason)


def ensure(decision: AccessDecision) -> None:
    """Raise ForbiddenError when the decision is a denial."""
    if not decision.allowed:
        raise ForbiddenError(decision.reason or "Access denied")


class AccessPolicy:
    """Base policy: denies everything. Role policies open up what they may do."""

    role: str = ""

    def __init__(self, actor: Actor):
        self.actor = actor

    # Orders
    def can_view_order(self, order: Order) -> AccessDecision:
        return deny("You do not have access to this order")

    def can_list_orders(self) -> AccessDecision:
        return deny(f"{self.role} users cannot list orders")

    def can_change_order(self, order: Order) -> AccessDecision:
        return deny("Only admin or operations staff can change order status")

    def can_filter_by_buyer(self) -> AccessDecision:
        return deny("Only admins can filter orders by buyer")

    def order_scope(self) -> Optional[ColumnElement]:
        return false()

    # Cart
    def can_manage_cart(self, buyer_id: uuid.UUID) -> AccessDecision:
        return deny("You can only manage your own cart")

    def can_create_order_for(self, buyer_id: uuid.UUID) -> AccessDecision:
        return deny("You can only place orders for yourself")

    # Consignments
    def can_view_consignment(self, consignment: Consignment) -> AccessDecision:
        return deny("You do not have access to this consignment")

    def can_create_consignment(self, warehouse_id: uuid.UUID) -> AccessDecision:
        return deny("Only admin or operations staff can create consignments")

    def can_update_consignment(self, consignment: Consignment, fields: Iterable[str]) -> AccessDecision:
        return deny("You cannot update this consignment")

    def can_assign_driver(self, consignment: Consignment) -> AccessDecision:
        return deny("Only admin or operations staff can assign drivers")

    def can_cancel_consignment(self, consignment: Consignment) -> AccessDecision:
        return deny("Only admin or operations staff can cancel consignments")

    def can_filter_consignments(self) -> AccessDecision:
        return deny("Only admin or operations staff can filter by driver or warehouse")

    def consignment_scope(self) -> Optional[ColumnElement]:
        return false()

    # Warehouses and drivers
    def can_operate_warehouse(self, warehouse_id: uuid.UUID) -> AccessDecision:
        return deny("You do not have access to this warehouse")

    def can_update_driver_location(self, driver_id: uuid.UUID) -> AccessDecision:
        return deny("You can only update your own location")

    def can_view_driver_consignments(self, driver_id: uuid.UUID) -> AccessDecision:
        return deny("You can only view your own consignments")


class AdminPolicy(AccessPolicy):
    role = UserRole.ADMIN.value

    def can_view_order(self, order):
        return ALLOW

    def can_list_orders(self):
        return ALLOW

    def can_change_order(self, order):
        return ALLOW

    def can_filter_by_buyer(self):
        return ALLOW

    def order_scope(self):
        return None

    def can_manage_cart(self, buyer_id):
        return ALLOW

    def can_create_order_for(self, buyer_id):
        return ALLOW

    def can_view_consignment(self, consignment):
        return ALLOW

    def can_create_consignment(self, warehouse_id):
        return ALLOW

    def can_update_consignment(self, consignment, fields):
        return ALLOW

    def can_assign_driver(self, consignment):
        return ALLOW

    def can_cancel_consignment(self, consignment):
        return ALLOW

    def can_filter_consignments(self):
        return ALLOW

    def consignment_scope(self):
        return None

    def can_operate_warehouse(self, warehouse_id):
        return ALLOW

    def can_update_driver_location(self, driver_id):
        return ALLOW

    def can_view_driver_consignments(self, driver_id):
        return ALLOW


class SystemPolicy(AdminPolicy):
    """Internal callers. Same rights as an admin, recorded under their own role."""

    role = SYSTEM_ROLE


class OpsPolicy(AccessPolicy):
    """Operations staff: full pipeline rights inside their assigned warehouses."""

    role = UserRole.OPS.value

    def __init__(self, actor: Actor):
        super().__init__(actor)
        self.warehouse_ids = frozenset(actor.warehouse_ids)

    def _in_scope(self, warehouse_ids: Iterable[uuid.UUID]) -> bool:
        return any(w in self.warehouse_ids for w in warehouse_ids)

    def can_view_order(self, order):
        if self._in_scope(order.warehouse_ids):
            return ALLOW
        return deny("This order has no items in your warehouses")

    def can_list_orders(self):
        return ALLOW

    def can_change_order(self, order):
        return self.can_view_order(order)

    def order_scope(self):
        return Order.id.in_(
            select(OrderItem.order_id).where(OrderItem.warehouse_id.in_(list(self.warehouse_ids)))
        )

    def can_view_consignment(self, consignment):
        if consignment.warehouse_id in self.warehouse_ids:
            return ALLOW
        return deny("This consignment is not from your warehouses")

    def can_create_consignment(self, warehouse_id):
        return self.can_operate_warehouse(warehouse_id)

    def can_update_consignment(self, consignment, fields):
        return self.can_view_consignment(consignment)

    def can_assign_driver(self, consignment):
        return self.can_view_consignment(consignment)

    def can_cancel_consignment(self, consignment):
        return self.can_view_consignment(consignment)

    def can_filter_consignments(self):
        return ALLOW

    def consignment_scope(self):
        return Consignment.warehouse_id.in_(list(self.warehouse_ids))

    def can_operate_warehouse(self, warehouse_id):
        if warehouse_id in self.warehouse_ids:
            return ALLOW
        return deny("You are not assigned to this warehouse")

    def can_update_driver_location(self, driver_id):
        return ALLOW

    def can_view_driver_consignments(self, driver_id):
        return ALLOW


class BuyerPolicy(AccessPolicy):
    role = UserRole.BUYER.value

    def _is_self(self, buyer_id) -> bool:
        return buyer_id == self.actor.id

    def can_view_order(self, order):
        if self._is_self(order.buyer_id):
            return ALLOW
        return deny("You can only view your own orders")

    def can_list_orders(self):
        return ALLOW

    def order_scope(self):
        return Order.buyer_id == self.actor.id

    def can_manage_cart(self, buyer_id):
        if self._is_self(buyer_id):
            return ALLOW
        return super().can_manage_cart(buyer_id)

    def can_create_order_for(self, buyer_id):
        if self._is_self(buyer_id):
            return ALLOW
        return super().can_create_order_for(buyer_id)

    def can_view_consignment(self, consignment):
        if self._is_self(consignment.order.buyer_id):
            return ALLOW
        return deny("You can only view consignments of your own orders")

    def can_update_consignment(self, consignment, fields):
        return deny("Buyers cannot update consignments")

    def consignment_scope(self):
        return Consignment.order_id.in_(select(Order.id).where(Order.buyer_id == self.actor.id))


class DriverPolicy(AccessPolicy):
    role = UserRole.DRIVER.value

    def _is_assigned(self, consignment) -> bool:
        return consignment.driver_id is not None and consignment.driver_id == self.actor.id

    def can_view_consignment(self, consignment):
        if self._is_assigned(consignment):
            return ALLOW
        return deny("You can only view consignments assigned to you")

    def can_update_consignment(self, consignment, fields):
        if not self._is_assigned(consignment):
            return deny("You can only update consignments assigned to you")
        blocked = sorted(set(fields) - DRIVER_EDITABLE_FIELDS)
        if blocked:
            return deny(f"Drivers can only update status, delivery date and notes (not {', '.join(blocked)})")
        return ALLOW

    def can_assign_driver(self, consignment):
        return deny("Drivers cannot reassign consignments")

    def consignment_scope(self):
        return Consignment.driver_id == self.actor.id

    def can_update_driver_location(self, driver_id):
        if driver_id == self.actor.id:
            return ALLOW
        return super().can_update_driver_location(driver_id)

    def can_view_driver_consignments(self, driver_id):
        if driver_id == self.actor.id:
            return ALLOW
        return super().can_view_driver_consignments(driver_id)


POLICIES = {
    UserRole.ADMIN.value: AdminPolicy,
    UserRole.OPS.value: OpsPolicy,
    UserRole.BUYER.value: BuyerPolicy,
    UserRole.DRIVER.value: DriverPolicy,
    SYSTEM_ROLE: SystemPolicy,
}


def policy_for(actor: Actor) -> AccessPolicy:
    """Build the policy for an actor's role. Unknown roles get the deny-all base."""
    policy_class = POLICIES.get(get_enum_value(actor.role), AccessPolicy)
    return policy_class(actor)
