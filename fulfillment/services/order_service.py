from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple
from datetime import date, datetime, timezone
from decimal import Decimal, ROUND_HALF_UP
import uuid
import logging

from sqlalchemy import select, func, update, or_
from sqlalchemy.orm import selectinload
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.exc import IntegrityError

from fulfillment.config import settings
from fulfillment.core.access_policy import Actor, SYSTEM_ACTOR, ensure, policy_for
from fulfillment.core.enum_utils import get_enum_value, to_enum
from fulfillment.core.exceptions import (
    ConflictError,
    FulfillmentError,
    InsufficientInventoryError,
    NotFoundError,
    ValidationError,
)
from fulfillment.core.state_machines import (
    CONSIGNMENT_STATE_MACHINE,
    ORDER_AUTO_COMPLETE_FROM,
    ORDER_STATE_MACHINE,
    transition_label,
)
from fulfillment.models.consignment import Consignment, ConsignmentEvent, ConsignmentStatus
from fulfillment.models.order import (
    Order, OrderItem, OrderStatus, OrderStatusHistory,
    PaymentStatus, PaymentMethod, InventoryState,
)
from fulfillment.services.audit_service import AuditService
from fulfillment.services.cart_service import CartService
from fulfillment.services.catalog_service import CatalogService
from fulfillment.services.document_sequence_service import DocumentSequenceService
from fulfillment.services.inventory_service import InventoryService

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")

ORDER_SORT_FIELDS = {"created_at", "updated_at", "total_amount", "order_number"}

# Column stamped when an order enters a state
STATUS_TIMESTAMPS: Dict[str, str] = {
    OrderStatus.CONFIRMED.value: "confirmed_at",
    OrderStatus.CANCELLED.value: "cancelled_at",
    OrderStatus.DELIVERED.value: "delivered_at",
}


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def append_note(existing: Optional[str], note: Optional[str]) -> Optional[str]:
    """Notes accumulate, one entry per line."""
    if not note:
        return existing
    return f"{existing}\n{note}" if existing else note


def clamp_pagination(page: int, limit: int) -> Tuple[int, int]:
    page = max(page or 1, 1)
    limit = min(max(limit or settings.DEFAULT_PAGE_SIZE, 1), settings.MAX_PAGE_SIZE)
    return page, limit


def line_amounts(unit_price: Decimal, quantity: int) -> Tuple[Decimal, Decimal]:
    """(line_total, tax) for one order line, each rounded to the paisa."""
    line_total = (Decimal(unit_price) * quantity).quantize(CENT, rounding=ROUND_HALF_UP)
    tax = (line_total * settings.TAX_RATE / Decimal("100")).quantize(CENT, rounding=ROUND_HALF_UP)
    return line_total, tax


TransitionHook = Callable[[Order, str, Actor], Awaitable[None]]


class OrderService:
    """Order lifecycle: creation from cart, status transitions, payment status, queries."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.inventory = InventoryService(db)
        self.catalog = CatalogService(db)
        self.sequences = DocumentSequenceService(db)
        self.audit = AuditService(db)

        # Post-transition hooks, run inside the status write's transaction
        self._entry_hooks: Dict[str, List[TransitionHook]] = {
            OrderStatus.CONFIRMED.value: [self._commit_inventory],
            OrderStatus.CANCELLED.value: [self._return_inventory, self._cancel_open_consignments],
        }

    # ==================== QUERIES ====================

    async def _load_order(self, order_id: uuid.UUID) -> Order:
        stmt = (
            select(Order)
            .options(
                selectinload(Order.items),
                selectinload(Order.status_history),
                selectinload(Order.consignments),
                selectinload(Order.delivery_address),
                selectinload(Order.buyer),
            )
            .where(Order.id == order_id)
            .execution_options(populate_existing=True)
        )
        order = (await self.db.execute(stmt)).scalar_one_or_none()
        if order is None:
            raise NotFoundError("Order", order_id)
        return order

    async def get_order(self, order_id: uuid.UUID, actor: Actor) -> Order:
        order = await self._load_order(order_id)
        ensure(policy_for(actor).can_view_order(order))
        return order

    async def get_order_by_number(self, order_number: str, actor: Actor) -> Order:
        order_id = (await self.db.execute(
            select(Order.id).where(Order.order_number == order_number)
        )).scalar_one_or_none()
        if order_id is None:
            raise NotFoundError("Order", order_number)
        return await self.get_order(order_id, actor)

    async def list_orders(
        self,
        actor: Actor,
        page: int = 1,
        limit: int = 10,
        status: Optional[str] = None,
        payment_status: Optional[str] = None,
        buyer_id: Optional[uuid.UUID] = None,
        warehouse_id: Optional[uuid.UUID] = None,
        date_from: Optional[datetime] = None,
        date_to: Optional[datetime] = None,
        search: Optional[str] = None,
        sort_by: str = "created_at",
        sort_order: str = "desc",
    ) -> Tuple[List[Order], int]:
        """Get paginated orders visible to the actor, with filters."""
        policy = policy_for(actor)
        ensure(policy.can_list_orders())
        if buyer_id:
            ensure(policy.can_filter_by_buyer())

        page, limit = clamp_pagination(page, limit)

        filters = []
        scope = policy.order_scope()
        if scope is not None:
            filters.append(scope)
        if status:
            filters.append(Order.status == get_enum_value(status))
        if payment_status:
            filters.append(Order.payment_status == get_enum_value(payment_status))
        if buyer_id:
            filters.append(Order.buyer_id == buyer_id)
        if warehouse_id:
            filters.append(Order.id.in_(
                select(OrderItem.order_id).where(OrderItem.warehouse_id == warehouse_id)
            ))
        if date_from:
            filters.append(Order.created_at >= date_from)
        if date_to:
            filters.append(Order.created_at <= date_to)
        if search:
            pattern = f"%{search}%"
            filters.append(or_(Order.order_number.ilike(pattern), Order.notes.ilike(pattern)))

        count_stmt = select(func.count(Order.id)).where(*filters)
        total = (await self.db.execute(count_stmt)).scalar() or 0

        if sort_by not in ORDER_SORT_FIELDS:
            sort_by = "created_at"
        sort_column = getattr(Order, sort_by)
        sort_column = sort_column.asc() if sort_order == "asc" else sort_column.desc()

        stmt = (
            select(Order)
            .options(selectinload(Order.items))
            .where(*filters)
            .order_by(sort_column)
            .offset((page - 1) * limit)
            .limit(limit)
            .execution_options(populate_existing=True)
        )
        orders = (await self.db.execute(stmt)).scalars().all()
        return list(orders), total

    # ==================== CREATION ====================

    async def create_order_from_cart(
        self,
        actor: Actor,
        delivery_address_id: uuid.UUID,
        buyer_id: Optional[uuid.UUID] = None,
        payment_method: str = PaymentMethod.COD.value,
        notes: Optional[str] = None,
        requested_delivery_date: Optional[date] = None,
        on_date: Optional[date] = None,
    ) -> Order:
        """
        Turn the buyer's cart into a PENDING order.

        Prices are snapshotted from the catalog now, every line is reserved,
        and the cart is emptied, all in one transaction. If any line cannot
        be reserved the whole thing rolls back, releasing earlier lines.
        """
        buyer_id = buyer_id or actor.id
        ensure(policy_for(actor).can_create_order_for(buyer_id))
        method_enum = to_enum(payment_method, PaymentMethod)
        if method_enum is None:
            raise ValidationError(f"Unknown payment method: {payment_method}")

        await self.catalog.get_active_buyer(buyer_id)
        await self.catalog.get_buyer_address(delivery_address_id, buyer_id)

        cart_items = await CartService(self.db).get_items(buyer_id)
        if not cart_items:
            raise ValidationError("Cart is empty")

        lines = []
        for item in cart_items:
            product = item.product
            if not product.is_active:
                raise ValidationError(f"Product {product.name} is no longer available")
            if item.quantity < product.moq:
                raise ValidationError(f"Minimum order quantity for {product.name} is {product.moq}")
            line_total, tax = line_amounts(product.price, item.quantity)
            lines.append({
                "product_id": product.id,
                "warehouse_id": item.warehouse_id,
                "product_name": product.name,
                "product_sku": product.sku,
                "quantity": item.quantity,
                "unit_price": product.price,
                "line_total": line_total,
                "tax_amount": tax,
            })

        subtotal = sum((line["line_total"] for line in lines), Decimal("0"))
        tax_amount = sum((line["tax_amount"] for line in lines), Decimal("0"))

        try:
            for line in lines:
                try:
                    await self.inventory.reserve(line["warehouse_id"], line["product_id"], line["quantity"])
                except InsufficientInventoryError as e:
                    raise InsufficientInventoryError(
                        e.warehouse_id, e.product_id, e.requested,
                        available=e.available, product_name=line["product_name"],
                    ) from e

            order_number = await self.sequences.get_next_number("ORD", on_date)
            order = Order(
                order_number=order_number,
                buyer_id=buyer_id,
                delivery_address_id=delivery_address_id,
                status=OrderStatus.PENDING.value,
                inventory_state=InventoryState.RESERVED.value,
                payment_method=method_enum.value,
                payment_status=PaymentStatus.PENDING.value,
                subtotal=subtotal,
                tax_amount=tax_amount,
                total_amount=subtotal + tax_amount,
                notes=notes,
                requested_delivery_date=requested_delivery_date,
            )
            order.items = [OrderItem(**line) for line in lines]
            self.db.add(order)
            await self.db.flush()

            self.db.add(OrderStatusHistory(
                order_id=order.id,
                from_status=None,
                to_status=OrderStatus.PENDING.value,
                changed_by=actor.id,
                notes="Order placed",
            ))
            await CartService(self.db).delete_items(buyer_id)

            await self.audit.log_create("ORDER", order.id, actor, {
                "order_number": order_number,
                "buyer_id": buyer_id,
                "total_amount": order.total_amount,
                "items": len(lines),
            })
            order_id = order.id
            await self.db.commit()
        except FulfillmentError:
            await self.db.rollback()
            raise
        except IntegrityError as e:
            await self.db.rollback()
            logger.error(f"Database integrity error creating order: {e}")
            raise ConflictError("Order could not be created, please retry") from e

        logger.info(f"Order {order_number} created for buyer {buyer_id}: {len(lines)} lines, total {subtotal + tax_amount}")
        return await self._load_order(order_id)

    # ==================== STATUS TRANSITIONS ====================

    async def update_order_status(
        self,
        order_id: uuid.UUID,
        new_status: str,
        actor: Actor,
        notes: Optional[str] = None,
    ) -> Order:
        """Move an order along the transition table and run the entry hooks."""
        status_enum = to_enum(new_status, OrderStatus)
        if status_enum is None:
            raise ValidationError(f"Unknown order status: {new_status}")
        target = status_enum.value

        order = await self._load_order(order_id)
        ensure(policy_for(actor).can_change_order(order))
        ORDER_STATE_MACHINE.validate_transition(order.status, target)

        if target == OrderStatus.DELIVERED.value:
            self._ensure_consignments_delivered(order)

        try:
            await self._apply_transition(order, target, actor, notes)
            await self.db.commit()
        except FulfillmentError:
            await self.db.rollback()
            raise

        return await self._load_order(order_id)

    def _ensure_consignments_delivered(self, order: Order) -> None:
        if not order.consignments:
            raise ConflictError("Order cannot be delivered before it has consignments")
        pending = [c.consignment_number for c in order.consignments if c.status != ConsignmentStatus.DELIVERED.value]
        if pending:
            raise ConflictError(
                f"Order cannot be delivered while consignments are outstanding: {', '.join(pending)}"
            )

    async def _apply_transition(self, order: Order, target: str, actor: Actor, notes: Optional[str]) -> None:
        """
        Write the new status with a compare-and-set on the current one, record
        history, then run the hooks for the target state. Caller commits.
        """
        previous = order.status
        now = utcnow()

        values: Dict[str, Any] = {"status": target, "updated_at": now}
        if target in STATUS_TIMESTAMPS:
            values[STATUS_TIMESTAMPS[target]] = now
        if notes:
            values["notes"] = append_note(order.notes, notes)

        result = await self.db.execute(
            update(Order)
            .where(Order.id == order.id, Order.status == previous)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            raise ConflictError(
                f"Order {order.order_number} was changed by another request, reload and retry",
                current_status=previous,
            )

        self.db.add(OrderStatusHistory(
            order_id=order.id,
            from_status=previous,
            to_status=target,
            changed_by=actor.id,
            notes=notes,
        ))

        for hook in self._entry_hooks.get(target, []):
            await hook(order, previous, actor)

        await self.audit.log_update(
            "ORDER", order.id, actor,
            {"status": previous},
            {"status": target, "notes": notes},
            action="STATUS_CHANGE",
        )
        logger.info(f"Order {order.order_number}: {transition_label(ORDER_STATE_MACHINE, previous, target)}")

    async def _set_inventory_state(self, order: Order, expected: str, new_state: str) -> None:
        result = await self.db.execute(
            update(Order)
            .where(Order.id == order.id, Order.inventory_state == expected)
            .values(inventory_state=new_state)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            raise ConflictError(f"Inventory for order {order.order_number} was changed by another request")

    async def _commit_inventory(self, order: Order, previous: str, actor: Actor) -> None:
        if order.inventory_state != InventoryState.RESERVED.value:
            logger.warning(f"Order {order.order_number} confirmed with inventory {order.inventory_state}, nothing to commit")
            return
        for item in order.items:
            await self.inventory.commit(item.warehouse_id, item.product_id, item.quantity)
        await self._set_inventory_state(order, InventoryState.RESERVED.value, InventoryState.COMMITTED.value)

    async def _return_inventory(self, order: Order, previous: str, actor: Actor) -> None:
        """Hand back what the ledger holds for a cancelled order."""
        state = order.inventory_state
        if state == InventoryState.RESERVED.value:
            for item in order.items:
                await self.inventory.release(item.warehouse_id, item.product_id, item.quantity)
            await self._set_inventory_state(order, state, InventoryState.RELEASED.value)
        elif state == InventoryState.COMMITTED.value and previous in (
            OrderStatus.CONFIRMED.value,
            OrderStatus.PROCESSING.value,
        ):
            for item in order.items:
                await self.inventory.restock(item.warehouse_id, item.product_id, item.quantity)
            await self._set_inventory_state(order, state, InventoryState.RESTOCKED.value)
        else:
            logger.info(f"Order {order.order_number} cancelled from {previous}, inventory left as {state}")

    async def _cancel_open_consignments(self, order: Order, previous: str, actor: Actor) -> None:
        for consignment in order.consignments:
            if not CONSIGNMENT_STATE_MACHINE.can_transition(consignment.status, ConsignmentStatus.CANCELLED):
                if consignment.status != ConsignmentStatus.CANCELLED.value:
                    logger.warning(
                        f"Consignment {consignment.consignment_number} left in {consignment.status} "
                        f"after order {order.order_number} was cancelled"
                    )
                continue
            result = await self.db.execute(
                update(Consignment)
                .where(Consignment.id == consignment.id, Consignment.status == consignment.status)
                .values(status=ConsignmentStatus.CANCELLED.value, updated_at=utcnow())
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                raise ConflictError(f"Consignment {consignment.consignment_number} was changed by another request")
            self.db.add(ConsignmentEvent(
                consignment_id=consignment.id,
                status=ConsignmentStatus.CANCELLED.value,
                notes=f"Order {order.order_number} cancelled",
                recorded_by=actor.id,
            ))

    async def complete_from_consignments(self, order_id: uuid.UUID) -> bool:
        """
        Mark an order DELIVERED once all of its consignments are delivered.

        Called by the consignment lifecycle inside its own transaction; the
        caller commits. Returns True when the order was completed.
        """
        order = await self._load_order(order_id)
        if order.status not in ORDER_AUTO_COMPLETE_FROM:
            logger.info(f"Order {order.order_number} is {order.status}, not auto-completing")
            return False

        outstanding = (await self.db.execute(
            select(func.count(Consignment.id)).where(
                Consignment.order_id == order_id,
                Consignment.status != ConsignmentStatus.DELIVERED.value,
            )
        )).scalar() or 0
        if outstanding:
            return False

        # Skips validate_transition: completion may jump from CONFIRMED or PROCESSING straight to DELIVERED
        await self._apply_transition(
            order,
            OrderStatus.DELIVERED.value,
            SYSTEM_ACTOR,
            "All consignments delivered",
        )
        return True

    # ==================== PAYMENT ====================

    async def update_payment_status(
        self,
        order_id: uuid.UUID,
        payment_status: str,
        actor: Actor,
        payment_reference: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> Order:
        """
        Set the payment status. Independent of the order status, so a
        cash-on-delivery order can be delivered first and paid afterwards.
        """
        payment_enum = to_enum(payment_status, PaymentStatus)
        if payment_enum is None:
            raise ValidationError(f"Unknown payment status: {payment_status}")
        target = payment_enum.value

        order = await self._load_order(order_id)
        ensure(policy_for(actor).can_change_order(order))

        previous = order.payment_status
        order.payment_status = target
        if payment_reference:
            order.payment_reference = payment_reference
        order.payment_date = utcnow() if target == PaymentStatus.PAID.value else None
        order.notes = append_note(order.notes, notes)

        await self.audit.log_update(
            "ORDER", order.id, actor,
            {"payment_status": previous},
            {"payment_status": target, "payment_reference": payment_reference},
            action="PAYMENT_UPDATE",
        )
        await self.db.commit()
        logger.info(f"Order {order.order_number} payment {previous} -> {target}")
        return await self._load_order(order_id)

    async def mark_order_paid(self, order_id: uuid.UUID, payment_reference: Optional[str] = None) -> Order:
        """Entry point for the payments collaborator."""
        return await self.update_payment_status(
            order_id,
            PaymentStatus.PAID.value,
            SYSTEM_ACTOR,
            payment_reference=payment_reference,
        )
