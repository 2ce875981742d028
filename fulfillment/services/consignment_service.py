"""
Consignment lifecycle and the driver location side channel.

A consignment is the part of an order shipped from one warehouse. Status
changes follow CONSIGNMENT_STATE_MACHINE, are written with a compare-and-set
on the current status, and always append a ConsignmentEvent. When the last
consignment of an order is delivered, the order is completed in the same
transaction.
"""
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple
from datetime import date, datetime
from decimal import Decimal
import uuid
import logging

from sqlalchemy import select, func, update, or_
from sqlalchemy.orm import selectinload
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from fulfillment.core.access_policy import Actor, ensure, policy_for
from fulfillment.core.enum_utils import get_enum_value, to_enum
from fulfillment.core.exceptions import (
    ConflictError,
    FulfillmentError,
    InvalidStatusTransitionError,
    NotFoundError,
    ValidationError,
)
from fulfillment.core.state_machines import (
    CONSIGNABLE_ORDER_STATUSES,
    CONSIGNMENT_STATE_MACHINE,
    DRIVER_ACTIVE_STATUSES,
    transition_label,
)
from fulfillment.models.address import Address
from fulfillment.models.consignment import Consignment, ConsignmentEvent, ConsignmentStatus
from fulfillment.models.order import Order, OrderStatus
from fulfillment.models.user import DriverProfile, User, UserRole
from fulfillment.models.warehouse import Warehouse
from fulfillment.services.audit_service import AuditService
from fulfillment.services.catalog_service import CatalogService
from fulfillment.services.document_sequence_service import DocumentSequenceService
from fulfillment.services.order_service import OrderService, append_note, clamp_pagination, utcnow

logger = logging.getLogger(__name__)

CONSIGNMENT_SORT_FIELDS = {"created_at", "updated_at", "estimated_delivery_date", "actual_delivery_date"}

UPDATABLE_FIELDS = {"driver_id", "status", "estimated_delivery_date", "actual_delivery_date", "notes"}

# Consignments a driver no longer needs to see by default
COMPLETED_STATUSES = [ConsignmentStatus.DELIVERED.value, ConsignmentStatus.CANCELLED.value]

# Reassigning a driver is allowed until the goods are collected
REASSIGNABLE_STATUSES = [ConsignmentStatus.ASSIGNED.value, ConsignmentStatus.PICKED.value]

# Orders whose consignments can no longer move forward
CLOSED_ORDER_STATUSES = [OrderStatus.CANCELLED.value, OrderStatus.RETURNED.value]

TransitionHook = Callable[[Consignment, Actor], Awaitable[None]]


def _consignment_options():
    return (
        selectinload(Consignment.order),
        selectinload(Consignment.warehouse),
        selectinload(Consignment.driver),
        selectinload(Consignment.pickup_address),
        selectinload(Consignment.delivery_address),
        selectinload(Consignment.events),
    )


class ConsignmentService:
    """Service for consignment creation, progression and queries."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.catalog = CatalogService(db)
        self.sequences = DocumentSequenceService(db)
        self.audit = AuditService(db)

        self._entry_hooks: Dict[str, List[TransitionHook]] = {
            ConsignmentStatus.DELIVERED.value: [self._complete_parent_order],
        }

    # ==================== QUERIES ====================

    async def _load(self, consignment_id: uuid.UUID) -> Consignment:
        stmt = (
            select(Consignment)
            .options(*_consignment_options())
            .where(Consignment.id == consignment_id)
            .execution_options(populate_existing=True)
        )
        consignment = (await self.db.execute(stmt)).scalar_one_or_none()
        if consignment is None:
            raise NotFoundError("Consignment", consignment_id)
        return consignment

    async def get_consignment(self, consignment_id: uuid.UUID, actor: Actor) -> Consignment:
        consignment = await self._load(consignment_id)
        ensure(policy_for(actor).can_view_consignment(consignment))
        return consignment

    async def list_consignments(
        self,
        actor: Actor,
        page: int = 1,
        limit: int = 10,
        status: Optional[str] = None,
        driver_id: Optional[uuid.UUID] = None,
        warehouse_id: Optional[uuid.UUID] = None,
        order_id: Optional[uuid.UUID] = None,
        date_from: Optional[datetime] = None,
        date_to: Optional[datetime] = None,
        search: Optional[str] = None,
        sort_by: str = "created_at",
        sort_order: str = "desc",
    ) -> Tuple[List[Consignment], int]:
        """Get paginated consignments visible to the actor, with filters."""
        policy = policy_for(actor)
        if driver_id or warehouse_id:
            ensure(policy.can_filter_consignments())

        page, limit = clamp_pagination(page, limit)

        filters = []
        scope = policy.consignment_scope()
        if scope is not None:
            filters.append(scope)
        if status:
            filters.append(Consignment.status == get_enum_value(status))
        if driver_id:
            filters.append(Consignment.driver_id == driver_id)
        if warehouse_id:
            filters.append(Consignment.warehouse_id == warehouse_id)
        if order_id:
            filters.append(Consignment.order_id == order_id)
        if date_from:
            filters.append(Consignment.created_at >= date_from)
        if date_to:
            filters.append(Consignment.created_at <= date_to)
        if search:
            pattern = f"%{search}%"
            filters.append(or_(
                Consignment.consignment_number.ilike(pattern),
                Consignment.notes.ilike(pattern),
            ))

        total = (await self.db.execute(
            select(func.count(Consignment.id)).where(*filters)
        )).scalar() or 0

        if sort_by not in CONSIGNMENT_SORT_FIELDS:
            sort_by = "created_at"
        sort_column = getattr(Consignment, sort_by)
        sort_column = sort_column.asc() if sort_order == "asc" else sort_column.desc()

        stmt = (
            select(Consignment)
            .options(*_consignment_options())
            .where(*filters)
            .order_by(sort_column)
            .offset((page - 1) * limit)
            .limit(limit)
            .execution_options(populate_existing=True)
        )
        consignments = (await self.db.execute(stmt)).scalars().all()
        return list(consignments), total

    async def list_by_order(self, order_id: uuid.UUID, actor: Actor) -> List[Consignment]:
        """Consignments of one order, after checking the actor may see the order."""
        await OrderService(self.db).get_order(order_id, actor)
        filters = [Consignment.order_id == order_id]
        scope = policy_for(actor).consignment_scope()
        if scope is not None:
            filters.append(scope)
        stmt = (
            select(Consignment)
            .options(*_consignment_options())
            .where(*filters)
            .order_by(Consignment.created_at)
            .execution_options(populate_existing=True)
        )
        return list((await self.db.execute(stmt)).scalars().all())

    async def list_by_warehouse(
        self,
        warehouse_id: uuid.UUID,
        actor: Actor,
        status: Optional[str] = None,
    ) -> List[Consignment]:
        ensure(policy_for(actor).can_operate_warehouse(warehouse_id))
        await self.catalog.get_warehouse(warehouse_id)
        filters = [Consignment.warehouse_id == warehouse_id]
        if status:
            filters.append(Consignment.status == get_enum_value(status))
        stmt = (
            select(Consignment)
            .options(*_consignment_options())
            .where(*filters)
            .order_by(Consignment.created_at.desc())
            .execution_options(populate_existing=True)
        )
        return list((await self.db.execute(stmt)).scalars().all())

    # ==================== CREATION ====================

    async def _get_driver(self, driver_id: uuid.UUID) -> User:
        """An active DRIVER with a driver profile, or NotFoundError."""
        result = await self.db.execute(
            select(User)
            .options(selectinload(User.driver_profile))
            .where(User.id == driver_id)
        )
        driver = result.scalar_one_or_none()
        if (
            driver is None
            or driver.role != UserRole.DRIVER.value
            or not driver.is_active
            or driver.driver_profile is None
        ):
            raise NotFoundError("Driver", driver_id, message="Driver not found or inactive")
        return driver

    async def _pickup_address(self, warehouse: Warehouse) -> uuid.UUID:
        """The warehouse's pickup Address, created from its registered address on first use."""
        if warehouse.address_id:
            return warehouse.address_id

        address = Address(
            user_id=None,
            label=f"Warehouse {warehouse.code}",
            line1=warehouse.address_line1,
            line2=warehouse.address_line2,
            city=warehouse.city,
            state=warehouse.state,
            pincode=warehouse.pincode,
            latitude=warehouse.latitude,
            longitude=warehouse.longitude,
        )
        self.db.add(address)
        await self.db.flush()
        warehouse.address_id = address.id
        return address.id

    async def create_consignment(
        self,
        actor: Actor,
        order_id: uuid.UUID,
        warehouse_id: uuid.UUID,
        driver_id: Optional[uuid.UUID] = None,
        estimated_delivery_date: Optional[date] = None,
        notes: Optional[str] = None,
        on_date: Optional[date] = None,
    ) -> Consignment:
        """
        Create the consignment for one warehouse's share of an order.

        The order must be CONFIRMED or PROCESSING and have items from the
        warehouse. With a driver the consignment starts ASSIGNED, otherwise
        PENDING.
        """
        ensure(policy_for(actor).can_create_consignment(warehouse_id))

        order = (await self.db.execute(
            select(Order)
            .options(selectinload(Order.items))
            .where(Order.id == order_id)
            .execution_options(populate_existing=True)
        )).scalar_one_or_none()
        if order is None:
            raise NotFoundError("Order", order_id)
        if order.status not in CONSIGNABLE_ORDER_STATUSES:
            raise ValidationError(
                f"Consignments can only be created for confirmed or processing orders (order is {order.status})",
                current_status=order.status,
            )

        warehouse = await self.catalog.get_warehouse(warehouse_id)
        if warehouse_id not in order.warehouse_ids:
            raise ValidationError(f"Order {order.order_number} has no items from warehouse {warehouse.code}")

        if driver_id:
            await self._get_driver(driver_id)

        existing = (await self.db.execute(
            select(Consignment.consignment_number).where(
                Consignment.order_id == order_id,
                Consignment.warehouse_id == warehouse_id,
            )
        )).scalar_one_or_none()
        if existing:
            raise ConflictError(
                f"Consignment {existing} already exists for this order and warehouse",
                consignment_number=existing,
            )

        status = ConsignmentStatus.ASSIGNED.value if driver_id else ConsignmentStatus.PENDING.value
        try:
            pickup_address_id = await self._pickup_address(warehouse)
            consignment_number = await self.sequences.get_next_number("CON", on_date)
            consignment = Consignment(
                consignment_number=consignment_number,
                order_id=order_id,
                warehouse_id=warehouse_id,
                driver_id=driver_id,
                status=status,
                pickup_address_id=pickup_address_id,
                delivery_address_id=order.delivery_address_id,
                estimated_delivery_date=estimated_delivery_date,
                notes=notes,
            )
            self.db.add(consignment)
            await self.db.flush()

            self.db.add(ConsignmentEvent(
                consignment_id=consignment.id,
                status=status,
                notes="Consignment created",
                recorded_by=actor.id,
            ))
            await self.audit.log_create("CONSIGNMENT", consignment.id, actor, {
                "consignment_number": consignment_number,
                "order_id": order_id,
                "warehouse_id": warehouse_id,
                "driver_id": driver_id,
                "status": status,
            })
            consignment_id = consignment.id
            await self.db.commit()
        except FulfillmentError:
            await self.db.rollback()
            raise
        except IntegrityError as e:
            await self.db.rollback()
            logger.error(f"Database integrity error creating consignment: {e}")
            raise ConflictError("A consignment already exists for this order and warehouse") from e

        logger.info(f"Consignment {consignment_number} created for order {order.order_number} from {warehouse.code}")
        return await self._load(consignment_id)

    # ==================== UPDATES ====================

    async def update_consignment(
        self,
        consignment_id: uuid.UUID,
        changes: Dict[str, Any],
        actor: Actor,
    ) -> Consignment:
        """
        Apply a partial update. The access policy decides which fields the
        actor may touch; a status change must follow the transition table.
        """
        unknown = set(changes) - UPDATABLE_FIELDS
        if unknown:
            raise ValidationError(f"Unknown consignment fields: {', '.join(sorted(unknown))}")

        consignment = await self._load(consignment_id)
        policy = policy_for(actor)
        ensure(policy.can_update_consignment(consignment, changes.keys()))

        values: Dict[str, Any] = {}
        target = None
        if changes.get("status") is not None:
            status_enum = to_enum(changes["status"], ConsignmentStatus)
            if status_enum is None:
                raise ValidationError(f"Unknown consignment status: {changes['status']}")
            target = status_enum.value
            if target == ConsignmentStatus.CANCELLED.value:
                ensure(policy.can_cancel_consignment(consignment))
            CONSIGNMENT_STATE_MACHINE.validate_transition(consignment.status, target)

        if changes.get("driver_id") is not None and changes["driver_id"] != consignment.driver_id:
            await self._get_driver(changes["driver_id"])
            values["driver_id"] = changes["driver_id"]

        if target == ConsignmentStatus.ASSIGNED.value and not (values.get("driver_id") or consignment.driver_id):
            raise ValidationError("A driver is required to assign a consignment")

        for field in ("estimated_delivery_date", "actual_delivery_date"):
            if changes.get(field) is not None:
                values[field] = changes[field]

        return await self._write(consignment, actor, values, target, notes=changes.get("notes"))

    async def _write(
        self,
        consignment: Consignment,
        actor: Actor,
        values: Dict[str, Any],
        target: Optional[str] = None,
        notes: Optional[str] = None,
        event_note: Optional[str] = None,
    ) -> Consignment:
        """
        Persist field changes and an optional status change with one
        compare-and-set UPDATE, append the tracking event, run entry hooks,
        audit, and commit.
        """
        previous = consignment.status
        if (target and target != ConsignmentStatus.CANCELLED.value) or "driver_id" in values:
            await self._ensure_order_open(consignment)

        now = utcnow()
        values = dict(values)
        values["updated_at"] = now
        if notes:
            values["notes"] = append_note(consignment.notes, notes)
        if target:
            values["status"] = target
            if target == ConsignmentStatus.DELIVERED.value:
                values["delivered_at"] = now
                values.setdefault("actual_delivery_date", now.date())

        old_values = {k: getattr(consignment, k) for k in values if k != "updated_at"}
        new_values = {k: v for k, v in values.items() if k != "updated_at"}

        try:
            result = await self.db.execute(
                update(Consignment)
                .where(Consignment.id == consignment.id, Consignment.status == previous)
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                raise ConflictError(
                    f"Consignment {consignment.consignment_number} was changed by another request, reload and retry",
                    current_status=previous,
                )

            if target or event_note:
                self.db.add(ConsignmentEvent(
                    consignment_id=consignment.id,
                    status=target or previous,
                    notes=event_note or notes,
                    recorded_by=actor.id,
                ))

            for hook in self._entry_hooks.get(target, []) if target else []:
                await hook(consignment, actor)

            await self.audit.log_update(
                "CONSIGNMENT", consignment.id, actor, old_values, new_values,
                action="STATUS_CHANGE" if target else "UPDATE",
            )
            await self.db.commit()
        except FulfillmentError:
            await self.db.rollback()
            raise

        if target:
            logger.info(
                f"Consignment {consignment.consignment_number}: "
                f"{transition_label(CONSIGNMENT_STATE_MACHINE, previous, target)}"
            )
        return await self._load(consignment.id)

    async def _ensure_order_open(self, consignment: Consignment) -> None:
        """A consignment of a cancelled or returned order may only be cancelled."""
        order_status = (await self.db.execute(
            select(Order.status).where(Order.id == consignment.order_id)
        )).scalar_one()
        if order_status in CLOSED_ORDER_STATUSES:
            raise ConflictError(
                f"Consignment {consignment.consignment_number} belongs to a {order_status} order "
                f"and can only be cancelled",
                order_status=order_status,
                current_status=consignment.status,
            )

    async def _complete_parent_order(self, consignment: Consignment, actor: Actor) -> None:
        completed = await OrderService(self.db).complete_from_consignments(consignment.order_id)
        if completed:
            logger.info(f"Order {consignment.order_id} delivered: last consignment {consignment.consignment_number}")

    async def assign_driver(self, consignment_id: uuid.UUID, driver_id: uuid.UUID, actor: Actor) -> Consignment:
        """
        Assign or reassign a driver. A PENDING consignment moves to ASSIGNED;
        ASSIGNED or PICKED ones just change driver.
        """
        consignment = await self._load(consignment_id)
        ensure(policy_for(actor).can_assign_driver(consignment))
        driver = await self._get_driver(driver_id)

        label = driver.name or driver.phone
        if consignment.status == ConsignmentStatus.PENDING.value:
            return await self._write(
                consignment, actor, {"driver_id": driver_id},
                target=ConsignmentStatus.ASSIGNED.value,
                event_note=f"Driver assigned: {label}",
            )
        if consignment.status in REASSIGNABLE_STATUSES:
            return await self._write(
                consignment, actor, {"driver_id": driver_id},
                event_note=f"Driver reassigned: {label}",
            )
        raise InvalidStatusTransitionError(
            "consignment",
            consignment.status,
            ConsignmentStatus.ASSIGNED.value,
            allowed=CONSIGNMENT_STATE_MACHINE.get_allowed_transitions(consignment.status),
        )

    async def mark_picked(self, consignment_id, actor, notes=None):
        return await self.update_consignment(
            consignment_id, {"status": ConsignmentStatus.PICKED.value, "notes": notes}, actor
        )

    async def mark_picked_up(self, consignment_id, actor, notes=None):
        return await self.update_consignment(
            consignment_id, {"status": ConsignmentStatus.PICKED_UP.value, "notes": notes}, actor
        )

    async def mark_in_transit(self, consignment_id, actor, notes=None):
        return await self.update_consignment(
            consignment_id, {"status": ConsignmentStatus.IN_TRANSIT.value, "notes": notes}, actor
        )

    async def mark_delivered(self, consignment_id, actor, notes=None, actual_delivery_date=None):
        return await self.update_consignment(
            consignment_id,
            {
                "status": ConsignmentStatus.DELIVERED.value,
                "notes": notes,
                "actual_delivery_date": actual_delivery_date,
            },
            actor,
        )

    async def mark_failed(self, consignment_id, actor, notes=None):
        return await self.update_consignment(
            consignment_id, {"status": ConsignmentStatus.FAILED.value, "notes": notes}, actor
        )

    async def retry(self, consignment_id, actor, notes=None):
        return await self.update_consignment(
            consignment_id, {"status": ConsignmentStatus.PENDING.value, "notes": notes}, actor
        )

    async def cancel(self, consignment_id, actor, notes=None):
        return await self.update_consignment(
            consignment_id, {"status": ConsignmentStatus.CANCELLED.value, "notes": notes}, actor
        )


@dataclass
class LocationUpdateResult:
    driver_id: uuid.UUID
    latitude: float
    longitude: float
    updated_at: datetime
    consignments_tagged: int
    consignments_skipped: int


class DriverService:
    """Driver location updates and a driver's own work list."""

    def __init__(self, db: AsyncSession):
        self.db = db

    @staticmethod
    def validate_coordinates(latitude: float, longitude: float) -> None:
        if latitude is None or not -90 <= latitude <= 90:
            raise ValidationError("Latitude must be between -90 and 90", latitude=latitude)
        if longitude is None or not -180 <= longitude <= 180:
            raise ValidationError("Longitude must be between -180 and 180", longitude=longitude)

    async def _get_profile(self, driver_id: uuid.UUID) -> DriverProfile:
        result = await self.db.execute(
            select(DriverProfile)
            .join(User, User.id == DriverProfile.user_id)
            .where(DriverProfile.user_id == driver_id, User.role == UserRole.DRIVER.value)
        )
        profile = result.scalar_one_or_none()
        if profile is None:
            raise NotFoundError("Driver", driver_id, message="Driver profile not found")
        return profile

    def _location_event(
        self,
        consignment: Consignment,
        latitude: Decimal,
        longitude: Decimal,
        address: Optional[str],
        actor: Actor,
    ) -> ConsignmentEvent:
        return ConsignmentEvent(
            consignment_id=consignment.id,
            status=consignment.status,
            notes=f"Location updated: {address or 'GPS coordinates'}",
            latitude=latitude,
            longitude=longitude,
            recorded_by=actor.id,
        )

    async def update_location(
        self,
        driver_id: uuid.UUID,
        latitude: float,
        longitude: float,
        actor: Actor,
        address: Optional[str] = None,
    ) -> LocationUpdateResult:
        """
        Record the driver's position and tag each consignment they are carrying.

        Each tracking event is written in its own savepoint; one that fails is
        logged and skipped without failing the update.
        Operations staff only tag consignments from their own warehouses.
        """
        policy = policy_for(actor)
        ensure(policy.can_update_driver_location(driver_id))
        self.validate_coordinates(latitude, longitude)

        profile = await self._get_profile(driver_id)
        lat = Decimal(str(latitude))
        lng = Decimal(str(longitude))
        now = utcnow()
        profile.current_latitude = lat
        profile.current_longitude = lng
        profile.location_updated_at = now
        await self.db.flush()

        filters = [Consignment.driver_id == driver_id, Consignment.status.in_(DRIVER_ACTIVE_STATUSES)]
        scope = policy.consignment_scope()
        if scope is not None:
            filters.append(scope)
        consignments = (await self.db.execute(
            select(Consignment).where(*filters)
        )).scalars().all()

        tagged = 0
        skipped = 0
        for consignment in consignments:
            number = consignment.consignment_number
            try:
                async with self.db.begin_nested():
                    self.db.add(self._location_event(consignment, lat, lng, address, actor))
                tagged += 1
            except SQLAlchemyError as e:
                skipped += 1
                logger.error(f"Failed to record location on consignment {number}: {e}")

        await self.db.commit()
        logger.info(f"Driver {driver_id} location updated, {tagged} consignments tagged, {skipped} skipped")
        return LocationUpdateResult(
            driver_id=driver_id,
            latitude=latitude,
            longitude=longitude,
            updated_at=now,
            consignments_tagged=tagged,
            consignments_skipped=skipped,
        )

    async def list_driver_consignments(
        self,
        driver_id: uuid.UUID,
        actor: Actor,
        include_completed: bool = False,
    ) -> List[Consignment]:
        """A driver's consignments, soonest estimated delivery first."""
        policy = policy_for(actor)
        ensure(policy.can_view_driver_consignments(driver_id))
        await self._get_profile(driver_id)

        filters = [Consignment.driver_id == driver_id]
        scope = policy.consignment_scope()
        if scope is not None:
            filters.append(scope)
        if not include_completed:
            filters.append(Consignment.status.not_in(COMPLETED_STATUSES))

        stmt = (
            select(Consignment)
            .options(*_consignment_options())
            .where(*filters)
            .order_by(Consignment.estimated_delivery_date.asc().nulls_last(), Consignment.created_at)
            .execution_options(populate_existing=True)
        )
        return list((await self.db.execute(stmt)).scalars().all())
