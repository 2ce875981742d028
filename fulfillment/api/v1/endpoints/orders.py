from typing import Optional, List
import uuid
from datetime import datetime

from fastapi import APIRouter, Query, status

from fulfillment.api.deps import DB, CurrentActor
from fulfillment.config import settings
from fulfillment.models.order import OrderStatus, PaymentStatus
from fulfillment.schemas.base import PaginatedResponse
from fulfillment.schemas.consignment import ConsignmentResponse
from fulfillment.schemas.order import (
    OrderCreate,
    OrderDetailResponse,
    OrderResponse,
    OrderStatusUpdate,
    PaymentStatusUpdate,
)
from fulfillment.services.consignment_service import ConsignmentService
from fulfillment.services.order_service import OrderService


router = APIRouter(tags=["Orders"])


@router.get("", response_model=PaginatedResponse[OrderResponse])
async def list_orders(
    db: DB,
    actor: CurrentActor,
    page: int = Query(1, ge=1),
    limit: int = Query(settings.DEFAULT_PAGE_SIZE, ge=1, le=settings.MAX_PAGE_SIZE),
    status: Optional[OrderStatus] = Query(None),
    payment_status: Optional[PaymentStatus] = Query(None),
    buyer_id: Optional[uuid.UUID] = Query(None),
    warehouse_id: Optional[uuid.UUID] = Query(None),
    date_from: Optional[datetime] = Query(None),
    date_to: Optional[datetime] = Query(None),
    search: Optional[str] = Query(None, max_length=100),
    sort_by: str = Query("created_at", pattern="^(created_at|updated_at|total_amount|order_number)$"),
    sort_order: str = Query("desc", pattern="^(asc|desc)$"),
):
    """
    Get paginated orders.
    Buyers see their own orders, ops staff see orders touching their warehouses.
    """
    orders, total = await OrderService(db).list_orders(
        actor,
        page=page,
        limit=limit,
        status=status,
        payment_status=payment_status,
        buyer_id=buyer_id,
        warehouse_id=warehouse_id,
        date_from=date_from,
        date_to=date_to,
        search=search,
        sort_by=sort_by,
        sort_order=sort_order,
    )
    return PaginatedResponse[OrderResponse].build(
        [OrderResponse.model_validate(o) for o in orders], total, page, limit
    )


@router.post("", response_model=OrderDetailResponse, status_code=status.HTTP_201_CREATED)
async def create_order(data: OrderCreate, db: DB, actor: CurrentActor):
    """Create an order from the cart. Reserves inventory for every line."""
    order = await OrderService(db).create_order_from_cart(
        actor,
        delivery_address_id=data.delivery_address_id,
        buyer_id=data.buyer_id,
        payment_method=data.payment_method,
        notes=data.notes,
        requested_delivery_date=data.requested_delivery_date,
    )
    return OrderDetailResponse.model_validate(order)


@router.get("/number/{order_number}", response_model=OrderDetailResponse)
async def get_order_by_number(order_number: str, db: DB, actor: CurrentActor):
    order = await OrderService(db).get_order_by_number(order_number, actor)
    return OrderDetailResponse.model_validate(order)


@router.get("/{order_id}", response_model=OrderDetailResponse)
async def get_order(order_id: uuid.UUID, db: DB, actor: CurrentActor):
    order = await OrderService(db).get_order(order_id, actor)
    return OrderDetailResponse.model_validate(order)


@router.put("/{order_id}/status", response_model=OrderDetailResponse)
async def update_order_status(order_id: uuid.UUID, data: OrderStatusUpdate, db: DB, actor: CurrentActor):
    """Move the order to a new status (admin / ops)."""
    order = await OrderService(db).update_order_status(order_id, data.status, actor, notes=data.notes)
    return OrderDetailResponse.model_validate(order)


@router.put("/{order_id}/payment-status", response_model=OrderDetailResponse)
async def update_payment_status(order_id: uuid.UUID, data: PaymentStatusUpdate, db: DB, actor: CurrentActor):
    order = await OrderService(db).update_payment_status(
        order_id,
        data.payment_status,
        actor,
        payment_reference=data.payment_reference,
        notes=data.notes,
    )
    return OrderDetailResponse.model_validate(order)


@router.get("/{order_id}/consignments", response_model=List[ConsignmentResponse])
async def list_order_consignments(order_id: uuid.UUID, db: DB, actor: CurrentActor):
    consignments = await ConsignmentService(db).list_by_order(order_id, actor)
    return [ConsignmentResponse.model_validate(c) for c in consignments]
