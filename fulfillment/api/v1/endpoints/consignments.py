from typing import Optional
import uuid
from datetime import datetime

from fastapi import APIRouter, Query, status

from fulfillment.api.deps import DB, CurrentActor
from fulfillment.config import settings
from fulfillment.models.consignment import ConsignmentStatus
from fulfillment.schemas.base import PaginatedResponse
from fulfillment.schemas.consignment import (
    AssignDriverRequest,
    ConsignmentAction,
    ConsignmentCreate,
    ConsignmentDetailResponse,
    ConsignmentResponse,
    ConsignmentUpdate,
)
from fulfillment.services.consignment_service import ConsignmentService


router = APIRouter(tags=["Consignments"])


@router.post("", response_model=ConsignmentDetailResponse, status_code=status.HTTP_201_CREATED)
async def create_consignment(data: ConsignmentCreate, db: DB, actor: CurrentActor):
    """Create the consignment for one warehouse's share of a confirmed order."""
    consignment = await ConsignmentService(db).create_consignment(
        actor,
        order_id=data.order_id,
        warehouse_id=data.warehouse_id,
        driver_id=data.driver_id,
        estimated_delivery_date=data.estimated_delivery_date,
        notes=data.notes,
    )
    return ConsignmentDetailResponse.model_validate(consignment)


@router.get("", response_model=PaginatedResponse[ConsignmentResponse])
async def list_consignments(
    db: DB,
    actor: CurrentActor,
    page: int = Query(1, ge=1),
    limit: int = Query(settings.DEFAULT_PAGE_SIZE, ge=1, le=settings.MAX_PAGE_SIZE),
    status: Optional[ConsignmentStatus] = Query(None),
    driver_id: Optional[uuid.UUID] = Query(None),
    warehouse_id: Optional[uuid.UUID] = Query(None),
    order_id: Optional[uuid.UUID] = Query(None),
    date_from: Optional[datetime] = Query(None),
    date_to: Optional[datetime] = Query(None),
    search: Optional[str] = Query(None, max_length=100),
    sort_by: str = Query("created_at", pattern="^(created_at|updated_at|estimated_delivery_date|actual_delivery_date)$"),
    sort_order: str = Query("desc", pattern="^(asc|desc)$"),
):
    consignments, total = await ConsignmentService(db).list_consignments(
        actor,
        page=page,
        limit=limit,
        status=status,
        driver_id=driver_id,
        warehouse_id=warehouse_id,
        order_id=order_id,
        date_from=date_from,
        date_to=date_to,
        search=search,
        sort_by=sort_by,
        sort_order=sort_order,
    )
    return PaginatedResponse[ConsignmentResponse].build(
        [ConsignmentResponse.model_validate(c) for c in consignments], total, page, limit
    )


@router.get("/{consignment_id}", response_model=ConsignmentDetailResponse)
async def get_consignment(consignment_id: uuid.UUID, db: DB, actor: CurrentActor):
    consignment = await ConsignmentService(db).get_consignment(consignment_id, actor)
    return ConsignmentDetailResponse.model_validate(consignment)


@router.put("/{consignment_id}", response_model=ConsignmentDetailResponse)
async def update_consignment(consignment_id: uuid.UUID, data: ConsignmentUpdate, db: DB, actor: CurrentActor):
    """Partial update; only the fields present in the body are applied."""
    consignment = await ConsignmentService(db).update_consignment(
        consignment_id, data.model_dump(exclude_unset=True), actor
    )
    return ConsignmentDetailResponse.model_validate(consignment)


@router.put("/{consignment_id}/assign-driver", response_model=ConsignmentDetailResponse)
async def assign_driver(consignment_id: uuid.UUID, data: AssignDriverRequest, db: DB, actor: CurrentActor):
    consignment = await ConsignmentService(db).assign_driver(consignment_id, data.driver_id, actor)
    return ConsignmentDetailResponse.model_validate(consignment)


@router.put("/{consignment_id}/pick", response_model=ConsignmentDetailResponse)
async def mark_picked(consignment_id: uuid.UUID, db: DB, actor: CurrentActor, data: Optional[ConsignmentAction] = None):
    notes = data.notes if data else None
    consignment = await ConsignmentService(db).mark_picked(consignment_id, actor, notes=notes)
    return ConsignmentDetailResponse.model_validate(consignment)


@router.put("/{consignment_id}/pickup", response_model=ConsignmentDetailResponse)
async def mark_picked_up(consignment_id: uuid.UUID, db: DB, actor: CurrentActor, data: Optional[ConsignmentAction] = None):
    notes = data.notes if data else None
    consignment = await ConsignmentService(db).mark_picked_up(consignment_id, actor, notes=notes)
    return ConsignmentDetailResponse.model_validate(consignment)


@router.put("/{consignment_id}/transit", response_model=ConsignmentDetailResponse)
async def mark_in_transit(consignment_id: uuid.UUID, db: DB, actor: CurrentActor, data: Optional[ConsignmentAction] = None):
    notes = data.notes if data else None
    consignment = await ConsignmentService(db).mark_in_transit(consignment_id, actor, notes=notes)
    return ConsignmentDetailResponse.model_validate(consignment)


@router.put("/{consignment_id}/deliver", response_model=ConsignmentDetailResponse)
async def mark_delivered(consignment_id: uuid.UUID, db: DB, actor: CurrentActor, data: Optional[ConsignmentAction] = None):
    """Mark delivered. Completes the order when it was the last open consignment."""
    consignment = await ConsignmentService(db).mark_delivered(
        consignment_id,
        actor,
        notes=data.notes if data else None,
        actual_delivery_date=data.actual_delivery_date if data else None,
    )
    return ConsignmentDetailResponse.model_validate(consignment)


@router.put("/{consignment_id}/fail", response_model=ConsignmentDetailResponse)
async def mark_failed(consignment_id: uuid.UUID, db: DB, actor: CurrentActor, data: Optional[ConsignmentAction] = None):
    notes = data.notes if data else None
    consignment = await ConsignmentService(db).mark_failed(consignment_id, actor, notes=notes)
    return ConsignmentDetailResponse.model_validate(consignment)


@router.put("/{consignment_id}/retry", response_model=ConsignmentDetailResponse)
async def retry_consignment(consignment_id: uuid.UUID, db: DB, actor: CurrentActor, data: Optional[ConsignmentAction] = None):
    notes = data.notes if data else None
    consignment = await ConsignmentService(db).retry(consignment_id, actor, notes=notes)
    return ConsignmentDetailResponse.model_validate(consignment)


@router.put("/{consignment_id}/cancel", response_model=ConsignmentDetailResponse)
async def cancel_consignment(consignment_id: uuid.UUID, db: DB, actor: CurrentActor, data: Optional[ConsignmentAction] = None):
    notes = data.notes if data else None
    consignment = await ConsignmentService(db).cancel(consignment_id, actor, notes=notes)
    return ConsignmentDetailResponse.model_validate(consignment)
