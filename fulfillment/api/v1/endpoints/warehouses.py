from typing import List, Optional
import uuid

from fastapi import APIRouter, Query

from fulfillment.api.deps import DB, CurrentActor
from fulfillment.core.access_policy import ensure, policy_for
from fulfillment.core.exceptions import NotFoundError
from fulfillment.models.consignment import ConsignmentStatus
from fulfillment.schemas.consignment import ConsignmentResponse
from fulfillment.schemas.inventory import InventoryResponse
from fulfillment.services.consignment_service import ConsignmentService
from fulfillment.services.inventory_service import InventoryService


router = APIRouter(tags=["Warehouses"])


@router.get("/{warehouse_id}/consignments", response_model=List[ConsignmentResponse])
async def list_warehouse_consignments(
    warehouse_id: uuid.UUID,
    db: DB,
    actor: CurrentActor,
    status: Optional[ConsignmentStatus] = Query(None),
):
    consignments = await ConsignmentService(db).list_by_warehouse(warehouse_id, actor, status=status)
    return [ConsignmentResponse.model_validate(c) for c in consignments]


@router.get("/{warehouse_id}/inventory/{product_id}", response_model=InventoryResponse)
async def get_inventory(warehouse_id: uuid.UUID, product_id: uuid.UUID, db: DB, actor: CurrentActor):
    """Quantity, reserved and available units of a product in a warehouse."""
    ensure(policy_for(actor).can_operate_warehouse(warehouse_id))
    record = await InventoryService(db).get_record(warehouse_id, product_id)
    if record is None:
        raise NotFoundError("Inventory", message="Product is not stocked in this warehouse")
    return InventoryResponse.model_validate(record)
