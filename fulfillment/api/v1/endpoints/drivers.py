from typing import List
import uuid

from fastapi import APIRouter, Query

from fulfillment.api.deps import DB, CurrentActor
from fulfillment.schemas.consignment import ConsignmentResponse
from fulfillment.schemas.driver import LocationUpdate, LocationUpdateResponse
from fulfillment.services.consignment_service import DriverService


router = APIRouter(tags=["Drivers"])


@router.put("/me/location", response_model=LocationUpdateResponse)
async def update_my_location(data: LocationUpdate, db: DB, actor: CurrentActor):
    """Report the calling driver's position."""
    result = await DriverService(db).update_location(
        actor.id, data.latitude, data.longitude, actor, address=data.address
    )
    return LocationUpdateResponse.model_validate(result)


@router.get("/me/consignments", response_model=List[ConsignmentResponse])
async def list_my_consignments(
    db: DB,
    actor: CurrentActor,
    include_completed: bool = Query(False),
):
    consignments = await DriverService(db).list_driver_consignments(
        actor.id, actor, include_completed=include_completed
    )
    return [ConsignmentResponse.model_validate(c) for c in consignments]


@router.put("/{driver_id}/location", response_model=LocationUpdateResponse)
async def update_driver_location(driver_id: uuid.UUID, data: LocationUpdate, db: DB, actor: CurrentActor):
    result = await DriverService(db).update_location(
        driver_id, data.latitude, data.longitude, actor, address=data.address
    )
    return LocationUpdateResponse.model_validate(result)


@router.get("/{driver_id}/consignments", response_model=List[ConsignmentResponse])
async def list_driver_consignments(
    driver_id: uuid.UUID,
    db: DB,
    actor: CurrentActor,
    include_completed: bool = Query(False),
):
    consignments = await DriverService(db).list_driver_consignments(
        driver_id, actor, include_completed=include_completed
    )
    return [ConsignmentResponse.model_validate(c) for c in consignments]
