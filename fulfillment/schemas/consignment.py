from pydantic import BaseModel, Field
from typing import Optional, List
from datetime import date, datetime
from decimal import Decimal
import uuid

from fulfillment.models.consignment import ConsignmentStatus
from fulfillment.schemas.base import BaseCreateSchema, BaseResponseSchema, BaseUpdateSchema
from fulfillment.schemas.common import AddressResponse, UserBrief, WarehouseBrief


class ConsignmentCreate(BaseCreateSchema):
    order_id: uuid.UUID
    warehouse_id: uuid.UUID
    driver_id: Optional[uuid.UUID] = None
    estimated_delivery_date: Optional[date] = None
    notes: Optional[str] = Field(None, max_length=1000)


class ConsignmentUpdate(BaseUpdateSchema):
    """Partial update. Drivers may only send status, actual_delivery_date and notes."""
    driver_id: Optional[uuid.UUID] = None
    status: Optional[ConsignmentStatus] = None
    estimated_delivery_date: Optional[date] = None
    actual_delivery_date: Optional[date] = None
    notes: Optional[str] = Field(None, max_length=1000)


class AssignDriverRequest(BaseModel):
    driver_id: uuid.UUID


class ConsignmentAction(BaseModel):
    """Body for the pickup / transit / deliver / fail / retry / cancel shortcuts."""
    notes: Optional[str] = Field(None, max_length=1000)
    actual_delivery_date: Optional[date] = None


class ConsignmentEventResponse(BaseResponseSchema):
    id: uuid.UUID
    status: str
    notes: Optional[str] = None
    latitude: Optional[Decimal] = None
    longitude: Optional[Decimal] = None
    recorded_by: Optional[uuid.UUID] = None
    created_at: datetime


class OrderBrief(BaseResponseSchema):
    id: uuid.UUID
    order_number: str
    status: str
    buyer_id: uuid.UUID


class ConsignmentResponse(BaseResponseSchema):
    id: uuid.UUID
    consignment_number: str
    status: str
    order: OrderBrief
    warehouse: WarehouseBrief
    driver: Optional[UserBrief] = None
    pickup_address: AddressResponse
    delivery_address: AddressResponse
    estimated_delivery_date: Optional[date] = None
    actual_delivery_date: Optional[date] = None
    delivered_at: Optional[datetime] = None
    notes: Optional[str] = None
    created_at: datetime
    updated_at: datetime


class ConsignmentDetailResponse(ConsignmentResponse):
    events: List[ConsignmentEventResponse]
