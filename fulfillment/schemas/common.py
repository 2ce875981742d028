from typing import Optional
from decimal import Decimal
import uuid

from fulfillment.schemas.base import BaseResponseSchema


class AddressResponse(BaseResponseSchema):
    id: uuid.UUID
    label: Optional[str] = None
    line1: str
    line2: Optional[str] = None
    city: str
    state: str
    pincode: str
    latitude: Optional[Decimal] = None
    longitude: Optional[Decimal] = None
    full_address: str


class WarehouseBrief(BaseResponseSchema):
    id: uuid.UUID
    code: str
    name: str
    city: str


class ProductBrief(BaseResponseSchema):
    id: uuid.UUID
    sku: str
    name: str
    unit: str
    price: Decimal
    moq: int


class UserBrief(BaseResponseSchema):
    id: uuid.UUID
    name: Optional[str] = None
    phone: str
    role: str
