from pydantic import BaseModel, Field
from typing import Optional, List
from datetime import datetime
from decimal import Decimal
import uuid

from fulfillment.schemas.base import BaseCreateSchema, BaseResponseSchema
from fulfillment.schemas.common import ProductBrief, WarehouseBrief


class CartItemCreate(BaseCreateSchema):
    """Add a product from a warehouse to the cart."""
    product_id: uuid.UUID
    warehouse_id: uuid.UUID
    quantity: int = Field(..., ge=1)
    buyer_id: Optional[uuid.UUID] = None  # Admin acting for a buyer


class CartItemUpdate(BaseModel):
    quantity: int = Field(..., ge=1)


class CartItemResponse(BaseResponseSchema):
    id: uuid.UUID
    product: ProductBrief
    warehouse: WarehouseBrief
    quantity: int
    unit_price: Decimal
    line_total: Decimal
    updated_at: datetime


class CartResponse(BaseResponseSchema):
    buyer_id: uuid.UUID
    items: List[CartItemResponse]
    item_count: int
    total_items: int
    subtotal: Decimal


class CartClearResponse(BaseModel):
    removed: int
