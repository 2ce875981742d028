from pydantic import BaseModel, Field
from typing import Optional, List
from datetime import date, datetime
from decimal import Decimal
import uuid

from fulfillment.models.order import OrderStatus, PaymentStatus, PaymentMethod
from fulfillment.schemas.base import BaseCreateSchema, BaseResponseSchema
from fulfillment.schemas.common import AddressResponse


# ==================== ORDER ITEM SCHEMAS ====================

class OrderItemResponse(BaseResponseSchema):
    """Order line with its price snapshot."""
    id: uuid.UUID
    product_id: uuid.UUID
    warehouse_id: uuid.UUID
    product_name: str
    product_sku: str
    quantity: int
    unit_price: Decimal
    line_total: Decimal
    tax_amount: Decimal


class StatusHistoryResponse(BaseResponseSchema):
    """Order status history response."""
    id: uuid.UUID
    from_status: Optional[str] = None
    to_status: str
    changed_by: Optional[uuid.UUID] = None
    notes: Optional[str] = None
    created_at: datetime


# ==================== ORDER SCHEMAS ====================

class OrderCreate(BaseCreateSchema):
    """Create an order from the buyer's cart."""
    delivery_address_id: uuid.UUID
    buyer_id: Optional[uuid.UUID] = None  # Admin acting for a buyer
    payment_method: PaymentMethod = PaymentMethod.COD
    notes: Optional[str] = Field(None, max_length=2000)
    requested_delivery_date: Optional[date] = None


class OrderStatusUpdate(BaseModel):
    status: OrderStatus
    notes: Optional[str] = Field(None, max_length=1000)


class PaymentStatusUpdate(BaseModel):
    payment_status: PaymentStatus
    payment_reference: Optional[str] = Field(None, max_length=100)
    notes: Optional[str] = Field(None, max_length=1000)


class OrderResponse(BaseResponseSchema):
    """Order summary for lists."""
    id: uuid.UUID
    order_number: str
    buyer_id: uuid.UUID
    status: str
    payment_status: str
    payment_method: str
    inventory_state: str
    subtotal: Decimal
    tax_amount: Decimal
    total_amount: Decimal
    item_count: int
    requested_delivery_date: Optional[date] = None
    created_at: datetime
    updated_at: datetime


class OrderConsignmentBrief(BaseResponseSchema):
    id: uuid.UUID
    consignment_number: str
    warehouse_id: uuid.UUID
    driver_id: Optional[uuid.UUID] = None
    status: str


class OrderDetailResponse(OrderResponse):
    """Full order with lines, history and consignments."""
    delivery_address: AddressResponse
    payment_reference: Optional[str] = None
    payment_date: Optional[datetime] = None
    notes: Optional[str] = None
    confirmed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    delivered_at: Optional[datetime] = None
    items: List[OrderItemResponse]
    status_history: List[StatusHistoryResponse]
    consignments: List[OrderConsignmentBrief]
