from datetime import datetime
import uuid

from fulfillment.schemas.base import BaseResponseSchema


class InventoryResponse(BaseResponseSchema):
    """Ledger view of one product in one warehouse."""
    warehouse_id: uuid.UUID
    product_id: uuid.UUID
    quantity: int
    reserved_quantity: int
    available_quantity: int
    updated_at: datetime
