from pydantic import BaseModel, Field
from typing import Optional
from datetime import datetime
import uuid

from fulfillment.schemas.base import BaseResponseSchema


class LocationUpdate(BaseModel):
    """
    Driver position. Range checks happen in the service so that out-of-range
    coordinates surface as the pipeline's own validation error.
    """
    latitude: float
    longitude: float
    address: Optional[str] = Field(None, max_length=500)


class LocationUpdateResponse(BaseResponseSchema):
    driver_id: uuid.UUID
    latitude: float
    longitude: float
    updated_at: datetime
    consignments_tagged: int
    consignments_skipped: int
