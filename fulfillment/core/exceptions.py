"""
Domain exceptions for the fulfillment pipeline.

Services raise these; the API layer maps each ``code`` to an HTTP status in
``fulfillment.main``. Nothing here knows about HTTP.
"""
from typing import Any, Optional


class FulfillmentError(Exception):
    """Base class for every pipeline error."""

    code: str = "FULFILLMENT_ERROR"

    def __init__(self, message: str, **details: Any):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict:
        payload = {"error": self.code, "message": self.message}
        payload.update({k: v for k, v in self.details.items() if v is not None})
        return payload


class ValidationError(FulfillmentError):
    """Malformed input, rejected before any mutation."""

    code = "VALIDATION_ERROR"


class NotFoundError(FulfillmentError):
    code = "NOT_FOUND"

    def __init__(self, resource: str, resource_id: Any = None, message: Optional[str] = None):
        super().__init__(message or f"{resource} not found", resource=resource)
        self.resource = resource
        self.resource_id = resource_id


class ForbiddenError(FulfillmentError):
    """The access policy denied the operation."""

    code = "FORBIDDEN"


class ConflictError(FulfillmentError):
    """Duplicate resource or a concurrent change won the race."""

    code = "CONFLICT"


class InventoryLedgerError(ConflictError):
    """A release or commit found fewer reserved units than it was asked to move."""

    code = "INVENTORY_LEDGER_CONFLICT"

    def __init__(self, message: str, warehouse_id: Any = None, product_id: Any = None, quantity: int = 0):
        super().__init__(message, quantity=quantity)
        self.warehouse_id = warehouse_id
        self.product_id = product_id
        self.quantity = quantity


class InsufficientInventoryError(FulfillmentError):
    code = "INSUFFICIENT_INVENTORY"

    def __init__(
        self,
        warehouse_id: Any,
        product_id: Any,
        requested: int,
        available: Optional[int] = None,
        product_name: Optional[str] = None,
    ):
        label = product_name or str(product_id)
        message = f"Insufficient inventory for {label}: requested {requested}"
        if available is not None:
            message += f", available {available}"
        super().__init__(message, requested=requested, available=available)
        self.warehouse_id = warehouse_id
        self.product_id = product_id
        self.requested = requested
        self.available = available


class InvalidStatusTransitionError(FulfillmentError):
    code = "INVALID_STATUS_TRANSITION"

    def __init__(self, entity: str, current_status: str, target_status: str, allowed: Optional[list] = None):
        if allowed:
            message = (
                f"Invalid {entity} status transition from {current_status} to {target_status}. "
                f"Allowed transitions: {', '.join(allowed)}"
            )
        else:
            message = (
                f"Invalid {entity} status transition from {current_status} to {target_status}. "
                f"{current_status} is a final state"
            )
        super().__init__(message, current_status=current_status, target_status=target_status)
        self.entity = entity
        self.current_status = current_status
        self.target_status = target_status
