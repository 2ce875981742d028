# Services module
from fulfillment.services.audit_service import AuditService
from fulfillment.services.catalog_service import CatalogService
from fulfillment.services.document_sequence_service import DocumentSequenceService
from fulfillment.services.inventory_service import InventoryService
from fulfillment.services.cart_service import CartService
from fulfillment.services.order_service import OrderService
from fulfillment.services.consignment_service import ConsignmentService, DriverService

__all__ = [
    "AuditService",
    "CatalogService",
    "DocumentSequenceService",
    "InventoryService",
    "CartService",
    "OrderService",
    # Delivery
    "ConsignmentService",
    "DriverService",
]
