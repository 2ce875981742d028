# Import all models here so Alembic and Base.metadata can see them
from fulfillment.models.user import User, UserRole, WarehouseOpsAssignment, DriverProfile
from fulfillment.models.address import Address
from fulfillment.models.warehouse import Warehouse
from fulfillment.models.product import Product
from fulfillment.models.inventory import InventoryRecord
from fulfillment.models.cart import CartItem
from fulfillment.models.order import (
    Order,
    OrderItem,
    OrderStatusHistory,
    OrderStatus,
    PaymentStatus,
    PaymentMethod,
    InventoryState,
)
from fulfillment.models.consignment import Consignment, ConsignmentEvent, ConsignmentStatus
from fulfillment.models.audit_log import AuditLog
from fulfillment.models.document_sequence import DocumentSequence

__all__ = [
    "User",
    "UserRole",
    "WarehouseOpsAssignment",
    "DriverProfile",
    "Address",
    "Warehouse",
    "Product",
    "InventoryRecord",
    "CartItem",
    "Order",
    "OrderItem",
    "OrderStatusHistory",
    "OrderStatus",
    "PaymentStatus",
    "PaymentMethod",
    "InventoryState",
    "Consignment",
    "ConsignmentEvent",
    "ConsignmentStatus",
    "AuditLog",
    "DocumentSequence",
]
