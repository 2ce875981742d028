from fastapi import APIRouter

from fulfillment.api.v1.endpoints import (
    cart,
    orders,
    consignments,
    drivers,
    warehouses,
)


api_router = APIRouter()

api_router.include_router(cart.router, prefix="/cart")
api_router.include_router(orders.router, prefix="/orders")
api_router.include_router(consignments.router, prefix="/consignments")
api_router.include_router(drivers.router, prefix="/drivers")
api_router.include_router(warehouses.router, prefix="/warehouses")
