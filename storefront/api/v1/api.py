# storefront/api/v1/api.py
from fastapi import APIRouter
from storefront.api.v1.endpoints import webhooks, marketplace_admin, products, orders

api_router = APIRouter()

api_router.include_router(webhooks.router, prefix="/webhooks", tags=["webhooks"])
api_router.include_router(marketplace_admin.router, prefix="/admin/marketplace", tags=["marketplace"])
api_router.include_router(products.router, prefix="/admin/marketplace/products", tags=["products"])
api_router.include_router(orders.router, prefix="/orders", tags=["orders"])
