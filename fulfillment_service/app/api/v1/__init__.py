from fastapi import APIRouter

from .admin_catalog import router as admin_catalog_router
from .admin_credentials import router as admin_credentials_router
from .admin_orders import router as admin_orders_router
from .coupons import router as coupons_router
from .loyalty import router as loyalty_router
from .orders import router as orders_router
from .user_plans import router as user_plans_router

api_router = APIRouter()
api_router.include_router(coupons_router, prefix="/coupons", tags=["coupons"])
api_router.include_router(orders_router, prefix="/orders", tags=["orders"])
api_router.include_router(loyalty_router, prefix="/users", tags=["loyalty"])
api_router.include_router(user_plans_router, prefix="/user", tags=["plans"])
api_router.include_router(
    admin_credentials_router, prefix="/admin/credentials", tags=["admin_credentials"]
)
api_router.include_router(
    admin_orders_router, prefix="/admin/orders", tags=["admin_orders"]
)
# /admin/plans, /admin/coupons
api_router.include_router(admin_catalog_router, prefix="/admin", tags=["admin_catalog"])
