from fastapi import APIRouter

from .endpoints import (
    deals,
    health,
    observability,
    redemptions,
    vendors,
)

router = APIRouter()
router.include_router(health.router, tags=["Health"])
router.include_router(deals.router)
router.include_router(redemptions.router)
router.include_router(vendors.router)
router.include_router(observability.router)
