from fastapi import APIRouter

from backend.app.api.routes_market import router as market_router

router = APIRouter()
router.include_router(market_router)

__all__ = ["router"]
