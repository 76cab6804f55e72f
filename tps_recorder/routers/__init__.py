# API routers for the TPS recorder

from fastapi import APIRouter

from .tps import router as tps_router

router = APIRouter()
router.include_router(tps_router)
