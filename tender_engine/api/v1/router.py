from fastapi import APIRouter

from tender_engine.api.v1.health import router as health_router
from tender_engine.api.v1.proposals import router as proposals_router
from tender_engine.api.v1.tenders import router as tenders_router

v1_router = APIRouter()

v1_router.include_router(health_router, tags=["health"])
v1_router.include_router(tenders_router, tags=["tenders"])
v1_router.include_router(proposals_router, tags=["proposals"])
