from fastapi import APIRouter

from stockwatch.api.targets import router as targets_router

api_router = APIRouter(prefix="/api")

api_router.include_router(targets_router)
