from fastapi import APIRouter

from sync_store.routers import sync_config

api_router = APIRouter()
api_router.include_router(sync_config.router)

__all__ = ["api_router"]
