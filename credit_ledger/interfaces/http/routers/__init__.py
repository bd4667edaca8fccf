from fastapi import APIRouter

from . import credits


def create_api_router(prefix: str = "") -> APIRouter:
    router = APIRouter(prefix=prefix)
    router.include_router(credits.router, prefix="/credits", tags=["credits"])
    return router


__all__ = [
    "create_api_router",
]
