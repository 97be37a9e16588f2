"""Versioned API routing for fsup."""

from fastapi import APIRouter

from . import routes_admin, routes_fs, routes_system, routes_tasks


def get_api_router() -> APIRouter:
    router = APIRouter(prefix="/v1")
    router.include_router(routes_system.router)
    router.include_router(routes_admin.router)
    router.include_router(routes_fs.router)
    router.include_router(routes_tasks.router)
    return router


__all__ = ["get_api_router"]
