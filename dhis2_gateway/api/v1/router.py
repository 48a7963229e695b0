from fastapi import APIRouter

from .endpoints import aggregate, logs, mappings, health

api_router = APIRouter()

api_router.include_router(aggregate.router, prefix="/aggregate", tags=["aggregate"])
api_router.include_router(logs.router, prefix="/logs", tags=["logs"])
api_router.include_router(mappings.router, prefix="/mappings", tags=["mappings"])
api_router.include_router(health.router, prefix="/health", tags=["health"])
