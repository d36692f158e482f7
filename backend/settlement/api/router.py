"""
Main API router that assembles all API endpoints.
"""
from typing import Any, Dict

from fastapi import APIRouter, Request, Response

from settlement.api.v1 import router as v1_router

# Create main router
router = APIRouter()

# Include API version routers
router.include_router(v1_router)


@router.get("/")
async def api_root(request: Request) -> Dict[str, Any]:
    """
    API root endpoint listing the available routes.
    """
    api_routes = [
        {
            "path": route.path,
            "methods": sorted(route.methods) if getattr(route, "methods", None) else [],
        }
        for route in request.app.routes
        if route.path.startswith("/api/")
    ]
    config = request.app.state.services.config
    return {
        "message": f"Welcome to the {config.api.title}",
        "version": config.api.version,
        "documentation": {"swagger": "/docs", "openapi": "/openapi.json"},
        "routes": api_routes,
    }


@router.get("/health")
async def health() -> Dict[str, str]:
    return {"status": "healthy"}


@router.get("/metrics", include_in_schema=False)
async def metrics(request: Request) -> Response:
    """Prometheus metrics for settlements and reconciliation."""
    collector = request.app.state.services.metrics
    return Response(content=collector.render(), media_type=collector.content_type)
