"""Service health endpoints, mounted at the application root."""

from datetime import datetime, timezone

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

health_router = APIRouter(tags=["health"])


def _service(request: Request) -> dict:
    config = request.app.state.config
    return {"service": config.app_name.lower().replace(" ", "-"), "version": config.app_version}


@health_router.get("/")
async def root(request: Request):
    config = request.app.state.config
    return {"message": f"{config.app_name} is running", "version": config.app_version}


@health_router.get("/health")
async def health(request: Request):
    """Process is up; says nothing about storage."""
    return {"status": "healthy", **_service(request)}


@health_router.get("/health/detailed")
async def detailed_health(request: Request):
    """Run every registered check; 503 when any of them fails."""
    report = await request.app.state.health_checker.run_all_checks()
    status_code = 200 if report["overall_status"] == "healthy" else 503
    return JSONResponse(status_code=status_code, content={**_service(request), **report})


@health_router.get("/health/live")
async def liveness():
    return {"alive": True, "timestamp": datetime.now(timezone.utc).isoformat()}
