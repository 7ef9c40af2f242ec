"""
Public licensing API used by self-hosted instances.

These routes authenticate with the API key in the body, not a session,
and are served with CORS open to any origin.
"""
from typing import Any, Dict

from fastapi import APIRouter, Depends, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from zpay.core.licensing import LicenseService
from zpay.database.connection import get_db

from .deps import get_license_service
from .schemas import (
    LicenseActivateRequest,
    LicenseActivateResponse,
    UsageIncrementRequest,
    UsageIncrementResponse,
)

LICENSE_PREFIX = "/license"

license_router = APIRouter(prefix=LICENSE_PREFIX, tags=["license"])


@license_router.post(
    "/activate",
    response_model=LicenseActivateResponse,
    summary="Activate a license",
    description="Exchange an API key for a 24 hour RS256 license token",
)
async def activate(
    request: LicenseActivateRequest,
    db: AsyncSession = Depends(get_db),
    license_service: LicenseService = Depends(get_license_service),
) -> Dict[str, Any]:
    return await license_service.activate(
        db,
        request.api_key,
        monthly_usage=request.monthly_usage,
        instance_id=request.instance_id,
        version=request.version,
    )


@license_router.post(
    "/increment-usage",
    response_model=UsageIncrementResponse,
    summary="Report usage",
    description="Count one processed transaction or adopt higher reported counters",
)
async def increment_usage(
    request: UsageIncrementRequest,
    db: AsyncSession = Depends(get_db),
    license_service: LicenseService = Depends(get_license_service),
) -> Dict[str, int]:
    return await license_service.increment_usage(
        db, request.api_key, usage=request.usage, monthly_usage=request.monthly_usage
    )


@license_router.options("/activate", include_in_schema=False)
@license_router.options("/increment-usage", include_in_schema=False)
async def license_options() -> Response:
    """Bare OPTIONS without preflight headers; real preflights are answered by CORS."""
    return Response(status_code=status.HTTP_200_OK)
