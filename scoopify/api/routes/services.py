"""
Service instance API routes.
Claim, work and complete services on behalf of the calling user.
"""

from fastapi import APIRouter, Depends, Path, Query
from sqlalchemy.ext.asyncio import AsyncSession

import structlog

from scoopify.api.dependencies import get_caller, get_database
from scoopify.api.schemas.services import (
    AttachPhotosRequest, CancelServiceRequest, CompleteServiceRequest,
    ServiceInstanceSchema, ServiceListResponse, ServiceResponse
)
from scoopify.core.identity import Caller
from scoopify.services.events import TransitionResult, dispatch_events
from scoopify.services.service_lifecycle import PhotoUpload, ServiceLifecycle

router = APIRouter(tags=["Services"])
logger = structlog.get_logger(__name__)


async def _respond(db: AsyncSession, result: TransitionResult, message: str) -> ServiceResponse:
    """Commit, then notify, then answer."""
    await db.commit()
    await dispatch_events(result.events)
    return ServiceResponse(message=message, data=ServiceInstanceSchema.from_model(result.instance))


@router.get("/available", response_model=ServiceListResponse)
async def list_available_services(
    limit: int = Query(100, ge=1, le=500),
    caller: Caller = Depends(get_caller),
    db: AsyncSession = Depends(get_database)
):
    """Unclaimed services an employee can claim today."""
    services = await ServiceLifecycle(db).available_jobs(caller, limit=limit)
    return ServiceListResponse(
        data=[ServiceInstanceSchema.from_model(s) for s in services],
        total=len(services)
    )


@router.post("/{service_id}/claim", response_model=ServiceResponse)
async def claim_service(
    service_id: int = Path(..., ge=1),
    caller: Caller = Depends(get_caller),
    db: AsyncSession = Depends(get_database)
):
    """Claim a service. 409 when another employee was faster."""
    result = await ServiceLifecycle(db).claim(service_id, caller)
    return await _respond(db, result, "Service claimed")


@router.post("/{service_id}/release", response_model=ServiceResponse)
async def release_service(
    service_id: int = Path(..., ge=1),
    caller: Caller = Depends(get_caller),
    db: AsyncSession = Depends(get_database)
):
    result = await ServiceLifecycle(db).release(service_id, caller)
    return await _respond(db, result, "Service released")


@router.post("/{service_id}/start", response_model=ServiceResponse)
async def start_service(
    service_id: int = Path(..., ge=1),
    caller: Caller = Depends(get_caller),
    db: AsyncSession = Depends(get_database)
):
    result = await ServiceLifecycle(db).start(service_id, caller)
    return await _respond(db, result, "Service started")


@router.post("/{service_id}/photos", response_model=ServiceResponse)
async def attach_photos(
    request: AttachPhotosRequest,
    service_id: int = Path(..., ge=1),
    caller: Caller = Depends(get_caller),
    db: AsyncSession = Depends(get_database)
):
    photos = [PhotoUpload(kind=p.kind, url=p.url) for p in request.photos]
    result = await ServiceLifecycle(db).attach_photos(service_id, caller, photos)
    return await _respond(db, result, f"{len(photos)} photos attached")


@router.post("/{service_id}/complete", response_model=ServiceResponse)
async def complete_service(
    request: CompleteServiceRequest,
    service_id: int = Path(..., ge=1),
    caller: Caller = Depends(get_caller),
    db: AsyncSession = Depends(get_database)
):
    """Complete a service in progress. Requires before/after photos and the checklist."""
    result = await ServiceLifecycle(db).complete(
        service_id,
        caller,
        photos=[PhotoUpload(kind=p.kind, url=p.url) for p in request.photos],
        checklist=request.checklist,
        note=request.note,
        admin_override=request.admin_override
    )
    return await _respond(db, result, "Service completed")


@router.post("/{service_id}/cancel", response_model=ServiceResponse)
async def cancel_service(
    request: CancelServiceRequest,
    service_id: int = Path(..., ge=1),
    caller: Caller = Depends(get_caller),
    db: AsyncSession = Depends(get_database)
):
    result = await ServiceLifecycle(db).cancel(
        service_id,
        caller,
        reason=request.reason,
        admin_override=request.admin_override
    )
    return await _respond(db, result, "Service cancelled")
