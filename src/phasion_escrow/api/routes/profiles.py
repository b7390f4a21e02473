"""Profile and notification REST API routes.

Routes:
    PUT    /api/v1/profiles/{id}                        — Sync a profile from the auth store
    GET    /api/v1/profiles/{id}                        — Get a profile
    GET    /api/v1/notifications/{user_id}              — In-app notifications + unread count
    POST   /api/v1/notifications/{id}/read              — Mark one notification read
    POST   /api/v1/notifications/{user_id}/read-all     — Mark all of a user's notifications read
"""

from __future__ import annotations

import uuid  # noqa: TC003 - FastAPI resolves path parameter types at runtime

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from phasion_escrow.api.deps import get_db_session, get_notification_service
from phasion_escrow.infrastructure.database.repositories import ProfileRepository
from phasion_escrow.logging_config import get_logger
from phasion_escrow.schemas.disputes import (
    NotificationListResponse,
    NotificationResponse,
    ProfileResponse,
    UpsertProfileRequest,
)
from phasion_escrow.services.notification_service import NotificationService

profiles_router = APIRouter(prefix="/api/v1/profiles", tags=["Profiles"])
notifications_router = APIRouter(prefix="/api/v1/notifications", tags=["Notifications"])
logger = get_logger(__name__)


@profiles_router.put("/{profile_id}", response_model=ProfileResponse, summary="Upsert a profile")
async def upsert_profile(
    profile_id: uuid.UUID,
    request: UpsertProfileRequest,
    session: AsyncSession = Depends(get_db_session),
) -> ProfileResponse:
    profile = await ProfileRepository(session).upsert(
        profile_id,
        display_name=request.display_name,
        role=request.role.value,
        wallet_address=request.wallet_address,
    )
    logger.info("profile.upserted", profile_id=str(profile_id), role=request.role.value)
    return ProfileResponse.model_validate(profile)


@profiles_router.get("/{profile_id}", response_model=ProfileResponse, summary="Get a profile")
async def get_profile(
    profile_id: uuid.UUID,
    session: AsyncSession = Depends(get_db_session),
) -> ProfileResponse:
    profile = await ProfileRepository(session).get_by_id(profile_id)
    if profile is None:
        raise HTTPException(status_code=404, detail=f"Profile not found: {profile_id}")
    return ProfileResponse.model_validate(profile)


@notifications_router.get(
    "/{user_id}",
    response_model=NotificationListResponse,
    summary="List a user's notifications",
)
async def list_notifications(
    user_id: uuid.UUID,
    svc: NotificationService = Depends(get_notification_service),
) -> NotificationListResponse:
    notifications = await svc.list_for_user(user_id)
    return NotificationListResponse(
        unread=await svc.unread_count(user_id),
        notifications=[NotificationResponse.model_validate(n) for n in notifications],
    )


@notifications_router.post("/{notification_id}/read", summary="Mark a notification read")
async def mark_read(
    notification_id: uuid.UUID,
    svc: NotificationService = Depends(get_notification_service),
) -> dict:
    if not await svc.mark_read(notification_id):
        raise HTTPException(status_code=404, detail=f"Notification not found: {notification_id}")
    return {"id": str(notification_id), "is_read": True}


@notifications_router.post("/{user_id}/read-all", summary="Mark all notifications read")
async def mark_all_read(
    user_id: uuid.UUID,
    svc: NotificationService = Depends(get_notification_service),
) -> dict:
    return {"user_id": str(user_id), "marked": await svc.mark_all_read(user_id)}
