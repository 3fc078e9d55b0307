from datetime import datetime
from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession
from typing import List

from donor_dispatch.database import get_db
from donor_dispatch.schemas.notification import (
    SaveTokenRequest, LoginStateRequest, ApiResult,
    NotificationResponse, UnreadCountResponse,
)
from donor_dispatch.services.auth import get_current_user_id
from donor_dispatch.services.eligibility import is_valid_push_token
from donor_dispatch.services.errors import StorageUnavailable
from donor_dispatch.services.notification import NotificationRecorder
from donor_dispatch.services.push import PushProvider, get_push_provider
from donor_dispatch.services.registry import DonorRegistry, TokenRegistration

router = APIRouter(prefix="/api/notifications", tags=["Notifications"])


# ============================================================================
# Device registration (called by the device-side token sync manager)
# ============================================================================


@router.post("/save-token", response_model=ApiResult)
async def save_token(data: SaveTokenRequest, db: AsyncSession = Depends(get_db)):
    """
    Register or refresh a device push token.

    Upserts the donor and user-device projections keyed by userId_deviceId,
    so repeating the call with the same payload changes nothing.
    """
    if not is_valid_push_token(data.token):
        raise HTTPException(status_code=400, detail="Invalid push token format")

    registration = TokenRegistration(
        user_id=data.user_id,
        token=data.token,
        device_id=data.device_id,
        device_type=data.device_type,
        app_version=data.app_version,
        user_type=data.user_type,
        is_logged_in=data.is_logged_in,
    )
    try:
        await DonorRegistry(db).upsert_registration(registration)
    except StorageUnavailable as e:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=e.message)

    return ApiResult(
        success=True,
        message="Push token saved successfully",
        compound_token_id=registration.compound_token_id,
    )


async def _set_login_state(data: LoginStateRequest, db: AsyncSession, is_logged_in: bool) -> ApiResult:
    try:
        updated = await DonorRegistry(db).set_login_state(data.user_id, data.device_id, is_logged_in)
    except StorageUnavailable as e:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=e.message)
    if not updated:
        raise HTTPException(status_code=404, detail="No registration found for this device")
    state = "logged in" if is_logged_in else "logged out"
    return ApiResult(success=True, message=f"User marked as {state}")


@router.post("/login", response_model=ApiResult)
async def mark_logged_in(data: LoginStateRequest, db: AsyncSession = Depends(get_db)):
    """Mark a device's user as logged in. The push token is left untouched."""
    return await _set_login_state(data, db, True)


@router.post("/logout", response_model=ApiResult)
async def mark_logged_out(data: LoginStateRequest, db: AsyncSession = Depends(get_db)):
    """Mark a device's user as logged out. The device keeps receiving pushes."""
    return await _set_login_state(data, db, False)


@router.get("/health")
async def notifications_health(provider: PushProvider = Depends(get_push_provider)):
    return {
        "status": "healthy",
        "service": "notifications",
        "push": "configured" if provider.is_configured() else "not configured",
        "timestamp": datetime.utcnow().isoformat(),
    }


# ============================================================================
# In-app inbox
# ============================================================================


@router.get("", response_model=List[NotificationResponse])
async def list_notifications(
    skip: int = 0,
    limit: int = 30,
    unread_only: bool = False,
    db: AsyncSession = Depends(get_db),
    current_user_id: str = Depends(get_current_user_id),
):
    """List notifications for the current user, newest first."""
    try:
        return await NotificationRecorder(db).list_for(
            current_user_id, skip=skip, limit=limit, unread_only=unread_only
        )
    except StorageUnavailable as e:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=e.message)


@router.get("/unread-count", response_model=UnreadCountResponse)
async def get_unread_count(
    db: AsyncSession = Depends(get_db),
    current_user_id: str = Depends(get_current_user_id),
):
    """Get count of unread notifications (for bell badge)."""
    try:
        count = await NotificationRecorder(db).unread_count(current_user_id)
    except StorageUnavailable as e:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=e.message)
    return UnreadCountResponse(count=count)


@router.patch("/read-all", response_model=ApiResult)
async def mark_all_read(
    db: AsyncSession = Depends(get_db),
    current_user_id: str = Depends(get_current_user_id),
):
    """Mark all notifications as read."""
    try:
        updated = await NotificationRecorder(db).mark_all_read(current_user_id)
    except StorageUnavailable as e:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=e.message)
    return ApiResult(success=True, message=f"{updated} notifications marked as read")


@router.patch("/{notification_id}/read", response_model=NotificationResponse)
async def mark_read(
    notification_id: str,
    db: AsyncSession = Depends(get_db),
    current_user_id: str = Depends(get_current_user_id),
):
    """Mark a single notification as read."""
    try:
        notification = await NotificationRecorder(db).mark_read(current_user_id, notification_id)
    except StorageUnavailable as e:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=e.message)
    if not notification:
        raise HTTPException(status_code=404, detail="Notification not found")
    return notification
