from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from donor_dispatch.database import get_db
from donor_dispatch.schemas.blood_request import (
    BloodRequestCreate, BloodRequestResult, BloodRequestResponse,
    StatusUpdate, MatchingStatsRequest, MatchingStatsResponse,
)
from donor_dispatch.services.auth import get_current_user_id
from donor_dispatch.services.blood_request import BloodRequestService
from donor_dispatch.services.errors import StorageUnavailable
from donor_dispatch.services.push import PushProvider, get_push_provider

router = APIRouter(prefix="/api/blood-requests", tags=["Blood Requests"])


def get_request_service(
    db: AsyncSession = Depends(get_db),
    provider: PushProvider = Depends(get_push_provider),
) -> BloodRequestService:
    return BloodRequestService(db, provider)


@router.post("", response_model=BloodRequestResult)
async def submit_blood_request(
    data: BloodRequestCreate,
    service: BloodRequestService = Depends(get_request_service),
):
    """
    Submit a blood request and notify every eligible compatible donor in the district.

    Partial push failures still succeed; the failure count is reported.
    """
    outcome = await service.submit(data)

    if not outcome.success:
        if outcome.reason == "storage_unavailable":
            raise HTTPException(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                detail=outcome.message,
            )
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=outcome.message)

    return BloodRequestResult(
        success=True,
        request_id=outcome.request_id,
        message=outcome.message,
        total_compatible_donors=outcome.total_compatible_donors,
        eligible_donors=outcome.eligible_donors,
        notified_donors=outcome.notified_donors,
        failed_notifications=outcome.failed_notifications,
    )


@router.post("/matching-stats", response_model=MatchingStatsResponse)
async def get_matching_stats(
    data: MatchingStatsRequest,
    service: BloodRequestService = Depends(get_request_service),
):
    """Count the donors a request would reach right now, without notifying anyone."""
    try:
        stats = await service.matching_stats(data.blood_group, data.district)
    except StorageUnavailable as e:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=e.message)

    return MatchingStatsResponse(
        blood_group=stats.blood_group,
        district=stats.district,
        compatible_blood_types=stats.compatible_blood_types,
        eligible_donors=stats.eligible_donors,
    )


@router.patch("/{request_id}/status", response_model=BloodRequestResponse)
async def update_request_status(
    request_id: str,
    data: StatusUpdate,
    service: BloodRequestService = Depends(get_request_service),
    current_user_id: str = Depends(get_current_user_id),
):
    """Cancel or complete a request. Notifications already sent stay in donors' inboxes."""
    try:
        request = await service.get_request(request_id)
        if not request:
            raise HTTPException(status_code=404, detail="Blood request not found")
        if request.requester_id != current_user_id:
            raise HTTPException(status_code=403, detail="Only the requester can change this request")

        request = await service.update_status(request_id, data.status)
    except StorageUnavailable as e:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=e.message)

    return request
