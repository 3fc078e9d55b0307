"""
Blood request handling: from an accepted request to notified donors.

    validate -> compatible groups -> per-group donor queries (fan-out)
    -> eligibility filter -> notification history (one transaction)
    -> batched push -> aggregated outcome

Push is sent exactly once per accepted request. Resubmitting a request id
that has already been dispatched returns the stored counts without sending;
a stored request that never reached the push step is dispatched on resubmit.
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from donor_dispatch.config import get_settings
from donor_dispatch.models.blood_request import BloodRequest, RequestStatus, Urgency, new_request_id
from donor_dispatch.models.notification import notification_id
from donor_dispatch.schemas.blood_request import BloodRequestCreate
from donor_dispatch.services.compatibility import compatible_donor_groups, parse_blood_group
from donor_dispatch.services.eligibility import EligibilityFilter, MatchedDonor, RequesterIdentity
from donor_dispatch.services.errors import StorageUnavailable, ValidationError
from donor_dispatch.services.notification import NotificationRecorder, alert_message, alert_title
from donor_dispatch.services.push import DispatchBatcher, DispatchOutcome, PushPayload, PushProvider
from donor_dispatch.services.registry import DonorRegistry
from donor_dispatch.utils.bangladesh import normalize_district

settings = get_settings()
logger = logging.getLogger(__name__)


@dataclass
class RequestOutcome:
    success: bool
    request_id: Optional[str] = None
    message: str = ""
    reason: Optional[str] = None
    total_compatible_donors: int = 0
    eligible_donors: int = 0
    notified_donors: int = 0
    failed_notifications: int = 0


@dataclass
class MatchingStats:
    blood_group: str
    district: str
    compatible_blood_types: List[str]
    eligible_donors: int


def build_payload(request: BloodRequest, notify_list: List[MatchedDonor]) -> PushPayload:
    """Shared alert data plus the per-recipient fields the device needs for its visibility check."""
    urgency = request.urgency.value if isinstance(request.urgency, Urgency) else str(request.urgency)
    data = {
        "type": "blood_request",
        "requestId": request.id,
        "bloodGroup": request.blood_group,
        "district": request.district,
        "hospital": request.hospital or "",
        "patientName": request.patient_name or "",
        "contactPhone": request.contact_phone or "",
        "urgency": urgency,
        "units": str(request.units or 1),
        "timestamp": datetime.utcnow().isoformat(),
    }

    token_data = {}
    for match in notify_list:
        token = (match.push_token or "").strip()
        # A token shared by two accounts is addressed to the higher-ranked one
        if not token or token in token_data:
            continue
        token_data[token] = {
            "recipientUserId": match.donor_id,
            "isLoggedIn": "true" if match.donor.is_logged_in else "false",
            "notificationId": notification_id(request.id, match.donor_id),
        }

    return PushPayload(
        title=alert_title(request),
        body=alert_message(request),
        data=data,
        token_data=token_data,
    )


class BloodRequestService:
    def __init__(self, db: AsyncSession, provider: PushProvider, now: Optional[datetime] = None):
        self.db = db
        self.registry = DonorRegistry(db)
        self.recorder = NotificationRecorder(db)
        self.batcher = DispatchBatcher(provider, max_concurrent_batches=settings.push_max_concurrent_batches)
        self.now = now

    async def _find_notify_list(self, blood_group: str, district: str, requester: RequesterIdentity):
        groups = compatible_donor_groups(blood_group)
        candidates = await self.registry.find_compatible(groups, district)
        total = len({c.id for c in candidates})
        notify_list = EligibilityFilter(now=self.now).apply(candidates, requester)
        return total, notify_list

    async def get_request(self, request_id: str) -> Optional[BloodRequest]:
        try:
            result = await self.db.execute(select(BloodRequest).where(BloodRequest.id == request_id))
        except SQLAlchemyError as e:
            raise StorageUnavailable("Request store unavailable") from e
        return result.scalar_one_or_none()

    async def _save(self):
        try:
            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            raise StorageUnavailable("Request store unavailable") from e

    async def submit(self, data: BloodRequestCreate) -> RequestOutcome:
        """Accept a blood request and notify every eligible compatible donor once."""
        try:
            blood_group = parse_blood_group(data.blood_group).value
            try:
                district = normalize_district(data.district)
            except ValueError as e:
                raise ValidationError(str(e))
            if not (data.requester_id or "").strip():
                raise ValidationError("Requester id is required")
        except ValidationError as e:
            logger.info(f"Rejected blood request: {e.message}")
            return RequestOutcome(success=False, message=e.message, reason=e.reason)

        try:
            existing = await self.get_request(data.request_id) if data.request_id else None
            if existing is not None and existing.dispatched_at is not None:
                logger.info(f"Request {existing.id} already dispatched, not sending again")
                return RequestOutcome(
                    success=True,
                    request_id=existing.id,
                    message="Request already dispatched",
                    total_compatible_donors=existing.total_compatible_donors,
                    eligible_donors=existing.eligible_donors,
                    notified_donors=existing.notified_donors,
                    failed_notifications=existing.failed_notifications,
                )

            if existing is not None:
                # Stored by an earlier submission that stopped before the push went out
                logger.info(f"Resuming dispatch for request {existing.id}")
                request = existing
            else:
                request = BloodRequest(
                    id=data.request_id or new_request_id(),
                    blood_group=blood_group,
                    district=district,
                    patient_name=data.patient_name,
                    hospital=data.hospital,
                    contact_phone=data.contact_phone,
                    units=data.units,
                    urgency=data.urgency or Urgency.NORMAL,
                    requester_id=data.requester_id.strip(),
                    status=RequestStatus.PENDING,
                )
                self.db.add(request)
                await self._save()

            blood_group = request.blood_group
            district = request.district
            requester = await self.registry.resolve_identity(request.requester_id)
            total, notify_list = await self._find_notify_list(blood_group, district, requester)

            # History first: the inbox must not depend on push delivery
            await self.recorder.record(request.id, request, notify_list)
        except StorageUnavailable as e:
            logger.error(f"Blood request aborted: {e.message}")
            return RequestOutcome(success=False, message=e.message, reason=e.reason)

        if not notify_list:
            logger.info(f"Request {request.id}: no eligible donors in {district} for {blood_group}")

        outcome = await self.batcher.dispatch(notify_list, build_payload(request, notify_list))
        await self._after_dispatch(request, total, len(notify_list), outcome)

        if notify_list:
            message = f"Notifications sent to {outcome.success_count} donors"
        else:
            message = "No eligible compatible donors found in this district"

        return RequestOutcome(
            success=True,
            request_id=request.id,
            message=message,
            total_compatible_donors=total,
            eligible_donors=len(notify_list),
            notified_donors=outcome.success_count,
            failed_notifications=outcome.failure_count,
        )

    async def _after_dispatch(self, request: BloodRequest, total: int, eligible: int, outcome: DispatchOutcome):
        """Token cleanup and counters. Pushes are already out, so storage errors here are only logged."""
        if settings.prune_stale_tokens and outcome.stale_tokens:
            try:
                await self.registry.clear_tokens(outcome.stale_tokens)
            except StorageUnavailable as e:
                logger.warning(f"Could not clear stale tokens for request {request.id}: {e.message}")

        request.total_compatible_donors = total
        request.eligible_donors = eligible
        request.notified_donors = outcome.success_count
        request.failed_notifications = outcome.failure_count
        request.dispatched_at = datetime.utcnow()
        try:
            await self._save()
        except StorageUnavailable as e:
            logger.warning(f"Could not store dispatch counters for request {request.id}: {e.message}")

    async def matching_stats(self, blood_group: str, district: str, requester_id: Optional[str] = None) -> MatchingStats:
        """How many donors a request would reach right now, without sending anything."""
        group = parse_blood_group(blood_group)
        requester = RequesterIdentity(user_id=requester_id or "")
        if requester_id:
            requester = await self.registry.resolve_identity(requester_id)
        _, notify_list = await self._find_notify_list(group.value, district, requester)
        return MatchingStats(
            blood_group=group.value,
            district=district,
            compatible_blood_types=sorted(g.value for g in compatible_donor_groups(group)),
            eligible_donors=len(notify_list),
        )

    async def update_status(self, request_id: str, status: RequestStatus) -> Optional[BloodRequest]:
        """Change a request's status. Notifications already sent are not retracted."""
        request = await self.get_request(request_id)
        if request is None:
            return None
        request.status = status
        await self._save()
        await self.db.refresh(request)
        logger.info(f"Request {request_id} marked {status.value}")
        return request
