import logging
from datetime import datetime
from typing import List, Sequence

from sqlalchemy import select, update, func, and_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from donor_dispatch.models.blood_request import BloodRequest, Urgency
from donor_dispatch.models.notification import Notification, notification_id
from donor_dispatch.services.errors import StorageUnavailable

logger = logging.getLogger(__name__)


def alert_title(request: BloodRequest) -> str:
    if request.urgency == Urgency.HIGH:
        return "URGENT: Blood Needed"
    return "Blood Donation Request"


def alert_message(request: BloodRequest) -> str:
    hospital = request.hospital or "Hospital"
    if request.patient_name:
        return f"{request.patient_name} needs {request.blood_group} blood at {hospital} ({request.district})"
    return f"{request.blood_group} blood needed at {hospital} in {request.district}"


class NotificationRecorder:
    """
    Durable per-recipient history of blood request alerts.

    One record per (request, recipient), written as a single transaction per
    request before any push goes out, so the in-app inbox never depends on
    push delivery.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    async def record(self, request_id: str, request: BloodRequest, donors: Sequence) -> int:
        """
        Upsert one notification per donor in one commit.

        Re-recording the same request overwrites the content fields; read state
        and creation time of an existing record are kept.
        """
        recipient_ids = list(dict.fromkeys(d.donor_id for d in donors))
        if not recipient_ids:
            return 0

        ids = [notification_id(request_id, r) for r in recipient_ids]
        title = alert_title(request)
        message = alert_message(request)
        urgency = request.urgency.value if isinstance(request.urgency, Urgency) else str(request.urgency)

        try:
            result = await self.db.execute(select(Notification).where(Notification.id.in_(ids)))
            existing = {n.id: n for n in result.scalars().all()}

            for recipient_id, nid in zip(recipient_ids, ids):
                notification = existing.get(nid)
                if notification is None:
                    notification = Notification(
                        id=nid,
                        recipient_id=recipient_id,
                        request_id=request_id,
                        created_at=datetime.utcnow(),
                        is_read=False,
                    )
                    self.db.add(notification)
                notification.type = "blood_request"
                notification.title = title
                notification.message = message
                notification.blood_group = request.blood_group
                notification.hospital = request.hospital or ""
                notification.district = request.district
                notification.urgency = urgency
                notification.units = request.units or 1

            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error(f"Failed to record notifications for request {request_id}: {e}")
            raise StorageUnavailable("Notification store unavailable") from e

        logger.info(
            f"Recorded {len(ids)} notifications for request {request_id} "
            f"({len(ids) - len(existing)} new, {len(existing)} overwritten)"
        )
        return len(ids)

    async def list_for(
        self,
        recipient_id: str,
        skip: int = 0,
        limit: int = 30,
        unread_only: bool = False,
    ) -> List[Notification]:
        query = select(Notification).where(Notification.recipient_id == recipient_id)
        if unread_only:
            query = query.where(Notification.is_read == False)
        query = query.order_by(Notification.created_at.desc()).offset(skip).limit(limit)
        try:
            result = await self.db.execute(query)
        except SQLAlchemyError as e:
            logger.error(f"Failed to list notifications for {recipient_id}: {e}")
            raise StorageUnavailable("Notification store unavailable") from e
        return list(result.scalars().all())

    async def unread_count(self, recipient_id: str) -> int:
        try:
            result = await self.db.execute(
                select(func.count(Notification.id)).where(
                    and_(
                        Notification.recipient_id == recipient_id,
                        Notification.is_read == False,
                    )
                )
            )
        except SQLAlchemyError as e:
            logger.error(f"Failed to count unread notifications for {recipient_id}: {e}")
            raise StorageUnavailable("Notification store unavailable") from e
        return result.scalar() or 0

    async def mark_read(self, recipient_id: str, notification_id: str):
        """Mark one of the recipient's notifications read. Returns None if it isn't theirs."""
        try:
            result = await self.db.execute(
                select(Notification).where(
                    Notification.id == notification_id,
                    Notification.recipient_id == recipient_id,
                )
            )
            notification = result.scalar_one_or_none()
            if notification is None:
                return None
            if not notification.is_read:
                notification.is_read = True
                notification.read_at = datetime.utcnow()
                await self.db.commit()
                await self.db.refresh(notification)
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error(f"Failed to mark notification {notification_id} read: {e}")
            raise StorageUnavailable("Notification store unavailable") from e
        return notification

    async def mark_all_read(self, recipient_id: str) -> int:
        """Mark every unread notification of a recipient read in one statement."""
        try:
            result = await self.db.execute(
                update(Notification)
                .where(
                    and_(
                        Notification.recipient_id == recipient_id,
                        Notification.is_read == False,
                    )
                )
                .values(is_read=True, read_at=datetime.utcnow())
            )
            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error(f"Failed to mark notifications read for {recipient_id}: {e}")
            raise StorageUnavailable("Notification store unavailable") from e
        return result.rowcount or 0
