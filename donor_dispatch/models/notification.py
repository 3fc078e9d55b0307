from datetime import datetime
from sqlalchemy import String, Boolean, Integer, DateTime, Text, Index
from sqlalchemy.orm import Mapped, mapped_column
from typing import Optional

from donor_dispatch.database import Base


def notification_id(request_id: str, recipient_id: str) -> str:
    """Deterministic id so a re-dispatch of the same request overwrites instead of duplicating."""
    return f"{request_id}_{recipient_id}"


class Notification(Base):
    __tablename__ = "notifications"

    __table_args__ = (
        Index("ix_notifications_recipient_unread", "recipient_id", "is_read"),
        Index("ix_notifications_recipient_created", "recipient_id", "created_at"),
        Index("ix_notifications_request", "request_id"),
    )

    id: Mapped[str] = mapped_column(String(200), primary_key=True)
    recipient_id: Mapped[str] = mapped_column(String(128))
    request_id: Mapped[str] = mapped_column(String(64))
    type: Mapped[str] = mapped_column(String(50), default="blood_request")
    title: Mapped[str] = mapped_column(String(200))
    message: Mapped[str] = mapped_column(Text)

    # Request fields copied at dispatch time
    blood_group: Mapped[str] = mapped_column(String(3))
    hospital: Mapped[str] = mapped_column(String(200), default="")
    district: Mapped[str] = mapped_column(String(50), default="")
    urgency: Mapped[str] = mapped_column(String(10), default="normal")
    units: Mapped[int] = mapped_column(Integer, default=1)

    is_read: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    read_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
