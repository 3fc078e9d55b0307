import enum
import uuid
from datetime import datetime
from sqlalchemy import String, Integer, DateTime, Enum, Index
from sqlalchemy.orm import Mapped, mapped_column
from typing import Optional

from donor_dispatch.database import Base


class RequestStatus(str, enum.Enum):
    PENDING = "pending"
    CANCELLED = "cancelled"
    COMPLETED = "completed"


class Urgency(str, enum.Enum):
    NORMAL = "normal"
    HIGH = "high"


def new_request_id() -> str:
    return f"req_{uuid.uuid4().hex[:16]}"


class BloodRequest(Base):
    __tablename__ = "blood_requests"

    __table_args__ = (
        Index("ix_blood_requests_requester", "requester_id"),
        Index("ix_blood_requests_status_created", "status", "created_at"),
    )

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=new_request_id)

    blood_group: Mapped[str] = mapped_column(String(3))
    district: Mapped[str] = mapped_column(String(50))
    patient_name: Mapped[str] = mapped_column(String(100))
    hospital: Mapped[str] = mapped_column(String(200))
    contact_phone: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    units: Mapped[int] = mapped_column(Integer, default=1)
    urgency: Mapped[Urgency] = mapped_column(Enum(Urgency), default=Urgency.NORMAL)

    requester_id: Mapped[str] = mapped_column(String(128))
    status: Mapped[RequestStatus] = mapped_column(Enum(RequestStatus), default=RequestStatus.PENDING)

    # Dispatch accounting, written once after the push fan-out
    total_compatible_donors: Mapped[int] = mapped_column(Integer, default=0)
    eligible_donors: Mapped[int] = mapped_column(Integer, default=0)
    notified_donors: Mapped[int] = mapped_column(Integer, default=0)
    failed_notifications: Mapped[int] = mapped_column(Integer, default=0)
    dispatched_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow
    )

    def __repr__(self) -> str:
        return f"<BloodRequest {self.id} {self.blood_group} {self.district}>"
