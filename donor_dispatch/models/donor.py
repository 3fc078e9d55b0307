from datetime import datetime
from sqlalchemy import String, Boolean, DateTime, Index
from sqlalchemy.orm import Mapped, mapped_column
from typing import Optional

from donor_dispatch.database import Base


def compound_token_id(user_id: str, device_id: str) -> str:
    """Idempotency key for one device registration of one user."""
    return f"{user_id}_{device_id}"


class Donor(Base):
    """Donor-facing projection: one document per donor, keyed by the owning user id."""
    __tablename__ = "donors"

    __table_args__ = (
        # Matching query: blood_group IN (...) AND district = ? AND is_active
        Index("ix_donors_match", "blood_group", "district", "is_active"),
        Index("ix_donors_push_token", "push_token"),
        Index("ix_donors_device_id", "device_id"),
    )

    id: Mapped[str] = mapped_column(String(128), primary_key=True)  # == user id

    # Personal info
    name: Mapped[str] = mapped_column(String(100), default="")
    phone: Mapped[str] = mapped_column(String(20), default="")

    # Matching fields
    blood_group: Mapped[Optional[str]] = mapped_column(String(3), nullable=True)  # A+, A-, ..., AB-
    district: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)

    # Device routing
    push_token: Mapped[Optional[str]] = mapped_column(String(512), nullable=True)
    has_push_token: Mapped[bool] = mapped_column(Boolean, default=False)
    device_id: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    compound_token_id: Mapped[Optional[str]] = mapped_column(String(260), nullable=True)
    device_type: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)  # android, ios
    app_version: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)

    # Availability
    is_available: Mapped[bool] = mapped_column(Boolean, default=True)  # donor opt-out
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)  # soft-disable used by matching
    is_logged_in: Mapped[bool] = mapped_column(Boolean, default=False)
    notification_enabled: Mapped[bool] = mapped_column(Boolean, default=True)

    # Donation history: canonical instant, plus the legacy dd/MM/yyyy profile field
    last_donation_date: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    last_donation: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)

    # Timestamps
    last_active: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow
    )

    def __repr__(self) -> str:
        return f"<Donor {self.id} {self.blood_group} {self.district}>"


class UserDevice(Base):
    """User-facing projection: one row per (user, device) registration."""
    __tablename__ = "user_devices"

    __table_args__ = (
        Index("ix_user_devices_user", "user_id"),
        Index("ix_user_devices_token", "push_token"),
    )

    compound_token_id: Mapped[str] = mapped_column(String(260), primary_key=True)
    user_id: Mapped[str] = mapped_column(String(128))
    device_id: Mapped[str] = mapped_column(String(128))
    push_token: Mapped[Optional[str]] = mapped_column(String(512), nullable=True)
    has_push_token: Mapped[bool] = mapped_column(Boolean, default=False)
    user_type: Mapped[str] = mapped_column(String(20), default="donor")  # donor, recipient, admin
    device_type: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    app_version: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    is_logged_in: Mapped[bool] = mapped_column(Boolean, default=False)
    last_active: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow
    )

    def __repr__(self) -> str:
        return f"<UserDevice {self.compound_token_id}>"
