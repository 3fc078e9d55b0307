from pydantic import ConfigDict, Field, AliasChoices, field_validator
from pydantic.alias_generators import to_camel
from typing import Optional
from datetime import datetime

from donor_dispatch.schemas.blood_request import CamelModel


class SaveTokenRequest(CamelModel):
    """Device push token registration"""
    user_id: str = Field(..., min_length=1, max_length=128)
    token: str = Field(..., validation_alias=AliasChoices("token", "fcmToken"))
    device_id: str = Field(..., min_length=1, max_length=128)
    device_type: Optional[str] = "android"
    app_version: Optional[str] = None
    user_type: str = "donor"
    is_logged_in: bool = True

    @field_validator("user_id", "device_id")
    @classmethod
    def strip_required(cls, v):
        v = v.strip()
        if not v:
            raise ValueError("must not be blank")
        return v


class LoginStateRequest(CamelModel):
    user_id: str = Field(..., min_length=1, max_length=128)
    device_id: str = Field(..., min_length=1, max_length=128)


class ApiResult(CamelModel):
    success: bool
    message: str = ""
    compound_token_id: Optional[str] = None


class NotificationResponse(CamelModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)

    id: str
    recipient_id: str
    request_id: str
    type: str
    title: str
    message: str
    blood_group: str
    hospital: str
    district: str
    urgency: str
    units: int
    is_read: bool
    created_at: datetime
    read_at: Optional[datetime] = None


class UnreadCountResponse(CamelModel):
    count: int
