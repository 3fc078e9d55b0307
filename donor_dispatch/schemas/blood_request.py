from pydantic import BaseModel, ConfigDict, Field, AliasChoices, field_validator, model_validator
from pydantic.alias_generators import to_camel
from typing import Optional, List
from datetime import datetime

from donor_dispatch.models.blood_request import RequestStatus, Urgency
from donor_dispatch.services.compatibility import parse_blood_group
from donor_dispatch.services.errors import InvalidBloodGroup
from donor_dispatch.utils.bangladesh import normalize_district

# Requests of this size are treated as urgent when the requester doesn't say
HIGH_URGENCY_UNITS = 5


class CamelModel(BaseModel):
    """Wire format is camelCase (mobile clients); snake_case is accepted too."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class BloodRequestCreate(CamelModel):
    """Schema for submitting a blood request"""
    blood_group: str
    district: str
    patient_name: str = Field(..., min_length=1, max_length=100)
    hospital: str = Field(
        ...,
        min_length=1,
        max_length=200,
        validation_alias=AliasChoices("hospital", "hospitalName", "medicalName"),
    )
    requester_id: str = Field(..., min_length=1, max_length=128)
    contact_phone: Optional[str] = Field(None, max_length=20)
    units: int = Field(1, ge=1, le=10)
    urgency: Optional[Urgency] = None
    request_id: Optional[str] = Field(None, max_length=64)

    @field_validator("blood_group")
    @classmethod
    def validate_blood_group(cls, v):
        try:
            return parse_blood_group(v).value
        except InvalidBloodGroup as e:
            raise ValueError(e.message)

    @field_validator("district")
    @classmethod
    def validate_district(cls, v):
        return normalize_district(v)

    @field_validator("requester_id", "patient_name", "hospital")
    @classmethod
    def strip_required(cls, v):
        v = v.strip()
        if not v:
            raise ValueError("must not be blank")
        return v

    @field_validator("urgency", mode="before")
    @classmethod
    def normalize_urgency(cls, v):
        if v is None or v == "":
            return None
        return Urgency.HIGH if str(v).strip().lower() == "high" else Urgency.NORMAL

    @model_validator(mode="after")
    def derive_urgency(self):
        if self.urgency is None:
            self.urgency = Urgency.HIGH if self.units >= HIGH_URGENCY_UNITS else Urgency.NORMAL
        return self


class BloodRequestResult(CamelModel):
    """Outcome of a blood request submission"""
    success: bool
    request_id: Optional[str] = None
    message: str = ""
    total_compatible_donors: int = 0
    eligible_donors: int = 0
    notified_donors: int = 0
    failed_notifications: int = 0


class BloodRequestResponse(CamelModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)

    id: str
    blood_group: str
    district: str
    patient_name: str
    hospital: str
    units: int
    urgency: Urgency
    requester_id: str
    status: RequestStatus
    eligible_donors: int
    notified_donors: int
    failed_notifications: int
    created_at: datetime


class StatusUpdate(CamelModel):
    status: RequestStatus


class MatchingStatsRequest(CamelModel):
    blood_group: str
    district: str

    @field_validator("blood_group")
    @classmethod
    def validate_blood_group(cls, v):
        try:
            return parse_blood_group(v).value
        except InvalidBloodGroup as e:
            raise ValueError(e.message)

    @field_validator("district")
    @classmethod
    def validate_district(cls, v):
        return normalize_district(v)


class MatchingStatsResponse(CamelModel):
    blood_group: str
    district: str
    compatible_blood_types: List[str]
    eligible_donors: int
