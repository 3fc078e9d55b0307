from donor_dispatch.models.donor import Donor, UserDevice
from donor_dispatch.models.blood_request import BloodRequest, RequestStatus, Urgency
from donor_dispatch.models.notification import Notification

__all__ = [
    "Donor",
    "UserDevice",
    "BloodRequest",
    "RequestStatus",
    "Urgency",
    "Notification",
]
