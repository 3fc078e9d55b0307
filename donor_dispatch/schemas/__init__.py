from donor_dispatch.schemas.blood_request import (
    BloodRequestCreate, BloodRequestResult, BloodRequestResponse,
    StatusUpdate, MatchingStatsRequest, MatchingStatsResponse
)
from donor_dispatch.schemas.notification import (
    SaveTokenRequest, LoginStateRequest, ApiResult,
    NotificationResponse, UnreadCountResponse
)

__all__ = [
    "BloodRequestCreate", "BloodRequestResult", "BloodRequestResponse",
    "StatusUpdate", "MatchingStatsRequest", "MatchingStatsResponse",
    "SaveTokenRequest", "LoginStateRequest", "ApiResult",
    "NotificationResponse", "UnreadCountResponse",
]
