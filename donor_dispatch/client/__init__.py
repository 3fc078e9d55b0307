from donor_dispatch.client.api import ApiResponse, RegistrationApi
from donor_dispatch.client.cache import DeviceCache, DeviceState
from donor_dispatch.client.scheduler import AsyncioScheduler, ScheduledCall, Scheduler
from donor_dispatch.client.token_sync import (
    RegistrationAttempt,
    RegistrationState,
    SyncResult,
    TokenRegistrationManager,
)
from donor_dispatch.client.visibility import (
    IncomingPush,
    IncomingPushHandler,
    VisibilityDecision,
    should_render,
)

__all__ = [
    "ApiResponse", "RegistrationApi",
    "DeviceCache", "DeviceState",
    "AsyncioScheduler", "ScheduledCall", "Scheduler",
    "RegistrationAttempt", "RegistrationState", "SyncResult", "TokenRegistrationManager",
    "IncomingPush", "IncomingPushHandler", "VisibilityDecision", "should_render",
]
