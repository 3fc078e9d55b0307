"""
Device-side push token registration.

Keeps the backend's routing data (token, device, user, login state) in step
with the device as the push token rotates and the user logs in and out.

Each registration runs as a small state machine:

    PENDING -> SENT -> CONFIRMED
                    -> FAILED -> PENDING (retry n, after n * 5s)
                              -> GIVEN_UP (after retry 3)

The initial send (attempt 0) goes out immediately; retries 1..3 follow after
5s, 10s and 15s. A device has at most one live chain: a new
sync_token() cancels the pending retry timer and any in-flight answer for the
superseded token is ignored.
"""
import enum
import logging
from dataclasses import dataclass, field, replace
from typing import Callable, List, Optional

from donor_dispatch.client.api import ApiResponse, RegistrationApi
from donor_dispatch.client.cache import DeviceCache
from donor_dispatch.client.config import get_client_settings
from donor_dispatch.client.scheduler import AsyncioScheduler, ScheduledCall, Scheduler
from donor_dispatch.models.donor import compound_token_id
from donor_dispatch.services.eligibility import is_valid_push_token
from donor_dispatch.services.errors import RegistrationFailure

logger = logging.getLogger(__name__)

# Returns the id of the user currently signed in on this device, or None
SessionProvider = Callable[[], Optional[str]]


class RegistrationState(str, enum.Enum):
    PENDING = "pending"
    SENT = "sent"
    CONFIRMED = "confirmed"
    FAILED = "failed"
    GIVEN_UP = "given_up"
    SUPERSEDED = "superseded"


@dataclass
class RegistrationAttempt:
    user_id: str
    token: str
    device_id: str
    is_logged_in: bool
    attempt_number: int = 0
    scheduled_delay_ms: int = 0
    state: RegistrationState = RegistrationState.PENDING
    error: Optional[str] = None

    @property
    def compound_token_id(self) -> str:
        return compound_token_id(self.user_id, self.device_id)


@dataclass
class SyncResult:
    success: bool
    state: Optional[RegistrationState] = None
    message: str = ""
    attempts: List[RegistrationAttempt] = field(default_factory=list)


class TokenRegistrationManager:
    def __init__(
        self,
        api: RegistrationApi,
        cache: DeviceCache,
        scheduler: Scheduler,
        current_user: SessionProvider = lambda: None,
        device_type: str = "android",
        app_version: str = "1.0.0",
        max_retries: int = 3,
        backoff_seconds: float = 5.0,
    ):
        self.api = api
        self.cache = cache
        self.scheduler = scheduler
        self.current_user = current_user
        self.device_type = device_type
        self.app_version = app_version
        self.max_retries = max_retries
        self.backoff_seconds = backoff_seconds

        self._generation = 0
        self._pending: Optional[ScheduledCall] = None
        self.attempts: List[RegistrationAttempt] = []

    @classmethod
    def from_settings(
        cls,
        current_user: SessionProvider = lambda: None,
        scheduler: Optional[Scheduler] = None,
    ) -> "TokenRegistrationManager":
        settings = get_client_settings()
        return cls(
            api=RegistrationApi(),
            cache=DeviceCache(settings.cache_path),
            scheduler=scheduler or AsyncioScheduler(),
            current_user=current_user,
            device_type=settings.device_type,
            app_version=settings.app_version,
            max_retries=settings.registration_max_retries,
            backoff_seconds=settings.registration_backoff_seconds,
        )

    @property
    def device_id(self) -> str:
        return self.cache.device_id

    @property
    def has_pending_retry(self) -> bool:
        return self._pending is not None and not self._pending.cancelled

    @property
    def current_attempt(self) -> Optional[RegistrationAttempt]:
        return self.attempts[-1] if self.attempts else None

    def resolve_user_id(self, user_id: Optional[str] = None) -> Optional[str]:
        """Explicit id, else the signed-in user, else the last user this device registered for."""
        return user_id or self.current_user() or self.cache.state.last_user_id

    def _supersede(self) -> None:
        self._generation += 1
        if self._pending is not None:
            self._pending.cancel()
            self._pending = None
        current = self.current_attempt
        if current is not None and current.state in (RegistrationState.PENDING, RegistrationState.SENT):
            current.state = RegistrationState.SUPERSEDED

    async def sync_token(
        self,
        token: str,
        user_id: Optional[str] = None,
        is_logged_in: Optional[bool] = None,
    ) -> SyncResult:
        """
        Register a (possibly new) push token for this device.

        When is_logged_in is not given it is True only if the resolved user
        is the one signed in right now. A token obtained after logout is
        still registered for the last known user, flagged as logged out.
        """
        if not is_valid_push_token(token):
            logger.error(f"Invalid push token format: {(token or '')[:20]}...")
            return SyncResult(success=False, message="invalid_token")

        session_user = self.current_user()
        target = self.resolve_user_id(user_id)
        if is_logged_in is None:
            is_logged_in = session_user is not None and session_user == target

        if target is None:
            logger.warning("No user id available for token sync, keeping token locally")
            self.cache.update(last_token=token)
            return SyncResult(success=False, message="no_user")

        self._supersede()
        self.attempts = []
        attempt = RegistrationAttempt(
            user_id=target,
            token=token,
            device_id=self.device_id,
            is_logged_in=is_logged_in,
        )
        logger.debug(f"Syncing token for {attempt.compound_token_id} (logged_in={is_logged_in})")
        return await self._send(attempt, self._generation)

    async def _send(self, attempt: RegistrationAttempt, generation: int) -> SyncResult:
        self.attempts.append(attempt)
        attempt.state = RegistrationState.SENT
        try:
            response = await self.api.save_token(
                user_id=attempt.user_id,
                token=attempt.token,
                device_id=attempt.device_id,
                is_logged_in=attempt.is_logged_in,
                device_type=self.device_type,
                app_version=self.app_version,
            )
        except RegistrationFailure as e:
            response = ApiResponse(success=False, message=e.message)

        if generation != self._generation:
            attempt.state = RegistrationState.SUPERSEDED
            logger.debug(f"Ignoring answer for superseded token attempt {attempt.attempt_number}")
            return SyncResult(success=False, state=attempt.state, message="superseded", attempts=list(self.attempts))

        if response.success:
            attempt.state = RegistrationState.CONFIRMED
            self.cache.update(
                last_user_id=attempt.user_id,
                last_token=attempt.token,
                is_logged_in=attempt.is_logged_in,
            )
            logger.info(f"Push token saved for {attempt.user_id} on attempt {attempt.attempt_number}")
            return SyncResult(success=True, state=attempt.state, message=response.message, attempts=list(self.attempts))

        attempt.state = RegistrationState.FAILED
        attempt.error = response.message or "unknown error"
        logger.warning(f"Token save attempt {attempt.attempt_number} failed: {attempt.error}")

        if attempt.attempt_number >= self.max_retries:
            attempt.state = RegistrationState.GIVEN_UP
            self.cache.update(last_token=attempt.token)
            logger.error(f"Failed to save push token after {attempt.attempt_number} retries")
            return SyncResult(success=False, state=attempt.state, message=attempt.error, attempts=list(self.attempts))

        delay = (attempt.attempt_number + 1) * self.backoff_seconds
        retry = replace(
            attempt,
            attempt_number=attempt.attempt_number + 1,
            scheduled_delay_ms=int(delay * 1000),
            state=RegistrationState.PENDING,
            error=None,
        )
        self._pending = self.scheduler.call_later(delay, lambda: self._run_retry(retry, generation))
        logger.info(f"Retrying token save (retry {retry.attempt_number}) in {delay:.0f}s")
        return SyncResult(success=False, state=attempt.state, message=attempt.error, attempts=list(self.attempts))

    async def _run_retry(self, attempt: RegistrationAttempt, generation: int) -> None:
        if generation != self._generation:
            return
        self._pending = None
        await self._send(attempt, generation)

    async def _set_login_state(self, user_id: Optional[str], logged_in: bool) -> SyncResult:
        target = user_id or self.current_user()
        if target is None:
            logger.warning(f"No user id available to mark {'login' if logged_in else 'logout'}")
            return SyncResult(success=False, message="no_user")

        try:
            if logged_in:
                response = await self.api.mark_logged_in(target, self.device_id)
            else:
                response = await self.api.mark_logged_out(target, self.device_id)
        except RegistrationFailure as e:
            logger.error(f"Error updating login state for {target}: {e.message}")
            return SyncResult(success=False, message=e.message)

        if not response.success:
            logger.error(f"Backend rejected login state update for {target}: {response.message}")
            return SyncResult(success=False, message=response.message)

        self.cache.update(is_logged_in=logged_in, last_user_id=target)
        logger.info(f"User {target} marked as {'logged in' if logged_in else 'logged out'}")
        return SyncResult(success=True, message=response.message)

    async def mark_logged_in(self, user_id: Optional[str] = None) -> SyncResult:
        """Flip the backend login flag for this device; the token is not re-sent."""
        return await self._set_login_state(user_id, True)

    async def mark_logged_out(self, user_id: Optional[str] = None) -> SyncResult:
        """Flip the backend login flag off; the device keeps receiving pushes."""
        return await self._set_login_state(user_id, False)

    async def sync_with_current_status(self) -> SyncResult:
        """Re-register the cached token with the current login state."""
        token = self.cache.state.last_token
        if not token:
            logger.debug("No saved token to sync")
            return SyncResult(success=False, message="no_token")

        session_user = self.current_user()
        return await self.sync_token(
            token,
            user_id=session_user or self.cache.state.last_user_id,
            is_logged_in=session_user is not None,
        )

    async def initialize(self) -> Optional[SyncResult]:
        """Start-up hook: sync a cached token, or wait for the provider to issue one."""
        if not self.cache.state.last_token:
            logger.debug("No saved token, waiting for a new one from the push provider")
            return None
        return await self.sync_with_current_status()
