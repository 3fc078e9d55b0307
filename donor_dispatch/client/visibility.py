"""
Decides on the device whether an arriving push is shown or only archived.

The backend sends data-only pushes that carry the intended recipient and that
recipient's login state at send time. A device kept after logout must not
interrupt whoever holds it with another account's alert; the notification
record is already stored server-side, so nothing is lost by not rendering.
"""
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, Mapping, Optional

from donor_dispatch.client.cache import DeviceCache

logger = logging.getLogger(__name__)


def should_render(
    recipient_user_id: Optional[str],
    current_session_user_id: Optional[str],
    last_known_user_id: Optional[str],
    recipient_is_logged_in_at_send_time: bool,
) -> bool:
    if not recipient_user_id:
        return True

    if current_session_user_id:
        for_this_identity = recipient_user_id == current_session_user_id
    else:
        for_this_identity = recipient_user_id == last_known_user_id

    return for_this_identity and recipient_is_logged_in_at_send_time


def _parse_flag(value: Any, default: bool = True) -> bool:
    if value is None or value == "":
        return default
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() == "true"


@dataclass
class IncomingPush:
    title: str
    body: str
    recipient_user_id: Optional[str] = None
    recipient_is_logged_in: bool = True
    request_id: Optional[str] = None
    notification_id: Optional[str] = None
    notification_type: Optional[str] = None

    @classmethod
    def from_data(cls, data: Mapping[str, Any]) -> "IncomingPush":
        """Decode a push data map. String values only, as push providers deliver them."""
        return cls(
            title=data.get("title") or "Blood Donation Request",
            body=data.get("body") or data.get("message") or "",
            recipient_user_id=data.get("recipientUserId") or None,
            recipient_is_logged_in=_parse_flag(data.get("isLoggedIn")),
            request_id=data.get("requestId") or None,
            notification_id=data.get("notificationId") or None,
            notification_type=data.get("type") or None,
        )


@dataclass
class VisibilityDecision:
    render: bool
    reason: str
    target_user_id: Optional[str] = None


class IncomingPushHandler:
    """Applies the render policy to arriving pushes using the device's session and cache."""

    def __init__(
        self,
        cache: DeviceCache,
        current_user: Callable[[], Optional[str]],
        display: Callable[[IncomingPush], None],
        archive: Optional[Callable[[IncomingPush], None]] = None,
    ):
        self.cache = cache
        self.current_user = current_user
        self.display = display
        self.archive = archive

    def decide(self, push: IncomingPush) -> VisibilityDecision:
        session_user = self.current_user()
        last_known = self.cache.state.last_user_id
        target = push.recipient_user_id

        if not target:
            return VisibilityDecision(render=True, reason="untargeted")

        render = should_render(target, session_user, last_known, push.recipient_is_logged_in)
        if render:
            return VisibilityDecision(render=True, reason="recipient_active", target_user_id=target)

        if not push.recipient_is_logged_in:
            reason = "recipient_logged_out"
        else:
            reason = "different_user"
        return VisibilityDecision(render=False, reason=reason, target_user_id=target)

    def handle(self, data: Dict[str, Any]) -> VisibilityDecision:
        push = IncomingPush.from_data(data)
        decision = self.decide(push)

        if decision.render:
            logger.info(f"Showing push for request {push.request_id}")
            self.display(push)
        else:
            logger.info(
                f"Archiving push for {decision.target_user_id} without showing it ({decision.reason})"
            )
            if self.archive is not None:
                self.archive(push)
        return decision
