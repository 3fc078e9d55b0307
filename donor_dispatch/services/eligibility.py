"""
Eligibility filtering for matched donor candidates.

Takes the raw candidates returned by the donor registry and reduces them to
the notify-list for one blood request:
- self-exclusion by account id and by the requester's device identity
- availability and notification opt-outs
- 90-day donation recency (inclusive)
- deduplication by donor id
- ranking: valid push token first, then longest time since last donation
"""
import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from typing import FrozenSet, Iterable, List, Optional

from donor_dispatch.models.donor import Donor
from donor_dispatch.services.errors import MalformedDonorRecord

logger = logging.getLogger(__name__)

DONATION_INTERVAL_DAYS = 90
MIN_PUSH_TOKEN_LENGTH = 10

LEGACY_DATE_FORMAT = "%d/%m/%Y"


def is_valid_push_token(token: Optional[str]) -> bool:
    """Structural sanity check for a device push token (not a cryptographic check)."""
    return bool(token) and len(token) >= MIN_PUSH_TOKEN_LENGTH and ":" in token


def decode_instant(value) -> Optional[datetime]:
    """
    Decode a stored timestamp into a naive UTC datetime.

    None means "unset" (never donated). Accepts datetimes, dates, epoch
    milliseconds, ISO-8601 strings and legacy dd/MM/yyyy strings. Zero and
    empty values are unset. Raises MalformedDonorRecord for anything else.
    """
    if value is None or value == "" or value == 0:
        return None
    if isinstance(value, bool):
        raise MalformedDonorRecord(f"Unexpected boolean timestamp: {value!r}")
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            return value.astimezone(timezone.utc).replace(tzinfo=None)
        return value
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    if isinstance(value, (int, float)):
        try:
            return datetime.utcfromtimestamp(value / 1000)
        except (OverflowError, OSError, ValueError) as e:
            raise MalformedDonorRecord(f"Epoch timestamp out of range: {value!r}") from e
    if isinstance(value, str):
        raw = value.strip()
        if not raw:
            return None
        try:
            return datetime.strptime(raw, LEGACY_DATE_FORMAT)
        except ValueError:
            pass
        try:
            return decode_instant(datetime.fromisoformat(raw.replace("Z", "+00:00")))
        except ValueError as e:
            raise MalformedDonorRecord(f"Unparseable timestamp: {value!r}") from e
    raise MalformedDonorRecord(f"Unsupported timestamp type: {type(value).__name__}")


def last_donation_of(donor: Donor) -> Optional[datetime]:
    """The donor's last donation instant; the canonical column wins over the legacy text field."""
    if donor.last_donation_date is not None:
        return decode_instant(donor.last_donation_date)
    return decode_instant(donor.last_donation)


def days_since(last_donation: Optional[datetime], now: datetime) -> int:
    if last_donation is None:
        return 0
    return (now - last_donation).days


def is_eligible(last_donation: Optional[datetime], now: Optional[datetime] = None) -> bool:
    """Eligible when never donated or at least 90 full days have passed."""
    if last_donation is None:
        return True
    now = now or datetime.utcnow()
    return now - last_donation >= timedelta(days=DONATION_INTERVAL_DAYS)


@dataclass(frozen=True)
class RequesterIdentity:
    """Every identity handle that belongs to the person asking for blood."""
    user_id: str
    device_ids: FrozenSet[str] = field(default_factory=frozenset)
    push_tokens: FrozenSet[str] = field(default_factory=frozenset)

    def owns(self, donor: Donor) -> bool:
        if donor.id == self.user_id:
            return True
        if donor.device_id and donor.device_id in self.device_ids:
            return True
        return bool(donor.push_token) and donor.push_token in self.push_tokens


@dataclass
class MatchedDonor:
    donor: Donor
    days_since_last_donation: int = 0

    @property
    def donor_id(self) -> str:
        return self.donor.id

    @property
    def push_token(self) -> Optional[str]:
        return self.donor.push_token

    @property
    def has_valid_token(self) -> bool:
        return is_valid_push_token(self.donor.push_token)


class EligibilityFilter:
    """Reduces registry candidates to a ranked, deduplicated notify-list."""

    def __init__(self, now: Optional[datetime] = None):
        self._now = now

    def apply(
        self,
        candidates: Iterable[Donor],
        requester: RequesterIdentity,
    ) -> List[MatchedDonor]:
        now = self._now or datetime.utcnow()
        seen = set()
        matched: List[MatchedDonor] = []
        excluded_self = 0
        excluded_unavailable = 0
        excluded_recent = 0

        for donor in candidates:
            if donor.id in seen:
                continue
            seen.add(donor.id)

            if requester.owns(donor):
                excluded_self += 1
                continue

            if not donor.is_available or not donor.notification_enabled:
                excluded_unavailable += 1
                continue

            try:
                last_donation = last_donation_of(donor)
            except MalformedDonorRecord as e:
                logger.warning(f"Skipping donor {donor.id}: {e.message}")
                continue

            if not is_eligible(last_donation, now):
                excluded_recent += 1
                continue

            matched.append(MatchedDonor(donor=donor, days_since_last_donation=days_since(last_donation, now)))

        # Stable sort: valid token first, then longest since last donation
        matched.sort(key=lambda m: (not m.has_valid_token, -m.days_since_last_donation))

        logger.debug(
            f"Eligibility: {len(matched)} kept, {excluded_self} self, "
            f"{excluded_unavailable} unavailable, {excluded_recent} donated recently"
        )
        return matched
