"""
Donor registry: the storage adapter over the donor and user-device projections.

Matching logic above this layer asks for "donors of group g in district d that
are active" and gets back unordered records. Anything index- or
datastore-specific stays in here.
"""
import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, List, Optional

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from donor_dispatch.models.donor import Donor, UserDevice, compound_token_id
from donor_dispatch.services.compatibility import BloodGroup
from donor_dispatch.services.eligibility import RequesterIdentity, is_valid_push_token
from donor_dispatch.services.errors import StorageUnavailable

logger = logging.getLogger(__name__)


@dataclass
class TokenRegistration:
    """One device registration as received from the device."""
    user_id: str
    token: str
    device_id: str
    device_type: Optional[str] = "android"
    app_version: Optional[str] = None
    user_type: str = "donor"
    is_logged_in: bool = True

    @property
    def compound_token_id(self) -> str:
        return compound_token_id(self.user_id, self.device_id)


class DonorRegistry:
    """
    SQL-backed donor registry.

    One AsyncSession can only run one statement at a time, so concurrent
    callers (the per-group fan-out) are serialised on a lock.
    """

    def __init__(self, db: AsyncSession):
        self.db = db
        self._lock = asyncio.Lock()

    async def _execute(self, statement):
        async with self._lock:
            try:
                return await self.db.execute(statement)
            except SQLAlchemyError as e:
                logger.error(f"Donor registry query failed: {e}")
                raise StorageUnavailable("Donor registry unavailable") from e

    async def _commit(self):
        async with self._lock:
            try:
                await self.db.commit()
            except SQLAlchemyError as e:
                await self.db.rollback()
                logger.error(f"Donor registry write failed: {e}")
                raise StorageUnavailable("Donor registry unavailable") from e

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def find_donors(self, blood_group: BloodGroup, district: str) -> List[Donor]:
        """Active donors of one blood group in one district. Unordered."""
        result = await self._execute(
            select(Donor).where(
                Donor.blood_group == blood_group.value,
                Donor.district == district,
                Donor.is_active == True,
            )
        )
        return list(result.scalars().all())

    async def find_compatible(self, blood_groups: Iterable[BloodGroup], district: str) -> List[Donor]:
        """
        Fan out one query per blood group and merge once every query has returned.

        Duplicates across groups are left in place for the eligibility filter.
        """
        groups = sorted(blood_groups, key=lambda g: g.value)
        results = await asyncio.gather(*(self.find_donors(g, district) for g in groups))
        merged: List[Donor] = []
        for donors in results:
            merged.extend(donors)
        return merged

    async def resolve_identity(self, user_id: str) -> RequesterIdentity:
        """Collect every device id and push token registered to a user in either projection."""
        device_ids = set()
        tokens = set()

        donor = await self.get_donor(user_id)
        if donor:
            if donor.device_id:
                device_ids.add(donor.device_id)
            if donor.push_token:
                tokens.add(donor.push_token)

        result = await self._execute(select(UserDevice).where(UserDevice.user_id == user_id))
        for device in result.scalars().all():
            device_ids.add(device.device_id)
            if device.push_token:
                tokens.add(device.push_token)

        return RequesterIdentity(
            user_id=user_id,
            device_ids=frozenset(device_ids),
            push_tokens=frozenset(tokens),
        )

    async def get_donor(self, donor_id: str) -> Optional[Donor]:
        result = await self._execute(select(Donor).where(Donor.id == donor_id))
        return result.scalar_one_or_none()

    async def get_device(self, user_id: str, device_id: str) -> Optional[UserDevice]:
        result = await self._execute(
            select(UserDevice).where(UserDevice.compound_token_id == compound_token_id(user_id, device_id))
        )
        return result.scalar_one_or_none()

    # ------------------------------------------------------------------
    # Writes (merge semantics: only the named fields change)
    # ------------------------------------------------------------------

    async def upsert_registration(self, registration: TokenRegistration) -> None:
        """Write a device registration into both the donor and the user-device projection."""
        now = datetime.utcnow()
        has_token = is_valid_push_token(registration.token)

        donor = await self.get_donor(registration.user_id)
        if donor is None:
            donor = Donor(id=registration.user_id, created_at=now)
            self.db.add(donor)
        donor.push_token = registration.token
        donor.has_push_token = has_token
        donor.device_id = registration.device_id
        donor.compound_token_id = registration.compound_token_id
        donor.device_type = registration.device_type
        donor.app_version = registration.app_version
        donor.is_logged_in = registration.is_logged_in
        donor.last_active = now

        device = await self.get_device(registration.user_id, registration.device_id)
        if device is None:
            device = UserDevice(
                compound_token_id=registration.compound_token_id,
                user_id=registration.user_id,
                device_id=registration.device_id,
                created_at=now,
            )
            self.db.add(device)
        device.push_token = registration.token
        device.has_push_token = has_token
        device.user_type = registration.user_type
        device.device_type = registration.device_type
        device.app_version = registration.app_version
        device.is_logged_in = registration.is_logged_in
        device.last_active = now

        await self._commit()
        logger.info(
            f"Registered token for {registration.compound_token_id} "
            f"(logged_in={registration.is_logged_in})"
        )

    async def set_login_state(self, user_id: str, device_id: str, is_logged_in: bool) -> bool:
        """
        Flip only the login flag of a device registration; the token is untouched.

        Returns False when the user has no registration to update.
        """
        now = datetime.utcnow()
        touched = False

        device = await self.get_device(user_id, device_id)
        if device is not None:
            device.is_logged_in = is_logged_in
            device.last_active = now
            touched = True

        donor = await self.get_donor(user_id)
        if donor is not None and (donor.device_id in (None, device_id)):
            donor.is_logged_in = is_logged_in
            donor.last_active = now
            touched = True

        if touched:
            await self._commit()
        return touched

    async def clear_tokens(self, tokens: Iterable[str]) -> int:
        """Remove push tokens the provider reported as no longer registered."""
        stale = [t for t in set(tokens) if t]
        if not stale:
            return 0
        await self._execute(
            update(Donor)
            .where(Donor.push_token.in_(stale))
            .values(push_token=None, has_push_token=False, updated_at=datetime.utcnow())
        )
        await self._execute(
            update(UserDevice)
            .where(UserDevice.push_token.in_(stale))
            .values(push_token=None, has_push_token=False, updated_at=datetime.utcnow())
        )
        await self._commit()
        logger.info(f"Cleared {len(stale)} stale push tokens")
        return len(stale)

