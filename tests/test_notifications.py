"""
Tests for notification history and device registration.

Tests cover:
- NotificationRecorder idempotent fan-out
- Inbox REST API (list, unread count, mark read, mark all read)
- Token registration and login/logout endpoints
- Auth guards (unauthenticated access denied)
- Storage failures on the inbox (503)
"""
from datetime import datetime

import pytest
from httpx import AsyncClient
from sqlalchemy import select, func
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from donor_dispatch.models.blood_request import BloodRequest, Urgency
from donor_dispatch.models.donor import Donor, UserDevice
from donor_dispatch.models.notification import Notification, notification_id
from donor_dispatch.services.eligibility import MatchedDonor
from donor_dispatch.services.errors import StorageUnavailable
from donor_dispatch.services.notification import NotificationRecorder
from tests.conftest import get_auth_header, make_donor, make_token


def blood_request(request_id="req_test", units=2, urgency=Urgency.NORMAL, hospital="Dhaka Medical College"):
    return BloodRequest(
        id=request_id,
        blood_group="O-",
        district="Dhaka",
        patient_name="Rahim",
        hospital=hospital,
        units=units,
        urgency=urgency,
        requester_id="u1",
    )


async def seed_notifications(db: AsyncSession, recipient_id: str, count: int, request_prefix="req"):
    recorder = NotificationRecorder(db)
    donors = [MatchedDonor(donor=make_donor(recipient_id))]
    for i in range(count):
        await recorder.record(f"{request_prefix}_{i}", blood_request(f"{request_prefix}_{i}"), donors)


# ============================================================================
# Service-level tests
# ============================================================================


class TestNotificationRecorder:

    @pytest.mark.asyncio
    async def test_record_one_per_recipient(self, db_session: AsyncSession):
        donors = [MatchedDonor(donor=make_donor(d)) for d in ("d1", "d2", "d3")]

        count = await NotificationRecorder(db_session).record("req_1", blood_request("req_1"), donors)

        assert count == 3
        result = await db_session.execute(select(Notification).order_by(Notification.id))
        rows = result.scalars().all()
        assert [n.id for n in rows] == ["req_1_d1", "req_1_d2", "req_1_d3"]
        assert all(n.is_read is False for n in rows)
        assert rows[0].title == "Blood Donation Request"
        assert rows[0].blood_group == "O-"
        assert rows[0].hospital == "Dhaka Medical College"
        assert rows[0].units == 2

    @pytest.mark.asyncio
    async def test_record_twice_keeps_one_record_with_later_fields(self, db_session: AsyncSession):
        recorder = NotificationRecorder(db_session)
        donors = [MatchedDonor(donor=make_donor("d1")), MatchedDonor(donor=make_donor("d2"))]

        await recorder.record("req_1", blood_request("req_1"), donors)
        await recorder.record("req_1", blood_request("req_1", units=6, urgency=Urgency.HIGH, hospital="Square Hospital"), donors)

        total = await db_session.scalar(select(func.count(Notification.id)))
        assert total == 2
        notification = await db_session.get(Notification, notification_id("req_1", "d1"))
        assert notification.title == "URGENT: Blood Needed"
        assert notification.hospital == "Square Hospital"
        assert notification.units == 6
        assert notification.urgency == "high"

    @pytest.mark.asyncio
    async def test_rerecord_keeps_read_state(self, db_session: AsyncSession):
        recorder = NotificationRecorder(db_session)
        donors = [MatchedDonor(donor=make_donor("d1"))]

        await recorder.record("req_1", blood_request("req_1"), donors)
        await recorder.mark_read("d1", "req_1_d1")
        await recorder.record("req_1", blood_request("req_1"), donors)

        notification = await db_session.get(Notification, "req_1_d1")
        assert notification.is_read is True
        assert notification.read_at is not None

    @pytest.mark.asyncio
    async def test_record_nobody(self, db_session: AsyncSession):
        assert await NotificationRecorder(db_session).record("req_1", blood_request(), []) == 0

    @pytest.mark.asyncio
    async def test_mark_read_of_someone_elses_notification(self, db_session: AsyncSession):
        await seed_notifications(db_session, "d1", 1)
        assert await NotificationRecorder(db_session).mark_read("d2", "req_0_d1") is None

    @pytest.mark.asyncio
    async def test_mark_all_read(self, db_session: AsyncSession):
        await seed_notifications(db_session, "d1", 3)
        await seed_notifications(db_session, "d2", 1)
        recorder = NotificationRecorder(db_session)

        assert await recorder.mark_all_read("d1") == 3
        assert await recorder.unread_count("d1") == 0
        assert await recorder.unread_count("d2") == 1


# ============================================================================
# Inbox API tests
# ============================================================================


class TestNotificationsAPI:
    """Tests for the /api/notifications inbox endpoints."""

    @pytest.mark.asyncio
    async def test_list_notifications(self, client: AsyncClient, db_session: AsyncSession):
        await seed_notifications(db_session, "d1", 3)
        await seed_notifications(db_session, "d2", 2)

        response = await client.get("/api/notifications", headers=get_auth_header("d1"))

        assert response.status_code == 200
        data = response.json()
        assert len(data) == 3
        assert all(n["recipientId"] == "d1" for n in data)
        assert data[0]["isRead"] is False
        assert data[0]["bloodGroup"] == "O-"

    @pytest.mark.asyncio
    async def test_list_unread_only(self, client: AsyncClient, db_session: AsyncSession):
        await seed_notifications(db_session, "d1", 3)
        await NotificationRecorder(db_session).mark_read("d1", "req_0_d1")

        response = await client.get(
            "/api/notifications", params={"unread_only": True}, headers=get_auth_header("d1")
        )

        assert response.status_code == 200
        assert {n["id"] for n in response.json()} == {"req_1_d1", "req_2_d1"}

    @pytest.mark.asyncio
    async def test_unread_count(self, client: AsyncClient, db_session: AsyncSession):
        await seed_notifications(db_session, "d1", 2)

        response = await client.get("/api/notifications/unread-count", headers=get_auth_header("d1"))

        assert response.status_code == 200
        assert response.json()["count"] == 2

    @pytest.mark.asyncio
    async def test_mark_read(self, client: AsyncClient, db_session: AsyncSession):
        await seed_notifications(db_session, "d1", 1)

        response = await client.patch("/api/notifications/req_0_d1/read", headers=get_auth_header("d1"))

        assert response.status_code == 200
        data = response.json()
        assert data["isRead"] is True
        assert data["readAt"] is not None

    @pytest.mark.asyncio
    async def test_mark_read_other_users_notification(self, client: AsyncClient, db_session: AsyncSession):
        await seed_notifications(db_session, "d1", 1)

        response = await client.patch("/api/notifications/req_0_d1/read", headers=get_auth_header("d2"))

        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_mark_all_read(self, client: AsyncClient, db_session: AsyncSession):
        await seed_notifications(db_session, "d1", 3)

        response = await client.patch("/api/notifications/read-all", headers=get_auth_header("d1"))
        assert response.status_code == 200
        assert response.json()["success"] is True

        response = await client.get("/api/notifications/unread-count", headers=get_auth_header("d1"))
        assert response.json()["count"] == 0

    @pytest.mark.asyncio
    async def test_inbox_requires_auth(self, client: AsyncClient):
        response = await client.get("/api/notifications")
        assert response.status_code == 401

        response = await client.get(
            "/api/notifications/unread-count", headers={"Authorization": "Bearer not-a-jwt"}
        )
        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_health(self, client: AsyncClient):
        response = await client.get("/api/notifications/health")
        assert response.status_code == 200
        assert response.json()["status"] == "healthy"


# ============================================================================
# Device registration API tests
# ============================================================================


def registration(user_id="d1", device_id="phone-1", token=None, logged_in=True, **extra):
    payload = {
        "userId": user_id,
        "token": token or make_token(user_id),
        "deviceId": device_id,
        "deviceType": "android",
        "appVersion": "2.1.0",
        "isLoggedIn": logged_in,
    }
    payload.update(extra)
    return payload


class TestTokenRegistrationAPI:

    @pytest.mark.asyncio
    async def test_save_token_creates_both_projections(self, client: AsyncClient, db_session: AsyncSession):
        response = await client.post("/api/notifications/save-token", json=registration())

        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert data["compoundTokenId"] == "d1_phone-1"

        donor = await db_session.get(Donor, "d1")
        assert donor.push_token == make_token("d1")
        assert donor.device_id == "phone-1"
        assert donor.is_logged_in is True
        assert donor.has_push_token is True

        device = await db_session.get(UserDevice, "d1_phone-1")
        assert device.user_id == "d1"
        assert device.push_token == make_token("d1")

    @pytest.mark.asyncio
    async def test_save_token_is_idempotent(self, client: AsyncClient, db_session: AsyncSession):
        for _ in range(2):
            response = await client.post("/api/notifications/save-token", json=registration())
            assert response.status_code == 200

        assert await db_session.scalar(select(func.count(UserDevice.compound_token_id))) == 1
        assert await db_session.scalar(select(func.count(Donor.id))) == 1

    @pytest.mark.asyncio
    async def test_save_token_merges_into_existing_donor(self, client: AsyncClient, db_session: AsyncSession):
        db_session.add(make_donor("d1", "B+", district="Sylhet", is_available=False))
        await db_session.commit()

        response = await client.post(
            "/api/notifications/save-token",
            json=registration(token="rotated:token-value", logged_in=False),
        )

        assert response.status_code == 200
        donor = await db_session.get(Donor, "d1")
        assert donor.push_token == "rotated:token-value"
        assert donor.is_logged_in is False
        # Fields the registration doesn't name are untouched
        assert donor.blood_group == "B+"
        assert donor.district == "Sylhet"
        assert donor.is_available is False

    @pytest.mark.asyncio
    async def test_save_token_accepts_fcm_token_alias(self, client: AsyncClient, db_session: AsyncSession):
        payload = registration()
        payload["fcmToken"] = payload.pop("token")

        response = await client.post("/api/notifications/save-token", json=payload)

        assert response.status_code == 200

    @pytest.mark.asyncio
    async def test_save_token_rejects_malformed_token(self, client: AsyncClient, db_session: AsyncSession):
        response = await client.post("/api/notifications/save-token", json=registration(token="no-separator"))

        assert response.status_code == 400
        assert await db_session.get(Donor, "d1") is None

    @pytest.mark.asyncio
    async def test_save_token_requires_user(self, client: AsyncClient):
        response = await client.post("/api/notifications/save-token", json=registration(user_id="  "))
        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_logout_keeps_token(self, client: AsyncClient, db_session: AsyncSession):
        await client.post("/api/notifications/save-token", json=registration())

        response = await client.post(
            "/api/notifications/logout", json={"userId": "d1", "deviceId": "phone-1"}
        )

        assert response.status_code == 200
        assert response.json()["success"] is True
        donor = await db_session.get(Donor, "d1")
        assert donor.is_logged_in is False
        assert donor.push_token == make_token("d1")
        device = await db_session.get(UserDevice, "d1_phone-1")
        assert device.is_logged_in is False

    @pytest.mark.asyncio
    async def test_login_after_logout(self, client: AsyncClient, db_session: AsyncSession):
        await client.post("/api/notifications/save-token", json=registration(logged_in=False))

        response = await client.post(
            "/api/notifications/login", json={"userId": "d1", "deviceId": "phone-1"}
        )

        assert response.status_code == 200
        donor = await db_session.get(Donor, "d1")
        assert donor.is_logged_in is True

    @pytest.mark.asyncio
    async def test_logout_unknown_device(self, client: AsyncClient):
        response = await client.post(
            "/api/notifications/logout", json={"userId": "ghost", "deviceId": "nowhere"}
        )
        assert response.status_code == 404


# ============================================================================
# Storage failures
# ============================================================================


class TestInboxStorageFailures:
    """A failing notification store answers 503 instead of a server error."""

    @pytest.fixture
    def broken_store(self, db_session: AsyncSession, monkeypatch):
        rollbacks = []

        async def locked(*args, **kwargs):
            raise OperationalError("SELECT", {}, Exception("database is locked"))

        async def rollback():
            rollbacks.append(True)

        monkeypatch.setattr(db_session, "execute", locked)
        monkeypatch.setattr(db_session, "rollback", rollback)
        return rollbacks

    @pytest.mark.asyncio
    async def test_mark_all_read_raises_storage_unavailable(self, db_session: AsyncSession, broken_store):
        with pytest.raises(StorageUnavailable):
            await NotificationRecorder(db_session).mark_all_read("d1")
        assert broken_store == [True]

    @pytest.mark.asyncio
    async def test_unread_count_raises_storage_unavailable(self, db_session: AsyncSession, broken_store):
        with pytest.raises(StorageUnavailable):
            await NotificationRecorder(db_session).unread_count("d1")

    @pytest.mark.asyncio
    @pytest.mark.parametrize("method,path", [
        ("GET", "/api/notifications"),
        ("GET", "/api/notifications/unread-count"),
        ("PATCH", "/api/notifications/read-all"),
        ("PATCH", "/api/notifications/req_0_d1/read"),
    ])
    async def test_inbox_routes_return_503(self, client: AsyncClient, broken_store, method, path):
        response = await client.request(method, path, headers=get_auth_header("d1"))

        assert response.status_code == 503
        assert response.json()["detail"] == "Notification store unavailable"
