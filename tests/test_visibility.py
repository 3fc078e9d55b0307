"""
Tests for the on-device render policy.
"""
import pytest

from donor_dispatch.client.cache import DeviceCache
from donor_dispatch.client.visibility import IncomingPush, IncomingPushHandler, should_render


class TestShouldRender:

    @pytest.mark.parametrize("target,session,last_known,logged_in,expected", [
        # Untargeted pushes always render
        (None, None, None, False, True),
        ("", "u1", None, False, True),
        # Signed-in recipient
        ("u1", "u1", None, True, True),
        ("u1", "u1", "u1", True, True),
        # Recipient was logged out at send time
        ("u1", "u1", "u1", False, False),
        # Someone else is signed in on the device
        ("u1", "u2", "u1", True, False),
        # Nobody signed in: fall back to the last known user
        ("u1", None, "u1", True, True),
        ("u1", None, "u2", True, False),
        ("u1", None, None, True, False),
    ])
    def test_policy(self, target, session, last_known, logged_in, expected):
        assert should_render(target, session, last_known, logged_in) is expected


class TestIncomingPush:

    def test_decode_data_map(self):
        push = IncomingPush.from_data({
            "title": "URGENT: Blood Needed",
            "body": "O- blood needed at Dhaka Medical College",
            "recipientUserId": "u1",
            "isLoggedIn": "false",
            "requestId": "req_1",
            "notificationId": "req_1_u1",
            "type": "blood_request",
        })

        assert push.recipient_user_id == "u1"
        assert push.recipient_is_logged_in is False
        assert push.request_id == "req_1"
        assert push.notification_id == "req_1_u1"

    def test_missing_login_flag_means_logged_in(self):
        assert IncomingPush.from_data({"recipientUserId": "u1"}).recipient_is_logged_in is True

    def test_defaults(self):
        push = IncomingPush.from_data({})
        assert push.title == "Blood Donation Request"
        assert push.recipient_user_id is None


class TestIncomingPushHandler:

    def make_handler(self, session_user=None, last_user_id=None):
        cache = DeviceCache()
        if last_user_id:
            cache.update(last_user_id=last_user_id)
        self.shown = []
        self.archived = []
        return IncomingPushHandler(
            cache,
            current_user=lambda: session_user,
            display=self.shown.append,
            archive=self.archived.append,
        )

    def test_renders_for_signed_in_recipient(self):
        handler = self.make_handler(session_user="u1")

        decision = handler.handle({"recipientUserId": "u1", "isLoggedIn": "true", "requestId": "req_1"})

        assert decision.render is True
        assert decision.reason == "recipient_active"
        assert [p.request_id for p in self.shown] == ["req_1"]
        assert self.archived == []

    def test_logged_out_recipient_is_archived(self):
        handler = self.make_handler(session_user="u1")

        decision = handler.handle({"recipientUserId": "u1", "isLoggedIn": "false"})

        assert decision.render is False
        assert decision.reason == "recipient_logged_out"
        assert self.shown == []
        assert len(self.archived) == 1

    def test_other_account_on_device_is_archived(self):
        handler = self.make_handler(session_user="u2", last_user_id="u1")

        decision = handler.handle({"recipientUserId": "u1", "isLoggedIn": "true"})

        assert decision.render is False
        assert decision.reason == "different_user"
        assert decision.target_user_id == "u1"

    def test_untargeted_push_renders(self):
        handler = self.make_handler()

        decision = handler.handle({"title": "Hello"})

        assert decision.render is True
        assert decision.reason == "untargeted"
        assert self.shown[0].title == "Hello"
