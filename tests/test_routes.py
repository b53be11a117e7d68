"""Tests for the JSON routes."""

from __future__ import annotations

import re
import unittest
from unittest.mock import MagicMock, patch

from firebase_admin import auth
from mockfirestore import MockFirestore

from learnportal import create_app
from learnportal.extensions import mail
from tests.conftest import (
    MockTransaction,
    make_user,
    patch_mockfirestore,
    run_transactional,
)

ADMIN_ID = "admin_uid"
STUDENT_ID = "student_uid"


class RoutesTestCase(unittest.TestCase):
    """Base test case with a mock Firestore and a logged-out client."""

    config: dict = {}

    def setUp(self) -> None:
        patch_mockfirestore()
        self.db = MockFirestore()
        self.db.transaction = MockTransaction

        self.mock_auth = MagicMock()
        self.mock_auth.create_user.side_effect = lambda email, **kw: MagicMock(
            uid=f"uid-{email.split('@')[0]}"
        )
        patchers = [
            patch("firebase_admin.firestore.client", return_value=self.db),
            patch("learnportal.admin.routes.auth", new=self.mock_auth),
            patch("firebase_admin.firestore.transactional", new=run_transactional),
        ]
        for p in patchers:
            p.start()
            self.addCleanup(p.stop)

        self.app = create_app(
            {"TESTING": True, "WTF_CSRF_ENABLED": False, **self.config}
        )
        self.client = self.app.test_client()

        make_user(self.db, ADMIN_ID, "admin@example.com", role="admin")
        make_user(self.db, STUDENT_ID, "student@example.com", ["g1"])
        self.db.collection("groups").document("g1").set(
            {"name": "Cohort A", "members": [STUDENT_ID], "memberCount": 1}
        )

    def tearDown(self) -> None:
        self.db.reset()

    def login(self, user_id: str = ADMIN_ID) -> None:
        with self.client.session_transaction() as sess:
            sess["user_id"] = user_id


class AccessTestCase(RoutesTestCase):
    def test_health(self) -> None:
        response = self.client.get("/health")
        self.assertEqual(response.status_code, 200)

    def test_requires_login(self) -> None:
        response = self.client.post("/bulk-create", json={"emails": "a@example.com"})
        self.assertEqual(response.status_code, 401)
        self.assertEqual(response.get_json()["error"], "Authentication required.")

    def test_requires_admin_role(self) -> None:
        self.login(STUDENT_ID)
        response = self.client.post("/bulk-create", json={"emails": "a@example.com"})
        self.assertEqual(response.status_code, 403)

    def test_unknown_route_is_json(self) -> None:
        response = self.client.get("/nope")
        self.assertEqual(response.status_code, 404)
        self.assertFalse(response.get_json()["success"])


class AdminRoutesTestCase(RoutesTestCase):
    def test_bulk_create_from_email_list(self) -> None:
        self.login()
        with mail.record_messages() as outbox:
            response = self.client.post(
                "/bulk-create",
                json={"emails": "one@example.com, two@example.com; nope"},
            )

        self.assertEqual(response.status_code, 200)
        data = response.get_json()
        self.assertTrue(data["success"])
        self.assertEqual(
            [r["email"] for r in data["results"]],
            ["one@example.com", "two@example.com"],
        )
        self.assertEqual(data["rejected"][0]["email"], "nope")
        self.assertEqual(data["summary"], {"total": 2, "succeeded": 2, "failed": 0})
        self.assertEqual(len(outbox), 2)
        created = self.db.collection("users").document("uid-one").get().to_dict()
        self.assertEqual(created["createdBy"], ADMIN_ID)

    def test_bulk_create_from_user_list(self) -> None:
        self.login()
        response = self.client.post(
            "/bulk-create",
            json={"users": [{"email": "t@example.com", "role": "group_admin"}]},
        )
        self.assertEqual(response.status_code, 200)
        user = self.db.collection("users").document("uid-t").get().to_dict()
        self.assertEqual(user["role"], "group_admin")

    def test_bulk_create_requires_entries(self) -> None:
        self.login()
        for payload in ({}, {"users": []}, {"users": "a@example.com"}):
            with self.subTest(payload=payload):
                response = self.client.post("/bulk-create", json=payload)
                self.assertEqual(response.status_code, 400)

    def test_regenerate_password(self) -> None:
        self.login()
        response = self.client.post(
            "/regenerate-password",
            json={"userId": STUDENT_ID, "email": "student@example.com"},
        )
        data = response.get_json()
        self.assertEqual(response.status_code, 200)
        self.assertTrue(data["emailSent"])
        self.mock_auth.update_user.assert_called_once_with(
            STUDENT_ID, password=data["password"]
        )

    def test_regenerate_password_unknown_user(self) -> None:
        self.login()
        response = self.client.post("/regenerate-password", json={"userId": "ghost"})
        self.assertEqual(response.status_code, 404)

    def test_update_role(self) -> None:
        self.login()
        response = self.client.post(
            f"/users/{STUDENT_ID}/role", json={"role": "group_admin"}
        )
        self.assertEqual(response.status_code, 200)
        user = self.db.collection("users").document(STUDENT_ID).get().to_dict()
        self.assertEqual(user["role"], "group_admin")

        response = self.client.post(f"/users/{STUDENT_ID}/role", json={"role": "king"})
        self.assertEqual(response.status_code, 400)

    def test_set_approval(self) -> None:
        self.login()
        response = self.client.post(
            f"/users/{STUDENT_ID}/approval", json={"approved": False}
        )
        self.assertEqual(response.status_code, 200)
        user = self.db.collection("users").document(STUDENT_ID).get().to_dict()
        self.assertFalse(user["isApproved"])

    def test_toggle_auto_approve(self) -> None:
        self.login()
        response = self.client.post("/settings/auto-approve")
        self.assertEqual(response.get_json()["value"], False)
        response = self.client.post("/settings/auto-approve")
        self.assertEqual(response.get_json()["value"], True)

    def test_assign_groups(self) -> None:
        self.login()
        self.db.collection("groups").document("g2").set(
            {"name": "Cohort B", "members": [], "memberCount": 0}
        )
        response = self.client.put(
            f"/users/{STUDENT_ID}/groups", json={"groupIds": ["g2"]}
        )
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.get_json()["assignedGroups"], ["g2"])
        g1 = self.db.collection("groups").document("g1").get().to_dict()
        self.assertEqual(g1["memberCount"], 0)


class GroupRoutesTestCase(RoutesTestCase):
    def test_create_group_and_add_member(self) -> None:
        self.login()
        response = self.client.post("/groups", json={"name": "Cohort C"})
        self.assertEqual(response.status_code, 201)
        group_id = response.get_json()["id"]

        response = self.client.post(
            f"/groups/{group_id}/members", json={"userId": STUDENT_ID}
        )
        self.assertEqual(response.get_json()["memberCount"], 1)
        user = self.db.collection("users").document(STUDENT_ID).get().to_dict()
        self.assertEqual(user["assignedGroups"], ["g1", group_id])

    def test_remove_member(self) -> None:
        self.login()
        response = self.client.delete(f"/groups/g1/members/{STUDENT_ID}")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.get_json()["members"], [])

    def test_add_unknown_user(self) -> None:
        self.login()
        response = self.client.post("/groups/g1/members", json={"userId": "ghost"})
        self.assertEqual(response.status_code, 404)


class AnnouncementRoutesTestCase(RoutesTestCase):
    def test_send_notification_synchronously(self) -> None:
        self.login()
        with mail.record_messages() as outbox:
            response = self.client.post(
                "/send-announcement-notification",
                json={
                    "announcement": {"title": "Hello", "content": "Welcome!"},
                    "groupIds": ["g1"],
                },
            )
        data = response.get_json()
        self.assertEqual(response.status_code, 200)
        self.assertEqual((data["total"], data["notified"], data["failed"]), (1, 1, 0))
        self.assertEqual(outbox[0].recipients, ["student@example.com"])

    def test_send_notification_requires_groups(self) -> None:
        self.login()
        response = self.client.post(
            "/send-announcement-notification",
            json={"announcement": {"content": "Welcome!"}, "groupIds": []},
        )
        self.assertEqual(response.status_code, 400)

    def test_send_notification_rejects_non_string_group_ids(self) -> None:
        self.login()
        with mail.record_messages() as outbox:
            response = self.client.post(
                "/send-announcement-notification",
                json={"announcement": {"content": "Welcome!"}, "groupIds": [{"x": 1}]},
            )
        self.assertEqual(response.status_code, 400)
        self.assertEqual(
            response.get_json()["error"], "groupIds must be a list of group ids."
        )
        self.assertEqual(outbox, [])

    def test_check_status_rejects_non_string_group_ids(self) -> None:
        self.login()
        _, ref = self.db.collection("announcements").add(
            {"title": "Old", "content": "x", "groupIds": ["g1"]}
        )
        response = self.client.post(
            "/check-notification-status",
            json={"announcementId": ref.id, "groupIds": [{"x": 1}]},
        )
        self.assertEqual(response.status_code, 400)
        self.assertFalse(response.get_json()["success"])

    def test_create_announcement_returns_job(self) -> None:
        self.login()
        with patch("learnportal.announcement.services.threading.Thread") as thread:
            response = self.client.post(
                "/announcements",
                json={"title": "Hello", "content": "Welcome!", "groupIds": ["g1"]},
            )
        self.assertEqual(response.status_code, 201)
        data = response.get_json()
        thread.return_value.start.assert_called_once()

        response = self.client.get(f"/notification-jobs/{data['jobId']}")
        self.assertEqual(response.get_json()["status"], "pending")

        response = self.client.post(
            "/check-notification-status", json={"announcementId": data["id"]}
        )
        self.assertEqual(response.get_json()["jobId"], data["jobId"])

    def test_check_status_without_job(self) -> None:
        self.login()
        _, ref = self.db.collection("announcements").add(
            {"title": "Old", "content": "x", "groupIds": ["g1"]}
        )
        with mail.record_messages() as outbox:
            response = self.client.post(
                "/check-notification-status",
                json={"announcementId": ref.id, "groupIds": ["g1"]},
            )
        data = response.get_json()
        self.assertEqual(data["status"], "unknown")
        self.assertEqual(data["total"], 1)
        self.assertEqual(outbox, [])

    def test_unknown_job(self) -> None:
        self.login()
        response = self.client.get("/notification-jobs/nope")
        self.assertEqual(response.status_code, 404)

    def test_record_view(self) -> None:
        self.login(STUDENT_ID)
        _, ref = self.db.collection("announcements").add(
            {"title": "Old", "content": "x", "groupIds": ["g1"], "viewedBy": []}
        )
        response = self.client.post(f"/announcements/{ref.id}/view")
        self.assertTrue(response.get_json()["firstView"])
        response = self.client.post(f"/announcements/{ref.id}/view")
        self.assertFalse(response.get_json()["firstView"])


class UnconfiguredMailTestCase(RoutesTestCase):
    config = {"MAIL_SUPPRESS_SEND": False, "MAIL_USERNAME": None}

    def test_missing_mail_credentials_is_503(self) -> None:
        self.login()
        response = self.client.post(
            "/send-announcement-notification",
            json={"announcement": {"content": "Welcome!"}, "groupIds": ["g1"]},
        )
        self.assertEqual(response.status_code, 503)
        self.assertIn("MAIL_USERNAME", response.get_json()["error"])

    def test_bulk_create_fails_before_creating_accounts(self) -> None:
        self.login()
        response = self.client.post("/bulk-create", json={"emails": "a@example.com"})
        self.assertEqual(response.status_code, 503)
        self.mock_auth.create_user.assert_not_called()

    def test_send_otp_without_mail_credentials(self) -> None:
        response = self.client.post(
            "/auth/send-otp", json={"email": "student@example.com"}
        )
        self.assertEqual(response.status_code, 503)
        self.assertEqual(list(self.db.collection("otpAttempts").stream()), [])


class AuthRoutesTestCase(RoutesTestCase):
    @patch("learnportal.auth.routes.auth")
    def test_session_login(self, mock_auth) -> None:
        mock_auth.verify_id_token.return_value = {"uid": ADMIN_ID}
        response = self.client.post("/auth/session_login", json={"idToken": "tok"})
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.get_json()["role"], "admin")

        response = self.client.get("/auth/me")
        self.assertEqual(response.get_json()["email"], "admin@example.com")

        self.client.post("/auth/logout")
        response = self.client.get("/auth/me")
        self.assertEqual(response.status_code, 401)

    @patch("learnportal.auth.routes.auth")
    def test_session_login_bad_token(self, mock_auth) -> None:
        mock_auth.verify_id_token.side_effect = ValueError("bad token")
        response = self.client.post("/auth/session_login", json={"idToken": "tok"})
        self.assertEqual(response.status_code, 401)

    def test_session_login_requires_token(self) -> None:
        response = self.client.post("/auth/session_login", json={})
        self.assertEqual(response.status_code, 400)

    def test_csrf_token(self) -> None:
        response = self.client.get("/auth/csrf_token")
        self.assertTrue(response.get_json()["csrfToken"])

    def test_install_refused_when_admin_exists(self) -> None:
        self.db.collection("users").document("root").set(
            {"email": "root@example.com", "role": "super_admin"}
        )
        response = self.client.post(
            "/auth/install",
            json={"email": "new@example.com", "password": "pw123456"},  # nosec
        )
        self.assertEqual(response.status_code, 409)

    @patch("learnportal.auth.routes.auth")
    def test_install_first_super_admin(self, mock_auth) -> None:
        mock_auth.create_user.return_value = MagicMock(uid="root")
        response = self.client.post(
            "/auth/install",
            json={"email": "root@example.com", "password": "pw123456"},  # nosec
        )
        self.assertEqual(response.status_code, 201)
        user = self.db.collection("users").document("root").get().to_dict()
        self.assertEqual(user["role"], "super_admin")


class AccountEmailRoutesTestCase(RoutesTestCase):
    def test_forgot_password_requires_email(self) -> None:
        response = self.client.post("/auth/forgot-password", json={})
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.get_json()["error"], "Email is required.")

    @patch("firebase_admin.auth.generate_password_reset_link")
    def test_forgot_password(self, reset_link) -> None:
        reset_link.return_value = "https://lp.test/reset?oobCode=abc"
        with mail.record_messages() as outbox:
            response = self.client.post(
                "/auth/forgot-password", json={"email": "student@example.com"}
            )
        self.assertEqual(response.status_code, 200)
        self.assertTrue(response.get_json()["success"])
        self.assertEqual(outbox[0].recipients, ["student@example.com"])
        self.assertIn("https://lp.test/reset?oobCode=abc", outbox[0].body)

    @patch("firebase_admin.auth.generate_password_reset_link")
    def test_forgot_password_unknown_address(self, reset_link) -> None:
        reset_link.side_effect = auth.UserNotFoundError("No user record found")
        with mail.record_messages() as outbox:
            response = self.client.post(
                "/auth/forgot-password", json={"email": "ghost@example.com"}
            )
        self.assertEqual(response.status_code, 200)
        self.assertEqual(outbox, [])

    def test_send_otp_requires_email(self) -> None:
        response = self.client.post("/auth/send-otp", json={"name": "Sam"})
        self.assertEqual(response.status_code, 400)
        response = self.client.post("/auth/send-otp", json={"email": "nope"})
        self.assertEqual(response.status_code, 400)

    def test_send_otp_is_rate_limited(self) -> None:
        with mail.record_messages() as outbox:
            for _ in range(5):
                response = self.client.post(
                    "/auth/send-otp",
                    json={"email": "student@example.com", "name": "Sam"},
                )
                self.assertEqual(response.status_code, 200)
                self.assertTrue(response.get_json()["messageId"])
            response = self.client.post(
                "/auth/send-otp", json={"email": "student@example.com"}
            )
        self.assertEqual(response.status_code, 429)
        self.assertEqual(
            response.get_json()["error"], "Too many attempts. Please try again later."
        )
        self.assertEqual(len(outbox), 5)

    @patch("firebase_admin.auth.update_user")
    def test_verify_otp(self, update_user) -> None:
        with mail.record_messages() as outbox:
            self.client.post("/auth/send-otp", json={"email": "student@example.com"})
        code = re.search(r"\b(\d{6})\b", outbox[0].body).group(1)

        response = self.client.post(
            "/auth/verify-otp", json={"email": "student@example.com", "otp": code}
        )
        self.assertEqual(response.status_code, 200)
        update_user.assert_called_once_with(STUDENT_ID, email_verified=True)

        response = self.client.post(
            "/auth/verify-otp", json={"email": "student@example.com", "otp": code}
        )
        self.assertEqual(response.status_code, 400)


if __name__ == "__main__":
    unittest.main()
