"""Tests for application setup and the shared error handlers."""

import unittest
from unittest.mock import patch

from flask import request

from learnportal import create_app
from learnportal.errors import DatastoreUnavailableError, NotFoundError
from learnportal.utils import EmailAuthenticationError, EmailSendError


class TestCreateApp(unittest.TestCase):
    """Test case for create_app."""

    def setUp(self):
        """Set up the test client."""
        self.app = create_app({"TESTING": True})
        self.client = self.app.test_client()

    def test_defaults(self):
        config = self.app.config
        self.assertEqual(config["MAX_FILTER_VALUES"], 30)
        self.assertEqual(config["PASSWORD_MIN_LENGTH"], 12)
        self.assertEqual(config["NOTIFICATION_MAX_WORKERS"], 4)
        self.assertEqual(config["PROVISIONING_MAX_WORKERS"], 1)
        self.assertEqual(config["MAIL_TIMEOUT"], 30)

    def test_environment_overrides(self):
        with patch.dict(
            "os.environ", {"MAX_FILTER_VALUES": "10", "APP_NAME": "Campus"}
        ):
            app = create_app({"TESTING": True})
        self.assertEqual(app.config["MAX_FILTER_VALUES"], 10)
        self.assertEqual(app.config["APP_NAME"], "Campus")

    @patch("firebase_admin.initialize_app")
    def test_firebase_not_initialized_when_testing(self, mock_init):
        create_app({"TESTING": True})
        mock_init.assert_not_called()

    def test_https_scheme_with_proxy_headers(self):
        """Test that X-Forwarded-Proto header is respected."""

        @self.app.route("/test_scheme")
        def test_scheme():
            return request.scheme

        response = self.client.get(
            "/test_scheme", headers={"X-Forwarded-Proto": "https"}
        )
        self.assertEqual(response.data.decode(), "https")


class TestErrorHandlers(unittest.TestCase):
    """Errors raised by views become JSON responses."""

    def setUp(self):
        self.app = create_app({"TESTING": True})
        self.client = self.app.test_client()

    def _raise(self, error):
        @self.app.route("/boom")
        def boom():
            raise error

        response = self.client.get("/boom")
        return response.status_code, response.get_json()

    def test_not_found_error(self):
        status, body = self._raise(NotFoundError("Group not found."))
        self.assertEqual(status, 404)
        self.assertEqual(body, {"success": False, "error": "Group not found."})

    def test_datastore_error(self):
        status, body = self._raise(DatastoreUnavailableError("down"))
        self.assertEqual(status, 503)

    def test_systemic_email_error(self):
        status, _ = self._raise(EmailAuthenticationError("bad credentials"))
        self.assertEqual(status, 503)

    def test_other_email_error(self):
        status, body = self._raise(EmailSendError("rejected"))
        self.assertEqual(status, 502)
        self.assertEqual(body["error"], "rejected")


if __name__ == "__main__":
    unittest.main()
