"""Service layer for self-service account emails."""

from __future__ import annotations

import secrets
import string
from datetime import datetime, timedelta, timezone
from typing import Any

from firebase_admin import auth, firestore
from flask import current_app
from google.api_core import exceptions as google_exceptions
from werkzeug.security import check_password_hash, generate_password_hash

from learnportal.core.constants import (
    OTP_ATTEMPT_WINDOW_MINUTES,
    OTP_ATTEMPTS_COLLECTION,
    OTP_LENGTH,
    OTP_MAX_ATTEMPTS,
    OTP_TTL_MINUTES,
    PASSWORD_RESET_PATH,
    USERS_COLLECTION,
)
from learnportal.errors import (
    DatastoreUnavailableError,
    RateLimitError,
    ValidationError,
)
from learnportal.utils import normalize_email


def generate_otp(length: int = OTP_LENGTH) -> str:
    """Return a numeric one-time code from the operating system's CSPRNG."""
    return "".join(secrets.choice(string.digits) for _ in range(length))


class AccountEmailService:
    """Send password-reset links and email verification codes.

    Codes are stored hashed in ``otpAttempts``, one document per send. The
    same documents count the sends per address for rate limiting.
    """

    def __init__(self, db: Any, dispatcher: Any, auth_client: Any = auth) -> None:
        """Initialize the service."""
        self.db = db
        self.dispatcher = dispatcher
        self.auth_client = auth_client

    def send_password_reset(self, email: str) -> bool:
        """Email a Firebase password-reset link.

        Returns False, without sending, when no account uses the address.
        """
        email = normalize_email(email)
        self.dispatcher.ensure_configured()

        config = current_app.config
        settings = auth.ActionCodeSettings(
            url=f"{config['APP_URL'].rstrip('/')}{PASSWORD_RESET_PATH}"
        )
        try:
            reset_link = self.auth_client.generate_password_reset_link(
                email, settings
            )
        except auth.UserNotFoundError:
            current_app.logger.info(f"Password reset requested for unknown {email}")
            return False

        self.dispatcher.send_template(
            email,
            f"Reset Your {config['APP_NAME']} Password",
            "forgot_password",
            email=email,
            reset_link=reset_link,
        )
        current_app.logger.info(f"Password reset link sent to {email}")
        return True

    def send_otp(self, email: str, name: str | None = None) -> str:
        """Email a fresh verification code and return the message id.

        Raises:
            RateLimitError: If the address already had ``OTP_MAX_ATTEMPTS``
                codes sent within the last hour.
        """
        email = normalize_email(email)
        self.dispatcher.ensure_configured()

        now = datetime.now(timezone.utc)
        window_start = now - timedelta(minutes=OTP_ATTEMPT_WINDOW_MINUTES)
        recent = [
            a for a in self._attempts(email) if a["timestamp"] >= window_start
        ]
        if len(recent) >= OTP_MAX_ATTEMPTS:
            current_app.logger.warning(f"Verification code rate limit hit for {email}")
            raise RateLimitError()

        code = generate_otp()
        try:
            self.db.collection(OTP_ATTEMPTS_COLLECTION).add(
                {
                    "email": email,
                    "timestamp": now,
                    "expiresAt": now + timedelta(minutes=OTP_TTL_MINUTES),
                    "otpHash": generate_password_hash(code, method="pbkdf2:sha256"),
                    "failures": 0,
                    "used": False,
                }
            )
        except google_exceptions.GoogleAPIError as e:
            current_app.logger.error(f"Could not record verification code: {e}")
            raise DatastoreUnavailableError(
                f"Could not record verification code: {e}"
            ) from e

        app_name = current_app.config["APP_NAME"]
        return self.dispatcher.send_template(
            email,
            f"Verify your {app_name} Account - OTP",
            "otp",
            name=name or email.split("@")[0],
            otp=code,
            ttl_minutes=OTP_TTL_MINUTES,
        )

    def verify_otp(self, email: str, code: str) -> None:
        """Check a code against the newest live one sent to ``email``.

        A match marks the code used and the user's email as verified.

        Raises:
            ValidationError: If no live code matches.
        """
        email = normalize_email(email)
        code = (code or "").strip()
        if not code:
            raise ValidationError("Verification code is required.")

        now = datetime.now(timezone.utc)
        live = [
            a
            for a in self._attempts(email)
            if not a.get("used")
            and a.get("expiresAt") is not None
            and a["expiresAt"] > now
            and a.get("failures", 0) < OTP_MAX_ATTEMPTS
        ]
        if not live:
            raise ValidationError("Invalid or expired verification code.")

        latest = max(live, key=lambda a: a["timestamp"])
        attempt_ref = self.db.collection(OTP_ATTEMPTS_COLLECTION).document(
            latest["id"]
        )
        if not check_password_hash(latest.get("otpHash", ""), code):
            attempt_ref.update({"failures": latest.get("failures", 0) + 1})
            raise ValidationError("Invalid or expired verification code.")

        attempt_ref.update({"used": True})
        self._mark_verified(email)
        current_app.logger.info(f"Email {email} verified")

    def _attempts(self, email: str) -> list[dict[str, Any]]:
        query = self.db.collection(OTP_ATTEMPTS_COLLECTION).where(
            filter=firestore.FieldFilter("email", "==", email)
        )
        try:
            docs = list(query.stream())
        except google_exceptions.GoogleAPIError as e:
            current_app.logger.error(f"Could not load verification codes: {e}")
            raise DatastoreUnavailableError(
                f"Could not load verification codes: {e}"
            ) from e

        attempts = []
        for doc in docs:
            data = doc.to_dict() or {}
            if data.get("timestamp") is None:
                continue
            data["id"] = doc.id
            attempts.append(data)
        return attempts

    def _mark_verified(self, email: str) -> None:
        query = self.db.collection(USERS_COLLECTION).where(
            filter=firestore.FieldFilter("email", "==", email)
        )
        for doc in query.stream():
            self.auth_client.update_user(doc.id, email_verified=True)
            self.db.collection(USERS_COLLECTION).document(doc.id).update(
                {"emailVerified": True, "updatedAt": firestore.SERVER_TIMESTAMP}
            )
