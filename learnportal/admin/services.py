"""Service layer for admin-related operations."""

from __future__ import annotations

import secrets
import string
from collections.abc import Iterable
from typing import Any

from firebase_admin import firestore
from flask import current_app
from google.api_core import exceptions as google_exceptions

from learnportal.core.batch import BatchExecutor
from learnportal.core.constants import (
    AUTO_APPROVE_SETTING,
    DEFAULT_ROLE,
    PASSWORD_MIN_LENGTH,
    PASSWORD_SYMBOLS,
    ROLE_SUPER_ADMIN,
    ROLES,
    SETTINGS_COLLECTION,
    USERS_COLLECTION,
)
from learnportal.errors import (
    DatastoreUnavailableError,
    NotFoundError,
    ValidationError,
)
from learnportal.user.services import UserService
from learnportal.utils import (
    SYSTEMIC_EMAIL_ERRORS,
    EmailError,
    InvalidRecipientError,
    in_app_context,
    normalize_email,
)

from .models import BulkCreationResult, ProvisionedUser, ProvisioningError

PASSWORD_CLASSES = (
    string.ascii_lowercase,
    string.ascii_uppercase,
    string.digits,
    PASSWORD_SYMBOLS,
)
PASSWORD_ALPHABET = "".join(PASSWORD_CLASSES)

_system_random = secrets.SystemRandom()


def generate_password(
    length: int = PASSWORD_MIN_LENGTH, minimum: int = PASSWORD_MIN_LENGTH
) -> str:
    """Generate a login credential from the operating system's CSPRNG.

    The result is ``max(length, minimum)`` characters long, and never shorter
    than one character per class. It always holds at least one lowercase
    letter, one uppercase letter, one digit and one symbol from
    ``PASSWORD_SYMBOLS``.
    """
    length = max(length, minimum, len(PASSWORD_CLASSES))
    chars = [secrets.choice(charset) for charset in PASSWORD_CLASSES]
    chars += [
        secrets.choice(PASSWORD_ALPHABET) for _ in range(length - len(chars))
    ]
    _system_random.shuffle(chars)
    return "".join(chars)


class ProvisioningHaltedError(Exception):
    """Raised for entries skipped after mail delivery failed systemically."""

    pass


class AdminService:
    """Service class for admin settings."""

    @staticmethod
    def get_setting(db: Any, setting_key: str, default: bool = False) -> bool:
        """Read a boolean setting from the Firestore 'settings' collection."""
        try:
            setting = db.collection(SETTINGS_COLLECTION).document(setting_key).get()
        except google_exceptions.GoogleAPIError as e:
            current_app.logger.error(f"Could not read setting {setting_key}: {e}")
            raise DatastoreUnavailableError(
                f"Could not read setting {setting_key}: {e}"
            ) from e
        if not setting.exists:
            return default
        return bool((setting.to_dict() or {}).get("value", default))

    @staticmethod
    def toggle_setting(db: Any, setting_key: str, default: bool = False) -> bool:
        """Toggle a boolean setting and return its new value."""
        new_value = not AdminService.get_setting(db, setting_key, default)
        try:
            db.collection(SETTINGS_COLLECTION).document(setting_key).set(
                {"value": new_value}
            )
        except google_exceptions.GoogleAPIError as e:
            current_app.logger.error(f"Could not write setting {setting_key}: {e}")
            raise DatastoreUnavailableError(
                f"Could not write setting {setting_key}: {e}"
            ) from e
        return new_value


class ProvisioningService:
    """Create accounts in bulk and deliver their generated credentials.

    Creating the account and emailing the credential are not transactional.
    An account whose welcome email failed stays created and is reported with
    ``emailSent: False`` so an operator can regenerate the password later.
    A configuration or authentication failure on a welcome email stops the
    batch: entries not yet started fail without an account being created.
    """

    def __init__(
        self,
        db: Any,
        dispatcher: Any,
        auth_client: Any,
        executor: BatchExecutor | None = None,
        password_length: int = PASSWORD_MIN_LENGTH,
    ) -> None:
        """Initialize the service."""
        self.db = db
        self.dispatcher = dispatcher
        self.auth_client = auth_client
        self.executor = executor or BatchExecutor()
        self.password_length = password_length

    @staticmethod
    def prefilter(
        entries: Iterable[Any],
    ) -> tuple[list[dict[str, str]], list[ProvisioningError]]:
        """Split raw entries into valid ones and rejected ones.

        Entries may be bare address strings or ``{"email", "role"}`` dicts.
        Malformed and repeated addresses are rejected here and never reach
        the batch.
        """
        accepted: list[dict[str, str]] = []
        rejected: list[ProvisioningError] = []
        seen: set[str] = set()
        for entry in entries:
            if isinstance(entry, str):
                entry = {"email": entry}
            if not isinstance(entry, dict):
                rejected.append({"email": str(entry), "error": "Invalid entry."})
                continue

            raw = str(entry.get("email") or "").strip()
            try:
                email = normalize_email(raw)
            except InvalidRecipientError as e:
                rejected.append({"email": raw, "error": e.message})
                continue
            if email in seen:
                rejected.append({"email": raw, "error": "Duplicate email address."})
                continue
            seen.add(email)

            role = entry.get("role")
            if role not in ROLES or role == ROLE_SUPER_ADMIN:
                role = DEFAULT_ROLE
            accepted.append({"email": email, "role": role})
        return accepted, rejected

    def bulk_create(
        self, entries: Iterable[Any], created_by: str | None = None
    ) -> BulkCreationResult:
        """Provision one account per valid entry."""
        accepted, rejected = self.prefilter(entries)
        if rejected:
            current_app.logger.warning(
                f"Bulk create rejected {len(rejected)} invalid entries"
            )
        if not accepted:
            return BulkCreationResult(rejected=rejected)

        self.dispatcher.ensure_configured()
        auto_approve = AdminService.get_setting(
            self.db, AUTO_APPROVE_SETTING, default=True
        )

        # Reason of the first systemic mail failure, if any.
        halted: list[str] = []

        @in_app_context
        def provision(entry: dict[str, str]) -> ProvisionedUser:
            if halted:
                raise ProvisioningHaltedError(
                    f"Not created: mail delivery failed ({halted[0]})"
                )
            return self._provision_one(entry, auto_approve, created_by, halted)

        batch = self.executor.run(accepted, provision)
        current_app.logger.info(
            f"Bulk create: {batch.succeeded} created, {batch.failed} failed, "
            f"{len(rejected)} rejected"
        )
        return BulkCreationResult(
            batch=batch, rejected=rejected, halted=halted[0] if halted else None
        )

    def _provision_one(
        self,
        entry: dict[str, str],
        auto_approve: bool,
        created_by: str | None,
        halted: list[str],
    ) -> ProvisionedUser:
        email = entry["email"]
        password = generate_password(minimum=self.password_length)
        user_id = UserService.create_user_record(
            self.db,
            self.auth_client,
            email,
            password,
            role=entry["role"],
            is_approved=auto_approve,
            created_by=created_by,
        )
        result: ProvisionedUser = {
            "email": email,
            "userId": user_id,
            "password": password,
            "emailSent": True,
        }
        try:
            self.send_credentials(email, password, "welcome")
        except EmailError as e:
            current_app.logger.warning(
                f"Account {user_id} created but welcome email to {email} failed: {e}"
            )
            result["emailSent"] = False
            result["emailError"] = str(e)
            if isinstance(e, SYSTEMIC_EMAIL_ERRORS) and not halted:
                current_app.logger.error(
                    f"Stopping bulk create after {email}: mail delivery failed: {e}"
                )
                halted.append(str(e))
        return result

    def send_credentials(self, email: str, password: str, template: str) -> str:
        """Email a credential using the ``welcome`` or ``password_reset`` template."""
        app_name = current_app.config.get("APP_NAME", "LearnPortal")
        subjects = {
            "welcome": f"Welcome to {app_name} - Your Account Details",
            "password_reset": f"Your {app_name} password has been reset",
        }
        return self.dispatcher.send_template(
            email,
            subjects[template],
            template,
            email=email,
            password=password,
        )

    def regenerate_password(
        self, user_id: str, email: str | None = None
    ) -> dict[str, Any]:
        """Issue a fresh credential for an existing account and email it."""
        if not user_id:
            raise ValidationError("A user id is required.")
        user = UserService.get_user_by_id(self.db, user_id)
        if user is None:
            raise NotFoundError("User not found.")

        stored_email = normalize_email(user.get("email", ""))
        if email and normalize_email(email) != stored_email:
            raise ValidationError("Email does not match the user's account.")

        self.dispatcher.ensure_configured()
        password = generate_password(minimum=self.password_length)
        self.auth_client.update_user(user_id, password=password)
        self.db.collection(USERS_COLLECTION).document(user_id).update(
            {"forcePasswordChange": True, "updatedAt": firestore.SERVER_TIMESTAMP}
        )
        current_app.logger.info(f"Password regenerated for user {user_id}")

        result: dict[str, Any] = {
            "userId": user_id,
            "email": stored_email,
            "password": password,
            "emailSent": True,
        }
        try:
            self.send_credentials(stored_email, password, "password_reset")
        except EmailError as e:
            current_app.logger.warning(
                f"Password reset email to {stored_email} failed: {e}"
            )
            result["emailSent"] = False
            result["emailError"] = str(e)
        return result
