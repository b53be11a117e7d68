"""Service layer for user records."""

from __future__ import annotations

from typing import Any

from firebase_admin import auth, firestore
from flask import current_app

from learnportal.core.constants import DEFAULT_ROLE, ROLES, USERS_COLLECTION
from learnportal.errors import (
    DuplicateResourceError,
    NotFoundError,
    ValidationError,
)

from .models import User


class UserService:
    """Service class for user-related operations and Firestore interaction."""

    @staticmethod
    def get_user_by_id(db: Any, user_id: str) -> User | None:
        """Fetch a user document, or None if it does not exist."""
        user_doc = db.collection(USERS_COLLECTION).document(user_id).get()
        if not user_doc.exists:
            return None
        data = user_doc.to_dict() or {}
        data["id"] = user_id
        return data

    @staticmethod
    def create_user_record(
        db: Any,
        auth_client: Any,
        email: str,
        password: str,
        role: str = DEFAULT_ROLE,
        is_approved: bool = True,
        created_by: str | None = None,
    ) -> str:
        """Create the Firebase Auth account and its Firestore profile.

        Returns the new user id. If the profile write fails the Auth account
        is removed again so no orphan login is left behind.
        """
        if role not in ROLES:
            raise ValidationError(f"Unknown role: {role}")

        try:
            user_record = auth_client.create_user(
                email=email, password=password, email_verified=False
            )
        except auth.EmailAlreadyExistsError as e:
            raise DuplicateResourceError(
                f"Email address is already registered: {email}"
            ) from e
        uid = user_record.uid
        try:
            db.collection(USERS_COLLECTION).document(uid).set(
                {
                    "email": email.lower(),
                    "name": email.split("@")[0],
                    "role": role,
                    "isApproved": is_approved,
                    "assignedGroups": [],
                    "forcePasswordChange": True,
                    "totalAnnouncementsViewed": 0,
                    "createdBy": created_by,
                    "createdAt": firestore.SERVER_TIMESTAMP,
                    "updatedAt": firestore.SERVER_TIMESTAMP,
                }
            )
        except Exception:
            current_app.logger.error(
                f"Profile write failed for {email}; removing auth account {uid}"
            )
            try:
                auth_client.delete_user(uid)
            except Exception as cleanup_error:
                current_app.logger.error(
                    f"Could not remove auth account {uid}: {cleanup_error}"
                )
            raise
        return uid

    @staticmethod
    def update_role(db: Any, user_id: str, role: str) -> None:
        """Change a user's role."""
        if role not in ROLES:
            raise ValidationError(f"Unknown role: {role}")
        user_ref = db.collection(USERS_COLLECTION).document(user_id)
        if not user_ref.get().exists:
            raise NotFoundError("User not found.")
        user_ref.update({"role": role, "updatedAt": firestore.SERVER_TIMESTAMP})

    @staticmethod
    def set_approval(db: Any, user_id: str, approved: bool) -> None:
        """Approve or revoke approval for a user."""
        user_ref = db.collection(USERS_COLLECTION).document(user_id)
        if not user_ref.get().exists:
            raise NotFoundError("User not found.")
        user_ref.update(
            {"isApproved": bool(approved), "updatedAt": firestore.SERVER_TIMESTAMP}
        )
