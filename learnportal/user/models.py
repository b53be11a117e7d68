"""Data models for users."""

from __future__ import annotations

from typing import TypedDict

from learnportal.core.types import FirestoreDocument


class NotificationPreferences(TypedDict, total=False):
    """Per-user email opt-outs."""

    emailNotifications: bool
    announcementEmails: bool
    groupActivityEmails: bool


class User(FirestoreDocument, total=False):
    """A user document in Firestore, keyed by the Firebase Auth uid."""

    email: str
    name: str
    role: str
    isApproved: bool
    assignedGroups: list[str]
    notificationPreferences: NotificationPreferences
    forcePasswordChange: bool
    totalAnnouncementsViewed: int
    createdBy: str


def wants_announcement_email(user: User) -> bool:
    """Return False if the user opted out of announcement emails."""
    prefs = user.get("notificationPreferences") or {}
    return bool(
        prefs.get("emailNotifications", True) and prefs.get("announcementEmails", True)
    )
