"""Data models for the group blueprint."""

from __future__ import annotations

from learnportal.core.types import FirestoreDocument


class Group(FirestoreDocument, total=False):
    """A group document in Firestore.

    ``memberCount`` is a cached projection of ``members`` and is always
    written together with it.
    """

    name: str
    description: str
    members: list[str]
    memberCount: int
    createdBy: str
