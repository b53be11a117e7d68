"""Service layer for groups and group membership."""

from __future__ import annotations

from collections.abc import Iterable, Iterator, Sequence
from typing import TYPE_CHECKING, Any

from firebase_admin import firestore
from flask import current_app
from google.api_core import exceptions as google_exceptions

from learnportal.core.constants import (
    GROUPS_COLLECTION,
    MAX_FILTER_VALUES,
    MEMBERSHIP_ADD,
    MEMBERSHIP_REMOVE,
    UNKNOWN_GROUP_NAME,
    USERS_COLLECTION,
)
from learnportal.errors import (
    DatastoreUnavailableError,
    NotFoundError,
    ValidationError,
)

if TYPE_CHECKING:
    from google.cloud.firestore_v1.document import DocumentReference
    from google.cloud.firestore_v1.transaction import Transaction

    from learnportal.user.models import User

    from .models import Group


def chunked(values: Sequence[Any], size: int) -> Iterator[list[Any]]:
    """Yield consecutive slices of ``values`` holding at most ``size`` items."""
    if size < 1:
        raise ValueError("Chunk size must be at least 1.")
    for i in range(0, len(values), size):
        yield list(values[i : i + size])


def unique(values: Iterable[Any]) -> list[Any]:
    """Drop duplicates while keeping first-seen order."""
    return list(dict.fromkeys(values))


def clean_group_ids(group_ids: Any, allow_empty: bool = False) -> list[str]:
    """Strip and de-duplicate a list of group ids.

    Raises:
        ValidationError: If ``group_ids`` is not a list of strings, or holds
            no id at all unless ``allow_empty`` is set.
    """
    if not isinstance(group_ids, (list, tuple)) or not all(
        isinstance(gid, str) for gid in group_ids
    ):
        raise ValidationError("groupIds must be a list of group ids.")
    ids = unique(gid.strip() for gid in group_ids if gid.strip())
    if not ids and not allow_empty:
        raise ValidationError("Select at least one group.")
    return ids


class MembershipResolver:
    """Turn group ids into the users that belong to any of them.

    Firestore caps the number of values in an ``array_contains_any`` clause,
    so the ids are split into chunks of ``max_filter_values`` and one query
    is issued per chunk. The merged result holds each user once.
    """

    def __init__(self, db: Any, max_filter_values: int = MAX_FILTER_VALUES) -> None:
        """Initialize the resolver."""
        if max_filter_values < 1:
            raise ValueError("max_filter_values must be at least 1.")
        self.db = db
        self.max_filter_values = max_filter_values

    def resolve(self, group_ids: Sequence[str]) -> list[User]:
        """Return the de-duplicated users assigned to at least one group.

        Unknown group ids simply match nobody.

        Raises:
            ValidationError: If no group id is given or an id is not a string.
            DatastoreUnavailableError: If a query fails.
        """
        ids = clean_group_ids(group_ids)

        users: dict[str, User] = {}
        for chunk in chunked(ids, self.max_filter_values):
            for doc in self._query_chunk(chunk):
                if doc.id in users:
                    continue
                data = doc.to_dict() or {}
                data["id"] = doc.id
                users[doc.id] = data
        return list(users.values())

    def _query_chunk(self, chunk: list[str]) -> list[Any]:
        query = self.db.collection(USERS_COLLECTION).where(
            filter=firestore.FieldFilter("assignedGroups", "array_contains_any", chunk)
        )
        try:
            return list(query.stream())
        except google_exceptions.GoogleAPIError as e:
            current_app.logger.error(f"Membership query failed for {chunk}: {e}")
            raise DatastoreUnavailableError(
                f"Could not load group members: {e}"
            ) from e


class GroupService:
    """Service class for group-related operations."""

    @staticmethod
    def create_group(
        db: Any, name: str, description: str = "", created_by: str | None = None
    ) -> str:
        """Create an empty group and return its id."""
        name = (name or "").strip()
        if not name:
            raise ValidationError("Group name is required.")
        _, group_ref = db.collection(GROUPS_COLLECTION).add(
            {
                "name": name,
                "description": (description or "").strip(),
                "members": [],
                "memberCount": 0,
                "createdBy": created_by,
                "createdAt": firestore.SERVER_TIMESTAMP,
                "updatedAt": firestore.SERVER_TIMESTAMP,
            }
        )
        return group_ref.id

    @staticmethod
    def get_groups(db: Any) -> list[Group]:
        """Return every group, sorted by name."""
        groups = []
        for doc in db.collection(GROUPS_COLLECTION).stream():
            data = doc.to_dict() or {}
            data["id"] = doc.id
            groups.append(data)
        groups.sort(key=lambda g: (g.get("name") or "").lower())
        return groups

    @staticmethod
    def get_group_names(db: Any, group_ids: Sequence[str]) -> list[str]:
        """Return the name of each group id, in the same order."""
        names = []
        for group_id in group_ids:
            snapshot = db.collection(GROUPS_COLLECTION).document(group_id).get()
            data = snapshot.to_dict() if snapshot.exists else None
            names.append((data or {}).get("name") or UNKNOWN_GROUP_NAME)
        return names

    @staticmethod
    def update_group_membership(
        db: Any, group_id: str, op: str, user_id: str
    ) -> list[str]:
        """Add or remove a user in one transaction covering both documents.

        Returns the group's member ids after the change.
        """
        if op not in (MEMBERSHIP_ADD, MEMBERSHIP_REMOVE):
            raise ValidationError(f"Unknown membership operation: {op}")
        if not group_id or not user_id:
            raise ValidationError("Both a group and a user are required.")

        group_ref = db.collection(GROUPS_COLLECTION).document(group_id)
        user_ref = db.collection(USERS_COLLECTION).document(user_id)
        transaction = db.transaction()
        apply_change = firestore.transactional(GroupService._membership_transaction)
        members = apply_change(transaction, group_ref, user_ref, op)
        current_app.logger.info(f"Membership {op}: user {user_id}, group {group_id}")
        return members

    @staticmethod
    def _membership_transaction(
        transaction: Transaction,
        group_ref: DocumentReference,
        user_ref: DocumentReference,
        op: str,
    ) -> list[str]:
        """Rewrite ``members``/``memberCount`` and ``assignedGroups`` together."""
        group_snapshot = group_ref.get(transaction=transaction)
        user_snapshot = user_ref.get(transaction=transaction)
        if not user_snapshot.exists:
            raise NotFoundError("User not found.")

        user_data = user_snapshot.to_dict() or {}
        assigned = unique(user_data.get("assignedGroups", []))

        if not group_snapshot.exists:
            if op == MEMBERSHIP_ADD:
                raise NotFoundError("Group not found.")
            # Group is gone; only the stale reference on the user remains.
            transaction.update(
                user_ref,
                {
                    "assignedGroups": [g for g in assigned if g != group_ref.id],
                    "updatedAt": firestore.SERVER_TIMESTAMP,
                },
            )
            return []

        group_data = group_snapshot.to_dict() or {}
        members = unique(group_data.get("members", []))

        if op == MEMBERSHIP_ADD:
            if user_ref.id not in members:
                members.append(user_ref.id)
            if group_ref.id not in assigned:
                assigned.append(group_ref.id)
        else:
            members = [m for m in members if m != user_ref.id]
            assigned = [g for g in assigned if g != group_ref.id]

        transaction.update(
            group_ref,
            {
                "members": members,
                "memberCount": len(members),
                "updatedAt": firestore.SERVER_TIMESTAMP,
            },
        )
        transaction.update(
            user_ref,
            {"assignedGroups": assigned, "updatedAt": firestore.SERVER_TIMESTAMP},
        )
        return members

    @staticmethod
    def assign_user_to_groups(
        db: Any, user_id: str, group_ids: Sequence[str]
    ) -> list[str]:
        """Make ``group_ids`` the exact set of groups the user belongs to."""
        user_doc = db.collection(USERS_COLLECTION).document(user_id).get()
        if not user_doc.exists:
            raise NotFoundError("User not found.")

        wanted = clean_group_ids(group_ids, allow_empty=True)
        current = unique((user_doc.to_dict() or {}).get("assignedGroups", []))

        for group_id in current:
            if group_id not in wanted:
                GroupService.update_group_membership(
                    db, group_id, MEMBERSHIP_REMOVE, user_id
                )
        for group_id in wanted:
            if group_id not in current:
                GroupService.update_group_membership(
                    db, group_id, MEMBERSHIP_ADD, user_id
                )
        return wanted
