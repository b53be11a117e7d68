"""Common utilities for tests."""

from typing import Any, Optional

from mockfirestore import CollectionReference, Query
from mockfirestore.document import DocumentReference


def patch_mockfirestore() -> None:
    """Apply monkeypatches to mockfirestore to support FieldFilter and transactions."""

    def collection_where(
        self: Any,
        field_path: Optional[str] = None,
        op_string: Optional[str] = None,
        value: Any = None,
        filter: Any = None,
    ) -> Any:  # noqa: E501
        if filter:
            return self._where(filter.field_path, filter.op_string, filter.value)
        return self._where(field_path, op_string, value)

    if not hasattr(CollectionReference, "_where"):
        CollectionReference._where = CollectionReference.where
        CollectionReference.where = collection_where

    def query_where(
        self: Any,
        field_path: Optional[str] = None,
        op_string: Optional[str] = None,
        value: Any = None,
        filter: Any = None,
    ) -> Any:
        if filter:
            return self._where(filter.field_path, filter.op_string, filter.value)
        return self._where(field_path, op_string, value)

    if not hasattr(Query, "_where"):
        Query._where = Query.where
        Query.where = query_where

    # Reads inside a transaction pass transaction=...
    if not hasattr(DocumentReference, "_orig_get"):
        DocumentReference._orig_get = DocumentReference.get

        def doc_get(self: Any, transaction: Any = None) -> Any:
            return self._orig_get()

        DocumentReference.get = doc_get


class MockTransaction:
    """Applies transactional writes to mockfirestore immediately."""

    def __init__(self) -> None:
        self.writes: list[tuple[Any, Any]] = []

    def update(self, ref: Any, data: Any) -> None:
        self.writes.append((ref, data))
        ref.update(data)

    def set(self, ref: Any, data: Any, merge: bool = False) -> None:
        self.writes.append((ref, data))
        ref.set(data, merge=merge)


def run_transactional(func: Any) -> Any:
    """Stand-in for firestore.transactional: call the function directly."""
    return func


def make_user(
    db: Any,
    user_id: str,
    email: str,
    groups: Optional[list[str]] = None,
    **fields: Any,
) -> Any:
    """Store a user document and return its reference."""
    ref = db.collection("users").document(user_id)
    ref.set(
        {
            "email": email,
            "name": fields.pop("name", user_id.title()),
            "role": fields.pop("role", "student"),
            "assignedGroups": list(groups or []),
            **fields,
        }
    )
    return ref
