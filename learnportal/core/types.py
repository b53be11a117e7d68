"""Core data types for the learnportal application."""

from typing import Any, TypedDict


class _FirestoreDocumentBase(TypedDict):
    id: str
    createdAt: Any


class FirestoreDocument(_FirestoreDocumentBase, total=False):
    """Generic Firestore document structure."""

    updatedAt: Any
