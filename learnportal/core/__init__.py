"""Core module for the learnportal application."""

from .batch import BatchExecutor, BatchOutcome, BatchResult
from .types import FirestoreDocument

__all__ = ["BatchExecutor", "BatchOutcome", "BatchResult", "FirestoreDocument"]
