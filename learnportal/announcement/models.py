"""Data models for announcements and their notifications."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any, TypedDict

from learnportal.core.batch import BatchResult
from learnportal.core.types import FirestoreDocument


class AnnouncementFile(TypedDict, total=False):
    """A file attached to an announcement, stored by URL."""

    id: str
    name: str
    url: str
    type: str
    size: int
    isDownloadable: bool


class Announcement(FirestoreDocument, total=False):
    """An announcement document in Firestore."""

    title: str
    content: str
    groupIds: list[str]
    createdBy: str
    files: list[AnnouncementFile]
    viewCount: int
    viewedBy: list[str]
    priority: bool
    notificationJobId: str


@dataclass
class NotificationFailure:
    """Why one recipient was not notified."""

    recipientId: str
    email: str
    reason: str


@dataclass
class NotificationBatchResult:
    """Counts for one fan-out attempt; ``notified + failed == total``.

    ``skipped`` lists recipients filtered out before the batch (opted out or
    no usable address) and is not part of the counts.
    """

    total: int = 0
    notified: int = 0
    failed: int = 0
    failures: list[NotificationFailure] = field(default_factory=list)
    skipped: list[NotificationFailure] = field(default_factory=list)

    @classmethod
    def from_batch(
        cls, batch: BatchResult, skipped: list[NotificationFailure] | None = None
    ) -> NotificationBatchResult:
        failures = [
            NotificationFailure(
                recipientId=outcome.target.get("id", ""),
                email=outcome.target.get("email", ""),
                reason=outcome.error or "Unknown error",
            )
            for outcome in batch.failures
        ]
        return cls(
            total=batch.total,
            notified=batch.succeeded,
            failed=batch.failed,
            failures=failures,
            skipped=list(skipped or []),
        )

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)
