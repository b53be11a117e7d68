"""Service layer for announcements and their email notifications."""

from __future__ import annotations

import threading
import uuid
from typing import TYPE_CHECKING, Any

from firebase_admin import firestore
from flask import current_app
from google.api_core import exceptions as google_exceptions

from learnportal.core.batch import BatchExecutor
from learnportal.core.constants import (
    ANNOUNCEMENTS_COLLECTION,
    DEFAULT_ANNOUNCEMENT_TITLE,
    JOB_COMPLETED,
    JOB_FAILED,
    JOB_PENDING,
    JOB_RUNNING,
    JOB_UNKNOWN,
    NOTIFICATION_JOBS_COLLECTION,
    USERS_COLLECTION,
)
from learnportal.errors import (
    DatastoreUnavailableError,
    NotFoundError,
    ValidationError,
)
from learnportal.group.services import (
    GroupService,
    MembershipResolver,
    clean_group_ids,
    unique,
)
from learnportal.user.models import wants_announcement_email
from learnportal.utils import SYSTEMIC_EMAIL_ERRORS, in_app_context, is_valid_email

from .models import (
    Announcement,
    AnnouncementFile,
    NotificationBatchResult,
    NotificationFailure,
)

if TYPE_CHECKING:
    from google.cloud.firestore_v1.document import DocumentReference
    from google.cloud.firestore_v1.transaction import Transaction

    from learnportal.user.models import User


class AnnouncementService:
    """Service class for announcement records."""

    @staticmethod
    def validate(data: dict[str, Any]) -> dict[str, Any]:
        """Normalize an announcement payload or raise ValidationError."""
        if not isinstance(data, dict):
            raise ValidationError("Invalid announcement data.")

        group_ids = clean_group_ids(data.get("groupIds"))

        content = str(data.get("content") or "").strip()
        if not content:
            raise ValidationError("Announcement content is required.")

        files = [
            AnnouncementService._normalize_file(f) for f in data.get("files") or []
        ]

        return {
            "title": (
                str(data.get("title") or "").strip() or DEFAULT_ANNOUNCEMENT_TITLE
            ),
            "content": content,
            "groupIds": group_ids,
            "files": files,
            "priority": bool(data.get("priority", False)),
        }

    @staticmethod
    def _normalize_file(file: Any) -> AnnouncementFile:
        if not isinstance(file, dict) or not file.get("name") or not file.get("url"):
            raise ValidationError("Every file needs a name and a url.")
        return {
            "id": str(file.get("id") or uuid.uuid4()),
            "name": str(file["name"]),
            "url": str(file["url"]),
            "type": str(file.get("type") or ""),
            "size": int(file.get("size") or 0),
            # Independent of the file type.
            "isDownloadable": bool(file.get("isDownloadable", False)),
        }

    @staticmethod
    def create_announcement(db: Any, data: dict[str, Any], created_by: str) -> str:
        """Validate and store a new announcement, returning its id."""
        fields = AnnouncementService.validate(data)
        _, ref = db.collection(ANNOUNCEMENTS_COLLECTION).add(
            {
                **fields,
                "createdBy": created_by,
                "viewCount": 0,
                "viewedBy": [],
                "createdAt": firestore.SERVER_TIMESTAMP,
                "updatedAt": firestore.SERVER_TIMESTAMP,
            }
        )
        current_app.logger.info(
            f"Announcement {ref.id} created for groups {fields['groupIds']}"
        )
        return ref.id

    @staticmethod
    def get_announcement(db: Any, announcement_id: str) -> Announcement | None:
        """Fetch an announcement, or None if it does not exist."""
        doc = db.collection(ANNOUNCEMENTS_COLLECTION).document(announcement_id).get()
        if not doc.exists:
            return None
        data = doc.to_dict() or {}
        data["id"] = announcement_id
        return data

    @staticmethod
    def record_view(db: Any, announcement_id: str, user_id: str) -> bool:
        """Register that a user viewed an announcement.

        Returns True on the user's first view. Repeat views change nothing.
        """
        announcement_ref = db.collection(ANNOUNCEMENTS_COLLECTION).document(
            announcement_id
        )
        user_ref = db.collection(USERS_COLLECTION).document(user_id)
        transaction = db.transaction()
        apply_view = firestore.transactional(AnnouncementService._view_transaction)
        return apply_view(transaction, announcement_ref, user_ref)

    @staticmethod
    def _view_transaction(
        transaction: Transaction,
        announcement_ref: DocumentReference,
        user_ref: DocumentReference,
    ) -> bool:
        snapshot = announcement_ref.get(transaction=transaction)
        if not snapshot.exists:
            raise NotFoundError("Announcement not found.")
        user_snapshot = user_ref.get(transaction=transaction)

        data = snapshot.to_dict() or {}
        viewed_by = unique(data.get("viewedBy", []))
        if user_ref.id in viewed_by:
            return False

        viewed_by.append(user_ref.id)
        transaction.update(
            announcement_ref,
            {"viewedBy": viewed_by, "viewCount": int(data.get("viewCount", 0)) + 1},
        )
        if user_snapshot.exists:
            user_data = user_snapshot.to_dict() or {}
            transaction.update(
                user_ref,
                {
                    "totalAnnouncementsViewed": int(
                        user_data.get("totalAnnouncementsViewed", 0)
                    )
                    + 1
                },
            )
        return True


class NotificationFanout:
    """Email every member of an announcement's groups.

    Resolution failures and mail configuration or authentication failures
    are systemic and raise. Failures for single recipients are counted in
    the returned :class:`NotificationBatchResult`.
    """

    def __init__(
        self,
        db: Any,
        dispatcher: Any,
        resolver: MembershipResolver | None = None,
        max_workers: int = 1,
    ) -> None:
        """Initialize the fan-out."""
        self.db = db
        self.dispatcher = dispatcher
        self.resolver = resolver or MembershipResolver(db)
        self.executor = BatchExecutor(
            max_workers=max_workers, fatal_exceptions=SYSTEMIC_EMAIL_ERRORS
        )

    def notify(self, announcement: dict[str, Any]) -> NotificationBatchResult:
        """Resolve the audience and send one email per recipient."""
        group_ids = clean_group_ids(announcement.get("groupIds") or [])

        self.dispatcher.ensure_configured()
        recipients = self.resolver.resolve(group_ids)
        group_names = self._group_names(group_ids)

        eligible: list[User] = []
        skipped: list[NotificationFailure] = []
        for user in recipients:
            email = user.get("email", "")
            if not wants_announcement_email(user):
                reason = "Opted out of announcement emails"
            elif not is_valid_email(email):
                reason = "Invalid email address"
            else:
                eligible.append(user)
                continue
            skipped.append(NotificationFailure(user["id"], email, reason))

        app_name = current_app.config.get("APP_NAME", "LearnPortal")
        title = announcement.get("title") or DEFAULT_ANNOUNCEMENT_TITLE
        subject = f"New Announcement: {title} - {app_name}"

        @in_app_context
        def deliver(user: User) -> str:
            return self.dispatcher.send_template(
                user["email"],
                subject,
                "announcement",
                recipient_name=user.get("name") or user["email"],
                title=title,
                content=announcement.get("content", ""),
                group_names=group_names,
                files=announcement.get("files") or [],
            )

        current_app.logger.info(
            f"Notifying {len(eligible)} recipients of announcement "
            f"{announcement.get('id', '(unsaved)')}; {len(skipped)} skipped"
        )
        batch = self.executor.run(eligible, deliver)
        result = NotificationBatchResult.from_batch(batch, skipped)
        for failure in result.failures:
            current_app.logger.warning(
                f"Announcement email to {failure.email} ({failure.recipientId}) "
                f"failed: {failure.reason}"
            )
        return result

    def _group_names(self, group_ids: list[str]) -> list[str]:
        try:
            return GroupService.get_group_names(self.db, group_ids)
        except google_exceptions.GoogleAPIError as e:
            raise DatastoreUnavailableError(f"Could not load groups: {e}") from e

    def create_job(self, announcement: dict[str, Any]) -> Any:
        """Record a pending job for an announcement and return its reference."""
        job_ref = self.db.collection(NOTIFICATION_JOBS_COLLECTION).document()
        job_ref.set(
            {
                "announcementId": announcement.get("id"),
                "groupIds": list(announcement.get("groupIds") or []),
                "status": JOB_PENDING,
                "createdAt": firestore.SERVER_TIMESTAMP,
            }
        )
        if announcement.get("id"):
            self.db.collection(ANNOUNCEMENTS_COLLECTION).document(
                announcement["id"]
            ).update({"notificationJobId": job_ref.id})
        return job_ref

    def run_job(
        self, job_ref: Any, announcement: dict[str, Any]
    ) -> NotificationBatchResult | None:
        """Run the fan-out and store its outcome on the job record."""
        job_ref.update(
            {"status": JOB_RUNNING, "startedAt": firestore.SERVER_TIMESTAMP}
        )
        try:
            result = self.notify(announcement)
        except Exception as e:
            current_app.logger.error(f"Notification job {job_ref.id} failed: {e}")
            job_ref.update(
                {
                    "status": JOB_FAILED,
                    "error": str(e),
                    "finishedAt": firestore.SERVER_TIMESTAMP,
                }
            )
            return None

        job_ref.update(
            {
                "status": JOB_COMPLETED,
                **result.to_dict(),
                "finishedAt": firestore.SERVER_TIMESTAMP,
            }
        )
        return result

    def start(self, announcement: dict[str, Any]) -> str:
        """Start the fan-out in the background and return the job id.

        The caller does not wait for delivery; it polls the job instead.
        """
        job_ref = self.create_job(announcement)
        app = current_app._get_current_object()

        def task() -> None:
            with app.app_context():
                self.run_job(job_ref, announcement)

        thread = threading.Thread(target=task, daemon=True)
        thread.start()
        return job_ref.id


class NotificationStatusReporter:
    """Report the outcome of notification jobs."""

    def __init__(self, db: Any, resolver: MembershipResolver | None = None) -> None:
        """Initialize the reporter."""
        self.db = db
        self.resolver = resolver or MembershipResolver(db)

    def get_job(self, job_id: str) -> dict[str, Any]:
        """Return a job record with its counts."""
        doc = self.db.collection(NOTIFICATION_JOBS_COLLECTION).document(job_id).get()
        if not doc.exists:
            raise NotFoundError("Notification job not found.")
        return self._format(job_id, doc.to_dict() or {})

    def check(
        self, announcement_id: str, group_ids: list[str] | None = None
    ) -> dict[str, Any]:
        """Return the latest job for an announcement.

        Without a job on record, the audience size is recomputed and the
        status is reported as unknown. Nothing is re-sent.
        """
        if not announcement_id:
            raise ValidationError("announcementId is required.")
        announcement = AnnouncementService.get_announcement(self.db, announcement_id)
        job_id = (announcement or {}).get("notificationJobId")
        if job_id:
            return self.get_job(job_id)

        if group_ids is None:
            group_ids = (announcement or {}).get("groupIds") or []
        audience = [
            user
            for user in self.resolver.resolve(group_ids)
            if wants_announcement_email(user)
        ]
        return {
            "jobId": None,
            "status": JOB_UNKNOWN,
            "notified": 0,
            "failed": 0,
            "total": len(audience),
        }

    @staticmethod
    def _format(job_id: str, data: dict[str, Any]) -> dict[str, Any]:
        return {
            "jobId": job_id,
            "announcementId": data.get("announcementId"),
            "status": data.get("status", JOB_UNKNOWN),
            "notified": data.get("notified", 0),
            "failed": data.get("failed", 0),
            "total": data.get("total", 0),
            "failures": data.get("failures", []),
            "error": data.get("error"),
        }
