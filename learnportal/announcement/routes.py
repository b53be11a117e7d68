"""Routes for announcements and their email notifications."""

from firebase_admin import firestore
from flask import current_app, g, jsonify, request

from learnportal.auth.decorators import login_required
from learnportal.core.constants import STAFF_ROLES
from learnportal.errors import NotFoundError, ValidationError
from learnportal.group.services import MembershipResolver, clean_group_ids
from learnportal.utils import get_dispatcher

from . import bp
from .services import AnnouncementService, NotificationFanout, NotificationStatusReporter


def _resolver(db):
    return MembershipResolver(db, current_app.config["MAX_FILTER_VALUES"])


def _fanout(db):
    return NotificationFanout(
        db,
        get_dispatcher(),
        _resolver(db),
        max_workers=current_app.config["NOTIFICATION_MAX_WORKERS"],
    )


@bp.route("/announcements", methods=["POST"])
@login_required(roles=STAFF_ROLES)
def create_announcement():
    """Store an announcement and start notifying its groups by email."""
    db = firestore.client()
    announcement_id = AnnouncementService.create_announcement(
        db, request.get_json(silent=True) or {}, created_by=g.user["uid"]
    )
    announcement = AnnouncementService.get_announcement(db, announcement_id)
    job_id = _fanout(db).start(announcement)
    return jsonify({"id": announcement_id, "jobId": job_id}), 201


@bp.route("/announcements/<string:announcement_id>", methods=["GET"])
@login_required
def view_announcement(announcement_id):
    """Return one announcement."""
    announcement = AnnouncementService.get_announcement(
        firestore.client(), announcement_id
    )
    if announcement is None:
        raise NotFoundError("Announcement not found.")
    return jsonify(announcement)


@bp.route("/announcements/<string:announcement_id>/view", methods=["POST"])
@login_required
def record_view(announcement_id):
    """Count the logged-in user's view of an announcement."""
    first_view = AnnouncementService.record_view(
        firestore.client(), announcement_id, g.user["uid"]
    )
    return jsonify({"success": True, "firstView": first_view})


@bp.route("/send-announcement-notification", methods=["POST"])
@login_required(roles=STAFF_ROLES)
def send_announcement_notification():
    """Notify an announcement's groups and wait for the result."""
    data = request.get_json(silent=True) or {}
    announcement = data.get("announcement")
    if not isinstance(announcement, dict):
        raise ValidationError("announcement is required.")
    group_ids = clean_group_ids(data.get("groupIds", announcement.get("groupIds")))

    result = _fanout(firestore.client()).notify({**announcement, "groupIds": group_ids})
    return jsonify({"success": True, **result.to_dict()})


@bp.route("/check-notification-status", methods=["POST"])
@login_required(roles=STAFF_ROLES)
def check_notification_status():
    """Report how a notification run went, without sending anything."""
    data = request.get_json(silent=True) or {}
    db = firestore.client()
    reporter = NotificationStatusReporter(db, _resolver(db))
    if data.get("jobId"):
        return jsonify(reporter.get_job(data["jobId"]))
    return jsonify(reporter.check(data.get("announcementId"), data.get("groupIds")))


@bp.route("/notification-jobs/<string:job_id>", methods=["GET"])
@login_required(roles=STAFF_ROLES)
def get_notification_job(job_id):
    """Return one notification job."""
    return jsonify(NotificationStatusReporter(firestore.client()).get_job(job_id))
