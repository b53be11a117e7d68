"""Admin routes for the application."""

from firebase_admin import auth, firestore
from flask import current_app, g, jsonify, request

from learnportal.auth.decorators import login_required
from learnportal.core.batch import BatchExecutor
from learnportal.core.constants import ADMIN_ROLES, AUTO_APPROVE_SETTING
from learnportal.errors import ValidationError
from learnportal.group.services import GroupService
from learnportal.user.services import UserService
from learnportal.utils import get_dispatcher, parse_email_list

from . import bp
from .services import AdminService, ProvisioningService


def _json_body():
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object.")
    return data


def _provisioning_service():
    config = current_app.config
    return ProvisioningService(
        firestore.client(),
        get_dispatcher(),
        auth,
        executor=BatchExecutor(max_workers=config["PROVISIONING_MAX_WORKERS"]),
        password_length=config["PASSWORD_MIN_LENGTH"],
    )


@bp.route("/bulk-create", methods=["POST"])
@login_required(roles=ADMIN_ROLES)
def bulk_create():
    """Create accounts for a list of users and email their credentials."""
    data = _json_body()
    if "users" in data:
        entries = data["users"]
        if not isinstance(entries, list):
            raise ValidationError("users must be a list.")
    elif "emails" in data:
        entries = parse_email_list(str(data["emails"] or ""))
    else:
        raise ValidationError("Provide users or emails.")
    if not entries:
        raise ValidationError("No users provided.")

    result = _provisioning_service().bulk_create(entries, created_by=g.user["uid"])
    return jsonify(result.to_dict())


@bp.route("/regenerate-password", methods=["POST"])
@login_required(roles=ADMIN_ROLES)
def regenerate_password():
    """Issue a new password for one user and email it to them."""
    data = _json_body()
    result = _provisioning_service().regenerate_password(
        data.get("userId"), data.get("email")
    )
    return jsonify({"success": True, **result})


@bp.route("/users/<string:user_id>/role", methods=["POST"])
@login_required(roles=ADMIN_ROLES)
def update_role(user_id):
    """Change a user's role."""
    role = _json_body().get("role")
    UserService.update_role(firestore.client(), user_id, role)
    current_app.logger.info(f"User {user_id} role set to {role} by {g.user['uid']}")
    return jsonify({"success": True, "userId": user_id, "role": role})


@bp.route("/users/<string:user_id>/approval", methods=["POST"])
@login_required(roles=ADMIN_ROLES)
def set_approval(user_id):
    """Approve or revoke a user."""
    approved = bool(_json_body().get("approved", True))
    UserService.set_approval(firestore.client(), user_id, approved)
    return jsonify({"success": True, "userId": user_id, "isApproved": approved})


@bp.route("/users/<string:user_id>/groups", methods=["PUT"])
@login_required(roles=ADMIN_ROLES)
def assign_groups(user_id):
    """Replace the set of groups a user belongs to."""
    group_ids = _json_body().get("groupIds")
    if not isinstance(group_ids, list):
        raise ValidationError("groupIds must be a list.")
    assigned = GroupService.assign_user_to_groups(
        firestore.client(), user_id, group_ids
    )
    return jsonify({"success": True, "userId": user_id, "assignedGroups": assigned})


@bp.route("/settings/auto-approve", methods=["POST"])
@login_required(roles=ADMIN_ROLES)
def toggle_auto_approve():
    """Toggle automatic approval of newly created users."""
    new_value = AdminService.toggle_setting(
        firestore.client(), AUTO_APPROVE_SETTING, default=True
    )
    status = "enabled" if new_value else "disabled"
    current_app.logger.info(f"Auto-approve {status} by {g.user['uid']}")
    return jsonify({"success": True, "value": new_value})
