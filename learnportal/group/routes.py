"""Routes for groups and their members."""

from firebase_admin import firestore
from flask import g, jsonify, request

from learnportal.auth.decorators import login_required
from learnportal.core.constants import (
    ADMIN_ROLES,
    MEMBERSHIP_ADD,
    MEMBERSHIP_REMOVE,
    STAFF_ROLES,
)
from learnportal.errors import ValidationError

from . import bp
from .services import GroupService


@bp.route("", methods=["GET"])
@login_required(roles=STAFF_ROLES)
def list_groups():
    """List every group."""
    return jsonify(GroupService.get_groups(firestore.client()))


@bp.route("", methods=["POST"])
@login_required(roles=ADMIN_ROLES)
def create_group():
    """Create an empty group."""
    data = request.get_json(silent=True) or {}
    group_id = GroupService.create_group(
        firestore.client(),
        data.get("name", ""),
        data.get("description", ""),
        created_by=g.user["uid"],
    )
    return jsonify({"success": True, "id": group_id}), 201


@bp.route("/<string:group_id>/members", methods=["POST"])
@login_required(roles=ADMIN_ROLES)
def add_member(group_id):
    """Add a user to a group."""
    user_id = (request.get_json(silent=True) or {}).get("userId")
    if not user_id:
        raise ValidationError("userId is required.")
    members = GroupService.update_group_membership(
        firestore.client(), group_id, MEMBERSHIP_ADD, user_id
    )
    return jsonify({"success": True, "members": members, "memberCount": len(members)})


@bp.route("/<string:group_id>/members/<string:user_id>", methods=["DELETE"])
@login_required(roles=ADMIN_ROLES)
def remove_member(group_id, user_id):
    """Remove a user from a group."""
    members = GroupService.update_group_membership(
        firestore.client(), group_id, MEMBERSHIP_REMOVE, user_id
    )
    return jsonify({"success": True, "members": members, "memberCount": len(members)})
