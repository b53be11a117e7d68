"""The announcement blueprint: announcements and their email notifications."""

from flask import Blueprint

bp = Blueprint("announcement", __name__)

from . import routes  # noqa: E402

__all__ = ["routes"]
