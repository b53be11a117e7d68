"""The admin blueprint: user provisioning, roles and settings."""

from flask import Blueprint

bp = Blueprint("admin", __name__)

from . import routes  # noqa: E402

__all__ = ["routes"]
