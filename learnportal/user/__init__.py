"""User records and their service layer."""

from .services import UserService

__all__ = ["UserService"]
