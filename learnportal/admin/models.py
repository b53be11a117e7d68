"""Data models for admin operations."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Optional, TypedDict

from learnportal.core.batch import BatchResult


class ProvisionedUser(TypedDict, total=False):
    """Outcome of a successful account creation."""

    email: str
    userId: str
    password: str
    emailSent: bool
    emailError: str


class ProvisioningError(TypedDict):
    """Outcome of a failed account creation or a rejected entry."""

    email: str
    error: str


@dataclass
class BulkCreationResult:
    """Per-email outcomes of one bulk provisioning request.

    ``rejected`` holds entries that failed validation before the batch ran
    and are not part of the batch counts. ``halted`` is the mail error that
    stopped the batch early, if one did.
    """

    batch: BatchResult = field(default_factory=BatchResult)
    rejected: list[ProvisioningError] = field(default_factory=list)
    halted: Optional[str] = None

    @property
    def results(self) -> list[ProvisionedUser]:
        return [outcome.result for outcome in self.batch.successes]

    @property
    def errors(self) -> list[ProvisioningError]:
        return [
            {"email": outcome.target["email"], "error": outcome.error or "Failed"}
            for outcome in self.batch.failures
        ]

    @property
    def outcomes(self) -> list[dict[str, Any]]:
        """Successes and failures interleaved in input order."""
        ordered: list[dict[str, Any]] = []
        for outcome in self.batch.outcomes:
            if outcome.ok:
                ordered.append({"status": "success", **outcome.result})
            else:
                ordered.append(
                    {
                        "status": "error",
                        "email": outcome.target["email"],
                        "error": outcome.error or "Failed",
                    }
                )
        return ordered

    def to_dict(self) -> dict[str, Any]:
        """Serialize for the JSON API."""
        return {
            "success": True,
            "results": self.results,
            "errors": self.errors,
            "rejected": self.rejected,
            "outcomes": self.outcomes,
            "summary": self.batch.summary(),
            "halted": self.halted,
        }
