"""Failure conditions raised by the claim workflow.

Every condition maps to one caller-visible outcome; ``status_code`` is the
HTTP status the API layer answers with.
"""

from __future__ import annotations

from typing import Any, Optional


class ClaimflowError(Exception):
    """Base class for all expected workflow failures."""

    status_code = 500

    def __init__(self, message: str, *, details: Optional[list[dict[str, Any]]] = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or []

    def to_dict(self) -> dict[str, Any]:
        body: dict[str, Any] = {"error": self.message}
        if self.details:
            body["errors"] = self.details
        return body


class ValidationError(ClaimflowError):
    """Bad input shape or values. Never retried."""

    status_code = 400


class AuthorizationError(ClaimflowError, PermissionError):
    """Role or ownership check failed."""

    status_code = 403


class NotFoundOrAlreadyDecided(ClaimflowError):
    """The claim does not exist or has already left ``pending``."""

    status_code = 404

    def __init__(self, claim_id: int, message: Optional[str] = None) -> None:
        super().__init__(message or f"Expense {claim_id} not found or already decided")
        self.claim_id = claim_id


class ClaimNotFound(NotFoundOrAlreadyDecided):
    """Plain lookup of a claim id that does not exist."""

    def __init__(self, claim_id: int) -> None:
        super().__init__(claim_id, f"Expense {claim_id} not found")


class InvalidImage(ClaimflowError):
    """Upload is empty or not an image."""

    status_code = 400


class ExtractionFailed(ClaimflowError):
    """The OCR engine failed or timed out."""

    status_code = 500

    def __init__(self, message: str = "Failed to extract text from image") -> None:
        super().__init__(message)


class StorageError(ClaimflowError):
    """Repository or blob store failure."""

    status_code = 500
