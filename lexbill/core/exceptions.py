"""Custom exception hierarchy for the billing service.

Every service-layer error inherits from BillingError, giving the API
layer a single base class to catch and translate into structured JSON
responses. Subclasses carry domain-specific context (the orphaned file
path, the rejected workflow, the partial step list) in ``details`` and
advertise through ``retryable`` whether repeating the call can help.
"""

from __future__ import annotations

from typing import Any


class BillingError(Exception):
    """Base exception for all billing errors."""

    retryable: bool = False

    def __init__(
        self,
        message: str,
        *,
        details: dict[str, Any] | None = None,
    ) -> None:
        self.message = message
        self.details: dict[str, Any] = details or {}
        super().__init__(message)


# ---------------------------------------------------------------------------
# Validation: rejected before any side effect
# ---------------------------------------------------------------------------


class ValidationError(BillingError):
    """Raised when caller input or case state fails validation."""


class InvalidReferenceFormatError(ValidationError):
    """Raised when an external insurer reference is not DJ00 + 6 digits."""


class WorkflowRejectedError(ValidationError):
    """Raised when the case state gate refuses a workflow."""


class UnknownDistrictError(ValidationError):
    """Raised when a district is not one of the known judicial districts."""


class InvalidStateTransitionError(ValidationError):
    """Raised when a case state change would move backwards or skip a rule."""


class UnsupportedCaseKindError(ValidationError):
    """Raised when an operation does not apply to the case kind."""


class NotFoundError(BillingError):
    """Raised when a requested resource does not exist."""


class ConflictError(BillingError):
    """Raised when a unique reference is already taken."""


class InvalidRetryTargetError(BillingError):
    """Raised when an email attempt cannot be retried."""


class EmailNotConfiguredError(BillingError):
    """Raised when a retry is requested but no email transport is configured."""


# ---------------------------------------------------------------------------
# Storage
# ---------------------------------------------------------------------------


class StorageUnavailableError(BillingError):
    """Raised when the persistent store cannot be reached."""

    retryable = True


# ---------------------------------------------------------------------------
# Fatal workflow errors
# ---------------------------------------------------------------------------


class RenderError(BillingError):
    """Raised when a document cannot be rendered."""

    retryable = True


class DocumentRecordError(BillingError):
    """Raised when a rendered document cannot be persisted."""

    retryable = True


class DocumentOrphanedError(DocumentRecordError):
    """Raised when the file was written but its record was not.

    ``path`` points at the file so an operator can reconcile it.
    """

    retryable = False

    def __init__(
        self,
        message: str,
        *,
        path: str,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, details={"path": path, **(details or {})})
        self.path = path


# ---------------------------------------------------------------------------
# Degradable: signing
# ---------------------------------------------------------------------------


class SigningError(BillingError):
    """Raised when a document cannot be signed."""


class MalformedDocumentError(SigningError):
    """Raised when the bytes handed to a signer are not a usable PDF."""


class CredentialInvalidError(SigningError):
    """Raised when the signing credential is missing, unreadable or refused."""


class CredentialExpiredError(SigningError):
    """Raised when the signing credential is outside its validity window."""


class SigningBackendUnavailableError(SigningError):
    """Raised when the delegated signer cannot be reached."""

    retryable = True


# ---------------------------------------------------------------------------
# Recorded-but-failed: email
# ---------------------------------------------------------------------------


class EmailDeliveryError(BillingError):
    """Raised when the email transport fails to deliver a message."""

    retryable = True
