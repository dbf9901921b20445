"""
core/errors.py -- Domain exception taxonomy for AdBond.

Every error a store, the provisioner, or the verification workflow raises on
purpose derives from AdBondError. Each class carries the HTTP status and the
machine-readable code the API layer puts in its error envelope, so api/main.py
needs exactly one exception handler for the whole family.

ProvisioningFailure and NotificationFailure describe side-effect failures.
They never reach an HTTP client: the workflow and the notifier catch them and
report them as data (VerificationOutcome / SendResult).

Layer rule: core/ is the kernel. No imports from api/, auth/, entities/, notify/.
"""

from __future__ import annotations


class AdBondError(Exception):
    """Base class for expected, caller-facing failures."""

    status_code: int = 400
    code: str = "error"

    def __init__(self, message: str, errors: list[str] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.errors = errors or []


class ValidationError(AdBondError):
    """Malformed or missing input. errors lists the offending fields or rules."""

    status_code = 400
    code = "validation_error"


class InvalidTransitionError(ValidationError):
    """A verification status change refused by workflow policy."""

    code = "invalid_transition"


class NotFoundError(AdBondError):
    status_code = 404
    code = "not_found"


class ConflictError(AdBondError):
    """Unique-constraint violation (duplicate email)."""

    status_code = 400
    code = "conflict"


class DuplicateEmailError(ConflictError):
    code = "duplicate_email"


class ForeignKeyError(AdBondError):
    """Delete blocked by dependent rows. The caller must remove them first."""

    status_code = 400
    code = "foreign_key"


class TemporaryPasswordExpiredError(AdBondError):
    """The temporary credential issued at provisioning is past its expiry."""

    status_code = 401
    code = "temp_password_expired"


class ProvisioningFailure(AdBondError):
    status_code = 500
    code = "provisioning_failed"


class NotificationFailure(AdBondError):
    """Raised by mail transports; error_code classifies the failure."""

    status_code = 502
    code = "notification_failed"

    def __init__(self, message: str, error_code: str = "unknown") -> None:
        super().__init__(message)
        self.error_code = error_code
