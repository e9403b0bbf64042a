"""AdPilot — Publish Pipeline Error Taxonomy.

Every failure the pipeline can surface is a ``PublishPipelineError`` tagged
with an ``ErrorKind``. ``transient`` errors may succeed on retry without the
caller changing anything; everything else needs caller action first.
"""

from enum import Enum
from typing import Any, Dict, Optional


class ErrorKind(str, Enum):
    """Retry classification of a failure."""

    FATAL_CREDENTIAL = "fatal_credential"
    TRANSIENT_RATE_LIMIT = "transient_rate_limit"
    FATAL_PAYLOAD = "fatal_payload"
    TRANSIENT_NETWORK = "transient_network"
    NO_CREDENTIAL = "no_credential"
    NOT_FOUND = "not_found"
    VALIDATION = "validation"
    NOT_PUBLISHED = "not_published"
    PRECONDITION = "precondition"


TRANSIENT_KINDS = {ErrorKind.TRANSIENT_RATE_LIMIT, ErrorKind.TRANSIENT_NETWORK}


class PublishPipelineError(Exception):
    """Base class for all pipeline failures."""

    kind: ErrorKind = ErrorKind.FATAL_PAYLOAD

    def __init__(self, message: str, **details: Any):
        self.message = message
        self.details: Dict[str, Any] = details
        super().__init__(message)

    @property
    def transient(self) -> bool:
        return self.kind in TRANSIENT_KINDS

    def to_dict(self) -> Dict[str, Any]:
        return {
            "code": type(self).__name__,
            "kind": self.kind.value,
            "message": self.message,
            **({"details": self.details} if self.details else {}),
        }


# ── Credential ──


class NoCredentialError(PublishPipelineError):
    """No user or system token is stored for the owner."""

    kind = ErrorKind.NO_CREDENTIAL


class CredentialRejectedError(PublishPipelineError):
    """The platform rejected the token (invalid, expired, revoked)."""

    kind = ErrorKind.FATAL_CREDENTIAL


# ── Transient ──


class FetchError(PublishPipelineError):
    """Creative storage unreachable or temporarily failing."""

    kind = ErrorKind.TRANSIENT_NETWORK


class NetworkTimeoutError(PublishPipelineError):
    """A network call exceeded its timeout."""

    kind = ErrorKind.TRANSIENT_NETWORK


class PlatformUnavailableError(PublishPipelineError):
    """Platform-side 5xx or transport failure."""

    kind = ErrorKind.TRANSIENT_NETWORK


class RateLimitError(PublishPipelineError):
    """Platform throttled the request; ``retry_after`` is its hint in seconds."""

    kind = ErrorKind.TRANSIENT_RATE_LIMIT

    def __init__(self, message: str, retry_after: Optional[float] = None, **details):
        self.retry_after = retry_after
        super().__init__(message, **details)


# ── Permanent ──


class NotFoundError(PublishPipelineError):
    """A referenced asset or resource does not exist."""

    kind = ErrorKind.NOT_FOUND


class ValidationError(PublishPipelineError):
    """An asset failed a hard validation check."""

    kind = ErrorKind.VALIDATION

    def __init__(self, message: str, violations: Optional[list] = None, **details):
        self.violations = violations or []
        super().__init__(message, **details)


class DraftValidationError(ValidationError):
    """The draft failed entity-level validation."""


class PlatformRejectionError(PublishPipelineError):
    """Malformed payload or policy violation. Message is the platform's own."""

    kind = ErrorKind.FATAL_PAYLOAD

    def __init__(
        self,
        message: str,
        status_code: int = 0,
        error_code: int = 0,
        error_subcode: int = 0,
        **details,
    ):
        self.status_code = status_code
        self.error_code = error_code
        self.error_subcode = error_subcode
        super().__init__(message, **details)


# ── Caller-correctable ──


class NotPublishedError(PublishPipelineError):
    """The addressed ad has no remote resource yet."""

    kind = ErrorKind.NOT_PUBLISHED


class CapabilityDisabledError(PublishPipelineError):
    """The resource has the requested operation switched off."""

    kind = ErrorKind.PRECONDITION


class DraftNotFoundError(NotFoundError):
    """No draft with the given id."""


class OwnershipError(PublishPipelineError):
    """The caller does not own the draft."""

    kind = ErrorKind.PRECONDITION


class BudgetNotConfirmedError(PublishPipelineError):
    """Publishing requested before the budget was confirmed."""

    kind = ErrorKind.PRECONDITION


# ─────────────────────────────────────────────
# PLATFORM ERROR CLASSIFICATION
# ─────────────────────────────────────────────

CREDENTIAL_ERROR_CODES = {102, 190, 463, 467}
RATE_LIMIT_ERROR_CODES = {4, 17, 32, 341, 613}
SERVER_ERROR_CODES = {1, 2}


def error_section(body: Any) -> Dict[str, Any]:
    """The ``error`` object of a response body, or an empty dict."""
    error = body.get("error") if isinstance(body, dict) else None
    if isinstance(error, str):
        return {"message": error}
    return error if isinstance(error, dict) else {}


def classify_platform_error(status_code: int, body: Any) -> ErrorKind:
    """Map a Graph API error response onto one of the four retry classes."""
    error = error_section(body)
    code = error.get("code") or 0
    try:
        code = int(code)
    except (TypeError, ValueError):
        code = 0
    message = str(error.get("message", "")).lower()

    if status_code == 401 or code in CREDENTIAL_ERROR_CODES:
        return ErrorKind.FATAL_CREDENTIAL
    if error.get("type") == "OAuthException" and "token" in message:
        return ErrorKind.FATAL_CREDENTIAL
    if status_code == 429 or code in RATE_LIMIT_ERROR_CODES:
        return ErrorKind.TRANSIENT_RATE_LIMIT
    if 80000 <= code <= 80014:  # business use case throttling
        return ErrorKind.TRANSIENT_RATE_LIMIT
    if error.get("is_transient") is True:
        return ErrorKind.TRANSIENT_NETWORK
    if status_code >= 500 or code in SERVER_ERROR_CODES:
        return ErrorKind.TRANSIENT_NETWORK
    return ErrorKind.FATAL_PAYLOAD


def build_platform_error(
    status_code: int,
    body: Any,
    retry_after: Optional[float] = None,
) -> PublishPipelineError:
    """Build the typed exception for an error response."""
    error = error_section(body)
    message = error.get("error_user_msg") or error.get("message") or f"HTTP {status_code}"
    code = error.get("code") or 0
    subcode = error.get("error_subcode") or 0
    kind = classify_platform_error(status_code, body)

    if kind == ErrorKind.FATAL_CREDENTIAL:
        return CredentialRejectedError(message, status_code=status_code, error_code=code)
    if kind == ErrorKind.TRANSIENT_RATE_LIMIT:
        return RateLimitError(
            message, retry_after=retry_after, status_code=status_code, error_code=code
        )
    if kind == ErrorKind.TRANSIENT_NETWORK:
        return PlatformUnavailableError(
            message, status_code=status_code, error_code=code
        )
    return PlatformRejectionError(
        message,
        status_code=status_code,
        error_code=code,
        error_subcode=subcode,
    )
