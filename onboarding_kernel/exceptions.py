"""
Typed exception hierarchy for the onboarding kernel.

Every error has a typed class, a machine-readable ``code`` class
attribute, and carries its context as attributes so callers never parse
messages.

    OnboardingError (base)
    |
    +-- FormatError
    |   +-- IdentifierFormatError
    |   +-- BatchSizeExceededError
    |
    +-- InvalidArgumentError
    |
    +-- NotFoundError
    |   +-- WorkflowNotFoundError
    |   +-- ApprovalNotFoundError
    |   +-- TokenNotFoundError
    |
    +-- InvalidTransitionError
    |
    +-- ConcurrencyConflictError
    |
    +-- TokenError
    |   +-- TokenExpiredError
    |   |   +-- TokenSupersededError
    |   +-- TokenAlreadyUsedError
    |
    +-- RegistryError
    |   +-- RegistryUnavailableError
    |   |   +-- RegistryTimeoutError
    |   |   +-- RateLimitedError
    |   |   +-- RegistryPayloadError
    |   +-- IdentifierNotRegisteredError
    |
    +-- AuditError
        +-- AuditChainBrokenError

Propagation:
    FormatError, InvalidArgumentError, NotFoundError and
    InvalidTransitionError go straight back to the caller and are never
    retried. ConcurrencyConflictError is reported to the caller, who
    re-reads and decides whether to retry. RegistryError subclasses are
    raised only by registry adapters and are absorbed by ValidationCache
    (RegistryUnavailableError becomes a FALLBACK result,
    IdentifierNotRegisteredError becomes an explicit "not valid" answer).
"""


class OnboardingError(Exception):
    """
    Base exception for all onboarding errors.

    All subclasses must define a ``code`` class attribute.
    """

    code: str = "ONBOARDING_ERROR"

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


# Local input errors


class FormatError(OnboardingError):
    """Malformed input detected locally, before any external call."""

    code: str = "FORMAT_ERROR"


class IdentifierFormatError(FormatError):
    """A registry identifier does not match its expected format."""

    code: str = "INVALID_IDENTIFIER_FORMAT"

    def __init__(self, kind: str, identifier: str, reason: str):
        self.kind = kind
        self.identifier = identifier
        self.reason = reason
        super().__init__(f"Invalid {kind} identifier {identifier!r}: {reason}")


class BatchSizeExceededError(FormatError):
    """A bulk request holds more items than the configured cap."""

    code: str = "BATCH_SIZE_EXCEEDED"

    def __init__(self, count: int, limit: int, identifiers: tuple[str, ...] = ()):
        self.count = count
        self.limit = limit
        self.identifiers = identifiers
        super().__init__(
            f"Batch of {count} items exceeds the maximum of {limit}"
        )


class InvalidArgumentError(OnboardingError):
    """A required argument is missing or out of range."""

    code: str = "INVALID_ARGUMENT"

    def __init__(self, field: str, reason: str):
        self.field = field
        self.reason = reason
        super().__init__(f"Invalid argument {field!r}: {reason}")


# Lookup errors


class NotFoundError(OnboardingError):
    """Referenced entity does not exist."""

    code: str = "NOT_FOUND"


class WorkflowNotFoundError(NotFoundError):
    """No onboarding workflow exists for the client."""

    code: str = "WORKFLOW_NOT_FOUND"

    def __init__(self, client_id: str):
        self.client_id = client_id
        super().__init__(f"No onboarding workflow for client {client_id}")


class ApprovalNotFoundError(NotFoundError):
    """No approval record in the expected status exists for the client."""

    code: str = "APPROVAL_NOT_FOUND"

    def __init__(self, client_id: str, status: str = "PENDING_APPROVAL"):
        self.client_id = client_id
        self.status = status
        super().__init__(
            f"No {status} approval record for client {client_id}"
        )


class TokenNotFoundError(NotFoundError):
    """Confirmation token is unknown."""

    code: str = "TOKEN_NOT_FOUND"

    def __init__(self) -> None:
        super().__init__("Confirmation token not found")


# State machine errors


class InvalidTransitionError(OnboardingError):
    """An event was delivered to a step that has no transition for it."""

    code: str = "INVALID_TRANSITION"

    def __init__(self, current_step: str, event: str, client_id: str | None = None):
        self.current_step = current_step
        self.event = event
        self.client_id = client_id
        super().__init__(
            f"Event {event} is not valid in step {current_step}"
        )


class ConcurrencyConflictError(OnboardingError):
    """A compare-and-swap update lost the race to a concurrent writer."""

    code: str = "CONCURRENCY_CONFLICT"

    def __init__(self, entity_type: str, entity_id: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        super().__init__(
            f"Concurrent modification of {entity_type} {entity_id}: "
            "re-read the current state and retry"
        )


# Token errors


class TokenError(OnboardingError):
    """Base for confirmation token redemption failures."""

    code: str = "TOKEN_ERROR"


class TokenExpiredError(TokenError):
    """Token was redeemed after its expiry time."""

    code: str = "TOKEN_EXPIRED"

    def __init__(self, client_id: str, expires_at: str):
        self.client_id = client_id
        self.expires_at = expires_at
        super().__init__(f"Confirmation token expired at {expires_at}")


class TokenSupersededError(TokenExpiredError):
    """Token was invalidated by a newer token for the same client and purpose."""

    code: str = "TOKEN_SUPERSEDED"

    def __init__(self, client_id: str, expires_at: str):
        super().__init__(client_id, expires_at)
        self.message = "Confirmation token was superseded by a newer token"
        self.args = (self.message,)


class TokenAlreadyUsedError(TokenError):
    """Token has already been redeemed."""

    code: str = "TOKEN_ALREADY_USED"

    def __init__(self, client_id: str, redeemed_at: str | None = None):
        self.client_id = client_id
        self.redeemed_at = redeemed_at
        super().__init__("Confirmation token has already been used")


# Registry errors (absorbed by ValidationCache)


class RegistryError(OnboardingError):
    """Base for failures reported by a registry adapter."""

    code: str = "REGISTRY_ERROR"

    def __init__(self, registry: str, identifier: str, reason: str):
        self.registry = registry
        self.identifier = identifier
        self.reason = reason
        super().__init__(f"{registry} lookup for {identifier} failed: {reason}")


class RegistryUnavailableError(RegistryError):
    """Registry could not give an authoritative answer."""

    code: str = "REGISTRY_UNAVAILABLE"


class RegistryTimeoutError(RegistryUnavailableError):
    """Registry call exceeded its timeout."""

    code: str = "REGISTRY_TIMEOUT"


class RateLimitedError(RegistryUnavailableError):
    """Registry rate limit reached, locally or reported by the registry."""

    code: str = "REGISTRY_RATE_LIMITED"


class RegistryPayloadError(RegistryUnavailableError):
    """Registry answered with a payload that cannot be interpreted."""

    code: str = "REGISTRY_MALFORMED_PAYLOAD"


class IdentifierNotRegisteredError(RegistryError):
    """Registry answered authoritatively that the identifier is not registered."""

    code: str = "IDENTIFIER_NOT_REGISTERED"


# Audit errors


class AuditError(OnboardingError):
    """Base for audit trail errors."""

    code: str = "AUDIT_ERROR"


class AuditChainBrokenError(AuditError):
    """Audit hash chain validation failed."""

    code: str = "AUDIT_CHAIN_BROKEN"

    def __init__(self, audit_event_id: str, expected_hash: str, actual_hash: str):
        self.audit_event_id = audit_event_id
        self.expected_hash = expected_hash
        self.actual_hash = actual_hash
        super().__init__(
            f"Audit chain broken at {audit_event_id}: "
            f"expected {expected_hash}, found {actual_hash}"
        )
