"""Exception hierarchy for the fitness integration engine.

Routers translate these into HTTP responses; the webhook gateway logs them
and still acknowledges the provider.  ``AlreadyImported`` is deliberately
absent: a repeated import is a normal result, not a failure.
"""

from __future__ import annotations


class IntegrationError(Exception):
    """Base class for every integration-layer failure."""


class UnknownProvider(IntegrationError):
    """Raised when a provider slug has no registered adapter."""

    def __init__(self, provider: str, available: list[str] | None = None) -> None:
        self.provider = provider
        msg = f"No adapter registered for provider '{provider}'"
        if available:
            msg += f". Available: {available}"
        super().__init__(msg)


class NotConnected(IntegrationError):
    """The user has no IntegrationRecord for the provider."""

    def __init__(self, provider: str) -> None:
        self.provider = provider
        super().__init__(f"{provider} is not connected")


class ProviderRequestFailed(IntegrationError):
    """A provider answered with a non-2xx status.

    Attributes:
        provider:    Provider slug.
        status_code: HTTP status returned, or None when no response arrived.
    """

    def __init__(self, provider: str, status_code: int | None, message: str = "") -> None:
        self.provider = provider
        self.status_code = status_code
        super().__init__(
            message or f"{provider} request failed with status {status_code}"
        )


class ProviderUnavailable(ProviderRequestFailed):
    """Network error, timeout or 5xx talking to a provider."""


class AuthExpired(IntegrationError):
    """Token refresh was refused; the user must reconnect the provider."""

    def __init__(self, provider: str, reason: str = "") -> None:
        self.provider = provider
        super().__init__(
            f"{provider} authorization expired, reconnect required"
            + (f": {reason}" if reason else "")
        )


class SignatureInvalid(IntegrationError):
    """Inbound webhook signature missing or not matching the payload."""


class DuplicateKey(IntegrationError):
    """A store write hit a uniqueness constraint.

    Attributes:
        constraint: Which key collided: ``schedule_sequence``,
                    ``workout_sequence``, ``external_activity_id`` or
                    ``integration``.
    """

    def __init__(self, constraint: str) -> None:
        self.constraint = constraint
        super().__init__(f"Unique constraint violated: {constraint}")


class SequenceConflict(IntegrationError):
    """Sequence allocation collided twice in a row for the same day."""

    def __init__(self, namespace: str, day: object) -> None:
        self.namespace = namespace
        self.day = day
        super().__init__(f"Could not allocate {namespace} for {day} after retry")


class InvalidOAuthState(IntegrationError):
    """OAuth ``state`` failed signature, TTL or shape checks."""


class InvalidSyncRange(IntegrationError):
    """Manual sync requested with start_date after end_date."""
