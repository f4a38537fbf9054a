from __future__ import annotations

from enum import Enum
from typing import Any


class OnboardingError(Exception):
    code = "onboarding_error"
    status_code = 400

    def __init__(self, message: str, **details: Any):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"detail": self.message, "code": self.code}
        if self.details:
            payload["details"] = self.details
        return payload


class ValidationError(OnboardingError):
    """Malformed input; nothing was changed."""

    code = "validation_error"
    status_code = 422


class TransitionError(OnboardingError):
    """Illegal step jump or unmet step precondition."""

    code = "transition_error"
    status_code = 409


class ChallengeErrorReason(str, Enum):
    NOT_FOUND = "NOT_FOUND"
    EXPIRED = "EXPIRED"
    ATTEMPTS_EXCEEDED = "ATTEMPTS_EXCEEDED"
    COOLDOWN_ACTIVE = "COOLDOWN_ACTIVE"


_CHALLENGE_STATUS_CODES = {
    ChallengeErrorReason.NOT_FOUND: 404,
    ChallengeErrorReason.EXPIRED: 410,
    ChallengeErrorReason.ATTEMPTS_EXCEEDED: 429,
    ChallengeErrorReason.COOLDOWN_ACTIVE: 429,
}


class ChallengeError(OnboardingError):
    code = "challenge_error"

    def __init__(self, reason: ChallengeErrorReason, message: str | None = None, **details: Any):
        super().__init__(message or f"OTP challenge error: {reason.value}", reason=reason.value, **details)
        self.reason = reason
        self.status_code = _CHALLENGE_STATUS_CODES.get(reason, 400)


class RateLimitError(OnboardingError):
    code = "rate_limited"
    status_code = 429

    def __init__(self, message: str, *, retry_after_seconds: int):
        super().__init__(message, retry_after_seconds=int(retry_after_seconds))
        self.retry_after_seconds = int(retry_after_seconds)


class ProviderError(OnboardingError):
    """Verification provider unreachable or rejecting."""

    code = "provider_error"
    status_code = 502


class IncompleteData(OnboardingError):
    code = "incomplete_data"
    status_code = 422

    def __init__(self, message: str, *, missing: list[str]):
        super().__init__(message, missing=list(missing))
        self.missing = list(missing)


class KeyProvisioningError(OnboardingError):
    code = "key_provisioning_error"
    status_code = 502


class PersistenceError(OnboardingError):
    """The mutation was not durably recorded and must be treated as not applied."""

    code = "persistence_error"
    status_code = 503
