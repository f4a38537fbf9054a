from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Callable

from onboarding.core.errors import ValidationError

logger = logging.getLogger(__name__)


class ChallengeStatus(str, Enum):
    PENDING = "PENDING"
    VERIFYING = "VERIFYING"
    VERIFIED = "VERIFIED"
    EXPIRED = "EXPIRED"
    FAILED = "FAILED"


TRANSITIONS: dict[ChallengeStatus, frozenset[ChallengeStatus]] = {
    ChallengeStatus.PENDING: frozenset({ChallengeStatus.VERIFYING, ChallengeStatus.EXPIRED}),
    ChallengeStatus.VERIFYING: frozenset(
        {ChallengeStatus.PENDING, ChallengeStatus.VERIFIED, ChallengeStatus.FAILED, ChallengeStatus.EXPIRED}
    ),
    ChallengeStatus.VERIFIED: frozenset(),
    ChallengeStatus.FAILED: frozenset(),
    ChallengeStatus.EXPIRED: frozenset(),
}

TERMINAL_STATUSES = frozenset(status for status, targets in TRANSITIONS.items() if not targets)


class ChallengeStateError(RuntimeError):
    """A status change outside the transition table was attempted."""


def _as_utc(dt: datetime) -> datetime:
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def _seconds_until(moment: datetime, now: datetime) -> int:
    delta = (_as_utc(moment) - _as_utc(now)).total_seconds()
    if delta <= 0:
        return 0
    # Round up so a challenge with 0.4s left still reports 1s.
    return int(delta) + (1 if delta > int(delta) else 0)


@dataclass
class OTPChallenge:
    challenge_id: str
    session_key: str
    phone_number: str
    issued_at: datetime
    expires_at: datetime
    cooldown_until: datetime
    max_attempts: int
    status: ChallengeStatus = ChallengeStatus.PENDING
    attempt_count: int = 0
    provider_challenge_id: str | None = None
    demo_fallback: bool = False
    verifying_started_at: datetime | None = None
    settled_at: datetime | None = None
    superseded: bool = False

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def can_transition(self, target: ChallengeStatus) -> bool:
        return target in TRANSITIONS[self.status]

    def transition(self, target: ChallengeStatus, *, now: datetime) -> None:
        if not self.can_transition(target):
            raise ChallengeStateError(f"Illegal challenge transition {self.status.value} -> {target.value}")
        self.status = target
        if target == ChallengeStatus.VERIFYING:
            self.verifying_started_at = now
        elif target == ChallengeStatus.PENDING:
            self.verifying_started_at = None
        if target in TERMINAL_STATUSES:
            self.settled_at = now

    def expire(self, *, now: datetime, superseded: bool = False) -> None:
        if self.is_terminal:
            return
        self.transition(ChallengeStatus.EXPIRED, now=now)
        self.superseded = self.superseded or superseded

    def is_expired(self, now: datetime) -> bool:
        return self.status == ChallengeStatus.EXPIRED or _as_utc(now) >= _as_utc(self.expires_at)

    def expires_in(self, now: datetime) -> int:
        if self.status == ChallengeStatus.EXPIRED:
            return 0
        return _seconds_until(self.expires_at, now)

    def cooldown_remaining(self, now: datetime) -> int:
        return _seconds_until(self.cooldown_until, now)

    def attempts_remaining(self) -> int:
        return max(0, int(self.max_attempts) - int(self.attempt_count))

    def copy(self) -> "OTPChallenge":
        return replace(self)


@dataclass
class VerificationResult:
    challenge_id: str
    status: ChallengeStatus
    phone_number: str
    attempt_count: int
    attempts_remaining: int
    demo_fallback: bool = False
    suppressed: bool = False

    @property
    def verified(self) -> bool:
        return self.status == ChallengeStatus.VERIFIED

    @classmethod
    def from_challenge(cls, challenge: OTPChallenge, *, suppressed: bool = False) -> "VerificationResult":
        return cls(
            challenge_id=challenge.challenge_id,
            status=challenge.status,
            phone_number=challenge.phone_number,
            attempt_count=challenge.attempt_count,
            attempts_remaining=challenge.attempts_remaining(),
            demo_fallback=challenge.demo_fallback,
            suppressed=suppressed,
        )


def normalize_code(raw: str | None, *, length: int) -> str:
    code = str(raw or "").strip()
    if len(code) != length or not code.isdigit():
        raise ValidationError(f"Code must be exactly {length} digits", expected_digits=length)
    return code


class CodeEntry:
    """Digit-by-digit code buffer for auto-submit.

    `set_digit` returns the full code once all digits are present, and only
    once per fill: the buffer must change before it will fire again.
    """

    def __init__(self, length: int):
        self.length = int(length)
        self._digits: list[str] = [""] * self.length
        self._fired_for: str | None = None

    @property
    def value(self) -> str:
        return "".join(self._digits)

    @property
    def is_filled(self) -> bool:
        return all(self._digits)

    def set_digit(self, index: int, digit: str) -> str | None:
        if index < 0 or index >= self.length:
            raise ValidationError("Digit index out of range", index=index)
        value = str(digit or "").strip()
        if len(value) > 1 or (value and not value.isdigit()):
            raise ValidationError("Each position accepts a single digit", index=index)
        self._digits[index] = value
        if not self.is_filled:
            self._fired_for = None
            return None
        code = self.value
        if self._fired_for == code:
            return None
        self._fired_for = code
        return code

    def clear(self) -> None:
        self._digits = [""] * self.length
        self._fired_for = None


@dataclass
class CountdownSnapshot:
    challenge_id: str
    status: ChallengeStatus
    expires_in: int
    cooldown_remaining: int
    can_resend: bool


def snapshot(challenge: OTPChallenge, now: datetime) -> CountdownSnapshot:
    cooldown = challenge.cooldown_remaining(now)
    return CountdownSnapshot(
        challenge_id=challenge.challenge_id,
        status=challenge.status,
        expires_in=challenge.expires_in(now),
        cooldown_remaining=cooldown,
        can_resend=cooldown == 0,
    )


class ChallengeCountdown:
    """Cooperative one-second ticker over a single challenge.

    Expiry and resend cooldown are derived from the challenge timestamps on
    every tick, so they count down independently. `run` blocks the calling
    thread until both reach zero or `cancel` is called.
    """

    def __init__(
        self,
        challenge: OTPChallenge,
        *,
        clock: Callable[[], datetime],
        interval_seconds: float = 1.0,
    ):
        self.challenge = challenge
        self._clock = clock
        self.interval_seconds = float(interval_seconds)
        self._cancelled = threading.Event()

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def cancel(self) -> None:
        self._cancelled.set()

    def tick(self) -> CountdownSnapshot:
        return snapshot(self.challenge, self._clock())

    def run(self, on_tick: Callable[[CountdownSnapshot], None]) -> CountdownSnapshot | None:
        last: CountdownSnapshot | None = None
        while not self._cancelled.is_set():
            last = self.tick()
            on_tick(last)
            if last.expires_in == 0 and last.cooldown_remaining == 0:
                break
            self._cancelled.wait(self.interval_seconds)
        return last
