from __future__ import annotations

import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import Callable

from onboarding.core.config import settings
from onboarding.core.errors import ChallengeError, ChallengeErrorReason, ProviderError
from onboarding.services.challenge_store import SqlChallengeStore
from onboarding.services.otp_challenge import (
    ChallengeCountdown,
    ChallengeStatus,
    CodeEntry,
    CountdownSnapshot,
    OTPChallenge,
    VerificationResult,
    normalize_code,
    snapshot,
)
from onboarding.services.phone import mask_phone, normalize_phone, to_e164
from onboarding.services.rate_limit import RateLimiter, enforce_challenge_request_limit
from onboarding.services.verification_provider import ProviderDispatch, VerificationProvider

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AuthGate:
    """Phone verification sub-flow for one onboarding session.

    Request -> submit -> result. The provider is the only source of truth
    for VERIFIED unless the challenge was issued by the demo fallback,
    which is only wired in outside production.
    """

    def __init__(
        self,
        session_key: str,
        *,
        store: SqlChallengeStore,
        provider: VerificationProvider,
        demo_fallback: VerificationProvider | None = None,
        limiter: RateLimiter | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.session_key = session_key
        self.store = store
        self.provider = provider
        self.demo_fallback = demo_fallback
        self.limiter = limiter
        self.clock = clock
        self.ttl_seconds = int(settings.OTP_TTL_SECONDS)
        self.cooldown_seconds = int(settings.OTP_RESEND_COOLDOWN_SECONDS)
        self.max_attempts = max(int(settings.OTP_MAX_ATTEMPTS), 1)
        self.code_length = int(settings.OTP_CODE_LENGTH)
        self.stale_verifying_seconds = int(settings.OTP_VERIFY_STALE_SECONDS)
        self.entry = CodeEntry(self.code_length)
        self._countdown: ChallengeCountdown | None = None

    def request_challenge(self, phone_number: str) -> OTPChallenge:
        phone = normalize_phone(phone_number)
        enforce_challenge_request_limit(session_key=self.session_key, phone_number=phone, limiter=self.limiter)

        dispatch, demo = self._dispatch(phone)
        now = self.clock()
        challenge = OTPChallenge(
            challenge_id=uuid.uuid4().hex,
            session_key=self.session_key,
            phone_number=phone,
            issued_at=now,
            expires_at=now + timedelta(seconds=self.ttl_seconds),
            cooldown_until=now + timedelta(seconds=self.cooldown_seconds),
            max_attempts=self.max_attempts,
            provider_challenge_id=dispatch.provider_challenge_id,
            demo_fallback=demo,
        )
        superseded = self.store.issue(challenge, now=now)
        self._stop_countdown()
        self.entry.clear()
        logger.info(
            "otp_challenge_issued session=%s challenge=%s phone=%s superseded=%s demo=%s",
            self.session_key,
            challenge.challenge_id,
            mask_phone(phone),
            superseded,
            demo,
        )
        return challenge

    def resend(self) -> OTPChallenge:
        current = self.store.current(self.session_key)
        if current is None:
            raise ChallengeError(ChallengeErrorReason.NOT_FOUND, "No OTP challenge to resend")
        remaining = current.cooldown_remaining(self.clock())
        if remaining > 0:
            raise ChallengeError(
                ChallengeErrorReason.COOLDOWN_ACTIVE,
                f"Resend available in {remaining} s",
                retry_after_seconds=remaining,
            )
        return self.request_challenge(current.phone_number)

    def submit_code(self, challenge_id: str, code: str) -> VerificationResult:
        now = self.clock()
        challenge = self.store.get(self.session_key, str(challenge_id or "").strip())
        if challenge is None:
            raise ChallengeError(ChallengeErrorReason.NOT_FOUND, "OTP challenge not found")
        if challenge.superseded:
            raise ChallengeError(ChallengeErrorReason.EXPIRED, "OTP challenge was superseded")
        if challenge.status == ChallengeStatus.VERIFIED:
            return VerificationResult.from_challenge(challenge)
        if challenge.status == ChallengeStatus.FAILED:
            raise ChallengeError(ChallengeErrorReason.ATTEMPTS_EXCEEDED, "Too many wrong codes; request a new one")
        if challenge.status == ChallengeStatus.EXPIRED:
            raise ChallengeError(ChallengeErrorReason.EXPIRED, "OTP challenge expired")
        if challenge.status == ChallengeStatus.VERIFYING:
            if not self._is_stale_verification(challenge, now):
                return VerificationResult.from_challenge(challenge, suppressed=True)
            recovered = self._recover_stale(challenge, now)
            if recovered is None:
                return self._lost_race(challenge.challenge_id)
            challenge = recovered
        if challenge.is_expired(now):
            self._expire(challenge, now)
            raise ChallengeError(ChallengeErrorReason.EXPIRED, "OTP challenge expired")

        normalized = normalize_code(code, length=self.code_length)

        working = challenge.copy()
        working.attempt_count += 1
        attempt = working.attempt_count
        working.transition(ChallengeStatus.VERIFYING, now=now)
        if not self.store.save(
            working,
            expected_status=ChallengeStatus.PENDING,
            expected_attempts=challenge.attempt_count,
        ):
            return self._lost_race(challenge.challenge_id)

        try:
            verified = self._verify(working, normalized)
        except ProviderError:
            working.attempt_count -= 1
            working.transition(ChallengeStatus.PENDING, now=self.clock())
            if not self.store.save(working, expected_status=ChallengeStatus.VERIFYING, expected_attempts=attempt):
                self._discarded(working, "provider_error")
                # Raises EXPIRED when the challenge was superseded meanwhile.
                self._lost_race(working.challenge_id)
            raise

        settled_at = self.clock()
        if verified:
            working.transition(ChallengeStatus.VERIFIED, now=settled_at)
        elif working.attempt_count >= working.max_attempts:
            working.transition(ChallengeStatus.FAILED, now=settled_at)
        else:
            working.transition(ChallengeStatus.PENDING, now=settled_at)

        if not self.store.save(working, expected_status=ChallengeStatus.VERIFYING, expected_attempts=attempt):
            self._discarded(working, "attempt_replaced")
            return self._lost_race(working.challenge_id)

        logger.info(
            "otp_challenge_settled session=%s challenge=%s status=%s attempts=%s/%s",
            self.session_key,
            working.challenge_id,
            working.status.value,
            working.attempt_count,
            working.max_attempts,
        )
        if working.status != ChallengeStatus.VERIFIED:
            self.entry.clear()
        return VerificationResult.from_challenge(working)

    def enter_digit(self, challenge_id: str, index: int, digit: str) -> VerificationResult | None:
        """Feed one digit; submits automatically once per complete fill."""
        code = self.entry.set_digit(index, digit)
        if code is None:
            return None
        return self.submit_code(challenge_id, code)

    def current(self) -> OTPChallenge | None:
        return self.store.current(self.session_key)

    def current_result(self) -> VerificationResult | None:
        challenge = self.current()
        if challenge is None:
            return None
        return VerificationResult.from_challenge(challenge)

    def status(self) -> CountdownSnapshot | None:
        challenge = self.current()
        if challenge is None:
            return None
        return snapshot(challenge, self.clock())

    def countdown(self) -> ChallengeCountdown | None:
        challenge = self.current()
        if challenge is None:
            return None
        self._stop_countdown()
        self._countdown = ChallengeCountdown(challenge, clock=self.clock)
        return self._countdown

    def cancel(self) -> None:
        """Leave the sub-flow. No challenge of this session stays addressable."""
        self._stop_countdown()
        self.entry.clear()
        retired = self.store.retire(self.session_key, now=self.clock())
        if retired:
            logger.info("otp_challenge_cancelled session=%s retired=%s", self.session_key, retired)

    def _dispatch(self, phone: str) -> tuple[ProviderDispatch, bool]:
        try:
            dispatch = self.provider.send_otp(to_e164(phone))
            if not dispatch.accepted:
                raise ProviderError("Verification provider did not accept the request")
            return dispatch, False
        except ProviderError as exc:
            if self.demo_fallback is None:
                raise
            logger.warning(
                "otp_provider_unavailable_demo_fallback session=%s error=%s",
                self.session_key,
                exc.message,
            )
            return self.demo_fallback.send_otp(to_e164(phone)), True

    def _verify(self, challenge: OTPChallenge, code: str) -> bool:
        if challenge.demo_fallback:
            if self.demo_fallback is None:
                raise ProviderError("Demo challenge cannot be verified in this deployment")
            return self.demo_fallback.verify_otp(challenge.provider_challenge_id or "", code)
        return self.provider.verify_otp(challenge.provider_challenge_id or "", code)

    def _is_stale_verification(self, challenge: OTPChallenge, now: datetime) -> bool:
        started = challenge.verifying_started_at
        if started is None:
            return True
        return (now - started).total_seconds() >= self.stale_verifying_seconds

    def _recover_stale(self, challenge: OTPChallenge, now: datetime) -> OTPChallenge | None:
        """Release an abandoned VERIFYING attempt; None when another caller got there first."""
        recovered = challenge.copy()
        recovered.transition(ChallengeStatus.PENDING, now=now)
        if not self.store.save(
            recovered,
            expected_status=ChallengeStatus.VERIFYING,
            expected_attempts=challenge.attempt_count,
        ):
            return None
        logger.warning(
            "otp_stale_verification_released challenge=%s attempts=%s",
            challenge.challenge_id,
            challenge.attempt_count,
        )
        return recovered

    def _discarded(self, challenge: OTPChallenge, reason: str) -> None:
        logger.info(
            "otp_verification_discarded session=%s challenge=%s attempt=%s reason=%s",
            self.session_key,
            challenge.challenge_id,
            challenge.attempt_count,
            reason,
        )

    def _expire(self, challenge: OTPChallenge, now: datetime) -> None:
        expected = challenge.status
        expired = challenge.copy()
        expired.expire(now=now)
        self.store.save(expired, expected_status=expected)

    def _lost_race(self, challenge_id: str) -> VerificationResult:
        latest = self.store.get(self.session_key, challenge_id)
        if latest is None or latest.superseded or latest.status == ChallengeStatus.EXPIRED:
            raise ChallengeError(ChallengeErrorReason.EXPIRED, "OTP challenge was superseded")
        return VerificationResult.from_challenge(latest, suppressed=True)

    def _stop_countdown(self) -> None:
        if self._countdown is not None:
            self._countdown.cancel()
            self._countdown = None
