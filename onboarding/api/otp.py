from __future__ import annotations

from fastapi import APIRouter, Depends

from onboarding.core.deps import get_auth_gate
from onboarding.core.errors import ChallengeError, ChallengeErrorReason
from onboarding.schemas.onboarding import (
    ChallengeRead,
    CountdownRead,
    OtpRequestIn,
    OtpSubmitIn,
    VerificationRead,
)
from onboarding.services.auth_gate import AuthGate
from onboarding.services.otp_challenge import OTPChallenge, VerificationResult
from onboarding.services.phone import mask_phone

router = APIRouter()


def _challenge_read(gate: AuthGate, challenge: OTPChallenge) -> ChallengeRead:
    now = gate.clock()
    return ChallengeRead(
        challenge_id=challenge.challenge_id,
        status=challenge.status.value,
        phone_number=mask_phone(challenge.phone_number),
        expires_in=challenge.expires_in(now),
        cooldown_remaining=challenge.cooldown_remaining(now),
        attempts_remaining=challenge.attempts_remaining(),
        demo_fallback=challenge.demo_fallback,
    )


def _verification_read(result: VerificationResult) -> VerificationRead:
    return VerificationRead(
        challenge_id=result.challenge_id,
        status=result.status.value,
        verified=result.verified,
        attempt_count=result.attempt_count,
        attempts_remaining=result.attempts_remaining,
        suppressed=result.suppressed,
        demo_fallback=result.demo_fallback,
    )


@router.post("/request", response_model=ChallengeRead)
def request_challenge(payload: OtpRequestIn, gate: AuthGate = Depends(get_auth_gate)):
    return _challenge_read(gate, gate.request_challenge(payload.phone_number))


@router.post("/submit", response_model=VerificationRead)
def submit_code(payload: OtpSubmitIn, gate: AuthGate = Depends(get_auth_gate)):
    return _verification_read(gate.submit_code(payload.challenge_id, payload.code))


@router.post("/resend", response_model=ChallengeRead)
def resend(gate: AuthGate = Depends(get_auth_gate)):
    return _challenge_read(gate, gate.resend())


@router.get("/status", response_model=CountdownRead)
def status(gate: AuthGate = Depends(get_auth_gate)):
    snap = gate.status()
    if snap is None:
        raise ChallengeError(ChallengeErrorReason.NOT_FOUND, "No OTP challenge has been requested")
    return CountdownRead(
        challenge_id=snap.challenge_id,
        status=snap.status.value,
        expires_in=snap.expires_in,
        cooldown_remaining=snap.cooldown_remaining,
        can_resend=snap.can_resend,
    )


@router.post("/cancel")
def cancel(gate: AuthGate = Depends(get_auth_gate)):
    gate.cancel()
    return {"status": "cancelled"}
