from typing import Callable

from fastapi import Depends, Request
from sqlalchemy.orm import Session

from onboarding.core.config import settings
from onboarding.core.errors import ValidationError
from onboarding.db.session import SessionLocal
from onboarding.services.auth_gate import AuthGate
from onboarding.services.challenge_store import SqlChallengeStore
from onboarding.services.key_provisioning import KeyProvisioner, LocalKeyProvisioner
from onboarding.services.rate_limit import get_rate_limiter
from onboarding.services.session_store import SqlSessionStore
from onboarding.services.step_sequencer import StepSequencer
from onboarding.services.verification_provider import SmsOtpProvider, VerificationProvider, build_demo_fallback


def get_session_factory() -> Callable[[], Session]:
    return SessionLocal


def get_device_key(request: Request) -> str:
    raw = str(request.headers.get(settings.DEVICE_ID_HEADER) or "").strip()
    if not raw:
        raise ValidationError(f"{settings.DEVICE_ID_HEADER} header is required")
    if len(raw) > 128:
        raise ValidationError(f"{settings.DEVICE_ID_HEADER} header is too long")
    return raw


def get_verification_provider() -> VerificationProvider:
    return SmsOtpProvider()


def get_key_provisioner(session_factory: Callable[[], Session] = Depends(get_session_factory)) -> KeyProvisioner:
    return LocalKeyProvisioner(session_factory)


def get_sequencer(
    device_key: str = Depends(get_device_key),
    session_factory: Callable[[], Session] = Depends(get_session_factory),
) -> StepSequencer:
    return StepSequencer(SqlSessionStore(session_factory), device_key)


def get_auth_gate(
    device_key: str = Depends(get_device_key),
    session_factory: Callable[[], Session] = Depends(get_session_factory),
    provider: VerificationProvider = Depends(get_verification_provider),
) -> AuthGate:
    return AuthGate(
        device_key,
        store=SqlChallengeStore(session_factory),
        provider=provider,
        demo_fallback=build_demo_fallback(),
        limiter=get_rate_limiter(),
    )
