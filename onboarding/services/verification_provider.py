from __future__ import annotations

import logging
import secrets
import uuid
from dataclasses import dataclass
from typing import Callable, Protocol

import redis

from onboarding.core.config import settings
from onboarding.core.errors import ProviderError
from onboarding.core.security import hash_code, verify_code
from onboarding.services.code_vault import CodeVault, get_code_vault
from onboarding.services.sms_service import SmsDeliveryError, send_otp_message

logger = logging.getLogger(__name__)

DEMO_CHALLENGE_PREFIX = "demo-"


@dataclass
class ProviderDispatch:
    accepted: bool
    provider_challenge_id: str


class VerificationProvider(Protocol):
    def send_otp(self, phone_e164: str) -> ProviderDispatch:
        ...

    def verify_otp(self, provider_challenge_id: str, code: str) -> bool:
        ...


def generate_code(length: int) -> str:
    return f"{secrets.randbelow(10**length):0{length}d}"


class SmsOtpProvider:
    """Generates the code, keeps only its hash and delivers it by SMS."""

    def __init__(
        self,
        vault: CodeVault | None = None,
        *,
        code_length: int | None = None,
        ttl_seconds: int | None = None,
        code_generator: Callable[[int], str] = generate_code,
    ):
        self.vault = vault or get_code_vault()
        self.code_length = int(code_length or settings.OTP_CODE_LENGTH)
        self.ttl_seconds = int(ttl_seconds or settings.OTP_TTL_SECONDS)
        self._generate = code_generator

    def send_otp(self, phone_e164: str) -> ProviderDispatch:
        provider_challenge_id = uuid.uuid4().hex
        code = self._generate(self.code_length)
        try:
            self.vault.put(provider_challenge_id, hash_code(code), ttl_seconds=self.ttl_seconds)
        except redis.RedisError as exc:
            raise ProviderError("Verification code storage is unavailable") from exc
        try:
            delivery = send_otp_message(phone=phone_e164, code=code)
        except SmsDeliveryError as exc:
            self.vault.discard(provider_challenge_id)
            logger.warning("otp_dispatch_failed error=%s", exc)
            raise ProviderError(f"Failed to send verification code: {exc}") from exc
        accepted = str(delivery.get("status") or "").lower() == "accepted"
        if not accepted:
            self.vault.discard(provider_challenge_id)
            raise ProviderError("Verification provider rejected the request", delivery=str(delivery.get("status")))
        return ProviderDispatch(accepted=True, provider_challenge_id=provider_challenge_id)

    def verify_otp(self, provider_challenge_id: str, code: str) -> bool:
        try:
            code_hash = self.vault.get(provider_challenge_id)
        except redis.RedisError as exc:
            raise ProviderError("Verification code storage is unavailable") from exc
        if not code_hash:
            return False
        if not verify_code(code, code_hash):
            return False
        self.vault.discard(provider_challenge_id)
        return True


class DemoAcceptanceProvider:
    """Accepts any well-formed code. Refuses to exist in production."""

    def __init__(self):
        if settings.is_production():
            raise RuntimeError("Demo OTP acceptance is not available in production")

    def send_otp(self, phone_e164: str) -> ProviderDispatch:
        logger.warning("otp_demo_challenge_issued phone_suffix=%s", str(phone_e164)[-4:])
        return ProviderDispatch(accepted=True, provider_challenge_id=DEMO_CHALLENGE_PREFIX + uuid.uuid4().hex)

    def verify_otp(self, provider_challenge_id: str, code: str) -> bool:
        return str(provider_challenge_id or "").startswith(DEMO_CHALLENGE_PREFIX)


def build_demo_fallback() -> DemoAcceptanceProvider | None:
    if not settings.demo_fallback_allowed():
        if settings.OTP_DEMO_FALLBACK_ENABLED:
            logger.warning("OTP_DEMO_FALLBACK_ENABLED ignored in APP_ENV=%s", settings.APP_ENV)
        return None
    return DemoAcceptanceProvider()
