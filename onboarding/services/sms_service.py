from __future__ import annotations

import asyncio
import importlib.util
import logging
from typing import Any

from onboarding.core.config import settings

logger = logging.getLogger(__name__)

MOCK_PROVIDERS = {"", "dummy", "mock", "console"}
SMSAERO_PROVIDERS = {"smsaero", "sms_aero"}


class SmsDeliveryError(Exception):
    pass


def _module_available(module_name: str) -> bool:
    return importlib.util.find_spec(module_name) is not None


def _provider_name() -> str:
    return str(settings.SMS_PROVIDER or "dummy").strip().lower()


def _normalize_phone_to_int(phone: str) -> int:
    digits = "".join(ch for ch in str(phone or "") if ch.isdigit())
    if not digits:
        raise SmsDeliveryError("Phone number has no digits")
    return int(digits)


def _build_otp_message(*, code: str) -> str:
    template = str(settings.OTP_SMS_TEMPLATE or "").strip() or "Your verification code: {code}"
    try:
        return template.format(code=code)
    except (KeyError, IndexError, ValueError):
        return f"Your verification code: {code}"


def _mock_sms_send(*, phone: str, code: str) -> dict[str, Any]:
    logger.info("otp_sms_mock phone=%s code=%s", phone, code)
    return {
        "provider": "mock_sms",
        "status": "accepted",
        "sent": False,
        "mocked": True,
    }


async def _send_sms_aero_async(*, phone: int, message: str) -> dict[str, Any]:
    try:
        import smsaero
    except ImportError as exc:  # pragma: no cover - runtime dependency branch
        raise SmsDeliveryError("smsaero-api-async is not installed") from exc

    email = str(settings.SMSAERO_EMAIL or "").strip()
    api_key = str(settings.SMSAERO_API_KEY or "").strip()
    if not email or not api_key:
        raise SmsDeliveryError("SMSAERO_EMAIL and/or SMSAERO_API_KEY are not set")

    api = smsaero.SmsAero(email, api_key)
    try:
        result = await api.send_sms(phone, message)
    except Exception as exc:  # pragma: no cover - network/runtime branch
        raise SmsDeliveryError(f"SMS Aero send failed: {exc}") from exc
    finally:
        await api.close_session()
    return {
        "provider": "smsaero",
        "status": "accepted",
        "sent": True,
        "response": result,
    }


def _send_sms_aero(*, phone: str, message: str) -> dict[str, Any]:
    phone_int = _normalize_phone_to_int(phone)
    return asyncio.run(_send_sms_aero_async(phone=phone_int, message=message))


def sms_provider_health() -> dict[str, Any]:
    provider = _provider_name()
    if provider in MOCK_PROVIDERS:
        return {
            "provider": "dummy",
            "status": "ok",
            "mode": "mock",
            "can_send": True,
            "checks": {"mock_mode": True},
            "issues": [],
        }

    if provider in SMSAERO_PROVIDERS:
        checks = {
            "smsaero_installed": bool(_module_available("smsaero")),
            "email_configured": bool(str(settings.SMSAERO_EMAIL or "").strip()),
            "api_key_configured": bool(str(settings.SMSAERO_API_KEY or "").strip()),
        }
        issues: list[str] = []
        if not checks["smsaero_installed"]:
            issues.append("smsaero-api-async is not installed")
        if not checks["email_configured"]:
            issues.append("SMSAERO_EMAIL is not set")
        if not checks["api_key_configured"]:
            issues.append("SMSAERO_API_KEY is not set")
        can_send = all(checks.values())
        return {
            "provider": "smsaero",
            "status": "ok" if can_send else "degraded",
            "mode": "real",
            "can_send": can_send,
            "checks": checks,
            "issues": issues,
        }

    return {
        "provider": provider,
        "status": "error",
        "mode": "unknown",
        "can_send": False,
        "checks": {"provider_supported": False},
        "issues": [f"Unknown SMS_PROVIDER: {provider}"],
    }


def send_otp_message(*, phone: str, code: str) -> dict[str, Any]:
    provider = _provider_name()
    if provider in MOCK_PROVIDERS:
        if settings.is_production():
            raise SmsDeliveryError("Mock SMS provider is not allowed in production")
        return _mock_sms_send(phone=phone, code=code)
    if provider in SMSAERO_PROVIDERS:
        return _send_sms_aero(phone=phone, message=_build_otp_message(code=code))
    raise SmsDeliveryError(f"Unknown SMS_PROVIDER: {provider}")
