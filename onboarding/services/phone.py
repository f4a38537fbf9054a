from __future__ import annotations

from onboarding.core.config import settings
from onboarding.core.errors import ValidationError


def _digits(raw: str | None) -> str:
    return "".join(ch for ch in str(raw or "") if ch.isdigit())


def normalize_phone(raw: str | None) -> str:
    """Return the national number, accepting an optional country-code prefix.

    "+91 98765-43210", "919876543210" and "9876543210" all normalize to
    "9876543210" for the default locale.
    """
    digits = _digits(raw)
    expected = int(settings.PHONE_NATIONAL_DIGITS)
    country = str(settings.PHONE_COUNTRY_CODE or "").strip()
    if country and len(digits) == expected + len(country) and digits.startswith(country):
        digits = digits[len(country) :]
    if len(digits) != expected:
        raise ValidationError(
            f"Phone number must contain exactly {expected} digits",
            expected_digits=expected,
        )
    return digits


def to_e164(national: str) -> str:
    return f"+{settings.PHONE_COUNTRY_CODE}{national}"


def mask_phone(national: str | None) -> str:
    value = str(national or "")
    if len(value) <= 4:
        return value
    return "*" * (len(value) - 4) + value[-4:]
