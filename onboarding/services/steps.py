from __future__ import annotations

from enum import Enum

from onboarding.core.errors import ValidationError


class OnboardingStep(str, Enum):
    WELCOME = "WELCOME"
    PHONE_VERIFICATION = "PHONE_VERIFICATION"
    WALLET_BINDING = "WALLET_BINDING"
    KYC = "KYC"
    KEY_PROVISIONING = "KEY_PROVISIONING"
    COMPLETE = "COMPLETE"


STEP_ORDER: tuple[OnboardingStep, ...] = tuple(OnboardingStep)


def step_index(step: OnboardingStep) -> int:
    return STEP_ORDER.index(step)


def successor(step: OnboardingStep) -> OnboardingStep | None:
    idx = step_index(step)
    if idx + 1 >= len(STEP_ORDER):
        return None
    return STEP_ORDER[idx + 1]


def is_at_least(current: OnboardingStep, required: OnboardingStep) -> bool:
    return step_index(current) >= step_index(required)


def parse_step(raw: str | OnboardingStep | None) -> OnboardingStep:
    if isinstance(raw, OnboardingStep):
        return raw
    value = str(raw or "").strip().upper().replace("-", "_").replace(" ", "_")
    for step in STEP_ORDER:
        if value in {step.value, step.name}:
            return step
    raise ValidationError(f"Unknown onboarding step: {raw!r}", step=str(raw or ""))
