from __future__ import annotations

import logging
import math
import threading
import weakref
from datetime import datetime, timezone
from typing import Any, Callable

from onboarding.core.errors import IncompleteData, TransitionError, ValidationError
from onboarding.services.identity_record import REQUIRED_FIELDS, IdentityRecord
from onboarding.services.key_provisioning import KeyProvisioner
from onboarding.services.otp_challenge import VerificationResult
from onboarding.services.session_store import OnboardingSession, SessionStore, StepTransition
from onboarding.services.steps import OnboardingStep, is_at_least, parse_step, successor

logger = logging.getLogger(__name__)


class _SessionLock:
    """Re-entrant lock shared by every live sequencer of one session key."""

    __slots__ = ("_lock", "__weakref__")

    def __init__(self):
        self._lock = threading.RLock()

    def __enter__(self) -> "_SessionLock":
        self._lock.acquire()
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self._lock.release()


# Entries vanish once no sequencer holds the lock, so client-chosen keys cannot pile up.
_registry_lock = threading.Lock()
_session_locks: weakref.WeakValueDictionary[str, _SessionLock] = weakref.WeakValueDictionary()


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _session_lock(session_key: str) -> _SessionLock:
    with _registry_lock:
        lock = _session_locks.get(session_key)
        if lock is None:
            lock = _SessionLock()
            _session_locks[session_key] = lock
        return lock


def _copy_record(record: IdentityRecord | None) -> IdentityRecord:
    if record is None:
        return IdentityRecord()
    return IdentityRecord.from_document(record.to_document()) or IdentityRecord()


class StepSequencer:
    """Drives one device's onboarding session through the ordered steps.

    Every public mutation re-reads the committed session, applies the
    change to a copy and returns only after the store accepted it. When
    the store raises, the caller keeps the previous committed state.
    """

    def __init__(
        self,
        store: SessionStore,
        session_key: str,
        *,
        clock: Callable[[], datetime] = _utcnow,
    ):
        key = str(session_key or "").strip()
        if not key:
            raise ValidationError("Session key is required")
        self.store = store
        self.session_key = key
        self.clock = clock
        self._lock = _session_lock(key)

    def load(self) -> OnboardingSession:
        with self._lock:
            session = self.store.load(self.session_key)
            if session is not None:
                return session
            now = self.clock()
            fresh = OnboardingSession(session_key=self.session_key, created_at=now, updated_at=now)
            logger.info("onboarding_session_created session=%s", self.session_key)
            return self.store.save(
                fresh,
                transition=StepTransition(from_step=None, to_step=OnboardingStep.WELCOME, reason="created"),
            )

    def set_step(self, step: OnboardingStep | str) -> OnboardingSession:
        target = parse_step(step)
        with self._lock:
            current = self._current()
            if target == current.current_step or current.is_complete:
                return current
            if target == OnboardingStep.WELCOME:
                raise TransitionError("Returning to WELCOME requires a reset", current_step=current.current_step.value)
            if successor(current.current_step) != target:
                raise TransitionError(
                    f"Cannot move from {current.current_step.value} to {target.value}",
                    current_step=current.current_step.value,
                    target_step=target.value,
                )
            working = current.copy()
            transition = self._advance(working, target, verification=None, reason="set_step")
            return self._commit(working, transition=transition)

    def next_step(self, verification: VerificationResult | None = None) -> OnboardingSession:
        with self._lock:
            current = self._current()
            target = successor(current.current_step)
            if target is None:
                return current
            working = current.copy()
            transition = self._advance(working, target, verification=verification, reason="next_step")
            return self._commit(working, transition=transition)

    def set_wallet_connection(self, address: str, balance: float | int | str, wallet_type: str) -> OnboardingSession:
        address_norm = str(address or "").strip()
        if not address_norm:
            raise ValidationError("Wallet address is required")
        try:
            balance_value = float(balance)
        except (TypeError, ValueError) as exc:
            raise ValidationError("Wallet balance must be a number") from exc
        if math.isnan(balance_value) or math.isinf(balance_value) or balance_value < 0:
            raise ValidationError("Wallet balance must be a non-negative number")
        type_norm = str(wallet_type or "").strip()

        with self._lock:
            current = self._current()
            if current.is_complete:
                return current
            self._require_at_least(current, OnboardingStep.WALLET_BINDING, "Wallet can be bound")
            if (
                current.wallet_address == address_norm
                and current.wallet_balance == balance_value
                and current.wallet_type == type_norm
            ):
                return current
            working = current.copy()
            working.wallet_address = address_norm
            working.wallet_balance = balance_value
            working.wallet_type = type_norm
            return self._commit(working)

    def set_kyc_data(self, record: IdentityRecord) -> OnboardingSession:
        stored = _copy_record(record).masked()
        stored.validate_contact()
        with self._lock:
            current = self._current()
            if current.is_complete:
                return current
            self._require_exactly(current, OnboardingStep.KYC, "KYC data can be set")
            working = current.copy()
            working.kyc_record = stored
            working.is_kyc_completed = False
            return self._commit(working)

    def capture_document(
        self,
        kind: str,
        reference: str,
        extracted_data: dict[str, Any] | None = None,
    ) -> OnboardingSession:
        with self._lock:
            current = self._current()
            if current.is_complete:
                return current
            self._require_exactly(current, OnboardingStep.KYC, "Documents can be captured")
            record = _copy_record(current.kyc_record)
            record.capture_document(kind, reference, extracted_data, captured_at=self.clock())
            working = current.copy()
            working.kyc_record = record.masked()
            working.is_kyc_completed = False
            return self._commit(working)

    def complete_kyc(self) -> OnboardingSession:
        with self._lock:
            current = self._current()
            if current.is_complete:
                return current
            self._require_exactly(current, OnboardingStep.KYC, "KYC can be completed")
            if current.is_kyc_completed:
                return current
            if current.kyc_record is None:
                raise IncompleteData("No KYC record has been captured", missing=list(REQUIRED_FIELDS))
            record = _copy_record(current.kyc_record)
            record.require_complete()
            record.verified = True
            record.verification_date = self.clock()
            working = current.copy()
            working.kyc_record = record
            working.is_kyc_completed = True
            saved = self._commit(working)
            logger.info("onboarding_kyc_completed session=%s", self.session_key)
            return saved

    def provision_keys(self, provisioner: KeyProvisioner) -> OnboardingSession:
        with self._lock:
            current = self._current()
            if current.is_complete:
                return current
            self._require_exactly(current, OnboardingStep.KEY_PROVISIONING, "Keys can be provisioned")
            if not current.is_kyc_completed:
                raise TransitionError("KYC must be completed before keys are provisioned")
            if current.keys_provisioned:
                return current
            receipt = provisioner.provision(self.session_key, current.kyc_record)
            working = current.copy()
            working.key_id = receipt.key_id
            working.keys_provisioned_at = self.clock()
            return self._commit(working)

    def reset_onboarding(self) -> OnboardingSession:
        with self._lock:
            current = self.store.load(self.session_key)
            now = self.clock()
            fresh = OnboardingSession(session_key=self.session_key, created_at=now, updated_at=now)
            from_step = None
            if current is not None:
                fresh.revision = current.revision
                fresh.updated_at = current.updated_at
                from_step = current.current_step
            saved = self._commit(
                fresh,
                transition=StepTransition(from_step=from_step, to_step=OnboardingStep.WELCOME, reason="reset"),
            )
            logger.info(
                "onboarding_reset session=%s from_step=%s",
                self.session_key,
                from_step.value if from_step is not None else None,
            )
            return saved

    def history(self) -> list[StepTransition]:
        return self.store.history(self.session_key)

    def _current(self) -> OnboardingSession:
        session = self.store.load(self.session_key)
        if session is not None:
            return session
        now = self.clock()
        return OnboardingSession(session_key=self.session_key, created_at=now, updated_at=now)

    def _commit(self, session: OnboardingSession, *, transition: StepTransition | None = None) -> OnboardingSession:
        session.touch(self.clock())
        saved = self.store.save(session, transition=transition)
        if transition is not None and transition.from_step is not None and transition.reason != "reset":
            logger.info(
                "onboarding_step_advanced session=%s from_step=%s to_step=%s reason=%s",
                self.session_key,
                transition.from_step.value,
                transition.to_step.value,
                transition.reason,
            )
        return saved

    def _advance(
        self,
        session: OnboardingSession,
        target: OnboardingStep,
        *,
        verification: VerificationResult | None,
        reason: str,
    ) -> StepTransition:
        origin = session.current_step
        if origin == OnboardingStep.PHONE_VERIFICATION:
            if verification is not None:
                if not verification.verified:
                    raise TransitionError(
                        "Phone verification has not succeeded",
                        challenge_status=verification.status.value,
                    )
                session.phone_number = verification.phone_number
                session.phone_verified_at = self.clock()
            elif not session.phone_verified:
                raise TransitionError("Phone number must be verified first")
        elif origin == OnboardingStep.WALLET_BINDING:
            if not session.wallet_address:
                raise TransitionError("A wallet must be bound first")
        elif origin == OnboardingStep.KYC:
            if not session.is_kyc_completed:
                raise TransitionError("KYC must be completed first")
        elif origin == OnboardingStep.KEY_PROVISIONING:
            if not session.keys_provisioned:
                raise TransitionError("Keys must be provisioned first")

        session.current_step = target
        return StepTransition(from_step=origin, to_step=target, reason=reason)

    @staticmethod
    def _require_at_least(session: OnboardingSession, step: OnboardingStep, action: str) -> None:
        if not is_at_least(session.current_step, step):
            raise TransitionError(
                f"{action} only from {step.value} onwards",
                current_step=session.current_step.value,
            )

    @staticmethod
    def _require_exactly(session: OnboardingSession, step: OnboardingStep, action: str) -> None:
        if session.current_step != step:
            raise TransitionError(
                f"{action} only at {step.value}",
                current_step=session.current_step.value,
            )
