from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Protocol

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from onboarding.core.errors import PersistenceError
from onboarding.models.onboarding_session import OnboardingSessionRow
from onboarding.models.step_history import StepHistory
from onboarding.services.identity_record import IdentityRecord
from onboarding.services.steps import OnboardingStep, parse_step

logger = logging.getLogger(__name__)

SCHEMA_VERSION = 1

# Step names written by the first mobile release, before the phone gate existed.
_LEGACY_STEP_ALIASES = {
    "circom": OnboardingStep.WELCOME,
    "welcome": OnboardingStep.WELCOME,
    "wallet": OnboardingStep.WALLET_BINDING,
    "kyc": OnboardingStep.KYC,
    "keys": OnboardingStep.KEY_PROVISIONING,
    "complete": OnboardingStep.COMPLETE,
}


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(dt: datetime | None) -> datetime | None:
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def _iso(dt: datetime | None) -> str | None:
    return dt.isoformat() if dt is not None else None


def _parse_dt(raw: Any) -> datetime | None:
    if not raw:
        return None
    return _as_utc(datetime.fromisoformat(str(raw)))


@dataclass
class OnboardingSession:
    session_key: str
    current_step: OnboardingStep = OnboardingStep.WELCOME
    phone_number: str = ""
    phone_verified_at: datetime | None = None
    wallet_address: str = ""
    wallet_balance: float = 0.0
    wallet_type: str = ""
    kyc_record: IdentityRecord | None = None
    is_kyc_completed: bool = False
    key_id: str = ""
    keys_provisioned_at: datetime | None = None
    created_at: datetime = field(default_factory=_now_utc)
    updated_at: datetime = field(default_factory=_now_utc)
    revision: int = 0

    @property
    def is_complete(self) -> bool:
        return self.current_step == OnboardingStep.COMPLETE

    @property
    def phone_verified(self) -> bool:
        return self.phone_verified_at is not None and bool(self.phone_number)

    @property
    def keys_provisioned(self) -> bool:
        return self.keys_provisioned_at is not None and bool(self.key_id)

    def copy(self) -> "OnboardingSession":
        return replace(self)

    def touch(self, now: datetime | None = None) -> None:
        """Bump `updated_at`, keeping it strictly increasing."""
        candidate = _as_utc(now) or _now_utc()
        floor = (_as_utc(self.updated_at) or candidate) + timedelta(microseconds=1)
        self.updated_at = candidate if candidate >= floor else floor

    def to_document(self) -> dict[str, Any]:
        return {
            "version": SCHEMA_VERSION,
            "sessionKey": self.session_key,
            "currentStep": self.current_step.value,
            "phoneNumber": self.phone_number,
            "phoneVerifiedAt": _iso(self.phone_verified_at),
            "walletAddress": self.wallet_address,
            "walletBalance": float(self.wallet_balance),
            "walletType": self.wallet_type,
            "kycRecord": self.kyc_record.to_document() if self.kyc_record is not None else None,
            "isKYCCompleted": bool(self.is_kyc_completed),
            "keyId": self.key_id,
            "keysProvisionedAt": _iso(self.keys_provisioned_at),
            "createdAt": _iso(self.created_at),
            "updatedAt": _iso(self.updated_at),
        }

    @classmethod
    def from_document(cls, data: dict[str, Any], *, revision: int = 0) -> "OnboardingSession":
        data = migrate_document(data)
        return cls(
            session_key=str(data.get("sessionKey") or ""),
            current_step=parse_step(data.get("currentStep")),
            phone_number=str(data.get("phoneNumber") or ""),
            phone_verified_at=_parse_dt(data.get("phoneVerifiedAt")),
            wallet_address=str(data.get("walletAddress") or ""),
            wallet_balance=float(data.get("walletBalance") or 0.0),
            wallet_type=str(data.get("walletType") or ""),
            kyc_record=IdentityRecord.from_document(data.get("kycRecord")),
            is_kyc_completed=bool(data.get("isKYCCompleted")),
            key_id=str(data.get("keyId") or ""),
            keys_provisioned_at=_parse_dt(data.get("keysProvisionedAt")),
            created_at=_parse_dt(data.get("createdAt")) or _now_utc(),
            updated_at=_parse_dt(data.get("updatedAt")) or _now_utc(),
            revision=int(revision),
        )


def migrate_document(data: dict[str, Any]) -> dict[str, Any]:
    """Upgrade stored documents to the current schema version.

    Version 0 documents are the flat key/value records of the first mobile
    release: lowercase step names, `kycData` instead of `kycRecord` and
    `aadhaarNumber` instead of `id_number`.
    """
    version = int(data.get("version") or 0)
    if version >= SCHEMA_VERSION:
        return data
    upgraded = dict(data)
    raw_step = str(upgraded.get("currentStep") or upgraded.get("onboardingStep") or "").strip()
    alias = _LEGACY_STEP_ALIASES.get(raw_step.lower())
    upgraded["currentStep"] = alias.value if alias is not None else (raw_step or OnboardingStep.WELCOME.value)
    if "kycRecord" not in upgraded and isinstance(upgraded.get("kycData"), dict):
        legacy = dict(upgraded["kycData"])
        extracted = dict(legacy.get("extractedData") or {})
        if "aadhaarNumber" in extracted and "id_number" not in extracted:
            extracted["id_number"] = extracted.pop("aadhaarNumber")
        if "name" in extracted and "full_name" not in extracted:
            extracted["full_name"] = extracted.pop("name")
        legacy["extractedData"] = extracted
        upgraded["kycRecord"] = legacy
    upgraded.pop("kycData", None)
    upgraded.pop("onboardingStep", None)
    upgraded["version"] = SCHEMA_VERSION
    logger.info(
        "onboarding_document_migrated from_version=%s to_version=%s step=%s",
        version,
        SCHEMA_VERSION,
        upgraded["currentStep"],
    )
    return upgraded


@dataclass
class StepTransition:
    from_step: OnboardingStep | None
    to_step: OnboardingStep
    reason: str | None = None
    created_at: datetime | None = None


class SessionStore(Protocol):
    def load(self, session_key: str) -> OnboardingSession | None:
        ...

    def save(self, session: OnboardingSession, *, transition: StepTransition | None = None) -> OnboardingSession:
        ...

    def delete(self, session_key: str) -> None:
        ...

    def history(self, session_key: str) -> list[StepTransition]:
        ...


class SqlSessionStore:
    """Persists sessions as encrypted, versioned JSON documents.

    `save` is optimistic: the row revision must match the revision the
    session was loaded with, so two writers never interleave.
    """

    def __init__(self, session_factory: Callable[[], Session]):
        self._session_factory = session_factory

    def load(self, session_key: str) -> OnboardingSession | None:
        try:
            with self._session_factory() as db:
                row = db.query(OnboardingSessionRow).filter(OnboardingSessionRow.session_key == session_key).first()
                if row is None:
                    return None
                document = dict(row.document or {})
                revision = int(row.revision or 0)
        except (SQLAlchemyError, ValueError) as exc:
            logger.error("onboarding_session_load_failed session=%s error=%s", session_key, exc)
            raise PersistenceError("Failed to load onboarding session") from exc
        document.setdefault("sessionKey", session_key)
        return OnboardingSession.from_document(document, revision=revision)

    def save(self, session: OnboardingSession, *, transition: StepTransition | None = None) -> OnboardingSession:
        document = session.to_document()
        next_revision = int(session.revision) + 1
        try:
            with self._session_factory() as db:
                row = (
                    db.query(OnboardingSessionRow)
                    .filter(OnboardingSessionRow.session_key == session.session_key)
                    .with_for_update()
                    .first()
                )
                if row is None:
                    if session.revision != 0:
                        raise PersistenceError("Onboarding session disappeared during update")
                    row = OnboardingSessionRow(session_key=session.session_key)
                    db.add(row)
                elif int(row.revision or 0) != int(session.revision):
                    raise PersistenceError(
                        "Onboarding session was modified concurrently",
                        expected_revision=int(session.revision),
                        actual_revision=int(row.revision or 0),
                    )
                row.current_step = session.current_step.value
                row.schema_version = SCHEMA_VERSION
                row.revision = next_revision
                row.document = document
                row.committed_at = session.updated_at
                if transition is not None:
                    db.add(
                        StepHistory(
                            session_key=session.session_key,
                            from_step=transition.from_step.value if transition.from_step is not None else None,
                            to_step=transition.to_step.value,
                            reason=(str(transition.reason)[:200] if transition.reason else None),
                            created_at=transition.created_at or session.updated_at,
                        )
                    )
                db.commit()
        except SQLAlchemyError as exc:
            logger.error("onboarding_session_save_failed session=%s error=%s", session.session_key, exc)
            raise PersistenceError("Failed to persist onboarding session") from exc
        saved = session.copy()
        saved.revision = next_revision
        return saved

    def delete(self, session_key: str) -> None:
        try:
            with self._session_factory() as db:
                db.query(OnboardingSessionRow).filter(OnboardingSessionRow.session_key == session_key).delete(
                    synchronize_session=False
                )
                db.commit()
        except SQLAlchemyError as exc:
            raise PersistenceError("Failed to delete onboarding session") from exc

    def history(self, session_key: str) -> list[StepTransition]:
        try:
            with self._session_factory() as db:
                rows = (
                    db.query(StepHistory)
                    .filter(StepHistory.session_key == session_key)
                    .order_by(StepHistory.created_at.asc())
                    .all()
                )
                return [
                    StepTransition(
                        from_step=parse_step(row.from_step) if row.from_step else None,
                        to_step=parse_step(row.to_step),
                        reason=row.reason,
                        created_at=_as_utc(row.created_at),
                    )
                    for row in rows
                ]
        except SQLAlchemyError as exc:
            raise PersistenceError("Failed to load onboarding history") from exc
