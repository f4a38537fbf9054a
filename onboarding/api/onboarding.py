from __future__ import annotations

from datetime import datetime

from fastapi import APIRouter, Depends

from onboarding.core.deps import get_auth_gate, get_key_provisioner, get_sequencer
from onboarding.schemas.onboarding import (
    KycDataIn,
    KycDocumentIn,
    KycDocumentRead,
    KycRecordRead,
    SessionRead,
    StepHistoryRead,
    StepUpdate,
    WalletConnection,
)
from onboarding.services.auth_gate import AuthGate
from onboarding.services.identity_record import IdentityRecord
from onboarding.services.key_provisioning import KeyProvisioner
from onboarding.services.phone import mask_phone
from onboarding.services.session_store import OnboardingSession
from onboarding.services.step_sequencer import StepSequencer
from onboarding.services.steps import OnboardingStep

router = APIRouter()


def _iso(dt: datetime | None) -> str | None:
    return dt.isoformat() if dt is not None else None


def _kyc_read(record: IdentityRecord | None) -> KycRecordRead | None:
    if record is None:
        return None
    return KycRecordRead(
        phone_number=mask_phone(record.phone_number),
        email=record.email,
        documents={
            kind: KycDocumentRead(reference=doc.reference, captured_at=_iso(doc.captured_at))
            for kind, doc in record.documents.items()
        },
        extracted_data=dict(record.masked().extracted_data),
        verified=record.verified,
        verification_date=_iso(record.verification_date),
    )


def session_read(session: OnboardingSession) -> SessionRead:
    return SessionRead(
        session_key=session.session_key,
        current_step=session.current_step.value,
        is_complete=session.is_complete,
        phone_number=mask_phone(session.phone_number) or None,
        phone_verified=session.phone_verified,
        wallet_address=session.wallet_address,
        wallet_balance=session.wallet_balance,
        wallet_type=session.wallet_type,
        kyc=_kyc_read(session.kyc_record),
        is_kyc_completed=session.is_kyc_completed,
        key_id=session.key_id or None,
        keys_provisioned=session.keys_provisioned,
        created_at=_iso(session.created_at),
        updated_at=_iso(session.updated_at),
        revision=session.revision,
    )


@router.get("/session", response_model=SessionRead)
def get_session(sequencer: StepSequencer = Depends(get_sequencer)):
    return session_read(sequencer.load())


@router.post("/step", response_model=SessionRead)
def set_step(payload: StepUpdate, sequencer: StepSequencer = Depends(get_sequencer)):
    return session_read(sequencer.set_step(payload.step))


@router.post("/next", response_model=SessionRead)
def next_step(
    sequencer: StepSequencer = Depends(get_sequencer),
    gate: AuthGate = Depends(get_auth_gate),
):
    session = sequencer.load()
    verification = None
    if session.current_step == OnboardingStep.PHONE_VERIFICATION:
        # Only the gate's own settled challenge can vouch for the phone.
        verification = gate.current_result()
    return session_read(sequencer.next_step(verification))


@router.post("/wallet", response_model=SessionRead)
def set_wallet(payload: WalletConnection, sequencer: StepSequencer = Depends(get_sequencer)):
    return session_read(sequencer.set_wallet_connection(payload.address, payload.balance, payload.wallet_type))


@router.post("/kyc", response_model=SessionRead)
def set_kyc_data(payload: KycDataIn, sequencer: StepSequencer = Depends(get_sequencer)):
    record = IdentityRecord(
        phone_number=payload.phone_number or "",
        email=payload.email or "",
        extracted_data=dict(payload.extracted_data),
    )
    for doc in payload.documents:
        record.capture_document(doc.kind, doc.reference, doc.extracted_data)
    return session_read(sequencer.set_kyc_data(record))


@router.post("/kyc/documents", response_model=SessionRead)
def capture_document(payload: KycDocumentIn, sequencer: StepSequencer = Depends(get_sequencer)):
    return session_read(sequencer.capture_document(payload.kind, payload.reference, payload.extracted_data))


@router.post("/kyc/complete", response_model=SessionRead)
def complete_kyc(sequencer: StepSequencer = Depends(get_sequencer)):
    return session_read(sequencer.complete_kyc())


@router.post("/keys", response_model=SessionRead)
def provision_keys(
    sequencer: StepSequencer = Depends(get_sequencer),
    provisioner: KeyProvisioner = Depends(get_key_provisioner),
):
    return session_read(sequencer.provision_keys(provisioner))


@router.post("/reset", response_model=SessionRead)
def reset_onboarding(
    sequencer: StepSequencer = Depends(get_sequencer),
    gate: AuthGate = Depends(get_auth_gate),
):
    gate.cancel()
    return session_read(sequencer.reset_onboarding())


@router.get("/history", response_model=list[StepHistoryRead])
def get_history(sequencer: StepSequencer = Depends(get_sequencer)):
    return [
        StepHistoryRead(
            from_step=item.from_step.value if item.from_step is not None else None,
            to_step=item.to_step.value,
            reason=item.reason,
            created_at=_iso(item.created_at),
        )
        for item in sequencer.history()
    ]
