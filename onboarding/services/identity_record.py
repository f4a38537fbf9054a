from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from onboarding.core.errors import IncompleteData, ValidationError
from onboarding.services.phone import normalize_phone

REQUIRED_FIELDS = ("full_name", "id_number")
KNOWN_FIELDS = ("full_name", "id_number", "date_of_birth", "address")
DOCUMENT_KINDS = {"aadhaar", "pan", "passport", "selfie", "other"}


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


def _is_missing_value(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    if isinstance(value, (list, tuple, dict, set)):
        return len(value) == 0
    return False


def mask_document_number(value: str | None) -> str | None:
    if value is None:
        return None
    raw = str(value).strip()
    if raw.startswith("XXXX"):
        return raw
    compact = raw.replace(" ", "")
    if len(compact) >= 4:
        return f"XXXX XXXX {compact[-4:]}"
    return raw


def _iso(dt: datetime | None) -> str | None:
    return dt.isoformat() if dt is not None else None


def _parse_dt(raw: Any) -> datetime | None:
    if not raw:
        return None
    if isinstance(raw, datetime):
        return raw
    return datetime.fromisoformat(str(raw))


@dataclass
class DocumentReference:
    kind: str
    reference: str
    captured_at: datetime


@dataclass
class RecordValidation:
    ok: bool
    missing: list[str]


@dataclass
class IdentityRecord:
    phone_number: str = ""
    email: str = ""
    documents: dict[str, DocumentReference] = field(default_factory=dict)
    extracted_data: dict[str, Any] = field(default_factory=dict)
    verified: bool = False
    verification_date: datetime | None = None

    def capture_document(
        self,
        kind: str,
        reference: str,
        extracted_data: dict[str, Any] | None = None,
        *,
        captured_at: datetime | None = None,
    ) -> DocumentReference:
        """Attach a document reference supplied by the capture collaborator.

        No OCR happens here: `extracted_data` is whatever the collaborator
        extracted and is merged over existing fields.
        """
        kind_norm = str(kind or "").strip().lower()
        if kind_norm not in DOCUMENT_KINDS:
            raise ValidationError(f"Unsupported document kind: {kind!r}", kind=str(kind or ""))
        ref = str(reference or "").strip()
        if not ref:
            raise ValidationError("Document reference is required", kind=kind_norm)
        doc = DocumentReference(kind=kind_norm, reference=ref, captured_at=captured_at or _now_utc())
        self.documents[kind_norm] = doc
        if extracted_data:
            merged = dict(self.extracted_data)
            for key, value in extracted_data.items():
                if not _is_missing_value(value):
                    merged[str(key)] = value
            self.extracted_data = merged
        return doc

    def validate(self) -> RecordValidation:
        data = self.extracted_data if isinstance(self.extracted_data, dict) else {}
        missing = [name for name in REQUIRED_FIELDS if _is_missing_value(data.get(name))]
        return RecordValidation(ok=not missing, missing=missing)

    def require_complete(self) -> None:
        result = self.validate()
        if not result.ok:
            raise IncompleteData(
                "KYC record is missing required fields: " + ", ".join(result.missing),
                missing=result.missing,
            )

    def validate_contact(self) -> None:
        if self.phone_number:
            self.phone_number = normalize_phone(self.phone_number)
        email = str(self.email or "").strip()
        if email and ("@" not in email or "." not in email):
            raise ValidationError("Email address is malformed")
        self.email = email

    def masked(self) -> "IdentityRecord":
        data = dict(self.extracted_data)
        if "id_number" in data:
            data["id_number"] = mask_document_number(data.get("id_number"))
        return IdentityRecord(
            phone_number=self.phone_number,
            email=self.email,
            documents=dict(self.documents),
            extracted_data=data,
            verified=self.verified,
            verification_date=self.verification_date,
        )

    def to_document(self) -> dict[str, Any]:
        return {
            "phoneNumber": self.phone_number,
            "email": self.email,
            "documents": {
                kind: {"reference": doc.reference, "capturedAt": _iso(doc.captured_at)}
                for kind, doc in self.documents.items()
            },
            "extractedData": dict(self.extracted_data),
            "verified": bool(self.verified),
            "verificationDate": _iso(self.verification_date),
        }

    @classmethod
    def from_document(cls, data: dict[str, Any] | None) -> "IdentityRecord | None":
        if not isinstance(data, dict):
            return None
        documents: dict[str, DocumentReference] = {}
        for kind, raw in (data.get("documents") or {}).items():
            if not isinstance(raw, dict):
                continue
            documents[kind] = DocumentReference(
                kind=kind,
                reference=str(raw.get("reference") or ""),
                captured_at=_parse_dt(raw.get("capturedAt")) or _now_utc(),
            )
        extracted = data.get("extractedData")
        return cls(
            phone_number=str(data.get("phoneNumber") or ""),
            email=str(data.get("email") or ""),
            documents=documents,
            extracted_data=dict(extracted) if isinstance(extracted, dict) else {},
            verified=bool(data.get("verified")),
            verification_date=_parse_dt(data.get("verificationDate")),
        )
