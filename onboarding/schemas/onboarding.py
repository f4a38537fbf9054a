from pydantic import BaseModel, Field
from typing import Optional, Dict, Any, List


class StepUpdate(BaseModel):
    step: str


class WalletConnection(BaseModel):
    address: str
    balance: float = 0.0
    wallet_type: str = ""


class KycDocumentIn(BaseModel):
    kind: str
    reference: str
    extracted_data: Dict[str, Any] = Field(default_factory=dict)


class KycDataIn(BaseModel):
    phone_number: Optional[str] = None
    email: Optional[str] = None
    extracted_data: Dict[str, Any] = Field(default_factory=dict)
    documents: List[KycDocumentIn] = Field(default_factory=list)


class KycDocumentRead(BaseModel):
    reference: str
    captured_at: Optional[str] = None


class KycRecordRead(BaseModel):
    phone_number: str = ""
    email: str = ""
    documents: Dict[str, KycDocumentRead] = Field(default_factory=dict)
    extracted_data: Dict[str, Any] = Field(default_factory=dict)
    verified: bool = False
    verification_date: Optional[str] = None


class SessionRead(BaseModel):
    session_key: str
    current_step: str
    is_complete: bool
    phone_number: Optional[str] = None
    phone_verified: bool = False
    wallet_address: str = ""
    wallet_balance: float = 0.0
    wallet_type: str = ""
    kyc: Optional[KycRecordRead] = None
    is_kyc_completed: bool = False
    key_id: Optional[str] = None
    keys_provisioned: bool = False
    created_at: Optional[str] = None
    updated_at: Optional[str] = None
    revision: int = 0


class StepHistoryRead(BaseModel):
    from_step: Optional[str] = None
    to_step: str
    reason: Optional[str] = None
    created_at: Optional[str] = None


class OtpRequestIn(BaseModel):
    phone_number: str


class OtpSubmitIn(BaseModel):
    challenge_id: str
    code: str


class ChallengeRead(BaseModel):
    challenge_id: str
    status: str
    phone_number: str
    expires_in: int
    cooldown_remaining: int
    attempts_remaining: int
    demo_fallback: bool = False


class VerificationRead(BaseModel):
    challenge_id: str
    status: str
    verified: bool
    attempt_count: int
    attempts_remaining: int
    suppressed: bool = False
    demo_fallback: bool = False


class CountdownRead(BaseModel):
    challenge_id: str
    status: str
    expires_in: int
    cooldown_remaining: int
    can_resend: bool
