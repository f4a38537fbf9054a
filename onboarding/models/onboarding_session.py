from datetime import datetime

from sqlalchemy import DateTime, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from onboarding.db.encrypted_types import EncryptedJSONDocument
from onboarding.db.session import Base
from onboarding.models.common import UUIDMixin, TimestampMixin


class OnboardingSessionRow(Base, UUIDMixin, TimestampMixin):
    __tablename__ = "onboarding_sessions"
    session_key: Mapped[str] = mapped_column(String(128), unique=True, nullable=False, index=True)
    current_step: Mapped[str] = mapped_column(String(40), nullable=False, default="WELCOME")
    schema_version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    revision: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    document: Mapped[dict] = mapped_column(EncryptedJSONDocument, nullable=False)
    committed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
