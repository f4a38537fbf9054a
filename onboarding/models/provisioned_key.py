from sqlalchemy import String, Text
from sqlalchemy.orm import Mapped, mapped_column
from onboarding.db.session import Base
from onboarding.models.common import UUIDMixin, TimestampMixin

class ProvisionedKey(Base, UUIDMixin, TimestampMixin):
    __tablename__ = "provisioned_keys"
    session_key: Mapped[str] = mapped_column(String(128), unique=True, nullable=False, index=True)
    key_id: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    public_key: Mapped[str] = mapped_column(String(200), nullable=False)
    private_key_encrypted: Mapped[str] = mapped_column(Text, nullable=False)
