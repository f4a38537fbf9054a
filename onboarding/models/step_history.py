from sqlalchemy import String
from sqlalchemy.orm import Mapped, mapped_column
from onboarding.db.session import Base
from onboarding.models.common import UUIDMixin, TimestampMixin

class StepHistory(Base, UUIDMixin, TimestampMixin):
    __tablename__ = "onboarding_step_history"
    session_key: Mapped[str] = mapped_column(String(128), index=True, nullable=False)
    from_step: Mapped[str | None] = mapped_column(String(40), nullable=True)
    to_step: Mapped[str] = mapped_column(String(40), nullable=False)
    reason: Mapped[str | None] = mapped_column(String(200), nullable=True)
