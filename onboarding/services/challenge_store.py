from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Callable

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from onboarding.core.errors import PersistenceError
from onboarding.models.otp_challenge import OtpChallengeRow
from onboarding.services.otp_challenge import ChallengeStatus, OTPChallenge

logger = logging.getLogger(__name__)


def _as_utc(dt: datetime | None) -> datetime | None:
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def _to_domain(row: OtpChallengeRow) -> OTPChallenge:
    return OTPChallenge(
        challenge_id=row.challenge_id,
        session_key=row.session_key,
        phone_number=row.phone_number,
        issued_at=_as_utc(row.issued_at),
        expires_at=_as_utc(row.expires_at),
        cooldown_until=_as_utc(row.cooldown_until),
        max_attempts=int(row.max_attempts),
        status=ChallengeStatus(row.status),
        attempt_count=int(row.attempt_count or 0),
        provider_challenge_id=row.provider_challenge_id,
        demo_fallback=bool(row.demo_fallback),
        verifying_started_at=_as_utc(row.verifying_started_at),
        settled_at=_as_utc(row.settled_at),
        superseded=bool(row.superseded),
    )


def _apply(row: OtpChallengeRow, challenge: OTPChallenge) -> None:
    row.session_key = challenge.session_key
    row.phone_number = challenge.phone_number
    row.status = challenge.status.value
    row.issued_at = challenge.issued_at
    row.expires_at = challenge.expires_at
    row.cooldown_until = challenge.cooldown_until
    row.attempt_count = int(challenge.attempt_count)
    row.max_attempts = int(challenge.max_attempts)
    row.provider_challenge_id = challenge.provider_challenge_id
    row.demo_fallback = bool(challenge.demo_fallback)
    row.verifying_started_at = challenge.verifying_started_at
    row.settled_at = challenge.settled_at
    row.superseded = bool(challenge.superseded)


def _supersede_all(db: Session, session_key: str, now: datetime) -> int:
    previous = (
        db.query(OtpChallengeRow)
        .filter(OtpChallengeRow.session_key == session_key, OtpChallengeRow.superseded.is_(False))
        .with_for_update()
        .all()
    )
    for row in previous:
        old = _to_domain(row)
        old.expire(now=now, superseded=True)
        old.superseded = True
        _apply(row, old)
    return len(previous)


class SqlChallengeStore:
    """One addressable challenge per session; older rows are kept as superseded."""

    def __init__(self, session_factory: Callable[[], Session]):
        self._session_factory = session_factory

    def current(self, session_key: str) -> OTPChallenge | None:
        try:
            with self._session_factory() as db:
                row = (
                    db.query(OtpChallengeRow)
                    .filter(OtpChallengeRow.session_key == session_key, OtpChallengeRow.superseded.is_(False))
                    .order_by(OtpChallengeRow.issued_at.desc())
                    .first()
                )
                return _to_domain(row) if row is not None else None
        except SQLAlchemyError as exc:
            raise PersistenceError("Failed to load OTP challenge") from exc

    def get(self, session_key: str, challenge_id: str) -> OTPChallenge | None:
        try:
            with self._session_factory() as db:
                row = (
                    db.query(OtpChallengeRow)
                    .filter(OtpChallengeRow.session_key == session_key, OtpChallengeRow.challenge_id == challenge_id)
                    .first()
                )
                return _to_domain(row) if row is not None else None
        except SQLAlchemyError as exc:
            raise PersistenceError("Failed to load OTP challenge") from exc

    def issue(self, challenge: OTPChallenge, *, now: datetime) -> int:
        """Store `challenge` as current, superseding every earlier one. Returns how many were superseded."""
        try:
            with self._session_factory() as db:
                superseded = _supersede_all(db, challenge.session_key, now)
                row = OtpChallengeRow(challenge_id=challenge.challenge_id)
                _apply(row, challenge)
                db.add(row)
                db.commit()
                return superseded
        except SQLAlchemyError as exc:
            logger.error("otp_challenge_issue_failed session=%s error=%s", challenge.session_key, exc)
            raise PersistenceError("Failed to store OTP challenge") from exc

    def retire(self, session_key: str, *, now: datetime) -> int:
        """Supersede every challenge of the session, leaving none addressable."""
        try:
            with self._session_factory() as db:
                superseded = _supersede_all(db, session_key, now)
                db.commit()
                return superseded
        except SQLAlchemyError as exc:
            logger.error("otp_challenge_retire_failed session=%s error=%s", session_key, exc)
            raise PersistenceError("Failed to retire OTP challenges") from exc

    def save(
        self,
        challenge: OTPChallenge,
        *,
        expected_status: ChallengeStatus | None = None,
        expected_attempts: int | None = None,
    ) -> bool:
        """Write `challenge` back, optionally only if the stored row is still the one the caller read.

        `expected_status` alone matches any attempt in that status; pass
        `expected_attempts` as well to pin the write to one attempt.
        """
        try:
            with self._session_factory() as db:
                query = db.query(OtpChallengeRow).filter(OtpChallengeRow.challenge_id == challenge.challenge_id)
                if expected_status is not None:
                    query = query.filter(
                        OtpChallengeRow.status == expected_status.value,
                        OtpChallengeRow.superseded.is_(False),
                    )
                if expected_attempts is not None:
                    query = query.filter(OtpChallengeRow.attempt_count == int(expected_attempts))
                row = query.with_for_update().first()
                if row is None:
                    return False
                _apply(row, challenge)
                db.commit()
                return True
        except SQLAlchemyError as exc:
            logger.error("otp_challenge_save_failed challenge=%s error=%s", challenge.challenge_id, exc)
            raise PersistenceError("Failed to store OTP challenge") from exc

    def delete_stale(self, *, settled_before: datetime) -> int:
        try:
            with self._session_factory() as db:
                deleted = (
                    db.query(OtpChallengeRow)
                    .filter(OtpChallengeRow.issued_at <= settled_before)
                    .delete(synchronize_session=False)
                )
                db.commit()
                return int(deleted)
        except SQLAlchemyError as exc:
            raise PersistenceError("Failed to clean up OTP challenges") from exc
