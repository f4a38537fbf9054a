import os
import unittest
from datetime import datetime, timedelta, timezone
from unittest.mock import patch

from sqlalchemy import create_engine, delete
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

os.environ.setdefault("DATABASE_URL", "sqlite+pysqlite:///:memory:")
os.environ.setdefault("REDIS_URL", "redis://localhost:6379/0")

from onboarding.core.config import settings
from onboarding.models.otp_challenge import OtpChallengeRow
from onboarding.services.challenge_store import SqlChallengeStore
from onboarding.services.otp_challenge import OTPChallenge
from onboarding.workers.celery_app import celery_app
from onboarding.workers.tasks import challenges as challenges_task


def _challenge(challenge_id: str, session_key: str, issued_at: datetime) -> OTPChallenge:
    return OTPChallenge(
        challenge_id=challenge_id,
        session_key=session_key,
        phone_number="9876543210",
        issued_at=issued_at,
        expires_at=issued_at + timedelta(seconds=30),
        cooldown_until=issued_at + timedelta(seconds=30),
        max_attempts=5,
    )


class WorkerMaintenanceTaskTests(unittest.TestCase):
    @classmethod
    def setUpClass(cls):
        cls.engine = create_engine(
            "sqlite+pysqlite:///:memory:",
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
        cls.SessionLocal = sessionmaker(bind=cls.engine, autocommit=False, autoflush=False)
        OtpChallengeRow.__table__.create(bind=cls.engine)

        cls._old_challenges_session_local = challenges_task.SessionLocal
        challenges_task.SessionLocal = cls.SessionLocal

    @classmethod
    def tearDownClass(cls):
        challenges_task.SessionLocal = cls._old_challenges_session_local
        OtpChallengeRow.__table__.drop(bind=cls.engine)
        cls.engine.dispose()

    def setUp(self):
        with self.SessionLocal() as db:
            db.execute(delete(OtpChallengeRow))
            db.commit()
        self.store = SqlChallengeStore(self.SessionLocal)

    def test_cleanup_stale_challenges_deletes_only_old_rows(self):
        now = datetime.now(timezone.utc)
        old = now - timedelta(hours=30)
        self.store.issue(_challenge("old-1", "device-a", old), now=old)
        self.store.issue(_challenge("old-2", "device-a", old + timedelta(minutes=1)), now=old + timedelta(minutes=1))
        self.store.issue(_challenge("fresh", "device-b", now), now=now)

        with patch.object(settings, "CHALLENGE_RETENTION_HOURS", 24):
            result = challenges_task.cleanup_stale_challenges()
        self.assertEqual(result["deleted"], 2)
        self.assertIn("cutoff", result)

        with self.SessionLocal() as db:
            remaining = [row.challenge_id for row in db.query(OtpChallengeRow).all()]
        self.assertEqual(remaining, ["fresh"])
        self.assertEqual(self.store.current("device-b").challenge_id, "fresh")
        self.assertIsNone(self.store.current("device-a"))

    def test_cleanup_is_a_no_op_when_nothing_is_stale(self):
        now = datetime.now(timezone.utc)
        self.store.issue(_challenge("recent", "device-c", now - timedelta(hours=1)), now=now)
        result = challenges_task.cleanup_stale_challenges()
        self.assertEqual(result["deleted"], 0)
        self.assertIsNotNone(self.store.get("device-c", "recent"))

    def test_cleanup_is_scheduled_hourly(self):
        entry = celery_app.conf.beat_schedule["cleanup_stale_challenges"]
        self.assertEqual(entry["task"], challenges_task.cleanup_stale_challenges.name)
        self.assertEqual(entry["schedule"], 3600.0)


if __name__ == "__main__":
    unittest.main()
