from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone

from onboarding.core.config import settings
from onboarding.db.session import SessionLocal
from onboarding.services.challenge_store import SqlChallengeStore
from onboarding.workers.celery_app import celery_app

logger = logging.getLogger(__name__)


@celery_app.task(name="onboarding.workers.tasks.challenges.cleanup_stale_challenges")
def cleanup_stale_challenges():
    now = datetime.now(timezone.utc)
    retention_hours = max(int(settings.CHALLENGE_RETENTION_HOURS), 1)
    cutoff = now - timedelta(hours=retention_hours)
    deleted = SqlChallengeStore(SessionLocal).delete_stale(settled_before=cutoff)
    if deleted:
        logger.info("otp_challenges_pruned deleted=%s cutoff=%s", deleted, cutoff.isoformat())
    return {"deleted": int(deleted), "cutoff": cutoff.isoformat()}
