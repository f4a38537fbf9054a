from celery import Celery
from onboarding.core.config import settings

celery_app = Celery("identity_onboarding", broker=settings.REDIS_URL, backend=settings.REDIS_URL)

celery_app.conf.beat_schedule = {
    "cleanup_stale_challenges": {
        "task": "onboarding.workers.tasks.challenges.cleanup_stale_challenges",
        "schedule": 3600.0,
    },
}
celery_app.conf.timezone = "UTC"
celery_app.conf.imports = ("onboarding.workers.tasks.challenges",)
