import logging

from celery import Celery

from app.core.config import get_settings
from app.core.database import SessionLocal

settings = get_settings()
logger = logging.getLogger("app.tasks")

celery_app = Celery("studio_commercial", broker=settings.redis_url, backend=settings.redis_url)


@celery_app.task(name="app.tasks.purge_test_promises")
def purge_test_promises_task(studio_slug: str) -> int:
    """Remove every test promise of ``studio_slug``; returns how many were purged."""
    from app.commercial.promises import promise_service

    if not settings.test_purge_enabled:
        logger.info("test_promises_purge_disabled", extra={"studio_slug": studio_slug})
        return 0
    session = SessionLocal()
    try:
        return promise_service.delete_test_promises(session, studio_slug).count
    finally:
        session.close()
