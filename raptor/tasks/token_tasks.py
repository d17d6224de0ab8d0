from celery import shared_task

from raptor.core.config import SessionConfig
from raptor.core.database import SessionLocal
from raptor.core.logger import setup_logging
from raptor.services.session_service import SessionService
from raptor.utils.errors import PersistenceError
import logging

logger = logging.getLogger(__name__)


def run_token_cleanup(db=None) -> dict:
    """Delete expired refresh tokens and blacklist rows. Used by the task and the CLI."""
    owns_session = db is None
    db = db or SessionLocal()
    try:
        return SessionService(db, SessionConfig.from_settings()).cleanup_expired_tokens()
    finally:
        if owns_session:
            db.close()


@shared_task(bind=True, max_retries=3)
def cleanup_expired_tokens(self):
    """
    Periodic cleanup of expired credentials.
    Scheduled every TOKEN_CLEANUP_INTERVAL_MINUTES via Celery Beat.
    """
    setup_logging()
    try:
        result = run_token_cleanup()
    except PersistenceError as e:
        logger.error(f"Token cleanup failed, retrying: {e}")
        raise self.retry(exc=e, countdown=60)
    logger.info(f"Token cleanup finished: {result}")
    return result
