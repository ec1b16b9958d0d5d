import logging

from core.celery import celery_app
from core.db import db_session
from services.subscriptions import refresh_subscriptions

logger = logging.getLogger(__name__)


@celery_app.task
def refresh_subscriptions_task():
    """Periodic lifecycle pass, scheduled by Celery beat."""
    with db_session() as db:
        result = refresh_subscriptions(db)
    logger.info("Subscription refresh finished: %s", result.summary)
    return {
        "summary": result.summary,
        "updated": [sub.id for sub in result.updated_subscriptions],
        "timestamp": result.timestamp.isoformat(),
    }
