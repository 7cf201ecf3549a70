"""Maintenance Celery tasks - orphaned webhooks and stuck events."""
import logging
from datetime import datetime, timedelta

from celery import shared_task

logger = logging.getLogger(__name__)

MAX_CLEANUP_BACKOFF = 3600


def cleanup_backoff(attempts: int) -> timedelta:
    """1 min, 2 min, 4 min ... capped at an hour."""
    return timedelta(seconds=min(60 * 2 ** max(attempts - 1, 0), MAX_CLEANUP_BACKOFF))


@shared_task(name="scm.reconcile_webhook_cleanups")
def reconcile_webhook_cleanups():
    """Retry deregistration of platform webhooks left behind by unlinks.

    A cleanup is abandoned after SCM_CLEANUP_MAX_ATTEMPTS failures; the
    orphaned webhook is inert because its secret no longer matches a link.
    """
    from scm_publisher.config import settings
    from scm_publisher.core.errors import SCMError
    from scm_publisher.extensions import db
    from scm_publisher.models import WebhookCleanup
    from scm_publisher.services.token_store import token_store

    now = datetime.utcnow()
    due = WebhookCleanup.query.filter(
        WebhookCleanup.state == "pending",
        WebhookCleanup.next_attempt_at <= now,
    ).order_by(WebhookCleanup.next_attempt_at.asc()).all()

    done = failed = abandoned = 0
    for cleanup in due:
        try:
            token = token_store.get_for_provider(cleanup.provider_id, cleanup.requested_by)
            with token_store.client(token) as adapter:
                adapter.delete_webhook(cleanup.repository_owner, cleanup.repository_name, cleanup.webhook_id)
        except SCMError as e:
            db.session.rollback()
            cleanup.attempts += 1
            cleanup.last_error = str(e)[:2000]
            if cleanup.attempts >= settings.SCM_CLEANUP_MAX_ATTEMPTS:
                cleanup.state = "abandoned"
                abandoned += 1
                logger.error(
                    f"Giving up on webhook {cleanup.webhook_id} for "
                    f"{cleanup.repository_owner}/{cleanup.repository_name} after {cleanup.attempts} attempts: {e}"
                )
            else:
                cleanup.next_attempt_at = now + cleanup_backoff(cleanup.attempts)
                failed += 1
                logger.warning(
                    f"Webhook {cleanup.webhook_id} cleanup failed (attempt {cleanup.attempts}), "
                    f"next try at {cleanup.next_attempt_at.isoformat()}: {e}"
                )
        else:
            cleanup.state = "done"
            cleanup.attempts += 1
            cleanup.last_error = None
            done += 1
            logger.info(f"Deregistered orphaned webhook {cleanup.webhook_id}")
        db.session.commit()

    return {"done": done, "failed": failed, "abandoned": abandoned, "checked_at": now.isoformat()}


@shared_task(name="scm.expire_stale_events")
def expire_stale_events():
    """Fail events stuck in pending/processing, e.g. after a worker crash."""
    from scm_publisher.config import settings
    from scm_publisher.extensions import db
    from scm_publisher.models import SCMWebhookEvent
    from scm_publisher.models.webhook_event import FAILED, PENDING, PROCESSING

    now = datetime.utcnow()
    cutoff = now - timedelta(minutes=settings.SCM_STALE_EVENT_MINUTES)
    stale = SCMWebhookEvent.query.filter(
        SCMWebhookEvent.state.in_((PENDING, PROCESSING)),
        SCMWebhookEvent.updated_at < cutoff,
    ).all()

    for event in stale:
        event.transition(
            FAILED,
            error_message=f"Not completed within {settings.SCM_STALE_EVENT_MINUTES} minutes (was {event.state})",
        )
    if stale:
        db.session.commit()
        logger.warning(f"Expired {len(stale)} stale SCM event(s)")

    return {"expired": len(stale), "checked_at": now.isoformat()}
