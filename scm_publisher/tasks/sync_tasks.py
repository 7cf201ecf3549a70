"""SCM sync Celery tasks.

Webhook deliveries, manual syncs and retries all enqueue process_event with
the id of an already committed pending event.
"""
import logging
import uuid

from celery import shared_task

from scm_publisher.config import settings

logger = logging.getLogger(__name__)


@shared_task(
    name="scm.process_event",
    bind=True,
    max_retries=0,
    soft_time_limit=settings.SCM_PUBLISH_DEADLINE + 15,
)
def process_event(self, event_id: str):
    """Drive one SCMWebhookEvent to succeeded or failed.

    Failures are recorded on the event, never retried here; an operator
    requeues failed events explicitly.
    """
    from scm_publisher.services.sync import orchestrator

    event = orchestrator.process_event(uuid.UUID(str(event_id)))
    if event is None:
        return {"error": f"Event {event_id} not found"}

    return {
        "event_id": str(event.id),
        "state": event.state,
        "outcome": event.outcome,
        "version_id": str(event.version_id) if event.version_id else None,
        "error": event.error_message,
    }
