"""Webhook Ingestion - authenticate a delivery and persist its tag refs as events.

Nothing is written for a delivery that fails verification. Every tag ref in
an authentic delivery becomes one pending SCMWebhookEvent, committed before
any processing is queued.
"""
import json
import logging
from typing import Mapping

from scm_publisher.core.errors import NotLinked, SCMError
from scm_publisher.core.registry import get_webhook_handler
from scm_publisher.extensions import db
from scm_publisher.models import ModuleSCMLink, SCMWebhookEvent
from scm_publisher.models.webhook_event import PENDING

logger = logging.getLogger(__name__)


def receive(link_id, headers: Mapping[str, str], body: bytes) -> list[SCMWebhookEvent]:
    """Verify and record an inbound delivery; returns the pending events created."""
    link = db.session.get(ModuleSCMLink, link_id)
    if link is None:
        raise NotLinked(f"No SCM link {link_id}")

    handler = get_webhook_handler(link.provider.provider_type)
    handler.verify(headers, body, link.webhook_secret)

    try:
        payload = json.loads(body or b"{}")
    except ValueError:
        raise SCMError("Webhook body is not valid JSON", status_code=400)
    if not isinstance(payload, dict):
        raise SCMError("Webhook body must be a JSON object", status_code=400)

    updates = handler.tag_updates(headers, payload)
    if not updates:
        logger.info(f"Webhook for link {link.id} carried no tag refs, acknowledged")
        return []

    events = []
    for update in updates:
        event = SCMWebhookEvent(
            module_source_repo_id=link.id,
            event_type=update.event_type,
            ref_name=update.ref_name,
            commit_sha=update.commit_sha,
            payload=payload,
            state=PENDING,
        )
        db.session.add(event)
        events.append(event)
    db.session.commit()

    logger.info(
        f"Webhook for link {link.id}: recorded {len(events)} event(s) "
        f"for {', '.join(e.ref_name for e in events)}"
    )
    return events
