"""Inbound SCM webhook endpoint.

Unauthenticated by session; each delivery is authenticated against the
link's webhook secret instead.
"""
import logging

from flask import request, jsonify

from scm_publisher.api import api_bp
from scm_publisher.services import ingestion

logger = logging.getLogger(__name__)


@api_bp.route("/webhooks/scm/<uuid:link_id>", methods=["POST"])
def receive_webhook(link_id):
    """Record a delivery's tag refs and queue them. 202 with the new event ids."""
    events = ingestion.receive(link_id, request.headers, request.get_data())

    from scm_publisher.tasks.sync_tasks import process_event
    event_ids = [str(e.id) for e in events]
    for event_id in event_ids:
        process_event.delay(event_id)

    return jsonify({"event_ids": event_ids}), 202
