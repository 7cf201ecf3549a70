"""Module SCM API - link lifecycle, manual sync, event log and violations."""
import uuid

from flask import Blueprint, request, jsonify

from scm_publisher.api import api_bp
from scm_publisher.api.pagination import paginate_query
from scm_publisher.auth import require_auth, require_role, current_user_id
from scm_publisher.extensions import db
from scm_publisher.models import ImmutabilityViolation, ModuleVersion, SCMWebhookEvent
from scm_publisher.services import immutability, link_registry
from scm_publisher.services.sync import orchestrator

module_scm_bp = Blueprint("module_scm", __name__)


# ─── Link lifecycle ───────────────────────────────────────────────

@module_scm_bp.route("/<uuid:module_id>/scm", methods=["POST"])
@require_auth
@require_role("operator")
def create_link(module_id):
    """Link a module to a repository and register the webhook.

    Body: {"provider_id": "...", "repository_owner": "...", "repository_name": "...",
           "repository_path": null, "default_branch": "main",
           "auto_publish_enabled": true, "tag_pattern": "v*"}
    """
    data = request.get_json() or {}
    if not data.get("provider_id") or not data.get("repository_owner") or not data.get("repository_name"):
        return jsonify({"error": "provider_id, repository_owner and repository_name are required"}), 400
    try:
        provider_id = uuid.UUID(str(data["provider_id"]))
    except ValueError:
        return jsonify({"error": "provider_id must be a UUID"}), 400

    link = link_registry.create_link(
        module_id,
        provider_id,
        data["repository_owner"],
        data["repository_name"],
        repository_path=data.get("repository_path"),
        default_branch=data.get("default_branch") or "main",
        auto_publish_enabled=data.get("auto_publish_enabled", True),
        tag_pattern=data.get("tag_pattern") or "v*",
        user_id=current_user_id(),
    )
    result = link.to_dict(include_secret=True)
    result["webhook_registered"] = bool(link.webhook_id)
    return jsonify(result), 201


@module_scm_bp.route("/<uuid:module_id>/scm", methods=["GET"])
@require_auth
def get_link(module_id):
    """Get the module's SCM link."""
    link = link_registry.get_link(module_id)
    return jsonify(link.to_dict(include_secret=True))


@module_scm_bp.route("/<uuid:module_id>/scm", methods=["PUT"])
@require_auth
@require_role("operator")
def update_link(module_id):
    """Update path, branch, auto-publish flag or tag pattern."""
    data = request.get_json() or {}
    link = link_registry.update_link(module_id, data)
    return jsonify(link.to_dict(include_secret=True))


@module_scm_bp.route("/<uuid:module_id>/scm", methods=["DELETE"])
@require_auth
@require_role("operator")
def delete_link(module_id):
    """Unlink; the platform webhook is deregistered or queued for cleanup."""
    link_registry.delete_link(module_id, user_id=current_user_id())
    return "", 204


# ─── Sync ─────────────────────────────────────────────────────────

@module_scm_bp.route("/<uuid:module_id>/scm/sync", methods=["POST"])
@require_auth
@require_role("operator")
def manual_sync(module_id):
    """Queue a sync. Body (optional): {"tag_name": "v1.2.0", "commit_sha": "..."}

    Without tag_name the latest tag matching the link's pattern is published.
    """
    data = request.get_json(silent=True) or {}
    tag_name = (data.get("tag_name") or "").strip() or None
    commit_sha = (data.get("commit_sha") or "").strip() or None
    if commit_sha and not tag_name:
        return jsonify({"error": "commit_sha requires tag_name"}), 400

    link = link_registry.get_link(module_id)
    event = orchestrator.request_manual_sync(link, current_user_id(), tag_name, commit_sha)

    from scm_publisher.tasks.sync_tasks import process_event
    process_event.delay(str(event.id))

    return jsonify({
        "message": "Sync queued",
        "webhook_event_id": str(event.id),
    }), 202


# ─── Event log ────────────────────────────────────────────────────

@module_scm_bp.route("/<uuid:module_id>/scm/events", methods=["GET"])
@require_auth
def list_events(module_id):
    """Paginated event log, newest first. ?state= filters."""
    link = link_registry.get_link(module_id)
    query = SCMWebhookEvent.query.filter_by(module_source_repo_id=link.id)
    if request.args.get("state"):
        query = query.filter_by(state=request.args["state"])
    page = paginate_query(query.order_by(SCMWebhookEvent.created_at.desc()))
    page["items"] = [e.to_dict() for e in page["items"]]
    return jsonify(page)


def _event_for(module_id, event_id) -> SCMWebhookEvent:
    link = link_registry.get_link(module_id)
    return SCMWebhookEvent.query.filter_by(id=event_id, module_source_repo_id=link.id).first_or_404()


@module_scm_bp.route("/<uuid:module_id>/scm/events/<uuid:event_id>", methods=["GET"])
@require_auth
def get_event(module_id, event_id):
    """Job status of one event."""
    return jsonify(_event_for(module_id, event_id).to_dict())


@module_scm_bp.route("/<uuid:module_id>/scm/events/<uuid:event_id>/retry", methods=["POST"])
@require_auth
@require_role("operator")
def retry_event(module_id, event_id):
    """Requeue a failed event as a new event."""
    event = _event_for(module_id, event_id)
    retry = orchestrator.retry_event(event, current_user_id())

    from scm_publisher.tasks.sync_tasks import process_event
    process_event.delay(str(retry.id))

    return jsonify({
        "message": "Retry queued",
        "webhook_event_id": str(retry.id),
        "retry_of": str(event.id),
    }), 202


# ─── Immutability violations ──────────────────────────────────────

@module_scm_bp.route("/<uuid:module_id>/scm/violations", methods=["GET"])
@require_auth
def list_violations(module_id):
    """Violations on the module's versions. ?acknowledged=false for open ones."""
    query = (
        ImmutabilityViolation.query
        .join(ModuleVersion, ImmutabilityViolation.module_version_id == ModuleVersion.id)
        .filter(ModuleVersion.module_id == module_id)
    )
    acknowledged = request.args.get("acknowledged")
    if acknowledged in ("true", "false"):
        query = query.filter(ImmutabilityViolation.acknowledged == (acknowledged == "true"))
    violations = query.order_by(ImmutabilityViolation.detected_at.desc()).all()
    return jsonify([v.to_dict() for v in violations])


@api_bp.route("/scm/violations/<uuid:violation_id>/acknowledge", methods=["POST"])
@require_auth
@require_role("operator")
def acknowledge_violation(violation_id):
    """Record operator review of a violation. Body: {"note": "..."}"""
    violation = db.session.get(ImmutabilityViolation, violation_id)
    if violation is None:
        return jsonify({"error": "Violation not found"}), 404
    data = request.get_json(silent=True) or {}
    immutability.acknowledge(violation, current_user_id(), data.get("note"))
    return jsonify(violation.to_dict())
