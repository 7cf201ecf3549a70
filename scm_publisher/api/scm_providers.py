"""SCM Providers API - provider CRUD and repository browsing."""
import logging
import uuid

from flask import Blueprint, request, jsonify

from scm_publisher.auth import require_auth, require_role, current_user_id
from scm_publisher.core.errors import SCMError, Unauthorized
from scm_publisher.core.naming import filter_module_repositories
from scm_publisher.extensions import db
from scm_publisher.models import SCMProvider
from scm_publisher.models.scm_provider import PROVIDER_TYPES, PAT_PROVIDER_TYPES
from scm_publisher.services.token_store import token_store

logger = logging.getLogger(__name__)

scm_providers_bp = Blueprint("scm_providers", __name__)


def _validate(data: dict, provider: SCMProvider = None):
    """Return an error message for an invalid create/update body, else None."""
    provider_type = data.get("provider_type", provider.provider_type if provider else None)
    if provider_type not in PROVIDER_TYPES:
        return f"provider_type must be one of: {', '.join(PROVIDER_TYPES)}"
    name = data.get("name", provider.name if provider else None)
    if not name:
        return "name is required"
    base_url = data.get("base_url", provider.base_url if provider else None)
    if provider_type in ("bitbucket_dc", "azuredevops") and not base_url:
        return f"base_url is required for {provider_type}"
    client_id = data.get("client_id", provider.client_id if provider else None)
    if provider_type not in PAT_PROVIDER_TYPES and not client_id:
        return f"client_id is required for {provider_type}"
    return None


@scm_providers_bp.route("", methods=["GET"])
@require_auth
def list_providers():
    """List SCM providers."""
    query = SCMProvider.query
    if request.args.get("active") == "true":
        query = query.filter_by(is_active=True)
    providers = query.order_by(SCMProvider.name).all()
    return jsonify([p.to_dict() for p in providers])


@scm_providers_bp.route("", methods=["POST"])
@require_auth
@require_role("admin")
def create_provider():
    """Create an SCM provider. client_secret is stored encrypted and never returned."""
    data = request.get_json() or {}

    error = _validate(data)
    if error:
        return jsonify({"error": error}), 400

    try:
        organization_id = uuid.UUID(data["organization_id"]) if data.get("organization_id") else None
    except (TypeError, ValueError):
        return jsonify({"error": "organization_id must be a UUID"}), 400

    provider = SCMProvider(
        organization_id=organization_id,
        provider_type=data["provider_type"],
        name=data["name"],
        base_url=(data.get("base_url") or "").rstrip("/") or None,
        tenant_id=data.get("tenant_id"),
        client_id=data.get("client_id", ""),
        webhook_secret=data.get("webhook_secret"),
        is_active=data.get("is_active", True),
    )
    if data.get("client_secret"):
        provider.client_secret = data["client_secret"]

    db.session.add(provider)
    db.session.commit()
    logger.info(f"Created SCM provider {provider.name} ({provider.provider_type})")

    return jsonify(provider.to_dict()), 201


@scm_providers_bp.route("/<uuid:provider_id>", methods=["GET"])
@require_auth
def get_provider(provider_id):
    """Get a single SCM provider."""
    provider = SCMProvider.query.get_or_404(provider_id)
    return jsonify(provider.to_dict())


@scm_providers_bp.route("/<uuid:provider_id>", methods=["PUT"])
@require_auth
@require_role("admin")
def update_provider(provider_id):
    """Update an SCM provider. Omitting client_secret keeps the stored one."""
    provider = SCMProvider.query.get_or_404(provider_id)
    data = request.get_json() or {}

    error = _validate(data, provider)
    if error:
        return jsonify({"error": error}), 400

    if "name" in data:
        provider.name = data["name"]
    if "provider_type" in data:
        provider.provider_type = data["provider_type"]
    if "base_url" in data:
        provider.base_url = (data["base_url"] or "").rstrip("/") or None
    if "tenant_id" in data:
        provider.tenant_id = data["tenant_id"]
    if "client_id" in data:
        provider.client_id = data["client_id"]
    if data.get("client_secret"):
        provider.client_secret = data["client_secret"]
    if "webhook_secret" in data:
        provider.webhook_secret = data["webhook_secret"]
    if "is_active" in data:
        provider.is_active = bool(data["is_active"])

    db.session.commit()
    return jsonify(provider.to_dict())


@scm_providers_bp.route("/<uuid:provider_id>", methods=["DELETE"])
@require_auth
@require_role("admin")
def delete_provider(provider_id):
    """Delete a provider with its links, tokens and event history."""
    provider = SCMProvider.query.get_or_404(provider_id)

    for link in provider.links:
        if not link.webhook_id:
            continue
        try:
            token = token_store.get_for_link(link, preferred_user_id=current_user_id())
            with token_store.client(token) as adapter:
                adapter.delete_webhook(link.repository_owner, link.repository_name, link.webhook_id)
        except SCMError as e:
            logger.warning(
                f"Could not deregister webhook {link.webhook_id} on "
                f"{link.repository_owner}/{link.repository_name}: {e}"
            )

    name = provider.name
    db.session.delete(provider)
    db.session.commit()
    logger.info(f"Deleted SCM provider {name}")
    return "", 204


# ─── Repository browsing ──────────────────────────────────────────

def _call_platform(provider_id, fn):
    """Run fn(adapter) with the current user's token; a rejected token is flagged."""
    provider = SCMProvider.query.get_or_404(provider_id)
    if not provider.is_active:
        return jsonify({"error": f"SCM provider {provider.name} is disabled"}), 409

    token = token_store.get(current_user_id(), provider.id)
    try:
        with token_store.client(token) as adapter:
            return fn(adapter)
    except Unauthorized as e:
        token_store.mark_reconnect_required(token, str(e))
        raise


@scm_providers_bp.route("/<uuid:provider_id>/repositories", methods=["GET"])
@require_auth
def list_repositories(provider_id):
    """List repositories; ?system= keeps only terraform-<system>-<name> names."""
    search = request.args.get("search") or None
    system = request.args.get("system") or None

    def fetch(adapter):
        repos = adapter.list_repositories(search)
        if system:
            repos = filter_module_repositories(repos, system)
        return jsonify([r.to_dict() for r in repos])

    return _call_platform(provider_id, fetch)


@scm_providers_bp.route("/<uuid:provider_id>/repositories/<path:owner>/<repo>/tags", methods=["GET"])
@require_auth
def list_tags(provider_id, owner, repo):
    """List tags of a repository, newest first where the platform dates them."""
    def fetch(adapter):
        tags = adapter.list_tags(owner, repo)
        tags.sort(key=lambda t: t.tagged_at.isoformat() if t.tagged_at else "", reverse=True)
        return jsonify([t.to_dict() for t in tags])

    return _call_platform(provider_id, fetch)


@scm_providers_bp.route("/<uuid:provider_id>/repositories/<path:owner>/<repo>/branches", methods=["GET"])
@require_auth
def list_branches(provider_id, owner, repo):
    """List branches of a repository."""
    return _call_platform(
        provider_id, lambda adapter: jsonify([b.to_dict() for b in adapter.list_branches(owner, repo)])
    )


# OAuth and token routes live on the same blueprint
from scm_publisher.api import scm_oauth
