"""SCM OAuth API - connect, refresh and revoke per-user provider credentials."""
import logging
from urllib.parse import urlencode

from flask import request, jsonify, redirect

from scm_publisher.api.scm_providers import scm_providers_bp
from scm_publisher.auth import require_auth, current_user_id
from scm_publisher.config import settings
from scm_publisher.core.errors import SCMError
from scm_publisher.core.registry import get_scm_adapter
from scm_publisher.models import SCMProvider
from scm_publisher.services.token_store import token_store, sign_state, load_state

logger = logging.getLogger(__name__)


def _redirect_uri(provider_id) -> str:
    return f"{settings.PUBLIC_BASE_URL.rstrip('/')}/api/v1/scm-providers/{provider_id}/oauth/callback"


def _frontend(provider_id, **params) -> str:
    query = urlencode({"provider_id": str(provider_id), **params})
    return f"{settings.FRONTEND_URL.rstrip('/')}/settings/scm?{query}"


@scm_providers_bp.route("/<uuid:provider_id>/oauth/authorize", methods=["GET"])
@require_auth
def oauth_authorize(provider_id):
    """Start the OAuth flow: returns the platform URL to send the user to."""
    provider = SCMProvider.query.get_or_404(provider_id)
    if provider.uses_pat:
        return jsonify({"error": f"{provider.provider_type} uses personal access tokens; POST /token instead"}), 400
    if not provider.is_active:
        return jsonify({"error": f"SCM provider {provider.name} is disabled"}), 409

    state = sign_state(current_user_id(), provider.id)
    with get_scm_adapter(provider) as adapter:
        url = adapter.authorization_url(state, _redirect_uri(provider.id))

    return jsonify({"authorization_url": url, "state": state})


@scm_providers_bp.route("/<uuid:provider_id>/oauth/callback", methods=["GET"])
def oauth_callback(provider_id):
    """Platform redirect target. The signed state identifies the user."""
    provider = SCMProvider.query.get_or_404(provider_id)

    if request.args.get("error"):
        message = request.args.get("error_description") or request.args["error"]
        logger.warning(f"OAuth for provider {provider.name} denied: {message}")
        return redirect(_frontend(provider.id, error=message))

    code = request.args.get("code")
    if not code:
        return jsonify({"error": "code is required"}), 400

    try:
        user_id = load_state(request.args.get("state"), provider.id)
        with get_scm_adapter(provider) as adapter:
            grant = adapter.exchange_code(code, _redirect_uri(provider.id))
        token_store.save(user_id, provider.id, grant)
    except SCMError as e:
        logger.warning(f"OAuth callback for provider {provider.name} failed: {e}")
        return redirect(_frontend(provider.id, error=str(e)))

    return redirect(_frontend(provider.id, connected="true"))


@scm_providers_bp.route("/<uuid:provider_id>/oauth/refresh", methods=["POST"])
@require_auth
def oauth_refresh(provider_id):
    """Force a refresh of the current user's OAuth token."""
    SCMProvider.query.get_or_404(provider_id)
    token_store.refresh(current_user_id(), provider_id)
    return jsonify(token_store.status(current_user_id(), provider_id))


@scm_providers_bp.route("/<uuid:provider_id>/oauth/token", methods=["GET"])
@require_auth
def token_status(provider_id):
    """Connection status of the current user for this provider."""
    SCMProvider.query.get_or_404(provider_id)
    return jsonify(token_store.status(current_user_id(), provider_id))


@scm_providers_bp.route("/<uuid:provider_id>/oauth/token", methods=["DELETE"])
@require_auth
def revoke_token(provider_id):
    """Forget the current user's token for this provider."""
    SCMProvider.query.get_or_404(provider_id)
    if not token_store.revoke(current_user_id(), provider_id):
        return jsonify({"error": "Not connected"}), 404
    return "", 204


@scm_providers_bp.route("/<uuid:provider_id>/token", methods=["POST"])
@require_auth
def save_pat(provider_id):
    """Save a personal access token.

    Body: {"access_token": "..."}
    """
    provider = SCMProvider.query.get_or_404(provider_id)
    data = request.get_json() or {}
    access_token = (data.get("access_token") or "").strip()
    if not access_token:
        return jsonify({"error": "access_token is required"}), 400

    token_store.save_pat(current_user_id(), provider.id, access_token)
    return jsonify(token_store.status(current_user_id(), provider.id)), 201
