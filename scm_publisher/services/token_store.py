"""Token Store - per-user, per-provider SCM credentials.

Handles:
- OAuth tokens (with refresh) and personal access tokens, encrypted at rest
- Single synchronous refresh of an expired OAuth token on read
- "Reconnect required" flag when a platform rejects a token
- Signed OAuth state for the authorize/callback round trip
"""
import logging
import uuid
from datetime import datetime
from typing import Optional

from itsdangerous import BadSignature, SignatureExpired, URLSafeTimedSerializer

from scm_publisher.config import settings
from scm_publisher.core.errors import (
    NotConnected,
    ProviderInactive,
    SCMError,
    TokenExpired,
    Unauthorized,
)
from scm_publisher.core.registry import get_scm_adapter
from scm_publisher.extensions import db
from scm_publisher.models import SCMOAuthToken, SCMProvider
from scm_publisher.providers.base import TokenGrant

logger = logging.getLogger(__name__)

STATE_SALT = "scm-oauth-state"


def _serializer() -> URLSafeTimedSerializer:
    return URLSafeTimedSerializer(settings.SECRET_KEY, salt=STATE_SALT)


def sign_state(user_id, provider_id) -> str:
    """Opaque state parameter binding an OAuth round trip to a user and provider."""
    return _serializer().dumps({"u": str(user_id), "p": str(provider_id)})


def load_state(state: str, provider_id) -> uuid.UUID:
    """Validate an OAuth state and return the user id it was issued for."""
    try:
        data = _serializer().loads(state or "", max_age=settings.SCM_OAUTH_STATE_MAX_AGE)
    except SignatureExpired:
        raise SCMError("OAuth state expired; start the connection again", status_code=400)
    except BadSignature:
        raise SCMError("Invalid OAuth state", status_code=400)
    if data.get("p") != str(provider_id):
        raise SCMError("OAuth state was issued for a different provider", status_code=400)
    return uuid.UUID(data["u"])


class TokenStore:
    """Read, write and refresh SCMOAuthToken rows."""

    def _provider(self, provider_id) -> SCMProvider:
        provider = db.session.get(SCMProvider, provider_id)
        if provider is None:
            raise SCMError(f"SCM provider {provider_id} not found", status_code=404)
        return provider

    def _row(self, user_id, provider_id) -> Optional[SCMOAuthToken]:
        return SCMOAuthToken.query.filter_by(user_id=user_id, provider_id=provider_id).first()

    def get(self, user_id, provider_id) -> SCMOAuthToken:
        """Usable token for (user, provider).

        Raises NotConnected when none is stored, Unauthorized when the platform
        already rejected it, TokenExpired when an expired OAuth token cannot be
        refreshed.
        """
        token = self._row(user_id, provider_id)
        if token is None:
            raise NotConnected("No SCM credentials for this provider; connect it first")
        if token.reconnect_required:
            raise Unauthorized("SCM credentials were rejected by the platform; reconnect required")
        if token.is_expired():
            logger.info(f"Token for user {user_id} on provider {provider_id} expired, refreshing")
            try:
                token = self.refresh(user_id, provider_id)
            except (Unauthorized, TokenExpired) as e:
                self.mark_reconnect_required(token, str(e))
                raise TokenExpired("SCM token expired and could not be refreshed; reconnect required")
        return token

    def save(self, user_id, provider_id, grant: TokenGrant) -> SCMOAuthToken:
        """Store a token, overwriting any existing one for (user, provider)."""
        token = self._row(user_id, provider_id)
        if token is None:
            token = SCMOAuthToken(user_id=user_id, provider_id=provider_id)
            db.session.add(token)

        token.token_type = grant.token_type
        token.access_token = grant.access_token
        token.refresh_token = grant.refresh_token
        token.scopes = list(grant.scopes or [])
        token.expires_at = grant.expires_at if grant.token_type == "oauth" else None
        token.reconnect_required = False
        token.updated_at = datetime.utcnow()
        db.session.commit()

        logger.info(f"Saved {grant.token_type} token for user {user_id} on provider {provider_id}")
        return token

    def save_pat(self, user_id, provider_id, access_token: str) -> SCMOAuthToken:
        return self.save(user_id, provider_id, TokenGrant(access_token=access_token, token_type="pat"))

    def revoke(self, user_id, provider_id) -> bool:
        """Delete the stored token. Platform-side revocation is left to the user."""
        token = self._row(user_id, provider_id)
        if token is None:
            return False
        db.session.delete(token)
        db.session.commit()
        logger.info(f"Revoked token for user {user_id} on provider {provider_id}")
        return True

    def refresh(self, user_id, provider_id) -> SCMOAuthToken:
        """Exchange the refresh token for a new access token (OAuth only)."""
        token = self._row(user_id, provider_id)
        if token is None:
            raise NotConnected("No SCM credentials for this provider; connect it first")
        if token.token_type == "pat":
            raise SCMError("Personal access tokens cannot be refreshed", status_code=400)
        refresh_token = token.refresh_token
        if not refresh_token:
            raise TokenExpired("SCM token expired and has no refresh token; reconnect required")

        provider = self._provider(provider_id)
        with get_scm_adapter(provider) as adapter:
            grant = adapter.refresh(refresh_token)

        # Some platforms keep the refresh token stable and omit it
        if not grant.refresh_token:
            grant.refresh_token = refresh_token
        return self.save(user_id, provider_id, grant)

    def mark_reconnect_required(self, token: SCMOAuthToken, reason: str = ""):
        token.reconnect_required = True
        db.session.commit()
        logger.warning(
            f"Token for user {token.user_id} on provider {token.provider_id} needs reconnect: {reason}"
        )

    def get_for_link(self, link, preferred_user_id=None) -> SCMOAuthToken:
        """Token used for background work on a link.

        Order: preferred user (manual sync), the link creator, then the most
        recently updated usable token anyone holds for the provider.
        """
        return self.get_for_provider(link.provider_id, preferred_user_id, link.created_by)

    def get_for_provider(self, provider_id, *user_ids) -> SCMOAuthToken:
        for user_id in user_ids:
            if user_id and self._row(user_id, provider_id) is not None:
                return self.get(user_id, provider_id)

        fallback = (
            SCMOAuthToken.query
            .filter_by(provider_id=provider_id, reconnect_required=False)
            .order_by(SCMOAuthToken.updated_at.desc())
            .first()
        )
        if fallback is None:
            raise NotConnected("Nobody has connected this SCM provider; connect it first")
        return self.get(fallback.user_id, provider_id)

    def client(self, token: SCMOAuthToken):
        """Adapter bound to a token; callers close it."""
        provider = token.provider or self._provider(token.provider_id)
        if not provider.is_active:
            raise ProviderInactive(f"SCM provider {provider.name} is disabled")
        return get_scm_adapter(provider, token.access_token, token.token_type)

    def status(self, user_id, provider_id) -> dict:
        token = self._row(user_id, provider_id)
        if token is None:
            return {"connected": False, "token_type": None, "reconnect_required": False}
        return {
            "connected": True,
            "connected_at": token.created_at.isoformat() if token.created_at else None,
            "expires_at": token.expires_at.isoformat() if token.expires_at else None,
            "token_type": token.token_type,
            "scopes": token.scopes or [],
            "reconnect_required": bool(token.reconnect_required),
        }


token_store = TokenStore()
