# tests/test_token_store.py — Credential storage, refresh and OAuth state
import uuid
from datetime import datetime, timedelta

import pytest

from scm_publisher.core.errors import (
    NotConnected,
    ProviderInactive,
    SCMError,
    TokenExpired,
    Unauthorized,
)
from scm_publisher.extensions import db
from scm_publisher.models import SCMOAuthToken, User
from scm_publisher.providers.base import TokenGrant
from scm_publisher.services.token_store import load_state, sign_state, token_store


def _expire(token):
    token.expires_at = datetime.utcnow() - timedelta(seconds=1)
    db.session.commit()


def test_tokens_are_encrypted_at_rest(token):
    assert token.access_token == "gho_test"
    assert "gho_test" not in token.access_token_encrypted
    assert token.refresh_token == "refresh-0"
    assert "refresh-0" not in token.refresh_token_encrypted


def test_save_overwrites_existing_token(dev_user, provider, token):
    token_store.save(dev_user.id, provider.id, TokenGrant(access_token="gho_new"))

    assert SCMOAuthToken.query.count() == 1
    assert token_store.get(dev_user.id, provider.id).access_token == "gho_new"


def test_get_not_connected(dev_user, provider):
    with pytest.raises(NotConnected):
        token_store.get(dev_user.id, provider.id)


def test_get_refreshes_expired_token(dev_user, provider, token, fake_scm):
    _expire(token)

    refreshed = token_store.get(dev_user.id, provider.id)

    assert refreshed.access_token == "access-refreshed"
    assert refreshed.refresh_token == "refresh-0"
    assert refreshed.expires_at > datetime.utcnow()
    assert ("refresh", "refresh-0") in fake_scm.calls


def test_failed_refresh_flags_reconnect(dev_user, provider, token, fake_scm):
    _expire(token)
    fake_scm.refresh_error = Unauthorized("invalid_grant")

    with pytest.raises(TokenExpired):
        token_store.get(dev_user.id, provider.id)

    assert token_store.status(dev_user.id, provider.id)["reconnect_required"] is True
    with pytest.raises(Unauthorized):
        token_store.get(dev_user.id, provider.id)


def test_expired_token_without_refresh_token(dev_user, provider):
    token = token_store.save(dev_user.id, provider.id, TokenGrant(access_token="short", expires_in=60))
    _expire(token)

    with pytest.raises(TokenExpired):
        token_store.get(dev_user.id, provider.id)


def test_pat_never_expires_or_refreshes(dev_user, provider):
    token = token_store.save_pat(dev_user.id, provider.id, "pat-123")

    assert token.token_type == "pat"
    assert token.expires_at is None
    assert token_store.get(dev_user.id, provider.id).access_token == "pat-123"
    with pytest.raises(SCMError) as excinfo:
        token_store.refresh(dev_user.id, provider.id)
    assert excinfo.value.status_code == 400


def test_saving_clears_reconnect_flag(dev_user, provider, token):
    token_store.mark_reconnect_required(token, "revoked")
    token_store.save(dev_user.id, provider.id, TokenGrant(access_token="gho_again", expires_in=3600))

    assert token_store.status(dev_user.id, provider.id)["reconnect_required"] is False


def test_revoke(dev_user, provider, token):
    assert token_store.revoke(dev_user.id, provider.id) is True
    assert token_store.revoke(dev_user.id, provider.id) is False
    assert token_store.status(dev_user.id, provider.id)["connected"] is False


def test_get_for_provider_falls_back_to_any_connected_user(dev_user, provider, token):
    other = User(username="alice", role="operator")
    db.session.add(other)
    db.session.commit()

    assert token_store.get_for_provider(provider.id, other.id).user_id == dev_user.id


def test_get_for_provider_skips_flagged_tokens(dev_user, provider, token):
    token_store.mark_reconnect_required(token, "revoked")
    with pytest.raises(NotConnected):
        token_store.get_for_provider(provider.id)


def test_client_refuses_inactive_provider(provider, token):
    provider.is_active = False
    db.session.commit()

    with pytest.raises(ProviderInactive):
        token_store.client(token)


def test_oauth_state_round_trip(dev_user, provider):
    state = sign_state(dev_user.id, provider.id)

    assert load_state(state, provider.id) == dev_user.id


def test_oauth_state_rejects_tampering_and_other_providers(dev_user, provider):
    state = sign_state(dev_user.id, provider.id)

    with pytest.raises(SCMError):
        load_state(state + "x", provider.id)
    with pytest.raises(SCMError):
        load_state(state, uuid.uuid4())
    with pytest.raises(SCMError):
        load_state("", provider.id)
