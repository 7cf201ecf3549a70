# tests/conftest.py — Shared test fixtures
import hashlib
import hmac
import json
import os
import tempfile
from datetime import datetime

import pytest

# SQLite file so eager Celery tasks (own app context, own session) see committed rows
TEST_DB_PATH = os.path.join(tempfile.gettempdir(), f"scm_publisher_test_{os.getpid()}.db")
os.environ["DATABASE_URL"] = f"sqlite:///{TEST_DB_PATH}"
os.environ["SECRET_KEY"] = "test-secret-key-for-unit-tests-only"
os.environ["AUTH_ENABLED"] = "false"
os.environ["CELERY_ALWAYS_EAGER"] = "true"
os.environ["CELERY_BROKER_URL"] = "memory://"
os.environ["CELERY_RESULT_BACKEND"] = "cache+memory://"
os.environ["PUBLIC_BASE_URL"] = "https://registry.test"
os.environ["FRONTEND_URL"] = "https://ui.test"

from scm_publisher import create_app
from scm_publisher.auth import get_dev_user
from scm_publisher.core.errors import ResolutionFailed, UpstreamRateLimited
from scm_publisher.core.registry import registry
from scm_publisher.extensions import db
from scm_publisher.models import Module, SCMProvider
from scm_publisher.providers.base import Branch, Repository, SCMClientAdapter, Tag, TokenGrant
from scm_publisher.services import link_registry
from scm_publisher.services.sync import orchestrator
from scm_publisher.services.token_store import token_store


class FakeSCMAdapter(SCMClientAdapter):
    """In-memory SCM platform. State lives on the class so every adapter built
    by the registry during a test sees the same repository."""

    PROVIDER_TYPE = "github"

    tags: dict = {}
    tag_dates: dict = {}
    readme = "# terraform-aws-vpc"
    release_notes = None
    error = None
    rate_limits = 0
    register_error = None
    delete_error = None
    refresh_error = None
    calls: list = []
    hooks: dict = {}

    @classmethod
    def reset(cls):
        cls.tags = {}
        cls.tag_dates = {}
        cls.readme = "# terraform-aws-vpc"
        cls.release_notes = None
        cls.error = None
        cls.rate_limits = 0
        cls.register_error = None
        cls.delete_error = None
        cls.refresh_error = None
        cls.calls = []
        cls.hooks = {}

    def _hit(self, name):
        cls = type(self)
        cls.calls.append((name, self.token))
        if cls.error is not None:
            raise cls.error
        if cls.rate_limits > 0:
            cls.rate_limits -= 1
            raise UpstreamRateLimited(retry_after=None)

    def authorization_url(self, state, redirect_uri):
        return f"https://scm.test/login/oauth/authorize?client_id={self.client_id}&state={state}"

    def exchange_code(self, code, redirect_uri):
        type(self).calls.append(("exchange_code", code))
        return TokenGrant(access_token=f"access-{code}", refresh_token="refresh-1", expires_in=3600, scopes=["repo"])

    def refresh(self, refresh_token):
        type(self).calls.append(("refresh", refresh_token))
        if type(self).refresh_error is not None:
            raise type(self).refresh_error
        return TokenGrant(access_token="access-refreshed", expires_in=3600, scopes=["repo"])

    def list_repositories(self, search=None):
        self._hit("list_repositories")
        repos = [
            Repository(id="1", name="terraform-aws-vpc", full_name="acme/terraform-aws-vpc", owner="acme"),
            Repository(id="2", name="terraform-azurerm-vnet", full_name="acme/terraform-azurerm-vnet", owner="acme"),
            Repository(id="3", name="website", full_name="acme/website", owner="acme"),
        ]
        if search:
            repos = [r for r in repos if search in r.name]
        return repos

    def list_tags(self, owner, repo):
        self._hit("list_tags")
        return [
            Tag(tag_name=name, target_commit=sha, tagged_at=type(self).tag_dates.get(name))
            for name, sha in type(self).tags.items()
        ]

    def list_branches(self, owner, repo):
        self._hit("list_branches")
        return [Branch(branch_name="main", head_commit="f" * 40, is_main_branch=True)]

    def resolve_tag(self, owner, repo, tag):
        self._hit("resolve_tag")
        if tag not in type(self).tags:
            raise ResolutionFailed(f"Tag {tag} not found in {owner}/{repo}")
        return type(self).tags[tag]

    def register_webhook(self, owner, repo, callback_url, secret):
        type(self).calls.append(("register_webhook", callback_url))
        if type(self).register_error is not None:
            raise type(self).register_error
        hook_id = f"hook-{len(type(self).hooks) + 1}"
        type(self).hooks[hook_id] = (owner, repo, callback_url)
        return hook_id

    def delete_webhook(self, owner, repo, webhook_id):
        type(self).calls.append(("delete_webhook", webhook_id))
        if type(self).delete_error is not None:
            raise type(self).delete_error
        type(self).hooks.pop(webhook_id, None)

    def get_readme(self, owner, repo, ref, path=None):
        self._hit("get_readme")
        return type(self).readme

    def get_release_notes(self, owner, repo, tag):
        self._hit("get_release_notes")
        return type(self).release_notes

    def archive_url(self, owner, repo, ref):
        return f"https://scm.test/{owner}/{repo}/archive/{ref}.tar.gz"


@pytest.fixture(scope="session")
def app():
    registry.register("adapter", "github", FakeSCMAdapter)
    app = create_app()
    app.config["TESTING"] = True
    yield app
    if os.path.exists(TEST_DB_PATH):
        os.remove(TEST_DB_PATH)


@pytest.fixture(autouse=True)
def _db(app):
    with app.app_context():
        db.create_all()
        yield
        db.session.remove()
        db.drop_all()


@pytest.fixture(autouse=True)
def fake_scm():
    FakeSCMAdapter.reset()
    yield FakeSCMAdapter
    FakeSCMAdapter.reset()


@pytest.fixture(autouse=True)
def sleeps(monkeypatch):
    """Backoff delays requested by the orchestrator, recorded instead of slept."""
    recorded = []
    monkeypatch.setattr(orchestrator, "sleep", recorded.append)
    return recorded


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def dev_user():
    """The admin every request runs as while AUTH_ENABLED is off."""
    return get_dev_user()


@pytest.fixture
def provider():
    provider = SCMProvider(
        provider_type="github",
        name="GitHub",
        client_id="gh-client",
        is_active=True,
    )
    provider.client_secret = "gh-secret"
    db.session.add(provider)
    db.session.commit()
    return provider


@pytest.fixture
def module():
    module = Module(namespace="acme", name="vpc", system="aws")
    db.session.add(module)
    db.session.commit()
    return module


@pytest.fixture
def token(dev_user, provider):
    return token_store.save(
        dev_user.id, provider.id,
        TokenGrant(access_token="gho_test", refresh_token="refresh-0", expires_in=3600, scopes=["repo"]),
    )


@pytest.fixture
def link(module, provider, token, dev_user):
    return link_registry.create_link(
        module.id, provider.id, "acme", "terraform-aws-vpc", tag_pattern="v*", user_id=dev_user.id
    )


def github_delivery(link, ref, sha, event="push"):
    """Body and signed headers of a GitHub push delivery for a link."""
    body = json.dumps({
        "ref": f"refs/tags/{ref}" if not ref.startswith("refs/") else ref,
        "after": sha,
        "deleted": False,
        "repository": {"full_name": f"{link.repository_owner}/{link.repository_name}"},
    }).encode()
    signature = "sha256=" + hmac.new(link.webhook_secret.encode(), body, hashlib.sha256).hexdigest()
    headers = {
        "X-GitHub-Event": event,
        "X-Hub-Signature-256": signature,
        "Content-Type": "application/json",
    }
    return body, headers


def tagged(day):
    return datetime(2026, 1, day, 12, 0, 0)
