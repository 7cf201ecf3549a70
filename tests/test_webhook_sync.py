# tests/test_webhook_sync.py — Inbound deliveries through to published versions
import hashlib
import hmac
import json
import uuid

from scm_publisher.extensions import db
from scm_publisher.models import ImmutabilityViolation, ModuleSCMLink, ModuleVersion, SCMWebhookEvent
from scm_publisher.services import link_registry

from tests.conftest import github_delivery


def _deliver(client, link, ref, sha, event="push"):
    body, headers = github_delivery(link, ref, sha, event=event)
    return client.post(f"/api/v1/webhooks/scm/{link.id}", data=body, headers=headers)


def _event(event_id):
    db.session.expire_all()
    return db.session.get(SCMWebhookEvent, uuid.UUID(event_id))


def _versions(module_id):
    db.session.expire_all()
    return ModuleVersion.query.filter_by(module_id=module_id).all()


def test_tag_push_publishes_version(client, link, fake_scm):
    """A signed tag push creates exactly one version with provenance"""
    fake_scm.tags = {"v1.2.0": "abc123"}

    resp = _deliver(client, link, "v1.2.0", "abc123")
    assert resp.status_code == 202
    event_ids = resp.get_json()["event_ids"]
    assert len(event_ids) == 1

    versions = _versions(link.module_id)
    assert len(versions) == 1
    version = versions[0]
    assert version.version == "1.2.0"
    assert version.tag_name == "v1.2.0"
    assert version.commit_sha == "abc123"
    assert version.source == "scm"
    assert version.source_url == "https://scm.test/acme/terraform-aws-vpc/archive/abc123.tar.gz"
    assert version.readme == "# terraform-aws-vpc"

    event = _event(event_ids[0])
    assert event.state == "succeeded"
    assert event.outcome == "published"
    assert event.version_id == version.id
    assert db.session.get(ModuleSCMLink, link.id).last_sync_at is not None


def test_redelivery_is_idempotent(client, link, fake_scm):
    """The same (ref, commit) twice yields one version; the second event short-circuits"""
    fake_scm.tags = {"v1.2.0": "abc123"}

    first = _deliver(client, link, "v1.2.0", "abc123").get_json()["event_ids"][0]
    second = _deliver(client, link, "v1.2.0", "abc123").get_json()["event_ids"][0]

    versions = _versions(link.module_id)
    assert len(versions) == 1
    assert _event(first).outcome == "published"
    event = _event(second)
    assert event.state == "succeeded"
    assert event.outcome == "already_published"
    assert event.version_id == versions[0].id
    assert ImmutabilityViolation.query.count() == 0


def test_moved_tag_records_violation(client, link, fake_scm):
    """A published tag seen at another commit is recorded, never republished"""
    fake_scm.tags = {"v1.2.0": "abc123"}
    _deliver(client, link, "v1.2.0", "abc123")

    fake_scm.tags = {"v1.2.0": "def456"}
    event_id = _deliver(client, link, "v1.2.0", "def456").get_json()["event_ids"][0]

    versions = _versions(link.module_id)
    assert len(versions) == 1
    assert versions[0].commit_sha == "abc123"

    violations = ImmutabilityViolation.query.all()
    assert len(violations) == 1
    assert violations[0].original_commit_sha == "abc123"
    assert violations[0].new_commit_sha == "def456"
    assert violations[0].acknowledged is False

    event = _event(event_id)
    assert event.state == "succeeded"
    assert event.outcome == "violation"
    assert event.version_id == versions[0].id


def test_moved_tag_redelivered_keeps_one_violation(client, link, fake_scm):
    fake_scm.tags = {"v1.2.0": "abc123"}
    _deliver(client, link, "v1.2.0", "abc123")
    fake_scm.tags = {"v1.2.0": "def456"}
    _deliver(client, link, "v1.2.0", "def456")
    _deliver(client, link, "v1.2.0", "def456")

    db.session.expire_all()
    assert ImmutabilityViolation.query.count() == 1
    assert len(_versions(link.module_id)) == 1


def test_version_flags_open_violation(client, link, fake_scm, module):
    fake_scm.tags = {"v1.2.0": "abc123"}
    _deliver(client, link, "v1.2.0", "abc123")
    fake_scm.tags = {"v1.2.0": "def456"}
    _deliver(client, link, "v1.2.0", "def456")

    resp = client.get(f"/api/v1/modules/{module.id}/versions")
    assert resp.status_code == 200
    data = resp.get_json()
    assert len(data) == 1
    assert data[0]["immutability_violation"] is True


def test_tag_not_matching_pattern_is_filtered(client, link, fake_scm):
    """A ref outside tag_pattern never publishes and never calls the platform"""
    fake_scm.tags = {"release-1.0.0": "abc123"}

    event_id = _deliver(client, link, "release-1.0.0", "abc123").get_json()["event_ids"][0]

    event = _event(event_id)
    assert event.state == "succeeded"
    assert event.outcome == "filtered"
    assert _versions(link.module_id) == []
    assert not [c for c in fake_scm.calls if c[0] == "resolve_tag"]


def test_auto_publish_disabled_skips(client, link, fake_scm, module):
    fake_scm.tags = {"v1.2.0": "abc123"}
    link_registry.update_link(module.id, {"auto_publish_enabled": False})

    event_id = _deliver(client, link, "v1.2.0", "abc123").get_json()["event_ids"][0]

    event = _event(event_id)
    assert event.state == "succeeded"
    assert event.outcome == "skipped"
    assert _versions(link.module_id) == []


def test_non_semver_tag_fails(client, link, fake_scm):
    fake_scm.tags = {"vnext": "abc123"}

    event_id = _deliver(client, link, "vnext", "abc123").get_json()["event_ids"][0]

    event = _event(event_id)
    assert event.state == "failed"
    assert "not a semantic version" in event.error_message
    assert _versions(link.module_id) == []


def test_unresolvable_tag_fails(client, link, fake_scm):
    fake_scm.tags = {}

    event_id = _deliver(client, link, "v9.9.9", "abc123").get_json()["event_ids"][0]

    event = _event(event_id)
    assert event.state == "failed"
    assert event.error_message.startswith("ResolutionFailed")


def test_annotated_tag_uses_peeled_commit(client, link, fake_scm):
    """The delivered sha may be a tag object; the version records the commit"""
    fake_scm.tags = {"v1.3.0": "c0ffee"}

    event_id = _deliver(client, link, "v1.3.0", "7a90be").get_json()["event_ids"][0]

    assert _versions(link.module_id)[0].commit_sha == "c0ffee"
    assert _event(event_id).commit_sha == "c0ffee"


def test_bad_signature_is_rejected_without_event(client, link, fake_scm):
    body, headers = github_delivery(link, "v1.2.0", "abc123")
    headers["X-Hub-Signature-256"] = "sha256=" + "0" * 64

    resp = client.post(f"/api/v1/webhooks/scm/{link.id}", data=body, headers=headers)

    assert resp.status_code == 401
    assert "error" in resp.get_json()
    assert SCMWebhookEvent.query.count() == 0


def test_missing_signature_is_rejected(client, link):
    body, headers = github_delivery(link, "v1.2.0", "abc123")
    del headers["X-Hub-Signature-256"]

    resp = client.post(f"/api/v1/webhooks/scm/{link.id}", data=body, headers=headers)

    assert resp.status_code == 401
    assert SCMWebhookEvent.query.count() == 0


def test_unknown_link_is_not_found(client, link):
    body, headers = github_delivery(link, "v1.2.0", "abc123")

    resp = client.post(f"/api/v1/webhooks/scm/{uuid.uuid4()}", data=body, headers=headers)

    assert resp.status_code == 404
    assert resp.get_json()["error"]


def test_branch_push_and_ping_are_acknowledged(client, link):
    branch = _deliver(client, link, "refs/heads/main", "abc123")
    assert branch.status_code == 202
    assert branch.get_json()["event_ids"] == []

    ping = _deliver(client, link, "v1.2.0", "abc123", event="ping")
    assert ping.status_code == 202
    assert ping.get_json()["event_ids"] == []
    assert SCMWebhookEvent.query.count() == 0


def test_tag_deletion_is_ignored(client, link):
    body = json.dumps({"ref": "refs/tags/v1.2.0", "after": "0" * 40, "deleted": True}).encode()
    _, headers = github_delivery(link, "v1.2.0", "abc123")
    headers["X-Hub-Signature-256"] = "sha256=" + hmac.new(
        link.webhook_secret.encode(), body, hashlib.sha256
    ).hexdigest()

    resp = client.post(f"/api/v1/webhooks/scm/{link.id}", data=body, headers=headers)

    assert resp.status_code == 202
    assert resp.get_json()["event_ids"] == []


def test_invalid_json_with_valid_signature(client, link):
    body = b"not json"
    signature = "sha256=" + hmac.new(link.webhook_secret.encode(), body, hashlib.sha256).hexdigest()

    resp = client.post(
        f"/api/v1/webhooks/scm/{link.id}",
        data=body,
        headers={"X-GitHub-Event": "push", "X-Hub-Signature-256": signature},
    )

    assert resp.status_code == 400
    assert SCMWebhookEvent.query.count() == 0


def test_event_log_lists_deliveries(client, link, fake_scm, module):
    fake_scm.tags = {"v1.2.0": "abc123", "release-1": "abc123"}
    _deliver(client, link, "v1.2.0", "abc123")
    _deliver(client, link, "release-1", "abc123")

    resp = client.get(f"/api/v1/admin/modules/{module.id}/scm/events")
    assert resp.status_code == 200
    page = resp.get_json()
    assert page["total"] == 2
    assert {e["outcome"] for e in page["items"]} == {"published", "filtered"}

    filtered = client.get(f"/api/v1/admin/modules/{module.id}/scm/events?state=failed").get_json()
    assert filtered["total"] == 0
