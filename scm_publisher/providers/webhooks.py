"""Inbound webhook handlers - signature verification and tag-ref parsing.

One handler per provider type. verify() authenticates a delivery against the
link's shared secret; parse() extracts the tag refs it carries. Non-tag pushes,
tag deletions and pings parse to an empty list.
"""
import base64
import hashlib
import hmac
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Mapping, Optional

from scm_publisher.core.errors import InvalidSignature

logger = logging.getLogger(__name__)

TAG_PREFIX = "refs/tags/"


@dataclass
class RefUpdate:
    """A tag ref carried by a webhook delivery."""
    event_type: str
    ref_name: str  # short tag name, without refs/tags/
    commit_sha: str = ""
    deleted: bool = False


def _strip_tag_prefix(ref: Optional[str]) -> Optional[str]:
    if ref and ref.startswith(TAG_PREFIX):
        return ref[len(TAG_PREFIX):]
    return None


def _hmac_sha256(secret: str, body: bytes) -> str:
    return hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()


class WebhookHandler(ABC):
    """Verification and parsing strategy for one provider type."""

    PROVIDER_TYPE = ""

    @abstractmethod
    def verify(self, headers: Mapping[str, str], body: bytes, secret: str) -> None:
        """Raise InvalidSignature unless the delivery is authentic."""

    @abstractmethod
    def parse(self, headers: Mapping[str, str], payload: dict) -> list[RefUpdate]:
        pass

    def tag_updates(self, headers: Mapping[str, str], payload: dict) -> list[RefUpdate]:
        """Tag refs worth processing (deletions dropped)."""
        return [u for u in self.parse(headers, payload or {}) if not u.deleted]


class HMACSignatureHandler(WebhookHandler):
    """sha256=<hex> HMAC over the raw body in a single header."""

    SIGNATURE_HEADER = ""

    def verify(self, headers, body, secret):
        if not secret:
            raise InvalidSignature("Link has no webhook secret")
        received = headers.get(self.SIGNATURE_HEADER) or ""
        if not received.startswith("sha256="):
            raise InvalidSignature(f"Missing or malformed {self.SIGNATURE_HEADER} header")
        expected = "sha256=" + _hmac_sha256(secret, body or b"")
        if not hmac.compare_digest(expected, received):
            raise InvalidSignature("Webhook signature mismatch")


class GitHubWebhookHandler(HMACSignatureHandler):
    PROVIDER_TYPE = "github"
    SIGNATURE_HEADER = "X-Hub-Signature-256"

    def parse(self, headers, payload):
        event = headers.get("X-GitHub-Event", "push")
        if event != "push":
            # ping, create, release ... are acknowledged only
            return []
        tag = _strip_tag_prefix(payload.get("ref"))
        if tag is None:
            return []
        deleted = bool(payload.get("deleted")) or set(payload.get("after") or "") == {"0"}
        return [RefUpdate("push", tag, "" if deleted else payload.get("after") or "", deleted)]


class BitbucketDCWebhookHandler(HMACSignatureHandler):
    PROVIDER_TYPE = "bitbucket_dc"
    SIGNATURE_HEADER = "X-Hub-Signature"

    def parse(self, headers, payload):
        event_key = headers.get("X-Event-Key") or payload.get("eventKey")
        if event_key != "repo:refs_changed":
            return []
        updates = []
        for change in payload.get("changes", []):
            ref = change.get("ref") or {}
            if ref.get("type") != "TAG":
                continue
            tag = ref.get("displayId") or _strip_tag_prefix(ref.get("id"))
            if not tag:
                continue
            deleted = change.get("type") == "DELETE"
            updates.append(RefUpdate("repo:refs_changed", tag, "" if deleted else change.get("toHash") or "", deleted))
        return updates


class GitLabWebhookHandler(WebhookHandler):
    """GitLab echoes the configured secret in X-Gitlab-Token."""

    PROVIDER_TYPE = "gitlab"

    def verify(self, headers, body, secret):
        if not secret:
            raise InvalidSignature("Link has no webhook secret")
        received = headers.get("X-Gitlab-Token") or ""
        if not hmac.compare_digest(received.encode(), secret.encode()):
            raise InvalidSignature("Webhook token mismatch")

    def parse(self, headers, payload):
        if payload.get("object_kind") != "tag_push":
            return []
        tag = _strip_tag_prefix(payload.get("ref"))
        if tag is None:
            return []
        sha = payload.get("checkout_sha") or ""
        after = payload.get("after") or ""
        deleted = not sha and set(after) <= {"0"}
        return [RefUpdate("tag_push", tag, sha or ("" if deleted else after), deleted)]


class AzureDevOpsWebhookHandler(WebhookHandler):
    """Service hook subscriptions authenticate with basic auth; the password is the secret."""

    PROVIDER_TYPE = "azuredevops"

    def verify(self, headers, body, secret):
        if not secret:
            raise InvalidSignature("Link has no webhook secret")
        auth = headers.get("Authorization") or ""
        if not auth.startswith("Basic "):
            raise InvalidSignature("Missing basic auth credentials")
        try:
            decoded = base64.b64decode(auth[len("Basic "):]).decode()
        except (ValueError, UnicodeDecodeError):
            raise InvalidSignature("Malformed basic auth credentials")
        _, _, password = decoded.partition(":")
        if not hmac.compare_digest(password.encode(), secret.encode()):
            raise InvalidSignature("Webhook credentials mismatch")

    def parse(self, headers, payload):
        if payload.get("eventType") != "git.push":
            return []
        updates = []
        for ref_update in (payload.get("resource") or {}).get("refUpdates", []):
            tag = _strip_tag_prefix(ref_update.get("name"))
            if tag is None:
                continue
            new_id = ref_update.get("newObjectId") or ""
            deleted = set(new_id) <= {"0"}
            updates.append(RefUpdate("git.push", tag, "" if deleted else new_id, deleted))
        return updates
