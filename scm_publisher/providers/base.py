"""Base classes for SCM platform client adapters."""
import logging
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field, asdict
from datetime import datetime, timedelta, timezone
from email.utils import parsedate_to_datetime
from typing import Optional

import requests

from scm_publisher.core.errors import (
    RemoteNotFound,
    Unauthorized,
    UpstreamError,
    UpstreamRateLimited,
    UpstreamTimeout,
)

logger = logging.getLogger(__name__)

# fromisoformat takes at most microseconds; Azure DevOps reports 100 ns ticks
_EXTRA_FRACTION = re.compile(r"(\.\d{6})\d+")


def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    """Parse an ISO 8601 platform timestamp into naive UTC."""
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(_EXTRA_FRACTION.sub(r"\1", value.replace("Z", "+00:00")))
    except ValueError:
        return None
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


@dataclass
class Repository:
    """A repository visible to the connected user."""
    id: str
    name: str
    full_name: str
    owner: str
    description: str = ""
    default_branch: str = "main"
    clone_url: str = ""
    html_url: str = ""
    private: bool = False

    def to_dict(self):
        return asdict(self)


@dataclass
class Tag:
    """A tag and the commit it points to (annotated tags already peeled)."""
    tag_name: str
    target_commit: str
    annotation_msg: Optional[str] = None
    tagger_name: Optional[str] = None
    tagged_at: Optional[datetime] = None

    def to_dict(self):
        data = asdict(self)
        data["tagged_at"] = self.tagged_at.isoformat() if self.tagged_at else None
        return data


@dataclass
class Branch:
    branch_name: str
    head_commit: str
    is_protected: bool = False
    is_main_branch: bool = False

    def to_dict(self):
        return asdict(self)


@dataclass
class TokenGrant:
    """Credentials returned by an OAuth exchange or supplied as a PAT."""
    access_token: str
    refresh_token: Optional[str] = None
    expires_in: Optional[int] = None  # seconds
    scopes: list[str] = field(default_factory=list)
    token_type: str = "oauth"  # oauth | pat

    @property
    def expires_at(self) -> Optional[datetime]:
        if not self.expires_in:
            return None
        return datetime.utcnow() + timedelta(seconds=int(self.expires_in))


class SCMClientAdapter(ABC):
    """Uniform interface over one SCM platform.

    Connection config:
    {
        "base_url": "https://gitlab.example.com",   # self-hosted only
        "client_id": "...",
        "client_secret": "...",
        "tenant_id": "...",                         # azuredevops only
        "token": "access token or PAT",
        "token_type": "oauth",                      # oauth | pat
        "timeout": 10
    }
    """

    PROVIDER_TYPE = ""

    def __init__(self, config: dict):
        self.base_url = (config.get("base_url") or "").rstrip("/")
        self.client_id = config.get("client_id", "")
        self.client_secret = config.get("client_secret", "")
        self.tenant_id = config.get("tenant_id") or ""
        self.token = config.get("token", "")
        self.token_type = config.get("token_type", "oauth")
        self.timeout = config.get("timeout", 10)

    # ── OAuth ─────────────────────────────────────────────────────

    @abstractmethod
    def authorization_url(self, state: str, redirect_uri: str) -> str:
        """URL the user is sent to for granting access."""

    @abstractmethod
    def exchange_code(self, code: str, redirect_uri: str) -> TokenGrant:
        """Exchange an authorization code for a token."""

    @abstractmethod
    def refresh(self, refresh_token: str) -> TokenGrant:
        """Obtain a new access token from a refresh token."""

    # ── Repository metadata ───────────────────────────────────────

    @abstractmethod
    def list_repositories(self, search: Optional[str] = None) -> list[Repository]:
        pass

    @abstractmethod
    def list_tags(self, owner: str, repo: str) -> list[Tag]:
        pass

    @abstractmethod
    def list_branches(self, owner: str, repo: str) -> list[Branch]:
        pass

    @abstractmethod
    def resolve_tag(self, owner: str, repo: str, tag: str) -> str:
        """Return the commit SHA a tag points to; raises ResolutionFailed."""

    # ── Webhooks ──────────────────────────────────────────────────

    @abstractmethod
    def register_webhook(self, owner: str, repo: str, callback_url: str, secret: str) -> str:
        """Register a tag-push webhook and return its platform id."""

    @abstractmethod
    def delete_webhook(self, owner: str, repo: str, webhook_id: str) -> None:
        pass

    # ── Version metadata ──────────────────────────────────────────

    @abstractmethod
    def get_readme(self, owner: str, repo: str, ref: str, path: Optional[str] = None) -> Optional[str]:
        """README content at ref, or None when the repository has none."""

    def get_release_notes(self, owner: str, repo: str, tag: str) -> Optional[str]:
        """Release notes attached to a tag; platforms without releases return None."""
        return None

    @abstractmethod
    def archive_url(self, owner: str, repo: str, ref: str) -> str:
        pass

    def close(self):
        """Clean up resources (optional)."""
        pass

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()


def _retry_after_seconds(response: requests.Response) -> Optional[float]:
    """Parse Retry-After or X-RateLimit-Reset into seconds to wait."""
    value = response.headers.get("Retry-After")
    if value:
        try:
            return float(value)
        except ValueError:
            try:
                when = parsedate_to_datetime(value)
                return max(0.0, (when - datetime.now(when.tzinfo)).total_seconds())
            except (TypeError, ValueError):
                return None
    reset = response.headers.get("X-RateLimit-Reset")
    if reset:
        try:
            return max(0.0, float(reset) - datetime.utcnow().timestamp())
        except ValueError:
            return None
    return None


def raise_for_response(response: requests.Response, context: str = ""):
    """Map a platform HTTP error onto the SCM error taxonomy."""
    status = response.status_code
    if status < 400:
        return

    where = f" ({context})" if context else ""
    if status == 401:
        raise Unauthorized(f"SCM platform rejected the credentials{where}; reconnect the provider")
    if status == 429 or (
        status == 403 and (
            response.headers.get("X-RateLimit-Remaining") == "0"
            or "rate limit" in response.text[:500].lower()
        )
    ):
        raise UpstreamRateLimited(
            f"SCM platform rate limit exceeded{where}",
            retry_after=_retry_after_seconds(response),
        )
    if status == 403:
        raise Unauthorized(f"Access denied by SCM platform{where}; reconnect the provider")
    if status == 404:
        raise RemoteNotFound(f"Not found on SCM platform{where}")
    raise UpstreamError(f"SCM platform returned HTTP {status}{where}: {response.text[:200]}")


class HTTPAdapter(SCMClientAdapter):
    """Adapter base for platforms spoken to over plain REST with requests."""

    def __init__(self, config: dict):
        super().__init__(config)
        self._session: Optional[requests.Session] = None

    @property
    def session(self) -> requests.Session:
        """Lazy initialization of requests session."""
        if self._session is None:
            self._session = requests.Session()
            self._session.headers["Accept"] = "application/json"
            self._session.headers.update(self.auth_headers())
        return self._session

    def auth_headers(self) -> dict:
        if self.token:
            return {"Authorization": f"Bearer {self.token}"}
        return {}

    def request(self, method: str, url: str, context: str = "", **kwargs) -> requests.Response:
        """Perform a request with bounded timeout and mapped errors."""
        kwargs.setdefault("timeout", self.timeout)
        try:
            response = self.session.request(method, url, **kwargs)
        except requests.Timeout as e:
            raise UpstreamTimeout(f"SCM platform timed out{' (' + context + ')' if context else ''}: {e}")
        except requests.RequestException as e:
            raise UpstreamError(f"SCM platform unreachable: {e}")
        raise_for_response(response, context)
        return response

    def get_json(self, url: str, context: str = "", **kwargs):
        return self.request("GET", url, context=context, **kwargs).json()

    def post_form(self, url: str, data: dict, context: str = "") -> dict:
        """POST a form to an OAuth token endpoint without session credentials."""
        try:
            response = requests.post(
                url, data=data, headers={"Accept": "application/json"}, timeout=self.timeout
            )
        except requests.Timeout as e:
            raise UpstreamTimeout(f"OAuth token endpoint timed out: {e}")
        except requests.RequestException as e:
            raise UpstreamError(f"OAuth token endpoint unreachable: {e}")

        if response.status_code in (400, 401):
            raise Unauthorized(f"OAuth token request rejected ({context}): {response.text[:200]}")
        raise_for_response(response, context)
        payload = response.json()
        if payload.get("error"):
            raise Unauthorized(
                f"OAuth token request rejected ({context}): "
                f"{payload.get('error_description') or payload['error']}"
            )
        return payload

    def close(self):
        """Close the session."""
        if self._session:
            self._session.close()
            self._session = None


def grant_from_payload(payload: dict) -> TokenGrant:
    """Build a TokenGrant from a standard OAuth token response."""
    scope = payload.get("scope") or ""
    scopes = scope.replace(",", " ").split()
    return TokenGrant(
        access_token=payload["access_token"],
        refresh_token=payload.get("refresh_token"),
        expires_in=payload.get("expires_in"),
        scopes=scopes,
        token_type="oauth",
    )
