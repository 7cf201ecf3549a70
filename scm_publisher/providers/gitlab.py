"""GitLab adapter - gitlab.com and self-managed GitLab, via python-gitlab."""
import logging
from contextlib import contextmanager
from typing import Optional
from urllib.parse import quote, urlencode

import gitlab
import requests

from scm_publisher.core.errors import (
    RemoteNotFound,
    ResolutionFailed,
    Unauthorized,
    UpstreamError,
    UpstreamRateLimited,
    UpstreamTimeout,
)
from scm_publisher.providers.base import (
    Branch,
    HTTPAdapter,
    Repository,
    Tag,
    TokenGrant,
    grant_from_payload,
    parse_timestamp,
)

logger = logging.getLogger(__name__)

# Surface 429 to our own backoff instead of python-gitlab's internal sleep loop
REQUEST_OPTS = {"obey_rate_limit": False}


@contextmanager
def gitlab_errors(context: str = ""):
    """Translate python-gitlab and transport errors into the SCM taxonomy."""
    where = f" ({context})" if context else ""
    try:
        yield
    except gitlab.exceptions.GitlabAuthenticationError as e:
        raise Unauthorized(f"GitLab rejected the credentials{where}; reconnect the provider") from e
    except gitlab.exceptions.GitlabError as e:
        code = getattr(e, "response_code", None)
        if code == 401 or code == 403:
            raise Unauthorized(f"Access denied by GitLab{where}; reconnect the provider") from e
        if code == 404:
            raise RemoteNotFound(f"Not found on GitLab{where}") from e
        if code == 429:
            raise UpstreamRateLimited(f"GitLab rate limit exceeded{where}") from e
        raise UpstreamError(f"GitLab error{where}: {e}") from e
    except requests.Timeout as e:
        raise UpstreamTimeout(f"GitLab timed out{where}: {e}") from e
    except requests.RequestException as e:
        raise UpstreamError(f"GitLab unreachable{where}: {e}") from e


class GitLabAdapter(HTTPAdapter):
    """
    Adapter for GitLab OAuth applications.

    Repository owner is the namespace full path (group/subgroup), repository
    name is the project path.
    """

    PROVIDER_TYPE = "gitlab"
    SCOPES = "api read_repository"

    def __init__(self, config: dict):
        super().__init__(config)
        if not self.base_url:
            self.base_url = "https://gitlab.com"
        self._gl = None

    @property
    def gl(self):
        """Lazy initialization of GitLab client."""
        if self._gl is None:
            if self.token_type == "pat":
                self._gl = gitlab.Gitlab(self.base_url, private_token=self.token, timeout=self.timeout)
            else:
                self._gl = gitlab.Gitlab(self.base_url, oauth_token=self.token, timeout=self.timeout)
        return self._gl

    def _project(self, owner: str, repo: str):
        return self.gl.projects.get(f"{owner}/{repo}", lazy=True)

    # ── OAuth ─────────────────────────────────────────────────────

    def authorization_url(self, state: str, redirect_uri: str) -> str:
        query = urlencode({
            "client_id": self.client_id,
            "redirect_uri": redirect_uri,
            "response_type": "code",
            "scope": self.SCOPES,
            "state": state,
        })
        return f"{self.base_url}/oauth/authorize?{query}"

    def exchange_code(self, code: str, redirect_uri: str) -> TokenGrant:
        payload = self.post_form(
            f"{self.base_url}/oauth/token",
            {
                "client_id": self.client_id,
                "client_secret": self.client_secret,
                "code": code,
                "grant_type": "authorization_code",
                "redirect_uri": redirect_uri,
            },
            context="code exchange",
        )
        return grant_from_payload(payload)

    def refresh(self, refresh_token: str) -> TokenGrant:
        payload = self.post_form(
            f"{self.base_url}/oauth/token",
            {
                "client_id": self.client_id,
                "client_secret": self.client_secret,
                "refresh_token": refresh_token,
                "grant_type": "refresh_token",
            },
            context="token refresh",
        )
        return grant_from_payload(payload)

    # ── Repository metadata ───────────────────────────────────────

    def list_repositories(self, search: Optional[str] = None) -> list[Repository]:
        with gitlab_errors("list repositories"):
            projects = self.gl.projects.list(
                membership=True,
                search=search or None,
                order_by="last_activity_at",
                per_page=100,
                get_all=False,
                **REQUEST_OPTS,
            )
            return [
                Repository(
                    id=str(p.id),
                    name=p.path,
                    full_name=p.path_with_namespace,
                    owner=p.namespace["full_path"],
                    description=getattr(p, "description", None) or "",
                    default_branch=getattr(p, "default_branch", None) or "main",
                    clone_url=getattr(p, "http_url_to_repo", ""),
                    html_url=getattr(p, "web_url", ""),
                    private=getattr(p, "visibility", "private") != "public",
                )
                for p in projects
            ]

    def list_tags(self, owner: str, repo: str) -> list[Tag]:
        with gitlab_errors("list tags"):
            tags = self._project(owner, repo).tags.list(get_all=True, **REQUEST_OPTS)
            result = []
            for t in tags:
                commit = t.commit or {}
                tagged_at = getattr(t, "created_at", None) or commit.get("created_at")
                result.append(Tag(
                    tag_name=t.name,
                    target_commit=commit.get("id", ""),
                    annotation_msg=getattr(t, "message", None) or None,
                    tagger_name=commit.get("author_name"),
                    tagged_at=parse_timestamp(tagged_at),
                ))
            return result

    def list_branches(self, owner: str, repo: str) -> list[Branch]:
        with gitlab_errors("list branches"):
            branches = self._project(owner, repo).branches.list(get_all=True, **REQUEST_OPTS)
            return [
                Branch(
                    branch_name=b.name,
                    head_commit=(b.commit or {}).get("id", ""),
                    is_protected=bool(getattr(b, "protected", False)),
                    is_main_branch=bool(getattr(b, "default", False)),
                )
                for b in branches
            ]

    def resolve_tag(self, owner: str, repo: str, tag: str) -> str:
        try:
            with gitlab_errors("resolve tag"):
                found = self._project(owner, repo).tags.get(tag, **REQUEST_OPTS)
        except RemoteNotFound:
            raise ResolutionFailed(f"Tag {tag} not found in {owner}/{repo}")
        commit_id = (found.commit or {}).get("id")
        if not commit_id:
            raise ResolutionFailed(f"Tag {tag} does not point to a commit")
        return commit_id

    # ── Webhooks ──────────────────────────────────────────────────

    def register_webhook(self, owner: str, repo: str, callback_url: str, secret: str) -> str:
        with gitlab_errors("register webhook"):
            hook = self._project(owner, repo).hooks.create({
                "url": callback_url,
                "token": secret,
                "push_events": False,
                "tag_push_events": True,
                "enable_ssl_verification": True,
            })
            return str(hook.id)

    def delete_webhook(self, owner: str, repo: str, webhook_id: str) -> None:
        try:
            with gitlab_errors("delete webhook"):
                self._project(owner, repo).hooks.delete(int(webhook_id))
        except RemoteNotFound:
            logger.info(f"GitLab webhook {webhook_id} on {owner}/{repo} already gone")

    # ── Version metadata ──────────────────────────────────────────

    def get_readme(self, owner: str, repo: str, ref: str, path: Optional[str] = None) -> Optional[str]:
        file_path = "README.md"
        if path:
            file_path = f"{path.strip('/')}/README.md"
        try:
            with gitlab_errors("get readme"):
                file = self._project(owner, repo).files.get(file_path=file_path, ref=ref)
                return file.decode().decode("utf-8")
        except RemoteNotFound:
            return None

    def get_release_notes(self, owner: str, repo: str, tag: str) -> Optional[str]:
        try:
            with gitlab_errors("get release"):
                release = self._project(owner, repo).releases.get(tag)
                return getattr(release, "description", None) or None
        except RemoteNotFound:
            return None

    def archive_url(self, owner: str, repo: str, ref: str) -> str:
        project_id = quote(f"{owner}/{repo}", safe="")
        return f"{self.base_url}/api/v4/projects/{project_id}/repository/archive.tar.gz?sha={quote(ref)}"

    def close(self):
        """Clean up GitLab connection."""
        super().close()
        self._gl = None
