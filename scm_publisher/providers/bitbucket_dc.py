"""Bitbucket Data Center adapter - personal access tokens, REST API 1.0."""
import logging
from typing import Optional
from urllib.parse import quote

from scm_publisher.core.errors import RemoteNotFound, ResolutionFailed, SCMError, UpstreamError
from scm_publisher.providers.base import Branch, HTTPAdapter, Repository, Tag, TokenGrant

logger = logging.getLogger(__name__)

PAGE_LIMIT = 100
MAX_PAGES = 10


class BitbucketDCAdapter(HTTPAdapter):
    """
    Adapter for self-hosted Bitbucket Data Center / Server.

    Authenticates with a user-supplied HTTP access token, so the OAuth
    operations are unsupported. Repository owner is the project key,
    repository name is the repository slug.
    """

    PROVIDER_TYPE = "bitbucket_dc"

    @property
    def api_url(self) -> str:
        if not self.base_url:
            raise UpstreamError("Bitbucket Data Center base_url is not configured")
        return f"{self.base_url}/rest/api/1.0"

    def _repo_url(self, owner: str, repo: str) -> str:
        return f"{self.api_url}/projects/{quote(owner)}/repos/{quote(repo)}"

    # ── OAuth ─────────────────────────────────────────────────────

    def authorization_url(self, state: str, redirect_uri: str) -> str:
        raise SCMError("Bitbucket Data Center uses personal access tokens, not OAuth", status_code=400)

    def exchange_code(self, code: str, redirect_uri: str) -> TokenGrant:
        raise SCMError("Bitbucket Data Center uses personal access tokens, not OAuth", status_code=400)

    def refresh(self, refresh_token: str) -> TokenGrant:
        raise SCMError("Personal access tokens cannot be refreshed", status_code=400)

    # ── Repository metadata ───────────────────────────────────────

    def _paged(self, url: str, params: Optional[dict] = None, context: str = "") -> list[dict]:
        """Walk start/limit pages until isLastPage."""
        values = []
        params = dict(params or {})
        params["limit"] = PAGE_LIMIT
        start = 0
        for _ in range(MAX_PAGES):
            params["start"] = start
            page = self.get_json(url, context=context, params=params)
            values.extend(page.get("values", []))
            if page.get("isLastPage", True):
                break
            start = page.get("nextPageStart", start + PAGE_LIMIT)
        return values

    def list_repositories(self, search: Optional[str] = None) -> list[Repository]:
        params = {"name": search} if search else {}
        repos = []
        for item in self._paged(f"{self.api_url}/repos", params, context="list repositories"):
            links = item.get("links") or {}
            clone = next(
                (c["href"] for c in links.get("clone", []) if c.get("name") in ("http", "https")), ""
            )
            html = (links.get("self") or [{}])[0].get("href", "")
            repos.append(Repository(
                id=str(item["id"]),
                name=item["slug"],
                full_name=f"{item['project']['key']}/{item['slug']}",
                owner=item["project"]["key"],
                description=item.get("description") or "",
                default_branch="main",
                clone_url=clone,
                html_url=html,
                private=not item.get("public", False),
            ))
        return repos

    def list_tags(self, owner: str, repo: str) -> list[Tag]:
        # No tag dates in this API; callers fall back to version order
        return [
            Tag(tag_name=item["displayId"], target_commit=item["latestCommit"])
            for item in self._paged(
                f"{self._repo_url(owner, repo)}/tags", {"orderBy": "MODIFICATION"}, context="list tags"
            )
        ]

    def list_branches(self, owner: str, repo: str) -> list[Branch]:
        return [
            Branch(
                branch_name=item["displayId"],
                head_commit=item["latestCommit"],
                is_main_branch=bool(item.get("isDefault")),
            )
            for item in self._paged(f"{self._repo_url(owner, repo)}/branches", context="list branches")
        ]

    def resolve_tag(self, owner: str, repo: str, tag: str) -> str:
        try:
            item = self.get_json(f"{self._repo_url(owner, repo)}/tags/{quote(tag)}", context="resolve tag")
        except RemoteNotFound:
            raise ResolutionFailed(f"Tag {tag} not found in {owner}/{repo}")
        return item["latestCommit"]

    # ── Webhooks ──────────────────────────────────────────────────

    def register_webhook(self, owner: str, repo: str, callback_url: str, secret: str) -> str:
        hook = self.request(
            "POST",
            f"{self._repo_url(owner, repo)}/webhooks",
            context="register webhook",
            json={
                "name": "scm-publisher",
                "url": callback_url,
                "active": True,
                "events": ["repo:refs_changed"],
                "configuration": {"secret": secret},
            },
        ).json()
        return str(hook["id"])

    def delete_webhook(self, owner: str, repo: str, webhook_id: str) -> None:
        try:
            self.request("DELETE", f"{self._repo_url(owner, repo)}/webhooks/{webhook_id}", context="delete webhook")
        except RemoteNotFound:
            logger.info(f"Bitbucket webhook {webhook_id} on {owner}/{repo} already gone")

    # ── Version metadata ──────────────────────────────────────────

    def get_readme(self, owner: str, repo: str, ref: str, path: Optional[str] = None) -> Optional[str]:
        file_path = f"{path.strip('/')}/README.md" if path else "README.md"
        try:
            response = self.request(
                "GET",
                f"{self._repo_url(owner, repo)}/raw/{quote(file_path)}",
                context="get readme",
                params={"at": ref},
                headers={"Accept": "text/plain"},
            )
        except RemoteNotFound:
            return None
        return response.text

    def archive_url(self, owner: str, repo: str, ref: str) -> str:
        return f"{self._repo_url(owner, repo)}/archive?at={quote(ref)}&format=tgz"
