"""GitHub adapter - github.com and GitHub Enterprise Server."""
import logging
from typing import Optional
from urllib.parse import quote, urlencode

from scm_publisher.core.errors import RemoteNotFound, ResolutionFailed, UpstreamError
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

MAX_PAGES = 10

TAGS_QUERY = """
query($owner: String!, $name: String!, $after: String) {
  repository(owner: $owner, name: $name) {
    refs(refPrefix: "refs/tags/", first: 100, after: $after) {
      pageInfo { hasNextPage endCursor }
      nodes {
        name
        target {
          __typename
          oid
          ... on Commit { committedDate }
          ... on Tag {
            message
            tagger { name date }
            target { oid }
          }
        }
      }
    }
  }
}
"""


class GitHubAdapter(HTTPAdapter):
    """
    Adapter for GitHub OAuth apps.

    base_url is empty for github.com, or the GitHub Enterprise Server root
    (https://github.example.com) for self-hosted instances.
    """

    PROVIDER_TYPE = "github"
    SCOPES = "repo admin:repo_hook"

    @property
    def web_url(self) -> str:
        return self.base_url or "https://github.com"

    @property
    def api_url(self) -> str:
        if not self.base_url or self.base_url.endswith("github.com"):
            return "https://api.github.com"
        return f"{self.base_url}/api/v3"

    @property
    def graphql_url(self) -> str:
        if not self.base_url or self.base_url.endswith("github.com"):
            return "https://api.github.com/graphql"
        return f"{self.base_url}/api/graphql"

    def auth_headers(self) -> dict:
        headers = super().auth_headers()
        headers["Accept"] = "application/vnd.github+json"
        headers["X-GitHub-Api-Version"] = "2022-11-28"
        return headers

    def _repo_url(self, owner: str, repo: str) -> str:
        return f"{self.api_url}/repos/{quote(owner)}/{quote(repo)}"

    # ── OAuth ─────────────────────────────────────────────────────

    def authorization_url(self, state: str, redirect_uri: str) -> str:
        query = urlencode({
            "client_id": self.client_id,
            "redirect_uri": redirect_uri,
            "scope": self.SCOPES,
            "state": state,
        })
        return f"{self.web_url}/login/oauth/authorize?{query}"

    def exchange_code(self, code: str, redirect_uri: str) -> TokenGrant:
        payload = self.post_form(
            f"{self.web_url}/login/oauth/access_token",
            {
                "client_id": self.client_id,
                "client_secret": self.client_secret,
                "code": code,
                "redirect_uri": redirect_uri,
            },
            context="code exchange",
        )
        return grant_from_payload(payload)

    def refresh(self, refresh_token: str) -> TokenGrant:
        payload = self.post_form(
            f"{self.web_url}/login/oauth/access_token",
            {
                "client_id": self.client_id,
                "client_secret": self.client_secret,
                "grant_type": "refresh_token",
                "refresh_token": refresh_token,
            },
            context="token refresh",
        )
        return grant_from_payload(payload)

    # ── Repository metadata ───────────────────────────────────────

    def _paginate(self, url: str, params: Optional[dict] = None, context: str = "") -> list:
        """Follow Link: rel="next" headers up to MAX_PAGES."""
        items = []
        params = dict(params or {})
        params.setdefault("per_page", 100)
        for _ in range(MAX_PAGES):
            response = self.request("GET", url, context=context, params=params)
            items.extend(response.json())
            next_link = response.links.get("next", {}).get("url")
            if not next_link:
                break
            url, params = next_link, None
        return items

    def list_repositories(self, search: Optional[str] = None) -> list[Repository]:
        data = self._paginate(
            f"{self.api_url}/user/repos",
            {"sort": "updated", "affiliation": "owner,collaborator,organization_member"},
            context="list repositories",
        )
        repos = []
        for item in data:
            if search and search.lower() not in item["name"].lower():
                continue
            repos.append(Repository(
                id=str(item["id"]),
                name=item["name"],
                full_name=item["full_name"],
                owner=item["owner"]["login"],
                description=item.get("description") or "",
                default_branch=item.get("default_branch") or "main",
                clone_url=item.get("clone_url", ""),
                html_url=item.get("html_url", ""),
                private=bool(item.get("private")),
            ))
        return repos

    def list_tags(self, owner: str, repo: str) -> list[Tag]:
        tags = []
        after = None
        for _ in range(MAX_PAGES):
            response = self.request(
                "POST",
                self.graphql_url,
                context="list tags",
                json={"query": TAGS_QUERY, "variables": {"owner": owner, "name": repo, "after": after}},
            )
            body = response.json()
            if body.get("errors"):
                raise UpstreamError(f"GitHub GraphQL error: {body['errors'][0].get('message')}")
            repository = (body.get("data") or {}).get("repository")
            if repository is None:
                raise RemoteNotFound(f"Repository {owner}/{repo} not found")

            refs = repository["refs"]
            for node in refs["nodes"]:
                target = node["target"]
                if target["__typename"] == "Tag":
                    tagger = target.get("tagger") or {}
                    tags.append(Tag(
                        tag_name=node["name"],
                        target_commit=target["target"]["oid"],
                        annotation_msg=target.get("message"),
                        tagger_name=tagger.get("name"),
                        tagged_at=parse_timestamp(tagger.get("date")),
                    ))
                else:
                    tags.append(Tag(
                        tag_name=node["name"],
                        target_commit=target["oid"],
                        tagged_at=parse_timestamp(target.get("committedDate")),
                    ))

            if not refs["pageInfo"]["hasNextPage"]:
                break
            after = refs["pageInfo"]["endCursor"]
        return tags

    def list_branches(self, owner: str, repo: str) -> list[Branch]:
        info = self.get_json(self._repo_url(owner, repo), context="get repository")
        default_branch = info.get("default_branch")
        data = self._paginate(f"{self._repo_url(owner, repo)}/branches", context="list branches")
        return [
            Branch(
                branch_name=item["name"],
                head_commit=item["commit"]["sha"],
                is_protected=bool(item.get("protected")),
                is_main_branch=item["name"] == default_branch,
            )
            for item in data
        ]

    def resolve_tag(self, owner: str, repo: str, tag: str) -> str:
        try:
            ref = self.get_json(
                f"{self._repo_url(owner, repo)}/git/ref/tags/{quote(tag)}", context="resolve tag"
            )
            obj = ref["object"]
            # Peel annotated tags (possibly nested) down to the commit
            for _ in range(5):
                if obj["type"] != "tag":
                    break
                obj = self.get_json(
                    f"{self._repo_url(owner, repo)}/git/tags/{obj['sha']}", context="peel tag"
                )["object"]
        except RemoteNotFound:
            raise ResolutionFailed(f"Tag {tag} not found in {owner}/{repo}")

        if obj["type"] != "commit":
            raise ResolutionFailed(f"Tag {tag} does not point to a commit")
        return obj["sha"]

    # ── Webhooks ──────────────────────────────────────────────────

    def register_webhook(self, owner: str, repo: str, callback_url: str, secret: str) -> str:
        hook = self.request(
            "POST",
            f"{self._repo_url(owner, repo)}/hooks",
            context="register webhook",
            json={
                "name": "web",
                "active": True,
                "events": ["push"],
                "config": {
                    "url": callback_url,
                    "content_type": "json",
                    "secret": secret,
                    "insecure_ssl": "0",
                },
            },
        ).json()
        return str(hook["id"])

    def delete_webhook(self, owner: str, repo: str, webhook_id: str) -> None:
        try:
            self.request(
                "DELETE", f"{self._repo_url(owner, repo)}/hooks/{webhook_id}", context="delete webhook"
            )
        except RemoteNotFound:
            logger.info(f"GitHub webhook {webhook_id} on {owner}/{repo} already gone")

    # ── Version metadata ──────────────────────────────────────────

    def get_readme(self, owner: str, repo: str, ref: str, path: Optional[str] = None) -> Optional[str]:
        url = f"{self._repo_url(owner, repo)}/readme"
        if path:
            url = f"{url}/{quote(path.strip('/'))}"
        try:
            response = self.request(
                "GET", url, context="get readme",
                params={"ref": ref},
                headers={"Accept": "application/vnd.github.raw+json"},
            )
        except RemoteNotFound:
            return None
        return response.text

    def get_release_notes(self, owner: str, repo: str, tag: str) -> Optional[str]:
        try:
            release = self.get_json(
                f"{self._repo_url(owner, repo)}/releases/tags/{quote(tag)}", context="get release"
            )
        except RemoteNotFound:
            return None
        return release.get("body") or None

    def archive_url(self, owner: str, repo: str, ref: str) -> str:
        return f"{self._repo_url(owner, repo)}/tarball/{quote(ref)}"
