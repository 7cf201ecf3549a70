"""Azure DevOps adapter - Azure Repos via Microsoft Entra ID OAuth."""
import base64
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

API_VERSION = "7.1"

# Azure DevOps resource id; offline_access yields a refresh token
SCOPES = "499b84ac-1321-427f-aa17-267ca6975798/.default offline_access"

LOGIN_URL = "https://login.microsoftonline.com"

# Service hooks authenticate to us with basic auth; the password is the link secret
WEBHOOK_USERNAME = "scm-publisher"


class AzureDevOpsAdapter(HTTPAdapter):
    """
    Adapter for Azure DevOps Services and Server.

    base_url is the organization URL (https://dev.azure.com/<organization>).
    Repository owner is the project name.
    """

    PROVIDER_TYPE = "azuredevops"

    @property
    def org_url(self) -> str:
        if not self.base_url:
            raise UpstreamError("Azure DevOps organization URL (base_url) is not configured")
        return self.base_url

    @property
    def token_url(self) -> str:
        return f"{LOGIN_URL}/{self.tenant_id or 'common'}/oauth2/v2.0/token"

    def auth_headers(self) -> dict:
        if self.token and self.token_type == "pat":
            encoded = base64.b64encode(f":{self.token}".encode()).decode()
            return {"Authorization": f"Basic {encoded}"}
        return super().auth_headers()

    def _repo_url(self, owner: str, repo: str) -> str:
        return f"{self.org_url}/{quote(owner)}/_apis/git/repositories/{quote(repo)}"

    def _params(self, **extra) -> dict:
        params = {"api-version": API_VERSION}
        params.update(extra)
        return params

    # ── OAuth ─────────────────────────────────────────────────────

    def authorization_url(self, state: str, redirect_uri: str) -> str:
        query = urlencode({
            "client_id": self.client_id,
            "response_type": "code",
            "redirect_uri": redirect_uri,
            "response_mode": "query",
            "scope": SCOPES,
            "state": state,
        })
        return f"{LOGIN_URL}/{self.tenant_id or 'common'}/oauth2/v2.0/authorize?{query}"

    def exchange_code(self, code: str, redirect_uri: str) -> TokenGrant:
        payload = self.post_form(
            self.token_url,
            {
                "client_id": self.client_id,
                "client_secret": self.client_secret,
                "grant_type": "authorization_code",
                "code": code,
                "redirect_uri": redirect_uri,
                "scope": SCOPES,
            },
            context="code exchange",
        )
        return grant_from_payload(payload)

    def refresh(self, refresh_token: str) -> TokenGrant:
        payload = self.post_form(
            self.token_url,
            {
                "client_id": self.client_id,
                "client_secret": self.client_secret,
                "grant_type": "refresh_token",
                "refresh_token": refresh_token,
                "scope": SCOPES,
            },
            context="token refresh",
        )
        return grant_from_payload(payload)

    # ── Repository metadata ───────────────────────────────────────

    def list_repositories(self, search: Optional[str] = None) -> list[Repository]:
        data = self.get_json(
            f"{self.org_url}/_apis/git/repositories", context="list repositories", params=self._params()
        )
        repos = []
        for item in data.get("value", []):
            if search and search.lower() not in item["name"].lower():
                continue
            project = item.get("project") or {}
            default_ref = item.get("defaultBranch") or "refs/heads/main"
            repos.append(Repository(
                id=item["id"],
                name=item["name"],
                full_name=f"{project.get('name', '')}/{item['name']}",
                owner=project.get("name", ""),
                description=project.get("description") or "",
                default_branch=default_ref.replace("refs/heads/", "", 1),
                clone_url=item.get("remoteUrl", ""),
                html_url=item.get("webUrl", ""),
                private=project.get("visibility", "private") != "public",
            ))
        return repos

    def _refs(self, owner: str, repo: str, ref_filter: str, context: str) -> list[dict]:
        items = []
        continuation = None
        while True:
            params = self._params(filter=ref_filter, peelTags="true")
            if continuation:
                params["continuationToken"] = continuation
            response = self.request("GET", f"{self._repo_url(owner, repo)}/refs", context=context, params=params)
            items.extend(response.json().get("value", []))
            continuation = response.headers.get("x-ms-continuationtoken")
            if not continuation:
                return items

    def list_tags(self, owner: str, repo: str) -> list[Tag]:
        tags = []
        for ref in self._refs(owner, repo, "tags/", "list tags"):
            tag = Tag(
                tag_name=ref["name"].replace("refs/tags/", "", 1),
                target_commit=ref.get("peeledObjectId") or ref["objectId"],
            )
            # Only annotated tags carry a date; lightweight ones fall back to version order
            if ref.get("peeledObjectId"):
                annotated = self.get_json(
                    f"{self._repo_url(owner, repo)}/annotatedtags/{ref['objectId']}",
                    context="get annotated tag",
                    params=self._params(),
                )
                tagger = annotated.get("taggedBy") or {}
                tag.annotation_msg = annotated.get("message") or None
                tag.tagger_name = tagger.get("name")
                tag.tagged_at = parse_timestamp(tagger.get("date"))
            tags.append(tag)
        return tags

    def list_branches(self, owner: str, repo: str) -> list[Branch]:
        info = self.get_json(self._repo_url(owner, repo), context="get repository", params=self._params())
        default_ref = info.get("defaultBranch")
        return [
            Branch(
                branch_name=ref["name"].replace("refs/heads/", "", 1),
                head_commit=ref["objectId"],
                is_protected=bool(ref.get("isLocked")),
                is_main_branch=ref["name"] == default_ref,
            )
            for ref in self._refs(owner, repo, "heads/", "list branches")
        ]

    def resolve_tag(self, owner: str, repo: str, tag: str) -> str:
        try:
            refs = self._refs(owner, repo, f"tags/{tag}", "resolve tag")
        except RemoteNotFound:
            raise ResolutionFailed(f"Repository {owner}/{repo} not found")
        # The filter is a prefix match
        for ref in refs:
            if ref["name"] == f"refs/tags/{tag}":
                return ref.get("peeledObjectId") or ref["objectId"]
        raise ResolutionFailed(f"Tag {tag} not found in {owner}/{repo}")

    # ── Webhooks ──────────────────────────────────────────────────

    def register_webhook(self, owner: str, repo: str, callback_url: str, secret: str) -> str:
        info = self.get_json(self._repo_url(owner, repo), context="get repository", params=self._params())
        subscription = self.request(
            "POST",
            f"{self.org_url}/_apis/hooks/subscriptions",
            context="register webhook",
            params=self._params(),
            json={
                "publisherId": "tfs",
                "eventType": "git.push",
                "resourceVersion": "1.0",
                "consumerId": "webHooks",
                "consumerActionId": "httpRequest",
                "publisherInputs": {
                    "projectId": info["project"]["id"],
                    "repository": info["id"],
                },
                "consumerInputs": {
                    "url": callback_url,
                    "basicAuthUsername": WEBHOOK_USERNAME,
                    "basicAuthPassword": secret,
                },
            },
        ).json()
        return subscription["id"]

    def delete_webhook(self, owner: str, repo: str, webhook_id: str) -> None:
        try:
            self.request(
                "DELETE",
                f"{self.org_url}/_apis/hooks/subscriptions/{webhook_id}",
                context="delete webhook",
                params=self._params(),
            )
        except RemoteNotFound:
            logger.info(f"Azure DevOps subscription {webhook_id} already gone")

    # ── Version metadata ──────────────────────────────────────────

    def get_readme(self, owner: str, repo: str, ref: str, path: Optional[str] = None) -> Optional[str]:
        file_path = f"/{path.strip('/')}/README.md" if path else "/README.md"
        try:
            item = self.get_json(
                f"{self._repo_url(owner, repo)}/items",
                context="get readme",
                params=self._params(**{
                    "path": file_path,
                    "includeContent": "true",
                    "versionDescriptor.version": ref,
                    "versionDescriptor.versionType": "commit",
                }),
            )
        except RemoteNotFound:
            return None
        return item.get("content")

    def archive_url(self, owner: str, repo: str, ref: str) -> str:
        query = urlencode(self._params(**{
            "path": "/",
            "$format": "zip",
            "download": "true",
            "versionDescriptor.version": ref,
            "versionDescriptor.versionType": "commit",
        }))
        return f"{self._repo_url(owner, repo)}/items?{query}"
