# tests/test_adapters.py — REST adapters against canned platform responses
import json

import pytest
import requests

from scm_publisher.core.errors import (
    RemoteNotFound,
    ResolutionFailed,
    SCMError,
    Unauthorized,
    UpstreamError,
    UpstreamRateLimited,
    UpstreamTimeout,
)
from scm_publisher.core.naming import select_latest_tag
from scm_publisher.providers.azure_devops import AzureDevOpsAdapter
from scm_publisher.providers.base import raise_for_response
from scm_publisher.providers.bitbucket_dc import BitbucketDCAdapter
from scm_publisher.providers.github import GitHubAdapter


def _response(status=200, body=None, headers=None, text=None):
    response = requests.Response()
    response.status_code = status
    response.encoding = "utf-8"
    response._content = (text if text is not None else json.dumps(body or {})).encode()
    response.headers.update(headers or {})
    return response


class FakePlatform:
    """Routes (method, url) to canned responses and records what was sent."""

    def __init__(self):
        self.routes = {}
        self.sent = []

    def add(self, method, url, status=200, body=None, headers=None):
        self.routes[(method, url)] = _response(status, body, headers)

    def __call__(self, method, url, **kwargs):
        self.sent.append((method, url, kwargs))
        if (method, url) not in self.routes:
            return _response(404, {"message": "Not Found"})
        return self.routes[(method, url)]


@pytest.fixture
def platform(monkeypatch):
    fake = FakePlatform()
    monkeypatch.setattr(requests.Session, "request", fake)
    return fake


@pytest.mark.parametrize("status,headers,text,expected", [
    (401, {}, "Bad credentials", Unauthorized),
    (403, {"X-RateLimit-Remaining": "0"}, "", UpstreamRateLimited),
    (403, {}, "API rate limit exceeded for user", UpstreamRateLimited),
    (403, {}, "Resource not accessible by integration", Unauthorized),
    (404, {}, "", RemoteNotFound),
    (429, {}, "", UpstreamRateLimited),
])
def test_error_mapping(status, headers, text, expected):
    with pytest.raises(expected):
        raise_for_response(_response(status, headers=headers, text=text), context="list tags")


def test_server_error_is_upstream_error():
    with pytest.raises(UpstreamError) as excinfo:
        raise_for_response(_response(503, text="maintenance"))

    assert not isinstance(excinfo.value, RemoteNotFound)
    assert "503" in str(excinfo.value)


def test_rate_limit_carries_retry_after():
    with pytest.raises(UpstreamRateLimited) as excinfo:
        raise_for_response(_response(429, headers={"Retry-After": "7"}, text=""))

    assert excinfo.value.retry_after == 7.0


def test_timeout_maps_to_upstream_timeout(monkeypatch):
    def timeout(session, method, url, **kwargs):
        raise requests.Timeout("read timed out")

    monkeypatch.setattr(requests.Session, "request", timeout)

    with pytest.raises(UpstreamTimeout):
        GitHubAdapter({"token": "t"}).list_repositories()


def test_github_enterprise_urls():
    cloud = GitHubAdapter({})
    server = GitHubAdapter({"base_url": "https://github.example.com/"})

    assert cloud.api_url == "https://api.github.com"
    assert server.api_url == "https://github.example.com/api/v3"
    assert server.graphql_url == "https://github.example.com/api/graphql"
    assert "github.example.com/login/oauth/authorize" in server.authorization_url("s", "https://cb")


def test_github_resolve_tag_peels_annotated_tag(platform):
    repo = "https://api.github.com/repos/acme/terraform-aws-vpc"
    platform.add("GET", f"{repo}/git/ref/tags/v1.2.0", body={"object": {"type": "tag", "sha": "tagobj"}})
    platform.add("GET", f"{repo}/git/tags/tagobj", body={"object": {"type": "commit", "sha": "c0ffee"}})

    adapter = GitHubAdapter({"token": "gho_x"})

    assert adapter.resolve_tag("acme", "terraform-aws-vpc", "v1.2.0") == "c0ffee"
    assert adapter.session.headers["Authorization"] == "Bearer gho_x"


def test_github_resolve_missing_tag(platform):
    with pytest.raises(ResolutionFailed):
        GitHubAdapter({"token": "t"}).resolve_tag("acme", "terraform-aws-vpc", "v9.9.9")


def test_github_list_tags_reads_both_tag_kinds(platform):
    platform.add("POST", "https://api.github.com/graphql", body={"data": {"repository": {"refs": {
        "pageInfo": {"hasNextPage": False, "endCursor": None},
        "nodes": [
            {"name": "v1.1.0", "target": {
                "__typename": "Tag", "oid": "tagobj", "message": "Release 1.1.0",
                "tagger": {"name": "release-bot", "date": "2026-03-01T10:00:00Z"},
                "target": {"oid": "bbb222"},
            }},
            {"name": "v1.0.0", "target": {
                "__typename": "Commit", "oid": "aaa111", "committedDate": "2026-01-01T10:00:00Z",
            }},
        ],
    }}}})

    tags = GitHubAdapter({"token": "t"}).list_tags("acme", "terraform-aws-vpc")

    assert [(t.tag_name, t.target_commit) for t in tags] == [("v1.1.0", "bbb222"), ("v1.0.0", "aaa111")]
    assert tags[0].annotation_msg == "Release 1.1.0"
    assert tags[0].tagger_name == "release-bot"
    assert tags[1].tagged_at.year == 2026


def test_github_tag_dates_with_offsets_pick_newest_in_utc(platform):
    def node(name, oid, date):
        return {"name": name, "target": {
            "__typename": "Tag", "oid": f"tag-{oid}", "message": None,
            "tagger": {"name": "dev", "date": date}, "target": {"oid": oid},
        }}

    platform.add("POST", "https://api.github.com/graphql", body={"data": {"repository": {"refs": {
        "pageInfo": {"hasNextPage": False, "endCursor": None},
        "nodes": [
            node("v1.1.0", "bbb222", "2026-01-01T10:00:00+05:00"),
            node("v2.0.0", "ccc333", "2026-01-01T06:00:00Z"),
            node("v1.2.0", "ddd444", "2025-12-31T21:30:00-08:00"),
        ],
    }}}})

    tags = GitHubAdapter({"token": "t"}).list_tags("acme", "terraform-aws-vpc")

    assert [t.tagged_at.hour for t in tags] == [5, 6, 5]
    assert select_latest_tag(tags, "v*").tag_name == "v2.0.0"


def test_github_graphql_errors(platform):
    platform.add("POST", "https://api.github.com/graphql", body={"errors": [{"message": "boom"}]})

    with pytest.raises(UpstreamError):
        GitHubAdapter({"token": "t"}).list_tags("acme", "terraform-aws-vpc")


def test_github_delete_missing_webhook_is_quiet(platform):
    GitHubAdapter({"token": "t"}).delete_webhook("acme", "terraform-aws-vpc", "42")

    assert platform.sent[0][0] == "DELETE"


def test_bitbucket_requires_base_url():
    with pytest.raises(UpstreamError):
        BitbucketDCAdapter({}).api_url


def test_bitbucket_is_pat_only():
    adapter = BitbucketDCAdapter({"base_url": "https://bb.example.com"})

    with pytest.raises(SCMError) as excinfo:
        adapter.authorization_url("state", "https://cb")
    assert excinfo.value.status_code == 400


def test_bitbucket_resolve_and_register(platform):
    repo = "https://bb.example.com/rest/api/1.0/projects/INFRA/repos/terraform-aws-vpc"
    platform.add("GET", f"{repo}/tags/v1.0.0", body={"displayId": "v1.0.0", "latestCommit": "aaa111"})
    platform.add("POST", f"{repo}/webhooks", body={"id": 17})

    adapter = BitbucketDCAdapter({"base_url": "https://bb.example.com", "token": "pat"})

    assert adapter.resolve_tag("INFRA", "terraform-aws-vpc", "v1.0.0") == "aaa111"
    assert adapter.register_webhook("INFRA", "terraform-aws-vpc", "https://cb", "s3cret") == "17"
    sent = platform.sent[-1][2]["json"]
    assert sent["events"] == ["repo:refs_changed"]
    assert sent["configuration"] == {"secret": "s3cret"}


def test_bitbucket_list_tags_follows_pages(monkeypatch):
    pages = [
        {"values": [{"displayId": "v1.0.0", "latestCommit": "aaa"}], "isLastPage": False, "nextPageStart": 1},
        {"values": [{"displayId": "v1.1.0", "latestCommit": "bbb"}], "isLastPage": True},
    ]

    def paged(session, method, url, **kwargs):
        return _response(body=pages[kwargs["params"]["start"]])

    monkeypatch.setattr(requests.Session, "request", paged)

    tags = BitbucketDCAdapter({"base_url": "https://bb.example.com", "token": "pat"}).list_tags("INFRA", "vpc")

    assert [t.tag_name for t in tags] == ["v1.0.0", "v1.1.0"]


def test_azure_list_tags_dates_annotated_tags(platform):
    repo = "https://dev.azure.com/acme/Infra/_apis/git/repositories/terraform-aws-vpc"
    platform.add("GET", f"{repo}/refs", body={"value": [
        {"name": "refs/tags/v1.0.0", "objectId": "aaa111"},
        {"name": "refs/tags/v1.1.0", "objectId": "tagobj", "peeledObjectId": "bbb222"},
    ]})
    platform.add("GET", f"{repo}/annotatedtags/tagobj", body={
        "message": "Release 1.1.0",
        "taggedBy": {"name": "release-bot", "date": "2026-03-01T10:00:00.1234567+01:00"},
    })

    adapter = AzureDevOpsAdapter({"base_url": "https://dev.azure.com/acme", "token": "t"})
    lightweight, annotated = adapter.list_tags("Infra", "terraform-aws-vpc")

    assert (lightweight.target_commit, lightweight.tagged_at) == ("aaa111", None)
    assert annotated.target_commit == "bbb222"
    assert annotated.tagger_name == "release-bot"
    assert (annotated.tagged_at.hour, annotated.tagged_at.microsecond) == (9, 123456)
