# tests/test_naming_retry.py — Tag/version helpers, backoff and the publish deadline
from datetime import datetime

import pytest

from scm_publisher.core.errors import PublishFailed, UpstreamRateLimited, UpstreamTimeout
from scm_publisher.core.naming import (
    filter_module_repositories,
    is_module_repository,
    select_latest_tag,
    tag_matches,
    version_from_tag,
)
from scm_publisher.core.retry import Deadline, backoff_delay, call_with_backoff
from scm_publisher.providers.base import Repository, Tag, parse_timestamp

from tests.conftest import tagged


@pytest.mark.parametrize("tag,expected", [
    ("v1.2.0", "1.2.0"),
    ("V1.2.0", "1.2.0"),
    ("1.2.0", "1.2.0"),
    ("v1.2.0-rc.1", "1.2.0-rc.1"),
    ("v1.2.0+build.5", "1.2.0+build.5"),
    ("v1.2", None),
    ("vnext", None),
    ("release-1.0.0", None),
    ("v01.2.0", None),
])
def test_version_from_tag(tag, expected):
    assert version_from_tag(tag) == expected


def test_tag_matches_glob():
    assert tag_matches("v1.0.0", "v*")
    assert not tag_matches("release-1", "v*")
    assert not tag_matches("V1.0.0", "v*")
    assert tag_matches("anything", "")
    assert tag_matches("v2.1.0", "v2.*")


def test_module_repository_naming():
    assert is_module_repository("terraform-aws-vpc")
    assert is_module_repository("terraform-aws-vpc", "aws")
    assert not is_module_repository("terraform-aws-vpc", "azurerm")
    assert not is_module_repository("website")

    repos = [Repository(id=str(i), name=n, full_name=f"acme/{n}", owner="acme")
             for i, n in enumerate(["terraform-aws-vpc", "terraform-azurerm-vnet", "docs"])]
    assert [r.name for r in filter_module_repositories(repos, "aws")] == ["terraform-aws-vpc"]


def test_select_latest_by_creation_time():
    tags = [
        Tag("v1.0.0", "a", tagged_at=tagged(1)),
        Tag("v1.1.0", "b", tagged_at=tagged(2)),
        Tag("v2.0.0", "c", tagged_at=tagged(3)),
    ]
    assert select_latest_tag(tags, "v*").tag_name == "v2.0.0"


def test_select_latest_compares_offsets_in_utc():
    # 10:00+05:00 is 05:00 UTC, an hour before v2.0.0
    tags = [
        Tag("v1.1.0", "a", tagged_at=parse_timestamp("2026-01-01T10:00:00+05:00")),
        Tag("v2.0.0", "b", tagged_at=parse_timestamp("2026-01-01T06:00:00Z")),
    ]
    assert select_latest_tag(tags, "v*").tag_name == "v2.0.0"


@pytest.mark.parametrize("value,expected", [
    ("2026-01-01T06:00:00Z", datetime(2026, 1, 1, 6, 0)),
    ("2026-01-01T10:00:00+05:00", datetime(2026, 1, 1, 5, 0)),
    ("2025-12-31T22:30:00-08:00", datetime(2026, 1, 1, 6, 30)),
    ("2026-01-01T06:00:00.1234567Z", datetime(2026, 1, 1, 6, 0, 0, 123456)),
    ("2026-01-01T06:00:00", datetime(2026, 1, 1, 6, 0)),
    ("yesterday", None),
    (None, None),
])
def test_parse_timestamp_normalizes_to_utc(value, expected):
    assert parse_timestamp(value) == expected


def test_select_latest_falls_back_to_semver_order():
    tags = [Tag("v1.10.0", "a"), Tag("v1.9.0", "b"), Tag("v1.10.0-rc.1", "c"), Tag("vnext", "d")]
    assert select_latest_tag(tags, "v*").tag_name == "v1.10.0"


def test_select_latest_none_matching():
    assert select_latest_tag([Tag("release-1", "a")], "v*") is None
    assert select_latest_tag([], "v*") is None


def test_backoff_delay_doubles_and_caps():
    assert [backoff_delay(n, 1.0, 30.0) for n in range(1, 7)] == [1.0, 2.0, 4.0, 8.0, 16.0, 30.0]
    assert backoff_delay(1, 1.0, 30.0, retry_after=10) == 10
    assert backoff_delay(1, 1.0, 30.0, retry_after=120) == 30.0


class Flaky:
    def __init__(self, failures, retry_after=None):
        self.failures = failures
        self.retry_after = retry_after
        self.calls = 0

    def __call__(self):
        self.calls += 1
        if self.calls <= self.failures:
            raise UpstreamRateLimited(retry_after=self.retry_after)
        return "ok"


def test_call_with_backoff_recovers():
    sleeps = []
    fn = Flaky(2)
    assert call_with_backoff(fn, attempts=3, sleep=sleeps.append) == "ok"
    assert fn.calls == 3
    assert sleeps == [1.0, 2.0]


def test_call_with_backoff_gives_up():
    sleeps = []
    fn = Flaky(5)
    with pytest.raises(PublishFailed):
        call_with_backoff(fn, attempts=3, sleep=sleeps.append, step="tag listing")
    assert fn.calls == 3


def test_call_with_backoff_respects_deadline():
    now = [0.0]
    deadline = Deadline(5, clock=lambda: now[0])
    fn = Flaky(1, retry_after=10)
    with pytest.raises(UpstreamTimeout):
        call_with_backoff(fn, attempts=3, deadline=deadline, sleep=lambda s: None)
    assert fn.calls == 1


def test_other_errors_are_not_retried():
    def boom():
        raise UpstreamTimeout("slow")

    with pytest.raises(UpstreamTimeout):
        call_with_backoff(boom, sleep=lambda s: pytest.fail("should not sleep"))


def test_deadline_expiry():
    now = [100.0]
    deadline = Deadline(45, clock=lambda: now[0])
    deadline.check("start")
    assert deadline.remaining() == 45
    now[0] = 146.0
    assert deadline.expired
    with pytest.raises(UpstreamTimeout, match="during metadata fetch"):
        deadline.check("metadata fetch")
