"""Module naming convention and tag/version helpers."""
import re
from datetime import datetime
from fnmatch import fnmatchcase
from typing import Iterable, Optional

# terraform-<system>-<name>
MODULE_REPO_RE = r"^terraform-{system}-[a-z0-9][a-z0-9-]*$"
ANY_MODULE_REPO = re.compile(r"^terraform-([a-z0-9]+)-([a-z0-9][a-z0-9-]*)$")

SEMVER_RE = re.compile(
    r"^(0|[1-9]\d*)\.(0|[1-9]\d*)\.(0|[1-9]\d*)"
    r"(?:-((?:0|[1-9]\d*|\d*[a-zA-Z-][0-9a-zA-Z-]*)(?:\.(?:0|[1-9]\d*|\d*[a-zA-Z-][0-9a-zA-Z-]*))*))?"
    r"(?:\+([0-9a-zA-Z-]+(?:\.[0-9a-zA-Z-]+)*))?$"
)


def is_module_repository(name: str, system: Optional[str] = None) -> bool:
    if system:
        return re.match(MODULE_REPO_RE.format(system=re.escape(system)), name) is not None
    return ANY_MODULE_REPO.match(name) is not None


def filter_module_repositories(repositories: Iterable, system: Optional[str] = None) -> list:
    """Keep repositories whose name follows terraform-<system>-<name>."""
    return [r for r in repositories if is_module_repository(r.name, system)]


def tag_matches(tag_name: str, pattern: Optional[str]) -> bool:
    """Glob match of a tag against a link's tag_pattern (case-sensitive)."""
    if not pattern:
        return True
    return fnmatchcase(tag_name, pattern)


def version_from_tag(tag_name: str) -> Optional[str]:
    """Derive the semantic version from a tag, or None when it is not semver."""
    candidate = tag_name[1:] if tag_name[:1] in ("v", "V") else tag_name
    if SEMVER_RE.match(candidate):
        return candidate
    return None


def _semver_key(version: str):
    m = SEMVER_RE.match(version)
    major, minor, patch, pre = int(m.group(1)), int(m.group(2)), int(m.group(3)), m.group(4)
    # Releases sort after their pre-releases
    if pre is None:
        pre_key = (1,)
    else:
        pre_key = (0,) + tuple(
            (0, int(part), "") if part.isdigit() else (1, 0, part) for part in pre.split(".")
        )
    return (major, minor, patch, pre_key)


def select_latest_tag(tags: Iterable, pattern: Optional[str] = None):
    """Pick the newest tag matching pattern.

    Tags with a creation timestamp are ordered by it; semantic version order
    breaks ties and orders tags the platform reports without one.
    """
    candidates = [
        t for t in tags
        if tag_matches(t.tag_name, pattern) and version_from_tag(t.tag_name) is not None
    ]
    if not candidates:
        return None

    def key(tag):
        return (
            tag.tagged_at or datetime.min,
            _semver_key(version_from_tag(tag.tag_name)),
        )

    return max(candidates, key=key)
