"""Immutability Guard - a published tag never moves.

check() compares a (tag, commit) about to be published against what was
already published for the module. It never mutates a ModuleVersion; a
conflict is persisted as an ImmutabilityViolation for operator review.
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from scm_publisher.extensions import db
from scm_publisher.models import ImmutabilityViolation, ModuleVersion

logger = logging.getLogger(__name__)

PROCEED = "proceed"
ALREADY_PUBLISHED = "already_published"
VIOLATION = "violation"


@dataclass
class GuardResult:
    outcome: str
    version: Optional[ModuleVersion] = None
    violation: Optional[ImmutabilityViolation] = None


def _published(module_id, tag_name: str, version: Optional[str]) -> Optional[ModuleVersion]:
    existing = (
        ModuleVersion.query
        .filter_by(module_id=module_id, tag_name=tag_name)
        .order_by(ModuleVersion.published_at.desc())
        .first()
    )
    if existing is None and version:
        # v1.2.0 and 1.2.0 publish the same version
        existing = ModuleVersion.query.filter_by(module_id=module_id, version=version).first()
    return existing


def check(module_id, tag_name: str, commit_sha: str, version: Optional[str] = None) -> GuardResult:
    """Proceed, AlreadyPublished or Violation for publishing tag_name at commit_sha.

    Must run under the module lock, in the transaction that creates the
    version. The violation row is added to the session, not committed.
    """
    existing = _published(module_id, tag_name, version)
    if existing is None:
        return GuardResult(PROCEED)

    if existing.commit_sha == commit_sha:
        logger.info(f"{tag_name}@{commit_sha[:7]} already published as {existing.version}")
        return GuardResult(ALREADY_PUBLISHED, version=existing)

    # One open violation per (version, new commit)
    violation = ImmutabilityViolation.query.filter_by(
        module_version_id=existing.id, new_commit_sha=commit_sha, acknowledged=False
    ).first()
    if violation is None:
        violation = ImmutabilityViolation(
            module_version_id=existing.id,
            tag_name=tag_name,
            original_commit_sha=existing.commit_sha or "",
            new_commit_sha=commit_sha,
        )
        db.session.add(violation)
        db.session.flush()
        logger.warning(
            f"Immutability violation on module {module_id}: {tag_name} was published at "
            f"{(existing.commit_sha or '')[:7]}, now points to {commit_sha[:7]}"
        )
    return GuardResult(VIOLATION, version=existing, violation=violation)


def acknowledge(violation: ImmutabilityViolation, user_id, note: Optional[str] = None) -> ImmutabilityViolation:
    """Operator sign-off on a violation; the published version stays untouched."""
    if violation.acknowledged:
        return violation
    violation.acknowledged = True
    violation.acknowledged_by = user_id
    violation.acknowledged_at = datetime.utcnow()
    violation.note = note
    db.session.commit()
    logger.info(f"Violation {violation.id} on {violation.tag_name} acknowledged by {user_id}")
    return violation
