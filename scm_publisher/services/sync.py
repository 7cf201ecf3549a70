"""Sync Orchestrator - the single publish routine behind webhooks and manual sync.

Handles:
- Guard -> metadata fetch -> ModuleVersion creation under the module lock
- Latest-tag selection for a manual sync without an explicit tag
- Bounded retry on platform rate limits and a total publish deadline
- Driving an SCMWebhookEvent to its terminal state
"""
import logging
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional

from celery.exceptions import SoftTimeLimitExceeded
from sqlalchemy.exc import IntegrityError

from scm_publisher.config import settings
from scm_publisher.core.errors import (
    CREDENTIAL_ERRORS,
    PublishFailed,
    ResolutionFailed,
    SCMError,
    Unauthorized,
    UpstreamError,
)
from scm_publisher.core.naming import select_latest_tag, tag_matches, version_from_tag
from scm_publisher.core.retry import Deadline, call_with_backoff
from scm_publisher.extensions import db
from scm_publisher.models import ModuleSCMLink, ModuleVersion, SCMWebhookEvent
from scm_publisher.models.webhook_event import (
    FAILED,
    OUTCOME_ALREADY_PUBLISHED,
    OUTCOME_FILTERED,
    OUTCOME_PUBLISHED,
    OUTCOME_SKIPPED,
    OUTCOME_VIOLATION,
    PENDING,
    PROCESSING,
    SUCCEEDED,
)
from scm_publisher.services import immutability
from scm_publisher.services.locks import module_lock
from scm_publisher.services.token_store import TokenStore, token_store as default_token_store

logger = logging.getLogger(__name__)

MANUAL_SYNC = "manual_sync"

_GUARD_OUTCOMES = {
    immutability.ALREADY_PUBLISHED: OUTCOME_ALREADY_PUBLISHED,
    immutability.VIOLATION: OUTCOME_VIOLATION,
}


@dataclass
class PublishResult:
    outcome: str
    version: Optional[ModuleVersion] = None
    violation: Optional[object] = None

    def to_dict(self):
        return {
            "outcome": self.outcome,
            "version_id": str(self.version.id) if self.version else None,
            "violation_id": str(self.violation.id) if self.violation else None,
        }


class SyncOrchestrator:
    """Resolve tags and publish them as module versions."""

    def __init__(self, tokens: Optional[TokenStore] = None, sleep: Callable[[float], None] = time.sleep):
        self.tokens = tokens or default_token_store
        self.sleep = sleep

    def _call(self, fn, deadline: Deadline, step: str):
        return call_with_backoff(
            fn,
            attempts=settings.SCM_RETRY_ATTEMPTS,
            base=settings.SCM_BACKOFF_BASE,
            cap=settings.SCM_BACKOFF_CAP,
            deadline=deadline,
            sleep=self.sleep,
            step=step,
        )

    # ── Publish routine ───────────────────────────────────────────

    def publish(
        self,
        link: ModuleSCMLink,
        tag_name: str,
        commit_sha: str,
        adapter,
        user_id=None,
        deadline: Optional[Deadline] = None,
    ) -> PublishResult:
        """Publish tag_name@commit_sha for the link's module.

        Check and create run under the module lock in one transaction, so
        concurrent publishes of the same tag collapse onto AlreadyPublished.
        """
        deadline = deadline or Deadline(settings.SCM_PUBLISH_DEADLINE)
        version = version_from_tag(tag_name)
        if version is None:
            raise PublishFailed(f"Tag {tag_name} is not a semantic version")

        owner, repo = link.repository_owner, link.repository_name
        module_id, link_id = link.module_id, link.id

        with module_lock(module_id, link_id):
            guard = immutability.check(module_id, tag_name, commit_sha, version=version)
            if guard.outcome != immutability.PROCEED:
                db.session.commit()
                return PublishResult(_GUARD_OUTCOMES[guard.outcome], guard.version, guard.violation)

            try:
                readme = self._call(
                    lambda: adapter.get_readme(owner, repo, commit_sha, link.repository_path), deadline, "readme fetch"
                )
                release_notes = self._call(
                    lambda: adapter.get_release_notes(owner, repo, tag_name), deadline, "release notes fetch"
                )
            except UpstreamError as e:
                raise PublishFailed(f"Could not fetch version metadata for {tag_name}: {e}") from e
            deadline.check("metadata fetch")

            module_version = ModuleVersion(
                module_id=module_id,
                version=version,
                source="scm",
                source_url=adapter.archive_url(owner, repo, commit_sha),
                readme=readme,
                release_notes=release_notes,
                tag_name=tag_name,
                commit_sha=commit_sha,
                published_by=user_id,
                published_at=datetime.utcnow(),
            )
            db.session.add(module_version)
            link.last_sync_at = datetime.utcnow()
            try:
                db.session.commit()
            except IntegrityError:
                # Another worker published this version first
                db.session.rollback()
                guard = immutability.check(module_id, tag_name, commit_sha, version=version)
                db.session.commit()
                if guard.outcome == immutability.PROCEED:
                    raise PublishFailed(f"Could not create version {version} for module {module_id}")
                return PublishResult(_GUARD_OUTCOMES[guard.outcome], guard.version, guard.violation)

        logger.info(f"Published {tag_name}@{commit_sha[:7]} as version {version} of module {module_id}")
        return PublishResult(OUTCOME_PUBLISHED, module_version)

    # ── Manual sync ───────────────────────────────────────────────

    def request_manual_sync(
        self, link: ModuleSCMLink, user_id=None, tag_name: Optional[str] = None, commit_sha: Optional[str] = None
    ) -> SCMWebhookEvent:
        """Record a manual sync as a pending event; the caller enqueues it.

        Without tag_name the newest tag matching the link's pattern is picked
        when the event is processed. Bitbucket Data Center tags and Azure
        DevOps lightweight tags carry no creation date and are ordered by
        semantic version instead.
        """
        event = SCMWebhookEvent(
            module_source_repo_id=link.id,
            event_type=MANUAL_SYNC,
            ref_name=tag_name or "",
            commit_sha=commit_sha or "",
            payload={"tag_name": tag_name, "commit_sha": commit_sha},
            state=PENDING,
            triggered_by=user_id,
        )
        db.session.add(event)
        db.session.commit()
        logger.info(f"Manual sync requested for module {link.module_id} (event {event.id})")
        return event

    def retry_event(self, event: SCMWebhookEvent, user_id=None) -> SCMWebhookEvent:
        """Requeue a failed event as a new pending event referencing it."""
        if event.state != FAILED:
            raise SCMError("Only failed events can be retried", status_code=409)
        ref_name, commit_sha = event.ref_name, event.commit_sha
        if event.event_type == MANUAL_SYNC:
            # Re-select the tag unless the operator named one
            requested = event.payload or {}
            ref_name, commit_sha = requested.get("tag_name") or "", requested.get("commit_sha") or ""
        retry = SCMWebhookEvent(
            module_source_repo_id=event.module_source_repo_id,
            event_type=event.event_type,
            ref_name=ref_name,
            commit_sha=commit_sha,
            payload=event.payload,
            state=PENDING,
            retry_of=event.id,
            triggered_by=user_id or event.triggered_by,
        )
        db.session.add(retry)
        db.session.commit()
        logger.info(f"Event {event.id} requeued as {retry.id}")
        return retry

    # ── Event processing ──────────────────────────────────────────

    def process_event(self, event_id) -> Optional[SCMWebhookEvent]:
        """Drive one event to a terminal state. Terminal events are returned as-is."""
        event = db.session.get(SCMWebhookEvent, event_id)
        if event is None:
            logger.warning(f"Event {event_id} not found")
            return None
        if event.is_terminal:
            logger.info(f"Event {event.id} already {event.state}, nothing to do")
            return event

        link = event.link
        manual = event.event_type == MANUAL_SYNC
        if not manual:
            if not tag_matches(event.ref_name, link.tag_pattern):
                event.transition(SUCCEEDED, outcome=OUTCOME_FILTERED)
                db.session.commit()
                logger.info(f"Event {event.id}: {event.ref_name} does not match {link.tag_pattern}, filtered")
                return event
            if not link.auto_publish_enabled:
                event.transition(SUCCEEDED, outcome=OUTCOME_SKIPPED)
                db.session.commit()
                logger.info(f"Event {event.id}: auto-publish disabled for module {link.module_id}, skipped")
                return event

        event.transition(PROCESSING)
        db.session.commit()

        token = None
        try:
            deadline = Deadline(settings.SCM_PUBLISH_DEADLINE)
            token = self.tokens.get_for_link(link, preferred_user_id=event.triggered_by)
            with self.tokens.client(token) as adapter:
                tag_name, commit_sha = self._resolve(event, link, adapter, deadline, manual)
                result = self.publish(
                    link, tag_name, commit_sha, adapter, user_id=event.triggered_by or token.user_id, deadline=deadline
                )
        except CREDENTIAL_ERRORS as e:
            db.session.rollback()
            if isinstance(e, Unauthorized) and token is not None and not token.reconnect_required:
                self.tokens.mark_reconnect_required(token, str(e))
            return self._fail(event_id, f"Reconnect required: {e}")
        except SoftTimeLimitExceeded:
            db.session.rollback()
            return self._fail(event_id, f"Publish exceeded its {settings.SCM_PUBLISH_DEADLINE}s deadline")
        except SCMError as e:
            db.session.rollback()
            return self._fail(event_id, f"{e.__class__.__name__}: {e}")
        except Exception as e:
            db.session.rollback()
            logger.exception(f"Unexpected error processing event {event_id}")
            return self._fail(event_id, f"PublishFailed: {e}")

        event = db.session.get(SCMWebhookEvent, event_id)
        event.version_id = result.version.id if result.version else None
        event.transition(SUCCEEDED, outcome=result.outcome)
        db.session.commit()
        logger.info(f"Event {event.id} succeeded ({result.outcome}) for {event.ref_name}@{event.commit_sha[:7]}")
        return event

    def _resolve(self, event: SCMWebhookEvent, link: ModuleSCMLink, adapter, deadline: Deadline, manual: bool):
        """Settle (tag, commit) for an event, recording them on it."""
        owner, repo = link.repository_owner, link.repository_name
        tag_name = event.ref_name
        expected_sha = event.commit_sha if manual else ""

        if manual and not tag_name:
            tags = self._call(lambda: adapter.list_tags(owner, repo), deadline, "tag listing")
            latest = select_latest_tag(tags, link.tag_pattern)
            if latest is None:
                raise ResolutionFailed(f"No tags in {owner}/{repo} match {link.tag_pattern}")
            tag_name, commit_sha = latest.tag_name, latest.target_commit
            logger.info(f"Manual sync selected latest tag {tag_name} for module {link.module_id}")
        else:
            commit_sha = self._call(lambda: adapter.resolve_tag(owner, repo, tag_name), deadline, "tag resolution")

        if expected_sha and expected_sha != commit_sha:
            raise ResolutionFailed(f"Tag {tag_name} resolves to {commit_sha}, not {expected_sha}")
        if event.commit_sha and event.commit_sha != commit_sha:
            logger.info(f"Event {event.id}: delivered sha {event.commit_sha[:7]} peeled to {commit_sha[:7]}")

        event.ref_name = tag_name
        event.commit_sha = commit_sha
        return tag_name, commit_sha

    def _fail(self, event_id, message: str) -> SCMWebhookEvent:
        event = db.session.get(SCMWebhookEvent, event_id)
        event.transition(FAILED, error_message=message)
        db.session.commit()
        logger.error(f"Event {event.id} failed: {message}")
        return event


orchestrator = SyncOrchestrator()
