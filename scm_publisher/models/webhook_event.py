"""SCMWebhookEvent model — append-only log of inbound deliveries and manual syncs."""
import uuid
from datetime import datetime

from scm_publisher.extensions import db

PENDING = "pending"
PROCESSING = "processing"
SUCCEEDED = "succeeded"
FAILED = "failed"

TERMINAL_STATES = (SUCCEEDED, FAILED)

_TRANSITIONS = {
    PENDING: (PROCESSING, SUCCEEDED, FAILED),
    PROCESSING: (SUCCEEDED, FAILED),
    SUCCEEDED: (),
    FAILED: (),
}

# Outcomes recorded on terminal events
OUTCOME_PUBLISHED = "published"
OUTCOME_ALREADY_PUBLISHED = "already_published"
OUTCOME_VIOLATION = "violation"
OUTCOME_FILTERED = "filtered"
OUTCOME_SKIPPED = "skipped"


class InvalidTransition(Exception):
    """Raised when an event would move backwards in its state machine."""


class SCMWebhookEvent(db.Model):
    """One row per tag ref delivered by a webhook or requested by a manual sync.

    State machine: pending -> processing -> {succeeded | failed}.
    """

    __tablename__ = "scm_webhook_events"
    __table_args__ = (
        db.Index("ix_scm_webhook_events_ref", "module_source_repo_id", "ref_name", "commit_sha"),
    )

    id = db.Column(db.Uuid, primary_key=True, default=uuid.uuid4)
    module_source_repo_id = db.Column(
        db.Uuid, db.ForeignKey("scm_module_links.id", ondelete="CASCADE"), nullable=False, index=True
    )
    link = db.relationship("ModuleSCMLink", back_populates="events")

    event_type = db.Column(db.String(50), nullable=False)  # push, tag_push, manual_sync, ...
    ref_name = db.Column(db.String(255), default="")
    commit_sha = db.Column(db.String(64), default="")
    payload = db.Column(db.JSON, default=dict)

    state = db.Column(db.String(20), nullable=False, default=PENDING, index=True)
    outcome = db.Column(db.String(30))
    error_message = db.Column(db.Text)
    version_id = db.Column(db.Uuid, db.ForeignKey("scm_module_versions.id", ondelete="SET NULL"))
    retry_of = db.Column(db.Uuid, db.ForeignKey("scm_webhook_events.id", ondelete="SET NULL"))
    triggered_by = db.Column(db.Uuid, db.ForeignKey("scm_users.id", ondelete="SET NULL"))

    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    def __repr__(self):
        return f"<SCMWebhookEvent {self.event_type} {self.ref_name}@{self.commit_sha[:7] if self.commit_sha else '-'} ({self.state})>"

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES

    def transition(self, new_state: str, outcome: str = None, error_message: str = None):
        """Move to new_state, refusing regressions."""
        if new_state not in _TRANSITIONS.get(self.state, ()):
            raise InvalidTransition(f"Cannot move event {self.id} from {self.state} to {new_state}")
        self.state = new_state
        if outcome is not None:
            self.outcome = outcome
        if error_message is not None:
            self.error_message = error_message[:2000]
        self.updated_at = datetime.utcnow()

    def to_dict(self):
        return {
            "id": str(self.id),
            "module_source_repo_id": str(self.module_source_repo_id),
            "event_type": self.event_type,
            "ref_name": self.ref_name,
            "commit_sha": self.commit_sha,
            "payload": self.payload or {},
            "state": self.state,
            "outcome": self.outcome,
            "error_message": self.error_message,
            "version_id": str(self.version_id) if self.version_id else None,
            "retry_of": str(self.retry_of) if self.retry_of else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }
