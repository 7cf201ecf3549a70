"""WebhookCleanup model — platform webhooks left behind by a failed unlink."""
import uuid
from datetime import datetime

from scm_publisher.extensions import db


class WebhookCleanup(db.Model):
    """Queued deregistration retried by the reconciler task."""

    __tablename__ = "scm_webhook_cleanups"

    id = db.Column(db.Uuid, primary_key=True, default=uuid.uuid4)
    provider_id = db.Column(
        db.Uuid, db.ForeignKey("scm_providers.id", ondelete="CASCADE"), nullable=False, index=True
    )
    provider = db.relationship("SCMProvider")
    repository_owner = db.Column(db.String(200), nullable=False)
    repository_name = db.Column(db.String(200), nullable=False)
    webhook_id = db.Column(db.String(100), nullable=False)
    requested_by = db.Column(db.Uuid, db.ForeignKey("scm_users.id", ondelete="SET NULL"))

    # Status: pending, done, abandoned
    state = db.Column(db.String(20), nullable=False, default="pending", index=True)
    attempts = db.Column(db.Integer, nullable=False, default=0)
    last_error = db.Column(db.Text)
    next_attempt_at = db.Column(db.DateTime, default=datetime.utcnow)
    created_at = db.Column(db.DateTime, server_default=db.func.now())
    updated_at = db.Column(db.DateTime, server_default=db.func.now(), onupdate=db.func.now())

    def __repr__(self):
        return f"<WebhookCleanup {self.repository_owner}/{self.repository_name}#{self.webhook_id} ({self.state})>"

    def to_dict(self):
        return {
            "id": str(self.id),
            "provider_id": str(self.provider_id),
            "repository_owner": self.repository_owner,
            "repository_name": self.repository_name,
            "webhook_id": self.webhook_id,
            "state": self.state,
            "attempts": self.attempts,
            "last_error": self.last_error,
            "next_attempt_at": self.next_attempt_at.isoformat() if self.next_attempt_at else None,
        }
