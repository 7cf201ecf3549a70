"""SCMOAuthToken model - per-user credentials for an SCM provider."""
import uuid
from datetime import datetime

from scm_publisher.core import crypto
from scm_publisher.extensions import db


class SCMOAuthToken(db.Model):
    """OAuth token or personal access token, encrypted at rest.

    At most one row per (user, provider); saving a new token overwrites it.
    """

    __tablename__ = "scm_oauth_tokens"
    __table_args__ = (
        db.UniqueConstraint("user_id", "provider_id", name="uq_scm_token_user_provider"),
    )

    id = db.Column(db.Uuid, primary_key=True, default=uuid.uuid4)
    user_id = db.Column(
        db.Uuid, db.ForeignKey("scm_users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    provider_id = db.Column(
        db.Uuid, db.ForeignKey("scm_providers.id", ondelete="CASCADE"), nullable=False, index=True
    )
    provider = db.relationship("SCMProvider", back_populates="tokens")

    token_type = db.Column(db.String(10), nullable=False, default="oauth")  # oauth | pat
    access_token_encrypted = db.Column(db.Text, nullable=False)
    refresh_token_encrypted = db.Column(db.Text)
    scopes = db.Column(db.JSON, default=list)
    expires_at = db.Column(db.DateTime)

    # Set when the platform rejected the token; cleared by saving a new one
    reconnect_required = db.Column(db.Boolean, default=False)

    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    def __repr__(self):
        return f"<SCMOAuthToken user={self.user_id} provider={self.provider_id} ({self.token_type})>"

    @property
    def access_token(self) -> str:
        return crypto.decrypt(self.access_token_encrypted) or ""

    @access_token.setter
    def access_token(self, value: str):
        self.access_token_encrypted = crypto.encrypt(value)

    @property
    def refresh_token(self):
        return crypto.decrypt(self.refresh_token_encrypted)

    @refresh_token.setter
    def refresh_token(self, value):
        self.refresh_token_encrypted = crypto.encrypt(value)

    def is_expired(self, now: datetime = None) -> bool:
        if self.token_type == "pat" or self.expires_at is None:
            return False
        return (now or datetime.utcnow()) >= self.expires_at

    def to_dict(self):
        return {
            "id": str(self.id),
            "user_id": str(self.user_id),
            "provider_id": str(self.provider_id),
            "token_type": self.token_type,
            "scopes": self.scopes or [],
            "expires_at": self.expires_at.isoformat() if self.expires_at else None,
            "reconnect_required": self.reconnect_required,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }
