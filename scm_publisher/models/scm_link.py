"""ModuleSCMLink model - association between a module and a repository."""
import uuid

from scm_publisher.extensions import db


class ModuleSCMLink(db.Model):
    """Links one module to one repository on an SCM provider."""

    __tablename__ = "scm_module_links"

    id = db.Column(db.Uuid, primary_key=True, default=uuid.uuid4)
    module_id = db.Column(
        db.Uuid, db.ForeignKey("scm_modules.id", ondelete="CASCADE"), nullable=False, unique=True
    )
    module = db.relationship("Module")
    provider_id = db.Column(
        db.Uuid, db.ForeignKey("scm_providers.id", ondelete="CASCADE"), nullable=False, index=True
    )
    provider = db.relationship("SCMProvider", back_populates="links")

    repository_owner = db.Column(db.String(200), nullable=False)
    repository_name = db.Column(db.String(200), nullable=False)
    repository_path = db.Column(db.String(300))
    default_branch = db.Column(db.String(200), nullable=False, default="main")
    auto_publish_enabled = db.Column(db.Boolean, nullable=False, default=True)
    tag_pattern = db.Column(db.String(100), nullable=False, default="v*")

    webhook_id = db.Column(db.String(100))
    webhook_secret = db.Column(db.String(200), nullable=False)

    created_by = db.Column(db.Uuid, db.ForeignKey("scm_users.id", ondelete="SET NULL"), nullable=True)
    last_sync_at = db.Column(db.DateTime)
    created_at = db.Column(db.DateTime, server_default=db.func.now())
    updated_at = db.Column(db.DateTime, server_default=db.func.now(), onupdate=db.func.now())

    events = db.relationship(
        "SCMWebhookEvent", back_populates="link", cascade="all, delete-orphan", passive_deletes=True
    )

    def __repr__(self):
        return f"<ModuleSCMLink {self.module_id} -> {self.repository_owner}/{self.repository_name}>"

    @property
    def webhook_url(self) -> str:
        from scm_publisher.config import settings
        return f"{settings.PUBLIC_BASE_URL.rstrip('/')}/api/v1/webhooks/scm/{self.id}"

    def to_dict(self, include_secret: bool = False):
        data = {
            "id": str(self.id),
            "module_id": str(self.module_id),
            "provider_id": str(self.provider_id),
            "repository_owner": self.repository_owner,
            "repository_name": self.repository_name,
            "repository_path": self.repository_path,
            "default_branch": self.default_branch,
            "auto_publish_enabled": self.auto_publish_enabled,
            "tag_pattern": self.tag_pattern,
            "webhook_id": self.webhook_id,
            "webhook_url": self.webhook_url,
            "last_sync_at": self.last_sync_at.isoformat() if self.last_sync_at else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }
        if include_secret:
            data["webhook_secret"] = self.webhook_secret
        return data
