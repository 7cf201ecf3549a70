"""SCMProvider model - configured source-control platforms."""
import uuid

from scm_publisher.core import crypto
from scm_publisher.extensions import db

PROVIDER_TYPES = ("github", "azuredevops", "gitlab", "bitbucket_dc")

# Platforms authenticated with a user-supplied personal access token
PAT_PROVIDER_TYPES = ("bitbucket_dc",)


class SCMProvider(db.Model):
    """An SCM platform connection owned by an organization (GitHub, GitLab, ...)."""

    __tablename__ = "scm_providers"

    id = db.Column(db.Uuid, primary_key=True, default=uuid.uuid4)
    organization_id = db.Column(db.Uuid, nullable=True, index=True)
    provider_type = db.Column(db.String(20), nullable=False)  # github, azuredevops, gitlab, bitbucket_dc
    name = db.Column(db.String(100), nullable=False)
    base_url = db.Column(db.String(300))  # self-hosted instances, required for bitbucket_dc
    tenant_id = db.Column(db.String(100))  # Azure AD tenant, azuredevops only
    client_id = db.Column(db.String(200), default="")
    client_secret_encrypted = db.Column(db.Text)
    webhook_secret = db.Column(db.String(200))
    is_active = db.Column(db.Boolean, default=True)
    created_at = db.Column(db.DateTime, server_default=db.func.now())
    updated_at = db.Column(db.DateTime, server_default=db.func.now(), onupdate=db.func.now())

    links = db.relationship(
        "ModuleSCMLink", back_populates="provider", cascade="all, delete-orphan", passive_deletes=True
    )
    tokens = db.relationship(
        "SCMOAuthToken", back_populates="provider", cascade="all, delete-orphan", passive_deletes=True
    )

    def __repr__(self):
        return f"<SCMProvider {self.name} ({self.provider_type})>"

    @property
    def client_secret(self) -> str:
        return crypto.decrypt(self.client_secret_encrypted) or ""

    @client_secret.setter
    def client_secret(self, value: str):
        self.client_secret_encrypted = crypto.encrypt(value)

    @property
    def uses_pat(self) -> bool:
        return self.provider_type in PAT_PROVIDER_TYPES

    def to_dict(self):
        # client_secret and webhook_secret are write-only
        return {
            "id": str(self.id),
            "organization_id": str(self.organization_id) if self.organization_id else None,
            "provider_type": self.provider_type,
            "name": self.name,
            "base_url": self.base_url,
            "tenant_id": self.tenant_id,
            "client_id": self.client_id,
            "has_client_secret": bool(self.client_secret_encrypted),
            "has_webhook_secret": bool(self.webhook_secret),
            "is_active": self.is_active,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }
