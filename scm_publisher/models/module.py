"""Module and ModuleVersion models — the registry entities SCM sync publishes into."""
import uuid
from datetime import datetime

from scm_publisher.extensions import db


class Module(db.Model):
    """A registry module addressed as namespace/name/system."""

    __tablename__ = "scm_modules"
    __table_args__ = (
        db.UniqueConstraint("namespace", "name", "system", name="uq_module_address"),
    )

    id = db.Column(db.Uuid, primary_key=True, default=uuid.uuid4)
    organization_id = db.Column(db.Uuid, nullable=True, index=True)
    namespace = db.Column(db.String(100), nullable=False)
    name = db.Column(db.String(100), nullable=False)
    system = db.Column(db.String(50), nullable=False)
    description = db.Column(db.Text)
    created_at = db.Column(db.DateTime, server_default=db.func.now())
    updated_at = db.Column(db.DateTime, server_default=db.func.now(), onupdate=db.func.now())

    versions = db.relationship(
        "ModuleVersion",
        back_populates="module",
        cascade="all, delete-orphan",
        order_by="ModuleVersion.published_at.desc()",
    )

    def __repr__(self):
        return f"<Module {self.namespace}/{self.name}/{self.system}>"

    def to_dict(self):
        return {
            "id": str(self.id),
            "organization_id": str(self.organization_id) if self.organization_id else None,
            "namespace": self.namespace,
            "name": self.name,
            "system": self.system,
            "description": self.description,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }


class ModuleVersion(db.Model):
    """A published, immutable module version.

    Versions created from SCM tags carry provenance (tag_name, commit_sha,
    source='scm'); otherwise they are identical to uploaded versions.
    """

    __tablename__ = "scm_module_versions"
    __table_args__ = (
        db.UniqueConstraint("module_id", "version", name="uq_module_version"),
    )

    id = db.Column(db.Uuid, primary_key=True, default=uuid.uuid4)
    module_id = db.Column(
        db.Uuid, db.ForeignKey("scm_modules.id", ondelete="CASCADE"), nullable=False, index=True
    )
    module = db.relationship("Module", back_populates="versions")

    version = db.Column(db.String(100), nullable=False)
    source = db.Column(db.String(20), nullable=False, default="upload")  # upload | scm
    source_url = db.Column(db.String(500))
    readme = db.Column(db.Text)
    release_notes = db.Column(db.Text)

    # SCM provenance
    tag_name = db.Column(db.String(255), index=True)
    commit_sha = db.Column(db.String(64))

    published_by = db.Column(db.Uuid, db.ForeignKey("scm_users.id"), nullable=True)
    publisher = db.relationship("User")
    published_at = db.Column(db.DateTime, default=datetime.utcnow)

    deprecated = db.Column(db.Boolean, default=False)
    deprecated_at = db.Column(db.DateTime)
    deprecation_message = db.Column(db.Text)

    created_at = db.Column(db.DateTime, server_default=db.func.now())

    violations = db.relationship(
        "ImmutabilityViolation", back_populates="module_version", cascade="all, delete-orphan"
    )

    def __repr__(self):
        return f"<ModuleVersion {self.module_id}@{self.version}>"

    @property
    def has_open_violation(self) -> bool:
        return any(not v.acknowledged for v in self.violations)

    def to_dict(self):
        return {
            "id": str(self.id),
            "module_id": str(self.module_id),
            "version": self.version,
            "source": self.source,
            "source_url": self.source_url,
            "readme": self.readme,
            "release_notes": self.release_notes,
            "tag_name": self.tag_name,
            "commit_sha": self.commit_sha,
            "published_by": str(self.published_by) if self.published_by else None,
            "published_by_name": self.publisher.display_name or self.publisher.username
            if self.publisher else None,
            "published_at": self.published_at.isoformat() if self.published_at else None,
            "deprecated": self.deprecated,
            "deprecated_at": self.deprecated_at.isoformat() if self.deprecated_at else None,
            "deprecation_message": self.deprecation_message,
            "immutability_violation": self.has_open_violation,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
