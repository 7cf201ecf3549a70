"""ImmutabilityViolation model — a published tag observed at a different commit."""
import uuid
from datetime import datetime

from scm_publisher.extensions import db


class ImmutabilityViolation(db.Model):
    """Recorded when a published tag later resolves to another commit.

    Never resolved automatically; an operator acknowledges it.
    """

    __tablename__ = "scm_immutability_violations"

    id = db.Column(db.Uuid, primary_key=True, default=uuid.uuid4)
    module_version_id = db.Column(
        db.Uuid, db.ForeignKey("scm_module_versions.id", ondelete="CASCADE"), nullable=False, index=True
    )
    module_version = db.relationship("ModuleVersion", back_populates="violations")

    tag_name = db.Column(db.String(255), nullable=False)
    original_commit_sha = db.Column(db.String(64), nullable=False)
    new_commit_sha = db.Column(db.String(64), nullable=False)
    detected_at = db.Column(db.DateTime, default=datetime.utcnow)

    acknowledged = db.Column(db.Boolean, nullable=False, default=False)
    acknowledged_by = db.Column(db.Uuid, db.ForeignKey("scm_users.id", ondelete="SET NULL"))
    acknowledged_at = db.Column(db.DateTime)
    note = db.Column(db.Text)

    def __repr__(self):
        return f"<ImmutabilityViolation {self.tag_name} {self.original_commit_sha[:7]}->{self.new_commit_sha[:7]}>"

    def to_dict(self):
        return {
            "id": str(self.id),
            "module_version_id": str(self.module_version_id),
            "tag_name": self.tag_name,
            "original_commit_sha": self.original_commit_sha,
            "new_commit_sha": self.new_commit_sha,
            "detected_at": self.detected_at.isoformat() if self.detected_at else None,
            "acknowledged": self.acknowledged,
            "acknowledged_by": str(self.acknowledged_by) if self.acknowledged_by else None,
            "acknowledged_at": self.acknowledged_at.isoformat() if self.acknowledged_at else None,
            "note": self.note,
        }
