"""Audit log model - append-only trail of administrative actions."""
from datetime import datetime, timezone

from ..extensions import db
from ..models.base import BaseModel


class AuditLog(BaseModel):
    """One audit fact. Rows are only ever inserted."""
    __tablename__ = 'audit_log'

    log_id = db.Column(db.Integer, primary_key=True, autoincrement=True)
    timestamp = db.Column(db.DateTime, nullable=False, default=lambda: datetime.now(timezone.utc), index=True)
    actor_id = db.Column(db.String(255), index=True)  # NULL for system actions
    action_type = db.Column(db.String(50), nullable=False, index=True)
    entity_type = db.Column(db.String(50))
    entity_id = db.Column(db.String(255))
    clan_id = db.Column(db.Integer, index=True)
    details = db.Column(db.JSON)

    def __repr__(self):
        return f"<AuditLog {self.log_id} {self.action_type} {self.entity_type}:{self.entity_id}>"
