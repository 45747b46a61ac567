"""
Admin activity log model.
"""
from datetime import datetime
from ..extensions import db


class AdminActivityLog(db.Model):
    """
    Audit trail entry.

    Written for rule authoring and for every assignment an engine run
    creates or changes. actor is an admin id or 'system:<component>'.
    """
    __tablename__ = 'admin_activity_log'

    id = db.Column(db.Integer, primary_key=True)
    actor = db.Column(db.String(100), nullable=False)
    action = db.Column(db.String(100), nullable=False)   # rewards.rule.create, rewards.badge.grant, ...
    resource_type = db.Column(db.String(50))
    resource_id = db.Column(db.String(64))
    details = db.Column(db.JSON)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    __table_args__ = (
        db.Index('ix_admin_activity_action', 'action'),
        db.Index('ix_admin_activity_created', 'created_at'),
    )

    def to_dict(self):
        return {
            'id': self.id,
            'actor': self.actor,
            'action': self.action,
            'resource_type': self.resource_type,
            'resource_id': self.resource_id,
            'metadata': self.details or {},
            'timestamp': self.created_at.isoformat() if self.created_at else None,
        }
