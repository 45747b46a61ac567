"""
Gamification Models

Badges and the badge grants agents unlock.
"""

from datetime import datetime
from ..extensions import db


class Badge(db.Model):
    """Badge/achievement definition."""

    __tablename__ = 'badges'

    id = db.Column(db.Integer, primary_key=True)

    # Badge info
    name = db.Column(db.String(100), nullable=False)
    description = db.Column(db.String(500))
    badge_type = db.Column(db.String(50), default='special')  # deal_milestone, referral, special

    # Criteria
    unlock_criteria = db.Column(db.JSON, default=dict)
    # {"type": "deals_count", "threshold": 10, "time_window": "all_time"}
    # {"type": "rule"} = unlocked only by eligibility rules targeting this badge

    # Benefit
    benefit_type = db.Column(db.String(50), default='none')  # none, bonus_percentage, fixed_bonus
    benefit_value = db.Column(db.Numeric(10, 2))

    # NULL = permanent
    expires_in_days = db.Column(db.Integer)

    # Display
    is_active = db.Column(db.Boolean, default=True)
    display_order = db.Column(db.Integer, default=0)

    # Timestamps
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    agent_badges = db.relationship('AgentBadge', backref='badge', lazy='dynamic', cascade='all, delete-orphan')

    @property
    def is_rule_driven(self) -> bool:
        return (self.unlock_criteria or {}).get('type') == 'rule'

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'description': self.description,
            'badge_type': self.badge_type,
            'unlock_criteria': self.unlock_criteria or {},
            'benefit_type': self.benefit_type,
            'benefit_value': float(self.benefit_value) if self.benefit_value is not None else None,
            'expires_in_days': self.expires_in_days,
            'is_active': self.is_active,
            'display_order': self.display_order,
        }


class AgentBadge(db.Model):
    """
    Badge unlocked by an agent.

    Expired grants are kept for audit. At most one unexpired grant exists per
    (agent, badge). grant_seq numbers the grants of a pair from 0, so two
    writers racing to grant the same pair collide on unique_agent_badge_grant.
    """

    __tablename__ = 'agent_badges'

    id = db.Column(db.Integer, primary_key=True)
    agent_id = db.Column(db.Integer, db.ForeignKey('agents.id'), nullable=False)
    badge_id = db.Column(db.Integer, db.ForeignKey('badges.id'), nullable=False)

    # When earned
    unlocked_at = db.Column(db.DateTime, default=datetime.utcnow)
    expires_at = db.Column(db.DateTime)  # NULL = permanent
    grant_seq = db.Column(db.Integer, nullable=False, default=0)

    awarded_by = db.Column(db.String(100))

    __table_args__ = (
        db.Index('ix_agent_badges_agent_badge', 'agent_id', 'badge_id'),
        db.UniqueConstraint('agent_id', 'badge_id', 'grant_seq', name='unique_agent_badge_grant'),
    )

    def is_active_at(self, now: datetime) -> bool:
        return self.expires_at is None or self.expires_at > now

    def to_dict(self):
        return {
            'id': self.id,
            'agent_id': self.agent_id,
            'badge_id': self.badge_id,
            'badge': self.badge.to_dict() if self.badge else None,
            'unlocked_at': self.unlocked_at.isoformat() if self.unlocked_at else None,
            'expires_at': self.expires_at.isoformat() if self.expires_at else None,
        }
