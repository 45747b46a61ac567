"""
Gift and GiftEligibility models.
"""
from datetime import datetime
from ..extensions import db


class Gift(db.Model):
    """Gift agents can become eligible to claim."""
    __tablename__ = 'gifts'

    id = db.Column(db.Integer, primary_key=True)
    title = db.Column(db.String(200), nullable=False)
    description = db.Column(db.String(500))

    # Tier ids allowed to receive this gift; empty = every tier
    tier_ids = db.Column(db.JSON, default=list)
    exclusivity_mode = db.Column(db.String(20), default='none')  # none, tier_locked
    max_concurrent_claims = db.Column(db.Integer)

    is_active = db.Column(db.Boolean, default=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    def allows_tier(self, tier_id) -> bool:
        allowed = self.tier_ids or []
        if not allowed:
            return True
        return tier_id is not None and str(tier_id) in {str(t) for t in allowed}

    def to_dict(self):
        return {
            'id': self.id,
            'title': self.title,
            'description': self.description,
            'tier_ids': self.tier_ids or [],
            'exclusivity_mode': self.exclusivity_mode,
            'max_concurrent_claims': self.max_concurrent_claims,
            'is_active': self.is_active,
        }


class GiftEligibility(db.Model):
    """An agent's standing eligibility for a gift."""
    __tablename__ = 'gift_eligibilities'

    id = db.Column(db.Integer, primary_key=True)
    agent_id = db.Column(db.Integer, db.ForeignKey('agents.id'), nullable=False)
    gift_id = db.Column(db.Integer, db.ForeignKey('gifts.id'), nullable=False)

    granted_at = db.Column(db.DateTime, default=datetime.utcnow)
    granted_by = db.Column(db.String(100))

    gift = db.relationship('Gift')

    __table_args__ = (
        db.UniqueConstraint('agent_id', 'gift_id', name='unique_agent_gift'),
    )

    def to_dict(self):
        return {
            'agent_id': self.agent_id,
            'gift_id': self.gift_id,
            'gift': self.gift.to_dict() if self.gift else None,
            'granted_at': self.granted_at.isoformat() if self.granted_at else None,
        }
