"""
Tier and AgentTier models.
"""
from datetime import datetime
from decimal import Decimal
from enum import Enum
from ..extensions import db


class BehaviorRequirement(str, Enum):
    """Which referral counter a tier's referral band is compared against."""
    NONE = 'none'              # total_referrals
    VERIFIED = 'verified'      # verified_referrals
    FIRST_DEAL = 'first_deal'  # referrals_with_first_deal


class Tier(db.Model):
    """
    Ordered reward level.

    Tiers are authored by operators. The engine only resolves which tier an
    agent currently satisfies.
    """
    __tablename__ = 'tiers'

    id = db.Column(db.Integer, primary_key=True)

    name = db.Column(db.String(50), nullable=False)
    level = db.Column(db.Integer, nullable=False, unique=True)
    description = db.Column(db.String(500))

    bonus_percentage = db.Column(db.Numeric(5, 2), nullable=False, default=Decimal('0'))

    # Referral band; max_referrals NULL = open-ended
    min_referrals = db.Column(db.Integer, nullable=False, default=0)
    max_referrals = db.Column(db.Integer)
    behavior_requirement = db.Column(db.String(20), nullable=False, default=BehaviorRequirement.NONE.value)

    is_active = db.Column(db.Boolean, default=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    def __repr__(self):
        return f'<Tier {self.level} {self.name}>'

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'level': self.level,
            'description': self.description,
            'bonus_percentage': float(self.bonus_percentage or 0),
            'min_referrals': self.min_referrals,
            'max_referrals': self.max_referrals,
            'behavior_requirement': self.behavior_requirement,
            'is_active': self.is_active,
        }


class AgentTier(db.Model):
    """
    Current tier assignment for an agent.

    One row per agent. Written only by engine runs, and only ever promoted.
    """
    __tablename__ = 'agent_tiers'

    id = db.Column(db.Integer, primary_key=True)
    agent_id = db.Column(db.Integer, db.ForeignKey('agents.id'), nullable=False)
    tier_id = db.Column(db.Integer, db.ForeignKey('tiers.id'), nullable=False)

    awarded_at = db.Column(db.DateTime, default=datetime.utcnow)
    awarded_by = db.Column(db.String(100))

    agent = db.relationship('Agent', backref=db.backref('tier_assignment', uselist=False))
    tier = db.relationship('Tier')

    __table_args__ = (
        db.UniqueConstraint('agent_id', name='unique_agent_tier'),
    )

    def to_dict(self):
        return {
            'agent_id': self.agent_id,
            'tier_id': self.tier_id,
            'tier': self.tier.to_dict() if self.tier else None,
            'awarded_at': self.awarded_at.isoformat() if self.awarded_at else None,
            'awarded_by': self.awarded_by,
        }
