"""
Agent and MetricFact models.

Both tables are owned by upstream pipelines. The eligibility engine only
reads them.
"""
from datetime import datetime
from ..extensions import db


class Agent(db.Model):
    """
    An agent (subject) whose reward eligibility is evaluated.

    The referral counters are aggregates refreshed by the referral pipeline.
    """
    __tablename__ = 'agents'

    id = db.Column(db.Integer, primary_key=True)
    display_name = db.Column(db.String(255))
    phone = db.Column(db.String(50))

    account_status = db.Column(db.String(20), default='active')  # active, suspended, deleted
    region = db.Column(db.String(50))

    # Referral aggregates (read-only inputs)
    total_referrals = db.Column(db.Integer, default=0, nullable=False)
    verified_referrals = db.Column(db.Integer, default=0, nullable=False)
    referrals_with_first_deal = db.Column(db.Integer, default=0, nullable=False)

    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    def __repr__(self):
        return f'<Agent {self.id} {self.display_name}>'

    @property
    def referral_metrics(self) -> dict:
        return {
            'total_referrals': self.total_referrals or 0,
            'verified_referrals': self.verified_referrals or 0,
            'referrals_with_first_deal': self.referrals_with_first_deal or 0,
        }

    def to_dict(self):
        return {
            'id': self.id,
            'display_name': self.display_name,
            'phone': self.phone,
            'account_status': self.account_status,
            'region': self.region,
            **self.referral_metrics,
        }


class MetricFact(db.Model):
    """
    One metric observation for an agent.

    Examples: a closed deal (deals_count=1, deals_volume=price), an accepted
    sales claim (claim_acceptance=1), a rejected one (claim_acceptance=0).
    """
    __tablename__ = 'metric_facts'

    id = db.Column(db.Integer, primary_key=True)
    agent_id = db.Column(db.Integer, db.ForeignKey('agents.id'), nullable=False)

    metric = db.Column(db.String(50), nullable=False)
    value = db.Column(db.Numeric(14, 4), nullable=False, default=0)
    occurred_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    # Filterable dimensions
    developer_id = db.Column(db.String(64))
    project_id = db.Column(db.String(64))
    region = db.Column(db.String(50))

    agent = db.relationship('Agent', backref=db.backref('metric_facts', lazy='dynamic'))

    __table_args__ = (
        db.Index('ix_metric_facts_metric_occurred', 'metric', 'occurred_at'),
        db.Index('ix_metric_facts_agent_metric', 'agent_id', 'metric'),
    )

    def __repr__(self):
        return f'<MetricFact {self.agent_id} {self.metric}={self.value}>'
