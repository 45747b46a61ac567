"""
Eligibility rule model and the closed vocabularies it draws from.
"""
from datetime import datetime
from decimal import Decimal
from enum import Enum
from ..extensions import db


# ==================== Enums ====================

class TargetType(str, Enum):
    """What a rule grants."""
    TIER = 'tier'
    BADGE = 'badge'
    GIFT = 'gift'


class RuleOperator(str, Enum):
    """Comparison applied to the resolved metric value."""
    GTE = '>='
    LTE = '<='
    BETWEEN = 'between'
    TOP_N = 'top_n'
    TOP_PERCENT = 'top_percent'


class TimeWindow(str, Enum):
    """Window the metric is aggregated over, ending at the evaluation instant."""
    ALL_TIME = 'all_time'
    LAST_30D = 'last_30d'
    LAST_90D = 'last_90d'
    QUARTER = 'quarter'      # current calendar quarter
    YEAR = 'year'            # current calendar year


RANK_OPERATORS = (RuleOperator.TOP_N.value, RuleOperator.TOP_PERCENT.value)
SINGLE_VALUE_OPERATORS = (
    RuleOperator.GTE.value,
    RuleOperator.LTE.value,
    RuleOperator.TOP_N.value,
    RuleOperator.TOP_PERCENT.value,
)


def _to_float(value):
    return float(value) if value is not None else None


# ==================== Models ====================

class EligibilityRule(db.Model):
    """
    Declarative eligibility condition.

    A rule grants its target (tier, badge or gift) to every subject whose
    metric, aggregated over time_window and narrowed by filters, satisfies
    operator against the threshold values.
    """
    __tablename__ = 'eligibility_rules'

    id = db.Column(db.Integer, primary_key=True)

    target_type = db.Column(db.String(20), nullable=False)  # tier, badge, gift
    target_id = db.Column(db.Integer, nullable=False)

    metric = db.Column(db.String(50), nullable=False)
    time_window = db.Column(db.String(20), nullable=False, default=TimeWindow.ALL_TIME.value)
    operator = db.Column(db.String(20), nullable=False)

    # value_single for >=, <=, top_n, top_percent; value_min/value_max for between
    value_single = db.Column(db.Numeric(14, 4))
    value_min = db.Column(db.Numeric(14, 4))
    value_max = db.Column(db.Numeric(14, 4))

    # {"developer_id": "...", "region": "..."}; empty = all subjects
    filters = db.Column(db.JSON, default=dict)

    is_active = db.Column(db.Boolean, default=True, nullable=False)
    created_by = db.Column(db.String(100))
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        db.Index('ix_eligibility_rules_target', 'target_type', 'target_id'),
        db.Index('ix_eligibility_rules_active', 'is_active'),
    )

    def __repr__(self):
        return f'<EligibilityRule {self.id} {self.target_type}:{self.target_id} {self.metric} {self.operator}>'

    @property
    def params(self) -> dict:
        """Threshold values keyed the way the operator evaluator reads them."""
        return {
            'value_single': Decimal(self.value_single) if self.value_single is not None else None,
            'value_min': Decimal(self.value_min) if self.value_min is not None else None,
            'value_max': Decimal(self.value_max) if self.value_max is not None else None,
        }

    def to_rule_data(self) -> dict:
        """Plain definition, as accepted by the rule catalog and preview."""
        return {
            'target_type': self.target_type,
            'target_id': self.target_id,
            'metric': self.metric,
            'time_window': self.time_window,
            'operator': self.operator,
            'value_single': self.value_single,
            'value_min': self.value_min,
            'value_max': self.value_max,
            'filters': dict(self.filters or {}),
        }

    def to_dict(self):
        return {
            'id': self.id,
            'target_type': self.target_type,
            'target_id': self.target_id,
            'metric': self.metric,
            'time_window': self.time_window,
            'operator': self.operator,
            'value_single': _to_float(self.value_single),
            'value_min': _to_float(self.value_min),
            'value_max': _to_float(self.value_max),
            'filters': self.filters or {},
            'is_active': self.is_active,
            'created_by': self.created_by,
            'created_at': self.created_at.isoformat() if self.created_at else None,
        }
