"""
Business logic services for the rewards eligibility engine.
"""
from .metric_resolver import MetricResolver
from .rule_catalog import RuleCatalog, validate_rule
from .tier_resolver import resolve_tier, TierResolution, TIER_ZERO
from .badge_assigner import BadgeAssigner, BadgeDecision
from .evaluation_service import EvaluationService, ApplyResult

__all__ = [
    'MetricResolver',
    'RuleCatalog',
    'validate_rule',
    'resolve_tier',
    'TierResolution',
    'TIER_ZERO',
    'BadgeAssigner',
    'BadgeDecision',
    'EvaluationService',
    'ApplyResult',
]
