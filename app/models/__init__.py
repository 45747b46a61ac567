"""
Database models for the referral rewards eligibility engine.
Agents, metric facts, rules, reward targets, assignments and audit log.
"""
from .agent import Agent, MetricFact
from .rule import (
    EligibilityRule,
    TargetType,
    RuleOperator,
    TimeWindow,
    RANK_OPERATORS,
    SINGLE_VALUE_OPERATORS,
)
from .tier import Tier, AgentTier, BehaviorRequirement
from .gamification import Badge, AgentBadge
from .gift import Gift, GiftEligibility
from .activity_log import AdminActivityLog

__all__ = [
    # Subjects & inputs
    'Agent',
    'MetricFact',
    # Rules
    'EligibilityRule',
    'TargetType',
    'RuleOperator',
    'TimeWindow',
    'RANK_OPERATORS',
    'SINGLE_VALUE_OPERATORS',
    # Targets & assignments
    'Tier',
    'AgentTier',
    'BehaviorRequirement',
    'Badge',
    'AgentBadge',
    'Gift',
    'GiftEligibility',
    # Audit
    'AdminActivityLog',
]
