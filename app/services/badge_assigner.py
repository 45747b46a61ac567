"""
Badge Assigner

Evaluates badge unlock criteria and manages permanent and expiring grants.
Grants are idempotent: an agent holding an unexpired grant is never
re-granted or re-timestamped. Expired grants stay in place for audit.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
from typing import List, Optional

from ..extensions import db
from ..models import AgentBadge, TimeWindow
from ..utils.locks import subject_locks
from .audit_service import log_activity
from .metric_resolver import MetricResolver

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BadgeDecision:
    """Outcome of evaluating one badge for one agent."""
    grant: bool
    expires_at: Optional[datetime] = None
    reason: str = ''


class BadgeAssigner:
    """Service for badge evaluation and grants."""

    def __init__(self, resolver: MetricResolver = None, locks=None):
        self.resolver = resolver or MetricResolver()
        self.locks = locks or subject_locks

    # Criteria
    @staticmethod
    def criteria_of(badge) -> dict:
        """unlock_criteria with defaults filled in."""
        criteria = dict(badge.unlock_criteria or {})
        criteria.setdefault('time_window', TimeWindow.ALL_TIME.value)
        criteria.setdefault('threshold', 0)
        return criteria

    def criteria_met(self, subject_id: int, badge, value: Decimal = None, now: datetime = None) -> bool:
        """
        Check unlock_criteria with >= semantics.

        Rule-driven badges have no metric of their own and never pass here.
        """
        criteria = self.criteria_of(badge)
        if criteria.get('type') in (None, 'rule'):
            return False

        if value is None:
            value = self.resolver.resolve(
                subject_id,
                criteria['type'],
                criteria['time_window'],
                now=now,
            )
        return value >= Decimal(str(criteria['threshold']))

    @staticmethod
    def expiry_for(badge, now: datetime) -> Optional[datetime]:
        if badge.expires_in_days:
            return now + timedelta(days=badge.expires_in_days)
        return None

    def evaluate(
        self,
        subject_id: int,
        badge,
        value: Decimal = None,
        now: datetime = None,
        qualifies: bool = None
    ) -> BadgeDecision:
        """
        Decide whether a badge should be granted now.

        Args:
            subject_id: Agent id
            badge: Badge to evaluate
            value: Pre-resolved metric value (skips the resolver)
            now: Evaluation instant
            qualifies: Pre-computed qualification (rule-driven badges)

        Returns:
            BadgeDecision; grant is False when already held or not earned
        """
        now = now or datetime.utcnow()

        if self.active_grant(subject_id, badge.id, now):
            return BadgeDecision(grant=False, reason='already_granted')

        if qualifies is None:
            qualifies = self.criteria_met(subject_id, badge, value=value, now=now)

        if not qualifies:
            return BadgeDecision(grant=False, reason='criteria_not_met')

        return BadgeDecision(grant=True, expires_at=self.expiry_for(badge, now), reason='criteria_met')

    # Grants
    def grant(
        self,
        subject_id: int,
        badge,
        decision: BadgeDecision,
        actor: str,
        now: datetime = None,
        commit: bool = True,
        metadata: dict = None
    ) -> Optional[AgentBadge]:
        """
        Persist a positive decision.

        Re-checks for an active grant under the subject's lock. Runs in other
        processes are stopped by unique_agent_badge_grant: both compute the
        same grant_seq and the second flush raises IntegrityError.

        Returns:
            The new AgentBadge, or None when nothing was written
        """
        if not decision.grant:
            return None

        now = now or datetime.utcnow()
        with self.locks.hold(subject_id):
            if self.active_grant(subject_id, badge.id, now):
                return None

            agent_badge = AgentBadge(
                agent_id=subject_id,
                badge_id=badge.id,
                unlocked_at=now,
                expires_at=decision.expires_at,
                grant_seq=self.next_grant_seq(subject_id, badge.id),
                awarded_by=actor,
            )
            db.session.add(agent_badge)
            db.session.flush()

            log_activity(
                actor=actor,
                action='rewards.badge.grant',
                resource_type='agent_badges',
                resource_id=agent_badge.id,
                metadata={
                    'agent_id': subject_id,
                    'badge_id': badge.id,
                    'badge_name': badge.name,
                    'expires_at': decision.expires_at.isoformat() if decision.expires_at else None,
                    **(metadata or {}),
                },
            )

            if commit:
                db.session.commit()

        logger.info(f'Badge granted: agent {subject_id} -> {badge.name}')
        return agent_badge

    def evaluate_and_grant(self, subject_id: int, badge, actor: str, now: datetime = None) -> Optional[AgentBadge]:
        """Evaluate one badge and grant it when earned."""
        now = now or datetime.utcnow()
        decision = self.evaluate(subject_id, badge, now=now)
        return self.grant(subject_id, badge, decision, actor, now=now)

    # Reads
    @staticmethod
    def active_grant(subject_id: int, badge_id: int, now: datetime = None) -> Optional[AgentBadge]:
        """The unexpired grant for (agent, badge), if any."""
        now = now or datetime.utcnow()
        return AgentBadge.query.filter(
            AgentBadge.agent_id == subject_id,
            AgentBadge.badge_id == badge_id,
            db.or_(AgentBadge.expires_at.is_(None), AgentBadge.expires_at > now),
        ).order_by(AgentBadge.unlocked_at.desc()).first()

    @staticmethod
    def active_badges(subject_id: int, now: datetime = None) -> List[AgentBadge]:
        """Unexpired grants for an agent; expired rows are excluded, not deleted."""
        now = now or datetime.utcnow()
        return AgentBadge.query.filter(
            AgentBadge.agent_id == subject_id,
            db.or_(AgentBadge.expires_at.is_(None), AgentBadge.expires_at > now),
        ).order_by(AgentBadge.unlocked_at).all()

    @staticmethod
    def badge_history(subject_id: int) -> List[AgentBadge]:
        """Every grant ever made to an agent, including expired ones."""
        return AgentBadge.query.filter_by(agent_id=subject_id).order_by(AgentBadge.unlocked_at).all()

    @staticmethod
    def next_grant_seq(subject_id: int, badge_id: int) -> int:
        """Number of earlier grants for (agent, badge), expired ones included."""
        return AgentBadge.query.filter_by(agent_id=subject_id, badge_id=badge_id).count()
