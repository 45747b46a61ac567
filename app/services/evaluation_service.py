"""
Batch Evaluation / Preview Service.

Runs the metric resolver, operator evaluator, tier resolver and badge
assigner across one rule (preview) or all active rules (apply).

Apply works in three phases:
1. Snapshot: rules, tiers, badges, gifts, agents, current assignments and
   every metric value any rule needs are read once at run start. Rankings
   for top_n/top_percent are built from that snapshot and never change.
2. Classify: each agent is classified against the snapshot on a bounded
   thread pool. Classification never touches the database.
3. Persist: outcomes are written on the calling thread, one transaction per
   agent, under that agent's lock. Tiers are promotion-only, badge and gift
   grants are idempotent, and every created or changed assignment gets an
   audit entry.

A failure for one agent is logged with its subject and rule ids and
reported in the run result. It never stops the remaining agents.
"""
import logging
import uuid
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, FrozenSet, List, Mapping, Optional, Tuple

from flask import current_app, has_app_context
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from ..extensions import db
from ..models import (
    Agent,
    AgentTier,
    AgentBadge,
    Badge,
    Gift,
    GiftEligibility,
    Tier,
    TargetType,
    RANK_OPERATORS,
)
from ..utils.exceptions import (
    RewardsError,
    NotFoundError,
    InsufficientPopulationError,
)
from ..utils.locks import subject_locks
from .audit_service import log_activity
from .badge_assigner import BadgeAssigner, BadgeDecision
from .metric_resolver import MetricResolver, MetricFilter, aggregation_for, parse_filters, window_start
from .operator_evaluator import Ranking, satisfies
from .rule_catalog import RuleCatalog, validate_rule
from .tier_resolver import TierResolution, resolve_tier

logger = logging.getLogger(__name__)

DEFAULT_MAX_WORKERS = 4
DEFAULT_SAMPLE_SIZE = 10

# (metric, time_window, filters)
MetricKey = Tuple[str, str, Tuple[MetricFilter, ...]]


# ==================== Snapshot types ====================

@dataclass(frozen=True)
class RuleSpec:
    """Immutable copy of a validated rule."""
    id: Optional[int]
    target_type: Optional[str]
    target_id: Optional[int]
    metric: str
    time_window: str
    operator: str
    value_single: Optional[Decimal]
    value_min: Optional[Decimal]
    value_max: Optional[Decimal]
    filters: Tuple[MetricFilter, ...] = ()

    @classmethod
    def from_data(cls, normalized: Mapping[str, Any], rule_id: int = None) -> 'RuleSpec':
        return cls(
            id=rule_id,
            target_type=normalized.get('target_type'),
            target_id=normalized.get('target_id'),
            metric=normalized['metric'],
            time_window=normalized['time_window'],
            operator=normalized['operator'],
            value_single=normalized.get('value_single'),
            value_min=normalized.get('value_min'),
            value_max=normalized.get('value_max'),
            filters=parse_filters(normalized.get('filters')),
        )

    @property
    def key(self) -> MetricKey:
        return (self.metric, self.time_window, self.filters)

    @property
    def params(self) -> dict:
        return {
            'value_single': self.value_single,
            'value_min': self.value_min,
            'value_max': self.value_max,
        }

    @property
    def is_rank_based(self) -> bool:
        return self.operator in RANK_OPERATORS


@dataclass(frozen=True)
class TierSpec:
    id: int
    name: str
    level: int
    bonus_percentage: Decimal
    min_referrals: int
    max_referrals: Optional[int]
    behavior_requirement: str

    @classmethod
    def from_model(cls, tier: Tier) -> 'TierSpec':
        return cls(
            id=tier.id,
            name=tier.name,
            level=tier.level,
            bonus_percentage=Decimal(str(tier.bonus_percentage or 0)),
            min_referrals=tier.min_referrals or 0,
            max_referrals=tier.max_referrals,
            behavior_requirement=tier.behavior_requirement,
        )


@dataclass(frozen=True)
class BadgeSpec:
    id: int
    name: str
    criteria_metric: Optional[str]
    criteria_window: str
    threshold: Decimal
    expires_in_days: Optional[int]

    @classmethod
    def from_model(cls, badge: Badge) -> 'BadgeSpec':
        criteria = BadgeAssigner.criteria_of(badge)
        metric = criteria.get('type')
        return cls(
            id=badge.id,
            name=badge.name,
            criteria_metric=None if metric in (None, 'rule') else metric,
            criteria_window=criteria['time_window'],
            threshold=Decimal(str(criteria['threshold'])),
            expires_in_days=badge.expires_in_days,
        )

    @property
    def is_rule_driven(self) -> bool:
        return self.criteria_metric is None

    @property
    def key(self) -> Optional[MetricKey]:
        if self.is_rule_driven:
            return None
        return (self.criteria_metric, self.criteria_window, ())


@dataclass(frozen=True)
class GiftSpec:
    id: int
    title: str
    tier_ids: FrozenSet[str]

    @classmethod
    def from_model(cls, gift: Gift) -> 'GiftSpec':
        return cls(id=gift.id, title=gift.title, tier_ids=frozenset(str(t) for t in (gift.tier_ids or [])))

    def allows_tier(self, tier_id) -> bool:
        if not self.tier_ids:
            return True
        return tier_id is not None and str(tier_id) in self.tier_ids


@dataclass(frozen=True)
class SubjectSpec:
    id: int
    referral_metrics: Mapping[str, int]
    current_tier_id: Optional[int] = None
    current_tier_level: int = 0
    active_badge_ids: FrozenSet[int] = frozenset()
    gift_ids: FrozenSet[int] = frozenset()


@dataclass(frozen=True)
class ApplyScope:
    """Which targets a run evaluates. Empty scope = everything."""
    target_type: Optional[str] = None
    target_id: Optional[int] = None

    def includes(self, target_type: str, target_id: int = None) -> bool:
        if self.target_type is None:
            return True
        if target_type != self.target_type:
            return False
        return target_id is None or self.target_id is None or target_id == self.target_id

    @property
    def resolves_referral_tiers(self) -> bool:
        return self.target_type is None


@dataclass
class EvaluationSnapshot:
    """Read snapshot one run evaluates against."""
    now: datetime
    rules_by_target: Dict[Tuple[str, int], List[RuleSpec]]
    tiers: List[TierSpec]
    badges: List[BadgeSpec]
    gifts: List[GiftSpec]
    subjects: Dict[int, SubjectSpec]
    values: Dict[MetricKey, Dict[int, Decimal]] = field(default_factory=dict)
    rankings: Dict[MetricKey, Ranking] = field(default_factory=dict)
    key_errors: Dict[MetricKey, RewardsError] = field(default_factory=dict)

    def rules_for(self, target_type: str, target_id: int) -> List[RuleSpec]:
        return self.rules_by_target.get((target_type, target_id), [])

    def values_for(self, key: MetricKey) -> Dict[int, Decimal]:
        if key in self.key_errors:
            raise self.key_errors[key]
        return self.values.get(key, {})


@dataclass
class SubjectOutcome:
    """What classification decided for one agent."""
    subject_id: int
    promote_to: Optional[TierResolution] = None
    badges: List[Tuple[BadgeSpec, BadgeDecision]] = field(default_factory=list)
    gifts: List[GiftSpec] = field(default_factory=list)
    error: Optional[str] = None
    rule_id: Optional[int] = None

    @property
    def has_changes(self) -> bool:
        return bool(self.promote_to or self.badges or self.gifts)


@dataclass
class ApplyResult:
    run_id: str
    actor: str
    started_at: datetime
    finished_at: Optional[datetime] = None
    evaluated: int = 0
    tiers_changed: int = 0
    badges_granted: int = 0
    gifts_granted: int = 0
    failed: List[Dict[str, Any]] = field(default_factory=list)
    conflicts: List[int] = field(default_factory=list)
    skipped_rules: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def changes(self) -> int:
        return self.tiers_changed + self.badges_granted + self.gifts_granted

    def to_dict(self):
        return {
            'run_id': self.run_id,
            'actor': self.actor,
            'started_at': self.started_at.isoformat(),
            'finished_at': self.finished_at.isoformat() if self.finished_at else None,
            'evaluated': self.evaluated,
            'tiers_changed': self.tiers_changed,
            'badges_granted': self.badges_granted,
            'gifts_granted': self.gifts_granted,
            'failed': self.failed,
            'conflicts': self.conflicts,
            'skipped_rules': self.skipped_rules,
        }


# ==================== Pure evaluation ====================

def rule_satisfied(rule: RuleSpec, subject_id: int, snapshot: EvaluationSnapshot) -> bool:
    """Evaluate one rule for one agent against the snapshot."""
    values = snapshot.values_for(rule.key)
    if subject_id not in values:
        # Outside the rule's filtered population
        return False
    ranking = snapshot.rankings.get(rule.key) if rule.is_rank_based else None
    return satisfies(values[subject_id], rule.operator, rule.params, subject_id=subject_id, ranking=ranking)


def _all_rules_pass(rules: List[RuleSpec], subject_id: int, snapshot: EvaluationSnapshot, current: list) -> bool:
    for rule in rules:
        current[0] = rule.id
        if not rule_satisfied(rule, subject_id, snapshot):
            return False
    return True


def classify_subject(subject: SubjectSpec, snapshot: EvaluationSnapshot, scope: ApplyScope) -> SubjectOutcome:
    """
    Decide tier promotion, badge grants and gift eligibility for one agent.

    Pure function of the snapshot, safe to run on worker threads.
    """
    outcome = SubjectOutcome(subject_id=subject.id)
    current_rule = [None]

    try:
        # Tier: highest level among the referral resolution and rule-qualified tiers
        candidates = []
        if scope.resolves_referral_tiers:
            resolved = resolve_tier(snapshot.tiers, subject.referral_metrics)
            if not resolved.is_tier_zero:
                candidates.append(resolved)
        for tier in snapshot.tiers:
            if not scope.includes(TargetType.TIER.value, tier.id):
                continue
            rules = snapshot.rules_for(TargetType.TIER.value, tier.id)
            if rules and _all_rules_pass(rules, subject.id, snapshot, current_rule):
                candidates.append(TierResolution(
                    name=tier.name,
                    bonus_percentage=tier.bonus_percentage,
                    tier_id=tier.id,
                    level=tier.level,
                ))
        current_rule[0] = None

        if candidates:
            best = max(candidates, key=lambda c: c.level)
            if best.level > subject.current_tier_level:
                outcome.promote_to = best

        effective_tier_id = outcome.promote_to.tier_id if outcome.promote_to else subject.current_tier_id

        # Badges
        for badge in snapshot.badges:
            if not scope.includes(TargetType.BADGE.value, badge.id):
                continue
            if badge.id in subject.active_badge_ids:
                continue
            rules = snapshot.rules_for(TargetType.BADGE.value, badge.id)
            if badge.is_rule_driven:
                qualifies = bool(rules) and _all_rules_pass(rules, subject.id, snapshot, current_rule)
            else:
                value = snapshot.values_for(badge.key).get(subject.id, Decimal('0'))
                qualifies = value >= badge.threshold and _all_rules_pass(rules, subject.id, snapshot, current_rule)
            current_rule[0] = None
            if qualifies:
                expires_at = None
                if badge.expires_in_days:
                    expires_at = BadgeAssigner.expiry_for(badge, snapshot.now)
                outcome.badges.append((badge, BadgeDecision(grant=True, expires_at=expires_at, reason='criteria_met')))

        # Gifts
        for gift in snapshot.gifts:
            if not scope.includes(TargetType.GIFT.value, gift.id):
                continue
            if gift.id in subject.gift_ids:
                continue
            rules = snapshot.rules_for(TargetType.GIFT.value, gift.id)
            if not rules or not gift.allows_tier(effective_tier_id):
                continue
            if _all_rules_pass(rules, subject.id, snapshot, current_rule):
                outcome.gifts.append(gift)
            current_rule[0] = None

    except Exception as e:
        outcome.promote_to = None
        outcome.badges = []
        outcome.gifts = []
        outcome.error = str(e)
        outcome.rule_id = current_rule[0]
        logger.warning(f'Evaluation failed for subject {subject.id} (rule {current_rule[0]}): {e}')

    return outcome


# ==================== Service ====================

class EvaluationService:
    """
    Preview and apply eligibility rules.

    Usage:
        service = EvaluationService()
        summary = service.preview({'metric': 'deals_count', 'operator': '>=', 'value_single': 5})
        result = service.apply(actor='admin-42')
    """

    def __init__(self, resolver: MetricResolver = None, max_workers: int = None, sample_size: int = None, locks=None):
        self.resolver = resolver or MetricResolver()
        self.badge_assigner = BadgeAssigner(self.resolver, locks=locks)
        self.catalog = RuleCatalog()
        self.locks = locks or subject_locks
        self.max_workers = max_workers or self._config('ENGINE_MAX_WORKERS', DEFAULT_MAX_WORKERS)
        self.sample_size = sample_size or self._config('PREVIEW_SAMPLE_SIZE', DEFAULT_SAMPLE_SIZE)

    @staticmethod
    def _config(key: str, default):
        if has_app_context():
            return current_app.config.get(key, default)
        return default

    # ==================== Preview ====================

    def preview(self, rule_data: Dict[str, Any], sample_size: int = None, now: datetime = None) -> Dict[str, Any]:
        """
        Dry-run one rule over the full eligible population.

        Nothing is written and no locks are taken. Validation and metric
        errors are raised to the caller.

        Returns:
            {'count': int, 'sample': [subject_id, ...]} with the sample in
            ranking order and at most sample_size long
        """
        matches = self._preview_matches(validate_rule(rule_data, require_target=False), now)
        return self._summary(matches, sample_size)

    def preview_gift(
        self,
        gift_id: int,
        rule_data: Dict[str, Any],
        sample_size: int = None,
        now: datetime = None
    ) -> Dict[str, Any]:
        """
        Dry-run a gift rule.

        Matches are narrowed to agents whose stored tier the gift allows.
        """
        gift = db.session.get(Gift, gift_id)
        if gift is None:
            raise NotFoundError('Gift', gift_id)

        payload = dict(rule_data, target_type=TargetType.GIFT.value, target_id=gift.id)
        matches = self._preview_matches(validate_rule(payload), now)

        if gift.tier_ids:
            tier_by_agent = dict(db.session.query(AgentTier.agent_id, AgentTier.tier_id).all())
            matches = [sid for sid in matches if gift.allows_tier(tier_by_agent.get(sid))]

        return self._summary(matches, sample_size)

    def _preview_matches(self, normalized: Dict[str, Any], now: datetime = None) -> List[int]:
        """Subject ids satisfying a validated rule, in ranking order."""
        rule = RuleSpec.from_data(normalized)
        now = now or datetime.utcnow()

        values = self.resolver.resolve_population(
            rule.metric, rule.time_window, normalized['filters'], now=now
        )
        ranking = Ranking.from_values(values)
        return [
            subject_id for subject_id in ranking.order
            if satisfies(values[subject_id], rule.operator, rule.params, subject_id=subject_id, ranking=ranking)
        ]

    def _summary(self, matches: List[int], sample_size: int = None) -> Dict[str, Any]:
        limit = self.sample_size if sample_size is None else sample_size
        return {
            'count': len(matches),
            'sample': matches[:max(limit, 0)],
        }

    def preview_subject(
        self,
        rule_data: Dict[str, Any],
        subject_id: int,
        population: Mapping[int, Decimal] = None,
        now: datetime = None
    ) -> bool:
        """
        Evaluate one rule for one agent.

        Rank operators need the population's values; without them this
        raises InsufficientPopulationError instead of guessing.
        """
        normalized = validate_rule(rule_data, require_target=False)
        rule = RuleSpec.from_data(normalized)

        ranking = None
        if rule.is_rank_based:
            if population is None:
                raise InsufficientPopulationError(rule.operator)
            ranking = Ranking.from_values(population)

        if population is not None and subject_id in population:
            value = population[subject_id]
        else:
            value = self.resolver.resolve(subject_id, rule.metric, rule.time_window, normalized['filters'], now=now)

        return satisfies(value, rule.operator, rule.params, subject_id=subject_id, ranking=ranking)

    # ==================== Apply ====================

    def apply(self, actor: str, rule_id: int = None, now: datetime = None) -> ApplyResult:
        """
        Evaluate active rules over every active agent and persist the results.

        Args:
            actor: Admin id or 'system:<component>' recorded on every audit entry
            rule_id: Limit the run to the target of this rule
            now: Evaluation instant (defaults to utcnow)

        Returns:
            ApplyResult with per-kind change counts and failed subjects
        """
        now = now or datetime.utcnow()
        result = ApplyResult(run_id=uuid.uuid4().hex[:12], actor=actor, started_at=datetime.utcnow())

        scope = ApplyScope()
        if rule_id is not None:
            rule = self.catalog.get_rule(rule_id)
            scope = ApplyScope(target_type=rule.target_type, target_id=rule.target_id)

        logger.info(f'Apply {result.run_id} started by {actor} (scope={scope})')

        snapshot = self.build_snapshot(scope, now, result)
        result.evaluated = len(snapshot.subjects)

        outcomes = self.classify_all(snapshot, scope)

        for subject_id in sorted(outcomes):
            outcome = outcomes[subject_id]
            if outcome.error:
                result.failed.append({
                    'subject_id': subject_id,
                    'rule_id': outcome.rule_id,
                    'error': outcome.error,
                })
                continue
            if outcome.has_changes:
                self._persist_outcome(outcome, actor, result, now)

        result.finished_at = datetime.utcnow()

        log_activity(
            actor=actor,
            action='rewards.rules.apply',
            resource_type='eligibility_rules',
            resource_id=rule_id,
            metadata={
                'run_id': result.run_id,
                'evaluated': result.evaluated,
                'tiers_changed': result.tiers_changed,
                'badges_granted': result.badges_granted,
                'gifts_granted': result.gifts_granted,
                'failed': len(result.failed),
            },
            commit=True,
        )

        logger.info(
            f'Apply {result.run_id} finished: {result.evaluated} evaluated, '
            f'{result.changes} changes, {len(result.failed)} failed'
        )
        return result

    def build_snapshot(self, scope: ApplyScope, now: datetime, result: ApplyResult = None) -> EvaluationSnapshot:
        """Read everything one run needs, once."""
        rules_by_target: Dict[Tuple[str, int], List[RuleSpec]] = {}
        for rule in self.catalog.active_rules():
            if not scope.includes(rule.target_type, rule.target_id):
                continue
            try:
                spec = RuleSpec.from_data(validate_rule(rule.to_rule_data()), rule_id=rule.id)
            except RewardsError as e:
                logger.error(f'Skipping stored rule {rule.id}: {e.message}')
                if result is not None:
                    result.skipped_rules.append({'rule_id': rule.id, 'error': e.message})
                continue
            rules_by_target.setdefault((spec.target_type, spec.target_id), []).append(spec)

        tiers = [TierSpec.from_model(t) for t in Tier.query.filter_by(is_active=True).order_by(Tier.level).all()]
        badges = []
        for badge in Badge.query.filter_by(is_active=True).order_by(Badge.display_order, Badge.id).all():
            spec = BadgeSpec.from_model(badge)
            if not spec.is_rule_driven:
                try:
                    aggregation_for(spec.criteria_metric)
                    window_start(spec.criteria_window, now)
                except RewardsError as e:
                    logger.error(f'Skipping badge {badge.id} with invalid unlock criteria: {e.message}')
                    continue
            badges.append(spec)
        gifts = [GiftSpec.from_model(g) for g in Gift.query.filter_by(is_active=True).order_by(Gift.id).all()]

        snapshot = EvaluationSnapshot(
            now=now,
            rules_by_target=rules_by_target,
            tiers=tiers,
            badges=badges,
            gifts=gifts,
            subjects=self._load_subjects(now),
        )

        keys = {}
        for rules in rules_by_target.values():
            for spec in rules:
                keys.setdefault(spec.key, False)
                if spec.is_rank_based:
                    keys[spec.key] = True
        for badge in badges:
            if badge.key is not None and scope.includes(TargetType.BADGE.value, badge.id):
                keys.setdefault(badge.key, False)

        for key, needs_ranking in keys.items():
            metric, window, filters = key
            try:
                values = self.resolver.resolve_population(
                    metric, window, {f.kind: f.value for f in filters}, now=now
                )
            except RewardsError as e:
                logger.error(f'Metric {metric}/{window} unavailable for this run: {e.message}')
                snapshot.key_errors[key] = e
                continue
            snapshot.values[key] = values
            if needs_ranking:
                snapshot.rankings[key] = Ranking.from_values(values)

        return snapshot

    def classify_all(self, snapshot: EvaluationSnapshot, scope: ApplyScope) -> Dict[int, SubjectOutcome]:
        """Fan classification out over a bounded worker pool."""
        subjects = list(snapshot.subjects.values())
        if self.max_workers <= 1 or len(subjects) < 2:
            return {s.id: classify_subject(s, snapshot, scope) for s in subjects}

        outcomes = {}
        with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
            futures = {
                executor.submit(classify_subject, subject, snapshot, scope): subject.id
                for subject in subjects
            }
            for future in as_completed(futures):
                subject_id = futures[future]
                outcomes[subject_id] = future.result()
        return outcomes

    # ==================== Internals ====================

    def _load_subjects(self, now: datetime) -> Dict[int, SubjectSpec]:
        agents = Agent.query.filter_by(account_status='active').order_by(Agent.id).all()

        tier_rows = db.session.query(AgentTier.agent_id, AgentTier.tier_id, Tier.level).join(
            Tier, Tier.id == AgentTier.tier_id
        ).all()
        current_tiers = {agent_id: (tier_id, level) for agent_id, tier_id, level in tier_rows}

        badge_rows = db.session.query(AgentBadge.agent_id, AgentBadge.badge_id).filter(
            db.or_(AgentBadge.expires_at.is_(None), AgentBadge.expires_at > now)
        ).all()
        active_badges: Dict[int, set] = {}
        for agent_id, badge_id in badge_rows:
            active_badges.setdefault(agent_id, set()).add(badge_id)

        gift_rows = db.session.query(GiftEligibility.agent_id, GiftEligibility.gift_id).all()
        gift_ids: Dict[int, set] = {}
        for agent_id, gift_id in gift_rows:
            gift_ids.setdefault(agent_id, set()).add(gift_id)

        subjects = {}
        for agent in agents:
            tier_id, level = current_tiers.get(agent.id, (None, 0))
            subjects[agent.id] = SubjectSpec(
                id=agent.id,
                referral_metrics=agent.referral_metrics,
                current_tier_id=tier_id,
                current_tier_level=level or 0,
                active_badge_ids=frozenset(active_badges.get(agent.id, ())),
                gift_ids=frozenset(gift_ids.get(agent.id, ())),
            )
        return subjects

    def _persist_outcome(self, outcome: SubjectOutcome, actor: str, result: ApplyResult, now: datetime) -> None:
        """Write one agent's changes in its own transaction."""
        subject_id = outcome.subject_id
        metadata = {'run_id': result.run_id}

        with self.locks.hold(subject_id):
            tiers_changed = badges_granted = gifts_granted = 0
            try:
                if outcome.promote_to and self._promote_tier(subject_id, outcome.promote_to, actor, now, metadata):
                    tiers_changed += 1

                for badge, decision in outcome.badges:
                    if self.badge_assigner.grant(
                        subject_id, badge, decision, actor, now=now, commit=False, metadata=metadata
                    ):
                        badges_granted += 1

                for gift in outcome.gifts:
                    if self._grant_gift(subject_id, gift, actor, now, metadata):
                        gifts_granted += 1

                db.session.commit()

            except IntegrityError:
                # Another process wrote the same assignment first
                db.session.rollback()
                logger.warning(f'Assignment conflict for subject {subject_id}; left for the next run')
                result.conflicts.append(subject_id)
                return

            except SQLAlchemyError as e:
                db.session.rollback()
                logger.error(f'Persisting assignments failed for subject {subject_id}: {e}')
                result.failed.append({'subject_id': subject_id, 'rule_id': None, 'error': str(e)})
                return

        result.tiers_changed += tiers_changed
        result.badges_granted += badges_granted
        result.gifts_granted += gifts_granted

    def _promote_tier(self, subject_id: int, target: TierResolution, actor: str, now: datetime, metadata: dict) -> bool:
        """Raise the stored tier to target; never lowers it."""
        assignment = AgentTier.query.filter_by(agent_id=subject_id).first()
        previous_tier = assignment.tier if assignment else None

        if previous_tier is not None and previous_tier.level >= target.level:
            return False

        if assignment is None:
            assignment = AgentTier(agent_id=subject_id)
            db.session.add(assignment)

        assignment.tier_id = target.tier_id
        assignment.awarded_at = now
        assignment.awarded_by = actor
        db.session.flush()

        log_activity(
            actor=actor,
            action='rewards.tier.promote',
            resource_type='agent_tiers',
            resource_id=assignment.id,
            metadata={
                'agent_id': subject_id,
                'previous_tier_id': previous_tier.id if previous_tier else None,
                'previous_tier_name': previous_tier.name if previous_tier else None,
                'new_tier_id': target.tier_id,
                'new_tier_name': target.name,
                **metadata,
            },
        )
        logger.info(
            f'Tier promoted: agent {subject_id} '
            f'{previous_tier.name if previous_tier else "Tier 0"} -> {target.name}'
        )
        return True

    def _grant_gift(self, subject_id: int, gift: GiftSpec, actor: str, now: datetime, metadata: dict) -> bool:
        existing = GiftEligibility.query.filter_by(agent_id=subject_id, gift_id=gift.id).first()
        if existing:
            return False

        eligibility = GiftEligibility(
            agent_id=subject_id,
            gift_id=gift.id,
            granted_at=now,
            granted_by=actor,
        )
        db.session.add(eligibility)
        db.session.flush()

        log_activity(
            actor=actor,
            action='rewards.gift.grant',
            resource_type='gift_eligibilities',
            resource_id=eligibility.id,
            metadata={'agent_id': subject_id, 'gift_id': gift.id, 'gift_title': gift.title, **metadata},
        )
        return True
