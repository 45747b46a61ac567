"""
Tests for the batch evaluation / preview service.

Tests cover:
- Preview count and sample, no writes
- Apply: tier promotion (promotion-only), badge and gift grants
- Idempotence and audit entries
- Per-subject failure isolation
- Scoped runs and stored rules that no longer validate
"""
import pytest
from datetime import timedelta
from decimal import Decimal
from unittest.mock import patch

from sqlalchemy.exc import IntegrityError

from app.extensions import db
from app.models import (
    AdminActivityLog,
    AgentBadge,
    AgentTier,
    EligibilityRule,
    Gift,
    GiftEligibility,
)
from app.services.badge_assigner import BadgeAssigner
from app.services.evaluation_service import (
    ApplyScope,
    EvaluationService,
    classify_subject,
)
from app.services.rule_catalog import RuleCatalog
from app.utils.exceptions import (
    InsufficientPopulationError,
    InvalidRuleShapeError,
    MetricResolutionError,
)


def deals_rule(operator='>=', value=5, **extra):
    rule = {'metric': 'deals_count', 'time_window': 'last_30d', 'operator': operator, 'value_single': value}
    rule.update(extra)
    return rule


def tier_of(agent_id):
    assignment = AgentTier.query.filter_by(agent_id=agent_id).first()
    return assignment.tier.name if assignment else None


class TestPreview:
    """Tests for preview."""

    def test_preview_counts_matches_and_samples_in_rank_order(self, app, sample_agents, now):
        result = EvaluationService().preview(deals_rule(value=8), now=now)

        assert result['count'] == 3
        assert result['sample'] == [sample_agents[9].id, sample_agents[8].id, sample_agents[7].id]

    def test_sample_is_capped(self, app, sample_agents, now):
        result = EvaluationService().preview(deals_rule(value=5), sample_size=2, now=now)

        assert result['count'] == 6
        assert len(result['sample']) == 2
        assert len(result['sample']) <= result['count']

    def test_default_sample_size_from_config(self, app, sample_agents, now):
        app.config['PREVIEW_SAMPLE_SIZE'] = 4
        result = EvaluationService().preview(deals_rule(value=1), now=now)

        assert result['count'] == 10
        assert len(result['sample']) == 4

    def test_preview_top_n(self, app, sample_agents, now):
        result = EvaluationService().preview(deals_rule(operator='top_n', value=3), now=now)
        assert result['count'] == 3

    def test_preview_top_percent(self, app, sample_agents, now):
        result = EvaluationService().preview(deals_rule(operator='top_percent', value=15), now=now)
        assert result['count'] == 2

    def test_preview_writes_nothing(self, app, sample_agents, sample_tiers, now):
        EvaluationService().preview(deals_rule(target_type='tier', target_id=sample_tiers[2].id), now=now)

        assert AgentTier.query.count() == 0
        assert AgentBadge.query.count() == 0
        assert AdminActivityLog.query.count() == 0

    def test_preview_rejects_malformed_rule(self, app, sample_agents, now):
        with pytest.raises(InvalidRuleShapeError):
            EvaluationService().preview(deals_rule(operator='between'), now=now)

    def test_preview_with_filters(self, app, make_agent, add_fact, now):
        north = make_agent()
        south = make_agent()
        add_fact(north, 'deals_count', 6, region='north')
        add_fact(south, 'deals_count', 6, region='south')

        result = EvaluationService().preview(deals_rule(filters={'region': 'south'}), now=now)

        assert result == {'count': 1, 'sample': [south.id]}

    def test_preview_subject(self, app, sample_agents, now):
        service = EvaluationService()
        assert service.preview_subject(deals_rule(value=3), sample_agents[2].id, now=now) is True
        assert service.preview_subject(deals_rule(value=3), sample_agents[1].id, now=now) is False

    def test_preview_subject_rank_operator_needs_population(self, app, sample_agents, now):
        service = EvaluationService()
        with pytest.raises(InsufficientPopulationError):
            service.preview_subject(deals_rule(operator='top_n', value=1), sample_agents[9].id, now=now)

        population = {a.id: Decimal(i + 1) for i, a in enumerate(sample_agents)}
        assert service.preview_subject(
            deals_rule(operator='top_n', value=1), sample_agents[9].id, population=population, now=now
        ) is True

    def test_preview_gift_respects_tier_gate(self, app, sample_agents, sample_tiers, now):
        gold = sample_tiers[2]
        gift = Gift(title='Gold Only', tier_ids=[gold.id], is_active=True)
        db.session.add(gift)
        db.session.add(AgentTier(agent_id=sample_agents[0].id, tier_id=gold.id, awarded_by='seed'))
        db.session.commit()

        result = EvaluationService().preview_gift(gift.id, deals_rule(value=1), now=now)

        assert result == {'count': 1, 'sample': [sample_agents[0].id]}


class TestApplyTiers:
    """Tier promotion through apply."""

    def test_referral_resolution_and_tier_rules(self, app, sample_agents, sample_tiers, now):
        gold = sample_tiers[2]
        RuleCatalog().create_rule(deals_rule(value=9, target_type='tier', target_id=gold.id), actor='admin-1')

        result = EvaluationService().apply(actor='admin-1', now=now)

        assert result.evaluated == 10
        assert result.tiers_changed == 10
        assert result.failed == []
        assert tier_of(sample_agents[9].id) == 'Gold'
        assert tier_of(sample_agents[8].id) == 'Gold'
        # No referrals: Bronze (0-4, no behavior requirement)
        assert tier_of(sample_agents[0].id) == 'Bronze'

        promotions = AdminActivityLog.query.filter_by(action='rewards.tier.promote').all()
        assert len(promotions) == 10
        assert all(p.actor == 'admin-1' for p in promotions)
        assert all(p.details['run_id'] == result.run_id for p in promotions)

    def test_apply_is_idempotent(self, app, sample_agents, sample_tiers, sample_badge, now):
        RuleCatalog().create_rule(
            deals_rule(value=9, target_type='tier', target_id=sample_tiers[2].id), actor='admin-1'
        )
        service = EvaluationService()
        service.apply(actor='admin-1', now=now)
        audit_count = AdminActivityLog.query.count()

        second = service.apply(actor='admin-1', now=now)

        assert second.tiers_changed == 0
        assert second.badges_granted == 0
        assert second.gifts_granted == 0
        # Only the run summary is added
        assert AdminActivityLog.query.count() == audit_count + 1

    def test_tiers_are_never_lowered(self, app, sample_agents, sample_tiers, now):
        agent = sample_agents[0]
        db.session.add(AgentTier(agent_id=agent.id, tier_id=sample_tiers[2].id, awarded_by='seed'))
        db.session.commit()

        EvaluationService().apply(actor='admin-1', now=now)

        assert tier_of(agent.id) == 'Gold'

    def test_promotion_from_lower_stored_tier(self, app, make_agent, sample_tiers, now):
        agent = make_agent(total=12, verified=6)
        db.session.add(AgentTier(agent_id=agent.id, tier_id=sample_tiers[0].id, awarded_by='seed'))
        db.session.commit()

        result = EvaluationService().apply(actor='system:test', now=now)

        assert result.tiers_changed == 1
        assert tier_of(agent.id) == 'Silver'
        entry = AdminActivityLog.query.filter_by(action='rewards.tier.promote').one()
        assert entry.details['previous_tier_name'] == 'Bronze'
        assert entry.details['new_tier_name'] == 'Silver'

    def test_all_rules_on_a_tier_must_pass(self, app, sample_agents, sample_tiers, now):
        gold = sample_tiers[2]
        catalog = RuleCatalog()
        catalog.create_rule(deals_rule(value=5, target_type='tier', target_id=gold.id), actor='a')
        catalog.create_rule(deals_rule(operator='<=', value=6, target_type='tier', target_id=gold.id), actor='a')

        EvaluationService().apply(actor='a', now=now)

        gold_agents = [a for a in sample_agents if tier_of(a.id) == 'Gold']
        assert [a.display_name for a in gold_agents] == ['Agent 5', 'Agent 6']

    def test_inactive_agents_are_not_evaluated(self, app, make_agent, sample_tiers, now):
        make_agent(account_status='suspended', total=100, verified=100, first_deal=100)

        result = EvaluationService().apply(actor='a', now=now)

        assert result.evaluated == 0
        assert AgentTier.query.count() == 0


class TestApplyBadgesAndGifts:
    """Badge and gift grants through apply."""

    def test_metric_badges(self, app, sample_agents, sample_badge, now):
        result = EvaluationService().apply(actor='system:test', now=now)

        assert result.badges_granted == 6
        holders = {b.agent_id for b in AgentBadge.query.all()}
        assert holders == {a.id for a in sample_agents[4:]}

    def test_rule_driven_badge(self, app, sample_agents, rule_badge, now):
        RuleCatalog().create_rule(
            deals_rule(operator='top_n', value=1, target_type='badge', target_id=rule_badge.id), actor='a'
        )

        result = EvaluationService().apply(actor='a', now=now)

        assert result.badges_granted == 1
        assert AgentBadge.query.one().agent_id == sample_agents[9].id

    def test_rule_driven_badge_without_rules_is_never_granted(self, app, sample_agents, rule_badge, now):
        result = EvaluationService().apply(actor='a', now=now)
        assert result.badges_granted == 0

    def test_expiring_badge_gets_expiry(self, app, sample_agents, expiring_badge, now):
        EvaluationService().apply(actor='a', now=now)

        grant = AgentBadge.query.filter_by(agent_id=sample_agents[0].id).one()
        assert grant.expires_at == now + timedelta(days=30)

    def test_gift_eligibility_is_tier_gated(self, app, sample_agents, sample_tiers, now):
        gold = sample_tiers[2]
        gift = Gift(title='Gold Hamper', tier_ids=[gold.id], is_active=True)
        db.session.add(gift)
        db.session.commit()
        catalog = RuleCatalog()
        catalog.create_rule(deals_rule(value=9, target_type='tier', target_id=gold.id), actor='a')
        catalog.create_rule(deals_rule(value=1, target_type='gift', target_id=gift.id), actor='a')

        result = EvaluationService().apply(actor='a', now=now)

        assert result.gifts_granted == 2
        holders = {e.agent_id for e in GiftEligibility.query.all()}
        assert holders == {sample_agents[8].id, sample_agents[9].id}
        assert AdminActivityLog.query.filter_by(action='rewards.gift.grant').count() == 2

    def test_gift_without_rules_is_not_granted(self, app, sample_agents, sample_gift, now):
        result = EvaluationService().apply(actor='a', now=now)
        assert result.gifts_granted == 0


class TestApplyFailures:
    """Per-subject failure isolation."""

    def test_one_subject_failure_does_not_abort_the_run(self, app, sample_agents, sample_tiers, now):
        from app.services import evaluation_service

        gold = sample_tiers[2]
        rule = RuleCatalog().create_rule(deals_rule(value=9, target_type='tier', target_id=gold.id), actor='a')
        broken_id = sample_agents[9].id
        real_satisfies = evaluation_service.satisfies

        def flaky(value, operator, params, subject_id=None, ranking=None):
            if subject_id == broken_id:
                raise MetricResolutionError('upstream timeout', subject_id=subject_id)
            return real_satisfies(value, operator, params, subject_id=subject_id, ranking=ranking)

        with patch.object(evaluation_service, 'satisfies', side_effect=flaky):
            result = EvaluationService().apply(actor='a', now=now)

        assert result.failed == [{'subject_id': broken_id, 'rule_id': rule.id, 'error': 'upstream timeout'}]
        assert result.tiers_changed == 9
        assert tier_of(broken_id) is None
        assert tier_of(sample_agents[8].id) == 'Gold'

    def test_unavailable_metric_fails_affected_subjects_only(self, app, sample_agents, sample_tiers, now):
        gold = sample_tiers[2]
        RuleCatalog().create_rule(deals_rule(value=9, target_type='tier', target_id=gold.id), actor='a')
        service = EvaluationService()

        with patch.object(service.resolver, 'resolve_population',
                          side_effect=MetricResolutionError('warehouse down')):
            result = service.apply(actor='a', now=now)

        assert len(result.failed) == 10
        assert all(f['error'] == 'warehouse down' for f in result.failed)
        assert result.finished_at is not None

    def test_stored_rule_that_no_longer_validates_is_skipped(self, app, sample_agents, sample_tiers, now):
        bad = EligibilityRule(
            target_type='tier', target_id=sample_tiers[2].id, metric='retired_metric',
            time_window='all_time', operator='>=', value_single=1, is_active=True,
        )
        db.session.add(bad)
        db.session.commit()

        result = EvaluationService().apply(actor='a', now=now)

        assert result.skipped_rules == [{'rule_id': bad.id, 'error': "Unknown metric 'retired_metric'"}]
        assert result.failed == []
        assert tier_of(sample_agents[9].id) == 'Bronze'

    def test_write_conflict_is_reported_not_failed(self, app, sample_agents, sample_tiers, now):
        service = EvaluationService()
        conflict = IntegrityError('INSERT INTO agent_tiers', {}, Exception('unique_agent_tier'))

        with patch.object(service, '_promote_tier', side_effect=conflict):
            result = service.apply(actor='a', now=now)

        assert len(result.conflicts) == 10
        assert result.failed == []
        assert result.tiers_changed == 0

    def test_badge_granted_by_another_process_is_a_conflict(self, app, sample_agents, sample_badge, now):
        contested = sample_agents[9]

        def racing_grant_seq(subject_id, badge_id):
            if subject_id == contested.id:
                # Another run commits the same pair between snapshot and write
                db.session.add(AgentBadge(
                    agent_id=subject_id, badge_id=badge_id, unlocked_at=now,
                    grant_seq=0, awarded_by='other-run',
                ))
            return 0

        with patch.object(BadgeAssigner, 'next_grant_seq', side_effect=racing_grant_seq):
            result = EvaluationService().apply(actor='a', now=now)

        assert result.conflicts == [contested.id]
        assert result.failed == []
        assert result.badges_granted == 5
        assert AgentBadge.query.filter_by(agent_id=contested.id).count() == 0


class TestApplyRun:
    """Run-level behavior."""

    def test_summary_audit_entry(self, app, sample_agents, now):
        result = EvaluationService().apply(actor='admin-3', now=now)

        summary = AdminActivityLog.query.filter_by(action='rewards.rules.apply').one()
        assert summary.actor == 'admin-3'
        assert summary.details['run_id'] == result.run_id
        assert summary.details['evaluated'] == 10

    def test_scoped_run_only_touches_the_rule_target(self, app, sample_agents, sample_tiers, sample_badge, now):
        gold = sample_tiers[2]
        rule = RuleCatalog().create_rule(deals_rule(value=9, target_type='tier', target_id=gold.id), actor='a')

        result = EvaluationService().apply(actor='a', rule_id=rule.id, now=now)

        assert result.tiers_changed == 2
        assert result.badges_granted == 0
        assert tier_of(sample_agents[0].id) is None

    def test_parallel_classification_matches_sequential(self, app, sample_agents, sample_tiers, sample_badge, now):
        RuleCatalog().create_rule(
            deals_rule(operator='top_percent', value=30, target_type='tier', target_id=sample_tiers[2].id),
            actor='a',
        )
        scope = ApplyScope()

        parallel = EvaluationService(max_workers=4)
        snapshot = parallel.build_snapshot(scope, now)
        fanned_out = parallel.classify_all(snapshot, scope)
        sequential = {sid: classify_subject(s, snapshot, scope) for sid, s in snapshot.subjects.items()}

        assert fanned_out == sequential
        promoted = sorted(sid for sid, o in fanned_out.items() if o.promote_to and o.promote_to.name == 'Gold')
        assert promoted == [a.id for a in sample_agents[7:]]
