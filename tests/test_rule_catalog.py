"""
Tests for the rule catalog.

Tests cover:
- Shape validation (operator/value agreement, enums, metric, filters)
- Rule creation with audit entry and no evaluation side effects
- Deactivation and active rule lookup
"""
import pytest
from decimal import Decimal


def rule_payload(**overrides):
    payload = {
        'target_type': 'tier',
        'target_id': 1,
        'metric': 'deals_count',
        'time_window': 'last_30d',
        'operator': '>=',
        'value_single': 5,
    }
    payload.update(overrides)
    return payload


class TestValidateRule:
    """Tests for validate_rule."""

    def test_valid_rule_is_normalized(self):
        from app.services.rule_catalog import validate_rule

        normalized = validate_rule(rule_payload(value_single='5.5', filters={'region': 'north'}))

        assert normalized['value_single'] == Decimal('5.5')
        assert normalized['value_min'] is None
        assert normalized['filters'] == {'region': 'north'}
        assert normalized['target_id'] == 1

    def test_time_window_defaults_to_all_time(self):
        from app.services.rule_catalog import validate_rule

        payload = rule_payload()
        del payload['time_window']
        assert validate_rule(payload)['time_window'] == 'all_time'

    @pytest.mark.parametrize('overrides,field', [
        ({'operator': '=='}, 'operator'),
        ({'time_window': 'fortnight'}, 'time_window'),
        ({'target_type': 'coupon'}, 'target_type'),
        ({'target_id': 'abc'}, 'target_id'),
        ({'value_single': None}, 'value_single'),
        ({'value_single': 'lots'}, 'value_single'),
        ({'value_single': 5, 'value_max': 10}, 'value_min'),
        ({'operator': 'between', 'value_single': None, 'value_min': 1}, 'value_min'),
        ({'operator': 'between', 'value_single': 3, 'value_min': 1, 'value_max': 5}, 'value_single'),
        ({'operator': 'between', 'value_single': None, 'value_min': 9, 'value_max': 5}, 'value_min'),
        ({'operator': 'top_n', 'value_single': 0}, 'value_single'),
        ({'operator': 'top_n', 'value_single': 2.5}, 'value_single'),
        ({'operator': 'top_percent', 'value_single': 0}, 'value_single'),
        ({'operator': 'top_percent', 'value_single': 101}, 'value_single'),
    ])
    def test_invalid_shapes_are_rejected(self, overrides, field):
        from app.services.rule_catalog import validate_rule
        from app.utils.exceptions import InvalidRuleShapeError

        with pytest.raises(InvalidRuleShapeError) as exc:
            validate_rule(rule_payload(**overrides))
        assert exc.value.field == field

    def test_between_accepts_equal_bounds(self):
        from app.services.rule_catalog import validate_rule

        normalized = validate_rule(rule_payload(operator='between', value_single=None, value_min=3, value_max=3))
        assert normalized['value_min'] == normalized['value_max'] == Decimal('3')

    def test_top_percent_accepts_one_hundred(self):
        from app.services.rule_catalog import validate_rule

        assert validate_rule(rule_payload(operator='top_percent', value_single=100))['value_single'] == Decimal('100')

    def test_unknown_metric(self):
        from app.services.rule_catalog import validate_rule
        from app.utils.exceptions import UnknownMetricError

        with pytest.raises(UnknownMetricError):
            validate_rule(rule_payload(metric='page_views'))

    def test_unsupported_filter(self):
        from app.services.rule_catalog import validate_rule
        from app.utils.exceptions import UnsupportedFilterError

        with pytest.raises(UnsupportedFilterError):
            validate_rule(rule_payload(filters={'city': 'Abuja'}))

    def test_target_optional_for_preview(self):
        from app.services.rule_catalog import validate_rule

        payload = rule_payload()
        del payload['target_type']
        del payload['target_id']
        assert validate_rule(payload, require_target=False)['target_type'] is None


class TestRuleCatalog:
    """Tests for rule persistence."""

    def test_create_rule(self, app, sample_tiers):
        from app.services.rule_catalog import RuleCatalog
        from app.models import AdminActivityLog, AgentTier

        rule = RuleCatalog().create_rule(rule_payload(target_id=sample_tiers[2].id), actor='admin-7')

        assert rule.id is not None
        assert rule.is_active is True
        assert rule.created_by == 'admin-7'
        assert rule.value_single == Decimal('5')

        entry = AdminActivityLog.query.filter_by(action='rewards.rule.create').one()
        assert entry.actor == 'admin-7'
        assert entry.resource_id == str(rule.id)
        assert entry.details['resource_id'] == str(rule.id)

        # Authoring never evaluates
        assert AgentTier.query.count() == 0

    def test_create_rule_for_missing_target(self, app):
        from app.services.rule_catalog import RuleCatalog
        from app.utils.exceptions import NotFoundError

        with pytest.raises(NotFoundError) as exc:
            RuleCatalog().create_rule(rule_payload(target_id=404), actor='admin-7')
        assert exc.value.code == 'TIER_NOT_FOUND'

    def test_invalid_rule_is_not_stored(self, app, sample_tiers):
        from app.services.rule_catalog import RuleCatalog
        from app.models import EligibilityRule
        from app.utils.exceptions import InvalidRuleShapeError

        with pytest.raises(InvalidRuleShapeError):
            RuleCatalog().create_rule(rule_payload(operator='top_n', value_single=-1), actor='admin-7')
        assert EligibilityRule.query.count() == 0

    def test_deactivate_rule(self, app, sample_tiers):
        from app.services.rule_catalog import RuleCatalog
        from app.models import AdminActivityLog

        catalog = RuleCatalog()
        rule = catalog.create_rule(rule_payload(), actor='admin-7')
        catalog.deactivate_rule(rule.id, actor='admin-8')

        assert catalog.active_rules() == []
        assert len(catalog.list_rules(include_inactive=True)) == 1
        assert AdminActivityLog.query.filter_by(action='rewards.rule.deactivate', actor='admin-8').count() == 1

    def test_active_rules_scoped_by_target(self, app, sample_tiers, sample_badge):
        from app.services.rule_catalog import RuleCatalog

        catalog = RuleCatalog()
        catalog.create_rule(rule_payload(), actor='a')
        catalog.create_rule(rule_payload(target_type='badge', target_id=sample_badge.id), actor='a')

        assert len(catalog.active_rules()) == 2
        assert len(catalog.active_rules(target_type='badge')) == 1
        assert catalog.active_rules(target_type='tier', target_id=99) == []

    def test_get_rule_not_found(self, app):
        from app.services.rule_catalog import RuleCatalog
        from app.utils.exceptions import RuleNotFoundError

        with pytest.raises(RuleNotFoundError):
            RuleCatalog().get_rule(12345)
