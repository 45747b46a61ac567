"""
Rule Catalog.

Holds eligibility rule definitions and validates their shape. Malformed
rules are rejected here, at authoring time, so they never reach a batch run.

Creating a rule does not trigger evaluation. Apply is a separate job.
"""
import logging
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional

from ..extensions import db
from ..models import (
    EligibilityRule,
    TargetType,
    RuleOperator,
    TimeWindow,
    SINGLE_VALUE_OPERATORS,
    Tier,
    Badge,
    Gift,
)
from ..utils.exceptions import InvalidRuleShapeError, NotFoundError, RuleNotFoundError
from .audit_service import log_activity
from .metric_resolver import aggregation_for, parse_filters

logger = logging.getLogger(__name__)


TARGET_MODELS = {
    TargetType.TIER.value: Tier,
    TargetType.BADGE.value: Badge,
    TargetType.GIFT.value: Gift,
}

VALUE_FIELDS = ('value_single', 'value_min', 'value_max')


def _parse_number(value, field: str) -> Optional[Decimal]:
    if value is None or (isinstance(value, str) and not value.strip()):
        return None
    if isinstance(value, bool):
        raise InvalidRuleShapeError(f'{field} must be a number', field)
    try:
        number = value if isinstance(value, Decimal) else Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        raise InvalidRuleShapeError(f'{field} must be a number', field)
    if not number.is_finite():
        raise InvalidRuleShapeError(f'{field} must be a finite number', field)
    return number


def validate_rule(data: Dict[str, Any], require_target: bool = True) -> Dict[str, Any]:
    """
    Validate and normalize a rule definition.

    Args:
        data: Raw rule payload (target_type, target_id, metric, time_window,
              operator, value_single, value_min, value_max, filters)
        require_target: Whether target_type/target_id must be present
                        (preview accepts a bare condition)

    Returns:
        Normalized dict with Decimal thresholds and parsed filters

    Raises:
        InvalidRuleShapeError: operator/value mismatch or bad enum values
        UnknownMetricError: metric not in the registry
        UnsupportedFilterError: filter key outside the supported set
    """
    if not isinstance(data, dict):
        raise InvalidRuleShapeError('Rule definition must be an object')

    target_type = data.get('target_type')
    target_id = data.get('target_id')
    if require_target or target_type is not None:
        if target_type not in TARGET_MODELS:
            raise InvalidRuleShapeError(f"Invalid target_type '{target_type}'", 'target_type')
        try:
            target_id = int(target_id)
        except (TypeError, ValueError):
            raise InvalidRuleShapeError('target_id must be an integer id', 'target_id')

    operator = data.get('operator')
    if operator not in {op.value for op in RuleOperator}:
        raise InvalidRuleShapeError(f"Invalid operator '{operator}'", 'operator')

    time_window = data.get('time_window') or TimeWindow.ALL_TIME.value
    if time_window not in {w.value for w in TimeWindow}:
        raise InvalidRuleShapeError(f"Invalid time_window '{time_window}'", 'time_window')

    metric = data.get('metric')
    aggregation_for(metric)

    filters = {f.kind: f.value for f in parse_filters(data.get('filters'))}

    values = {field: _parse_number(data.get(field), field) for field in VALUE_FIELDS}
    _check_values(operator, values)

    return {
        'target_type': target_type,
        'target_id': target_id,
        'metric': metric,
        'time_window': time_window,
        'operator': operator,
        'filters': filters,
        **values,
    }


def _check_values(operator: str, values: Dict[str, Optional[Decimal]]) -> None:
    """Exactly one of {value_single} or {value_min, value_max}, matching operator."""
    single = values['value_single']
    low, high = values['value_min'], values['value_max']

    if operator in SINGLE_VALUE_OPERATORS:
        if single is None:
            raise InvalidRuleShapeError(f"Operator '{operator}' requires value_single", 'value_single')
        if low is not None or high is not None:
            raise InvalidRuleShapeError(
                f"Operator '{operator}' does not take value_min/value_max", 'value_min'
            )
        if operator == RuleOperator.TOP_N.value:
            if single < 1 or single != single.to_integral_value():
                raise InvalidRuleShapeError('top_n requires a positive whole number', 'value_single')
        if operator == RuleOperator.TOP_PERCENT.value:
            if single <= 0 or single > 100:
                raise InvalidRuleShapeError('top_percent must be in (0, 100]', 'value_single')
        return

    # between
    if low is None or high is None:
        raise InvalidRuleShapeError("Operator 'between' requires value_min and value_max", 'value_min')
    if single is not None:
        raise InvalidRuleShapeError("Operator 'between' does not take value_single", 'value_single')
    if low > high:
        raise InvalidRuleShapeError('value_min must not exceed value_max', 'value_min')


class RuleCatalog:
    """
    Authoring-side access to eligibility rules.

    Usage:
        catalog = RuleCatalog()
        rule = catalog.create_rule(payload, actor='admin-42')
    """

    def create_rule(self, data: Dict[str, Any], actor: str) -> EligibilityRule:
        """Validate and persist an active rule."""
        normalized = validate_rule(data)

        if not self.target_exists(normalized['target_type'], normalized['target_id']):
            raise NotFoundError(normalized['target_type'].title(), normalized['target_id'])

        rule = EligibilityRule(
            target_type=normalized['target_type'],
            target_id=normalized['target_id'],
            metric=normalized['metric'],
            time_window=normalized['time_window'],
            operator=normalized['operator'],
            value_single=normalized['value_single'],
            value_min=normalized['value_min'],
            value_max=normalized['value_max'],
            filters=normalized['filters'],
            is_active=True,
            created_by=actor,
        )
        db.session.add(rule)
        db.session.flush()

        log_activity(
            actor=actor,
            action='rewards.rule.create',
            resource_type='eligibility_rules',
            resource_id=rule.id,
            metadata={'target_type': rule.target_type, 'metric': rule.metric},
        )
        db.session.commit()

        logger.info(f'Rule created: {rule.id} {rule.target_type}:{rule.target_id} ({rule.metric} {rule.operator})')
        return rule

    def deactivate_rule(self, rule_id: int, actor: str) -> EligibilityRule:
        """Mark a rule inactive so preview and apply skip it."""
        rule = self.get_rule(rule_id)
        if not rule.is_active:
            return rule

        rule.is_active = False
        log_activity(
            actor=actor,
            action='rewards.rule.deactivate',
            resource_type='eligibility_rules',
            resource_id=rule.id,
        )
        db.session.commit()
        return rule

    def get_rule(self, rule_id: int) -> EligibilityRule:
        rule = db.session.get(EligibilityRule, rule_id)
        if not rule:
            raise RuleNotFoundError(rule_id)
        return rule

    def list_rules(self, include_inactive: bool = False) -> List[EligibilityRule]:
        query = EligibilityRule.query
        if not include_inactive:
            query = query.filter_by(is_active=True)
        return query.order_by(EligibilityRule.created_at.desc(), EligibilityRule.id.desc()).all()

    def active_rules(self, target_type: str = None, target_id: int = None) -> List[EligibilityRule]:
        """Active rules, optionally scoped to one target kind or target."""
        query = EligibilityRule.query.filter_by(is_active=True)
        if target_type:
            query = query.filter_by(target_type=target_type)
        if target_id is not None:
            query = query.filter_by(target_id=target_id)
        return query.order_by(EligibilityRule.id).all()

    @staticmethod
    def target_exists(target_type: str, target_id: int) -> bool:
        model = TARGET_MODELS.get(target_type)
        if model is None:
            return False
        return db.session.get(model, target_id) is not None
