"""
Rewards Admin API.

Handles:
- Eligibility rule authoring (create, list, deactivate)
- Rule and gift-rule preview (dry run, no writes)
- Triggering an apply run
- Reading the rewards activity log
"""
from flask import Blueprint, request, jsonify, g

from ..middleware.admin_auth import require_admin
from ..services.audit_service import recent_activity
from ..services.evaluation_service import EvaluationService
from ..services.rule_catalog import RuleCatalog
from ..utils.errors import bad_request, ErrorCode

rewards_bp = Blueprint('rewards_admin', __name__)


def _int_arg(value, name):
    try:
        return int(value), None
    except (TypeError, ValueError):
        return None, bad_request(f'{name} must be an integer', ErrorCode.VALIDATION_ERROR)


def _json_object(required=True):
    """Request body as a dict, or (None, error response)."""
    data = request.get_json(silent=True)
    if not data:
        if required:
            return None, bad_request('No data provided')
        return {}, None
    if not isinstance(data, dict):
        return None, bad_request('Request body must be a JSON object')
    return data, None


# ==============================================================================
# RULES
# ==============================================================================

@rewards_bp.route('/rewards/rules', methods=['GET'])
@require_admin
def list_rules():
    """
    List eligibility rules.

    Query params:
        include_inactive: Include deactivated rules (default false)
    """
    include_inactive = request.args.get('include_inactive', 'false').lower() == 'true'
    rules = RuleCatalog().list_rules(include_inactive=include_inactive)

    return jsonify({
        'success': True,
        'rules': [r.to_dict() for r in rules],
    })


@rewards_bp.route('/rewards/rules', methods=['POST'])
@require_admin
def create_rule():
    """
    Create an eligibility rule.

    Request body:
    {
        "target_type": "tier",
        "target_id": 2,
        "metric": "deals_count",
        "time_window": "last_30d",
        "operator": ">=",
        "value_single": 5,
        "filters": {"region": "north"}
    }

    The rule is stored only. Evaluation happens on the next apply run.
    """
    data, error = _json_object()
    if error:
        return error

    rule = RuleCatalog().create_rule(data, actor=g.admin_id)

    return jsonify({
        'success': True,
        'rule': rule.to_dict(),
    }), 201


@rewards_bp.route('/rewards/rules/<int:rule_id>/deactivate', methods=['POST'])
@require_admin
def deactivate_rule(rule_id):
    """Deactivate a rule so it is skipped by preview and apply."""
    rule = RuleCatalog().deactivate_rule(rule_id, actor=g.admin_id)

    return jsonify({
        'success': True,
        'rule': rule.to_dict(),
    })


# ==============================================================================
# PREVIEW
# ==============================================================================

@rewards_bp.route('/rewards/preview', methods=['POST'])
@require_admin
def preview_rule():
    """
    Dry-run a rule over the current population.

    Request body: rule definition (target fields optional), plus an optional
    sample_size.

    Returns:
        {"count": <matching agents>, "sample": [agent ids in ranking order]}
    """
    data, error = _json_object()
    if error:
        return error

    sample_size = None
    if data.get('sample_size') is not None:
        sample_size, error = _int_arg(data.get('sample_size'), 'sample_size')
        if error:
            return error

    result = EvaluationService().preview(data, sample_size=sample_size)
    return jsonify(result)


@rewards_bp.route('/gifts/preview', methods=['POST'])
@require_admin
def preview_gift_rule():
    """
    Dry-run a gift rule.

    Request body:
    {
        "gift_id": 3,
        "metric": "referrals",
        "operator": "top_n",
        "value_single": 10
    }
    """
    data, error = _json_object()
    if error:
        return error

    if data.get('gift_id') is None:
        return bad_request('gift_id is required', ErrorCode.MISSING_FIELD)

    gift_id, error = _int_arg(data.get('gift_id'), 'gift_id')
    if error:
        return error

    sample_size = None
    if data.get('sample_size') is not None:
        sample_size, error = _int_arg(data.get('sample_size'), 'sample_size')
        if error:
            return error

    rule_data = {k: v for k, v in data.items() if k not in ('gift_id', 'sample_size')}
    result = EvaluationService().preview_gift(gift_id, rule_data, sample_size=sample_size)
    return jsonify(result)


# ==============================================================================
# APPLY
# ==============================================================================

@rewards_bp.route('/rewards/apply', methods=['POST'])
@require_admin
def apply_rules():
    """
    Evaluate active rules and persist tier, badge and gift assignments.

    Request body (optional):
    {
        "rule_id": 12   # limit the run to this rule's target
    }
    """
    data, error = _json_object(required=False)
    if error:
        return error

    rule_id = None
    if data.get('rule_id') is not None:
        rule_id, error = _int_arg(data.get('rule_id'), 'rule_id')
        if error:
            return error

    result = EvaluationService().apply(actor=g.admin_id, rule_id=rule_id)

    return jsonify({
        'ok': True,
        'run': result.to_dict(),
    })


# ==============================================================================
# ACTIVITY LOG
# ==============================================================================

@rewards_bp.route('/rewards/activity', methods=['GET'])
@require_admin
def list_activity():
    """
    Recent rewards activity.

    Query params:
        limit: Max entries (default 100)
        action: Action prefix, e.g. "rewards.tier"
    """
    limit = request.args.get('limit', 100, type=int)
    entries = recent_activity(limit=min(max(limit, 1), 500), action_prefix=request.args.get('action'))

    return jsonify({
        'success': True,
        'activity': [e.to_dict() for e in entries],
    })
