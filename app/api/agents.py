"""
Agent Rewards API.

Read-only view of what an agent currently holds, plus a live tier preview
from their referral counters.
"""
from flask import Blueprint, jsonify

from ..extensions import db
from ..models import Agent, Tier, GiftEligibility
from ..services.badge_assigner import BadgeAssigner
from ..services.tier_resolver import TIER_ZERO, resolve_tier
from ..utils.exceptions import AgentNotFoundError

agents_bp = Blueprint('agents', __name__)


def get_agent(agent_id: int) -> Agent:
    agent = db.session.get(Agent, agent_id)
    if not agent:
        raise AgentNotFoundError(agent_id)
    return agent


@agents_bp.route('/<int:agent_id>/rewards', methods=['GET'])
def get_agent_rewards(agent_id):
    """
    Current tier (or Tier 0), active badges and eligible gifts.

    Expired badge grants are not listed.
    """
    agent = get_agent(agent_id)

    assignment = agent.tier_assignment
    tier = {**TIER_ZERO.to_dict(), 'awarded_at': None, 'awarded_by': None}
    if assignment and assignment.tier:
        tier = {
            'tier_id': assignment.tier.id,
            'name': assignment.tier.name,
            'level': assignment.tier.level,
            'bonus_percentage': float(assignment.tier.bonus_percentage or 0),
            'awarded_at': assignment.awarded_at.isoformat() if assignment.awarded_at else None,
            'awarded_by': assignment.awarded_by,
        }

    badges = BadgeAssigner.active_badges(agent.id)
    gifts = GiftEligibility.query.filter_by(agent_id=agent.id).order_by(GiftEligibility.granted_at).all()

    return jsonify({
        'success': True,
        'agent': agent.to_dict(),
        'tier': tier,
        'badges': [b.to_dict() for b in badges],
        'gifts': [e.to_dict() for e in gifts],
    })


@agents_bp.route('/<int:agent_id>/tier-preview', methods=['GET'])
def get_tier_preview(agent_id):
    """
    Resolve the agent's tier from their referral counters right now.

    Nothing is written; the stored tier only changes on an apply run.
    """
    agent = get_agent(agent_id)
    tiers = Tier.query.filter_by(is_active=True).all()
    resolution = resolve_tier(tiers, agent.referral_metrics)

    return jsonify({
        'success': True,
        'agent_id': agent.id,
        'referrals': agent.referral_metrics,
        'tier': resolution.to_dict(),
    })
