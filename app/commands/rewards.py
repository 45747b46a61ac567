"""
CLI Commands for the rewards engine.

Apply can be run manually or from cron instead of the in-process scheduler:

# Nightly apply (run daily at 2 AM)
0 2 * * * cd /app && flask rewards apply --actor=system:cron
"""

import click
from flask.cli import with_appcontext
from ..extensions import db
from ..models import Agent, Tier, TargetType
from ..services.evaluation_service import EvaluationService
from ..services.rule_catalog import RuleCatalog
from ..services.tier_resolver import resolve_tier
from ..utils.exceptions import RewardsError


@click.group('rewards')
def rewards_cli():
    """Eligibility rule and tier commands."""
    pass


@rewards_cli.command('apply')
@click.option('--rule-id', type=int, help='Limit the run to this rule\'s target')
@click.option('--actor', default='system:cli', show_default=True, help='Actor recorded in the audit log')
@with_appcontext
def apply_rules(rule_id, actor):
    """
    Evaluate active rules and persist tier, badge and gift assignments.
    """
    try:
        result = EvaluationService().apply(actor=actor, rule_id=rule_id)
    except RewardsError as e:
        raise click.ClickException(e.message)

    click.echo(f"Run {result.run_id}: {result.evaluated} agents evaluated")
    click.echo(f"  Tiers changed: {result.tiers_changed}")
    click.echo(f"  Badges granted: {result.badges_granted}")
    click.echo(f"  Gifts granted: {result.gifts_granted}")

    if result.skipped_rules:
        click.echo(f"  Skipped rules: {len(result.skipped_rules)}")
        for skipped in result.skipped_rules[:5]:
            click.echo(f"    - Rule {skipped['rule_id']}: {skipped['error']}")

    if result.failed:
        click.echo(f"  Failed: {len(result.failed)}")
        for failure in result.failed[:5]:
            click.echo(f"    - Agent {failure['subject_id']} (rule {failure['rule_id']}): {failure['error']}")


@rewards_cli.command('preview')
@click.option('--rule-id', type=int, required=True, help='Rule ID')
@click.option('--sample-size', type=int, help='Number of agent ids to show')
@with_appcontext
def preview_rule(rule_id, sample_size):
    """
    Dry-run a stored rule. Nothing is written.
    """
    service = EvaluationService()
    try:
        rule = RuleCatalog().get_rule(rule_id)
        if rule.target_type == TargetType.GIFT.value:
            summary = service.preview_gift(rule.target_id, rule.to_rule_data(), sample_size=sample_size)
        else:
            summary = service.preview(rule.to_rule_data(), sample_size=sample_size)
    except RewardsError as e:
        raise click.ClickException(e.message)

    click.echo(f"Rule {rule.id}: {rule.metric} {rule.operator} ({rule.time_window})")
    click.echo(f"  Matching agents: {summary['count']}")
    click.echo(f"  Sample: {', '.join(str(s) for s in summary['sample']) or '-'}")


@rewards_cli.command('resolve-tier')
@click.option('--agent-id', type=int, required=True, help='Agent ID')
@with_appcontext
def resolve_agent_tier(agent_id):
    """
    Show the tier an agent's referral counters resolve to right now.
    """
    agent = db.session.get(Agent, agent_id)
    if not agent:
        raise click.ClickException(f"Agent {agent_id} not found")

    tiers = Tier.query.filter_by(is_active=True).all()
    resolution = resolve_tier(tiers, agent.referral_metrics)
    metrics = agent.referral_metrics

    click.echo(f"Agent {agent.id} ({agent.display_name or '-'})")
    click.echo(
        f"  Referrals: total={metrics['total_referrals']} "
        f"verified={metrics['verified_referrals']} "
        f"first_deal={metrics['referrals_with_first_deal']}"
    )
    click.echo(f"  Tier: {resolution.name} (bonus {resolution.bonus_percentage}%)")


def init_app(app):
    """Register rewards CLI commands with Flask app."""
    app.cli.add_command(rewards_cli)
