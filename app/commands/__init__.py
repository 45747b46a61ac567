"""
CLI Commands for the rewards engine.

Usage:
    flask rewards apply [--rule-id 12] [--actor admin-1]   # Persist assignments
    flask rewards preview --rule-id 12 [--sample-size 20]  # Dry-run a stored rule
    flask rewards resolve-tier --agent-id 7                # Live tier from referral counters
"""
from .rewards import init_app as init_rewards_commands


def init_app(app):
    """Register all CLI commands with the Flask app."""
    init_rewards_commands(app)
