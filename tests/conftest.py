"""
Shared pytest fixtures.

Each test gets a fresh app on an in-memory SQLite database with an app
context pushed for the whole test.
"""
import pytest
from datetime import datetime, timedelta
from decimal import Decimal

from app import create_app
from app.extensions import db as _db
from app.models import Agent, MetricFact, Tier, Badge, Gift


NOW = datetime(2026, 5, 15, 12, 0, 0)


@pytest.fixture
def app():
    """Create application for testing."""
    app = create_app('testing')

    ctx = app.app_context()
    ctx.push()
    _db.create_all()

    yield app

    _db.session.remove()
    _db.drop_all()
    ctx.pop()


@pytest.fixture
def client(app):
    """Test client."""
    return app.test_client()


@pytest.fixture
def runner(app):
    """CLI runner."""
    return app.test_cli_runner()


@pytest.fixture
def db_session(app):
    """Database session bound to the test app context."""
    return _db.session


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def admin_headers():
    """Headers for admin endpoints."""
    return {'X-Admin-Id': 'admin-1', 'Content-Type': 'application/json'}


@pytest.fixture
def make_agent(db_session):
    """Factory for agents."""
    def _make(display_name=None, account_status='active', region='north',
              total=0, verified=0, first_deal=0):
        agent = Agent(
            display_name=display_name,
            account_status=account_status,
            region=region,
            total_referrals=total,
            verified_referrals=verified,
            referrals_with_first_deal=first_deal,
        )
        db_session.add(agent)
        db_session.commit()
        return agent
    return _make


@pytest.fixture
def add_fact(db_session):
    """Factory for metric facts."""
    def _add(agent, metric, value, occurred_at=None, **dimensions):
        fact = MetricFact(
            agent_id=agent.id,
            metric=metric,
            value=Decimal(str(value)),
            occurred_at=occurred_at or (NOW - timedelta(days=1)),
            **dimensions
        )
        db_session.add(fact)
        db_session.commit()
        return fact
    return _add


@pytest.fixture
def sample_agents(make_agent, add_fact):
    """Ten active agents; agent i has i deals in the last 30 days."""
    agents = []
    for i in range(1, 11):
        agent = make_agent(display_name=f'Agent {i}')
        add_fact(agent, 'deals_count', i)
        agents.append(agent)
    return agents


@pytest.fixture
def sample_tiers(db_session):
    """Bronze / Silver / Gold referral tiers."""
    tiers = [
        Tier(name='Bronze', level=1, bonus_percentage=Decimal('2'), min_referrals=0, max_referrals=4,
             behavior_requirement='none'),
        Tier(name='Silver', level=2, bonus_percentage=Decimal('5'), min_referrals=5, max_referrals=9,
             behavior_requirement='verified'),
        Tier(name='Gold', level=3, bonus_percentage=Decimal('10'), min_referrals=10, max_referrals=None,
             behavior_requirement='first_deal'),
    ]
    db_session.add_all(tiers)
    db_session.commit()
    return tiers


@pytest.fixture
def sample_badge(db_session):
    """Metric badge: 5 deals all time, permanent."""
    badge = Badge(
        name='Closer',
        badge_type='deal_milestone',
        unlock_criteria={'type': 'deals_count', 'threshold': 5, 'time_window': 'all_time'},
        is_active=True,
    )
    db_session.add(badge)
    db_session.commit()
    return badge


@pytest.fixture
def expiring_badge(db_session):
    """Metric badge that expires 30 days after grant."""
    badge = Badge(
        name='Hot Streak',
        badge_type='special',
        unlock_criteria={'type': 'deals_count', 'threshold': 1, 'time_window': 'last_30d'},
        expires_in_days=30,
        is_active=True,
    )
    db_session.add(badge)
    db_session.commit()
    return badge


@pytest.fixture
def rule_badge(db_session):
    """Badge unlocked only by rules."""
    badge = Badge(name='Top Performer', unlock_criteria={'type': 'rule'}, is_active=True)
    db_session.add(badge)
    db_session.commit()
    return badge


@pytest.fixture
def sample_gift(db_session):
    gift = Gift(title='Launch Voucher', tier_ids=[], is_active=True)
    db_session.add(gift)
    db_session.commit()
    return gift
