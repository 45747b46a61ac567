"""
Metric Resolver.

Turns (subject, metric, time window, filters) into a single number by
aggregating MetricFact rows. Pure read: nothing here writes.

Windows are half-open [start, now). all_time has no lower bound.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Dict, Optional, Tuple

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError

from ..extensions import db
from ..models import Agent, MetricFact, TimeWindow
from ..utils.exceptions import (
    UnknownMetricError,
    UnsupportedWindowError,
    UnsupportedFilterError,
    MetricResolutionError,
)

logger = logging.getLogger(__name__)


# metric name -> aggregation over its facts
METRIC_REGISTRY = {
    'deals_count': 'sum',
    'deals_volume': 'sum',
    'revenue': 'sum',
    'referrals': 'sum',
    'claim_acceptance': 'avg',   # facts are 1 (accepted) / 0 (rejected)
    'listings_count': 'sum',
}

# filter kind -> MetricFact column
SUPPORTED_FILTERS = {
    'developer_id': MetricFact.developer_id,
    'project_id': MetricFact.project_id,
    'region': MetricFact.region,
}

ZERO = Decimal('0')


@dataclass(frozen=True)
class MetricFilter:
    """One exact-match constraint on a metric fact dimension."""
    kind: str
    value: str

    @property
    def column(self):
        return SUPPORTED_FILTERS[self.kind]


def parse_filters(filters) -> Tuple[MetricFilter, ...]:
    """
    Validate a rule's filters mapping into MetricFilter values.

    Raises:
        UnsupportedFilterError: unknown key, or a value that is not a scalar
    """
    if not filters:
        return ()
    if not isinstance(filters, dict):
        raise UnsupportedFilterError(type(filters).__name__)

    parsed = []
    for key in sorted(filters):
        if key not in SUPPORTED_FILTERS:
            raise UnsupportedFilterError(key)
        value = filters[key]
        if value is None or isinstance(value, (dict, list, tuple, set, bool)):
            raise UnsupportedFilterError(key)
        parsed.append(MetricFilter(key, str(value)))
    return tuple(parsed)


def aggregation_for(metric: str) -> str:
    """Aggregation for a metric, or UnknownMetricError."""
    try:
        return METRIC_REGISTRY[metric]
    except (KeyError, TypeError):
        raise UnknownMetricError(str(metric))


def window_start(window: str, now: datetime) -> Optional[datetime]:
    """Inclusive lower bound of a time window, None for all_time."""
    if window == TimeWindow.ALL_TIME.value:
        return None
    if window == TimeWindow.LAST_30D.value:
        return now - timedelta(days=30)
    if window == TimeWindow.LAST_90D.value:
        return now - timedelta(days=90)
    if window == TimeWindow.QUARTER.value:
        first_month = 3 * ((now.month - 1) // 3) + 1
        return datetime(now.year, first_month, 1, tzinfo=now.tzinfo)
    if window == TimeWindow.YEAR.value:
        return datetime(now.year, 1, 1, tzinfo=now.tzinfo)
    raise UnsupportedWindowError(str(window))


def _to_decimal(value) -> Decimal:
    if value is None:
        return ZERO
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


class MetricResolver:
    """
    Resolves windowed, filtered metric values from MetricFact rows.

    Usage:
        resolver = MetricResolver()
        value = resolver.resolve(agent_id, 'deals_count', 'last_30d', {'region': 'north'})
    """

    def __init__(self, session=None):
        self.session = session or db.session

    def resolve(
        self,
        subject_id: int,
        metric: str,
        window: str,
        filters: dict = None,
        now: datetime = None
    ) -> Decimal:
        """
        Resolve one subject's value.

        Raises:
            UnknownMetricError, UnsupportedWindowError, UnsupportedFilterError,
            MetricResolutionError
        """
        aggregation = aggregation_for(metric)
        metric_filters = parse_filters(filters)
        now = now or datetime.utcnow()

        query = self._aggregate_query(
            self._aggregate(aggregation), metric, window, metric_filters, now
        ).filter(MetricFact.agent_id == subject_id)

        try:
            value = query.scalar()
        except SQLAlchemyError as e:
            raise MetricResolutionError(
                f'Failed to resolve {metric} for subject {subject_id}',
                subject_id=subject_id,
                original_error=e
            )
        return _to_decimal(value)

    def resolve_population(
        self,
        metric: str,
        window: str,
        filters: dict = None,
        now: datetime = None
    ) -> Dict[int, Decimal]:
        """
        Resolve the value for every active agent in one grouped read.

        With filters, the population is narrowed to agents that have at least
        one fact matching them. Agents without facts in the window get zero.
        """
        aggregation = aggregation_for(metric)
        metric_filters = parse_filters(filters)
        now = now or datetime.utcnow()

        try:
            population = self.population_ids(metric_filters)
            rows = (
                self._aggregate_query(
                    self._aggregate(aggregation), metric, window, metric_filters, now,
                    extra_columns=(MetricFact.agent_id,)
                )
                .group_by(MetricFact.agent_id)
                .all()
            )
        except SQLAlchemyError as e:
            raise MetricResolutionError(
                f'Failed to resolve {metric} for population',
                original_error=e
            )

        values = {agent_id: ZERO for agent_id in population}
        for agent_id, value in rows:
            if agent_id in values:
                values[agent_id] = _to_decimal(value)

        logger.debug(
            f'Resolved {metric}/{window} for {len(values)} subjects '
            f'(filters={[f.kind for f in metric_filters]})'
        )
        return values

    def population_ids(self, metric_filters: Tuple[MetricFilter, ...] = ()) -> list:
        """Ids of active agents, narrowed by filters when given."""
        query = self.session.query(Agent.id).filter(Agent.account_status == 'active')
        if metric_filters:
            matching = select(MetricFact.agent_id)
            for metric_filter in metric_filters:
                matching = matching.where(metric_filter.column == metric_filter.value)
            query = query.filter(Agent.id.in_(matching))
        return [row[0] for row in query.order_by(Agent.id).all()]

    # ==================== Internals ====================

    @staticmethod
    def _aggregate(aggregation: str):
        if aggregation == 'avg':
            return func.avg(MetricFact.value)
        return func.sum(MetricFact.value)

    def _aggregate_query(self, aggregate, metric, window, metric_filters, now, extra_columns=()):
        start = window_start(window, now)
        query = self.session.query(*extra_columns, aggregate).filter(
            MetricFact.metric == metric,
            MetricFact.occurred_at < now,
        )
        if start is not None:
            query = query.filter(MetricFact.occurred_at >= start)
        for metric_filter in metric_filters:
            query = query.filter(metric_filter.column == metric_filter.value)
        return query
