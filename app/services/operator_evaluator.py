"""
Operator Evaluator.

Decides whether a resolved metric value satisfies a rule's operator and
thresholds. Rank operators (top_n, top_percent) are evaluated against an
immutable Ranking built once per run.
"""
import math
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Dict, Mapping, Optional, Tuple

from ..models import RuleOperator
from ..utils.exceptions import InsufficientPopulationError, InvalidRuleShapeError


@dataclass(frozen=True)
class Ranking:
    """
    Population ordered by metric value, best first.

    Ties are broken by subject id ascending so the order is deterministic.
    """
    order: Tuple[int, ...]
    positions: Dict[int, int] = field(default_factory=dict, compare=False)

    @classmethod
    def from_values(cls, values: Mapping[int, Decimal]) -> 'Ranking':
        ordered = sorted(values.items(), key=lambda item: (-item[1], item[0]))
        order = tuple(subject_id for subject_id, _ in ordered)
        return cls(order=order, positions={sid: i + 1 for i, sid in enumerate(order)})

    @property
    def size(self) -> int:
        return len(self.order)

    def rank_of(self, subject_id) -> Optional[int]:
        """1-based rank, or None when the subject is outside the population."""
        return self.positions.get(subject_id)


def rank_cutoff(operator: str, value_single: Decimal, population: int) -> int:
    """Number of top-ranked subjects that satisfy a rank operator."""
    if operator == RuleOperator.TOP_N.value:
        return int(value_single)
    if operator == RuleOperator.TOP_PERCENT.value:
        return math.ceil(Decimal(str(value_single)) / Decimal(100) * population)
    raise InvalidRuleShapeError(f"'{operator}' is not a rank operator", 'operator')


def satisfies(
    value: Decimal,
    operator: str,
    params: Mapping,
    subject_id=None,
    ranking: Ranking = None
) -> bool:
    """
    Check a value against an operator.

    Args:
        value: Resolved metric value for the subject
        operator: One of >=, <=, between, top_n, top_percent
        params: value_single / value_min / value_max
        subject_id: Needed for rank operators
        ranking: Population ranking, needed for rank operators

    Raises:
        InsufficientPopulationError: rank operator without a ranking
        InvalidRuleShapeError: unknown operator or missing threshold
    """
    if operator == RuleOperator.GTE.value:
        return value >= _required(params, 'value_single')

    if operator == RuleOperator.LTE.value:
        return value <= _required(params, 'value_single')

    if operator == RuleOperator.BETWEEN.value:
        return _required(params, 'value_min') <= value <= _required(params, 'value_max')

    if operator in (RuleOperator.TOP_N.value, RuleOperator.TOP_PERCENT.value):
        if ranking is None:
            raise InsufficientPopulationError(operator)
        rank = ranking.rank_of(subject_id)
        if rank is None:
            return False
        return rank <= rank_cutoff(operator, _required(params, 'value_single'), ranking.size)

    raise InvalidRuleShapeError(f"Unsupported operator '{operator}'", 'operator')


def _required(params: Mapping, key: str) -> Decimal:
    value = params.get(key)
    if value is None:
        raise InvalidRuleShapeError(f'{key} is required', key)
    return value if isinstance(value, Decimal) else Decimal(str(value))
