"""
Tests for the operator evaluator.
"""
import pytest
from decimal import Decimal

from app.services.operator_evaluator import Ranking, rank_cutoff, satisfies
from app.utils.exceptions import InsufficientPopulationError, InvalidRuleShapeError


def params(single=None, low=None, high=None):
    return {'value_single': single, 'value_min': low, 'value_max': high}


class TestThresholdOperators:
    """>=, <= and between."""

    def test_gte(self):
        assert satisfies(Decimal('5'), '>=', params(Decimal('5'))) is True
        assert satisfies(Decimal('4.99'), '>=', params(Decimal('5'))) is False

    def test_lte(self):
        assert satisfies(Decimal('5'), '<=', params(Decimal('5'))) is True
        assert satisfies(Decimal('6'), '<=', params(Decimal('5'))) is False

    def test_between_is_inclusive_on_both_ends(self):
        rule = params(low=Decimal('10'), high=Decimal('20'))
        assert satisfies(Decimal('10'), 'between', rule) is True
        assert satisfies(Decimal('20'), 'between', rule) is True
        assert satisfies(Decimal('9.9999'), 'between', rule) is False
        assert satisfies(Decimal('20.0001'), 'between', rule) is False

    def test_float_thresholds_compare_exactly(self):
        assert satisfies(Decimal('0.1'), '>=', params(0.1)) is True

    def test_missing_threshold_raises(self):
        with pytest.raises(InvalidRuleShapeError):
            satisfies(Decimal('1'), '>=', params())

    def test_unknown_operator_raises(self):
        with pytest.raises(InvalidRuleShapeError):
            satisfies(Decimal('1'), '==', params(Decimal('1')))


class TestRanking:
    """Ranking order and tie-breaks."""

    def test_descending_with_ties_broken_by_subject_id(self):
        ranking = Ranking.from_values({3: Decimal('5'), 1: Decimal('10'), 2: Decimal('10'), 4: Decimal('1')})

        assert ranking.order == (1, 2, 3, 4)
        assert ranking.rank_of(2) == 2
        assert ranking.rank_of(99) is None
        assert ranking.size == 4

    def test_top_percent_cutoff_rounds_up(self):
        assert rank_cutoff('top_percent', Decimal('25'), 10) == 3
        assert rank_cutoff('top_percent', Decimal('100'), 7) == 7
        assert rank_cutoff('top_n', Decimal('3'), 100) == 3


class TestRankOperators:
    """top_n and top_percent."""

    @pytest.fixture
    def values(self):
        return {sid: Decimal(sid) for sid in range(1, 11)}

    def _matching(self, values, operator, single):
        ranking = Ranking.from_values(values)
        return [
            sid for sid in values
            if satisfies(values[sid], operator, params(Decimal(single)), subject_id=sid, ranking=ranking)
        ]

    @pytest.mark.parametrize('k,expected', [(1, 1), (3, 3), (10, 10), (25, 10)])
    def test_top_n_selects_exactly_min_k_population(self, values, k, expected):
        assert len(self._matching(values, 'top_n', k)) == expected

    def test_top_n_takes_highest_values(self, values):
        assert sorted(self._matching(values, 'top_n', 3)) == [8, 9, 10]

    def test_top_n_with_ties_is_exact(self):
        values = {1: Decimal('7'), 2: Decimal('7'), 3: Decimal('7')}
        ranking = Ranking.from_values(values)
        winners = [
            sid for sid in values
            if satisfies(values[sid], 'top_n', params(Decimal('2')), subject_id=sid, ranking=ranking)
        ]
        assert winners == [1, 2]

    def test_top_percent(self, values):
        assert sorted(self._matching(values, 'top_percent', 25)) == [8, 9, 10]

    def test_rank_operator_without_ranking_raises(self):
        with pytest.raises(InsufficientPopulationError):
            satisfies(Decimal('5'), 'top_n', params(Decimal('1')), subject_id=1)

    def test_subject_outside_population_does_not_satisfy(self, values):
        ranking = Ranking.from_values(values)
        assert satisfies(Decimal('100'), 'top_n', params(Decimal('5')), subject_id=42, ranking=ranking) is False
