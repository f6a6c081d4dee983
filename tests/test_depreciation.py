"""Tests for the depreciation calculation engine."""
from datetime import date

import pytest

from depreciation import (
    DECLINING_BALANCE, DEPRECIATION_METHODS, DOUBLE_DECLINING, STRAIGHT_LINE,
    SUM_OF_YEARS_DIGITS, UNITS_OF_ACTIVITY,
    CapitalImprovement, DepreciationError, DepreciationInput, InvalidInput,
    UnsupportedMethod, accumulated_depreciation_as_of, book_value_as_of,
    book_values_by_month, depreciation_summary, generate_chart_data,
    get_annual_schedule, get_book_value, get_depreciation_for_year,
    get_depreciation_schedule, get_monthly_schedule, salvage_from_residual,
)


def make_input(method=STRAIGHT_LINE, **kwargs):
    params = {
        'depreciable_base': 10000.0,
        'acquisition_date': date(2020, 1, 1),
        'useful_life_years': 5,
        'salvage_value': 1000.0,
        'method': method,
    }
    params.update(kwargs)
    return DepreciationInput(**params)


def expenses(schedule):
    return [e['depreciation_expense'] for e in schedule]


def book_values(schedule):
    return [e['book_value'] for e in schedule]


# ============================================
# Invariants across every method
# ============================================

def property_input(method):
    return DepreciationInput(
        depreciable_base=10000.0,
        acquisition_date=date(2021, 3, 15),
        useful_life_years=5,
        salvage_value=500.0,
        method=method,
        depreciation_rate=30.0,
        total_units=5000,
        units_per_year=[1200, 1100, 1000, 900, 800],
    )


@pytest.mark.parametrize('granularity', ['annual', 'monthly'])
@pytest.mark.parametrize('method', list(DEPRECIATION_METHODS))
class TestScheduleInvariants:
    def test_conservation(self, method, granularity):
        for e in get_depreciation_schedule(property_input(method), granularity):
            assert e['accumulated_depreciation'] + e['book_value'] == pytest.approx(
                e['depreciable_base'], abs=0.01)

    def test_book_value_never_increases(self, method, granularity):
        values = book_values(get_depreciation_schedule(property_input(method), granularity))
        assert all(later <= earlier for earlier, later in zip(values, values[1:]))

    def test_floor_respected(self, method, granularity):
        for e in get_depreciation_schedule(property_input(method), granularity):
            assert e['book_value'] >= 500.0
            assert e['depreciation_expense'] >= 0

    def test_terminal_convergence(self, method, granularity):
        schedule = get_depreciation_schedule(property_input(method), granularity)
        assert len(schedule) == (5 if granularity == 'annual' else 60)
        assert schedule[-1]['book_value'] == pytest.approx(500.0, abs=1e-9)
        assert schedule[-1]['accumulated_depreciation'] == pytest.approx(9500.0, abs=1e-9)

    def test_accumulated_never_decreases(self, method, granularity):
        accumulated = [e['accumulated_depreciation']
                       for e in get_depreciation_schedule(property_input(method), granularity)]
        assert accumulated == sorted(accumulated)

    def test_residual_percentage_salvage_is_floor(self, method, granularity):
        salvage = salvage_from_residual(1000.0, 33.3333)
        inp = DepreciationInput(1000.0, date(2021, 3, 15), 3, salvage_value=salvage,
                                method=method, depreciation_rate=30.0, total_units=300)
        schedule = get_depreciation_schedule(inp, granularity)
        assert all(e['book_value'] >= salvage for e in schedule)
        assert schedule[-1]['book_value'] == salvage

    def test_fractional_cent_salvage_is_floor(self, method, granularity):
        inp = DepreciationInput(1000.0, date(2021, 3, 15), 3, salvage_value=1000 / 3,
                                method=method, depreciation_rate=30.0, total_units=300)
        schedule = get_depreciation_schedule(inp, granularity)
        assert all(e['book_value'] >= 333.33 for e in schedule)
        assert schedule[-1]['book_value'] == 333.33


# ============================================
# Per-method formulas
# ============================================

class TestStraightLine:
    def test_equal_annual_amounts(self):
        schedule = get_annual_schedule(make_input())
        assert expenses(schedule) == [1800.0] * 5
        assert [e['year'] for e in schedule] == [2020, 2021, 2022, 2023, 2024]

    def test_book_value_after_first_and_last_year(self):
        schedule = get_annual_schedule(make_input())
        assert schedule[0]['book_value'] == 8200.0
        assert schedule[-1]['book_value'] == 1000.0

    def test_annual_entries_have_no_month(self):
        assert 'month' not in get_annual_schedule(make_input())[0]

    def test_monthly_amount_is_annual_over_twelve(self):
        schedule = get_monthly_schedule(make_input())
        assert len(schedule) == 60
        assert set(expenses(schedule)) == {150.0}
        assert (schedule[0]['year'], schedule[0]['month']) == (2020, 1)
        assert (schedule[-1]['year'], schedule[-1]['month']) == (2024, 12)
        assert schedule[11]['book_value'] == 8200.0

    def test_first_month_prorated_by_days(self):
        inp = make_input(depreciable_base=12000.0, salvage_value=0.0, useful_life_years=1,
                         acquisition_date=date(2024, 1, 16))
        schedule = get_monthly_schedule(inp)
        # 16 of 31 January days in service
        assert schedule[0]['depreciation_expense'] == 516.13
        assert expenses(schedule)[1:11] == [1000.0] * 10
        # Shortfall recovered in the final month
        assert schedule[-1]['depreciation_expense'] == 1483.87
        assert schedule[-1]['book_value'] == 0.0

    def test_monthly_labels_roll_over_year_end(self):
        schedule = get_monthly_schedule(make_input(acquisition_date=date(2020, 11, 1)))
        assert [(e['year'], e['month']) for e in schedule[:3]] == [(2020, 11), (2020, 12), (2021, 1)]


class TestDecliningBalance:
    def test_rate_applies_to_opening_book_value(self):
        schedule = get_annual_schedule(make_input(DECLINING_BALANCE, salvage_value=0.0,
                                                  depreciation_rate=20))
        assert expenses(schedule)[:2] == [2000.0, 1600.0]
        assert book_values(schedule)[:2] == [8000.0, 6400.0]

    def test_final_year_settles_remainder(self):
        schedule = get_annual_schedule(make_input(DECLINING_BALANCE, salvage_value=0.0,
                                                  depreciation_rate=20))
        assert expenses(schedule) == [2000.0, 1600.0, 1280.0, 1024.0, 4096.0]
        assert schedule[-1]['book_value'] == 0.0

    def test_stops_at_salvage_value(self):
        schedule = get_annual_schedule(make_input(DECLINING_BALANCE, salvage_value=5000.0,
                                                  depreciation_rate=40))
        # 4000 would cross the floor; clipped to 5000 - salvage then zero
        assert expenses(schedule) == [4000.0, 1000.0, 0.0, 0.0, 0.0]
        assert set(book_values(schedule)[1:]) == {5000.0}

    def test_monthly_uses_compounded_rate(self):
        inp = make_input(DECLINING_BALANCE, salvage_value=0.0, depreciation_rate=20)
        monthly = get_monthly_schedule(inp)
        # Twelve compounded months match one annual period
        assert monthly[11]['book_value'] == pytest.approx(8000.0, abs=0.1)


class TestDoubleDeclining:
    def test_rate_is_twice_straight_line(self):
        schedule = get_annual_schedule(make_input(DOUBLE_DECLINING, salvage_value=0.0))
        assert expenses(schedule) == [4000.0, 2400.0, 1440.0, 864.0, 1296.0]

    def test_caller_rate_is_ignored(self):
        with_rate = get_annual_schedule(make_input(DOUBLE_DECLINING, depreciation_rate=10))
        without = get_annual_schedule(make_input(DOUBLE_DECLINING))
        assert with_rate == without

    def test_one_year_life_caps_rate(self):
        inp = make_input(DOUBLE_DECLINING, useful_life_years=1, salvage_value=0.0)
        monthly = get_monthly_schedule(inp)
        assert monthly[0]['depreciation_expense'] == 10000.0
        assert set(expenses(monthly)[1:]) == {0.0}


class TestSumOfYearsDigits:
    def test_fractions_of_remaining_life(self):
        schedule = get_annual_schedule(make_input(SUM_OF_YEARS_DIGITS, salvage_value=0.0))
        assert expenses(schedule) == [3333.33, 2666.67, 2000.0, 1333.33, 666.67]

    def test_monthly_total_equals_depreciable_amount(self):
        schedule = get_monthly_schedule(make_input(SUM_OF_YEARS_DIGITS))
        assert sum(expenses(schedule)) == pytest.approx(9000.0, abs=0.01)
        assert schedule[0]['depreciation_expense'] > schedule[1]['depreciation_expense']


class TestUnitsOfActivity:
    def test_units_share_of_total(self):
        inp = make_input(UNITS_OF_ACTIVITY, salvage_value=0.0, total_units=1000,
                         units_per_year=[300, 200, 100, 250, 150])
        assert expenses(get_annual_schedule(inp)) == [3000.0, 2000.0, 1000.0, 2500.0, 1500.0]

    def test_even_split_when_units_missing(self):
        inp = make_input(UNITS_OF_ACTIVITY, salvage_value=0.0, total_units=1000)
        assert expenses(get_annual_schedule(inp)) == [2000.0] * 5

    def test_short_sequence_padded_with_last_year(self):
        inp = make_input(UNITS_OF_ACTIVITY, salvage_value=0.0, total_units=1000,
                         units_per_year=[300, 200])
        assert expenses(get_annual_schedule(inp)) == [3000.0, 2000.0, 2000.0, 2000.0, 1000.0]

    def test_clipped_at_cap_then_zero(self):
        inp = make_input(UNITS_OF_ACTIVITY, salvage_value=0.0, total_units=1000,
                         units_per_year=[600, 600])
        assert expenses(get_annual_schedule(inp)) == [6000.0, 4000.0, 0.0, 0.0, 0.0]


# ============================================
# Capital improvements
# ============================================

class TestCapitalImprovements:
    def improved(self, method=STRAIGHT_LINE, **kwargs):
        return make_input(method, salvage_value=0.0, capital_improvements=[
            CapitalImprovement(amount=2000.0, effective_date=date(2022, 1, 1)),
        ], **kwargs)

    def test_straight_line_redistributes_remaining_base(self):
        schedule = get_annual_schedule(self.improved())
        assert expenses(schedule)[:2] == [2000.0, 2000.0]
        assert expenses(schedule)[2:4] == [2666.67, 2666.67]
        assert schedule[-1]['book_value'] == 0.0
        assert schedule[-1]['accumulated_depreciation'] == 12000.0

    def test_base_steps_up_from_effective_period(self):
        schedule = get_annual_schedule(self.improved())
        assert [e['depreciable_base'] for e in schedule] == [10000.0, 10000.0, 12000.0, 12000.0, 12000.0]

    def test_conservation_holds_after_improvement(self):
        for e in get_monthly_schedule(self.improved()):
            assert e['accumulated_depreciation'] + e['book_value'] == pytest.approx(
                e['depreciable_base'], abs=0.01)

    def test_monthly_step_in_containing_month(self):
        schedule = get_monthly_schedule(self.improved())
        jan_2022 = [e for e in schedule if (e['year'], e['month']) == (2022, 1)][0]
        dec_2021 = [e for e in schedule if (e['year'], e['month']) == (2021, 12)][0]
        assert dec_2021['depreciable_base'] == 10000.0
        assert jan_2022['depreciable_base'] == 12000.0

    def test_declining_balance_continues_on_raised_book_value(self):
        schedule = get_annual_schedule(self.improved(DECLINING_BALANCE, depreciation_rate=20))
        # Opening book value in 2022: 6400 + 2000
        assert schedule[2]['depreciation_expense'] == 1680.0

    def test_order_of_improvements_does_not_matter(self):
        a = CapitalImprovement(amount=500.0, effective_date=date(2021, 6, 1))
        b = CapitalImprovement(amount=700.0, effective_date=date(2023, 2, 1))
        first = get_monthly_schedule(make_input(capital_improvements=[a, b]))
        second = get_monthly_schedule(make_input(capital_improvements=[b, a]))
        assert first == second

    def test_improvement_after_useful_life_ignored(self):
        late = make_input(capital_improvements=[
            CapitalImprovement(amount=2000.0, effective_date=date(2030, 1, 1))])
        assert get_annual_schedule(late) == get_annual_schedule(make_input())


# ============================================
# Point-in-time queries
# ============================================

class TestPointInTime:
    def test_year_only_uses_annual_schedule(self):
        point = book_value_as_of(make_input(), 2020)
        assert point['book_value'] == 8200.0
        assert point['accumulated_depreciation'] == 1800.0

    def test_year_and_month(self):
        point = book_value_as_of(make_input(), 2021, 6)
        assert point['book_value'] == 10000.0 - 18 * 150.0
        assert point['accumulated_depreciation'] == 18 * 150.0

    def test_before_acquisition_not_started(self):
        inp = make_input(acquisition_date=date(2020, 7, 1))
        assert book_value_as_of(inp, 2020, 6) == {
            'book_value': 10000.0, 'accumulated_depreciation': 0.0, 'depreciable_base': 10000.0}
        assert book_value_as_of(inp, 2019)['book_value'] == 10000.0
        assert accumulated_depreciation_as_of(inp, 2019, 12) == 0.0

    def test_after_useful_life_terminal_state(self):
        inp = make_input()
        assert accumulated_depreciation_as_of(inp, 2031, 3) == 9000.0
        assert book_value_as_of(inp, 2040)['book_value'] == 1000.0

    def test_invalid_month_rejected(self):
        with pytest.raises(InvalidInput):
            book_value_as_of(make_input(), 2021, 13)

    def test_repeated_queries_identical(self):
        inp = make_input(DECLINING_BALANCE, depreciation_rate=25)
        assert book_value_as_of(inp, 2022, 5) == book_value_as_of(inp, 2022, 5)
        assert inp.depreciable_base == 10000.0

    def test_get_book_value_as_of_date(self):
        assert get_book_value(make_input(), date(2020, 12, 31)) == 8200.0
        assert get_book_value(make_input(), date(2019, 1, 1)) == 10000.0

    def test_book_values_by_month(self):
        values = book_values_by_month(make_input(acquisition_date=date(2020, 7, 1)), 2020)
        assert list(values) == list(range(1, 13))
        assert values[6] == 10000.0
        assert values[7] == 9850.0
        assert values[12] == 9100.0

    def test_depreciation_for_year(self):
        assert get_depreciation_for_year(make_input(), 2020) == 1800.0
        assert get_depreciation_for_year(make_input(acquisition_date=date(2020, 7, 1)), 2020) == 900.0
        assert get_depreciation_for_year(make_input(), 2026) == 0.0

    def test_summary(self):
        summary = depreciation_summary(make_input(), date(2021, 12, 1))
        assert summary['depreciable_amount'] == 9000.0
        assert summary['current_book_value'] == 10000.0 - 24 * 150.0
        assert summary['remaining_depreciable_amount'] == summary['current_book_value'] - 1000.0


# ============================================
# Horizon and chart data
# ============================================

class TestHorizon:
    def test_extends_with_terminal_entries(self):
        schedule = get_annual_schedule(make_input(), through_year=2026)
        assert [e['year'] for e in schedule][-2:] == [2025, 2026]
        assert expenses(schedule)[-2:] == [0.0, 0.0]
        assert book_values(schedule)[-2:] == [1000.0, 1000.0]

    def test_truncates_before_end(self):
        assert len(get_monthly_schedule(make_input(), through_year=2021)) == 24

    def test_chart_data(self):
        points = generate_chart_data(get_annual_schedule(make_input()))
        assert points[0] == {'year': 2020, 'value': 8200.0}
        monthly_points = generate_chart_data(get_monthly_schedule(make_input()))
        assert monthly_points[0] == {'year': 2020, 'month': 1, 'value': 9850.0}


# ============================================
# Validation
# ============================================

class TestValidation:
    @pytest.mark.parametrize('kwargs', [
        {'depreciable_base': 0},
        {'depreciable_base': -100.0},
        {'useful_life_years': 0},
        {'useful_life_years': -3},
        {'salvage_value': 10000.01},
        {'salvage_value': -1.0},
        {'acquisition_date': None},
    ])
    def test_invalid_input(self, kwargs):
        with pytest.raises(InvalidInput):
            get_annual_schedule(make_input(**kwargs))

    def test_unsupported_method(self):
        with pytest.raises(UnsupportedMethod):
            get_monthly_schedule(make_input('MACRS'))

    def test_declining_balance_requires_rate(self):
        with pytest.raises(InvalidInput):
            get_annual_schedule(make_input(DECLINING_BALANCE))

    def test_units_of_activity_requires_total_units(self):
        with pytest.raises(InvalidInput):
            get_annual_schedule(make_input(UNITS_OF_ACTIVITY, total_units=0))

    def test_negative_improvement_rejected(self):
        inp = make_input(capital_improvements=[
            CapitalImprovement(amount=-5.0, effective_date=date(2021, 1, 1))])
        with pytest.raises(InvalidInput):
            get_annual_schedule(inp)

    @pytest.mark.parametrize('units_per_year', [['a', 'b'], 'abc', [100, None], [True, 200]])
    def test_non_numeric_units_rejected(self, units_per_year):
        inp = make_input(UNITS_OF_ACTIVITY, total_units=1000, units_per_year=units_per_year)
        with pytest.raises(InvalidInput):
            get_annual_schedule(inp)

    def test_unknown_granularity(self):
        with pytest.raises(InvalidInput):
            get_depreciation_schedule(make_input(), 'weekly')

    def test_errors_are_value_errors(self):
        assert issubclass(InvalidInput, DepreciationError)
        assert issubclass(UnsupportedMethod, ValueError)

    def test_salvage_equal_to_base_depreciates_nothing(self):
        schedule = get_annual_schedule(make_input(salvage_value=10000.0))
        assert set(expenses(schedule)) == {0.0}
        assert set(book_values(schedule)) == {10000.0}


class TestInputHelpers:
    def test_from_months_rounds_up(self):
        inp = DepreciationInput.from_months(5000.0, date(2022, 1, 1), 30)
        assert inp.useful_life_years == 3
        assert inp.useful_life_months == 36

    def test_salvage_from_residual(self):
        assert salvage_from_residual(10000.0, 10) == 1000.0
        assert salvage_from_residual(10000.0, None) == 0.0
        assert salvage_from_residual(1000.0, 33.3333) == 333.33
