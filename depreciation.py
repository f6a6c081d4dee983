"""
Depreciation calculation engine.

Produces depreciation schedules (annual or monthly), book values and
accumulated depreciation for a single asset. Defaults used when building
an input from an asset record are configured in RULES. Calculation
functions are pure and stateless: every call recomputes the schedule from
the DepreciationInput it is given.

Supported methods:
- Straight line: equal amounts over the useful life
- Declining balance: caller-chosen rate applied to the opening book value
- Double declining: declining balance at 2 / useful life
- Sum of years' digits: remaining life / sum of digits
- Units of activity: share of total units consumed in the period

Capital improvements raise the depreciable base from the period that
contains their effective date.
"""

import calendar
import numbers
from dataclasses import dataclass, field
from datetime import date
from math import ceil
from typing import List, Optional


# =============================================================================
# RULES CONFIGURATION
# =============================================================================

RULES = {
    'default_useful_life_years': 5,   # When neither asset nor category has one
    'default_declining_rate': 20.0,   # Percent per year for DECLINING_BALANCE
    'max_rate': 100.0,                # Annual rates are capped at 100 %
    'money_places': 2,                # Amounts are rounded to cents per period
}

STRAIGHT_LINE = 'STRAIGHT_LINE'
DECLINING_BALANCE = 'DECLINING_BALANCE'
DOUBLE_DECLINING = 'DOUBLE_DECLINING'
SUM_OF_YEARS_DIGITS = 'SUM_OF_YEARS_DIGITS'
UNITS_OF_ACTIVITY = 'UNITS_OF_ACTIVITY'

# Depreciation method choices for the API
DEPRECIATION_METHODS = {
    STRAIGHT_LINE: 'Straight Line',
    DECLINING_BALANCE: 'Declining Balance',
    DOUBLE_DECLINING: 'Double Declining Balance',
    SUM_OF_YEARS_DIGITS: "Sum of the Years' Digits",
    UNITS_OF_ACTIVITY: 'Units of Activity',
}

DECLINING_METHODS = (DECLINING_BALANCE, DOUBLE_DECLINING)

ANNUAL = 'annual'
MONTHLY = 'monthly'


class DepreciationError(ValueError):
    """Base class for all engine failures."""


class InvalidInput(DepreciationError):
    """The financial parameters cannot produce a valid schedule."""


class UnsupportedMethod(DepreciationError):
    """The depreciation method is not one of DEPRECIATION_METHODS."""


@dataclass(frozen=True)
class CapitalImprovement:
    amount: float
    effective_date: date


@dataclass
class DepreciationInput:
    """Financial parameters of one asset, built fresh for every request."""

    depreciable_base: float
    acquisition_date: date
    useful_life_years: int
    salvage_value: float = 0.0
    method: str = STRAIGHT_LINE
    depreciation_rate: Optional[float] = None     # percent, DECLINING_BALANCE only
    total_units: Optional[float] = None
    units_per_year: Optional[List[float]] = None
    capital_improvements: List[CapitalImprovement] = field(default_factory=list)

    @property
    def useful_life_months(self):
        return self.useful_life_years * 12

    @classmethod
    def from_months(cls, depreciable_base, acquisition_date, useful_life_months, **kwargs):
        """Build an input from a useful life given in months (rounded up to whole years)."""
        years = ceil(useful_life_months / 12) if useful_life_months else 0
        return cls(depreciable_base, acquisition_date, years, **kwargs)


def salvage_from_residual(depreciable_base, residual_percentage):
    """Derive a salvage value from a residual percentage of the base."""
    salvage = depreciable_base * (residual_percentage or 0) / 100
    return round(salvage, RULES['money_places'])


# =============================================================================
# VALIDATION
# =============================================================================

def validate_input(inp):
    """Raise InvalidInput or UnsupportedMethod before any schedule is computed."""
    if inp.method not in DEPRECIATION_METHODS:
        raise UnsupportedMethod(f'Unsupported depreciation method: {inp.method}')

    if inp.depreciable_base is None or inp.depreciable_base <= 0:
        raise InvalidInput('Depreciable base must be greater than zero')
    if inp.acquisition_date is None:
        raise InvalidInput('Acquisition date is required')
    if not inp.useful_life_years or inp.useful_life_years <= 0:
        raise InvalidInput('Useful life must be greater than zero')
    if int(inp.useful_life_years) != inp.useful_life_years:
        raise InvalidInput('Useful life must be a whole number of years')

    salvage = inp.salvage_value or 0
    if salvage < 0:
        raise InvalidInput('Salvage value must not be negative')
    if salvage > inp.depreciable_base:
        raise InvalidInput('Salvage value must not exceed the depreciable base')

    if inp.method == DECLINING_BALANCE:
        rate = inp.depreciation_rate
        if rate is None or rate <= 0 or rate > RULES['max_rate']:
            raise InvalidInput('Declining balance requires a rate between 0 and 100 percent')

    if inp.method == UNITS_OF_ACTIVITY:
        if not inp.total_units or inp.total_units <= 0:
            raise InvalidInput('Units of activity requires total units greater than zero')
        units_per_year = inp.units_per_year or []
        if not isinstance(units_per_year, (list, tuple)):
            raise InvalidInput('Units per year must be a list of numbers')
        for units in units_per_year:
            if not isinstance(units, numbers.Real) or isinstance(units, bool):
                raise InvalidInput(f'Units per year must be numbers, got {units!r}')
            if units < 0:
                raise InvalidInput('Units per year must not be negative')

    for improvement in inp.capital_improvements or []:
        if improvement.effective_date is None:
            raise InvalidInput('Capital improvement requires an effective date')
        if improvement.amount is None or improvement.amount < 0:
            raise InvalidInput('Capital improvement amount must not be negative')


# =============================================================================
# PER-PERIOD FORMULAS
# =============================================================================

def period_expense(method, index, periods, base, salvage, book_value,
                   rate=0.0, units=0.0, total_units=None, level_amount=0.0):
    """
    Return the expense for period ``index`` (0-based) of ``periods`` before
    the salvage floor is applied.

    ``base`` is the depreciable base in force for the period, ``book_value``
    the value at the start of the period. ``rate`` is the per-period rate of
    the declining methods, ``units`` the activity of the period and
    ``level_amount`` the current straight-line amount.
    """
    if method == STRAIGHT_LINE:
        return level_amount
    if method in DECLINING_METHODS:
        return book_value * rate
    if method == SUM_OF_YEARS_DIGITS:
        digits = periods * (periods + 1) / 2
        return (base - salvage) * (periods - index) / digits
    if method == UNITS_OF_ACTIVITY:
        return (base - salvage) * units / total_units
    raise UnsupportedMethod(f'Unsupported depreciation method: {method}')


def _annual_rate(inp):
    if inp.method == DOUBLE_DECLINING:
        rate = 2.0 / inp.useful_life_years
    else:
        rate = inp.depreciation_rate / 100
    return min(rate, RULES['max_rate'] / 100)


def _periodic_rate(inp, per_year):
    """Convert the annual declining rate to a compounding per-period rate."""
    rate = _annual_rate(inp)
    if per_year == 1:
        return rate
    return 1 - (1 - rate) ** (1 / per_year)


def _units_by_period(inp, per_year):
    years = inp.useful_life_years
    if inp.units_per_year:
        yearly = list(inp.units_per_year)
        while len(yearly) < years:
            yearly.append(yearly[-1])
    else:
        yearly = [inp.total_units / years] * years
    return [units / per_year for units in yearly[:years] for _ in range(per_year)]


def _improvements_by_period(inp, per_year, periods):
    """Map period index -> total improvement amount effective in that period."""
    start = inp.acquisition_date
    steps = {}
    for improvement in sorted(inp.capital_improvements or [], key=lambda i: i.effective_date):
        when = improvement.effective_date
        if per_year == 1:
            index = when.year - start.year
        else:
            index = (when.year - start.year) * 12 + when.month - start.month
        index = max(index, 0)
        if index < periods:
            steps[index] = steps.get(index, 0.0) + improvement.amount
    return steps


def _first_month_fraction(start):
    """Share of the acquisition month during which the asset is in service."""
    days = calendar.monthrange(start.year, start.month)[1]
    return (days - start.day + 1) / days


def _period_label(start, index, per_year):
    if per_year == 1:
        return start.year + index, None
    total = start.month - 1 + index
    return start.year + total // 12, total % 12 + 1


# =============================================================================
# SCHEDULE ASSEMBLY
# =============================================================================

def get_depreciation_schedule(inp, granularity=ANNUAL, through_year=None):
    """
    Generate the full depreciation schedule for an asset.

    Returns a list of dicts, one per period:
        [{'year': int, 'month': int (monthly only), 'depreciation_expense': float,
          'accumulated_depreciation': float, 'book_value': float,
          'depreciable_base': float}, ...]

    The schedule runs from the acquisition period to the end of the useful
    life. ``through_year`` moves the horizon: earlier years truncate the
    list, later years append fully depreciated zero-expense periods.
    """
    if granularity not in (ANNUAL, MONTHLY):
        raise InvalidInput(f'Unknown schedule granularity: {granularity}')
    validate_input(inp)

    per_year = 12 if granularity == MONTHLY else 1
    places = RULES['money_places']
    periods = inp.useful_life_years * per_year
    salvage = round(float(inp.salvage_value or 0), places)
    method = inp.method

    rate = _periodic_rate(inp, per_year) if method in DECLINING_METHODS else 0.0
    units = _units_by_period(inp, per_year) if method == UNITS_OF_ACTIVITY else None
    steps = _improvements_by_period(inp, per_year, periods)

    # Fold over periods carrying (base, accumulated, book value)
    base = float(inp.depreciable_base)
    accumulated = 0.0
    book_value = base
    level_amount = (base - salvage) / periods
    schedule = []

    for index in range(periods):
        added = steps.get(index)
        if added:
            base += added
            book_value = round(base - accumulated, places)
            # Straight line spreads what is left over the remaining periods
            level_amount = (book_value - salvage) / (periods - index)

        expense = period_expense(
            method, index, periods, base, salvage, book_value,
            rate=rate,
            units=units[index] if units else 0.0,
            total_units=inp.total_units,
            level_amount=level_amount,
        )
        if index == 0 and per_year == 12:
            expense *= _first_month_fraction(inp.acquisition_date)

        remaining = max(round(book_value - salvage, places), 0.0)
        if index == periods - 1:
            expense = remaining
        expense = round(min(max(expense, 0.0), remaining), places)

        accumulated = round(accumulated + expense, places)
        book_value = round(base - accumulated, places)

        year, month = _period_label(inp.acquisition_date, index, per_year)
        schedule.append(_entry(year, month, expense, accumulated, book_value, base))

    if through_year is not None:
        schedule = _apply_horizon(schedule, inp.acquisition_date, per_year, through_year)
    return schedule


def get_annual_schedule(inp, through_year=None):
    return get_depreciation_schedule(inp, ANNUAL, through_year)


def get_monthly_schedule(inp, through_year=None):
    return get_depreciation_schedule(inp, MONTHLY, through_year)


def _entry(year, month, expense, accumulated, book_value, base):
    entry = {'year': year}
    if month is not None:
        entry['month'] = month
    entry.update({
        'depreciation_expense': expense,
        'accumulated_depreciation': accumulated,
        'book_value': book_value,
        'depreciable_base': round(base, RULES['money_places']),
    })
    return entry


def _apply_horizon(schedule, start, per_year, through_year):
    trimmed = [e for e in schedule if e['year'] <= through_year]
    if len(trimmed) < len(schedule):
        return trimmed

    last = schedule[-1]
    index = len(schedule)
    while True:
        year, month = _period_label(start, index, per_year)
        if year > through_year:
            break
        trimmed.append(_entry(year, month, 0.0, last['accumulated_depreciation'],
                              last['book_value'], last['depreciable_base']))
        index += 1
    return trimmed


# =============================================================================
# POINT-IN-TIME QUERIES
# =============================================================================

def _point(entry):
    return {
        'book_value': entry['book_value'],
        'accumulated_depreciation': entry['accumulated_depreciation'],
        'depreciable_base': entry['depreciable_base'],
    }


def _not_started(inp):
    base = round(float(inp.depreciable_base), RULES['money_places'])
    return {'book_value': base, 'accumulated_depreciation': 0.0, 'depreciable_base': base}


def _resolve(inp, schedule, year, month=None):
    """Find the state at (year, month) in an already computed schedule."""
    start = inp.acquisition_date
    if month is None:
        if year < start.year:
            return _not_started(inp)
        matches = [e for e in schedule if e['year'] == year]
    else:
        if (year, month) < (start.year, start.month):
            return _not_started(inp)
        matches = [e for e in schedule if e['year'] == year and e['month'] == month]

    if matches:
        return _point(matches[-1])
    # Past the end of the useful life: terminal state
    return _point(schedule[-1])


def _check_month(month):
    if not 1 <= month <= 12:
        raise InvalidInput(f'Month must be between 1 and 12, got {month}')


def book_value_as_of(inp, year, month=None):
    """
    Return {'book_value', 'accumulated_depreciation', 'depreciable_base'} at
    the end of ``year`` (annual schedule) or of ``year``/``month`` (monthly
    schedule).

    Before the acquisition period the asset is not yet in service: the book
    value is the depreciable base and nothing is accumulated. After the end
    of the useful life the terminal state is returned.
    """
    if month is None:
        return _resolve(inp, get_annual_schedule(inp), year)
    _check_month(month)
    return _resolve(inp, get_monthly_schedule(inp), year, month)


def accumulated_depreciation_as_of(inp, year, month):
    """Return accumulated depreciation at the end of ``year``/``month``."""
    return book_value_as_of(inp, year, month)['accumulated_depreciation']


def get_book_value(inp, as_of_date=None):
    """
    Calculate the book value of an asset as of a date (month granularity).

    If as_of_date is omitted, uses today.
    """
    if as_of_date is None:
        as_of_date = date.today()
    return book_value_as_of(inp, as_of_date.year, as_of_date.month)['book_value']


def book_values_by_month(inp, year):
    """Return {month: book_value} for all twelve months of ``year``."""
    schedule = get_monthly_schedule(inp)
    return {month: _resolve(inp, schedule, year, month)['book_value'] for month in range(1, 13)}


def get_depreciation_for_year(inp, year):
    """Return the depreciation expense recognised during a calendar year."""
    schedule = get_monthly_schedule(inp)
    total = sum(e['depreciation_expense'] for e in schedule if e['year'] == year)
    return round(total, RULES['money_places'])


def depreciation_summary(inp, as_of_date=None):
    """Summarise an asset's depreciation position as of a date (default today)."""
    if as_of_date is None:
        as_of_date = date.today()
    point = book_value_as_of(inp, as_of_date.year, as_of_date.month)
    places = RULES['money_places']
    salvage = round(float(inp.salvage_value or 0), places)
    return {
        'depreciable_base': point['depreciable_base'],
        'salvage_value': round(salvage, places),
        'depreciable_amount': round(point['depreciable_base'] - salvage, places),
        'current_book_value': point['book_value'],
        'accumulated_depreciation': point['accumulated_depreciation'],
        'remaining_depreciable_amount': round(point['book_value'] - salvage, places),
        'method': inp.method,
        'useful_life_years': inp.useful_life_years,
        'acquisition_date': inp.acquisition_date,
    }


def generate_chart_data(schedule):
    """Turn a schedule into a book value series for charts."""
    points = []
    for entry in schedule:
        point = {'year': entry['year']}
        if 'month' in entry:
            point['month'] = entry['month']
        point['value'] = entry['book_value']
        points.append(point)
    return points
