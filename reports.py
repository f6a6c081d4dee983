"""
Asset report assembly.

Runs the depreciation engine once per asset and collects the results
into report rows. An asset whose settings the engine rejects is logged
and reported with empty depreciation fields; the rest of the batch is
unaffected.
"""

import csv
import io
from datetime import date

from flask import current_app

from depreciation import (
    DepreciationError, book_value_as_of, book_values_by_month, get_book_value,
)
from helpers import format_date, get_month_names


def _base_row(asset):
    return {
        'id': asset.id,
        'asset_tag': asset.asset_tag,
        'name': asset.name,
        'unit_price': asset.unit_price,
        'siv_date': asset.siv_date.isoformat() if asset.siv_date else None,
        'depreciation_method': asset.depreciation_method,
        'useful_life_years': asset.useful_life_years,
        'salvage_value': asset.salvage_value,
    }


def asset_report_row(asset, year=None, month=None, today=None):
    """
    Build one report row.

    - no year:        current_book_value (as of today)
    - year only:      book_value (end of year) and book_values_by_month
    - year and month: book_value and accumulated_depreciation
    """
    row = _base_row(asset)
    try:
        inp = asset.to_depreciation_input()
        if year is None:
            row['current_book_value'] = get_book_value(inp, today or date.today())
        elif month is None:
            row['book_value'] = book_value_as_of(inp, year)['book_value']
            row['book_values_by_month'] = {
                str(m): value for m, value in book_values_by_month(inp, year).items()
            }
        else:
            point = book_value_as_of(inp, year, month)
            row['book_value'] = point['book_value']
            row['accumulated_depreciation'] = point['accumulated_depreciation']
        row['error'] = None
    except DepreciationError as e:
        current_app.logger.warning('Depreciation skipped for asset %s (%s): %s',
                                   asset.id, asset.name, e)
        for key in _fields_for(year, month):
            row[key] = None
        row['error'] = str(e)
    return row


def safe_current_book_value(asset, today=None):
    """Current book value of an asset, or None if its settings are invalid."""
    return asset_report_row(asset, today=today)['current_book_value']


def _fields_for(year, month):
    if year is None:
        return ('current_book_value',)
    if month is None:
        return ('book_value', 'book_values_by_month')
    return ('book_value', 'accumulated_depreciation')


def build_asset_report(assets, year=None, month=None, today=None):
    """Evaluate a batch of assets and total the depreciation columns."""
    rows = [asset_report_row(a, year, month, today) for a in assets]

    value_key = 'current_book_value' if year is None else 'book_value'
    totals = {
        'unit_price': round(sum(r['unit_price'] or 0 for r in rows), 2),
        'book_value': round(sum(r[value_key] for r in rows if r[value_key] is not None), 2),
    }
    if year is not None and month is not None:
        totals['accumulated_depreciation'] = round(
            sum(r['accumulated_depreciation'] for r in rows
                if r['accumulated_depreciation'] is not None), 2)

    return {
        'year': year,
        'month': month,
        'assets': rows,
        'totals': totals,
        'asset_count': len(rows),
        'error_count': sum(1 for r in rows if r['error']),
    }


def report_to_csv(report):
    """Render a report built by build_asset_report as CSV text."""
    year, month = report['year'], report['month']
    month_names = get_month_names()

    header = ['Asset Tag', 'Name', 'Unit Price', 'SIV Date', 'Method',
              'Useful Life (Years)', 'Salvage Value']
    if year is None:
        header.append('Current Book Value')
    elif month is None:
        header.append(f'Book Value {year}')
        header.extend(f'{month_names[m]} {year}' for m in range(1, 13))
    else:
        header.extend([f'Book Value {month_names[month]} {year}',
                       f'Accumulated Depreciation {month_names[month]} {year}'])
    header.append('Error')

    output = io.StringIO()
    writer = csv.writer(output)
    writer.writerow(header)

    for r in report['assets']:
        line = [r['asset_tag'] or '', r['name'], _money(r['unit_price']),
                format_date(r['siv_date']), r['depreciation_method'] or '',
                r['useful_life_years'] or '', _money(r['salvage_value'])]
        if year is None:
            line.append(_money(r['current_book_value']))
        elif month is None:
            line.append(_money(r['book_value']))
            by_month = r['book_values_by_month'] or {}
            line.extend(_money(by_month.get(str(m))) for m in range(1, 13))
        else:
            line.extend([_money(r['book_value']), _money(r['accumulated_depreciation'])])
        line.append(r['error'] or '')
        writer.writerow(line)

    return output.getvalue()


def _money(value):
    return '' if value is None else f'{value:.2f}'
