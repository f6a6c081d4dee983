"""
REST API blueprint for asset depreciation data.

Authentication: API key via header  Authorization: Bearer <API_KEY>
The API key is set via the API_KEY config value (environment variable).

All responses are JSON unless a CSV export is requested. Monetary values
are floats rounded to cents. Dates are ISO 8601 (YYYY-MM-DD).
"""

from datetime import date
from functools import wraps

from flask import Blueprint, Response, current_app, jsonify, request

from depreciation import (
    ANNUAL, DEPRECIATION_METHODS, MONTHLY, DepreciationError, InvalidInput,
    UnsupportedMethod, book_value_as_of, depreciation_summary, generate_chart_data,
    get_depreciation_schedule, get_monthly_schedule, validate_input,
)
from helpers import parse_amount, parse_date
from models import Asset, CapitalImprovement, DepreciationCategory, db
from reports import build_asset_report, report_to_csv, safe_current_book_value

api_bp = Blueprint('api', __name__)


# ---------------------------------------------------------------------------
# Authentication
# ---------------------------------------------------------------------------

def require_api_key(f):
    """Decorator: require a valid API key in the Authorization header."""
    @wraps(f)
    def decorated(*args, **kwargs):
        api_key = current_app.config.get('API_KEY', '')
        if not api_key:
            return jsonify({'error': 'API not configured. Set API_KEY environment variable.'}), 503

        auth = request.headers.get('Authorization', '')
        if not auth.startswith('Bearer ') or auth[7:] != api_key:
            return jsonify({'error': 'Unauthorized. Provide header: Authorization: Bearer <API_KEY>'}), 401

        return f(*args, **kwargs)
    return decorated


@api_bp.errorhandler(DepreciationError)
def handle_depreciation_error(e):
    current_app.logger.info('Rejected depreciation request: %s', e)
    return jsonify({'error': str(e), 'type': type(e).__name__}), 400


@api_bp.errorhandler(ValueError)
def handle_bad_value(e):
    return jsonify({'error': f'Invalid value: {e}'}), 400


# ---------------------------------------------------------------------------
# Serialisation
# ---------------------------------------------------------------------------

def _improvement_to_dict(ci):
    """Serialize a CapitalImprovement to a dict."""
    return {
        'id': ci.id,
        'asset_id': ci.asset_id,
        'description': ci.description,
        'improvement_date': ci.improvement_date.isoformat() if ci.improvement_date else None,
        'cost': ci.cost,
        'notes': ci.notes,
    }


def _asset_to_dict(a, include_improvements=False):
    """Serialize an Asset to a dict."""
    d = {
        'id': a.id,
        'asset_tag': a.asset_tag,
        'name': a.name,
        'description': a.description,
        'unit_price': a.unit_price,
        'siv_date': a.siv_date.isoformat() if a.siv_date else None,
        'depreciation_method': a.depreciation_method,
        'useful_life_years': a.useful_life_years,
        'useful_life_months': a.useful_life_months,
        'salvage_value': a.salvage_value,
        'residual_percentage': a.residual_percentage,
        'depreciation_rate': a.depreciation_rate,
        'total_units': a.total_units,
        'units_per_year': a.units_per_year,
        'depreciation_category_id': a.depreciation_category_id,
        'current_book_value': safe_current_book_value(a),
        'notes': a.notes,
        'created_at': a.created_at.isoformat() if a.created_at else None,
    }
    if include_improvements:
        d['capital_improvements'] = [_improvement_to_dict(ci) for ci in a.capital_improvements]
    return d


def _category_to_dict(c):
    return {
        'id': c.id,
        'name': c.name,
        'useful_life_months': c.useful_life_months,
        'default_method': c.default_method,
        'description': c.description,
    }


def _get_asset_or_404(asset_id):
    asset = db.session.get(Asset, asset_id)
    if not asset:
        return None, (jsonify({'error': f'Asset {asset_id} not found'}), 404)
    return asset, None


def _optional_str(data, key):
    value = data.get(key)
    if value is None:
        return None
    return str(value).strip() or None


def _optional_int(data, key):
    value = data.get(key)
    if value is None or value == '':
        return None
    return int(value)


def _json_object():
    data = request.get_json(force=True, silent=True)
    if not isinstance(data, dict):
        raise ValueError('request body must be a JSON object')
    return data


def _parse_units_per_year(value):
    if value is None or value == []:
        return None
    if not isinstance(value, list) or not all(
            isinstance(u, (int, float)) and not isinstance(u, bool) for u in value):
        raise InvalidInput('units_per_year must be a list of numbers')
    return value


def _apply_depreciation_settings(asset, data):
    """Copy the depreciation settings present in ``data`` onto the asset."""
    if 'unit_price' in data:
        unit_price = parse_amount(data['unit_price'])
        if unit_price is None:
            raise InvalidInput('unit_price cannot be empty')
        asset.unit_price = unit_price
    if 'siv_date' in data:
        asset.siv_date = parse_date(data['siv_date'])
    if 'depreciation_method' in data:
        method = _optional_str(data, 'depreciation_method')
        if method and method.upper() not in DEPRECIATION_METHODS:
            raise UnsupportedMethod(f'Unsupported depreciation method: {method}')
        asset.depreciation_method = method.upper() if method else None
    for key in ('useful_life_years', 'useful_life_months'):
        if key in data:
            value = _optional_int(data, key)
            if value is not None and value <= 0:
                raise InvalidInput(f'{key} must be greater than zero')
            setattr(asset, key, value)
    for key in ('salvage_value', 'residual_percentage', 'depreciation_rate', 'total_units'):
        if key in data:
            setattr(asset, key, parse_amount(data[key]))
    if 'units_per_year' in data:
        asset.units_per_year = _parse_units_per_year(data['units_per_year'])


# ---------------------------------------------------------------------------
# Reference data
# ---------------------------------------------------------------------------

@api_bp.route('/depreciation-methods', methods=['GET'])
@require_api_key
def list_depreciation_methods():
    """List the supported depreciation methods."""
    return jsonify({'methods': [{'key': k, 'label': v} for k, v in DEPRECIATION_METHODS.items()]})


@api_bp.route('/depreciation-categories', methods=['GET'])
@require_api_key
def list_depreciation_categories():
    """List depreciation categories with their default useful life."""
    cats = DepreciationCategory.query.order_by(DepreciationCategory.sort_order,
                                               DepreciationCategory.name).all()
    return jsonify({'categories': [_category_to_dict(c) for c in cats]})


# ---------------------------------------------------------------------------
# Assets
# ---------------------------------------------------------------------------

@api_bp.route('/assets', methods=['GET'])
@require_api_key
def list_assets():
    """
    List assets with their current book value.
    Query params: q (search name/tag), limit (default 100), offset
    """
    query = Asset.query
    q = request.args.get('q', '').strip()
    if q:
        pattern = f'%{q}%'
        query = query.filter(db.or_(Asset.name.ilike(pattern), Asset.asset_tag.ilike(pattern)))

    total = query.count()
    limit = min(request.args.get('limit', 100, type=int), 1000)
    offset = request.args.get('offset', 0, type=int)
    assets = query.order_by(Asset.name, Asset.id).limit(limit).offset(offset).all()

    return jsonify({
        'assets': [_asset_to_dict(a) for a in assets],
        'total': total,
        'limit': limit,
        'offset': offset,
    })


@api_bp.route('/assets', methods=['POST'])
@require_api_key
def create_asset():
    """
    Create a new asset.
    Body: {
        name:                 string           (required)
        unit_price:           number           (required)
        siv_date:             "YYYY-MM-DD"
        asset_tag, description, notes: string
        depreciation_method:  one of /depreciation-methods
        useful_life_years | useful_life_months: int
        salvage_value | residual_percentage:   number
        depreciation_rate:    number (percent)
        total_units:          number
        units_per_year:       [number, ...]
        depreciation_category_id: int
    }
    """
    data = _json_object()
    name = (data.get('name') or '').strip()
    if not name:
        return jsonify({'error': 'name is required'}), 400
    if parse_amount(data.get('unit_price')) is None:
        return jsonify({'error': 'unit_price is required'}), 400

    category = None
    category_id = _optional_int(data, 'depreciation_category_id')
    if category_id:
        category = db.session.get(DepreciationCategory, category_id)
        if not category:
            return jsonify({'error': f'Depreciation category {category_id} not found'}), 400

    asset = Asset(
        name=name,
        asset_tag=_optional_str(data, 'asset_tag'),
        description=_optional_str(data, 'description'),
        notes=_optional_str(data, 'notes'),
    )
    _apply_depreciation_settings(asset, data)
    asset.depreciation_category = category
    if not asset.depreciation_method and category:
        asset.depreciation_method = category.default_method

    db.session.add(asset)
    try:
        validate_input(asset.to_depreciation_input())
    except DepreciationError:
        db.session.rollback()
        raise
    db.session.commit()
    current_app.logger.info('Created asset %s (%s).', asset.id, asset.name)
    return jsonify({'asset': _asset_to_dict(asset, include_improvements=True)}), 201


@api_bp.route('/assets/<int:asset_id>', methods=['GET'])
@require_api_key
def get_asset(asset_id):
    """Get a single asset with its capital improvements."""
    asset, error = _get_asset_or_404(asset_id)
    if error:
        return error
    return jsonify({'asset': _asset_to_dict(asset, include_improvements=True)})


# ---------------------------------------------------------------------------
# Capital improvements
# ---------------------------------------------------------------------------

def _get_improvement_or_404(asset_id, improvement_id):
    ci = db.session.get(CapitalImprovement, improvement_id)
    if not ci or ci.asset_id != asset_id:
        return None, (jsonify({'error': f'Capital improvement {improvement_id} not found'}), 404)
    return ci, None


@api_bp.route('/assets/<int:asset_id>/capital-improvements', methods=['GET'])
@require_api_key
def list_capital_improvements(asset_id):
    """List capital improvements of an asset, newest first."""
    asset, error = _get_asset_or_404(asset_id)
    if error:
        return error
    improvements = sorted(asset.capital_improvements,
                          key=lambda ci: ci.improvement_date, reverse=True)
    return jsonify({'capital_improvements': [_improvement_to_dict(ci) for ci in improvements]})


@api_bp.route('/assets/<int:asset_id>/capital-improvements', methods=['POST'])
@require_api_key
def create_capital_improvement(asset_id):
    """
    Record a capital improvement.
    Body: { description (required), improvement_date (required), cost (required), notes? }
    """
    asset, error = _get_asset_or_404(asset_id)
    if error:
        return error

    data = _json_object()
    description = (data.get('description') or '').strip()
    improvement_date = parse_date(data.get('improvement_date'))
    cost = parse_amount(data.get('cost'))
    if not description or not improvement_date or cost is None:
        return jsonify({'error': 'Missing required fields: description, improvement_date, cost'}), 400
    if cost <= 0:
        return jsonify({'error': 'cost must be greater than zero'}), 400

    ci = CapitalImprovement(
        asset=asset,
        description=description,
        improvement_date=improvement_date,
        cost=cost,
        notes=_optional_str(data, 'notes'),
    )
    db.session.add(ci)
    db.session.commit()
    current_app.logger.info('Capital improvement of %.2f recorded for asset %s.', cost, asset.id)
    return jsonify({'capital_improvement': _improvement_to_dict(ci)}), 201


@api_bp.route('/assets/<int:asset_id>/capital-improvements/<int:improvement_id>', methods=['GET'])
@require_api_key
def get_capital_improvement(asset_id, improvement_id):
    ci, error = _get_improvement_or_404(asset_id, improvement_id)
    if error:
        return error
    return jsonify({'capital_improvement': _improvement_to_dict(ci)})


@api_bp.route('/assets/<int:asset_id>/capital-improvements/<int:improvement_id>',
              methods=['PUT', 'PATCH'])
@require_api_key
def update_capital_improvement(asset_id, improvement_id):
    """
    Correct a capital improvement.
    Body: { description?, improvement_date?, cost?, notes? }
    """
    ci, error = _get_improvement_or_404(asset_id, improvement_id)
    if error:
        return error

    data = _json_object()
    if 'description' in data:
        description = (data['description'] or '').strip()
        if not description:
            return jsonify({'error': 'description cannot be empty'}), 400
        ci.description = description
    if 'improvement_date' in data:
        improvement_date = parse_date(data['improvement_date'])
        if not improvement_date:
            return jsonify({'error': 'improvement_date cannot be empty'}), 400
        ci.improvement_date = improvement_date
    if 'cost' in data:
        cost = parse_amount(data['cost'])
        if cost is None or cost <= 0:
            return jsonify({'error': 'cost must be greater than zero'}), 400
        ci.cost = cost
    if 'notes' in data:
        ci.notes = _optional_str(data, 'notes')

    db.session.commit()
    current_app.logger.info('Capital improvement %s of asset %s updated.', ci.id, asset_id)
    return jsonify({'capital_improvement': _improvement_to_dict(ci)})


@api_bp.route('/assets/<int:asset_id>/capital-improvements/<int:improvement_id>',
              methods=['DELETE'])
@require_api_key
def delete_capital_improvement(asset_id, improvement_id):
    """Delete a capital improvement. The schedule no longer includes its cost."""
    ci, error = _get_improvement_or_404(asset_id, improvement_id)
    if error:
        return error

    db.session.delete(ci)
    db.session.commit()
    current_app.logger.info('Capital improvement %s of asset %s deleted.', improvement_id, asset_id)
    return jsonify({'deleted': True, 'id': improvement_id})


# ---------------------------------------------------------------------------
# Depreciation
# ---------------------------------------------------------------------------

def _input_from_request(asset):
    """Build the engine input from the asset, applying query overrides."""
    args = request.args
    return asset.to_depreciation_input(
        depreciable_cost=parse_amount(args.get('depreciable_cost')),
        salvage_value=parse_amount(args.get('salvage_value')),
        useful_life_years=args.get('useful_life', type=int),
        method=args.get('method') or None,
        depreciation_rate=parse_amount(args.get('depreciation_rate')),
        acquisition_date=parse_date(args.get('date_acquired')),
    )


def _depreciation_response(asset, inp, granularity=ANNUAL, through_year=None):
    schedule = get_depreciation_schedule(inp, granularity, through_year)
    return jsonify({
        'asset': {'id': asset.id, 'name': asset.name, 'unit_price': asset.unit_price},
        'depreciation_settings': {
            'depreciable_cost': inp.depreciable_base,
            'salvage_value': inp.salvage_value,
            'useful_life_years': inp.useful_life_years,
            'useful_life_months': inp.useful_life_months,
            'depreciation_method': inp.method,
            'depreciation_rate': inp.depreciation_rate,
            'start_date': inp.acquisition_date.isoformat(),
        },
        'granularity': granularity,
        'schedule': schedule,
        'chart_data': generate_chart_data(schedule),
        'summary': _summary_to_json(depreciation_summary(inp)),
    })


@api_bp.route('/assets/<int:asset_id>/depreciation', methods=['GET'])
@require_api_key
def get_asset_depreciation(asset_id):
    """
    Depreciation schedule for an asset.
    Query params (all optional, override the stored settings):
      useful_life        – years
      salvage_value      – amount
      method             – depreciation method key
      depreciation_rate  – percent (declining balance)
      depreciable_cost   – amount
      date_acquired      – YYYY-MM-DD
      granularity        – annual | monthly (default annual)
      through_year       – extend or cut the schedule at this year
    """
    asset, error = _get_asset_or_404(asset_id)
    if error:
        return error

    granularity = request.args.get('granularity', ANNUAL)
    if granularity not in (ANNUAL, MONTHLY):
        return jsonify({'error': 'granularity must be annual or monthly'}), 400

    return _depreciation_response(asset, _input_from_request(asset), granularity,
                                  request.args.get('through_year', type=int))


@api_bp.route('/assets/<int:asset_id>/depreciation', methods=['PUT', 'PATCH'])
@require_api_key
def update_asset_depreciation(asset_id):
    """
    Update the stored depreciation settings and return the recalculated
    annual schedule. Settings the engine rejects are not saved.
    Body: {
        unit_price?, siv_date?, depreciation_method?, useful_life_years?,
        useful_life_months?, salvage_value?, residual_percentage?,
        depreciation_rate?, total_units?, units_per_year?
    }
    A null value clears a setting so the default applies again.
    """
    asset, error = _get_asset_or_404(asset_id)
    if error:
        return error

    data = _json_object()
    try:
        _apply_depreciation_settings(asset, data)
        validate_input(asset.to_depreciation_input())
    except ValueError:
        db.session.rollback()
        raise

    db.session.commit()
    current_app.logger.info('Depreciation settings of asset %s updated: %s.',
                            asset.id, ', '.join(sorted(data)) or 'no changes')
    return _depreciation_response(asset, asset.to_depreciation_input())


def _summary_to_json(summary):
    summary['acquisition_date'] = summary['acquisition_date'].isoformat()
    return summary


@api_bp.route('/assets/<int:asset_id>/schedule', methods=['GET'])
@require_api_key
def get_asset_schedule(asset_id):
    """Monthly depreciation schedule using the stored settings."""
    asset, error = _get_asset_or_404(asset_id)
    if error:
        return error
    schedule = get_monthly_schedule(asset.to_depreciation_input())
    return jsonify({'schedule': schedule})


@api_bp.route('/assets/<int:asset_id>/book-value', methods=['GET'])
@require_api_key
def get_asset_book_value(asset_id):
    """
    Book value and accumulated depreciation at a point in time.
    Query params: year, month (1-12). Without year: as of today.
    """
    asset, error = _get_asset_or_404(asset_id)
    if error:
        return error

    year = request.args.get('year', type=int)
    month = request.args.get('month', type=int)
    if month is not None and year is None:
        return jsonify({'error': 'month requires year'}), 400
    if year is None:
        today = date.today()
        year, month = today.year, today.month

    point = book_value_as_of(asset.to_depreciation_input(), year, month)
    return jsonify({'asset_id': asset.id, 'year': year, 'month': month, **point})


# ---------------------------------------------------------------------------
# Reports
# ---------------------------------------------------------------------------

@api_bp.route('/reports/assets', methods=['GET'])
@require_api_key
def asset_report():
    """
    Book value report over all assets.
    Query params:
      year    – book value at year end plus monthly book values
      month   – with year: book value and accumulated depreciation for that month
      format  – json (default) | csv
    Assets with invalid depreciation settings are listed with empty values.
    """
    year = request.args.get('year', type=int)
    month = request.args.get('month', type=int)
    if month is not None and year is None:
        return jsonify({'error': 'month requires year'}), 400
    if month is not None and not 1 <= month <= 12:
        return jsonify({'error': 'month must be between 1 and 12'}), 400

    limit = current_app.config['REPORT_ASSET_LIMIT']
    assets = Asset.query.order_by(Asset.name, Asset.id).limit(limit).all()
    report = build_asset_report(assets, year, month)
    report['limit'] = limit
    if report['error_count']:
        current_app.logger.warning('Asset report: %d of %d assets without depreciation values.',
                                   report['error_count'], report['asset_count'])

    if request.args.get('format') == 'csv':
        filename = f'asset_report_{date.today().isoformat()}.csv'
        return Response(
            report_to_csv(report),
            mimetype='text/csv',
            headers={'Content-Disposition': f'attachment; filename={filename}'},
        )
    return jsonify(report)
