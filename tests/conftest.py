from datetime import date

import pytest

from app import create_app
from models import Asset, CapitalImprovement, db

API_KEY = 'test-api-key'


@pytest.fixture
def app():
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'API_KEY': API_KEY,
        'REPORT_ASSET_LIMIT': 100,
    })
    with app.app_context():
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def auth_headers():
    return {'Authorization': f'Bearer {API_KEY}'}


@pytest.fixture
def make_asset(app):
    """Factory: persist an asset with straight-line defaults."""
    def _make(improvements=(), **kwargs):
        params = {
            'name': 'Forklift',
            'unit_price': 10000.0,
            'siv_date': date(2020, 1, 1),
            'useful_life_years': 5,
            'salvage_value': 1000.0,
            'depreciation_method': 'STRAIGHT_LINE',
        }
        params.update(kwargs)
        asset = Asset(**params)
        for cost, when in improvements:
            asset.capital_improvements.append(
                CapitalImprovement(description='Upgrade', cost=cost, improvement_date=when))
        db.session.add(asset)
        db.session.commit()
        return asset
    return _make
