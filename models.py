import json
from datetime import datetime, date
from math import ceil

from flask import current_app
from flask_sqlalchemy import SQLAlchemy

from depreciation import (
    CapitalImprovement as ImprovementStep, DepreciationInput, DEPRECIATION_METHODS,
    DECLINING_BALANCE, RULES, STRAIGHT_LINE, get_book_value, salvage_from_residual,
)

db = SQLAlchemy()


class DepreciationCategory(db.Model):
    """
    Asset categories with a default useful life and depreciation method.

    Assets without their own useful life fall back to their category's.
    """
    __tablename__ = 'depreciation_categories'

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False)
    useful_life_months = db.Column(db.Integer, nullable=False)
    default_method = db.Column(db.String(30), nullable=False, default=STRAIGHT_LINE)
    description = db.Column(db.Text, nullable=True)
    sort_order = db.Column(db.Integer, default=0)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    def __repr__(self):
        return f'<DepreciationCategory {self.name} ({self.useful_life_months}m)>'


class Asset(db.Model):
    """
    A tracked fixed asset.

    Depreciation is calculated on demand by the depreciation module,
    never stored, so a changed setting is reflected in every report.
    """
    __tablename__ = 'assets'

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(300), nullable=False)
    asset_tag = db.Column(db.String(50), unique=True, nullable=True)
    description = db.Column(db.Text, nullable=True)

    # Acquisition
    unit_price = db.Column(db.Float, nullable=False)  # Acquisition cost, depreciation base
    siv_date = db.Column(db.Date, nullable=True)      # Placed in service, depreciation start

    # Depreciation settings
    depreciation_method = db.Column(db.String(30), nullable=True, default=STRAIGHT_LINE)
    useful_life_years = db.Column(db.Integer, nullable=True)
    useful_life_months = db.Column(db.Integer, nullable=True)  # Used when years is empty
    salvage_value = db.Column(db.Float, nullable=True)
    residual_percentage = db.Column(db.Float, nullable=True)   # Used when salvage is empty
    depreciation_rate = db.Column(db.Float, nullable=True)     # Percent, declining balance
    total_units = db.Column(db.Float, nullable=True)           # Units of activity
    units_per_year_json = db.Column(db.Text, nullable=True)    # JSON list of yearly units
    depreciation_category_id = db.Column(db.Integer, db.ForeignKey('depreciation_categories.id'), nullable=True)

    # Metadata
    notes = db.Column(db.Text, nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    depreciation_category = db.relationship('DepreciationCategory', backref='assets')
    capital_improvements = db.relationship('CapitalImprovement', backref='asset',
                                           cascade='all, delete-orphan',
                                           order_by='CapitalImprovement.improvement_date')

    @property
    def units_per_year(self):
        if not self.units_per_year_json:
            return None
        return json.loads(self.units_per_year_json)

    @units_per_year.setter
    def units_per_year(self, values):
        self.units_per_year_json = json.dumps(list(values)) if values else None

    @property
    def resolved_method(self):
        """Stored method, or STRAIGHT_LINE when it is empty or unknown."""
        method = (self.depreciation_method or '').strip().upper()
        if not method:
            return STRAIGHT_LINE
        if method not in DEPRECIATION_METHODS:
            current_app.logger.warning(
                'Asset %s has unknown depreciation method %r, using %s.',
                self.id, self.depreciation_method, STRAIGHT_LINE)
            return STRAIGHT_LINE
        return method

    @property
    def resolved_useful_life_years(self):
        if self.useful_life_years:
            return self.useful_life_years
        if self.useful_life_months:
            return ceil(self.useful_life_months / 12)
        if self.depreciation_category and self.depreciation_category.useful_life_months:
            return ceil(self.depreciation_category.useful_life_months / 12)
        return RULES['default_useful_life_years']

    @property
    def acquisition_date(self):
        """Depreciation start: in-service date, else the creation date."""
        if self.siv_date:
            return self.siv_date
        if self.created_at:
            return self.created_at.date()
        return date.today()

    def to_depreciation_input(self, depreciable_cost=None, salvage_value=None,
                              useful_life_years=None, method=None,
                              depreciation_rate=None, acquisition_date=None):
        """
        Build the engine input for this asset.

        Keyword arguments override the stored settings (e.g. from query
        parameters). An explicit method override is passed through as given
        so the engine can reject it.
        """
        base = depreciable_cost if depreciable_cost is not None else self.unit_price
        method = method.strip().upper() if method else self.resolved_method

        if salvage_value is None:
            if self.salvage_value is not None:
                salvage_value = self.salvage_value
            else:
                salvage_value = salvage_from_residual(base or 0, self.residual_percentage)

        if depreciation_rate is None:
            depreciation_rate = self.depreciation_rate
        if depreciation_rate is None and method == DECLINING_BALANCE:
            depreciation_rate = RULES['default_declining_rate']

        improvements = [
            ImprovementStep(amount=ci.cost, effective_date=ci.improvement_date)
            for ci in self.capital_improvements
        ]

        return DepreciationInput(
            depreciable_base=base,
            acquisition_date=acquisition_date or self.acquisition_date,
            useful_life_years=(useful_life_years if useful_life_years is not None
                               else self.resolved_useful_life_years),
            salvage_value=salvage_value,
            method=method,
            depreciation_rate=depreciation_rate,
            total_units=self.total_units,
            units_per_year=self.units_per_year,
            capital_improvements=improvements,
        )

    @property
    def current_book_value(self):
        return get_book_value(self.to_depreciation_input())

    @property
    def is_fully_depreciated(self):
        """Check if the asset has reached its salvage value."""
        inp = self.to_depreciation_input()
        return get_book_value(inp) <= round(inp.salvage_value or 0, RULES['money_places'])

    def __repr__(self):
        return f'<Asset {self.name} ({self.depreciation_method})>'


class CapitalImprovement(db.Model):
    """A cost added to an asset after acquisition, raising its depreciable base."""
    __tablename__ = 'capital_improvements'

    id = db.Column(db.Integer, primary_key=True)
    asset_id = db.Column(db.Integer, db.ForeignKey('assets.id'), nullable=False, index=True)
    description = db.Column(db.String(500), nullable=False)
    improvement_date = db.Column(db.Date, nullable=False)
    cost = db.Column(db.Float, nullable=False)
    notes = db.Column(db.Text, nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    def __repr__(self):
        return f'<CapitalImprovement {self.description} {self.cost} {self.improvement_date}>'
