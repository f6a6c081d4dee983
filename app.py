import os

from dotenv import load_dotenv
from flask import Flask, jsonify

from depreciation import DOUBLE_DECLINING, STRAIGHT_LINE
from models import db, DepreciationCategory

load_dotenv()


def create_app(config=None):
    app = Flask(__name__, instance_relative_config=True)

    # Configuration
    app.config['SECRET_KEY'] = os.environ.get('SECRET_KEY', 'dev-secret-key-change-in-production')
    app.config['SQLALCHEMY_DATABASE_URI'] = (
        os.environ.get('DATABASE_URL')
        or 'sqlite:///' + os.path.join(app.instance_path, 'assets.db')
    )
    app.config['SQLALCHEMY_TRACK_MODIFICATIONS'] = False
    app.config['API_KEY'] = os.environ.get('API_KEY', '')
    # Upper bound on assets evaluated by one report request
    app.config['REPORT_ASSET_LIMIT'] = int(os.environ.get('REPORT_ASSET_LIMIT', 5000))
    app.config['LOG_LEVEL'] = os.environ.get('LOG_LEVEL', 'INFO')
    if config:
        app.config.update(config)

    app.logger.setLevel(app.config['LOG_LEVEL'])
    os.makedirs(app.instance_path, exist_ok=True)

    # Initialize extensions
    db.init_app(app)

    # Create tables and seed default data
    with app.app_context():
        db.create_all()
        _seed_defaults(app)

    # Register blueprints
    from blueprints.api import api_bp
    app.register_blueprint(api_bp, url_prefix='/api/v1')

    @app.route('/')
    def index():
        return jsonify({'service': 'asset-depreciation', 'api': '/api/v1'})

    app.logger.info('Asset depreciation service initialised (report limit %d assets).',
                    app.config['REPORT_ASSET_LIMIT'])
    return app


def _seed_defaults(app):
    """Create default depreciation categories if none exist."""
    if DepreciationCategory.query.count() > 0:
        return

    default_dep_cats = [
        DepreciationCategory(name='Computer Equipment', useful_life_months=36,
                             default_method=STRAIGHT_LINE, sort_order=1,
                             description='Laptops, desktops, servers'),
        DepreciationCategory(name='Software', useful_life_months=36,
                             default_method=STRAIGHT_LINE, sort_order=2,
                             description='Licensed and capitalised software'),
        DepreciationCategory(name='Office Furniture', useful_life_months=84,
                             default_method=STRAIGHT_LINE, sort_order=10,
                             description='Desks, shelving, cabinets, chairs'),
        DepreciationCategory(name='Printers / Scanners', useful_life_months=60,
                             default_method=STRAIGHT_LINE, sort_order=11,
                             description='Printers, scanners, copiers'),
        DepreciationCategory(name='Mobile Devices', useful_life_months=36,
                             default_method=STRAIGHT_LINE, sort_order=12,
                             description='Phones, tablets'),
        DepreciationCategory(name='Vehicles', useful_life_months=60,
                             default_method=DOUBLE_DECLINING, sort_order=20,
                             description='Cars, vans, trucks'),
        DepreciationCategory(name='Machinery', useful_life_months=120,
                             default_method=STRAIGHT_LINE, sort_order=30,
                             description='Production machines and plant'),
        DepreciationCategory(name='Tools', useful_life_months=60,
                             default_method=STRAIGHT_LINE, sort_order=31,
                             description='Hand and power tools'),
        DepreciationCategory(name='Medical Equipment', useful_life_months=84,
                             default_method=STRAIGHT_LINE, sort_order=40,
                             description='Diagnostic and treatment equipment'),
    ]
    db.session.add_all(default_dep_cats)
    db.session.commit()
    app.logger.info('Seeded %d default depreciation categories.', len(default_dep_cats))


if __name__ == '__main__':
    create_app().run(host='0.0.0.0', port=5001, debug=False)
