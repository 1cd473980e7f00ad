import logging
import os

from flask import Flask
from .extensions import db


def _env_float(name, default):
    raw = os.environ.get(name, "")
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def create_app(test_config=None):
    app = Flask(__name__)
    app.config['SECRET_KEY'] = os.environ.get('SECRET_KEY', 'dev_secret_key_123') # Change for production
    app.config['SQLALCHEMY_DATABASE_URI'] = os.environ.get('DATABASE_URL', 'sqlite:///courier_dispatch.db')
    app.config['SQLALCHEMY_TRACK_MODIFICATIONS'] = False

    # 정산 관련 설정 (Settlement settings)
    app.config['VAT_RATE'] = _env_float('VAT_RATE', 0.1)
    app.config['DEFAULT_COMMISSION_RATE'] = _env_float('DEFAULT_COMMISSION_RATE', 0.0)
    app.config['WITHHOLDING_RATE'] = _env_float('WITHHOLDING_RATE', 0.08)
    app.config['COUPANG_DEFAULT_UNIT_PRICE'] = _env_float('COUPANG_DEFAULT_UNIT_PRICE', 1200)
    app.config['COUPANG_PROFIT_RATE'] = _env_float('COUPANG_PROFIT_RATE', 0.8)
    app.config['KURLY_AMOUNT_UNIT'] = _env_float('KURLY_AMOUNT_UNIT', 10000)
    app.config['GENERAL_AMOUNT_COLUMNS'] = ['금액', 'amount']
    app.config['LOG_LEVEL'] = os.environ.get('LOG_LEVEL', 'INFO')

    if test_config:
        app.config.update(test_config)

    logging.basicConfig(format='%(asctime)s %(levelname)s [%(name)s] %(message)s')
    logging.getLogger(__name__).setLevel(app.config['LOG_LEVEL'])

    db.init_app(app)

    with app.app_context():
        # Import models here to ensure they are registered with SQLAlchemy
        from . import models
        db.create_all()

    from . import utils
    app.add_template_filter(utils.format_won, 'won')
    app.add_template_filter(utils.format_phone_number_for_display, 'phone')

    from .routes import main as main_blueprint
    app.register_blueprint(main_blueprint)

    return app
