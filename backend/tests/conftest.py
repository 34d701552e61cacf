"""
Pytest fixtures for PinCorp backend tests.

Every test gets its own app with a fresh in-memory database, so the
per-process collections start empty too.
"""

import pytest

from pincorp import create_app
from pincorp.container import Services, get_services
from pincorp.extensions import db
from pincorp.services.notifier import RecordingNotifier

ALL_PROCEDURES = ["adjust_material_stock", "adjust_product_stock", "get_next_daily_sequence"]


@pytest.fixture(scope='function')
def notifier():
    return RecordingNotifier()


@pytest.fixture(scope='function')
def app(notifier):
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'OFFLINE_MODE': False,
        'STORE_PROCEDURES': ALL_PROCEDURES,
        'SALE_CODE_PREFIX': 'LTN-BH',
        'SALE_CODE_ATTEMPTS': 3,
        'LOW_STOCK_THRESHOLD': 20,
        'CRITICAL_STOCK_THRESHOLD': 10,
    }, notify=notifier)

    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def services(app):
    """Services bound to the app's database, all store procedures available."""
    return get_services()


@pytest.fixture(scope='function')
def legacy_services(app, notifier):
    """Same database, but a deployment without any stored procedure."""
    return Services({**app.config, 'STORE_PROCEDURES': []}, session=db.session, notify=notifier)


@pytest.fixture(scope='function')
def other_process(app, notifier):
    """A second process on the same database with its own collections."""
    return Services(app.config, session=db.session, notify=notifier)


@pytest.fixture(scope='function')
def offline_services(app, notifier):
    """Degraded mode: writes stay in the in-memory collections."""
    return Services(app.config, offline=True, notify=notifier)


def make_material(services, name="Resin", stock=100, purchase_price=1000, **extra):
    return services.inventory.create_material({
        "name": name,
        "sku": extra.pop("sku", name.upper()),
        "unit": extra.pop("unit", "kg"),
        "stock": stock,
        "purchase_price": purchase_price,
        **extra,
    })


def make_product(services, name="Widget", stock=10, retail_price=50000, **extra):
    return services.inventory.create_product({
        "name": name,
        "sku": extra.pop("sku", name.upper()),
        "stock": stock,
        "retail_price": retail_price,
        **extra,
    })
