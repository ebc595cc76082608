"""
Pytest fixtures for depot backend tests.

Provides test database setup, tenant fixtures, and an order factory that
walks orders up to LOADING.
"""

import pytest
from depot import create_app
from depot.extensions import db
from depot.services import account_service, business_service, order_service


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'RETRY_BACKOFF_BASE': 0,
    })

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database for each test."""
    with app.app_context():
        # Clear all data but keep schema
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        # Cleanup after test
        db.session.rollback()


@pytest.fixture(scope='function')
def business(db_session):
    """Business A (first tenant) with its default warehouse."""
    return business_service.create_business(name="North Depot", code="nrt")


@pytest.fixture(scope='function')
def other_business(db_session):
    """Business B (second tenant)."""
    return business_service.create_business(name="South Depot", code="STH")


@pytest.fixture(scope='function')
def warehouse(business):
    return business_service.get_default_warehouse(business.id)


@pytest.fixture(scope='function')
def customer(business):
    return business_service.create_customer(business_id=business.id, shop_name="Corner Stores", route="R1")


@pytest.fixture(scope='function')
def supplier(business):
    return business_service.create_supplier(business_id=business.id, name="Prime Foods Ltd")


@pytest.fixture(scope='function')
def product(business):
    return business_service.create_product(business_id=business.id, sku="SKU-001", name="Biscuits 100g")


@pytest.fixture(scope='function')
def product_b(business):
    return business_service.create_product(business_id=business.id, sku="SKU-002", name="Tea 200g")


@pytest.fixture(scope='function')
def bank_account(business):
    """Savings account opened with 100,000 cents."""
    return account_service.create_account(
        business_id=business.id,
        name="Bank Savings",
        account_type="SAVINGS",
        opening_balance_cents=100_000,
    )


@pytest.fixture(scope='function')
def cash_account(business):
    return account_service.create_account(business_id=business.id, name="Cash in Hand", account_type="CASH")


@pytest.fixture(scope='function')
def make_order(business, customer, product):
    """Factory: order of quantity x unit price, walked up to the requested status."""
    def _make(unit_price_cents=1000, quantity=10, free_quantity=0, status="LOADING"):
        order = order_service.create_order(
            business_id=business.id,
            customer_id=customer.id,
            lines=[{
                "product_id": product.id,
                "quantity": quantity,
                "free_quantity": free_quantity,
                "unit_price_cents": unit_price_cents,
            }],
            order_date="2026-03-02",
        )
        steps = [
            ("PROCESSING", order_service.approve_order),
            ("CHECKING", order_service.send_to_checking),
            ("LOADING", order_service.pass_qc),
        ]
        for target, step in steps:
            if order.status == status:
                break
            order = step(order.id)
        return order

    return _make


def business_headers(business_id: int, actor_id: int | None = 7) -> dict:
    """Helper to create tenant/actor headers."""
    headers = {"X-Business-Id": str(business_id)}
    if actor_id is not None:
        headers["X-Actor-Id"] = str(actor_id)
    return headers
