import pytest
from datetime import date, time, datetime, timedelta, timezone
from decimal import Decimal

from config import TestingConfig
from dailyfresh import create_app
from dailyfresh import database
from dailyfresh.database import get_session, create_all, drop_all
from dailyfresh.models import Product, DeliverySlot, SlotType, Coupon, DiscountType, Address

CUSTOMER = 'user:1'
OTHER_CUSTOMER = 'user:2'


@pytest.fixture(scope='function')
def app(tmp_path):
    """Create application instance backed by a fresh SQLite file."""
    config = type('PerTestConfig', (TestingConfig,), {
        'SQLALCHEMY_DATABASE_URI': f"sqlite:///{tmp_path / 'dailyfresh.db'}",
        'MIN_ORDER_AMOUNT': '30',
    })
    app = create_app(config)

    ctx = app.app_context()
    ctx.push()
    create_all()

    yield app

    database.db_session.remove()
    drop_all()
    ctx.pop()
    database.engine.dispose()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def session(app):
    """Database session shared with requests made through the client."""
    session = get_session()
    yield session
    session.rollback()


@pytest.fixture(scope='function')
def customer_client(client):
    """Test client signed in as CUSTOMER (user 1)."""
    with client.session_transaction() as sess:
        sess['user_id'] = 1
    return client


@pytest.fixture(scope='function')
def admin_client(client):
    with client.session_transaction() as sess:
        sess['admin_user_id'] = 7
    return client


@pytest.fixture(scope='function')
def products(session):
    """Three products: apples (10.00), milk (20.00) and basmati rice with only 5 left."""
    apples = Product(name='Apples 1kg', price=Decimal('10.00'), mrp=Decimal('12.00'),
                     stock_quantity=50, max_order_quantity=10)
    milk = Product(name='Milk 1L', price=Decimal('20.00'), stock_quantity=50, max_order_quantity=10)
    rice = Product(name='Basmati Rice 5kg', price=Decimal('60.00'), stock_quantity=5, max_order_quantity=10)
    session.add_all([apples, milk, rice])
    session.commit()
    return {'apples': apples, 'milk': milk, 'rice': rice}


@pytest.fixture(scope='function')
def slot(session):
    slot = DeliverySlot(
        date=date.today() + timedelta(days=1),
        start_time=time(9, 0),
        end_time=time(11, 0),
        slot_type=SlotType.STANDARD,
        capacity=10,
        booked_count=0,
        is_available=True,
    )
    session.add(slot)
    session.commit()
    return slot


@pytest.fixture(scope='function')
def full_slot(session):
    """Capacity reached but still marked available: only the capacity check can stop a booking."""
    slot = DeliverySlot(
        date=date.today() + timedelta(days=1),
        start_time=time(17, 0),
        end_time=time(19, 0),
        slot_type=SlotType.STANDARD,
        capacity=10,
        booked_count=10,
        is_available=True,
    )
    session.add(slot)
    session.commit()
    return slot


@pytest.fixture(scope='function')
def address(session):
    address = Address(
        customer_ref=CUSTOMER,
        label='Home',
        street='12 MG Road',
        city='Hosur',
        state='Tamil Nadu',
        zip_code='635109',
        phone='+91 90000 00000',
    )
    session.add(address)
    session.commit()
    return address


@pytest.fixture(scope='function')
def coupons(session):
    now = datetime.now(timezone.utc)
    save10 = Coupon(code='save10', discount_type=DiscountType.PERCENTAGE, value=Decimal('10'),
                    max_discount_amount=Decimal('3.00'), usage_limit=100, per_user_limit=1)
    flat50 = Coupon(code='FLAT50', discount_type=DiscountType.FIXED, value=Decimal('50'),
                    min_order_amount=Decimal('200'))
    freeship = Coupon(code='FREESHIP', discount_type=DiscountType.FREE_DELIVERY, value=Decimal('0'),
                      per_user_limit=None)
    expired = Coupon(code='OLD5', discount_type=DiscountType.FIXED, value=Decimal('5'),
                     valid_until=now - timedelta(days=1))
    session.add_all([save10, flat50, freeship, expired])
    session.commit()
    return {'save10': save10, 'flat50': flat50, 'freeship': freeship, 'expired': expired}


@pytest.fixture(scope='function')
def scenario_a_items(products):
    """2 x 10.00 + 1 x 20.00 = 40.00"""
    return [
        {'product_id': products['apples'].id, 'quantity': 2, 'price': '10.00'},
        {'product_id': products['milk'].id, 'quantity': 1, 'price': '20.00'},
    ]


@pytest.fixture(scope='function')
def place_order(app, session, address, slot, scenario_a_items):
    """Factory placing an order through the checkout service."""
    from dailyfresh.services.checkout_service import create_order

    def _place(items=None, coupon_code=None, payment_method='upi', slot_id=None, customer_ref=CUSTOMER):
        return create_order(
            session,
            customer_ref=customer_ref,
            address_id=address.id,
            slot_id=slot_id or slot.id,
            payment_method=payment_method,
            items=items or scenario_a_items,
            coupon_code=coupon_code,
        )
    return _place


@pytest.fixture(scope='function')
def fresh(session):
    """Re-read a row, bypassing identity-map state left behind by bulk UPDATEs."""
    def _fresh(model, ident):
        return session.get(model, ident, populate_existing=True)
    return _fresh
