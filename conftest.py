# conftest.py
import threading
from concurrent.futures import ThreadPoolExecutor
from decimal import Decimal
from unittest.mock import MagicMock

import pytest
import razorpay
from django.db import connection

from orders.payment_services import RazorpayPaymentService
from orders.services import CheckoutService
from store.services import CheckoutSettings, GatewayCredentialStore, GatewayCredentials
from orders.tests.factories import (
    AddressFactory,
    CartFactory,
    CartItemFactory,
    CouponFactory,
    ProductFactory,
    StaffUserFactory,
    UserFactory,
)


@pytest.fixture
def customer(db):
    """Create test customer."""
    return UserFactory()


@pytest.fixture
def other_customer(db):
    return UserFactory()


@pytest.fixture
def staff_user(db):
    """Create store admin."""
    return StaffUserFactory()


@pytest.fixture
def address(customer):
    return AddressFactory(user=customer)


@pytest.fixture
def product(db):
    return ProductFactory(base_price=Decimal('450.00'), stock_quantity=10)


@pytest.fixture
def cart(customer, product):
    """Customer cart holding one unit of ``product`` (subtotal 450)."""
    cart = CartFactory(customer=customer)
    CartItemFactory(cart=cart, product=product, quantity=1)
    return cart


@pytest.fixture
def welcome_coupon(db):
    return CouponFactory(
        code='WELCOME10',
        type='percentage',
        value=Decimal('10'),
        max_discount=Decimal('40'),
        min_order_value=Decimal('0'),
    )


@pytest.fixture
def checkout_settings():
    return CheckoutSettings(
        cod_enabled=True,
        min_order_value=Decimal('0'),
        free_shipping_threshold=Decimal('500'),
        default_shipping_charge=Decimal('50'),
    )


@pytest.fixture
def gateway_credentials(db):
    credentials = GatewayCredentials(
        key_id='rzp_test_AbCdEfGh1234',
        key_secret='key_secret_123',
        webhook_secret='webhook_secret_456',
    )
    GatewayCredentialStore().save(credentials)
    return credentials


@pytest.fixture
def razorpay_api():
    """
    Stands in for the ``order`` and ``payment`` resources of every
    razorpay.Client the service builds. Signature checks stay real.
    """
    api = MagicMock()
    api.order.create.return_value = {'id': 'order_RZP001', 'amount': 50000, 'currency': 'INR'}
    return api


@pytest.fixture
def gateway(razorpay_api):
    def client_class(session=None, auth=None):
        client = razorpay.Client(session=session, auth=auth)
        client.order = razorpay_api.order
        client.payment = razorpay_api.payment
        razorpay_api.opened(auth)
        return client

    return RazorpayPaymentService(session=MagicMock(), client_class=client_class)


@pytest.fixture
def customer_client(client, customer):
    client.force_login(customer)
    return client


@pytest.fixture
def staff_client(client, staff_user):
    client.force_login(staff_user)
    return client


@pytest.fixture
def online_order(customer, address, cart, gateway, gateway_credentials, razorpay_api):
    """Online order for the 450 cart (total 500) with Razorpay order ``order_RZP001`` opened."""
    result = CheckoutService(gateway=gateway).place_order(customer, cart, address.id, 'online')
    razorpay_api.reset_mock()
    return result.order


@pytest.fixture
def run_concurrently():
    """
    Run each callable in its own thread (and so its own database
    connection), all released together. Returns what each call returned
    or raised, in order. Use with ``django_db(transaction=True)``.
    """
    if not connection.features.has_select_for_update:
        pytest.skip("Needs a database with row locks, run with TEST_DB=postgres")

    def run(*calls):
        barrier = threading.Barrier(len(calls))

        def worker(call):
            barrier.wait()
            try:
                return call()
            finally:
                connection.close()

        with ThreadPoolExecutor(max_workers=len(calls)) as pool:
            futures = [pool.submit(worker, call) for call in calls]
        return [future.exception() or future.result() for future in futures]

    return run
