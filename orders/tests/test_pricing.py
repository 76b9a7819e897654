# orders/tests/test_pricing.py
import pytest
from datetime import timedelta
from decimal import Decimal
from unittest.mock import MagicMock

from django.contrib.auth.models import AnonymousUser
from django.utils import timezone

from cart.snapshot import CartLine, CartSnapshot
from orders.exceptions import CouponLimitExceeded, CouponMinimumNotMet, InvalidCoupon
from orders.pricing import PricingEngine, to_money
from promotions.models import Coupon
from orders.tests.factories import CouponFactory


def make_line(unit_price, quantity=1, tax_rate='0', product_id=1, variant_id=None):
    return CartLine(
        product_id=product_id,
        variant_id=variant_id,
        product_name=f"Product {product_id}",
        sku=f"SKU{product_id}",
        variant_name='',
        unit_price=Decimal(unit_price),
        mrp=None,
        quantity=quantity,
        stock_available=100,
        tax_rate=Decimal(tax_rate),
    )


def make_snapshot(*lines):
    return CartSnapshot(lines=tuple(lines))


@pytest.fixture
def engine(checkout_settings):
    return PricingEngine(checkout_settings=checkout_settings)


@pytest.mark.django_db
class TestQuote:

    def test_welcome_coupon_scenario(self, engine, customer, welcome_coupon):
        """450 cart with WELCOME10: discount capped at 40, shipping 50, total 460."""
        quote = engine.quote(make_snapshot(make_line('450.00')), coupon_code='WELCOME10', user=customer)

        assert quote.subtotal == Decimal('450.00')
        assert quote.discount == Decimal('40.00')
        assert quote.shipping_charge == Decimal('50.00')
        assert quote.tax == Decimal('0.00')
        assert quote.total == Decimal('460.00')
        assert quote.coupon == welcome_coupon
        assert quote.coupon_code == 'WELCOME10'

    def test_no_coupon(self, engine):
        quote = engine.quote(make_snapshot(make_line('120.00', 2), make_line('60.00', 1, product_id=2)))

        assert quote.subtotal == Decimal('300.00')
        assert quote.discount == Decimal('0.00')
        assert quote.total == Decimal('350.00')
        assert quote.coupon is None

    def test_free_shipping_at_threshold(self, engine):
        quote = engine.quote(make_snapshot(make_line('500.00')))

        assert quote.shipping_charge == Decimal('0.00')
        assert quote.total == Decimal('500.00')

    def test_shipping_threshold_uses_subtotal_before_discount(self, engine, customer):
        CouponFactory(code='FLAT100', type='flat', value=Decimal('100'))
        quote = engine.quote(make_snapshot(make_line('550.00')), coupon_code='FLAT100', user=customer)

        assert quote.discount == Decimal('100.00')
        assert quote.shipping_charge == Decimal('0.00')
        assert quote.total == Decimal('450.00')

    def test_tax_per_line(self, engine):
        quote = engine.quote(make_snapshot(
            make_line('100.00', 2, tax_rate='18'),
            make_line('50.00', 1, tax_rate='5', product_id=2),
        ))

        assert quote.tax == Decimal('38.50')
        assert quote.total == Decimal('250.00') + Decimal('50.00') + Decimal('38.50')

    def test_total_identity_holds_after_rounding(self, engine, customer):
        CouponFactory(code='ODD', type='percentage', value=Decimal('7.5'))
        quote = engine.quote(
            make_snapshot(make_line('33.33', 3, tax_rate='12.5')),
            coupon_code='ODD', user=customer,
        )

        for part in (quote.subtotal, quote.discount, quote.shipping_charge, quote.tax):
            assert part == to_money(part)
        assert quote.total == quote.subtotal - quote.discount + quote.shipping_charge + quote.tax

    def test_code_lookup_is_case_insensitive(self, engine, customer, welcome_coupon):
        quote = engine.quote(make_snapshot(make_line('450.00')), coupon_code='  welcome10 ', user=customer)
        assert quote.discount == Decimal('40.00')

    def test_quote_has_no_side_effects(self, engine, customer, welcome_coupon):
        engine.quote(make_snapshot(make_line('450.00')), coupon_code='WELCOME10', user=customer)

        welcome_coupon.refresh_from_db()
        assert welcome_coupon.used_count == 0
        assert not welcome_coupon.usage_records.exists()

    def test_discount_never_exceeds_subtotal(self, engine, customer):
        CouponFactory(code='BIGFLAT', type='flat', value=Decimal('1000'))
        quote = engine.quote(make_snapshot(make_line('80.00')), coupon_code='BIGFLAT', user=customer)

        assert quote.discount == Decimal('80.00')
        assert quote.total == Decimal('50.00')

    def test_uses_store_settings_when_not_injected(self, customer):
        from store.services import CHECKOUT_KEY, put_setting
        put_setting(CHECKOUT_KEY, {'free_shipping_threshold': '100', 'default_shipping_charge': '25'})

        quote = PricingEngine().quote(make_snapshot(make_line('99.00')))
        assert quote.shipping_charge == Decimal('25.00')

        quote = PricingEngine().quote(make_snapshot(make_line('100.00')))
        assert quote.shipping_charge == Decimal('0.00')


@pytest.mark.django_db
class TestCouponRejection:

    def test_unknown_code(self, engine, customer):
        with pytest.raises(InvalidCoupon):
            engine.quote(make_snapshot(make_line('450.00')), coupon_code='NOPE', user=customer)

    def test_inactive_coupon(self, engine, customer):
        CouponFactory(code='OFF', is_active=False)
        with pytest.raises(InvalidCoupon):
            engine.quote(make_snapshot(make_line('450.00')), coupon_code='OFF', user=customer)

    def test_expired_coupon(self, engine, customer):
        CouponFactory(code='OLD', end_date=timezone.now() - timedelta(days=1))
        with pytest.raises(InvalidCoupon, match='expired'):
            engine.quote(make_snapshot(make_line('450.00')), coupon_code='OLD', user=customer)

    def test_not_yet_active_coupon(self, engine, customer):
        CouponFactory(code='SOON', start_date=timezone.now() + timedelta(days=1))
        with pytest.raises(InvalidCoupon):
            engine.quote(make_snapshot(make_line('450.00')), coupon_code='SOON', user=customer)

    def test_open_ended_window(self, engine, customer):
        CouponFactory(code='OPEN', start_date=timezone.now() - timedelta(days=30), end_date=None)
        quote = engine.quote(make_snapshot(make_line('100.00')), coupon_code='OPEN', user=customer)
        assert quote.discount == Decimal('10.00')

    def test_minimum_not_met_is_its_own_error(self, engine, customer):
        CouponFactory(code='MIN1000', min_order_value=Decimal('1000'))
        with pytest.raises(CouponMinimumNotMet) as exc_info:
            engine.quote(make_snapshot(make_line('450.00')), coupon_code='MIN1000', user=customer)

        assert not isinstance(exc_info.value, InvalidCoupon)
        assert exc_info.value.details['min_order_value'] == '1000.00'

    def test_usage_limit_reached(self, engine, customer):
        CouponFactory(code='GONE', usage_limit=2, used_count=2)
        with pytest.raises(CouponLimitExceeded):
            engine.quote(make_snapshot(make_line('450.00')), coupon_code='GONE', user=customer)

    def test_anonymous_user_cannot_use_coupons(self, engine, welcome_coupon):
        with pytest.raises(InvalidCoupon, match='log in'):
            engine.quote(make_snapshot(make_line('450.00')), coupon_code='WELCOME10', user=AnonymousUser())

    def test_clock_is_injectable(self, checkout_settings, customer):
        coupon = CouponFactory(code='JAN', end_date=timezone.now() + timedelta(days=1))
        later = PricingEngine(checkout_settings=checkout_settings, clock=lambda: coupon.end_date + timedelta(seconds=1))

        with pytest.raises(InvalidCoupon):
            later.quote(make_snapshot(make_line('100.00')), coupon_code='JAN', user=customer)

    def test_window_bounds_are_inclusive(self, checkout_settings, customer):
        coupon = CouponFactory(
            code='EDGE',
            start_date=timezone.now() - timedelta(days=1),
            end_date=timezone.now() + timedelta(days=1),
        )

        for moment in (coupon.start_date, coupon.end_date):
            engine = PricingEngine(checkout_settings=checkout_settings, clock=lambda: moment)
            quote = engine.quote(make_snapshot(make_line('100.00')), coupon_code='EDGE', user=customer)
            assert quote.discount == Decimal('10.00')

    def test_ledger_is_consulted(self, checkout_settings, customer, welcome_coupon):
        ledger = MagicMock()
        ledger.ensure_available.side_effect = CouponLimitExceeded("You have already used this coupon")
        engine = PricingEngine(checkout_settings=checkout_settings, coupon_ledger=ledger)

        with pytest.raises(CouponLimitExceeded):
            engine.quote(make_snapshot(make_line('450.00')), coupon_code='WELCOME10', user=customer)
        ledger.ensure_available.assert_called_once_with(Coupon.objects.get(code='WELCOME10'), customer)
