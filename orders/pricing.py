# orders/pricing.py
"""
Order pricing.

``PricingEngine.quote`` turns a cart snapshot and an optional coupon code
into subtotal, discount, shipping, tax and total. It reads the database
(coupon, store settings) but never writes: coupon usage is recorded by
the order factory once the order exists.
"""

import logging
from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP, InvalidOperation
from typing import Optional

from django.utils import timezone

from promotions.discounts import compute_discount
from promotions.ledger import CouponLedger
from promotions.models import Coupon
from store.services import get_checkout_settings
from .exceptions import InvalidCoupon, CouponMinimumNotMet

logger = logging.getLogger(__name__)

TWO_PLACES = Decimal('0.01')
ZERO = Decimal('0.00')


def to_money(value):
    return Decimal(value).quantize(TWO_PLACES, rounding=ROUND_HALF_UP)


def safe_decimal(value, default=ZERO):
    if value is None or value == '':
        return default
    try:
        return Decimal(str(value))
    except (InvalidOperation, TypeError, ValueError):
        return default


def normalize_coupon_code(code):
    return (code or '').strip().upper()


@dataclass(frozen=True)
class PriceQuote:
    subtotal: Decimal
    discount: Decimal
    shipping_charge: Decimal
    tax: Decimal
    total: Decimal
    coupon: Optional[Coupon] = None
    coupon_code: str = ''

    def as_dict(self):
        return {
            'subtotal':        str(self.subtotal),
            'discount':        str(self.discount),
            'shipping_charge': str(self.shipping_charge),
            'tax':             str(self.tax),
            'total':           str(self.total),
            'coupon_code':     self.coupon_code or None,
        }


class PricingEngine:

    def __init__(self, checkout_settings=None, coupon_ledger=None, clock=timezone.now):
        self.checkout_settings = checkout_settings
        self.coupon_ledger = coupon_ledger or CouponLedger()
        self.clock = clock

    def _settings(self):
        return self.checkout_settings or get_checkout_settings()

    def resolve_coupon(self, code, subtotal, user=None):
        """Return the usable Coupon for ``code`` or raise the matching pricing error."""
        normalized = normalize_coupon_code(code)
        coupon = Coupon.objects.filter(code=normalized, is_active=True).first()
        if not coupon:
            raise InvalidCoupon("Invalid coupon code")

        if user is None or not getattr(user, 'is_authenticated', False):
            raise InvalidCoupon("Please log in to use coupons")

        now = self.clock()
        if coupon.start_date and now < coupon.start_date:
            raise InvalidCoupon("This coupon is not active yet")
        if coupon.end_date and now > coupon.end_date:
            raise InvalidCoupon("This coupon has expired")

        if coupon.min_order_value is not None and subtotal < coupon.min_order_value:
            raise CouponMinimumNotMet(
                f"Minimum order value of {to_money(coupon.min_order_value)} required",
                min_order_value=str(to_money(coupon.min_order_value)),
            )

        self.coupon_ledger.ensure_available(coupon, user)
        return coupon

    def shipping_for(self, subtotal):
        config = self._settings()
        if subtotal >= config.free_shipping_threshold:
            return ZERO
        return to_money(config.default_shipping_charge)

    def tax_for(self, snapshot):
        tax = sum(
            (line.line_subtotal * line.tax_rate / Decimal('100') for line in snapshot.lines),
            ZERO,
        )
        return to_money(tax)

    def quote(self, snapshot, coupon_code=None, user=None):
        subtotal = to_money(sum((line.line_subtotal for line in snapshot.lines), ZERO))

        coupon = None
        discount = ZERO
        if normalize_coupon_code(coupon_code):
            coupon = self.resolve_coupon(coupon_code, subtotal, user=user)
            discount = to_money(compute_discount(coupon, snapshot, subtotal))

        shipping_charge = self.shipping_for(subtotal)
        tax = self.tax_for(snapshot)
        total = subtotal - discount + shipping_charge + tax

        return PriceQuote(
            subtotal=subtotal,
            discount=discount,
            shipping_charge=shipping_charge,
            tax=tax,
            total=total,
            coupon=coupon,
            coupon_code=coupon.code if coupon else '',
        )
