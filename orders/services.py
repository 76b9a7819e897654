# orders/services.py
"""
Order creation.

``CheckoutService.place_order`` is the only way an order comes into
existence. Everything that writes (stock decrement, order, items, delivery,
payment, coupon usage, status history) happens inside one
``transaction.atomic()`` block; an error anywhere leaves no trace.
Gateway initiation runs after commit, so an unreachable gateway never
rolls back a placed order.
"""

import logging
import random
import string
from dataclasses import dataclass
from typing import Optional

from django.conf import settings
from django.db import IntegrityError, transaction
from django.utils import timezone

from cart.snapshot import build_cart_snapshot
from inventory.services import StockGuard
from promotions.ledger import CouponLedger
from store.services import get_checkout_settings
from users.models import Address
from .exceptions import (
    AddressNotFound,
    CheckoutError,
    EmptyCart,
    GatewayNotConfigured,
    OrderBelowMinimum,
    OrderNumberCollision,
    PaymentMethodUnavailable,
)
from .models import AddressSnapshot, Delivery, Order, OrderItem, OrderStatusHistory, Payment
from .payment_services import RazorpayPaymentService
from .pricing import PricingEngine, to_money
from .signals import order_placed

logger = logging.getLogger(__name__)

MAX_ORDER_NUMBER_ATTEMPTS = 5
ONLINE_METHODS = ('online', 'wallet')


# ─────────────────────────────────────────────────────────────
# HELPERS
# ─────────────────────────────────────────────────────────────

def generate_order_number():
    timestamp  = timezone.now().strftime('%Y%m%d')
    random_str = ''.join(random.choices(string.ascii_uppercase + string.digits, k=6))
    return f"ORD-{timestamp}-{random_str}"


# ─────────────────────────────────────────────────────────────
# ORDER FACTORY
# ─────────────────────────────────────────────────────────────

class OrderFactory:
    """Persists a priced, stock-reserved cart as an order."""

    def __init__(self, coupon_ledger=None):
        self.coupon_ledger = coupon_ledger or CouponLedger()

    def _check_quote(self, quote):
        expected = quote.subtotal - quote.discount + quote.shipping_charge + quote.tax
        if quote.total != expected:
            raise ValueError(f"Quote total {quote.total} does not match its parts ({expected})")
        if quote.discount > quote.subtotal:
            raise ValueError("Discount exceeds subtotal")

    def _insert_order(self, fields):
        for attempt in range(1, MAX_ORDER_NUMBER_ATTEMPTS + 1):
            order_number = generate_order_number()
            try:
                with transaction.atomic():
                    return Order.objects.create(order_number=order_number, **fields)
            except IntegrityError:
                if not Order.objects.filter(order_number=order_number).exists():
                    raise
                logger.warning(f"Order number {order_number} already taken (attempt {attempt})")
        raise OrderNumberCollision()

    @transaction.atomic
    def create(self, quote, snapshot, reservation, address, payment_method, user=None, notes=''):
        if reservation is None:
            raise ValueError("Stock must be reserved before the order is created")
        self._check_quote(quote)

        is_cod = payment_method == 'cod'

        order = self._insert_order({
            'user':            user,
            'status':          'new',
            'payment_method':  payment_method,
            'payment_status':  'pending',
            'currency':        getattr(settings, 'STORE_CURRENCY', 'INR'),
            'subtotal':        quote.subtotal,
            'discount':        quote.discount,
            'shipping_charge': quote.shipping_charge,
            'tax':             quote.tax,
            'total':           quote.total,
            'coupon':          quote.coupon,
            'coupon_code':     quote.coupon_code,
            'notes':           notes or '',
            **Order.shipping_fields(address),
        })

        OrderItem.objects.bulk_create([
            OrderItem(
                order        = order,
                product_id   = line.product_id,
                variant_id   = line.variant_id,
                product_name = line.product_name,
                sku          = line.sku,
                variant_name = line.variant_name,
                price        = line.unit_price,
                mrp          = line.mrp,
                quantity     = line.quantity,
                tax_rate     = line.tax_rate,
                total        = to_money(line.line_subtotal),
            )
            for line in snapshot.lines
        ])

        Delivery.objects.create(
            order           = order,
            status          = 'pending',
            is_cod          = is_cod,
            cod_amount      = quote.total if is_cod else None,
            delivery_charge = quote.shipping_charge,
        )

        Payment.objects.create(
            order  = order,
            amount = quote.total,
            method = payment_method,
            status = 'pending',
        )

        if quote.coupon is not None:
            self.coupon_ledger.redeem(quote.coupon, user, order, quote.discount)

        OrderStatusHistory.objects.create(
            order      = order,
            to_status  = 'new',
            notes      = 'Order created',
            changed_by = user,
        )

        logger.info(f"Order {order.order_number} created, payment: {payment_method}, total: {order.total}")
        return order


# ─────────────────────────────────────────────────────────────
# CHECKOUT
# ─────────────────────────────────────────────────────────────

@dataclass
class CheckoutResult:
    order: Order
    payment_reference: Optional[dict] = None
    payment_error: Optional[str] = None

    def as_dict(self):
        data = {
            'success':        True,
            'order_number':   self.order.order_number,
            'total':          str(self.order.total),
            'payment_method': self.order.payment_method,
        }
        if self.payment_reference:
            data['payment'] = self.payment_reference
        if self.payment_error:
            data['payment_error'] = self.payment_error
        return data


class CheckoutService:

    def __init__(self, pricing_engine=None, stock_guard=None, order_factory=None, gateway=None):
        self.pricing_engine = pricing_engine or PricingEngine()
        self.stock_guard = stock_guard or StockGuard()
        self.order_factory = order_factory or OrderFactory()
        self.gateway = gateway or RazorpayPaymentService()

    def _check_payment_method(self, payment_method, checkout_settings):
        if payment_method not in dict(Order.PAYMENT_METHODS):
            raise PaymentMethodUnavailable(f'Unknown payment method: "{payment_method}"')
        if payment_method == 'cod' and not checkout_settings.cod_enabled:
            raise PaymentMethodUnavailable("Cash on delivery is not available")
        if payment_method in ONLINE_METHODS and not self.gateway.is_configured():
            raise GatewayNotConfigured()

    def _get_address(self, user, address_id):
        if not address_id or user is None or not user.is_authenticated:
            raise AddressNotFound()
        try:
            return Address.objects.get(pk=address_id, user=user)
        except (Address.DoesNotExist, ValueError, TypeError):
            raise AddressNotFound()

    def quote(self, cart, coupon_code=None, user=None):
        snapshot = build_cart_snapshot(cart)
        if snapshot.is_empty:
            raise EmptyCart()
        return self.pricing_engine.quote(snapshot, coupon_code=coupon_code, user=user)

    def place_order(self, user, cart, address_id, payment_method, coupon_code=None, notes=''):
        checkout_settings = get_checkout_settings()
        self._check_payment_method(payment_method, checkout_settings)

        address = AddressSnapshot.from_address(self._get_address(user, address_id))

        snapshot = build_cart_snapshot(cart)
        if snapshot.is_empty:
            raise EmptyCart()

        quote = self.pricing_engine.quote(snapshot, coupon_code=coupon_code, user=user)
        if quote.subtotal < checkout_settings.min_order_value:
            raise OrderBelowMinimum(
                f"Minimum order value is {to_money(checkout_settings.min_order_value)}",
                min_order_value=str(to_money(checkout_settings.min_order_value)),
            )

        with transaction.atomic():
            reservation = self.stock_guard.reserve(snapshot)
            order = self.order_factory.create(
                quote, snapshot, reservation, address, payment_method, user=user, notes=notes,
            )
            transaction.on_commit(lambda: order_placed.send(sender=Order, order=order))

        result = CheckoutResult(order=order)
        if payment_method in ONLINE_METHODS:
            try:
                result.payment_reference = self.gateway.initiate(order)
            except CheckoutError as e:
                logger.error(f"Payment initiation failed for order {order.order_number}: {e}", exc_info=True)
                result.payment_error = e.message
        return result
