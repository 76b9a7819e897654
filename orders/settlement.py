# orders/settlement.py
"""
Settlement: applying gateway outcomes, refunds and fulfilment state.

Order, payment and delivery status only move along the transition tables
below. Every method that mutates state locks the rows it reads with
``select_for_update()`` inside ``transaction.atomic()``; signals are sent
from ``on_commit`` so listeners never see rolled-back state.
"""

import logging
from dataclasses import dataclass

from django.db import transaction
from django.utils import timezone

from inventory.services import ReservedLine, StockGuard
from promotions.ledger import CouponLedger
from .exceptions import (
    InvalidRefundAmount,
    InvalidStatusTransition,
    NothingToRefund,
    PaymentAlreadySettled,
    PaymentMethodUnavailable,
    PaymentNotFound,
    RefundExceedsBalance,
)
from .models import Order, OrderStatusHistory, Payment
from .payment_services import Captured, Failed, RazorpayPaymentService
from .pricing import safe_decimal, to_money
from .signals import order_refunded, payment_captured, payment_failed

logger = logging.getLogger(__name__)

ONLINE_METHODS = ('online', 'wallet')


# ─────────────────────────────────────────────────────────────
# TRANSITION TABLES
# ─────────────────────────────────────────────────────────────

PAYMENT_TRANSITIONS = {
    'pending':  {'paid', 'failed'},
    'paid':     {'refunded', 'partial'},
    'partial':  {'partial', 'refunded'},
    'failed':   set(),
    'refunded': set(),
}

ORDER_FLOW = ['new', 'confirmed', 'packed', 'shipped', 'delivered']

ORDER_TRANSITIONS = {
    status: set(ORDER_FLOW[index + 1:]) | {'cancelled', 'returned'}
    for index, status in enumerate(ORDER_FLOW)
}
ORDER_TRANSITIONS['cancelled'] = set()
ORDER_TRANSITIONS['returned'] = set()

DELIVERY_FLOW = ['pending', 'assigned', 'picked', 'in_transit', 'delivered']

DELIVERY_TRANSITIONS = {
    status: set(DELIVERY_FLOW[index + 1:]) | {'failed'}
    for index, status in enumerate(DELIVERY_FLOW[:-1])
}
DELIVERY_TRANSITIONS['delivered'] = set()
DELIVERY_TRANSITIONS['failed'] = set()

# Stock is still on the shelf until the order ships
RESTOCK_ON_CANCEL = ('new', 'confirmed', 'packed')

ORDER_TIMESTAMPS = {
    'confirmed': 'confirmed_at',
    'shipped':   'shipped_at',
    'delivered': 'delivered_at',
    'cancelled': 'cancelled_at',
}


def can_transition(table, current, target):
    return target in table.get(current, ())


def check_transition(table, current, target):
    if not can_transition(table, current, target):
        raise InvalidStatusTransition(current, target)


@dataclass
class SettlementResult:
    payment: Payment
    applied: bool


class SettlementReconciler:

    def __init__(self, gateway=None, stock_guard=None, coupon_ledger=None, clock=timezone.now):
        self.gateway = gateway or RazorpayPaymentService()
        self.stock_guard = stock_guard or StockGuard()
        self.coupon_ledger = coupon_ledger or CouponLedger()
        self.clock = clock

    # ── payment outcomes ─────────────────────────────────────

    def apply_outcome(self, event):
        """
        Apply a verified Captured/Failed event. Replays of an event that was
        already applied return ``applied=False`` and change nothing.
        """
        try:
            return self._apply_outcome(event)
        except PaymentAlreadySettled as e:
            logger.info(f"Duplicate gateway event for {event.gateway_order_id} ignored: {e.message}")
            payment = (
                Payment.objects.filter(gateway_order_id=event.gateway_order_id, refund_of__isnull=True)
                .order_by('-created_at', '-id')
                .first()
            )
            return SettlementResult(payment=payment, applied=False)

    @transaction.atomic
    def _apply_outcome(self, event):
        if isinstance(event, Captured):
            if Payment.objects.filter(transaction_id=event.transaction_id).exists():
                raise PaymentAlreadySettled(f"Transaction {event.transaction_id} already recorded")

        payments = list(
            Payment.objects.select_for_update()
            .filter(gateway_order_id=event.gateway_order_id, refund_of__isnull=True)
            .order_by('-created_at', '-id')
        )
        if not payments:
            raise PaymentNotFound(gateway_order_id=event.gateway_order_id)

        order = Order.objects.select_for_update().get(pk=payments[0].order_id)
        pending = next((p for p in payments if p.status == 'pending'), None)

        if isinstance(event, Captured):
            return self._capture(order, payments, pending, event)
        if isinstance(event, Failed):
            return self._fail(order, pending, event)
        raise TypeError(f"Unsupported settlement event: {event!r}")

    def _capture(self, order, payments, pending, event):
        if pending is None:
            if any(p.status != 'failed' for p in payments):
                raise PaymentAlreadySettled()
            # Late capture after the attempt was marked failed
            logger.warning(f"Capture {event.transaction_id} arrived for failed payment on {order.order_number}")
            pending = Payment.objects.create(
                order            = order,
                amount           = order.total,
                method           = order.payment_method,
                status           = 'pending',
                gateway_order_id = event.gateway_order_id,
            )

        check_transition(PAYMENT_TRANSITIONS, pending.status, 'paid')
        if event.amount != pending.amount:
            logger.warning(
                f"Captured amount {event.amount} differs from expected {pending.amount} "
                f"on order {order.order_number}"
            )
        if order.status == 'cancelled':
            logger.warning(f"Payment captured on cancelled order {order.order_number}; refund required")

        pending.status = 'paid'
        pending.transaction_id = event.transaction_id
        pending.paid_at = self.clock()
        pending.gateway_response = event.raw or None
        pending.save(update_fields=['status', 'transaction_id', 'paid_at', 'gateway_response', 'updated_at'])

        order.payment_status = 'paid'
        order.save(update_fields=['payment_status', 'updated_at'])

        logger.info(f"Payment {event.transaction_id} captured for order {order.order_number}")
        transaction.on_commit(
            lambda: payment_captured.send(sender=Payment, payment=pending, order=order)
        )
        return SettlementResult(payment=pending, applied=True)

    def _fail(self, order, pending, event):
        if pending is None:
            raise PaymentAlreadySettled()

        check_transition(PAYMENT_TRANSITIONS, pending.status, 'failed')
        pending.status = 'failed'
        pending.gateway_response = {
            **(event.raw or {}),
            'failure_reason':   event.reason,
            'gateway_payment':  event.transaction_id,
        }
        pending.save(update_fields=['status', 'gateway_response', 'updated_at'])

        order.payment_status = 'failed'
        order.save(update_fields=['payment_status', 'updated_at'])

        logger.info(f"Payment failed for order {order.order_number}: {event.reason}")
        transaction.on_commit(
            lambda: payment_failed.send(sender=Payment, payment=pending, order=order, reason=event.reason)
        )
        return SettlementResult(payment=pending, applied=True)

    # ── refunds ──────────────────────────────────────────────

    def apply_refund(self, order, amount, reason='', actor=None):
        """Refund ``amount`` of the order's captured payment; returns the refund row."""
        amount = safe_decimal(amount)
        if not amount.is_finite():
            raise InvalidRefundAmount()
        amount = to_money(amount)
        if amount <= 0:
            raise InvalidRefundAmount()

        gateway_refund = None
        try:
            with transaction.atomic():
                order = Order.objects.select_for_update().get(pk=order.pk)
                payment = (
                    Payment.objects.select_for_update()
                    .filter(order=order, refund_of__isnull=True, status__in=['paid', 'partial'])
                    .order_by('-paid_at', '-id')
                    .first()
                )
                if payment is None:
                    raise NothingToRefund()

                refunded_so_far = payment.refund_amount or 0
                remaining = to_money(payment.amount - refunded_so_far)
                if amount > remaining:
                    raise RefundExceedsBalance(remaining=remaining)

                if payment.method in ONLINE_METHODS and payment.transaction_id:
                    gateway_refund = self.gateway.refund(payment, amount)

                new_total = to_money(refunded_so_far + amount)
                target = 'refunded' if new_total == payment.amount else 'partial'
                check_transition(PAYMENT_TRANSITIONS, payment.status, target)

                payment.status = target
                payment.refund_amount = new_total
                payment.refund_reason = reason or ''
                payment.save(update_fields=['status', 'refund_amount', 'refund_reason', 'updated_at'])

                refund = Payment.objects.create(
                    order            = order,
                    amount           = -amount,
                    method           = payment.method,
                    status           = 'refunded',
                    refund_of        = payment,
                    refund_amount    = amount,
                    refund_reason    = reason or '',
                    transaction_id   = (gateway_refund or {}).get('id') or None,
                    gateway_order_id = payment.gateway_order_id,
                    gateway_response = gateway_refund,
                    paid_at          = self.clock(),
                )

                order.payment_status = target
                order.save(update_fields=['payment_status', 'updated_at'])

                logger.info(
                    f"Refunded {amount} on order {order.order_number} "
                    f"({new_total}/{payment.amount}) by {actor or 'system'}"
                )
                transaction.on_commit(
                    lambda: order_refunded.send(
                        sender=Payment, payment=payment, order=order, refund=refund, amount=amount,
                    )
                )
        except Exception:
            # Money already left through Razorpay; the refund row did not land
            if gateway_refund is not None:
                logger.error(
                    f"Razorpay refund {gateway_refund.get('id')} of {amount} on order "
                    f"{order.order_number} was issued but not recorded",
                    exc_info=True,
                )
            raise
        return refund

    # ── fulfilment ───────────────────────────────────────────

    def _release_order(self, order):
        """Return stock and coupon usage held by an order that will not ship."""
        lines = [
            ReservedLine(item.product_id, item.variant_id, item.quantity)
            for item in order.items.select_related('product')
            if item.product_id and item.product.track_inventory
        ]
        if lines:
            self.stock_guard.release(lines)
        self.coupon_ledger.release_for_order(order)

    def _set_order_status(self, order, new_status, actor=None, notes=''):
        old_status = order.status
        check_transition(ORDER_TRANSITIONS, old_status, new_status)

        order.status = new_status
        update_fields = ['status', 'updated_at']
        timestamp_field = ORDER_TIMESTAMPS.get(new_status)
        if timestamp_field and not getattr(order, timestamp_field):
            setattr(order, timestamp_field, self.clock())
            update_fields.append(timestamp_field)
        order.save(update_fields=update_fields)

        OrderStatusHistory.objects.create(
            order       = order,
            from_status = old_status,
            to_status   = new_status,
            notes       = notes,
            changed_by  = actor,
        )

        if new_status == 'cancelled' and old_status in RESTOCK_ON_CANCEL:
            self._release_order(order)

        logger.info(f"Order {order.order_number}: {old_status} -> {new_status}")
        return order

    @transaction.atomic
    def update_order_status(self, order, new_status, actor=None, notes=''):
        order = Order.objects.select_for_update().get(pk=order.pk)
        return self._set_order_status(order, new_status, actor=actor, notes=notes)

    @transaction.atomic
    def update_delivery_status(self, delivery, status, tracking_number=None, partner_name=None):
        delivery = type(delivery).objects.select_for_update().get(pk=delivery.pk)

        if status != delivery.status:
            check_transition(DELIVERY_TRANSITIONS, delivery.status, status)
            delivery.status = status
        if status == 'delivered' and delivery.delivered_at is None:
            delivery.delivered_at = self.clock()
        if tracking_number is not None:
            delivery.tracking_number = tracking_number
        if partner_name is not None:
            delivery.partner_name = partner_name

        delivery.save()
        logger.info(f"Delivery for order {delivery.order_id} is now {delivery.status}")
        return delivery

    @transaction.atomic
    def mark_cod_collected(self, order, actor=None):
        order = Order.objects.select_for_update().get(pk=order.pk)
        delivery = order.delivery
        if not delivery.is_cod:
            raise PaymentMethodUnavailable("Order is not cash on delivery")
        if delivery.cod_collected:
            return order

        payment = (
            Payment.objects.select_for_update()
            .filter(order=order, refund_of__isnull=True, status='pending')
            .first()
        )
        if payment is not None:
            check_transition(PAYMENT_TRANSITIONS, payment.status, 'paid')
            payment.status = 'paid'
            payment.paid_at = self.clock()
            payment.save(update_fields=['status', 'paid_at', 'updated_at'])
            order.payment_status = 'paid'
            order.save(update_fields=['payment_status', 'updated_at'])

        delivery.cod_collected = True
        delivery.save(update_fields=['cod_collected', 'updated_at'])

        logger.info(f"COD {delivery.cod_amount} collected for order {order.order_number} by {actor or 'system'}")
        return order

    # ── expiry ───────────────────────────────────────────────

    def stale_orders(self, cutoff):
        """New orders whose online payment has been pending since before ``cutoff``."""
        return Order.objects.filter(
            status='new',
            payment_status='pending',
            payment_method__in=ONLINE_METHODS,
            payments__status='pending',
            payments__refund_of__isnull=True,
            payments__created_at__lt=cutoff,
        ).distinct()

    def expire_stale_payments(self, cutoff):
        expired = []
        for order_id in self.stale_orders(cutoff).values_list('pk', flat=True):
            with transaction.atomic():
                order = Order.objects.select_for_update().get(pk=order_id)
                if order.status != 'new' or order.payment_status != 'pending':
                    continue
                pending = list(
                    Payment.objects.select_for_update()
                    .filter(order=order, status='pending', refund_of__isnull=True)
                )
                # A retry started after the cutoff is still in flight
                if not pending or any(p.created_at >= cutoff for p in pending):
                    continue

                for payment in pending:
                    check_transition(PAYMENT_TRANSITIONS, payment.status, 'failed')
                    payment.status = 'failed'
                    payment.save(update_fields=['status', 'updated_at'])

                order.payment_status = 'failed'
                order.save(update_fields=['payment_status', 'updated_at'])
                self._set_order_status(order, 'cancelled', notes='Payment not completed in time')
                expired.append(order)

        if expired:
            logger.info(f"Expired {len(expired)} unpaid orders older than {cutoff.isoformat()}")
        return expired
