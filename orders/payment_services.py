# orders/payment_services.py
"""
Payment Gateway Integration Services
Razorpay, through the official ``razorpay`` SDK.

Credentials are read from the store's server-side settings on every call
and a fresh ``razorpay.Client`` is built from them, so connecting or
disconnecting the gateway in the admin console takes effect immediately.
"""

import json
import logging
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Optional

import razorpay
import requests
from django.core.exceptions import PermissionDenied
from django.db import transaction
from razorpay.errors import BadRequestError, GatewayError, ServerError, SignatureVerificationError

from store.services import GatewayCredentialStore, GatewayCredentials
from .exceptions import (
    GatewayNotConfigured,
    GatewayValidationFailed,
    PaymentAlreadySettled,
    PaymentGatewayError,
    PaymentMethodUnavailable,
    SignatureInvalid,
)
from .models import Order, Payment

logger = logging.getLogger(__name__)

SIGNATURE_HEADER = 'HTTP_X_RAZORPAY_SIGNATURE'

CAPTURE_EVENTS = ('payment.captured', 'order.paid')
FAILURE_EVENTS = ('payment.failed',)

# Errors the SDK raises for non-2xx answers
RAZORPAY_API_ERRORS = (BadRequestError, GatewayError, ServerError)


def to_paise(amount):
    return int((Decimal(amount) * 100).quantize(Decimal('1'), rounding=ROUND_HALF_UP))


def from_paise(amount):
    try:
        value = (Decimal(amount or 0) / 100).quantize(Decimal('0.01'))
    except (InvalidOperation, TypeError, ValueError):
        value = None
    if value is None or not value.is_finite():
        raise PaymentGatewayError(f"Razorpay sent an invalid amount: {amount!r}")
    return value


# ─────────────────────────────────────────────────────────────
# GATEWAY EVENTS
# ─────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class Captured:
    transaction_id: str
    amount: Decimal
    gateway_order_id: str
    raw: dict = field(default_factory=dict, compare=False, repr=False)


@dataclass(frozen=True)
class Failed:
    transaction_id: Optional[str]
    reason: str
    gateway_order_id: str
    raw: dict = field(default_factory=dict, compare=False, repr=False)


def _entity(entities, name):
    wrapper = entities.get(name) or {}
    if not isinstance(wrapper, dict):
        raise PaymentGatewayError("Malformed webhook payload")
    entity = wrapper.get('entity') or {}
    if not isinstance(entity, dict):
        raise PaymentGatewayError("Malformed webhook payload")
    return entity


# ══════════════════════════════════════════════════════════════
# RAZORPAY
# ══════════════════════════════════════════════════════════════

class RazorpayPaymentService:

    def __init__(self, credential_store=None, session=None, client_class=None):
        self.credential_store = credential_store or GatewayCredentialStore()
        self.session = session
        self.client_class = client_class or razorpay.Client

    # ── plumbing ─────────────────────────────────────────────

    def is_configured(self):
        return self.credential_store.load() is not None

    def _credentials(self):
        credentials = self.credential_store.load()
        if credentials is None:
            raise GatewayNotConfigured("Razorpay is not configured")
        return credentials

    def _client(self, credentials=None):
        credentials = credentials or self._credentials()
        return self.client_class(
            session=self.session,
            auth=(credentials.key_id, credentials.key_secret),
        )

    @staticmethod
    def _call(action, method, *args):
        try:
            return method(*args)
        except RAZORPAY_API_ERRORS as e:
            logger.error(f"Razorpay {action} rejected: {e}")
            raise PaymentGatewayError(f"Razorpay {action} failed: {e}")
        except (requests.RequestException, ValueError) as e:
            logger.error(f"Razorpay {action} failed: {e}", exc_info=True)
            raise PaymentGatewayError(f"Razorpay {action} failed: {e}")

    @staticmethod
    def _check_signature(verify, *args):
        # compare_digest raises TypeError for non-ASCII header values
        try:
            verify(*args)
        except (SignatureVerificationError, TypeError, ValueError) as e:
            logger.warning(f"Razorpay signature rejected: {e}")
            raise SignatureInvalid()

    # ── checkout ─────────────────────────────────────────────

    def initiate(self, order):
        """
        Open (or reuse) a Razorpay order for ``order`` and return what the
        client-side checkout needs. Safe to call again for the same order.
        """
        credentials = self._credentials()

        with transaction.atomic():
            order = Order.objects.select_for_update().get(pk=order.pk)
            if not order.is_online:
                raise PaymentMethodUnavailable("This order is not paid online")
            if order.payment_status in ('paid', 'partial', 'refunded'):
                raise PaymentAlreadySettled()
            if order.status == 'cancelled':
                raise PaymentAlreadySettled("Order has been cancelled")

            payment = (
                order.payments.filter(refund_of__isnull=True)
                .order_by('-created_at', '-id')
                .first()
            )
            if payment is None or payment.status == 'failed':
                # Retry after a failed attempt gets its own payment row
                payment = Payment.objects.create(
                    order  = order,
                    amount = order.total,
                    method = order.payment_method,
                    status = 'pending',
                )
                if order.payment_status != 'pending':
                    order.payment_status = 'pending'
                    order.save(update_fields=['payment_status', 'updated_at'])
            elif payment.status != 'pending':
                raise PaymentAlreadySettled()

            if not payment.gateway_order_id:
                client = self._client(credentials)
                rp_order = self._call('order create', client.order.create, {
                    'amount':   to_paise(order.total),
                    'currency': order.currency,
                    'receipt':  order.order_number,
                    'notes':    {
                        'order_id':     str(order.id),
                        'order_number': order.order_number,
                    },
                })
                payment.gateway_order_id = rp_order['id']
                payment.gateway_response = rp_order
                payment.save(update_fields=['gateway_order_id', 'gateway_response', 'updated_at'])
                logger.info(f"Razorpay order {payment.gateway_order_id} opened for {order.order_number}")

        return {
            'gateway_order_id': payment.gateway_order_id,
            'key_id':           credentials.key_id,
            'amount':           to_paise(order.total),
            'currency':         order.currency,
            'order_number':     order.order_number,
        }

    def verify_callback(self, payload, signature):
        """
        Verify a webhook body against ``X-Razorpay-Signature`` and translate
        it into a Captured/Failed event. Returns None for events we ignore.
        """
        credentials = self._credentials()
        if not signature:
            raise SignatureInvalid("Missing signature")

        client = self._client(credentials)
        text = payload.decode('utf-8', errors='replace') if isinstance(payload, bytes) else payload
        self._check_signature(
            client.utility.verify_webhook_signature, text, signature, credentials.signing_secret,
        )

        try:
            body = json.loads(payload)
        except ValueError:
            raise PaymentGatewayError("Malformed webhook payload")
        if not isinstance(body, dict):
            raise PaymentGatewayError("Malformed webhook payload")

        event = body.get('event', '')
        entities = body.get('payload') or {}
        if not isinstance(entities, dict):
            raise PaymentGatewayError("Malformed webhook payload")
        payment = _entity(entities, 'payment')
        rp_order = _entity(entities, 'order')
        gateway_order_id = payment.get('order_id') or rp_order.get('id') or ''

        if event in CAPTURE_EVENTS:
            if not payment.get('id') or not gateway_order_id:
                raise PaymentGatewayError(f"Webhook {event} is missing payment details")
            return Captured(
                transaction_id=payment['id'],
                amount=from_paise(payment.get('amount')),
                gateway_order_id=gateway_order_id,
                raw=body,
            )

        if event in FAILURE_EVENTS:
            if not gateway_order_id:
                raise PaymentGatewayError(f"Webhook {event} is missing payment details")
            return Failed(
                transaction_id=payment.get('id'),
                reason=payment.get('error_description') or 'Payment failed',
                gateway_order_id=gateway_order_id,
                raw=body,
            )

        logger.info(f"Ignoring Razorpay webhook event '{event}'")
        return None

    def verify_checkout(self, gateway_order_id, gateway_payment_id, signature):
        """Client-side checkout handler: check the signature, then ask Razorpay what happened."""
        credentials = self._credentials()
        if not (gateway_order_id and gateway_payment_id and signature):
            raise SignatureInvalid("Missing payment details")

        client = self._client(credentials)
        self._check_signature(client.utility.verify_payment_signature, {
            'razorpay_order_id':   gateway_order_id,
            'razorpay_payment_id': gateway_payment_id,
            'razorpay_signature':  signature,
        })

        payment = self._call('payment fetch', client.payment.fetch, gateway_payment_id)
        if not isinstance(payment, dict):
            raise PaymentGatewayError("Razorpay payment fetch returned an invalid response")

        if payment.get('order_id') and payment['order_id'] != gateway_order_id:
            raise SignatureInvalid("Payment does not belong to this order")

        status = payment.get('status')
        if status == 'captured':
            return Captured(
                transaction_id=gateway_payment_id,
                amount=from_paise(payment.get('amount')),
                gateway_order_id=gateway_order_id,
                raw=payment,
            )
        if status == 'failed':
            return Failed(
                transaction_id=gateway_payment_id,
                reason=payment.get('error_description') or 'Payment failed',
                gateway_order_id=gateway_order_id,
                raw=payment,
            )
        logger.info(f"Razorpay payment {gateway_payment_id} is '{status}', nothing to settle yet")
        return None

    def refund(self, payment, amount):
        client = self._client()
        refund = self._call('refund', client.payment.refund, payment.transaction_id, {
            'amount': to_paise(amount),
        })
        logger.info(f"Razorpay refund {refund.get('id')} of {amount} for {payment.transaction_id}")
        return refund

    # ── admin ────────────────────────────────────────────────

    def connect(self, key_id, key_secret, webhook_secret='', actor=None):
        """Validate credentials against Razorpay and store them."""
        if not getattr(actor, 'is_store_admin', False):
            raise PermissionDenied("Only store admins can connect the payment gateway")

        key_id = (key_id or '').strip()
        key_secret = (key_secret or '').strip()
        if not key_id or not key_secret:
            raise GatewayValidationFailed("Key ID and Key Secret are required")

        credentials = GatewayCredentials(
            key_id=key_id,
            key_secret=key_secret,
            webhook_secret=(webhook_secret or '').strip(),
        )
        client = self._client(credentials)
        try:
            client.payment.all({'count': 1})
        except RAZORPAY_API_ERRORS as e:
            logger.warning(f"Razorpay credential validation failed by {actor}: {e}")
            raise GatewayValidationFailed("Invalid Razorpay credentials. Please check your Key ID and Secret.")
        except (requests.RequestException, ValueError) as e:
            logger.error(f"Razorpay credential check failed: {e}", exc_info=True)
            raise PaymentGatewayError(f"Razorpay credential check failed: {e}")

        self.credential_store.save(credentials)
        logger.info(f"Razorpay connected by {actor}")
        return self.status()

    def disconnect(self, actor=None):
        if not getattr(actor, 'is_store_admin', False):
            raise PermissionDenied("Only store admins can disconnect the payment gateway")
        self.credential_store.clear()
        logger.info(f"Razorpay disconnected by {actor}")
        return self.status()

    def status(self):
        return self.credential_store.status()
