# store/services.py
"""
Read access to store configuration.

Checkout values come from the "checkout" StoreSetting row and fall back to
Django settings. Gateway credentials live in a server-side row that no view
ever serialises; only the masked "razorpay" row is shown to admins.
"""

import logging
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation

from django.conf import settings
from django.utils import timezone

from .models import StoreSetting

logger = logging.getLogger(__name__)

CHECKOUT_KEY            = 'checkout'
GATEWAY_STATUS_KEY      = 'razorpay'
GATEWAY_CREDENTIALS_KEY = 'razorpay_credentials'


def _decimal(value, default):
    try:
        return Decimal(str(value))
    except (InvalidOperation, TypeError, ValueError):
        return Decimal(str(default))


def get_setting(key, default=None):
    row = StoreSetting.objects.filter(key=key).first()
    return row.value if row else default


def put_setting(key, value):
    row, _ = StoreSetting.objects.update_or_create(key=key, defaults={'value': value})
    return row


@dataclass(frozen=True)
class CheckoutSettings:
    cod_enabled: bool
    min_order_value: Decimal
    free_shipping_threshold: Decimal
    default_shipping_charge: Decimal


def get_checkout_settings():
    """Current checkout configuration; store rows win over Django settings."""
    stored = get_setting(CHECKOUT_KEY, {}) or {}
    defaults = {
        'cod_enabled':             getattr(settings, 'COD_ENABLED', True),
        'min_order_value':         getattr(settings, 'MIN_ORDER_VALUE', '0'),
        'free_shipping_threshold': getattr(settings, 'FREE_SHIPPING_THRESHOLD', '500'),
        'default_shipping_charge': getattr(settings, 'DEFAULT_SHIPPING_CHARGE', '50'),
    }
    merged = {**defaults, **{k: v for k, v in stored.items() if v is not None}}
    return CheckoutSettings(
        cod_enabled=bool(merged['cod_enabled']),
        min_order_value=_decimal(merged['min_order_value'], '0'),
        free_shipping_threshold=_decimal(merged['free_shipping_threshold'], '500'),
        default_shipping_charge=_decimal(merged['default_shipping_charge'], '50'),
    )


# ─────────────────────────────────────────────────────────────
# GATEWAY CREDENTIALS
# ─────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class GatewayCredentials:
    key_id: str
    key_secret: str
    webhook_secret: str = ''

    @property
    def signing_secret(self):
        return self.webhook_secret or self.key_secret

    @property
    def is_test_mode(self):
        return self.key_id.startswith('rzp_test_')


def mask_key_id(key_id):
    if not key_id:
        return None
    return f"{key_id[:8]}...{key_id[-4:]}"


class GatewayCredentialStore:
    """Persists Razorpay credentials; read by the payment adapter at call time."""

    def load(self):
        value = get_setting(GATEWAY_CREDENTIALS_KEY)
        if not value or not value.get('key_id') or not value.get('key_secret'):
            return None
        return GatewayCredentials(
            key_id=value['key_id'],
            key_secret=value['key_secret'],
            webhook_secret=value.get('webhook_secret', '') or '',
        )

    def save(self, credentials):
        put_setting(GATEWAY_STATUS_KEY, {
            'key_id_preview': mask_key_id(credentials.key_id),
            'is_connected':   True,
            'connected_at':   timezone.now().isoformat(),
            'is_test_mode':   credentials.is_test_mode,
        })
        put_setting(GATEWAY_CREDENTIALS_KEY, {
            'key_id':         credentials.key_id,
            'key_secret':     credentials.key_secret,
            'webhook_secret': credentials.webhook_secret,
        })
        logger.info(f"Gateway credentials stored ({mask_key_id(credentials.key_id)})")

    def clear(self):
        put_setting(GATEWAY_STATUS_KEY, {'is_connected': False, 'key_id_preview': None})
        StoreSetting.objects.filter(key=GATEWAY_CREDENTIALS_KEY).delete()
        logger.info("Gateway credentials cleared")

    def status(self):
        stored = get_setting(GATEWAY_STATUS_KEY, {}) or {}
        connected = self.load() is not None
        return {
            'connected':      connected,
            'key_id_preview': stored.get('key_id_preview') if connected else None,
            'connected_at':   stored.get('connected_at') if connected else None,
            'is_test_mode':   bool(stored.get('is_test_mode')) if connected else False,
        }
