# cart/signals.py
import logging

from django.dispatch import receiver

from orders.signals import payment_captured
from .models import Cart

logger = logging.getLogger(__name__)


def clear_customer_cart(user):
    """Empty the user's cart; returns the number of removed rows."""
    if user is None:
        return 0
    cart = Cart.objects.filter(customer=user).first()
    if not cart:
        return 0
    deleted, _ = cart.items.all().delete()
    return deleted


@receiver(payment_captured)
def clear_cart_on_payment(sender, payment, order, **kwargs):
    """
    Clear the buyer's cart once an online payment is captured.
    Fired only on the pending -> paid transition, so webhook replays
    never reach this handler twice.
    """
    removed = clear_customer_cart(order.user)
    logger.info(f"Cart cleared for order {order.order_number} ({removed} items)")
