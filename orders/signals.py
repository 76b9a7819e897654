# orders/signals.py
from django.dispatch import Signal

# All four are sent from transaction.on_commit callbacks.
order_placed = Signal()       # order
payment_captured = Signal()   # payment, order
payment_failed = Signal()     # payment, order, reason
order_refunded = Signal()     # payment, order, refund, amount
