# orders/exceptions.py
"""
Checkout and settlement errors.

Every error carries a stable ``code`` that views return to the client,
the HTTP status the views should answer with, and any structured details
(e.g. which product ran out of stock).
"""


class CheckoutError(Exception):
    code = 'checkout_error'
    http_status = 400
    default_message = 'Unable to complete checkout'

    def __init__(self, message=None, **details):
        self.message = message or self.default_message
        self.details = details
        super().__init__(self.message)

    def as_dict(self):
        return {'error': self.code, 'message': self.message, **self.details}


# ── Pricing / coupons ─────────────────────────────────────────

class InvalidCoupon(CheckoutError):
    code = 'invalid_coupon'
    default_message = 'Invalid coupon code'


class CouponMinimumNotMet(CheckoutError):
    code = 'coupon_minimum_not_met'
    default_message = 'Minimum order value not met for this coupon'


class CouponLimitExceeded(CheckoutError):
    code = 'coupon_limit_exceeded'
    default_message = 'Coupon usage limit reached'


# ── Cart / stock / address ────────────────────────────────────

class InsufficientStock(CheckoutError):
    code = 'insufficient_stock'
    http_status = 409

    def __init__(self, product_id, requested, available, message=None):
        self.product_id = product_id
        self.requested = requested
        self.available = available
        super().__init__(
            message or f"Only {available} left in stock",
            product_id=product_id, requested=requested, available=available,
        )


class AddressNotFound(CheckoutError):
    code = 'address_not_found'
    http_status = 404
    default_message = 'Delivery address not found'


class EmptyCart(CheckoutError):
    code = 'empty_cart'
    default_message = 'Your cart is empty'


class OrderBelowMinimum(CheckoutError):
    code = 'order_below_minimum'
    default_message = 'Order total is below the store minimum'


class PaymentMethodUnavailable(CheckoutError):
    code = 'payment_method_unavailable'
    default_message = 'This payment method is not available'


# ── Gateway ───────────────────────────────────────────────────

class GatewayNotConfigured(CheckoutError):
    code = 'gateway_not_configured'
    http_status = 503
    default_message = 'Online payments are not configured'


class GatewayValidationFailed(CheckoutError):
    code = 'gateway_validation_failed'
    default_message = 'Invalid gateway credentials'


class PaymentGatewayError(CheckoutError):
    code = 'payment_gateway_error'
    http_status = 502
    default_message = 'Payment gateway request failed'


class SignatureInvalid(CheckoutError):
    code = 'signature_invalid'
    default_message = 'Invalid signature'


# ── Settlement ────────────────────────────────────────────────

class PaymentAlreadySettled(CheckoutError):
    code = 'payment_already_settled'
    http_status = 409
    default_message = 'Payment already settled'


class PaymentNotFound(CheckoutError):
    code = 'payment_not_found'
    http_status = 404
    default_message = 'Payment not found'


class RefundExceedsBalance(CheckoutError):
    code = 'refund_exceeds_balance'

    def __init__(self, remaining, message=None):
        self.remaining = remaining
        super().__init__(
            message or f"Refund exceeds refundable balance of {remaining}",
            remaining=str(remaining),
        )


class InvalidRefundAmount(CheckoutError):
    code = 'invalid_refund_amount'
    default_message = 'Refund amount must be greater than zero'


class NothingToRefund(CheckoutError):
    code = 'nothing_to_refund'
    default_message = 'No captured payment to refund'


class InvalidStatusTransition(CheckoutError):
    code = 'invalid_status_transition'
    http_status = 409

    def __init__(self, current, target, message=None):
        self.current = current
        self.target = target
        super().__init__(
            message or f"Cannot move from '{current}' to '{target}'",
            current=current, target=target,
        )


class OrderNumberCollision(CheckoutError):
    code = 'order_number_collision'
    http_status = 500
    default_message = 'Could not allocate a unique order number'
