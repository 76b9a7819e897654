# orders/views.py
from django.contrib.auth.decorators import login_required
from django.http import JsonResponse
from django.shortcuts import get_object_or_404
from django.views.decorators.csrf import csrf_exempt
from django.views.decorators.http import require_GET, require_POST
import json
import logging

from cart.snapshot import get_or_create_cart
from .exceptions import CheckoutError, PaymentNotFound
from .models import Order
from .payment_services import SIGNATURE_HEADER, RazorpayPaymentService
from .services import CheckoutService
from .settlement import SettlementReconciler

logger = logging.getLogger(__name__)


# ─────────────────────────────────────────────────────────────
# HELPERS
# ─────────────────────────────────────────────────────────────

def get_gateway():
    return RazorpayPaymentService()


def request_data(request):
    """POST form data or a JSON body, whichever the client sent."""
    if request.content_type == 'application/json':
        try:
            data = json.loads(request.body or b'{}')
        except ValueError:
            return {}
        return data if isinstance(data, dict) else {}
    return request.POST


def checkout_error_response(error):
    return JsonResponse({'success': False, **error.as_dict()}, status=error.http_status)


def server_error_response():
    return JsonResponse({
        'success': False,
        'error':   'server_error',
        'message': 'Something went wrong. Please try again.',
    }, status=500)


# ─────────────────────────────────────────────────────────────
# CHECKOUT
# ─────────────────────────────────────────────────────────────

@login_required
@require_POST
def checkout_quote(request):
    data = request_data(request)
    try:
        cart  = get_or_create_cart(request)
        quote = CheckoutService(gateway=get_gateway()).quote(
            cart, coupon_code=data.get('coupon_code'), user=request.user,
        )
    except CheckoutError as e:
        return checkout_error_response(e)
    return JsonResponse({'success': True, **quote.as_dict()})


@login_required
@require_POST
def place_order(request):
    data = request_data(request)
    payment_method = (data.get('payment_method') or '').strip()
    try:
        cart   = get_or_create_cart(request)
        result = CheckoutService(gateway=get_gateway()).place_order(
            user           = request.user,
            cart           = cart,
            address_id     = data.get('address_id'),
            payment_method = payment_method,
            coupon_code    = data.get('coupon_code'),
            notes          = data.get('notes', ''),
        )
    except CheckoutError as e:
        logger.info(f"Checkout rejected for {request.user}: {e.code} {e.details}")
        return checkout_error_response(e)
    except Exception as e:
        logger.error(f"place_order CRASH: {type(e).__name__}: {e}", exc_info=True)
        return server_error_response()

    if payment_method == 'cod':
        # Online orders keep the cart until the payment is captured
        cart.items.all().delete()

    return JsonResponse(result.as_dict(), status=201)


# ─────────────────────────────────────────────────────────────
# RAZORPAY
# ─────────────────────────────────────────────────────────────

@login_required
@require_POST
def initiate_payment(request, order_number):
    order = get_object_or_404(Order, order_number=order_number, user=request.user)
    try:
        reference = get_gateway().initiate(order)
    except CheckoutError as e:
        return checkout_error_response(e)
    return JsonResponse({'success': True, 'payment': reference})


@csrf_exempt
@require_POST
def payment_callback(request):
    """Client-side checkout handler posts the Razorpay ids and signature here."""
    data    = request_data(request)
    gateway = get_gateway()
    try:
        event = gateway.verify_checkout(
            data.get('razorpay_order_id'),
            data.get('razorpay_payment_id'),
            data.get('razorpay_signature'),
        )
        if event is None:
            return JsonResponse({'success': True, 'payment_status': 'pending'})
        result = SettlementReconciler(gateway=gateway).apply_outcome(event)
    except CheckoutError as e:
        return checkout_error_response(e)

    order = result.payment.order
    return JsonResponse({
        'success':        order.payment_status == 'paid',
        'order_number':   order.order_number,
        'payment_status': order.payment_status,
    })


@csrf_exempt
@require_POST
def payment_webhook(request):
    gateway   = get_gateway()
    signature = request.META.get(SIGNATURE_HEADER, '')
    try:
        event = gateway.verify_callback(request.body, signature)
    except CheckoutError as e:
        logger.warning(f"Rejected Razorpay webhook: {e.code}")
        return JsonResponse({'success': False, 'error': e.code}, status=400)

    if event is None:
        return JsonResponse({'success': True, 'ignored': True})

    try:
        result = SettlementReconciler(gateway=gateway).apply_outcome(event)
    except PaymentNotFound as e:
        logger.warning(f"Webhook for unknown Razorpay order {event.gateway_order_id}")
        return checkout_error_response(e)
    except Exception as e:
        logger.error(f"payment_webhook error: {e}", exc_info=True)
        return server_error_response()

    return JsonResponse({'success': True, 'applied': result.applied})


# ─────────────────────────────────────────────────────────────
# ORDER STATUS
# ─────────────────────────────────────────────────────────────

@login_required
@require_GET
def get_order_status(request, order_number):
    order    = get_object_or_404(Order, order_number=order_number, user=request.user)
    delivery = getattr(order, 'delivery', None)
    return JsonResponse({
        'order_number':           order.order_number,
        'status':                 order.status,
        'status_display':         order.get_status_display(),
        'payment_method':         order.payment_method,
        'payment_status':         order.payment_status,
        'payment_status_display': order.get_payment_status_display(),
        'total':                  str(order.total),
        'delivery':               {
            'status':          delivery.status,
            'tracking_number': delivery.tracking_number,
            'partner_name':    delivery.partner_name,
            'is_cod':          delivery.is_cod,
            'cod_collected':   delivery.cod_collected,
        } if delivery else None,
    })
