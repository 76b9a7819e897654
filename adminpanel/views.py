# adminpanel/views.py
from django.shortcuts import get_object_or_404
from django.contrib.auth.decorators import login_required, user_passes_test
from django.http import JsonResponse
from django.views.decorators.http import require_GET, require_POST
import logging

from orders.exceptions import CheckoutError
from orders.models import Delivery, Order
from orders.settlement import SettlementReconciler
from orders.views import checkout_error_response, get_gateway, request_data

logger = logging.getLogger(__name__)


# Helper function to check if user is admin
def is_admin(user):
    return user.is_authenticated and (user.is_superuser or user.user_type in ['admin', 'staff'])


def order_summary(order):
    return {
        'order_number':   order.order_number,
        'status':         order.status,
        'payment_status': order.payment_status,
        'total':          str(order.total),
    }


# ==================== ORDERS ====================

@login_required
@user_passes_test(is_admin)
@require_POST
def refund_order(request, order_number):
    """Refund part or all of an order's captured payment"""
    order = get_object_or_404(Order, order_number=order_number)
    data  = request_data(request)
    try:
        refund = SettlementReconciler(gateway=get_gateway()).apply_refund(
            order,
            amount = data.get('amount'),
            reason = data.get('reason', ''),
            actor  = request.user,
        )
    except CheckoutError as e:
        return checkout_error_response(e)

    order.refresh_from_db()
    return JsonResponse({
        'success':        True,
        'refund_id':      refund.id,
        'refunded':       str(-refund.amount),
        'refund_balance': str(refund.refund_of.refundable_balance),
        'order':          order_summary(order),
    })


@login_required
@user_passes_test(is_admin)
@require_POST
def update_order_status(request, order_number):
    order = get_object_or_404(Order, order_number=order_number)
    data  = request_data(request)
    try:
        order = SettlementReconciler(gateway=get_gateway()).update_order_status(
            order,
            (data.get('status') or '').strip(),
            actor = request.user,
            notes = data.get('notes', ''),
        )
    except CheckoutError as e:
        return checkout_error_response(e)
    return JsonResponse({'success': True, 'order': order_summary(order)})


@login_required
@user_passes_test(is_admin)
@require_POST
def update_delivery(request, order_number):
    delivery = get_object_or_404(Delivery, order__order_number=order_number)
    data     = request_data(request)
    try:
        delivery = SettlementReconciler(gateway=get_gateway()).update_delivery_status(
            delivery,
            (data.get('status') or delivery.status).strip(),
            tracking_number = data.get('tracking_number'),
            partner_name    = data.get('partner_name'),
        )
    except CheckoutError as e:
        return checkout_error_response(e)
    return JsonResponse({
        'success':         True,
        'status':          delivery.status,
        'tracking_number': delivery.tracking_number,
        'partner_name':    delivery.partner_name,
        'delivered_at':    delivery.delivered_at.isoformat() if delivery.delivered_at else None,
    })


@login_required
@user_passes_test(is_admin)
@require_POST
def mark_cod_collected(request, order_number):
    order = get_object_or_404(Order, order_number=order_number)
    try:
        order = SettlementReconciler(gateway=get_gateway()).mark_cod_collected(order, actor=request.user)
    except CheckoutError as e:
        return checkout_error_response(e)
    return JsonResponse({'success': True, 'order': order_summary(order)})


# ==================== PAYMENT GATEWAY ====================

@login_required
@user_passes_test(is_admin)
@require_GET
def gateway_status(request):
    return JsonResponse({'success': True, **get_gateway().status()})


@login_required
@user_passes_test(is_admin)
@require_POST
def gateway_connect(request):
    data = request_data(request)
    try:
        status = get_gateway().connect(
            data.get('key_id'),
            data.get('key_secret'),
            webhook_secret = data.get('webhook_secret', ''),
            actor          = request.user,
        )
    except CheckoutError as e:
        return checkout_error_response(e)
    return JsonResponse({'success': True, **status})


@login_required
@user_passes_test(is_admin)
@require_POST
def gateway_disconnect(request):
    status = get_gateway().disconnect(actor=request.user)
    return JsonResponse({'success': True, **status})
