# orders/admin.py
from django.contrib import admin

from .models import Delivery, Order, OrderItem, OrderStatusHistory, Payment


class OrderItemInline(admin.TabularInline):
    model = OrderItem
    extra = 0
    readonly_fields = ['product', 'variant', 'product_name', 'sku', 'variant_name', 'price', 'quantity', 'total']
    can_delete = False


class PaymentInline(admin.TabularInline):
    model = Payment
    fk_name = 'order'
    extra = 0
    fields = ['amount', 'method', 'status', 'transaction_id', 'gateway_order_id', 'refund_amount', 'paid_at']
    readonly_fields = fields
    can_delete = False


class OrderStatusHistoryInline(admin.TabularInline):
    model = OrderStatusHistory
    extra = 0
    readonly_fields = ['from_status', 'to_status', 'notes', 'changed_by', 'created_at']
    can_delete = False


@admin.register(Order)
class OrderAdmin(admin.ModelAdmin):
    list_display = ['order_number', 'user', 'status', 'payment_method', 'payment_status', 'total', 'created_at']
    list_filter = ['status', 'payment_method', 'payment_status']
    search_fields = ['order_number', 'user__email', 'shipping_full_name', 'shipping_mobile_number']
    date_hierarchy = 'created_at'
    inlines = [OrderItemInline, PaymentInline, OrderStatusHistoryInline]

    # Status changes go through the admin console so history and payments stay consistent
    readonly_fields = [
        'order_number', 'user', 'status', 'payment_method', 'payment_status',
        'subtotal', 'discount', 'shipping_charge', 'tax', 'total', 'coupon', 'coupon_code',
        'created_at', 'updated_at', 'confirmed_at', 'shipped_at', 'delivered_at', 'cancelled_at',
    ]


@admin.register(Payment)
class PaymentAdmin(admin.ModelAdmin):
    list_display = ['order', 'amount', 'method', 'status', 'transaction_id', 'refund_amount', 'created_at']
    list_filter = ['status', 'method']
    search_fields = ['order__order_number', 'transaction_id', 'gateway_order_id']
    readonly_fields = ['order', 'amount', 'method', 'status', 'transaction_id', 'gateway_order_id',
                       'gateway_response', 'refund_amount', 'refund_of', 'paid_at', 'created_at']


@admin.register(Delivery)
class DeliveryAdmin(admin.ModelAdmin):
    list_display = ['order', 'status', 'is_cod', 'cod_amount', 'cod_collected', 'partner_name', 'tracking_number']
    list_filter = ['status', 'is_cod', 'cod_collected']
    search_fields = ['order__order_number', 'tracking_number']
    readonly_fields = ['order', 'status', 'is_cod', 'cod_amount', 'cod_collected', 'delivered_at']
