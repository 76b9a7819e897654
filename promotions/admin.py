# promotions/admin.py
from django.contrib import admin

from .models import Coupon, CouponUsage


@admin.register(Coupon)
class CouponAdmin(admin.ModelAdmin):
    list_display = ['code', 'type', 'value', 'max_discount', 'used_count', 'usage_limit', 'is_active', 'end_date']
    list_filter = ['type', 'is_active']
    search_fields = ['code', 'description']
    readonly_fields = ['used_count', 'created_at', 'updated_at']


@admin.register(CouponUsage)
class CouponUsageAdmin(admin.ModelAdmin):
    list_display = ['coupon', 'user', 'order', 'discount_amount', 'used_at']
    search_fields = ['coupon__code', 'order__order_number']
    readonly_fields = ['coupon', 'user', 'order', 'discount_amount', 'used_at']
