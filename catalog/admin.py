from django.contrib import admin
from django.utils.html import format_html
from .models import Product, ProductVariant


class ProductVariantInline(admin.TabularInline):
    model = ProductVariant
    extra = 0


@admin.register(Product)
class ProductAdmin(admin.ModelAdmin):
    list_display = ["name", "sku", "base_price", "tax_rate", "stock_display", "is_active"]
    list_filter = ["is_active", "track_inventory"]
    search_fields = ["name", "sku"]
    prepopulated_fields = {"slug": ("name",)}
    inlines = [ProductVariantInline]

    @admin.display(description="Stock")
    def stock_display(self, obj):
        if obj.track_inventory and obj.stock_quantity <= obj.low_stock_threshold:
            return format_html('<span style="color: #dc2626;">{}</span>', obj.stock_quantity)
        return obj.stock_quantity
