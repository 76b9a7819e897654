# cart/models.py
from django.db import models
from django.conf import settings
from catalog.models import Product, ProductVariant


class Cart(models.Model):
    """Shopping cart"""
    customer = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.CASCADE, null=True, blank=True, related_name='carts')
    session_key = models.CharField(max_length=255, db_index=True, null=True, blank=True)  # For guest users

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = 'cart_carts'
        indexes = [
            models.Index(fields=['customer']),
            models.Index(fields=['session_key']),
        ]


class CartItem(models.Model):
    """Individual cart items; prices are read from the catalog at checkout"""
    cart = models.ForeignKey(Cart, on_delete=models.CASCADE, related_name='items')

    product = models.ForeignKey(Product, on_delete=models.CASCADE)
    variant = models.ForeignKey(ProductVariant, on_delete=models.CASCADE, null=True, blank=True)

    quantity = models.PositiveIntegerField(default=1)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = 'cart_items'
        ordering = ['created_at', 'id']
        indexes = [
            models.Index(fields=['cart']),
        ]
        unique_together = [['cart', 'product', 'variant']]
