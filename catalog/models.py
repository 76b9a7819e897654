# catalog/models.py
from django.db import models
from django.core.validators import MinValueValidator, MaxValueValidator
from django.db.models import Q


class Product(models.Model):
    """Catalog product as read by checkout (price, tax rate and stock)"""
    sku = models.CharField(max_length=100, unique=True, db_index=True)
    name = models.CharField(max_length=255)
    slug = models.SlugField(max_length=300, unique=True, db_index=True)

    # Pricing
    base_price = models.DecimalField(max_digits=12, decimal_places=2, validators=[MinValueValidator(0)])
    compare_at_price = models.DecimalField(max_digits=12, decimal_places=2, null=True, blank=True)  # MRP
    tax_rate = models.DecimalField(
        max_digits=5, decimal_places=2, default=0,
        validators=[MinValueValidator(0), MaxValueValidator(100)],
    )

    # Inventory
    track_inventory = models.BooleanField(default=True)
    stock_quantity = models.IntegerField(default=0)
    low_stock_threshold = models.IntegerField(default=5)

    is_active = models.BooleanField(default=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = 'catalog_products'
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['sku']),
            models.Index(fields=['slug']),
            models.Index(fields=['is_active']),
        ]
        constraints = [
            models.CheckConstraint(
                condition=Q(stock_quantity__gte=0),
                name='product_stock_not_negative',
            ),
        ]

    def __str__(self):
        return self.name


class ProductVariant(models.Model):
    """Product variants with their own stock and optional price"""
    product = models.ForeignKey(Product, on_delete=models.CASCADE, related_name='variants')

    variant_sku = models.CharField(max_length=100, unique=True, db_index=True)
    name = models.CharField(max_length=100)  # e.g. "Red / XL"

    # Pricing (if variant has a different price)
    price = models.DecimalField(max_digits=12, decimal_places=2, null=True, blank=True)
    compare_at_price = models.DecimalField(max_digits=12, decimal_places=2, null=True, blank=True)

    stock_quantity = models.IntegerField(default=0)

    is_active = models.BooleanField(default=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = 'catalog_product_variants'
        ordering = ['name']
        indexes = [
            models.Index(fields=['variant_sku']),
            models.Index(fields=['product', 'is_active']),
        ]
        constraints = [
            models.CheckConstraint(
                condition=Q(stock_quantity__gte=0),
                name='variant_stock_not_negative',
            ),
        ]

    def __str__(self):
        return f"{self.product.name} - {self.name}"

    @property
    def effective_price(self):
        return self.price if self.price is not None else self.product.base_price
