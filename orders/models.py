# orders/models.py
from dataclasses import dataclass, asdict

from django.db import models
from django.db.models import F, Q
from django.conf import settings
from catalog.models import Product, ProductVariant


@dataclass(frozen=True)
class AddressSnapshot:
    """Shipping address copied onto the order; independent of the address book"""
    full_name: str
    mobile_number: str
    address_line1: str
    address_line2: str
    city: str
    state: str
    pincode: str
    landmark: str = ''

    @classmethod
    def from_address(cls, address):
        return cls(
            full_name=address.full_name,
            mobile_number=address.mobile_number,
            address_line1=address.address_line1,
            address_line2=address.address_line2 or '',
            city=address.city,
            state=address.state,
            pincode=address.pincode,
            landmark=address.landmark or '',
        )

    def as_dict(self):
        return asdict(self)


class Order(models.Model):
    """Main order model"""
    ORDER_STATUS = [
        ('new', 'New'),
        ('confirmed', 'Confirmed'),
        ('packed', 'Packed'),
        ('shipped', 'Shipped'),
        ('delivered', 'Delivered'),
        ('cancelled', 'Cancelled'),
        ('returned', 'Returned'),
    ]

    PAYMENT_METHODS = [
        ('online', 'Online'),
        ('cod', 'Cash on Delivery'),
        ('wallet', 'Wallet'),
    ]

    PAYMENT_STATUS = [
        ('pending', 'Pending'),
        ('paid', 'Paid'),
        ('failed', 'Failed'),
        ('refunded', 'Refunded'),
        ('partial', 'Partially Refunded'),
    ]

    # Order Identifiers
    order_number = models.CharField(max_length=50, unique=True, db_index=True)
    user = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.PROTECT, null=True, blank=True, related_name='orders')

    # Status
    status = models.CharField(max_length=20, choices=ORDER_STATUS, default='new', db_index=True)
    payment_method = models.CharField(max_length=20, choices=PAYMENT_METHODS)
    payment_status = models.CharField(max_length=20, choices=PAYMENT_STATUS, default='pending', db_index=True)

    # Pricing
    currency = models.CharField(max_length=3, default='INR')
    subtotal = models.DecimalField(max_digits=12, decimal_places=2)
    discount = models.DecimalField(max_digits=12, decimal_places=2, default=0)
    shipping_charge = models.DecimalField(max_digits=12, decimal_places=2, default=0)
    tax = models.DecimalField(max_digits=12, decimal_places=2, default=0)
    total = models.DecimalField(max_digits=12, decimal_places=2)

    # Coupon
    coupon = models.ForeignKey('promotions.Coupon', on_delete=models.SET_NULL, null=True, blank=True, related_name='orders')
    coupon_code = models.CharField(max_length=50, blank=True)

    # Shipping Address (snapshot at order time)
    shipping_full_name = models.CharField(max_length=200)
    shipping_mobile_number = models.CharField(max_length=20)
    shipping_address_line1 = models.CharField(max_length=255)
    shipping_address_line2 = models.CharField(max_length=255, blank=True)
    shipping_city = models.CharField(max_length=100)
    shipping_state = models.CharField(max_length=100)
    shipping_pincode = models.CharField(max_length=20)
    shipping_landmark = models.CharField(max_length=255, blank=True)

    # Notes
    notes = models.TextField(blank=True)

    # Timestamps
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)
    confirmed_at = models.DateTimeField(null=True, blank=True)
    shipped_at = models.DateTimeField(null=True, blank=True)
    delivered_at = models.DateTimeField(null=True, blank=True)
    cancelled_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        db_table = 'orders'
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['user', '-created_at']),
            models.Index(fields=['status', '-created_at']),
        ]
        constraints = [
            models.CheckConstraint(
                condition=Q(subtotal__gte=0) & Q(discount__gte=0) & Q(shipping_charge__gte=0)
                & Q(tax__gte=0) & Q(total__gte=0),
                name='order_amounts_not_negative',
            ),
            models.CheckConstraint(
                condition=Q(discount__lte=F('subtotal')),
                name='order_discount_within_subtotal',
            ),
        ]

    def __str__(self):
        return self.order_number

    @property
    def shipping_address(self):
        return AddressSnapshot(
            full_name=self.shipping_full_name,
            mobile_number=self.shipping_mobile_number,
            address_line1=self.shipping_address_line1,
            address_line2=self.shipping_address_line2,
            city=self.shipping_city,
            state=self.shipping_state,
            pincode=self.shipping_pincode,
            landmark=self.shipping_landmark,
        )

    @staticmethod
    def shipping_fields(snapshot):
        return {f'shipping_{key}': value for key, value in snapshot.as_dict().items()}

    @property
    def is_online(self):
        return self.payment_method in ('online', 'wallet')


class OrderItem(models.Model):
    """Individual items within an order"""
    order = models.ForeignKey(Order, on_delete=models.CASCADE, related_name='items')

    # Product snapshot
    product = models.ForeignKey(Product, on_delete=models.SET_NULL, null=True, blank=True)
    variant = models.ForeignKey(ProductVariant, on_delete=models.SET_NULL, null=True, blank=True)

    product_name = models.CharField(max_length=255)
    sku = models.CharField(max_length=100)
    variant_name = models.CharField(max_length=100, blank=True)

    price = models.DecimalField(max_digits=12, decimal_places=2)
    mrp = models.DecimalField(max_digits=12, decimal_places=2, null=True, blank=True)
    quantity = models.PositiveIntegerField()
    tax_rate = models.DecimalField(max_digits=5, decimal_places=2, default=0)
    total = models.DecimalField(max_digits=12, decimal_places=2)

    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = 'order_items'
        ordering = ['id']
        indexes = [
            models.Index(fields=['order']),
        ]


class Payment(models.Model):
    """Payment attempts and refunds for an order"""
    PAYMENT_STATUS = Order.PAYMENT_STATUS

    order = models.ForeignKey(Order, on_delete=models.CASCADE, related_name='payments')

    amount = models.DecimalField(max_digits=12, decimal_places=2)  # negative for refund rows
    method = models.CharField(max_length=20, choices=Order.PAYMENT_METHODS)
    status = models.CharField(max_length=20, choices=PAYMENT_STATUS, default='pending', db_index=True)

    transaction_id = models.CharField(max_length=255, unique=True, null=True, blank=True)
    gateway_order_id = models.CharField(max_length=255, blank=True, db_index=True)
    gateway_response = models.JSONField(null=True, blank=True)

    # Refunds
    refund_amount = models.DecimalField(max_digits=12, decimal_places=2, null=True, blank=True)
    refund_reason = models.TextField(blank=True)
    refund_of = models.ForeignKey('self', on_delete=models.PROTECT, null=True, blank=True, related_name='refunds')

    paid_at = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = 'payments'
        ordering = ['-created_at', '-id']
        indexes = [
            models.Index(fields=['order', 'status']),
        ]
        constraints = [
            models.CheckConstraint(
                condition=Q(refund_amount__isnull=True) | Q(amount__lt=0) | Q(refund_amount__lte=F('amount')),
                name='payment_refund_within_amount',
            ),
        ]

    def __str__(self):
        return f"{self.order.order_number} {self.status} {self.amount}"

    @property
    def refundable_balance(self):
        return self.amount - (self.refund_amount or 0)


class Delivery(models.Model):
    """Shipment state; one per order"""
    DELIVERY_STATUS = [
        ('pending', 'Pending'),
        ('assigned', 'Assigned'),
        ('picked', 'Picked Up'),
        ('in_transit', 'In Transit'),
        ('delivered', 'Delivered'),
        ('failed', 'Failed'),
    ]

    order = models.OneToOneField(Order, on_delete=models.CASCADE, related_name='delivery')
    status = models.CharField(max_length=20, choices=DELIVERY_STATUS, default='pending', db_index=True)

    # Cash on delivery
    is_cod = models.BooleanField(default=False)
    cod_amount = models.DecimalField(max_digits=12, decimal_places=2, null=True, blank=True)
    cod_collected = models.BooleanField(default=False)

    delivery_charge = models.DecimalField(max_digits=12, decimal_places=2, default=0)
    partner_name = models.CharField(max_length=100, blank=True)
    tracking_number = models.CharField(max_length=255, blank=True)

    delivered_at = models.DateTimeField(null=True, blank=True)
    notes = models.TextField(blank=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = 'deliveries'
        verbose_name_plural = 'Deliveries'


class OrderStatusHistory(models.Model):
    """Track order status changes"""
    order = models.ForeignKey(Order, on_delete=models.CASCADE, related_name='status_history')
    from_status = models.CharField(max_length=50, blank=True)
    to_status = models.CharField(max_length=50)

    notes = models.TextField(blank=True)
    changed_by = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.SET_NULL, null=True, blank=True)

    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = 'order_status_history'
        ordering = ['-created_at', '-id']
        indexes = [
            models.Index(fields=['order', '-created_at']),
        ]
