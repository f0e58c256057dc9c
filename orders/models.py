import uuid
from decimal import Decimal

from django.db import models


class Order(models.Model):
    class PaymentMethod(models.TextChoices):
        CASH_ON_DELIVERY = 'CASH_ON_DELIVERY', 'Cash on delivery'
        GATEWAY = 'GATEWAY', 'eSewa gateway'

    class PaymentStatus(models.TextChoices):
        PENDING = 'PENDING', 'Pending'
        PAID = 'PAID', 'Paid'
        FAILED = 'FAILED', 'Failed'

    class Status(models.TextChoices):
        PENDING = 'PENDING', 'Pending'
        CONFIRMED = 'CONFIRMED', 'Confirmed'
        DELIVERED = 'DELIVERED', 'Delivered'
        CANCELLED = 'CANCELLED', 'Cancelled'

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    owner_key = models.CharField(max_length=255, db_index=True)
    owner_name = models.CharField(max_length=255)

    # Immutable snapshot: [{"product_id", "name", "quantity", "price"}], prices as strings.
    items = models.JSONField(default=list)
    # {"full_name", "phone_number", "address", "city", "postal_code"}
    delivery_address = models.JSONField(default=dict)
    from_cart = models.BooleanField(default=False)

    payment_method = models.CharField(max_length=20, choices=PaymentMethod.choices)
    payment_status = models.CharField(
        max_length=20,
        choices=PaymentStatus.choices,
        default=PaymentStatus.PENDING,
        db_index=True
    )
    order_status = models.CharField(
        max_length=20,
        choices=Status.choices,
        default=Status.PENDING,
        db_index=True
    )
    # True while the line item quantities are held out of Product.stock.
    stock_reserved = models.BooleanField(default=False)

    # Fixed at creation and never recomputed.
    total_amount = models.DecimalField(max_digits=12, decimal_places=2)
    tax_amount = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal('0.00'))
    delivery_charge = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal('0.00'))
    grand_total = models.DecimalField(max_digits=12, decimal_places=2)

    # Gateway correlation, only for GATEWAY orders.
    transaction_uuid = models.CharField(max_length=64, unique=True, null=True, blank=True)
    transaction_code = models.CharField(max_length=64, null=True, blank=True)
    ref_id = models.CharField(max_length=64, null=True, blank=True)
    gateway_signature = models.CharField(max_length=255, null=True, blank=True)

    notes = models.TextField(blank=True, default='')

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    def __str__(self):
        return f"Order {self.id} for {self.owner_key} - {self.get_order_status_display()}/{self.get_payment_status_display()}"

    def line_quantities(self):
        return [(item['product_id'], item['quantity']) for item in self.items]

    def to_dict(self):
        return {
            'id': str(self.id),
            'owner': {'owner_key': self.owner_key, 'name': self.owner_name},
            'items': self.items,
            'delivery_address': self.delivery_address,
            'payment_method': self.payment_method,
            'payment_status': self.payment_status,
            'order_status': self.order_status,
            'total_amount': str(self.total_amount),
            'tax_amount': str(self.tax_amount),
            'delivery_charge': str(self.delivery_charge),
            'grand_total': str(self.grand_total),
            'transaction_uuid': self.transaction_uuid,
            'transaction_code': self.transaction_code,
            'ref_id': self.ref_id,
            'notes': self.notes,
            'created_at': self.created_at.isoformat() if self.created_at else None,
            'updated_at': self.updated_at.isoformat() if self.updated_at else None,
        }

    class Meta:
        ordering = ['-created_at']
        verbose_name = "Order"
        verbose_name_plural = "Orders"
        indexes = [
            models.Index(fields=['owner_key', '-created_at'], name='order_owner_created_idx'),
        ]
