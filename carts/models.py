from decimal import Decimal

from django.db import models


class Cart(models.Model):
    # One cart per owner; the key is an opaque user id or email.
    owner_key = models.CharField(max_length=255, unique=True)

    # [{"product_id", "quantity", "price", "name", "image"}], prices as strings.
    items = models.JSONField(default=list, blank=True)
    total_amount = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal('0.00'))

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    def __str__(self):
        return f"Cart for {self.owner_key} ({len(self.items)} items)"

    def to_dict(self):
        return {
            'id': self.pk,
            'owner_key': self.owner_key,
            'items': self.items,
            'total_amount': str(self.total_amount),
            'created_at': self.created_at.isoformat() if self.created_at else None,
            'updated_at': self.updated_at.isoformat() if self.updated_at else None,
        }
