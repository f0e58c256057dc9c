import uuid
from decimal import Decimal

from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name='Order',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ('owner_key', models.CharField(db_index=True, max_length=255)),
                ('owner_name', models.CharField(max_length=255)),
                ('items', models.JSONField(default=list)),
                ('delivery_address', models.JSONField(default=dict)),
                ('from_cart', models.BooleanField(default=False)),
                ('payment_method', models.CharField(choices=[('CASH_ON_DELIVERY', 'Cash on delivery'), ('GATEWAY', 'eSewa gateway')], max_length=20)),
                ('payment_status', models.CharField(choices=[('PENDING', 'Pending'), ('PAID', 'Paid'), ('FAILED', 'Failed')], db_index=True, default='PENDING', max_length=20)),
                ('order_status', models.CharField(choices=[('PENDING', 'Pending'), ('CONFIRMED', 'Confirmed'), ('DELIVERED', 'Delivered'), ('CANCELLED', 'Cancelled')], db_index=True, default='PENDING', max_length=20)),
                ('stock_reserved', models.BooleanField(default=False)),
                ('total_amount', models.DecimalField(decimal_places=2, max_digits=12)),
                ('tax_amount', models.DecimalField(decimal_places=2, default=Decimal('0.00'), max_digits=12)),
                ('delivery_charge', models.DecimalField(decimal_places=2, default=Decimal('0.00'), max_digits=12)),
                ('grand_total', models.DecimalField(decimal_places=2, max_digits=12)),
                ('transaction_uuid', models.CharField(blank=True, max_length=64, null=True, unique=True)),
                ('transaction_code', models.CharField(blank=True, max_length=64, null=True)),
                ('ref_id', models.CharField(blank=True, max_length=64, null=True)),
                ('gateway_signature', models.CharField(blank=True, max_length=255, null=True)),
                ('notes', models.TextField(blank=True, default='')),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
            ],
            options={
                'verbose_name': 'Order',
                'verbose_name_plural': 'Orders',
                'ordering': ['-created_at'],
                'indexes': [models.Index(fields=['owner_key', '-created_at'], name='order_owner_created_idx')],
            },
        ),
    ]
