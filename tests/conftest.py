"""Pytest fixtures for shop backend tests."""

import base64
import json
import threading
from decimal import Decimal

import pytest
from django.db import close_old_connections

from carts import store as cart_store
from orders.services import EsewaService
from products.models import Product
from shop_backend.esewa_config import EsewaConfig

CALLBACK_SIGNED_FIELDS = 'transaction_code,status,total_amount,transaction_uuid,product_code,signed_field_names'


@pytest.fixture
def esewa_config():
    return EsewaConfig(
        merchant_code='EPAYTEST',
        secret_key='test-secret-key',
        form_url='https://gateway.test/api/epay/main/v2/form',
        status_url='https://gateway.test/api/epay/transaction/status/',
        success_url='http://shop.test/orders/gateway/success',
        failure_url='http://shop.test/orders/gateway/failure',
        status_timeout=2.0,
    )


@pytest.fixture
def gateway(esewa_config):
    return EsewaService(esewa_config)


@pytest.fixture
def make_product(db):
    def _make(name='Product A', price='100.00', stock=10):
        return Product.objects.create(name=name, price=Decimal(price), stock=stock)
    return _make


@pytest.fixture
def fill_cart(db):
    def _fill(owner_key, *lines):
        for product, quantity in lines:
            cart_store.upsert_item(owner_key, product.pk, quantity)
        return cart_store.read(owner_key)
    return _fill


@pytest.fixture
def delivery_address():
    return {
        'full_name': 'Sita Sharma',
        'phone_number': '9800000000',
        'address': 'Lakeside Road 4',
        'city': 'Pokhara',
        'postal_code': '33700',
    }


@pytest.fixture
def order_payload(delivery_address):
    def _payload(payment_method='CASH_ON_DELIVERY', owner_key='sita@example.com', **extra):
        payload = {
            'owner_key': owner_key,
            'delivery_address': delivery_address,
            'payment_method': payment_method,
            'tax_amount': 10,
            'delivery_charge': 5,
        }
        payload.update(extra)
        return payload
    return _payload


@pytest.fixture
def encode_callback():
    """Builds the base64 ``data`` parameter the gateway sends on success."""
    def _encode(service, order, status='COMPLETE', total_amount=None, transaction_code='000AE01',
                signed_field_names=CALLBACK_SIGNED_FIELDS, signature=None, tamper=None):
        fields = {
            'transaction_code': transaction_code,
            'status': status,
            'total_amount': total_amount if total_amount is not None else format(order.grand_total.normalize(), 'f'),
            'transaction_uuid': order.transaction_uuid,
            'product_code': service.config.merchant_code,
            'signed_field_names': signed_field_names,
        }
        fields['signature'] = signature or service.sign_fields(fields, signed_field_names.split(','))
        # Applied after signing, to simulate fields altered in transit.
        fields.update(tamper or {})
        return base64.b64encode(json.dumps(fields).encode('utf-8')).decode('ascii')
    return _encode


@pytest.fixture
def run_concurrently():
    """
    Runs ``target`` once per args tuple, each on its own thread and all
    released together, returning each call's result or raised exception.
    """
    def _run(target, args_list):
        barrier = threading.Barrier(len(args_list))
        results = [None] * len(args_list)

        def run(index, args):
            try:
                barrier.wait()
                results[index] = target(*args)
            except Exception as e:
                results[index] = e
            finally:
                close_old_connections()

        threads = [threading.Thread(target=run, args=(i, args)) for i, args in enumerate(args_list)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()
        return results
    return _run
