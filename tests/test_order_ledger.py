"""Tests for order creation and operator status transitions."""

from decimal import Decimal

import pytest

from carts import store as cart_store
from orders import ledger
from orders.models import Order
from products.models import Product
from shop_backend.errors import (
    InsufficientStock,
    InvalidStatus,
    InvalidStatusTransition,
    NotFound,
    PersistenceConflict,
    ValidationError,
)

pytestmark = pytest.mark.django_db


def _place(gateway, payload, require_items=False):
    return ledger.place_order(ledger.PlaceOrderRequest.from_payload(payload, require_items=require_items), gateway)


class TestPlaceOrderRequest:
    def test_defaults_owner_name_from_email(self, order_payload):
        request = ledger.PlaceOrderRequest.from_payload(order_payload())
        assert request.owner_name == 'sita'
        assert request.tax_amount == Decimal('10.00')

    @pytest.mark.parametrize('field', ['full_name', 'phone_number', 'address', 'city'])
    def test_incomplete_address_is_rejected(self, order_payload, delivery_address, field):
        address = {**delivery_address, field: ' '}
        with pytest.raises(ValidationError):
            ledger.PlaceOrderRequest.from_payload(order_payload(delivery_address=address))

    def test_postal_code_is_optional(self, order_payload, delivery_address):
        address = {k: v for k, v in delivery_address.items() if k != 'postal_code'}
        request = ledger.PlaceOrderRequest.from_payload(order_payload(delivery_address=address))
        assert request.delivery_address.postal_code is None

    def test_unknown_payment_method_is_rejected(self, order_payload):
        with pytest.raises(ValidationError):
            ledger.PlaceOrderRequest.from_payload(order_payload(payment_method='BITCOIN'))

    def test_negative_charges_are_rejected(self, order_payload):
        with pytest.raises(ValidationError):
            ledger.PlaceOrderRequest.from_payload(order_payload(tax_amount=-1))

    @pytest.mark.parametrize('field,value', [
        ('tax_amount', '1e30'),
        ('delivery_charge', '1e11'),
        ('delivery_charge', '10000000000'),
        ('tax_amount', 'abc'),
        ('tax_amount', 'NaN'),
    ])
    def test_out_of_range_charges_are_rejected(self, order_payload, field, value):
        with pytest.raises(ValidationError) as excinfo:
            ledger.PlaceOrderRequest.from_payload(order_payload(**{field: value}))
        assert excinfo.value.details['field'] == field

    def test_largest_storable_charge_is_accepted(self, order_payload):
        request = ledger.PlaceOrderRequest.from_payload(order_payload(delivery_charge='9999999999.99'))
        assert request.delivery_charge == Decimal('9999999999.99')

    def test_missing_owner_is_rejected(self, order_payload):
        with pytest.raises(ValidationError):
            ledger.PlaceOrderRequest.from_payload(order_payload(owner_key=''))

    @pytest.mark.parametrize('items', [None, [], [{'product_id': 1, 'quantity': 0}], [{'quantity': 1}]])
    def test_direct_items_are_validated(self, order_payload, items):
        with pytest.raises(ValidationError):
            ledger.PlaceOrderRequest.from_payload(order_payload(items=items), require_items=True)


class TestCashOrder:
    def test_confirms_reserves_and_clears_cart(self, gateway, make_product, fill_cart, order_payload):
        product = make_product(price='100.00', stock=10)
        fill_cart('sita@example.com', (product, 2))

        placed = _place(gateway, order_payload())

        order = Order.objects.get(pk=placed.order.pk)
        assert placed.payment_request is None
        assert order.total_amount == Decimal('200.00')
        assert order.grand_total == Decimal('215.00')
        assert order.order_status == Order.Status.CONFIRMED
        assert order.payment_status == Order.PaymentStatus.PENDING
        assert order.stock_reserved
        assert order.transaction_uuid is None
        product.refresh_from_db()
        assert product.stock == 8
        assert cart_store.read('sita@example.com').items == []

    def test_line_items_are_snapshots(self, gateway, make_product, fill_cart, order_payload):
        product = make_product(name='Lamp', price='100.00', stock=10)
        fill_cart('sita@example.com', (product, 1))

        placed = _place(gateway, order_payload())

        assert placed.order.items == [{'product_id': product.pk, 'name': 'Lamp', 'quantity': 1, 'price': '100.00'}]

    def test_empty_cart_is_rejected(self, gateway, order_payload):
        cart_store.get_or_create('sita@example.com')
        with pytest.raises(ValidationError):
            _place(gateway, order_payload())
        assert not Order.objects.exists()

    def test_missing_cart_is_rejected(self, gateway, order_payload):
        with pytest.raises(ValidationError):
            _place(gateway, order_payload())

    def test_shortfall_on_one_line_changes_nothing(self, gateway, make_product, fill_cart, order_payload):
        a = make_product(name='A', stock=5)
        b = make_product(name='B', stock=5)
        c = make_product(name='C', stock=5)
        fill_cart('sita@example.com', (a, 1), (b, 4), (c, 2))
        Product.objects.filter(pk=b.pk).update(stock=3)

        with pytest.raises(InsufficientStock) as excinfo:
            _place(gateway, order_payload())

        assert excinfo.value.available == 3
        assert not Order.objects.exists()
        assert list(Product.objects.order_by('name').values_list('stock', flat=True)) == [5, 3, 5]
        assert len(cart_store.read('sita@example.com').items) == 3

    def test_grand_total_beyond_storage_is_rejected(self, gateway, make_product, fill_cart, order_payload):
        product = make_product(price='100.00', stock=10)
        fill_cart('sita@example.com', (product, 1))

        with pytest.raises(ValidationError):
            _place(gateway, order_payload(tax_amount='9999999999.99'))

        assert not Order.objects.exists()
        product.refresh_from_db()
        assert product.stock == 10

    def test_sequential_orders_never_oversell(self, gateway, make_product, fill_cart, order_payload):
        product = make_product(stock=3)
        owners = [f'buyer{n}@example.com' for n in range(5)]
        for owner in owners:
            fill_cart(owner, (product, 1))

        succeeded = 0
        for owner in owners:
            try:
                _place(gateway, order_payload(owner_key=owner))
                succeeded += 1
            except InsufficientStock as e:
                assert e.available == 0

        product.refresh_from_db()
        assert succeeded == 3
        assert product.stock == 0
        assert Order.objects.count() == 3

    def test_direct_order_prices_from_product_and_leaves_cart(self, gateway, make_product, fill_cart, order_payload):
        product = make_product(price='40.00', stock=5)
        other = make_product(name='Other', stock=5)
        fill_cart('sita@example.com', (other, 1))

        placed = _place(gateway, order_payload(items=[{'product_id': product.pk, 'quantity': 2}]), require_items=True)

        assert not placed.order.from_cart
        assert placed.order.grand_total == Decimal('95.00')
        assert len(cart_store.read('sita@example.com').items) == 1

    def test_direct_order_unknown_product(self, gateway, order_payload):
        with pytest.raises(NotFound):
            _place(gateway, order_payload(items=[{'product_id': 999, 'quantity': 1}]), require_items=True)


class TestGatewayOrder:
    def test_pending_without_touching_stock_or_cart(self, gateway, make_product, fill_cart, order_payload):
        product = make_product(price='100.00', stock=10)
        fill_cart('sita@example.com', (product, 2))

        placed = _place(gateway, order_payload(payment_method='GATEWAY'))

        order = placed.order
        assert order.order_status == Order.Status.PENDING
        assert order.payment_status == Order.PaymentStatus.PENDING
        assert not order.stock_reserved
        assert order.transaction_uuid.startswith('TXN-')
        product.refresh_from_db()
        assert product.stock == 10
        assert len(cart_store.read('sita@example.com').items) == 1

        request = placed.payment_request
        assert request.transaction_uuid == order.transaction_uuid
        assert request.total_amount == '215'
        assert request.amount == '200'

    def test_out_of_stock_items_are_refused_before_payment(self, gateway, make_product, fill_cart, order_payload):
        product = make_product(stock=5)
        fill_cart('sita@example.com', (product, 4))
        Product.objects.filter(pk=product.pk).update(stock=1)

        with pytest.raises(InsufficientStock):
            _place(gateway, order_payload(payment_method='GATEWAY'))
        assert not Order.objects.exists()


@pytest.fixture
def cash_order(gateway, make_product, fill_cart, order_payload):
    product = make_product(price='100.00', stock=10)
    fill_cart('sita@example.com', (product, 2))
    return _place(gateway, order_payload()).order, product


@pytest.fixture
def gateway_order(gateway, make_product, fill_cart, order_payload):
    product = make_product(price='100.00', stock=10)
    fill_cart('sita@example.com', (product, 2))
    return _place(gateway, order_payload(payment_method='GATEWAY')).order, product


class TestTransitionStatus:
    def test_cash_delivery_marks_paid(self, cash_order):
        order, _ = cash_order

        result = ledger.transition_status(order.pk, 'DELIVERED')

        assert result.applied
        assert result.order.order_status == Order.Status.DELIVERED
        assert result.order.payment_status == Order.PaymentStatus.PAID

    def test_cash_cancellation_releases_stock_and_fails_payment(self, cash_order):
        order, product = cash_order

        result = ledger.transition_status(order.pk, 'CANCELLED')

        assert result.order.payment_status == Order.PaymentStatus.FAILED
        assert not result.order.stock_reserved
        assert result.released == [(product.pk, 2)]
        product.refresh_from_db()
        assert product.stock == 10

    def test_cancelling_pending_gateway_order_touches_no_stock(self, gateway_order):
        order, product = gateway_order

        result = ledger.transition_status(order.pk, 'CANCELLED')

        assert result.order.order_status == Order.Status.CANCELLED
        assert result.order.payment_status == Order.PaymentStatus.FAILED
        assert result.released == []
        product.refresh_from_db()
        assert product.stock == 10

    def test_gateway_order_cannot_be_confirmed_before_payment(self, gateway_order):
        order, _ = gateway_order
        with pytest.raises(InvalidStatusTransition):
            ledger.transition_status(order.pk, 'CONFIRMED')
        order.refresh_from_db()
        assert order.order_status == Order.Status.PENDING

    @pytest.mark.parametrize('target', ['SHIPPED', '', None, 'confirmed'])
    def test_unknown_status_is_rejected(self, cash_order, target):
        order, _ = cash_order
        with pytest.raises(InvalidStatus):
            ledger.transition_status(order.pk, target)

    def test_terminal_states_do_not_move(self, cash_order):
        order, _ = cash_order
        ledger.transition_status(order.pk, 'DELIVERED')

        with pytest.raises(InvalidStatusTransition):
            ledger.transition_status(order.pk, 'CANCELLED')
        with pytest.raises(InvalidStatusTransition):
            ledger.transition_status(order.pk, 'PENDING')

    def test_same_status_is_a_no_op(self, cash_order):
        order, product = cash_order
        result = ledger.transition_status(order.pk, 'CONFIRMED')
        assert not result.applied
        product.refresh_from_db()
        assert product.stock == 8

    @pytest.mark.parametrize('order_id', ['00000000-0000-0000-0000-000000000000', 'not-a-uuid'])
    def test_unknown_order(self, order_id):
        with pytest.raises(NotFound):
            ledger.transition_status(order_id, 'CANCELLED')


def test_grand_total_ignores_later_price_changes(cash_order):
    order, product = cash_order
    Product.objects.filter(pk=product.pk).update(price=Decimal('999.00'), stock=0)

    ledger.transition_status(order.pk, 'DELIVERED')

    order.refresh_from_db()
    assert order.grand_total == Decimal('215.00')
    assert order.items[0]['price'] == '100.00'


def test_list_orders_paginates_and_filters(gateway, make_product, fill_cart, order_payload):
    product = make_product(stock=100)
    for _ in range(3):
        fill_cart('sita@example.com', (product, 1))
        _place(gateway, order_payload())
    fill_cart('sita@example.com', (product, 1))
    _place(gateway, order_payload(payment_method='GATEWAY'))

    page = ledger.list_orders(owner_key='sita@example.com', page=2, limit=3)
    assert page['total'] == 4
    assert page['pages'] == 2
    assert len(page['orders']) == 1

    assert ledger.list_orders(status='PENDING')['total'] == 1
    with pytest.raises(InvalidStatus):
        ledger.list_orders(status='LOST')


def test_owner_stats(cash_order):
    order, _ = cash_order
    ledger.transition_status(order.pk, 'DELIVERED')

    stats = ledger.owner_stats('sita@example.com')

    assert stats['total_orders'] == 1
    assert stats['delivered_orders'] == 1
    assert stats['pending_orders'] == 0
    assert Decimal(stats['total_spent']) == Decimal('215.00')


@pytest.mark.django_db(transaction=True)
def test_concurrent_cash_orders_never_oversell(gateway, order_payload, run_concurrently):
    product = Product.objects.create(name='Contended', price=Decimal('10.00'), stock=3)
    owners = [f'buyer{n}@example.com' for n in range(8)]
    for owner in owners:
        cart_store.upsert_item(owner, product.pk, 1)
    requests = [(ledger.PlaceOrderRequest.from_payload(order_payload(owner_key=owner)), gateway) for owner in owners]

    results = run_concurrently(ledger.place_order, requests)

    placed = [r for r in results if isinstance(r, ledger.PlacedOrder)]
    refused = [r for r in results if not isinstance(r, ledger.PlacedOrder)]
    assert all(isinstance(r, (InsufficientStock, PersistenceConflict)) for r in refused), refused
    product.refresh_from_db()
    assert len(placed) <= 3
    assert product.stock == 3 - len(placed)
    assert Order.objects.count() == len(placed)

    # Writers that lost a lock race retry; only a real shortfall is final.
    for request, result in zip(requests, results):
        if isinstance(result, PersistenceConflict):
            try:
                ledger.place_order(*request)
            except InsufficientStock as e:
                assert e.available == 0

    product.refresh_from_db()
    assert product.stock == 0
    assert Order.objects.count() == 3
