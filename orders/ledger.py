"""
Order ledger: the only code that writes Order status fields.

Each public mutation is one unit of work spanning the stock reservation,
the order write and the cart clear. Status changes that can race (a replayed
gateway callback against a client status poll) are claimed with a
conditional UPDATE on the current status, so only one caller applies them.
"""
import logging
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from math import ceil
from typing import Optional

from django.conf import settings
from django.core.exceptions import ValidationError as DjangoValidationError
from django.db.models import Count, Q, Sum
from django.utils import timezone

from carts import store as cart_store
from products import inventory
from shop_backend.db import unit_of_work
from shop_backend.errors import (
    InvalidStatus,
    InvalidStatusTransition,
    NotFound,
    ValidationError,
)

from .models import Order
from .services import PaymentRequest

logger = logging.getLogger(__name__)

CENT = Decimal('0.01')
# Money columns are max_digits=12, decimal_places=2.
MAX_AMOUNT = Decimal('1e10')

ALLOWED_TRANSITIONS = {
    Order.Status.PENDING: {Order.Status.CONFIRMED, Order.Status.CANCELLED},
    Order.Status.CONFIRMED: {Order.Status.DELIVERED, Order.Status.CANCELLED},
    Order.Status.DELIVERED: set(),
    Order.Status.CANCELLED: set(),
}


def parse_money(value, field_name) -> Decimal:
    try:
        amount = Decimal(str(value))
        if not amount.is_finite() or amount < 0:
            raise ValidationError(f"{field_name} must be a non-negative number", field=field_name)
        if amount >= MAX_AMOUNT:
            raise ValidationError(f"{field_name} is too large", field=field_name, maximum=str(MAX_AMOUNT - CENT))
        return amount.quantize(CENT)
    except (InvalidOperation, ValueError):
        raise ValidationError(f"{field_name} must be a number", field=field_name)


@dataclass(frozen=True)
class DeliveryAddress:
    full_name: str
    phone_number: str
    address: str
    city: str
    postal_code: Optional[str] = None

    @classmethod
    def from_payload(cls, data):
        if not isinstance(data, dict):
            raise ValidationError("Complete delivery address is required")
        values = {name: str(data.get(name) or '').strip() for name in ('full_name', 'phone_number', 'address', 'city')}
        missing = [name for name, value in values.items() if not value]
        if missing:
            raise ValidationError("Complete delivery address is required", missing=missing)
        postal_code = str(data.get('postal_code') or '').strip() or None
        return cls(postal_code=postal_code, **values)

    def to_dict(self):
        return {
            'full_name': self.full_name,
            'phone_number': self.phone_number,
            'address': self.address,
            'city': self.city,
            'postal_code': self.postal_code,
        }


@dataclass(frozen=True)
class PlaceOrderRequest:
    owner_key: str
    owner_name: str
    delivery_address: DeliveryAddress
    payment_method: str
    tax_amount: Decimal = Decimal('0.00')
    delivery_charge: Decimal = Decimal('0.00')
    notes: str = ''
    # Explicit (product_id, quantity) lines; empty means "order the cart".
    items: tuple = ()

    @classmethod
    def from_payload(cls, data, require_items=False):
        owner_key = str(data.get('owner_key') or '').strip()
        if not owner_key:
            raise ValidationError("Owner key is required")

        payment_method = data.get('payment_method')
        if payment_method not in Order.PaymentMethod.values:
            raise ValidationError("Invalid payment method", allowed=Order.PaymentMethod.values)

        items = ()
        if require_items:
            raw_items = data.get('items')
            if not isinstance(raw_items, list) or not raw_items:
                raise ValidationError("Items are required")
            lines = []
            for item in raw_items:
                quantity = item.get('quantity') if isinstance(item, dict) else None
                if (not isinstance(item, dict) or item.get('product_id') in (None, '')
                        or not isinstance(quantity, int) or isinstance(quantity, bool) or quantity < 1):
                    raise ValidationError("Invalid item data", item=item)
                lines.append((item['product_id'], quantity))
            items = tuple(lines)

        return cls(
            owner_key=owner_key,
            owner_name=str(data.get('owner_name') or '').strip() or owner_key.split('@')[0],
            delivery_address=DeliveryAddress.from_payload(data.get('delivery_address')),
            payment_method=payment_method,
            tax_amount=parse_money(data.get('tax_amount', settings.ORDER_DEFAULT_TAX_AMOUNT), 'tax_amount'),
            delivery_charge=parse_money(data.get('delivery_charge', settings.ORDER_DEFAULT_DELIVERY_CHARGE), 'delivery_charge'),
            notes=str(data.get('notes') or '').strip(),
            items=items,
        )


@dataclass
class PlacedOrder:
    order: Order
    payment_request: Optional[PaymentRequest] = None


@dataclass
class TransitionResult:
    order: Order
    applied: bool
    released: list = field(default_factory=list)


def compute_totals(items, tax_amount, delivery_charge):
    """
    Returns (items subtotal, grand total) for snapshotted line items.
    """
    subtotal = sum((Decimal(item['price']) * item['quantity'] for item in items), Decimal('0.00')).quantize(CENT)
    return subtotal, (subtotal + tax_amount + delivery_charge).quantize(CENT)


def _lines_from_cart(owner_key):
    cart = cart_store.read(owner_key, for_update=True)
    if cart is None or not cart.items:
        raise ValidationError("Cart is empty")
    return [
        {
            'product_id': item['product_id'],
            'name': item['name'],
            'quantity': item['quantity'],
            'price': str(item['price']),
        }
        for item in cart.items
    ]


def _lines_from_request(lines):
    snapshot = []
    for product_id, quantity in lines:
        product = inventory.get_product(product_id)
        snapshot.append({
            'product_id': product.pk,
            'name': product.name,
            'quantity': quantity,
            'price': str(product.price),
        })
    return snapshot


@unit_of_work
def place_order(request: PlaceOrderRequest, gateway) -> PlacedOrder:
    """
    Creates an order from the owner's cart, or from explicit lines when the
    request carries them.

    Cash orders reserve stock, confirm and clear the cart at once. Gateway
    orders are recorded PENDING with a fresh transaction uuid and a signed
    payment request; stock and cart stay untouched until payment confirms.
    """
    from_cart = not request.items
    items = _lines_from_cart(request.owner_key) if from_cart else _lines_from_request(request.items)
    subtotal, grand_total = compute_totals(items, request.tax_amount, request.delivery_charge)
    if grand_total >= MAX_AMOUNT:
        raise ValidationError("Order total is too large", grand_total=str(grand_total))

    order = Order(
        owner_key=request.owner_key,
        owner_name=request.owner_name,
        items=items,
        delivery_address=request.delivery_address.to_dict(),
        from_cart=from_cart,
        payment_method=request.payment_method,
        total_amount=subtotal,
        tax_amount=request.tax_amount,
        delivery_charge=request.delivery_charge,
        grand_total=grand_total,
        notes=request.notes,
    )

    if request.payment_method == Order.PaymentMethod.CASH_ON_DELIVERY:
        inventory.reserve_lines(order.line_quantities())
        order.stock_reserved = True
        order.order_status = Order.Status.CONFIRMED
        order.save()
        if from_cart:
            cart_store.clear(request.owner_key)
        logger.info(f"Cash order {order.id} confirmed for {order.owner_key}, grand total {order.grand_total}")
        return PlacedOrder(order=order)

    for product_id, quantity in order.line_quantities():
        inventory.check_available(product_id, quantity)
    order.transaction_uuid = gateway.generate_transaction_uuid()
    order.save()
    payment_request = gateway.build_payment_request(
        order.total_amount, order.tax_amount, order.delivery_charge, order.transaction_uuid
    )
    logger.info(f"Gateway order {order.id} created for {order.owner_key} with transaction {order.transaction_uuid}")
    return PlacedOrder(order=order, payment_request=payment_request)


def get_order(order_id) -> Order:
    try:
        return Order.objects.get(pk=order_id)
    except (Order.DoesNotExist, DjangoValidationError, ValueError):
        raise NotFound("Order not found", order_id=str(order_id))


def get_order_by_transaction(transaction_uuid) -> Order:
    order = Order.objects.filter(transaction_uuid=transaction_uuid).first() if transaction_uuid else None
    if order is None:
        raise NotFound("Order not found", transaction_uuid=transaction_uuid)
    return order


@unit_of_work
def confirm_gateway_payment(order_id, transaction_code=None, ref_id=None, signature=None) -> TransitionResult:
    """
    PENDING/PENDING -> PAID/CONFIRMED, reserving stock and clearing the cart.

    Re-applying to an order that already left PENDING changes nothing.
    """
    updates = {
        'payment_status': Order.PaymentStatus.PAID,
        'order_status': Order.Status.CONFIRMED,
        'stock_reserved': True,
        'updated_at': timezone.now(),
    }
    if transaction_code:
        updates['transaction_code'] = transaction_code
    if ref_id:
        updates['ref_id'] = ref_id
    if signature:
        updates['gateway_signature'] = signature

    claimed = Order.objects.filter(
        pk=order_id,
        payment_method=Order.PaymentMethod.GATEWAY,
        payment_status=Order.PaymentStatus.PENDING,
        order_status=Order.Status.PENDING,
    ).update(**updates)
    order = get_order(order_id)
    if not claimed:
        logger.info(f"Order {order_id} already processed ({order.order_status}/{order.payment_status}); skipping confirmation")
        return TransitionResult(order=order, applied=False)

    inventory.reserve_lines(order.line_quantities())
    if order.from_cart:
        cart_store.clear(order.owner_key)
    logger.info(f"Order {order.id} paid and confirmed (transaction {order.transaction_uuid}, ref {order.ref_id})")
    return TransitionResult(order=order, applied=True)


@unit_of_work
def fail_gateway_payment(order_id, reason='') -> TransitionResult:
    """
    PENDING -> FAILED/CANCELLED for a gateway order. Terminal orders are left as they are.
    """
    claimed = Order.objects.filter(
        pk=order_id,
        payment_method=Order.PaymentMethod.GATEWAY,
        payment_status=Order.PaymentStatus.PENDING,
    ).update(
        payment_status=Order.PaymentStatus.FAILED,
        order_status=Order.Status.CANCELLED,
        updated_at=timezone.now(),
    )
    order = get_order(order_id)
    if claimed:
        logger.info(f"Order {order.id} payment failed (transaction {order.transaction_uuid}): {reason}")
    else:
        logger.info(f"Order {order.id} already {order.order_status}/{order.payment_status}; failure ignored")
    return TransitionResult(order=order, applied=bool(claimed))


@unit_of_work
def transition_status(order_id, target) -> TransitionResult:
    """
    Operator-driven order status change.
    """
    if target not in Order.Status.values:
        raise InvalidStatus("Invalid order status", allowed=Order.Status.values)

    try:
        order = Order.objects.select_for_update().get(pk=order_id)
    except (Order.DoesNotExist, DjangoValidationError, ValueError):
        raise NotFound("Order not found", order_id=str(order_id))

    current = order.order_status
    if current == target:
        return TransitionResult(order=order, applied=False)
    if target not in ALLOWED_TRANSITIONS[current]:
        raise InvalidStatusTransition(
            f"Cannot move order from {current} to {target}",
            order_id=str(order.id),
            current=current,
            target=target,
        )

    released = []
    if target == Order.Status.CONFIRMED:
        if order.payment_method == Order.PaymentMethod.GATEWAY and order.payment_status != Order.PaymentStatus.PAID:
            raise InvalidStatusTransition(
                "Gateway order cannot be confirmed before payment",
                order_id=str(order.id),
                payment_status=order.payment_status,
            )
        if not order.stock_reserved:
            inventory.reserve_lines(order.line_quantities())
            order.stock_reserved = True
    elif target == Order.Status.DELIVERED:
        if order.payment_method == Order.PaymentMethod.CASH_ON_DELIVERY:
            order.payment_status = Order.PaymentStatus.PAID
    elif target == Order.Status.CANCELLED:
        if order.payment_status == Order.PaymentStatus.PENDING:
            order.payment_status = Order.PaymentStatus.FAILED
        elif order.payment_status == Order.PaymentStatus.PAID:
            logger.error(f"Paid order {order.id} cancelled (transaction {order.transaction_uuid}); refund must be issued manually")
        if order.stock_reserved:
            released = order.line_quantities()
            inventory.release_lines(released)
            order.stock_reserved = False

    order.order_status = target
    order.save(update_fields=['order_status', 'payment_status', 'stock_reserved', 'updated_at'])
    logger.info(f"Order {order.id} moved from {current} to {target} (payment {order.payment_status})")
    return TransitionResult(order=order, applied=True, released=released)


def list_orders(owner_key=None, status=None, page=1, limit=10):
    queryset = Order.objects.all()
    if owner_key is not None:
        queryset = queryset.filter(owner_key=owner_key)
    if status:
        if status not in Order.Status.values:
            raise InvalidStatus("Invalid order status", allowed=Order.Status.values)
        queryset = queryset.filter(order_status=status)

    total = queryset.count()
    offset = (page - 1) * limit
    return {
        'orders': list(queryset.order_by('-created_at')[offset:offset + limit]),
        'total': total,
        'page': page,
        'pages': ceil(total / limit),
    }


def owner_stats(owner_key):
    stats = Order.objects.filter(owner_key=owner_key).aggregate(
        total_orders=Count('id'),
        pending_orders=Count('id', filter=Q(order_status=Order.Status.PENDING)),
        confirmed_orders=Count('id', filter=Q(order_status=Order.Status.CONFIRMED)),
        delivered_orders=Count('id', filter=Q(order_status=Order.Status.DELIVERED)),
        total_spent=Sum('grand_total', filter=Q(payment_status=Order.PaymentStatus.PAID)),
    )
    stats['total_spent'] = str(stats['total_spent'] or Decimal('0.00'))
    return stats
