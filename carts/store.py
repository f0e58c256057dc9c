"""
Cart store. One cart document per owner key; line items live in Cart.items.
"""
import logging
from decimal import Decimal

from django.db import transaction

from products import inventory
from shop_backend.errors import InsufficientStock, NotFound, ValidationError

from .models import Cart

logger = logging.getLogger(__name__)


def cart_total(items) -> Decimal:
    return sum((Decimal(item['price']) * item['quantity'] for item in items), Decimal('0.00'))


def _require_owner(owner_key):
    if not owner_key or not str(owner_key).strip():
        raise ValidationError("Owner key is required")
    return str(owner_key).strip()


def _save_items(cart, items):
    cart.items = items
    cart.total_amount = cart_total(items)
    cart.save(update_fields=['items', 'total_amount', 'updated_at'])
    return cart


def _find_line(cart, product_id):
    for index, item in enumerate(cart.items):
        if str(item['product_id']) == str(product_id):
            return index
    return None


def read(owner_key, for_update=False):
    """
    Returns the owner's cart or None. ``for_update`` locks the row and must be
    used inside a transaction.
    """
    queryset = Cart.objects.select_for_update() if for_update else Cart.objects
    return queryset.filter(owner_key=_require_owner(owner_key)).first()


def get_or_create(owner_key):
    cart, created = Cart.objects.get_or_create(owner_key=_require_owner(owner_key))
    if created:
        logger.info(f"Created empty cart for {cart.owner_key}")
    return cart


def clear(owner_key):
    """
    Empties the cart. A missing or already empty cart is left alone.
    """
    cart = read(owner_key)
    if cart is None or not cart.items:
        return cart
    logger.info(f"Clearing {len(cart.items)} item(s) from cart of {cart.owner_key}")
    return _save_items(cart, [])


@transaction.atomic
def upsert_item(owner_key, product_id, quantity=1):
    if not isinstance(quantity, int) or isinstance(quantity, bool) or quantity < 1:
        raise ValidationError("Quantity must be at least 1")

    product = inventory.get_product(product_id)
    get_or_create(owner_key)
    cart = read(owner_key, for_update=True)

    items = list(cart.items)
    index = _find_line(cart, product.pk)
    new_quantity = quantity if index is None else items[index]['quantity'] + quantity
    if product.stock < new_quantity:
        raise InsufficientStock(product.pk, product.name, new_quantity, product.stock)

    if index is None:
        items.append({
            'product_id': product.pk,
            'quantity': new_quantity,
            'price': str(product.price),
            'name': product.name,
            'image': product.main_image,
        })
    else:
        items[index] = {**items[index], 'quantity': new_quantity}

    logger.info(f"Cart {cart.owner_key}: product {product.pk} quantity now {new_quantity}")
    return _save_items(cart, items)


@transaction.atomic
def set_quantity(owner_key, product_id, quantity):
    """
    Sets a line's quantity; zero removes the line.
    """
    if not isinstance(quantity, int) or isinstance(quantity, bool) or quantity < 0:
        raise ValidationError("Quantity cannot be negative")

    cart = read(owner_key, for_update=True)
    if cart is None:
        raise NotFound("Cart not found", owner_key=owner_key)
    index = _find_line(cart, product_id)
    if index is None:
        raise NotFound("Item not found in cart", product_id=str(product_id))

    items = list(cart.items)
    if quantity == 0:
        items.pop(index)
    else:
        product = inventory.get_product(product_id)
        if product.stock < quantity:
            raise InsufficientStock(product.pk, product.name, quantity, product.stock)
        items[index] = {**items[index], 'quantity': quantity}
    return _save_items(cart, items)


@transaction.atomic
def remove_item(owner_key, product_id):
    cart = read(owner_key, for_update=True)
    if cart is None:
        raise NotFound("Cart not found", owner_key=owner_key)
    index = _find_line(cart, product_id)
    if index is None:
        raise NotFound("Item not found in cart", product_id=str(product_id))
    items = list(cart.items)
    items.pop(index)
    return _save_items(cart, items)


def item_count(owner_key):
    cart = read(owner_key)
    return sum(item['quantity'] for item in cart.items) if cart else 0
