"""
Inventory ledger: the only code allowed to change Product.stock.

A reservation is a single conditional UPDATE (``stock >= quantity`` in the
WHERE clause), so two concurrent orders for the same product can never both
pass a stale availability check. Callers run these inside their own
transaction so a later failure rolls the decrement back.
"""
import logging
from dataclasses import dataclass

from django.db.models import F

from shop_backend.errors import InsufficientStock, NotFound, ValidationError

from .models import Product

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Reservation:
    ok: bool
    product_id: int
    requested: int
    available_stock: int


def _validate_quantity(quantity):
    if not isinstance(quantity, int) or isinstance(quantity, bool) or quantity < 1:
        raise ValidationError(f"Quantity must be a positive integer, got {quantity!r}")


def _pk(product_id):
    try:
        return int(product_id)
    except (TypeError, ValueError):
        raise NotFound(f"Product not found: {product_id}", product_id=str(product_id))


def get_product(product_id):
    try:
        return Product.objects.get(pk=_pk(product_id))
    except Product.DoesNotExist:
        raise NotFound(f"Product not found: {product_id}", product_id=str(product_id))


def try_reserve(product_id, quantity) -> Reservation:
    """
    Decrements stock if at least ``quantity`` units are available.

    Returns a failed Reservation carrying the available count instead of
    raising, so the caller can word its own error.
    """
    _validate_quantity(quantity)
    product_id = _pk(product_id)
    updated = Product.objects.filter(pk=product_id, stock__gte=quantity).update(stock=F('stock') - quantity)
    if updated:
        logger.info(f"Reserved {quantity} unit(s) of product {product_id}")
        # Re-read inside the same transaction; the row is now write-locked by us.
        remaining = Product.objects.filter(pk=product_id).values_list('stock', flat=True).first()
        return Reservation(ok=True, product_id=product_id, requested=quantity, available_stock=remaining)

    product = get_product(product_id)
    logger.warning(f"Insufficient stock for product {product_id}. Required: {quantity}, Available: {product.stock}")
    return Reservation(ok=False, product_id=product_id, requested=quantity, available_stock=product.stock)


def reserve_lines(lines):
    """
    Reserves every ``(product_id, quantity)`` pair or raises InsufficientStock.

    Must be called inside a transaction: the decrements that succeeded before
    the failing line are rolled back with it.
    """
    for product_id, quantity in lines:
        reservation = try_reserve(product_id, quantity)
        if not reservation.ok:
            product = get_product(product_id)
            raise InsufficientStock(product.pk, product.name, quantity, reservation.available_stock)


def release(product_id, quantity):
    _validate_quantity(quantity)
    product_id = _pk(product_id)
    updated = Product.objects.filter(pk=product_id).update(stock=F('stock') + quantity)
    if not updated:
        raise NotFound(f"Product not found: {product_id}", product_id=str(product_id))
    logger.info(f"Released {quantity} unit(s) of product {product_id}")


def release_lines(lines):
    for product_id, quantity in lines:
        release(product_id, quantity)


def check_available(product_id, quantity):
    """
    Non-binding availability check used before a customer is sent to pay.
    """
    _validate_quantity(quantity)
    product = get_product(product_id)
    if product.stock < quantity:
        raise InsufficientStock(product.pk, product.name, quantity, product.stock)
    return product
