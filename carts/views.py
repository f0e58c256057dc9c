import logging

from django.http import JsonResponse
from django.views.decorators.csrf import csrf_exempt
from django.views.decorators.http import require_GET, require_http_methods, require_POST

from shop_backend.errors import ValidationError
from shop_backend.http import handles_shop_errors, json_body

from . import store

logger = logging.getLogger(__name__)


def _required(data, *fields):
    missing = [field for field in fields if data.get(field) in (None, '')]
    if missing:
        raise ValidationError(f"Missing required fields. Required: {list(fields)}", missing=missing)


@require_GET
@handles_shop_errors
def get_cart(request, owner_key):
    cart = store.get_or_create(owner_key)
    return JsonResponse({'cart': cart.to_dict()})


@require_GET
@handles_shop_errors
def cart_count(request, owner_key):
    return JsonResponse({'count': store.item_count(owner_key)})


@csrf_exempt
@require_POST
@handles_shop_errors
def add_to_cart(request):
    data = json_body(request)
    _required(data, 'owner_key', 'product_id')
    cart = store.upsert_item(data['owner_key'], data['product_id'], data.get('quantity', 1))
    return JsonResponse({'message': 'Item added to cart successfully', 'cart': cart.to_dict()})


@csrf_exempt
@require_http_methods(['PUT'])
@handles_shop_errors
def update_cart_item(request):
    data = json_body(request)
    _required(data, 'owner_key', 'product_id', 'quantity')
    cart = store.set_quantity(data['owner_key'], data['product_id'], data['quantity'])
    return JsonResponse({'message': 'Cart updated successfully', 'cart': cart.to_dict()})


@csrf_exempt
@require_http_methods(['DELETE'])
@handles_shop_errors
def remove_from_cart(request):
    data = json_body(request)
    _required(data, 'owner_key', 'product_id')
    cart = store.remove_item(data['owner_key'], data['product_id'])
    return JsonResponse({'message': 'Item removed from cart successfully', 'cart': cart.to_dict()})


@csrf_exempt
@require_http_methods(['DELETE'])
@handles_shop_errors
def clear_cart(request, owner_key):
    cart = store.clear(owner_key)
    if cart is None:
        return JsonResponse({'message': 'Cart is already empty'})
    return JsonResponse({'message': 'Cart cleared successfully', 'cart': cart.to_dict()})
