import logging

from django.apps import apps
from django.http import JsonResponse
from django.views.decorators.csrf import csrf_exempt
from django.views.decorators.http import require_GET, require_http_methods

from shop_backend.http import handles_shop_errors, json_body, page_params, request_params

from . import ledger
from .reconciliation import PaymentReconciler

logger = logging.getLogger(__name__)


def _gateway():
    return apps.get_app_config('orders').gateway


def _placed_order_response(placed):
    body = {'message': 'Order created successfully', 'order': placed.order.to_dict()}
    if placed.payment_request is not None:
        payment_request = placed.payment_request
        body['payment_data'] = {**payment_request.form_fields(), 'gateway_url': payment_request.gateway_url}
        body['instructions'] = {
            'message': 'To complete payment, submit a POST request to the gateway_url with the payment form data',
            'method': 'POST',
            'url': payment_request.gateway_url,
            'form_data': payment_request.form_fields(),
        }
    return JsonResponse(body, status=201)


def _page_response(page):
    return JsonResponse({
        'orders': [order.to_dict() for order in page['orders']],
        'total': page['total'],
        'page': page['page'],
        'pages': page['pages'],
    })


@csrf_exempt
@require_http_methods(['POST'])
@handles_shop_errors
def create_order_from_cart(request):
    """
    Checkout from the owner's cart, cash on delivery or gateway.
    """
    data = json_body(request)
    order_request = ledger.PlaceOrderRequest.from_payload(data)
    logger.info(f"Initiating {order_request.payment_method} checkout from cart for {order_request.owner_key}")
    return _placed_order_response(ledger.place_order(order_request, _gateway()))


@csrf_exempt
@require_http_methods(['GET', 'POST'])
@handles_shop_errors
def orders_collection(request):
    """
    GET lists every order (optionally by status); POST creates an order from explicit items.
    """
    if request.method == 'GET':
        page, limit = page_params(request)
        return _page_response(ledger.list_orders(status=request.GET.get('status'), page=page, limit=limit))

    data = json_body(request)
    order_request = ledger.PlaceOrderRequest.from_payload(data, require_items=True)
    logger.info(f"Initiating {order_request.payment_method} checkout of {len(order_request.items)} item(s) for {order_request.owner_key}")
    return _placed_order_response(ledger.place_order(order_request, _gateway()))


@csrf_exempt
@require_http_methods(['GET', 'POST'])
@handles_shop_errors
def gateway_success(request):
    """
    eSewa success redirect. ``data`` is the base64 JSON payload signed by the gateway.
    """
    params = request_params(request)
    outcome = PaymentReconciler(_gateway()).handle_success_callback(params.get('data'))
    return JsonResponse({
        'message': outcome.message,
        'order': outcome.order.to_dict(),
        'gateway_status': outcome.gateway_status,
        'requires_refund': outcome.paid_after_failure,
        'payment_details': {
            'transaction_code': outcome.payload.transaction_code,
            'status': outcome.payload.status,
            'total_amount': outcome.payload.total_amount,
            'transaction_uuid': outcome.payload.transaction_uuid,
        },
    })


@csrf_exempt
@require_http_methods(['GET', 'POST'])
@handles_shop_errors
def gateway_failure(request):
    """
    eSewa failure/cancel redirect.
    """
    params = request_params(request)
    transaction_uuid = params.get('transaction_uuid')
    logger.info(f"eSewa payment failure redirect for transaction {transaction_uuid}")
    order = PaymentReconciler(_gateway()).handle_failure_redirect(transaction_uuid)
    return JsonResponse({
        'message': 'Payment cancelled or failed',
        'transaction_uuid': transaction_uuid,
        'order': order.to_dict() if order else None,
    })


@require_GET
@handles_shop_errors
def payment_status(request, order_id):
    check = PaymentReconciler(_gateway()).check_payment_status(order_id)
    return JsonResponse({
        'message': check.message,
        'payment_status': check.order.payment_status,
        'order_status': check.order.order_status,
        'gateway_status': check.gateway_status,
        'stock_shortfall': check.stock_shortfall,
    })


@csrf_exempt
@require_http_methods(['PUT'])
@handles_shop_errors
def update_order_status(request, order_id):
    data = json_body(request)
    result = ledger.transition_status(order_id, data.get('order_status'))
    return JsonResponse({'message': 'Order status updated successfully', 'order': result.order.to_dict()})


@require_GET
@handles_shop_errors
def orders_for_owner(request, owner_key):
    page, limit = page_params(request)
    return _page_response(ledger.list_orders(owner_key=owner_key, page=page, limit=limit))


@require_GET
@handles_shop_errors
def order_stats(request, owner_key):
    return JsonResponse(ledger.owner_stats(owner_key))


@require_GET
@handles_shop_errors
def order_detail(request, order_id):
    return JsonResponse({'order': ledger.get_order(order_id).to_dict()})
