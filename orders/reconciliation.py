"""
Entry points that drive gateway orders forward: the success callback, the
failure/cancel redirect and the client-initiated status check.
"""
import logging
from dataclasses import dataclass
from typing import Optional

from shop_backend.errors import (
    AmountMismatch,
    GatewayUnreachable,
    InsufficientStock,
    InvalidSignature,
    NotFound,
    ValidationError,
)

from . import ledger
from .models import Order
from .services import CallbackPayload, GatewayStatus

logger = logging.getLogger(__name__)

CONFIRM = 'CONFIRM'
FAIL = 'FAIL'
HOLD = 'HOLD'

# Gateway status -> local action. Anything else (PENDING, AMBIGUOUS, ...) holds.
POLL_RESOLUTION = {
    GatewayStatus.COMPLETE: CONFIRM,
    GatewayStatus.CANCELED: FAIL,
    GatewayStatus.NOT_FOUND: FAIL,
}


def resolve_callback(callback_status, upstream_status):
    """
    Decides what a verified callback does to its order. ``upstream_status`` is
    None when the status poll could not reach the gateway, in which case the
    signed callback status is trusted.
    """
    if callback_status != GatewayStatus.COMPLETE:
        return FAIL
    if upstream_status is None:
        return CONFIRM
    return POLL_RESOLUTION.get(upstream_status, HOLD)


@dataclass
class CallbackOutcome:
    order: Order
    resolution: str
    already_processed: bool = False
    gateway_status: Optional[str] = None
    payload: Optional[CallbackPayload] = None
    # Verified COMPLETE for an order that had already failed; needs a refund.
    paid_after_failure: bool = False

    @property
    def message(self):
        if self.paid_after_failure:
            return 'Payment received for cancelled order'
        if self.already_processed:
            return 'Payment already processed'
        if self.order.payment_status == Order.PaymentStatus.PAID:
            return 'Payment successful'
        if self.order.payment_status == Order.PaymentStatus.FAILED:
            return 'Payment failed'
        return 'Payment pending confirmation'


@dataclass
class StatusCheck:
    order: Order
    checked: bool
    gateway_status: Optional[str] = None
    stock_shortfall: bool = False

    @property
    def message(self):
        if self.stock_shortfall:
            return 'Payment received but stock is short; order held for review'
        if self.checked:
            return 'Payment status checked'
        if self.gateway_status is None and self.order.payment_method == Order.PaymentMethod.GATEWAY \
                and self.order.payment_status == Order.PaymentStatus.PENDING:
            return 'Unable to check payment status'
        return 'Payment status retrieved'


class PaymentReconciler:
    def __init__(self, gateway):
        self.gateway = gateway

    def _poll(self, product_code, total_amount, transaction_uuid):
        try:
            return self.gateway.poll_status(product_code, total_amount, transaction_uuid)
        except GatewayUnreachable as e:
            logger.warning(f"Status poll for transaction {transaction_uuid} failed: {e.message}")
            return None

    def _apply(self, order, resolution, payload=None, ref_id=None):
        try:
            if resolution == CONFIRM:
                return ledger.confirm_gateway_payment(
                    order.pk,
                    transaction_code=payload.transaction_code if payload else None,
                    ref_id=ref_id,
                    signature=payload.signature if payload else None,
                )
            if resolution == FAIL:
                return ledger.fail_gateway_payment(order.pk, reason='gateway reported the payment as not completed')
        except InsufficientStock as e:
            logger.critical(
                f"Order {order.id} (transaction {order.transaction_uuid}) was paid but stock is short: "
                f"{e.details}. Order left PENDING for manual refund or restock."
            )
            raise
        return ledger.TransitionResult(order=order, applied=False)

    def handle_success_callback(self, encoded_data) -> CallbackOutcome:
        payload = self.gateway.decode_callback_payload(encoded_data)
        logger.info(f"Received eSewa callback for transaction {payload.transaction_uuid} with status {payload.status}")

        if not self.gateway.verify_callback(payload):
            logger.warning(f"Rejected callback with invalid signature for transaction {payload.transaction_uuid}")
            raise InvalidSignature("Invalid payment signature", transaction_uuid=payload.transaction_uuid)
        if payload.product_code != self.gateway.config.merchant_code:
            raise ValidationError("Unexpected product code", product_code=payload.product_code)

        order = ledger.get_order_by_transaction(payload.transaction_uuid)
        if order.payment_status != Order.PaymentStatus.PENDING:
            if self._paid_after_failure(order, payload):
                return CallbackOutcome(order=order, resolution=HOLD, already_processed=True,
                                       payload=payload, paid_after_failure=True)
            logger.info(f"Duplicate callback for order {order.id} (transaction {payload.transaction_uuid}); already {order.payment_status}")
            return CallbackOutcome(order=order, resolution=HOLD, already_processed=True, payload=payload)

        if payload.total_as_decimal() != order.grand_total:
            logger.error(
                f"Callback amount {payload.total_amount} does not match grand total {order.grand_total} "
                f"for order {order.id} (transaction {payload.transaction_uuid})"
            )
            raise AmountMismatch(
                "Paid amount does not match the order total",
                order_id=str(order.id),
                expected=str(order.grand_total),
                received=payload.total_amount,
            )

        upstream = None
        if payload.status == GatewayStatus.COMPLETE:
            upstream = self._poll(payload.product_code, payload.total_amount, payload.transaction_uuid)
        upstream_status = upstream.status if upstream else None
        resolution = resolve_callback(payload.status, upstream_status)
        logger.info(f"Order {order.id}: callback {payload.status}, gateway {upstream_status or 'unreachable'} -> {resolution}")

        result = self._apply(order, resolution, payload=payload, ref_id=upstream.ref_id if upstream else None)
        # The order may have failed between the lookup and the confirmation claim.
        paid_after_failure = resolution == CONFIRM and not result.applied \
            and self._paid_after_failure(result.order, payload)
        return CallbackOutcome(
            order=result.order,
            resolution=resolution,
            already_processed=resolution != HOLD and not result.applied,
            gateway_status=upstream_status,
            payload=payload,
            paid_after_failure=paid_after_failure,
        )

    @staticmethod
    def _paid_after_failure(order, payload):
        if payload.status != GatewayStatus.COMPLETE or order.payment_status != Order.PaymentStatus.FAILED:
            return False
        logger.critical(
            f"Verified COMPLETE callback for order {order.id} (transaction {payload.transaction_uuid}, "
            f"code {payload.transaction_code}, amount {payload.total_amount}) but the order is already "
            f"{order.order_status}/{order.payment_status}. Payment needs a manual refund."
        )
        return True

    def handle_failure_redirect(self, transaction_uuid) -> Optional[Order]:
        if not transaction_uuid:
            logger.info("eSewa failure redirect without transaction uuid")
            return None
        try:
            order = ledger.get_order_by_transaction(transaction_uuid)
        except NotFound:
            # Acknowledged anyway; the gateway redirect must not error out.
            logger.warning(f"eSewa failure redirect for unknown transaction {transaction_uuid}")
            return None
        return ledger.fail_gateway_payment(order.pk, reason='customer cancelled or payment failed').order

    def check_payment_status(self, order_id) -> StatusCheck:
        order = ledger.get_order(order_id)
        if (order.payment_method != Order.PaymentMethod.GATEWAY or not order.transaction_uuid
                or order.payment_status != Order.PaymentStatus.PENDING):
            return StatusCheck(order=order, checked=False)

        upstream = self._poll(self.gateway.config.merchant_code, order.grand_total, order.transaction_uuid)
        if upstream is None:
            return StatusCheck(order=order, checked=False)

        resolution = POLL_RESOLUTION.get(upstream.status, HOLD)
        try:
            result = self._apply(order, resolution, ref_id=upstream.ref_id)
        except InsufficientStock:
            # Already logged CRITICAL by _apply; the order stays PENDING.
            return StatusCheck(order=ledger.get_order(order.pk), checked=True,
                               gateway_status=upstream.status, stock_shortfall=True)
        return StatusCheck(order=result.order, checked=True, gateway_status=upstream.status)
