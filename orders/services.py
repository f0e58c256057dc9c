import base64
import binascii
import hashlib
import hmac
import json
import logging
import time
import uuid
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Optional

import requests

from shop_backend.errors import DecodeError, GatewayUnreachable

logger = logging.getLogger(__name__)

# Field order the outbound form declares in signed_field_names.
REQUEST_SIGNED_FIELDS = ('total_amount', 'transaction_uuid', 'product_code')

# A callback must sign at least these, otherwise a signature lifted from a
# customer's own payment form could be replayed as a COMPLETE callback.
CALLBACK_REQUIRED_SIGNED_FIELDS = frozenset(
    ['transaction_code', 'status', 'total_amount', 'transaction_uuid', 'product_code']
)

CALLBACK_FIELDS = (
    'transaction_code',
    'status',
    'total_amount',
    'transaction_uuid',
    'product_code',
    'signed_field_names',
    'signature',
)


class GatewayStatus:
    COMPLETE = 'COMPLETE'
    PENDING = 'PENDING'
    CANCELED = 'CANCELED'
    NOT_FOUND = 'NOT_FOUND'


def format_amount(value) -> str:
    """
    Renders an amount the way the gateway echoes it: no trailing zeros and no
    decimal point for whole numbers (215.00 -> "215", 215.50 -> "215.5").
    """
    amount = Decimal(str(value))
    if amount == amount.to_integral_value():
        return str(amount.quantize(Decimal('1')))
    return format(amount.normalize(), 'f')


@dataclass(frozen=True)
class PaymentRequest:
    amount: str
    tax_amount: str
    total_amount: str
    transaction_uuid: str
    product_code: str
    product_service_charge: str
    product_delivery_charge: str
    success_url: str
    failure_url: str
    signed_field_names: str
    signature: str
    gateway_url: str

    def form_fields(self):
        return {
            'amount': self.amount,
            'tax_amount': self.tax_amount,
            'total_amount': self.total_amount,
            'transaction_uuid': self.transaction_uuid,
            'product_code': self.product_code,
            'product_service_charge': self.product_service_charge,
            'product_delivery_charge': self.product_delivery_charge,
            'success_url': self.success_url,
            'failure_url': self.failure_url,
            'signed_field_names': self.signed_field_names,
            'signature': self.signature,
        }


@dataclass(frozen=True)
class CallbackPayload:
    transaction_code: str
    status: str
    total_amount: str
    transaction_uuid: str
    product_code: str
    signed_field_names: str
    signature: str

    def total_as_decimal(self) -> Optional[Decimal]:
        try:
            return Decimal(self.total_amount)
        except (InvalidOperation, ValueError):
            return None


@dataclass(frozen=True)
class StatusResult:
    status: str
    ref_id: Optional[str] = None
    raw: dict = field(default_factory=dict)


class EsewaService:
    """
    Stateless adapter for the eSewa ePay v2 gateway.

    Building and verifying signatures is local; only poll_status talks to the
    network, bounded by ``config.status_timeout``.
    """
    def __init__(self, config):
        self.config = config

    @staticmethod
    def generate_transaction_uuid():
        return f"TXN-{int(time.time() * 1000)}-{uuid.uuid4().hex[:12]}"

    def sign_fields(self, values, field_names):
        """
        HMAC-SHA256 over ``name=value`` pairs joined by commas, in the given
        order, base64 encoded.
        """
        message = ','.join(f"{name}={values[name]}" for name in field_names)
        digest = hmac.new(
            self.config.secret_key.strip().encode('utf-8'),
            message.encode('utf-8'),
            hashlib.sha256,
        ).digest()
        return base64.b64encode(digest).decode('ascii')

    def build_payment_request(self, amount, tax_amount, delivery_charge, transaction_uuid) -> PaymentRequest:
        total_amount = Decimal(str(amount)) + Decimal(str(tax_amount)) + Decimal(str(delivery_charge))
        values = {
            'total_amount': format_amount(total_amount),
            'transaction_uuid': transaction_uuid,
            'product_code': self.config.merchant_code,
        }
        signature = self.sign_fields(values, REQUEST_SIGNED_FIELDS)

        logger.info(f"Prepared eSewa payment request for transaction {transaction_uuid}, total {values['total_amount']}")
        return PaymentRequest(
            amount=format_amount(amount),
            tax_amount=format_amount(tax_amount),
            total_amount=values['total_amount'],
            transaction_uuid=transaction_uuid,
            product_code=self.config.merchant_code,
            product_service_charge='0',
            product_delivery_charge=format_amount(delivery_charge),
            success_url=self.config.success_url,
            failure_url=self.config.failure_url,
            signed_field_names=','.join(REQUEST_SIGNED_FIELDS),
            signature=signature,
            gateway_url=self.config.form_url,
        )

    def verify_callback_signature(self, transaction_code, status, total_amount, transaction_uuid,
                                  product_code, signed_field_names, received_signature) -> bool:
        """
        Rebuilds the signed message in the order the callback declares in
        ``signed_field_names`` and compares it against ``received_signature``.

        Never raises; malformed input verifies as False.
        """
        try:
            values = {
                'transaction_code': transaction_code,
                'status': status,
                'total_amount': total_amount,
                'transaction_uuid': transaction_uuid,
                'product_code': product_code,
                'signed_field_names': signed_field_names,
            }
            names = [name.strip() for name in signed_field_names.split(',')]
            if any(name not in values or values[name] is None for name in names):
                logger.warning(f"Callback for {transaction_uuid} signs unknown or missing fields: {signed_field_names}")
                return False
            if not CALLBACK_REQUIRED_SIGNED_FIELDS.issubset(names):
                logger.warning(f"Callback for {transaction_uuid} does not sign the required fields: {signed_field_names}")
                return False

            expected = self.sign_fields(values, names)
            return hmac.compare_digest(expected, received_signature)
        except (AttributeError, TypeError, ValueError) as e:
            logger.warning(f"Signature verification failed on malformed input: {e}")
            return False

    def verify_callback(self, payload: CallbackPayload) -> bool:
        return self.verify_callback_signature(
            payload.transaction_code,
            payload.status,
            payload.total_amount,
            payload.transaction_uuid,
            payload.product_code,
            payload.signed_field_names,
            payload.signature,
        )

    @staticmethod
    def decode_callback_payload(encoded) -> CallbackPayload:
        """
        Decodes the base64 JSON ``data`` parameter of a success redirect.
        """
        if not encoded or not isinstance(encoded, str):
            raise DecodeError("Payment response data is required")
        try:
            # Query-string decoding turns '+' into spaces.
            raw = base64.b64decode(encoded.strip().replace(' ', '+'), validate=True)
            data = json.loads(raw.decode('utf-8'))
        except (binascii.Error, UnicodeDecodeError, json.JSONDecodeError) as e:
            logger.error(f"Error decoding eSewa response: {e}")
            raise DecodeError("Invalid eSewa response format")

        if not isinstance(data, dict):
            raise DecodeError("Invalid eSewa response format")
        missing = [name for name in CALLBACK_FIELDS if name not in data]
        if missing:
            raise DecodeError("eSewa response is missing fields", missing=missing)

        values = {}
        for name in CALLBACK_FIELDS:
            value = data[name]
            if isinstance(value, bool) or not isinstance(value, (str, int, float)):
                raise DecodeError(f"eSewa response field {name} has an invalid value")
            values[name] = str(value)
        return CallbackPayload(**values)

    def poll_status(self, product_code, total_amount, transaction_uuid) -> StatusResult:
        """
        Asks the gateway for the authoritative transaction status.

        Raises GatewayUnreachable on timeout, transport or HTTP errors, or a
        response without a status.
        """
        params = {
            'product_code': product_code,
            'total_amount': format_amount(total_amount),
            'transaction_uuid': transaction_uuid,
        }
        logger.info(f"Checking eSewa status for transaction {transaction_uuid}")
        try:
            response = requests.get(
                self.config.status_url,
                params=params,
                headers={'Content-Type': 'application/json'},
                timeout=self.config.status_timeout,
            )
            response.raise_for_status()
            data = response.json()
        except requests.exceptions.Timeout:
            logger.error(f"eSewa status check timed out for transaction {transaction_uuid}")
            raise GatewayUnreachable("eSewa status check timed out", transaction_uuid=transaction_uuid)
        except requests.exceptions.RequestException as e:
            logger.error(f"eSewa status check error for transaction {transaction_uuid}: {e}")
            raise GatewayUnreachable("Failed to check payment status", transaction_uuid=transaction_uuid)
        except ValueError:
            logger.error(f"eSewa status check returned non-JSON body for transaction {transaction_uuid}")
            raise GatewayUnreachable("Failed to check payment status", transaction_uuid=transaction_uuid)

        if not isinstance(data, dict) or not data.get('status'):
            logger.error(f"eSewa status response without status for transaction {transaction_uuid}: {data}")
            raise GatewayUnreachable("Failed to check payment status", transaction_uuid=transaction_uuid)

        logger.info(f"eSewa status for transaction {transaction_uuid}: {data['status']}")
        return StatusResult(status=data['status'], ref_id=data.get('ref_id'), raw=data)
