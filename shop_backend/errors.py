"""
Error taxonomy shared by the inventory, cart and order components.

Every error carries a stable machine-checkable ``kind`` and the HTTP status
the views render it with.
"""


class ShopError(Exception):
    kind = 'SHOP_ERROR'
    status_code = 400

    def __init__(self, message, **details):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self):
        return {'error': self.kind, 'message': self.message, 'details': self.details}


class ValidationError(ShopError):
    kind = 'VALIDATION_ERROR'


class DecodeError(ValidationError):
    kind = 'DECODE_ERROR'


class NotFound(ShopError):
    kind = 'NOT_FOUND'
    status_code = 404


class InsufficientStock(ShopError):
    kind = 'INSUFFICIENT_STOCK'
    status_code = 409

    def __init__(self, product_id, product_name, requested, available):
        super().__init__(
            f"Insufficient stock for product: {product_name}",
            product_id=str(product_id),
            product_name=product_name,
            requested_quantity=requested,
            available_stock=available,
        )
        self.product_id = product_id
        self.requested = requested
        self.available = available


class InvalidSignature(ShopError):
    kind = 'INVALID_SIGNATURE'


class AmountMismatch(ShopError):
    kind = 'AMOUNT_MISMATCH'


class InvalidStatus(ShopError):
    kind = 'INVALID_STATUS'


class InvalidStatusTransition(ShopError):
    kind = 'INVALID_STATUS_TRANSITION'
    status_code = 409


class GatewayUnreachable(ShopError):
    kind = 'GATEWAY_UNREACHABLE'
    status_code = 502


class PersistenceConflict(ShopError):
    kind = 'PERSISTENCE_CONFLICT'
    status_code = 409
