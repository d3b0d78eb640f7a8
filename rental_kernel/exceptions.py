"""
Typed Exception Hierarchy for the Rental Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Callers of the engine (HTTP handlers, CLIs, the scanner) map failures onto
responses.  Matching on message text is fragile, so:
  1. Every error has a TYPED exception class (catch by type, not message)
  2. Every exception has a CODE attribute (machine-readable, API-safe)
  3. Exceptions carry structured DATA (not just a message string)

    try:
        engine.confirm(caller, order_id)
    except InsufficientStockError as e:
        api_response(409, code=e.code, product=e.product_id, available=e.available)

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    RentalEngineError (base)
    |
    +-- ValidationError
    |   +-- InvalidRangeError
    |   +-- InvalidQuantityError
    |   +-- InvalidAmountError
    |   +-- CouponInvalidError
    |
    +-- NotFoundError
    |   +-- ProductNotFoundError
    |   +-- OrderNotFoundError
    |   +-- InvoiceNotFoundError
    |
    +-- ForbiddenError
    |
    +-- StateConflictError
    |   +-- IllegalTransitionError
    |
    +-- InsufficientStockError
    |
    +-- ReconciliationError
    |   +-- DuplicateInvoiceError
    |   +-- DuplicatePaymentError
    |   +-- PaymentVerificationFailedError
    |
    +-- ConcurrencyConflictError
    |
    +-- StorageError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category        | Code                        | When Raised
----------------|-----------------------------|-----------------------------------------
Validation      | INVALID_RANGE               | start/end missing or start >= end
                | INVALID_QUANTITY            | Quantity not a positive integer
                | INVALID_AMOUNT              | Non-positive or malformed money amount
                | COUPON_INVALID              | Inactive, expired, exhausted, under minimum
----------------|-----------------------------|-----------------------------------------
Lookup          | PRODUCT_NOT_FOUND           | Unknown or inactive product id
                | ORDER_NOT_FOUND             | Unknown order id
                | INVOICE_NOT_FOUND           | Unknown invoice id
----------------|-----------------------------|-----------------------------------------
Authorization   | FORBIDDEN                   | Role / ownership violation
----------------|-----------------------------|-----------------------------------------
Lifecycle       | STATE_CONFLICT              | Entity not in the expected status
                | ILLEGAL_TRANSITION          | Transition not in the transition table,
                |                             | or side-effect record already exists
----------------|-----------------------------|-----------------------------------------
Stock           | INSUFFICIENT_STOCK          | Requested quantity exceeds availability
----------------|-----------------------------|-----------------------------------------
Reconciliation  | DUPLICATE_INVOICE           | Order already has an invoice
                | DUPLICATE_PAYMENT           | Gateway transaction already recorded
                | PAYMENT_VERIFICATION_FAILED | Gateway signature mismatch
----------------|-----------------------------|-----------------------------------------
Concurrency     | CONCURRENCY_CONFLICT        | Lost a compare-and-swap / lock race
----------------|-----------------------------|-----------------------------------------
Storage         | STORAGE_ERROR               | Unexpected database failure (detail is
                |                             | logged, never surfaced)

===============================================================================
DESIGN DECISIONS
===============================================================================

1. Inherit from Exception, not ValueError/RuntimeError, so domain errors are
   catchable as a group without mixing in programming errors.

2. ``code`` is a class attribute: static per type, readable without an
   instance, usable for API documentation.

3. ConcurrencyConflictError is the only retryable category.  The RentalEngine
   facade retries it with bounded attempts; everything else propagates.

===============================================================================
"""


class RentalEngineError(Exception):
    """
    Base exception for all rental engine errors.

    All subclasses must have a `code` class attribute for machine-readable
    error identification.
    """

    code: str = "RENTAL_ENGINE_ERROR"


# Validation exceptions


class ValidationError(RentalEngineError):
    """Base exception for request validation failures."""

    code: str = "VALIDATION_ERROR"


class InvalidRangeError(ValidationError):
    """Rental interval is missing or not strictly increasing."""

    code: str = "INVALID_RANGE"

    def __init__(self, start: object, end: object):
        self.start = start
        self.end = end
        super().__init__(
            f"Invalid rental interval: start={start} end={end} "
            "(both required, start must be before end)"
        )


class InvalidQuantityError(ValidationError):
    """Quantity must be a positive integer."""

    code: str = "INVALID_QUANTITY"

    def __init__(self, quantity: object):
        self.quantity = quantity
        super().__init__(f"Quantity must be a positive integer, got {quantity!r}")


class InvalidAmountError(ValidationError):
    """Money amount is malformed or not allowed in this context."""

    code: str = "INVALID_AMOUNT"

    def __init__(self, amount: object, reason: str):
        self.amount = amount
        self.reason = reason
        super().__init__(f"Invalid amount {amount!r}: {reason}")


class CouponInvalidError(ValidationError):
    """Coupon cannot be applied to this order."""

    code: str = "COUPON_INVALID"

    def __init__(self, coupon_code: str, reason: str):
        self.coupon_code = coupon_code
        self.reason = reason
        super().__init__(f"Coupon {coupon_code!r} is not valid: {reason}")


# Lookup exceptions


class NotFoundError(RentalEngineError):
    """Base exception for missing entities."""

    code: str = "NOT_FOUND"


class ProductNotFoundError(NotFoundError):
    """Product does not exist or is inactive."""

    code: str = "PRODUCT_NOT_FOUND"

    def __init__(self, product_id: str):
        self.product_id = product_id
        super().__init__(f"Product not found: {product_id}")


class OrderNotFoundError(NotFoundError):
    """Rental order does not exist."""

    code: str = "ORDER_NOT_FOUND"

    def __init__(self, order_id: str):
        self.order_id = order_id
        super().__init__(f"Order not found: {order_id}")


class InvoiceNotFoundError(NotFoundError):
    """Invoice does not exist."""

    code: str = "INVOICE_NOT_FOUND"

    def __init__(self, invoice_id: str):
        self.invoice_id = invoice_id
        super().__init__(f"Invoice not found: {invoice_id}")


# Authorization


class ForbiddenError(RentalEngineError):
    """Caller's role or ownership does not permit the action."""

    code: str = "FORBIDDEN"

    def __init__(self, actor_id: str, action: str, reason: str):
        self.actor_id = actor_id
        self.action = action
        self.reason = reason
        super().__init__(f"Actor {actor_id} may not {action}: {reason}")


# Lifecycle


class StateConflictError(RentalEngineError):
    """Entity is not in the status the operation requires."""

    code: str = "STATE_CONFLICT"

    def __init__(self, entity_type: str, entity_id: str, current: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.current = current
        self.reason = reason
        super().__init__(
            f"{entity_type} {entity_id} is {current}: {reason}"
        )


class IllegalTransitionError(StateConflictError):
    """Requested transition is not legal from the current status."""

    code: str = "ILLEGAL_TRANSITION"

    def __init__(self, entity_type: str, entity_id: str, current: str, target: str):
        self.target = target
        super().__init__(
            entity_type,
            entity_id,
            current,
            f"cannot transition to {target}",
        )


# Stock


class InsufficientStockError(RentalEngineError):
    """Requested quantity exceeds what the interval can still accommodate."""

    code: str = "INSUFFICIENT_STOCK"

    def __init__(self, product_id: str, requested: int, available: int):
        self.product_id = product_id
        self.requested = requested
        self.available = available
        super().__init__(
            f"Product {product_id} only has {available} available for the "
            f"requested dates ({requested} requested)"
        )


# Reconciliation


class ReconciliationError(RentalEngineError):
    """Base exception for invoice/payment reconciliation errors."""

    code: str = "RECONCILIATION_ERROR"


class DuplicateInvoiceError(ReconciliationError):
    """An invoice already exists for this order."""

    code: str = "DUPLICATE_INVOICE"

    def __init__(self, order_id: str, invoice_id: str | None = None):
        self.order_id = order_id
        self.invoice_id = invoice_id
        super().__init__(f"Invoice already exists for order {order_id}")


class DuplicatePaymentError(ReconciliationError):
    """Gateway transaction id has already been recorded."""

    code: str = "DUPLICATE_PAYMENT"

    def __init__(self, external_txn_id: str):
        self.external_txn_id = external_txn_id
        super().__init__(f"Payment {external_txn_id} has already been recorded")


class PaymentVerificationFailedError(ReconciliationError):
    """Gateway confirmation signature does not match."""

    code: str = "PAYMENT_VERIFICATION_FAILED"

    def __init__(self, gateway_order_id: str, gateway_payment_id: str):
        self.gateway_order_id = gateway_order_id
        self.gateway_payment_id = gateway_payment_id
        super().__init__(
            f"Payment verification failed for gateway order {gateway_order_id}"
        )


# Concurrency


class ConcurrencyConflictError(RentalEngineError):
    """Lost a compare-and-swap or lock race; safe to retry."""

    code: str = "CONCURRENCY_CONFLICT"

    def __init__(self, entity_type: str, entity_id: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        super().__init__(
            f"Concurrent modification of {entity_type} {entity_id}: "
            "entity was modified by another transaction"
        )


# Storage


class StorageError(RentalEngineError):
    """Unexpected storage failure.  Internal detail is logged, not exposed."""

    code: str = "STORAGE_ERROR"

    def __init__(self, operation: str):
        self.operation = operation
        super().__init__(f"Storage failure during {operation}")
