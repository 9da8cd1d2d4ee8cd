"""
Typed Exception Hierarchy for the Receivables Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Callers of the payment workflow (HTTP handlers, the cron runner, the webhook
endpoint) must decide between "tell the user", "retry later" and "page
someone" without parsing message strings.  Every error therefore has:
  1. A TYPED exception class (catch by type, not message)
  2. A CODE class attribute (machine-readable, API-safe)
  3. Structured DATA as instance attributes

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    ReceivablesError (base)
    |
    +-- ValidationError                     -> 4xx, never retried
    |   +-- InvalidEventKindError
    |   +-- InvalidStatusError
    |   +-- InvalidAmountError
    |   +-- MissingFieldError
    |   +-- BatchTooLargeError
    |   +-- CurrencyMismatchError
    |   +-- UnsupportedNotificationStatusError
    |   +-- PaymentValidationError
    |   +-- DuplicateInvoiceError
    |   +-- PaymentNotFoundError
    |   +-- InvoiceNotFoundError
    |   +-- IllegalTransitionError
    |
    +-- AccessDeniedError                   -> 4xx, logged, never retried
    |   +-- WebhookAuthenticationError
    |
    +-- ConcurrencyError
    |   +-- ConcurrencyConflictError        -> transient, retried once
    |
    +-- ImmutabilityError
        +-- ImmutabilityViolationError

Illegal status transitions are NOT exceptions: the state machine returns a
``StatusDecision`` with ``transitioned=False`` and a rejection code, so batch
processing continues.

Infrastructure failures (``sqlalchemy.exc.SQLAlchemyError``) are propagated
unchanged and reported as ``INFRASTRUCTURE_ERROR`` by ``error_code_for()``.
``is_transient()`` tells callers which failures are worth a retry of the
whole operation.

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category      | Code                             | When Raised
--------------|----------------------------------|------------------------------
Validation    | INVALID_EVENT_KIND               | Unknown workflow event kind
              | INVALID_STATUS                   | Unknown invoice status value
              | INVALID_AMOUNT                   | Amount <= 0, negative total
              | MISSING_FIELD                    | Required payload field absent
              | BATCH_TOO_LARGE                  | Batch exceeds configured max
              | CURRENCY_MISMATCH                | Mixed currencies
              | UNSUPPORTED_NOTIFICATION_STATUS  | Gateway status not success/failed
              | PAYMENT_VALIDATION_FAILED        | Recording rule violated
              | DUPLICATE_INVOICE                | Invoice number reused in tenant
              | PAYMENT_NOT_FOUND                | Payment id does not exist
              | INVOICE_NOT_FOUND                | Invoice id/number does not exist
              | ILLEGAL_TRANSITION               | Required transition was declined
--------------|----------------------------------|------------------------------
Access        | ACCESS_DENIED                    | Cross-tenant or unauthorized
              | WEBHOOK_AUTHENTICATION_FAILED    | Shared secret mismatch
--------------|----------------------------------|------------------------------
Concurrency   | CONCURRENCY_CONFLICT             | Invoice changed between read
              |                                  | and write
--------------|----------------------------------|------------------------------
Immutability  | IMMUTABILITY_VIOLATION           | Audit record update/delete
"""

from __future__ import annotations

from sqlalchemy.exc import DBAPIError, OperationalError, SQLAlchemyError


class ReceivablesError(Exception):
    """
    Base exception for all receivables kernel errors.

    All subclasses carry a ``code`` class attribute for machine-readable
    error identification.
    """

    code: str = "RECEIVABLES_ERROR"


# Validation exceptions


class ValidationError(ReceivablesError):
    """Malformed input.  Surfaced immediately, never retried."""

    code: str = "VALIDATION_ERROR"


class InvalidEventKindError(ValidationError):
    """Workflow event kind is not one of the known kinds."""

    code: str = "INVALID_EVENT_KIND"

    def __init__(self, value: object, allowed: list[str]):
        self.value = value
        self.allowed = allowed
        super().__init__(
            f"Invalid workflow event kind {value!r}; expected one of {allowed}"
        )


class InvalidStatusError(ValidationError):
    """Invoice status value is not one of the known statuses."""

    code: str = "INVALID_STATUS"

    def __init__(self, value: object, allowed: list[str]):
        self.value = value
        self.allowed = allowed
        super().__init__(
            f"Invalid invoice status {value!r}; expected one of {allowed}"
        )


class InvalidAmountError(ValidationError):
    """Monetary amount violates its invariant."""

    code: str = "INVALID_AMOUNT"

    def __init__(self, amount: object, reason: str):
        self.amount = str(amount)
        self.reason = reason
        super().__init__(f"Invalid amount {amount}: {reason}")


class MissingFieldError(ValidationError):
    """A required field is missing from an inbound payload."""

    code: str = "MISSING_FIELD"

    def __init__(self, field_name: str, source: str = "payload"):
        self.field_name = field_name
        self.source = source
        super().__init__(f"Missing required field '{field_name}' in {source}")


class BatchTooLargeError(ValidationError):
    """Batch size exceeds the configured maximum.  Never truncated."""

    code: str = "BATCH_TOO_LARGE"

    def __init__(self, size: int, max_size: int):
        self.size = size
        self.max_size = max_size
        super().__init__(
            f"Batch of {size} events exceeds the maximum of {max_size}"
        )


class CurrencyMismatchError(ValidationError):
    """Operation mixes different currencies."""

    code: str = "CURRENCY_MISMATCH"

    def __init__(self, expected: str, received: str):
        self.expected = expected
        self.received = received
        super().__init__(
            f"Currency mismatch: expected {expected}, received {received}"
        )


class UnsupportedNotificationStatusError(ValidationError):
    """Gateway notification status cannot drive the workflow."""

    code: str = "UNSUPPORTED_NOTIFICATION_STATUS"

    def __init__(self, status: str, external_payment_id: str):
        self.status = status
        self.external_payment_id = external_payment_id
        super().__init__(
            f"Notification {external_payment_id} has status {status!r}; "
            "only 'success' and 'failed' are processed"
        )


class PaymentValidationError(ValidationError):
    """A payment recording rule was violated."""

    code: str = "PAYMENT_VALIDATION_FAILED"

    def __init__(self, rule: str, message: str):
        self.rule = rule
        super().__init__(message)


class DuplicateInvoiceError(ValidationError):
    """Invoice number already exists within the tenant."""

    code: str = "DUPLICATE_INVOICE"

    def __init__(self, invoice_number: str, tenant_id: str):
        self.invoice_number = invoice_number
        self.tenant_id = tenant_id
        super().__init__(
            f"Invoice number {invoice_number} already exists for tenant {tenant_id}"
        )


class PaymentNotFoundError(ValidationError):
    """Payment with given ID was not found."""

    code: str = "PAYMENT_NOT_FOUND"

    def __init__(self, payment_id: str):
        self.payment_id = payment_id
        super().__init__(f"Payment not found: {payment_id}")


class InvoiceNotFoundError(ValidationError):
    """Invoice with given ID or number was not found."""

    code: str = "INVOICE_NOT_FOUND"

    def __init__(self, invoice_ref: str):
        self.invoice_ref = invoice_ref
        super().__init__(f"Invoice not found: {invoice_ref}")


class IllegalTransitionError(ValidationError):
    """
    The caller asked for a transition to be required and the state machine
    declined it.  Without ``require_transition`` the same decision is a no-op.
    """

    code: str = "ILLEGAL_TRANSITION"

    def __init__(self, invoice_id: str, current_status: str, event: str, reason_code: str | None, reason: str):
        self.invoice_id = invoice_id
        self.current_status = current_status
        self.event = event
        self.reason_code = reason_code
        self.reason = reason
        super().__init__(
            f"Invoice {invoice_id} in {current_status} did not transition on {event}: "
            f"{reason_code or 'NO_CHANGE'} ({reason})"
        )


# Access exceptions


class AccessDeniedError(ReceivablesError):
    """
    Actor attempted to touch data owned by another tenant, or lacks the
    authority for the operation.  Always fatal to the single operation.
    """

    code: str = "ACCESS_DENIED"

    def __init__(self, tenant_id: str, resource: str, reason: str = "tenant mismatch"):
        self.tenant_id = tenant_id
        self.resource = resource
        self.reason = reason
        super().__init__(
            f"Access denied for tenant {tenant_id} on {resource}: {reason}"
        )


class WebhookAuthenticationError(AccessDeniedError):
    """Inbound webhook failed the shared-secret check."""

    code: str = "WEBHOOK_AUTHENTICATION_FAILED"

    def __init__(self, source: str):
        self.source = source
        super().__init__(
            tenant_id="unknown", resource=f"webhook:{source}",
            reason="shared secret mismatch",
        )


# Concurrency exceptions


class ConcurrencyError(ReceivablesError):
    """Base exception for concurrency-related errors."""

    code: str = "CONCURRENCY_ERROR"


class ConcurrencyConflictError(ConcurrencyError):
    """Invoice was modified between read and conditional write."""

    code: str = "CONCURRENCY_CONFLICT"

    def __init__(self, invoice_id: str, expected_version: int):
        self.invoice_id = invoice_id
        self.expected_version = expected_version
        super().__init__(
            f"Invoice {invoice_id} changed concurrently "
            f"(expected version {expected_version})"
        )


# Immutability exceptions


class ImmutabilityError(ReceivablesError):
    """Base exception for immutability-related errors."""

    code: str = "IMMUTABILITY_ERROR"


class ImmutabilityViolationError(ImmutabilityError):
    """Attempted to modify or delete an append-only record."""

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Immutability violation on {entity_type} {entity_id}: {reason}"
        )


def is_transient(exc: BaseException) -> bool:
    """True when retrying the whole operation later may succeed."""
    if isinstance(exc, (ConcurrencyConflictError, OperationalError)):
        return True
    return isinstance(exc, DBAPIError) and bool(exc.connection_invalidated)


def error_code_for(exc: BaseException) -> str:
    """Machine-readable code for any exception raised by a workflow call."""
    if isinstance(exc, ReceivablesError):
        return exc.code
    if isinstance(exc, SQLAlchemyError):
        return "INFRASTRUCTURE_ERROR"
    return "UNHANDLED_EXCEPTION"
