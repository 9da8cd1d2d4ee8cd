"""
receivables_services.webhook -- payment gateway webhook adapter.

Responsibility:
    Authenticates an inbound gateway call with a shared secret and turns
    its JSON payload into a ``PaymentNotification`` for
    ``PaymentWorkflowService.process_notification``.  No I/O; the HTTP
    layer that receives the request is an external collaborator.

Payload fields:
    external_payment_id  required
    invoice_number       required
    amount               required, decimal string or number, > 0
    currency             required, ISO 4217
    status               required, success | failed | pending
    payment_date         required, ISO date (YYYY-MM-DD)
    method               optional, defaults to ``other``
    reference            optional
"""

from __future__ import annotations

import hmac
from datetime import date
from decimal import Decimal, InvalidOperation
from typing import Any, Mapping

from receivables_kernel.domain.currency import CurrencyRegistry
from receivables_kernel.domain.receivables import PaymentMethod
from receivables_kernel.exceptions import (
    InvalidAmountError,
    MissingFieldError,
    PaymentValidationError,
    UnsupportedNotificationStatusError,
    WebhookAuthenticationError,
)
from receivables_kernel.logging_config import get_logger
from receivables_services.workflow_types import NotificationStatus, PaymentNotification

logger = get_logger("services.webhook")

_REQUIRED_FIELDS = (
    "external_payment_id",
    "invoice_number",
    "amount",
    "currency",
    "status",
    "payment_date",
)


def verify_shared_secret(
    provided: str | None, expected: str | None, source: str = "payment_gateway"
) -> None:
    """Constant-time secret check.  Raises WebhookAuthenticationError on mismatch."""
    if not expected or not provided or not hmac.compare_digest(
        provided.encode("utf-8"), expected.encode("utf-8")
    ):
        logger.warning(
            "webhook_authentication_failed",
            extra={"source": source, "secret_configured": bool(expected)},
        )
        raise WebhookAuthenticationError(source)


def _parse_amount(value: Any) -> Decimal:
    if isinstance(value, bool):
        raise InvalidAmountError(value, "amount must be a number")
    if isinstance(value, float):
        value = repr(value)
    try:
        amount = Decimal(str(value).strip())
    except InvalidOperation as e:
        raise InvalidAmountError(value, "amount is not a number") from e
    if not amount.is_finite() or amount <= 0:
        raise InvalidAmountError(value, "amount must be greater than zero")
    return amount


def parse_notification(payload: Mapping[str, Any]) -> PaymentNotification:
    """
    Validate and normalize a gateway payload.

    Raises:
        MissingFieldError: A required field is absent or blank.
        InvalidAmountError: Amount is not a positive number.
        PaymentValidationError: Unknown currency or method, bad date.
        UnsupportedNotificationStatusError: Unknown status value.
    """
    for name in _REQUIRED_FIELDS:
        value = payload.get(name)
        if value is None or (isinstance(value, str) and not value.strip()):
            raise MissingFieldError(name, source="webhook payload")

    external_id = str(payload["external_payment_id"]).strip()
    amount = _parse_amount(payload["amount"])

    currency = str(payload["currency"]).strip().upper()
    if not CurrencyRegistry.is_valid(currency):
        raise PaymentValidationError("currency", f"Unknown currency {currency!r}")

    raw_status = str(payload["status"]).strip().lower()
    try:
        status = NotificationStatus(raw_status)
    except ValueError as e:
        raise UnsupportedNotificationStatusError(raw_status, external_id) from e

    raw_date = payload["payment_date"]
    if isinstance(raw_date, date):
        payment_date = raw_date
    else:
        try:
            payment_date = date.fromisoformat(str(raw_date).strip()[:10])
        except ValueError as e:
            raise PaymentValidationError(
                "payment_date", f"payment_date {raw_date!r} is not an ISO date"
            ) from e

    raw_method = str(payload.get("method") or PaymentMethod.OTHER.value).strip().lower()
    method = PaymentMethod.parse(raw_method)

    reference = payload.get("reference")
    notification = PaymentNotification(
        external_payment_id=external_id,
        invoice_number=str(payload["invoice_number"]).strip(),
        amount=amount,
        currency=currency,
        method=method,
        payment_date=payment_date,
        status=status,
        reference=str(reference).strip() if reference else None,
    )

    logger.debug(
        "webhook_notification_parsed",
        extra={
            "external_payment_id": external_id,
            "invoice_number": notification.invoice_number,
            "notification_status": status.value,
        },
    )
    return notification
