"""
Stripe payment backend.

Card numbers never reach this server: the client tokenizes the card with
Stripe.js and submits the token, which is attached to the user's Stripe
customer as a card source. The card id Stripe returns is what gets stored.
"""
import json
from typing import Any, Optional

import stripe
import structlog

from paydriver import schemas
from paydriver.core.config import settings
from paydriver.payments.base import BackendResult, PaymentBackend, PaymentDriver, SessionFactory
from paydriver.payments.conn import CardConn, open_card_conn

logger = structlog.get_logger(__name__)


def error_payload(err: stripe.StripeError) -> str:
    """Serialize a Stripe error as the JSON error object Stripe sent, when there is one."""
    body = getattr(err, "json_body", None)
    if isinstance(body, dict) and isinstance(body.get("error"), dict):
        return json.dumps(body["error"])
    return json.dumps({"message": err.user_message or str(err)})


class StripeBackend(PaymentBackend):
    name = "stripe"

    def __init__(self, api_key: str) -> None:
        # Passed per request so the module-level stripe.api_key is never touched.
        self.api_key = api_key

    def create_customer(self, email: str) -> BackendResult[str]:
        try:
            customer = stripe.Customer.create(email=email, api_key=self.api_key)
        except stripe.StripeError as e:
            logger.info("stripe_customer_create_failed", http_status=e.http_status)
            return BackendResult.failure(error_payload(e))
        return BackendResult.success(customer.id)

    def create_card_source(self, customer_id: str, token: str) -> BackendResult[str]:
        try:
            card = stripe.Customer.create_source(customer_id, source=token, api_key=self.api_key)
        except stripe.StripeError as e:
            logger.info("stripe_card_create_failed", customer_id=customer_id, http_status=e.http_status)
            return BackendResult.failure(error_payload(e))
        return BackendResult.success(card.id)

    def delete_card_source(self, source_ref: str, customer_id: str) -> BackendResult[None]:
        try:
            stripe.Customer.delete_source(customer_id, source_ref, api_key=self.api_key)
        except stripe.StripeError as e:
            logger.info("stripe_card_delete_failed", customer_id=customer_id, http_status=e.http_status)
            return BackendResult.failure(error_payload(e))
        return BackendResult.success(None)

    def create_charge(self, amount: int, currency: str, customer_id: str,
                      source: str) -> BackendResult[schemas.ChargeResult]:
        try:
            charge = stripe.Charge.create(
                amount=amount,
                currency=currency,
                customer=customer_id,
                source=source,
                api_key=self.api_key,
            )
        except stripe.StripeError as e:
            logger.info("stripe_charge_failed", customer_id=customer_id, http_status=e.http_status)
            return BackendResult.failure(error_payload(e))
        return BackendResult.success(schemas.ChargeResult(
            id=charge.id,
            amount=charge.amount,
            currency=charge.currency,
            status=charge.status,
            paid=bool(charge.paid),
            customer_id=customer_id,
            source=source,
        ))


class StripeDriver(PaymentDriver):
    def open(self, session_factory: SessionFactory, route_installer: Any = None,
             config: Optional[str] = None) -> CardConn:
        api_key = config
        if api_key is None and settings.STRIPE_ACCESS_TOKEN is not None:
            api_key = settings.STRIPE_ACCESS_TOKEN.get_secret_value()
        if not api_key:
            logger.warning("stripe_access_token_missing")
        stripe.max_network_retries = 0  # Charges and deletions are never retried
        return open_card_conn(StripeBackend(api_key or ""), session_factory, route_installer)
