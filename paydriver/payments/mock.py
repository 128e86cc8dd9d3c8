"""
In-process payment backend for local development and tests.

Behaves like a small Stripe: customers, card sources attached to customers,
and charges. A few magic tokens reproduce backend rejections.
"""
import itertools
import json
import threading
from typing import Any, Dict, List, Optional, Tuple

import structlog

from paydriver import schemas
from paydriver.payments.base import BackendResult, PaymentBackend, PaymentDriver, SessionFactory
from paydriver.payments.conn import CardConn, open_card_conn

logger = structlog.get_logger(__name__)

# Tokens whose cards attach fine but are declined when charged
DECLINING_TOKENS: Dict[str, str] = {
    "tok_chargeDeclined": "Your card was declined.",
    "tok_chargeDeclinedInsufficientFunds": "Your card has insufficient funds.",
    "tok_chargeDeclinedExpiredCard": "Your card has expired.",
}

# Tokens rejected when attached to a customer
INVALID_TOKENS: Dict[str, str] = {
    "tok_cvcCheckFail": "Your card's security code is incorrect.",
}


def _error(message: str, **extra: Any) -> str:
    return json.dumps({"message": message, **extra})


class MockBackend(PaymentBackend):
    name = "mock"

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._ids = itertools.count(1)
        self.customers: Dict[str, str] = {}
        # source id -> (customer id, token)
        self.sources: Dict[str, Tuple[str, str]] = {}
        self.charges: List[schemas.ChargeResult] = []

    def _next_id(self, prefix: str) -> str:
        return f"{prefix}_{next(self._ids)}"

    def create_customer(self, email: str) -> BackendResult[str]:
        if not email or "@" not in email:
            return BackendResult.failure(_error(f"Invalid email address: {email}", type="invalid_request_error"))
        with self._lock:
            customer_id = self._next_id("cus")
            self.customers[customer_id] = email
        return BackendResult.success(customer_id)

    def create_card_source(self, customer_id: str, token: str) -> BackendResult[str]:
        if token in INVALID_TOKENS:
            return BackendResult.failure(_error(INVALID_TOKENS[token], type="card_error"))
        with self._lock:
            if customer_id not in self.customers:
                return BackendResult.failure(_error(f"No such customer: '{customer_id}'", type="invalid_request_error"))
            if not token.startswith("tok_"):
                return BackendResult.failure(_error(f"No such token: '{token}'", type="invalid_request_error"))
            source_id = self._next_id("card")
            self.sources[source_id] = (customer_id, token)
        return BackendResult.success(source_id)

    def delete_card_source(self, source_ref: str, customer_id: str) -> BackendResult[None]:
        with self._lock:
            owner = self.sources.get(source_ref)
            if owner is None or owner[0] != customer_id:
                return BackendResult.failure(_error(f"No such source: '{source_ref}'", type="invalid_request_error"))
            del self.sources[source_ref]
        return BackendResult.success(None)

    def create_charge(self, amount: int, currency: str, customer_id: str,
                      source: str) -> BackendResult[schemas.ChargeResult]:
        with self._lock:
            owner = self.sources.get(source)
            if owner is None or owner[0] != customer_id:
                return BackendResult.failure(_error(f"No such source: '{source}'", type="invalid_request_error"))
            token = owner[1]
            if token in DECLINING_TOKENS:
                return BackendResult.failure(_error(DECLINING_TOKENS[token], type="card_error", code="card_declined"))
            charge = schemas.ChargeResult(
                id=self._next_id("ch"),
                amount=amount,
                currency=currency,
                status="succeeded",
                paid=True,
                customer_id=customer_id,
                source=source,
            )
            self.charges.append(charge)
        return BackendResult.success(charge)


class MockDriver(PaymentDriver):
    def __init__(self, backend: Optional[MockBackend] = None) -> None:
        self.backend = backend

    def open(self, session_factory: SessionFactory, route_installer: Any = None,
             config: Optional[str] = None) -> CardConn:
        if self.backend is None:
            self.backend = MockBackend()
        return open_card_conn(self.backend, session_factory, route_installer)
