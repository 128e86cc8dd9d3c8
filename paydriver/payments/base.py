import json
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Callable, Generic, Optional, TypeVar

from sqlalchemy.orm import Session

from paydriver import models, schemas
from paydriver.exceptions import MalformedRemoteErrorError

T = TypeVar("T")

SessionFactory = Callable[[], Session]


@dataclass(frozen=True)
class BackendResult(Generic[T]):
    """
    Outcome of a payment backend call: either ``value`` or an ``error``
    payload. Backends report rejections here instead of raising, and the
    payload is expected to be a JSON object with a ``message`` field.
    """

    value: Optional[T] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, value: T) -> "BackendResult[T]":
        return cls(value=value)

    @classmethod
    def failure(cls, payload: str) -> "BackendResult[T]":
        return cls(error=payload)


def decode_remote_error(payload: Any) -> str:
    """Extract the message from a backend error payload, or raise MalformedRemoteErrorError."""
    if isinstance(payload, (bytes, bytearray)):
        payload = payload.decode("utf-8", errors="replace")
    try:
        body = json.loads(payload)
    except (TypeError, ValueError) as e:
        raise MalformedRemoteErrorError(f"Undecodable error from payment backend: {e}", payload=payload)

    if not isinstance(body, dict):
        raise MalformedRemoteErrorError("Payment backend error is not a JSON object", payload=payload)
    # Accept either casing of the key
    message = body.get("message", body.get("Message"))
    if not isinstance(message, str) or not message:
        raise MalformedRemoteErrorError("Payment backend error has no message", payload=payload)
    return message


class PaymentBackend(ABC):
    """
    Blocking client for one payment service. Implementations must be safe to
    share between concurrent operations once constructed.
    """

    name: str = "backend"

    @abstractmethod
    def create_customer(self, email: str) -> BackendResult[str]:
        """Create a remote customer and return its id."""

    @abstractmethod
    def create_card_source(self, customer_id: str, token: str) -> BackendResult[str]:
        """Attach a client-side token to a customer and return the card source reference."""

    @abstractmethod
    def delete_card_source(self, source_ref: str, customer_id: str) -> BackendResult[None]:
        pass

    @abstractmethod
    def create_charge(self, amount: int, currency: str, customer_id: str,
                      source: str) -> BackendResult[schemas.ChargeResult]:
        pass

    def close(self) -> None:
        pass


class Conn(ABC):
    """A handle bound to one payment backend and one storage handle."""

    @abstractmethod
    async def register_user(self, user: models.User) -> str:
        pass

    @abstractmethod
    async def save_card(self, params: schemas.CardParams, user: models.User) -> int:
        pass

    @abstractmethod
    async def charge_card(self, card_id: int, amount_in_cents: int,
                          iso_currency: str) -> schemas.ChargeResult:
        pass

    @abstractmethod
    async def delete_card(self, card_id: int, user_id: int) -> None:
        pass

    @abstractmethod
    async def get_user(self, user_id: int) -> models.User:
        pass

    @abstractmethod
    async def close(self) -> None:
        pass


class PaymentDriver(ABC):
    @abstractmethod
    def open(self, session_factory: SessionFactory, route_installer: Any = None,
             config: Optional[str] = None) -> Conn:
        """
        Build a Conn for this backend.

        ``config`` is backend specific (an API key for Stripe). When a
        ``route_installer`` (FastAPI app or APIRouter) is given, the card
        submission and deletion routes are added to it.
        """
