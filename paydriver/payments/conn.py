"""
Card lifecycle over a payment backend.

CardConn binds one PaymentBackend to one session factory and implements the
operations every driver exposes: binding a user to a remote customer,
onboarding a tokenized card, charging a stored card and removing it. Only
non-sensitive card metadata, the backend's card reference and a bcrypt hash
of the billing zip are ever written locally.

Storage and backend calls block, so each one runs in the threadpool. Every
public operation runs under a deadline. Nothing here retries: charges and
remote deletions have no idempotency key, so a retry could bill or delete
twice.
"""
import asyncio
import re
from typing import Any, Callable, Optional, TypeVar

import structlog
from fastapi.concurrency import run_in_threadpool

from paydriver import crud, models, schemas
from paydriver.core import security
from paydriver.exceptions import (
    CardNotFoundError,
    CustomerAlreadyBoundError,
    CustomerResolutionError,
    InvalidChargeError,
    MalformedRemoteErrorError,
    OperationTimeoutError,
    OwnershipMismatchError,
    RemoteCleanupError,
    RemoteServiceError,
    UnboundCustomerError,
    UserNotFoundError,
)
from paydriver.payments.base import (
    BackendResult,
    Conn,
    PaymentBackend,
    SessionFactory,
    decode_remote_error,
)

logger = structlog.get_logger(__name__)

T = TypeVar("T")

CURRENCY_RE = re.compile(r"[A-Za-z]{3}")


class CardConn(Conn):
    def __init__(self, backend: PaymentBackend, session_factory: SessionFactory,
                 timeout_seconds: Optional[float] = None):
        self.backend = backend
        self.session_factory = session_factory
        self.timeout_seconds = timeout_seconds

    # --- plumbing ---

    def _in_session(self, fn: Callable[..., T], *args: Any) -> T:
        with self.session_factory() as db:
            return fn(db, *args)

    async def _storage(self, fn: Callable[..., T], *args: Any) -> T:
        return await run_in_threadpool(self._in_session, fn, *args)

    async def _remote(self, fn: Callable[..., BackendResult], *args: Any) -> BackendResult:
        return await run_in_threadpool(fn, *args)

    async def _bounded(self, operation: str, identifier: Any, coro) -> Any:
        if self.timeout_seconds is None:
            return await coro
        try:
            return await asyncio.wait_for(coro, timeout=self.timeout_seconds)
        except asyncio.TimeoutError:
            logger.warning("payment_operation_timeout", operation=operation, identifier=identifier,
                           timeout_seconds=self.timeout_seconds)
            raise OperationTimeoutError(
                f"{operation} did not finish within {self.timeout_seconds}s",
                operation=operation, identifier=identifier,
            )

    @staticmethod
    def _rejected(result: BackendResult, operation: str, identifier: Any) -> RemoteServiceError:
        try:
            message = decode_remote_error(result.error)
        except MalformedRemoteErrorError as e:
            e.operation, e.identifier = operation, identifier
            raise
        return RemoteServiceError(message, operation=operation, identifier=identifier)

    async def _customer_for(self, user_id: int, operation: str, missing_binding) -> str:
        exists, customer_id = await self._storage(crud.get_remote_customer_id, user_id)
        if not exists:
            raise UserNotFoundError(f"User {user_id} not found", operation=operation, identifier=user_id)
        if not customer_id:
            raise missing_binding(
                f"User {user_id} has no payment customer", operation=operation, identifier=user_id,
            )
        return customer_id

    # --- operations ---

    async def get_user(self, user_id: int) -> models.User:
        user = await self._storage(crud.get_user, user_id)
        if user is None:
            raise UserNotFoundError(f"User {user_id} not found", operation="get_user", identifier=user_id)
        return user

    async def register_user(self, user: models.User) -> str:
        return await self._bounded("register_user", user.id, self._register_user(user))

    async def _register_user(self, user: models.User) -> str:
        exists, current = await self._storage(crud.get_remote_customer_id, user.id)
        if not exists:
            raise UserNotFoundError(f"User {user.id} not found", operation="register_user", identifier=user.id)
        if current:
            raise CustomerAlreadyBoundError(
                f"User {user.id} already has a payment customer",
                operation="register_user", identifier=user.id,
            )

        result = await self._remote(self.backend.create_customer, user.email)
        if not result.ok:
            raise self._rejected(result, "register_user", user.id)
        customer_id = result.value

        bound = await self._storage(crud.bind_remote_customer_id, user.id, customer_id)
        if not bound:
            # Lost a race with another registration; the remote customer is orphaned.
            logger.warning("remote_customer_orphaned", user_id=user.id, customer_id=customer_id)
            raise CustomerAlreadyBoundError(
                f"User {user.id} already has a payment customer",
                operation="register_user", identifier=user.id,
            )
        user.remote_customer_id = customer_id
        logger.info("user_registered_with_backend", user_id=user.id, backend=self.backend.name)
        return customer_id

    async def save_card(self, params: schemas.CardParams, user: models.User) -> int:
        return await self._bounded("save_card", user.id, self._save_card(params, user))

    async def _save_card(self, params: schemas.CardParams, user: models.User) -> int:
        zip5_hash = await run_in_threadpool(security.hash_zip5, params.address_zip)
        customer_id = await self._customer_for(user.id, "save_card", UnboundCustomerError)

        attach = asyncio.ensure_future(
            self._remote(self.backend.create_card_source, customer_id, params.service_token)
        )
        try:
            result = await asyncio.shield(attach)
        except asyncio.CancelledError:
            await self._undo_card_attach(attach, user.id, customer_id)
            raise
        if not result.ok:
            raise self._rejected(result, "save_card", user.id)
        remote_token = result.value

        insert = asyncio.ensure_future(
            self._storage(crud.create_card, user.id, params, remote_token, zip5_hash)
        )
        try:
            card_id = await asyncio.shield(insert)
        except asyncio.CancelledError:
            await self._undo_card_insert(insert, user.id, customer_id, remote_token)
            raise
        except Exception:
            await self._discard_remote_source(remote_token, customer_id)
            raise

        logger.info("card_saved", card_id=card_id, user_id=user.id)
        return card_id

    async def _undo_card_attach(self, attach: "asyncio.Future[BackendResult]", user_id: int,
                                customer_id: str) -> None:
        # The attach keeps running in its thread after cancellation; once it
        # settles, detach whatever it created.
        try:
            result = await attach
        except Exception as e:
            logger.info("card_attach_failed_after_cancel", user_id=user_id, error=str(e))
            return
        if result.ok:
            await self._discard_remote_source(result.value, customer_id)

    async def _undo_card_insert(self, insert: "asyncio.Future[int]", user_id: int,
                                customer_id: str, remote_token: str) -> None:
        # The insert keeps running in its thread after cancellation; wait for
        # it so no card row outlives the cancelled operation.
        try:
            card_id = await insert
        except Exception as e:
            logger.info("card_insert_failed_after_cancel", user_id=user_id, error=str(e))
            card_id = None
        if card_id is not None:
            await self._storage(crud.delete_card_for_user, card_id, user_id)
            logger.info("card_insert_rolled_back", card_id=card_id, user_id=user_id)
        await self._discard_remote_source(remote_token, customer_id)

    async def _discard_remote_source(self, remote_token: str, customer_id: str) -> None:
        result = await self._remote(self.backend.delete_card_source, remote_token, customer_id)
        if result.ok:
            logger.info("orphan_card_source_removed", customer_id=customer_id)
        else:
            logger.error("orphan_card_source_remove_failed", customer_id=customer_id)

    async def charge_card(self, card_id: int, amount_in_cents: int,
                          iso_currency: str) -> schemas.ChargeResult:
        if isinstance(amount_in_cents, bool) or not isinstance(amount_in_cents, int) or amount_in_cents < 0:
            raise InvalidChargeError(
                "Amount must be a non-negative integer number of cents",
                operation="charge_card", identifier=card_id,
            )
        if not isinstance(iso_currency, str) or not CURRENCY_RE.fullmatch(iso_currency):
            raise InvalidChargeError(
                f"Invalid ISO currency code: {iso_currency!r}",
                operation="charge_card", identifier=card_id,
            )
        return await self._bounded(
            "charge_card", card_id, self._charge_card(card_id, amount_in_cents, iso_currency.lower())
        )

    async def _charge_card(self, card_id: int, amount_in_cents: int, currency: str) -> schemas.ChargeResult:
        card = await self._storage(crud.get_card, card_id)
        if card is None:
            raise CardNotFoundError(f"Card {card_id} not found", operation="charge_card", identifier=card_id)
        customer_id = await self._customer_for(card.user_id, "charge_card", CustomerResolutionError)

        result = await self._remote(
            self.backend.create_charge, amount_in_cents, currency, customer_id, card.remote_token
        )
        if not result.ok:
            logger.info("charge_rejected", card_id=card_id, amount=amount_in_cents, currency=currency)
            raise self._rejected(result, "charge_card", card_id)

        charge = result.value
        logger.info("card_charged", card_id=card_id, charge_id=charge.id,
                    amount=amount_in_cents, currency=currency)
        return charge

    async def delete_card(self, card_id: int, user_id: int) -> None:
        return await self._bounded("delete_card", card_id, self._delete_card(card_id, user_id))

    async def _delete_card(self, card_id: int, user_id: int) -> None:
        card = await self._storage(crud.get_card, card_id)
        if card is None:
            logger.debug("card_delete_lookup_failed", card_id=card_id)
            raise CardNotFoundError(f"Card {card_id} not found", operation="delete_card", identifier=card_id)
        if card.user_id != user_id:
            logger.debug("card_delete_not_owner", card_id=card_id, user_id=user_id)
            raise OwnershipMismatchError(
                f"Card {card_id} does not belong to user {user_id}",
                operation="delete_card", identifier=card_id,
            )
        customer_id = await self._customer_for(user_id, "delete_card", CustomerResolutionError)

        deleted = await self._storage(crud.delete_card_for_user, card_id, user_id)
        if deleted == 0:
            # Removed (or never owned) between the lookup and the delete.
            still_there = await self._storage(crud.get_card, card_id)
            if still_there is None:
                raise CardNotFoundError(f"Card {card_id} not found", operation="delete_card", identifier=card_id)
            raise OwnershipMismatchError(
                f"Card {card_id} does not belong to user {user_id}",
                operation="delete_card", identifier=card_id,
            )

        # The local row is gone; from here on the remote reference must reach
        # the caller if the remote delete is not confirmed.
        remove = asyncio.ensure_future(
            self._remote(self.backend.delete_card_source, card.remote_token, customer_id)
        )
        try:
            result = await asyncio.shield(remove)
        except asyncio.CancelledError:
            logger.error("card_delete_remote_unconfirmed", card_id=card_id, user_id=user_id,
                         customer_id=customer_id, remote_token=card.remote_token)
            raise RemoteCleanupError(
                f"Card {card_id} was deleted locally but the payment backend did not confirm "
                f"removing it before the operation was cancelled",
                remote_token=card.remote_token, customer_id=customer_id,
                operation="delete_card", identifier=card_id,
            )
        if not result.ok:
            try:
                message = decode_remote_error(result.error)
            except MalformedRemoteErrorError:
                message = str(result.error)
            logger.error("card_delete_remote_failed", card_id=card_id, user_id=user_id,
                         customer_id=customer_id, remote_token=card.remote_token)
            raise RemoteCleanupError(
                f"Card {card_id} was deleted locally but the payment backend kept it: {message}",
                remote_token=card.remote_token, customer_id=customer_id,
                operation="delete_card", identifier=card_id,
            )
        logger.info("card_deleted", card_id=card_id, user_id=user_id)

    async def close(self) -> None:
        await run_in_threadpool(self.backend.close)


def open_card_conn(backend: PaymentBackend, session_factory: SessionFactory,
                   route_installer: Any = None) -> CardConn:
    # Imported here: the routes module is only needed when a driver opens.
    from paydriver.apis.v1.endpoints.cards import install_card_routes
    from paydriver.core.config import settings

    conn = CardConn(backend, session_factory, settings.PAYMENT_OPERATION_TIMEOUT_SECONDS)
    if route_installer is not None:
        install_card_routes(route_installer, conn, backend.name)
    return conn
