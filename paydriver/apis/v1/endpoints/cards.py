# paydriver/apis/v1/endpoints/cards.py
"""
Card submission and deletion routes. A driver installs these against the
host's app when it is opened, bound to the Conn it just built.
"""
from typing import TYPE_CHECKING

import structlog
from fastapi import APIRouter, Response, status

from paydriver import schemas

if TYPE_CHECKING:
    from paydriver.payments.base import Conn

logger = structlog.get_logger(__name__)

CARDS_PATH = "/api/cards"


def build_router(conn: "Conn") -> APIRouter:
    router = APIRouter()

    @router.post("", response_model=schemas.CardCreated,
                 responses={400: {"model": schemas.ErrorResponse}, 402: {"model": schemas.ErrorResponse}})
    async def submit_card(card_in: schemas.CardSubmit):
        """
        Store a card tokenized client-side. As little as possible is kept on
        the server: the card number never reaches it, and the zip is hashed.
        """
        logger.debug("card_submit", user_id=card_in.user_id)
        user = await conn.get_user(card_in.user_id)
        card_id = await conn.save_card(card_in, user)
        return schemas.CardCreated(id=card_id)

    @router.delete("", responses={403: {"model": schemas.ErrorResponse}, 404: {"model": schemas.ErrorResponse}})
    async def delete_card(card_in: schemas.CardDelete):
        logger.debug("card_delete", card_id=card_in.id, user_id=card_in.user_id)
        await conn.delete_card(card_in.id, card_in.user_id)
        return Response(status_code=status.HTTP_200_OK)

    return router


def install_card_routes(route_installer, conn: "Conn", backend_name: str) -> None:
    route_installer.include_router(build_router(conn), prefix=CARDS_PATH, tags=[f"cards:{backend_name}"])
