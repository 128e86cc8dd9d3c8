# paydriver/crud.py
"""
Storage queries used by the card lifecycle. Each function is a single
statement against one row: select-one-by-id, select-scalar-by-id,
insert-returning-id, and delete-by-two-keys, plus the one-shot update that
binds a remote customer id.
"""
from typing import Optional, Tuple

from sqlalchemy.orm import Session

from . import models, schemas


# --- User ---

def get_user(db: Session, user_id: int) -> Optional[models.User]:
    return db.query(models.User).filter(models.User.id == user_id).first()


def get_remote_customer_id(db: Session, user_id: int) -> Tuple[bool, Optional[str]]:
    """Return (user_exists, remote_customer_id)."""
    row = db.query(models.User.remote_customer_id).filter(models.User.id == user_id).first()
    if row is None:
        return False, None
    return True, row[0]


def bind_remote_customer_id(db: Session, user_id: int, remote_customer_id: str) -> bool:
    # Only binds a user that has no remote customer yet. False means the
    # user was bound (or removed) in the meantime.
    updated = (
        db.query(models.User)
        .filter(models.User.id == user_id, models.User.remote_customer_id.is_(None))
        .update({models.User.remote_customer_id: remote_customer_id}, synchronize_session=False)
    )
    db.commit()
    return updated == 1


# --- Card ---

def get_card(db: Session, card_id: int) -> Optional[models.Card]:
    return db.query(models.Card).filter(models.Card.id == card_id).first()


def create_card(db: Session, user_id: int, params: schemas.CardParams,
                remote_token: str, zip5_hash: str) -> int:
    db_card = models.Card(
        user_id=user_id,
        last4=params.last4,
        cardholder_name=params.cardholder_name,
        exp_month=params.exp_month,
        exp_year=params.exp_year,
        brand=params.brand,
        remote_token=remote_token,
        zip5_hash=zip5_hash,
    )
    db.add(db_card)
    db.commit()
    db.refresh(db_card)
    return db_card.id


def delete_card_for_user(db: Session, card_id: int, user_id: int) -> int:
    deleted = (
        db.query(models.Card)
        .filter(models.Card.id == card_id, models.Card.user_id == user_id)
        .delete(synchronize_session=False)
    )
    db.commit()
    return deleted
