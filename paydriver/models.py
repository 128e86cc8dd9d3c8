# paydriver/models.py
from sqlalchemy import (
    Column,
    Integer,
    String,
    DateTime,
    ForeignKey,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from paydriver.database import Base


class User(Base):
    __tablename__ = "users"
    id = Column(Integer, primary_key=True, index=True)
    email = Column(String, unique=True, index=True)
    # Set once by Conn.register_user
    remote_customer_id = Column(String, nullable=True, unique=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    cards = relationship("Card", back_populates="owner")


class Card(Base):
    """
    A stored payment instrument. Only non-sensitive derivatives live here:
    the card number and CVV never reach the server, and the billing zip is
    kept as a bcrypt hash of its first five characters.
    """
    __tablename__ = "cards"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), index=True, nullable=False)
    last4 = Column(String(4), nullable=False)
    cardholder_name = Column(String, nullable=False)
    exp_month = Column(Integer, nullable=False)
    exp_year = Column(Integer, nullable=False)
    brand = Column(String, nullable=False)
    remote_token = Column(String, nullable=False)
    zip5_hash = Column(String, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    owner = relationship("User", back_populates="cards")
