# paydriver/schemas.py
from pydantic import BaseModel, ConfigDict, Field
from typing import Optional

# --- Card Schemas ---


class CardParams(BaseModel):
    """Card details as submitted by the client after tokenizing with the backend."""
    model_config = ConfigDict(populate_by_name=True)

    service_token: str = Field(..., alias="serviceToken", min_length=1)
    cardholder_name: str = Field(..., alias="cardholderName", min_length=1)
    last4: str = Field(..., pattern=r"^\d{4}$")
    brand: str = Field(..., min_length=1)
    exp_month: int = Field(..., alias="expMonth", ge=1, le=12)
    exp_year: int = Field(..., alias="expYear", ge=1)
    # Length is checked by the zip hashing helper so that a short zip
    # surfaces as InvalidZipError rather than a validation error.
    address_zip: str = Field(..., alias="addressZip")


class CardSubmit(CardParams):
    user_id: int = Field(..., alias="userID")


class CardCreated(BaseModel):
    id: int


class CardDelete(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: int
    user_id: int = Field(..., alias="userID")


# --- Charge Schemas ---


class ChargeResult(BaseModel):
    id: str
    amount: int
    currency: str
    status: str
    paid: bool = True
    customer_id: Optional[str] = None
    source: Optional[str] = None

# --- Error Schemas ---


class ErrorResponse(BaseModel):
    detail: str
    code: str
