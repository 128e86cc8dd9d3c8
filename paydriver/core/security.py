# paydriver/core/security.py
from passlib.context import CryptContext

from paydriver.core.config import settings
from paydriver.exceptions import InvalidZipError

ZIP_PREFIX_LENGTH = 5

# Zip hashing. The plaintext zip never leaves the request that supplied it.
zip_context = CryptContext(
    schemes=["bcrypt"],
    deprecated="auto",
    bcrypt__rounds=settings.ZIP_HASH_ROUNDS,
)


def zip5(address_zip: str) -> str:
    """Return the first five characters of a billing zip, or raise InvalidZipError."""
    value = (address_zip or "").strip()
    if len(value) < ZIP_PREFIX_LENGTH:
        raise InvalidZipError(
            f"Billing zip must have at least {ZIP_PREFIX_LENGTH} characters",
            operation="hash_zip5",
        )
    return value[:ZIP_PREFIX_LENGTH]


def hash_zip5(address_zip: str) -> str:
    return zip_context.hash(zip5(address_zip))


def verify_zip5(address_zip: str, hashed_zip: str) -> bool:
    # Used for fraud matching against a stored card's zip5_hash.
    try:
        candidate = zip5(address_zip)
    except InvalidZipError:
        return False
    return zip_context.verify(candidate, hashed_zip)
