import asyncio
from typing import Dict, Optional

import asyncpg
from tortoise.exceptions import (
    DBConnectionError,
    IncompleteInstanceError,
    IntegrityError,
    NotExistOrMultiple,
    ObjectDoesNotExistError,
    OperationalError,
    TransactionManagementError,
)


class SaleDetailError(Exception):
    """Base class for all errors raised by the service."""


class SaleDetailNotFoundError(SaleDetailError):
    def __init__(self, sale_detail_id: int):
        self.sale_detail_id = sale_detail_id
        super().__init__(f"Sale detail {sale_detail_id} not found.")


class DomainValidationError(SaleDetailError):
    """Raised when a sale detail breaks a business rule. `errors` maps field -> message."""

    def __init__(self, message: str, errors: Optional[Dict[str, str]] = None):
        self.errors = errors or {}
        super().__init__(message)


# ----------- Unit of Work -----------

class TransactionError(SaleDetailError):
    pass


class TransactionRequiredError(TransactionError):
    """A write was attempted on a repository that is not bound to a transaction."""


class TransactionAlreadyOpenError(TransactionError):
    pass


class NoActiveTransactionError(TransactionError):
    pass


class StaleRepositoryError(TransactionError):
    """The repository belonged to a transaction that has been committed or rolled back."""


# ----------- Messaging -----------

class PublishError(SaleDetailError):
    pass


class MessageValidationError(SaleDetailError):
    """Inbound message is malformed. It is never retried."""


TRANSIENT_ERRORS = (
    DBConnectionError,
    OperationalError,
    TransactionManagementError,
    ConnectionError,
    asyncio.TimeoutError,
)

# Tortoise reports these as OperationalError subclasses, but a retry fails the same way
PERMANENT_ERRORS = (
    IntegrityError,
    NotExistOrMultiple,
    ObjectDoesNotExistError,
    IncompleteInstanceError,
)

# Driver errors that Tortoise wraps in a plain OperationalError
PERMANENT_DRIVER_ERRORS = (
    asyncpg.exceptions.DataError,
    asyncpg.exceptions.SyntaxOrAccessError,
    asyncpg.exceptions.IntegrityConstraintViolationError,
)


def is_transient(exc: BaseException) -> bool:
    """True when retrying the same message later may succeed."""
    if isinstance(exc, PERMANENT_ERRORS):
        return False
    if isinstance(exc, OperationalError) and isinstance(exc.__cause__, PERMANENT_DRIVER_ERRORS):
        return False
    return isinstance(exc, TRANSIENT_ERRORS)
