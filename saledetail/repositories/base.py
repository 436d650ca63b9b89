from typing import Any, Optional

from saledetail.core.exceptions import StaleRepositoryError, TransactionRequiredError


class BoundRepository:
    """
    Repository bound to one database connection.

    `conn` is the transactional connection handed out by a UnitOfWork, or None for
    the default autocommit connection. Once the owning transaction ends the
    repository is invalidated and refuses further use.
    """

    def __init__(self, conn: Any = None):
        self._conn = conn
        self._stale = False

    @property
    def conn(self) -> Any:
        self._ensure_usable()
        return self._conn

    def invalidate(self) -> None:
        self._conn = None
        self._stale = True

    def _ensure_usable(self) -> None:
        if self._stale:
            raise StaleRepositoryError(
                f"{type(self).__name__} belongs to a finished transaction; get a new one from the unit of work."
            )

    def _require_transaction(self, operation: str) -> Any:
        conn = self.conn
        if conn is None:
            raise TransactionRequiredError(f"{type(self).__name__}.{operation} must run inside a transaction.")
        return conn

    def _using(self, queryset):
        """Routes a queryset through the bound connection, if any."""
        conn = self.conn
        return queryset if conn is None else queryset.using_db(conn)
