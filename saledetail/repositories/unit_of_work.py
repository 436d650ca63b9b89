import logging
from typing import Any, Callable, Optional

from tortoise.transactions import in_transaction

from saledetail.core.exceptions import NoActiveTransactionError, TransactionAlreadyOpenError
from saledetail.repositories.outbox_repository import OutboxRepository
from saledetail.repositories.processed_event_repository import ProcessedEventRepository
from saledetail.repositories.sale_detail_repository import SaleDetailRepository

log = logging.getLogger("unit_of_work")


class _Rollback(Exception):
    """Handed to the transaction context to make it roll back instead of commit."""


class UnitOfWork:
    """
    Binds the repositories of one logical operation to a single transaction.

    The transaction factory is injected (defaults to Tortoise's `in_transaction`), so
    there is no global connection source. Repositories are created lazily and bound to
    whatever transaction is open at that moment; commit and rollback invalidate them.

    Usage:
        async with UnitOfWork() as uow:
            detail = await uow.sale_details.create(record)
            await uow.outbox.stage(event)
        # committed here, or rolled back if the block raised
    """

    def __init__(self, transaction_factory: Callable[..., Any] = in_transaction, connection_name: Optional[str] = None):
        self._transaction_factory = transaction_factory
        self._connection_name = connection_name
        self._context = None
        self._conn = None
        self._sale_details: Optional[SaleDetailRepository] = None
        self._outbox: Optional[OutboxRepository] = None
        self._processed_events: Optional[ProcessedEventRepository] = None

    # ----------- Repositories -----------

    @property
    def sale_details(self) -> SaleDetailRepository:
        if self._sale_details is None:
            self._sale_details = SaleDetailRepository(self._conn)
        return self._sale_details

    @property
    def outbox(self) -> OutboxRepository:
        if self._outbox is None:
            self._outbox = OutboxRepository(self._conn)
        return self._outbox

    @property
    def processed_events(self) -> ProcessedEventRepository:
        if self._processed_events is None:
            self._processed_events = ProcessedEventRepository(self._conn)
        return self._processed_events

    # ----------- Transaction control -----------

    @property
    def is_active(self) -> bool:
        return self._context is not None

    async def begin(self) -> None:
        """Opens a transaction. Nested begin is refused rather than silently joined."""
        if self._context is not None:
            raise TransactionAlreadyOpenError("A transaction is already open on this unit of work.")
        context = self._transaction_factory(self._connection_name)
        conn = await context.__aenter__()
        self._context = context
        self._conn = conn
        # Anything created before begin() was bound to no transaction
        self._reset_repositories()

    async def commit(self) -> None:
        if self._context is None:
            raise NoActiveTransactionError("commit() called without an open transaction.")
        context, conn = self._context, self._conn
        failure = None
        # Commit and any rollback run while the context still holds the connection
        try:
            await conn.commit()
        except Exception as exc:
            failure = exc
            log.error(f"Commit failed, rolling back: {exc}")
            try:
                await conn.rollback()
            except Exception:
                log.exception("Rollback after failed commit also failed")

        # The transaction is finalized here; exiting only releases the connection
        try:
            if failure is None:
                await context.__aexit__(None, None, None)
            else:
                await context.__aexit__(type(failure), failure, failure.__traceback__)
        finally:
            self._release()
        if failure is not None:
            raise failure

    async def rollback(self) -> None:
        if self._context is None:
            return
        context = self._context
        try:
            signal = _Rollback()
            await context.__aexit__(_Rollback, signal, None)
        finally:
            self._release()

    def _release(self) -> None:
        self._context = None
        self._conn = None
        self._reset_repositories()

    def _reset_repositories(self) -> None:
        for repository in (self._sale_details, self._outbox, self._processed_events):
            if repository is not None:
                repository.invalidate()
        self._sale_details = None
        self._outbox = None
        self._processed_events = None

    # ----------- Context manager -----------

    async def __aenter__(self) -> "UnitOfWork":
        await self.begin()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        if not self.is_active:
            return
        if exc_type is not None:
            await self.rollback()
        else:
            await self.commit()
