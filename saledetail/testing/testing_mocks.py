import json
from typing import Any, Dict, List, Optional
from unittest.mock import AsyncMock


class FakeConnection:
    """Transaction-bound connection as returned by tortoise's in_transaction()."""

    def __init__(self, journal: List[str], fail_commit: bool = False):
        self.journal = journal
        self.fail_commit = fail_commit
        self._finalized = False

    async def commit(self):
        if self.fail_commit:
            self.fail_commit = False
            raise ConnectionError("commit failed")
        self.journal.append("commit")
        self._finalized = True

    async def rollback(self):
        self.journal.append("rollback")
        self._finalized = True


class FakeTransaction:
    """Mock for tortoise.transactions.in_transaction to bypass a real DB context."""

    def __init__(self, journal: List[str], fail_commit: bool = False):
        self.journal = journal
        self.connection = FakeConnection(journal, fail_commit=fail_commit)

    async def __aenter__(self):
        self.journal.append("begin")
        return self.connection

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        # Mirrors tortoise: finish the transaction unless already finalized, then release
        try:
            if not self.connection._finalized:
                if exc_type is None:
                    await self.connection.commit()
                else:
                    await self.connection.rollback()
        finally:
            self.journal.append("release")


class FakeTransactionFactory:
    """Stands in for the transaction factory of a UnitOfWork and records what happened."""

    def __init__(self, fail_commit: bool = False):
        self.journal: List[str] = []
        self.fail_commit = fail_commit
        self.transactions: List[FakeTransaction] = []

    def __call__(self, connection_name: Optional[str] = None) -> FakeTransaction:
        transaction = FakeTransaction(self.journal, fail_commit=self.fail_commit)
        self.transactions.append(transaction)
        return transaction


class FakeIncomingMessage:
    """Minimal aio_pika incoming message: body, routing key and settlement calls."""

    def __init__(
        self,
        body: Any,
        routing_key: str,
        redelivered: bool = False,
        headers: Optional[Dict[str, Any]] = None,
    ):
        if isinstance(body, (dict, list)):
            body = json.dumps(body)
        if isinstance(body, str):
            body = body.encode("utf-8")
        self.body = body
        self.routing_key = routing_key
        self.redelivered = redelivered
        self.headers = headers or {}
        self.ack = AsyncMock()
        self.nack = AsyncMock()
        self.reject = AsyncMock()
