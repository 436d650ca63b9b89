import pytest
from unittest.mock import AsyncMock, patch
from decimal import Decimal

from saledetail.core.exceptions import (
    NoActiveTransactionError,
    StaleRepositoryError,
    TransactionAlreadyOpenError,
    TransactionRequiredError,
)
from saledetail.events.outbox_utility import build_outbox_event
from saledetail.models import OutboxEvent, OutboxStatus, SaleDetail
from saledetail.repositories.unit_of_work import UnitOfWork
from saledetail.schemas.sale_detail import SaleDetailRecord
from saledetail.testing.testing_mocks import FakeTransactionFactory


def _detail(sale_id="S1"):
    return SaleDetailRecord(
        sale_id=sale_id, medicine_id=7, quantity=2,
        unit_price=Decimal("3.50"), total_amount=Decimal("7.00"),
    )


class TestTransactionControl:

    @pytest.mark.asyncio
    async def test_begin_commit_uses_injected_factory(self):
        factory = FakeTransactionFactory()
        uow = UnitOfWork(transaction_factory=factory)

        await uow.begin()
        assert uow.is_active
        await uow.commit()

        assert factory.journal == ["begin", "commit", "release"]
        assert not uow.is_active

    @pytest.mark.asyncio
    async def test_nested_begin_is_refused(self):
        uow = UnitOfWork(transaction_factory=FakeTransactionFactory())
        await uow.begin()
        with pytest.raises(TransactionAlreadyOpenError):
            await uow.begin()

    @pytest.mark.asyncio
    async def test_commit_without_transaction_fails_fast(self):
        uow = UnitOfWork(transaction_factory=FakeTransactionFactory())
        with pytest.raises(NoActiveTransactionError):
            await uow.commit()

    @pytest.mark.asyncio
    async def test_rollback_without_transaction_is_noop(self):
        factory = FakeTransactionFactory()
        await UnitOfWork(transaction_factory=factory).rollback()
        assert factory.journal == []

    @pytest.mark.asyncio
    async def test_context_manager_rolls_back_and_reraises(self):
        factory = FakeTransactionFactory()
        with pytest.raises(RuntimeError):
            async with UnitOfWork(transaction_factory=factory):
                raise RuntimeError("boom")
        assert factory.journal == ["begin", "rollback", "release"]

    @pytest.mark.asyncio
    async def test_failed_commit_rolls_back(self):
        factory = FakeTransactionFactory(fail_commit=True)
        uow = UnitOfWork(transaction_factory=factory)
        await uow.begin()

        with pytest.raises(ConnectionError):
            await uow.commit()

        # Rolled back on the held connection, which is then released exactly once
        assert factory.journal == ["begin", "rollback", "release"]
        assert not uow.is_active


class TestRepositoryBinding:

    @pytest.mark.asyncio
    async def test_repositories_are_lazy_and_bound_to_transaction(self):
        factory = FakeTransactionFactory()
        uow = UnitOfWork(transaction_factory=factory)
        await uow.begin()

        repo = uow.outbox
        assert repo is uow.outbox
        assert repo.conn is factory.transactions[0].connection

    @pytest.mark.asyncio
    async def test_commit_invalidates_repositories(self):
        uow = UnitOfWork(transaction_factory=FakeTransactionFactory())
        await uow.begin()
        stale = uow.sale_details
        await uow.commit()

        with pytest.raises(StaleRepositoryError):
            await stale.create(_detail())
        assert uow.sale_details is not stale

    @pytest.mark.asyncio
    async def test_rollback_invalidates_repositories(self):
        uow = UnitOfWork(transaction_factory=FakeTransactionFactory())
        await uow.begin()
        stale = uow.outbox
        await uow.rollback()

        with pytest.raises(StaleRepositoryError):
            await stale.stage(build_outbox_event("saledetail.created", "S1", {}))

    @pytest.mark.asyncio
    async def test_writes_outside_transaction_fail_fast(self):
        uow = UnitOfWork(transaction_factory=FakeTransactionFactory())
        with pytest.raises(TransactionRequiredError):
            await uow.outbox.stage(build_outbox_event("saledetail.created", "S1", {}))
        with pytest.raises(TransactionRequiredError):
            await uow.sale_details.create(_detail())


class TestCoCommit:

    @pytest.mark.asyncio
    async def test_commit_makes_row_and_event_visible(self, db):
        async with UnitOfWork() as uow:
            created = await uow.sale_details.create(_detail())
            await uow.outbox.stage(build_outbox_event("saledetail.created", created.sale_id, {"sale_detail_id": created.id}))

        assert await SaleDetail.filter(id=created.id).count() == 1
        events = await OutboxEvent.all()
        assert len(events) == 1
        assert events[0].status == OutboxStatus.PENDING
        assert events[0].aggregate_id == "S1"

    @pytest.mark.asyncio
    async def test_rollback_discards_row_and_event(self, db):
        with pytest.raises(RuntimeError):
            async with UnitOfWork() as uow:
                await uow.sale_details.create(_detail())
                await uow.outbox.stage(build_outbox_event("saledetail.created", "S1", {}))
                raise RuntimeError("abort")

        assert await SaleDetail.all().count() == 0
        assert await OutboxEvent.all().count() == 0

    @pytest.mark.asyncio
    async def test_explicit_rollback_discards_both(self, db):
        uow = UnitOfWork()
        await uow.begin()
        await uow.sale_details.create(_detail())
        await uow.outbox.stage(build_outbox_event("saledetail.created", "S1", {}))
        await uow.rollback()

        assert await SaleDetail.all().count() == 0
        assert await OutboxEvent.all().count() == 0

    @pytest.mark.asyncio
    async def test_failed_commit_discards_row_and_frees_connection(self, db):
        uow = UnitOfWork()
        await uow.begin()
        await uow.sale_details.create(_detail())

        with patch.object(uow._conn, "commit", AsyncMock(side_effect=ConnectionError("connection lost"))):
            with pytest.raises(ConnectionError):
                await uow.commit()

        assert not uow.is_active
        assert await SaleDetail.all().count() == 0
        # The connection went back cleanly, so the next unit of work can commit
        async with UnitOfWork() as again:
            await again.sale_details.create(_detail("S2"))
        assert await SaleDetail.all().count() == 1
