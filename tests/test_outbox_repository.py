import json
import uuid
import pytest

from saledetail.core.exceptions import TransactionRequiredError
from saledetail.events.outbox_utility import build_outbox_event
from saledetail.models import OutboxStatus
from saledetail.repositories.outbox_repository import OutboxRepository
from saledetail.repositories.unit_of_work import UnitOfWork
from saledetail.schemas.outbox import OutboxRecord


async def _stage(routing_key="saledetail.created", aggregate_id="S1", record=None):
    async with UnitOfWork() as uow:
        return await uow.outbox.stage(record or build_outbox_event(routing_key, aggregate_id, {"sale_id": aggregate_id}))


class TestStage:

    @pytest.mark.asyncio
    async def test_stage_inserts_pending_with_zero_attempts(self, db):
        staged = await _stage()

        stored = await OutboxRepository().get(staged.id)
        assert stored.status == OutboxStatus.PENDING
        assert stored.attempt_count == 0
        assert stored.published_at is None
        assert stored.created_at is not None
        assert json.loads(stored.payload)["sale_id"] == "S1"

    @pytest.mark.asyncio
    async def test_stage_generates_id_when_absent(self, db):
        staged = await _stage(record=OutboxRecord(routing_key="saledetail.created", payload="{}"))
        assert isinstance(staged.id, uuid.UUID)

    @pytest.mark.asyncio
    async def test_stage_requires_transaction(self, db):
        with pytest.raises(TransactionRequiredError):
            await OutboxRepository().stage(build_outbox_event("saledetail.created", "S1", {}))


class TestDispatchTransitions:

    @pytest.mark.asyncio
    async def test_fetch_pending_is_oldest_first_and_limited(self, db):
        first = await _stage(aggregate_id="A")
        second = await _stage(aggregate_id="B")
        await _stage(aggregate_id="C")

        pending = await OutboxRepository().fetch_pending(limit=2)
        assert [e.id for e in pending] == [first.id, second.id]

    @pytest.mark.asyncio
    async def test_mark_published_stamps_once(self, db):
        repo = OutboxRepository()
        staged = await _stage()

        assert await repo.mark_published(staged.id) is True
        published = await repo.get(staged.id)
        assert published.status == OutboxStatus.PUBLISHED
        assert published.published_at is not None

        assert await repo.mark_published(staged.id) is False
        assert (await repo.get(staged.id)).published_at == published.published_at
        assert await repo.fetch_pending() == []

    @pytest.mark.asyncio
    async def test_increment_attempt_keeps_pending(self, db):
        repo = OutboxRepository()
        staged = await _stage()

        for expected in (1, 2, 3):
            assert await repo.increment_attempt(staged.id, "broker down") == expected

        stored = await repo.get(staged.id)
        assert stored.status == OutboxStatus.PENDING
        assert stored.attempt_count == 3
        assert stored.published_at is None
        assert stored.error_log == "broker down"

    @pytest.mark.asyncio
    async def test_failed_events_leave_pending_scan_and_can_be_requeued(self, db):
        repo = OutboxRepository()
        staged = await _stage()
        await repo.increment_attempt(staged.id)

        assert await repo.mark_failed(staged.id) is True
        assert await repo.fetch_pending() == []
        assert [e.id for e in await repo.fetch_failed()] == [staged.id]

        assert await repo.requeue(staged.id) is True
        requeued = await repo.get(staged.id)
        assert requeued.status == OutboxStatus.PENDING
        assert requeued.attempt_count == 0
        assert await repo.requeue(staged.id) is False
