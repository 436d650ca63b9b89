from uuid import UUID
from fastapi import APIRouter, HTTPException, Query, status
from saledetail.repositories.outbox_repository import OutboxRepository
from saledetail.schemas.response import SuccessResponse

router = APIRouter()


@router.get("/failed", response_model=SuccessResponse)
async def list_failed_events_endpoint(limit: int = Query(100, ge=1, le=1000)):
    """Dead-letter list: events that ran out of publish attempts."""
    events = await OutboxRepository().fetch_failed(limit)
    return SuccessResponse(data=[e.model_dump(mode="json") for e in events])


@router.get("/{event_id}", response_model=SuccessResponse)
async def get_event_endpoint(event_id: UUID):
    event = await OutboxRepository().get(event_id)
    if event is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Outbox event not found")
    return SuccessResponse(data=event.model_dump(mode="json"))


@router.post("/{event_id}/requeue", response_model=SuccessResponse)
async def requeue_event_endpoint(event_id: UUID):
    """Sends a FAILED event back to PENDING so the dispatcher retries it."""
    if not await OutboxRepository().requeue(event_id):
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Only FAILED events can be requeued")
    return SuccessResponse(data={"id": str(event_id), "status": "PENDING"})
