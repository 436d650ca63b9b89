import logging
from typing import Optional
from fastapi import APIRouter, status
from saledetail.schemas.response import SuccessResponse
from saledetail.schemas.sale_detail import SaleDetailCreateRequest, SaleDetailResponse, SaleDetailUpdateRequest
from saledetail.services.sale_detail_service import SaleDetailService

router = APIRouter()
log = logging.getLogger("uvicorn")

service = SaleDetailService()

# Domain errors (not found, validation) are turned into responses by the
# handlers registered in core/exception_handlers.py.


@router.post("", status_code=status.HTTP_201_CREATED, response_model=SuccessResponse)
async def create_sale_detail_endpoint(request_data: SaleDetailCreateRequest, actor_id: Optional[int] = None):
    """Registers a sale detail and queues its 'saledetail.created' event."""
    record = await service.register(request_data, actor_id=actor_id)
    log.info(f"Sale detail {record.id} registered for sale {record.sale_id}.")
    return SuccessResponse(data=SaleDetailResponse.from_record(record).model_dump(mode="json"))


@router.get("", response_model=SuccessResponse)
async def list_sale_details_endpoint():
    records = await service.list_all()
    return SuccessResponse(data=[SaleDetailResponse.from_record(r).model_dump(mode="json") for r in records])


@router.get("/sale/{sale_id}", response_model=SuccessResponse)
async def list_sale_details_by_sale_endpoint(sale_id: str):
    """Lists the live details of one sale."""
    records = await service.list_by_sale(sale_id)
    return SuccessResponse(data=[SaleDetailResponse.from_record(r).model_dump(mode="json") for r in records])


@router.get("/{sale_detail_id}", response_model=SuccessResponse)
async def get_sale_detail_endpoint(sale_detail_id: int):
    record = await service.get(sale_detail_id)
    return SuccessResponse(data=SaleDetailResponse.from_record(record).model_dump(mode="json"))


@router.put("/{sale_detail_id}", response_model=SuccessResponse)
async def update_sale_detail_endpoint(sale_detail_id: int, payload: SaleDetailUpdateRequest, actor_id: Optional[int] = None):
    """Updates quantity, price and description, and queues 'saledetail.updated'."""
    record = await service.update(sale_detail_id, payload, actor_id=actor_id)
    log.info(f"Sale detail {sale_detail_id} updated.")
    return SuccessResponse(data=SaleDetailResponse.from_record(record).model_dump(mode="json"))


@router.delete("/{sale_detail_id}", response_model=SuccessResponse)
async def delete_sale_detail_endpoint(sale_detail_id: int, actor_id: Optional[int] = None):
    await service.delete(sale_detail_id, actor_id=actor_id)
    log.info(f"Sale detail {sale_detail_id} deleted.")
    return SuccessResponse(data={"id": sale_detail_id, "deleted": True})
