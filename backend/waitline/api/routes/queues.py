"""
Queue API routes.

Staff dashboard and chat flows drive the queue through these endpoints;
domain errors are translated by the error handler middleware.
"""
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, Field

from waitline.api.dependencies import get_queue_service
from waitline.models.queue import EntryStatus, Platform, QueueAggregate
from waitline.services.queue_service import QueueService


# Pydantic schemas
class CreateQueueRequest(BaseModel):
    """Create queue request."""
    merchant_id: str = Field(..., min_length=1)
    name: str = Field(default="Main queue", min_length=1, max_length=255)
    max_capacity: Optional[int] = Field(default=None, ge=1)
    average_service_time: Optional[int] = Field(default=None, ge=1, description="Minutes per party")
    accepting_customers: bool = True


class JoinQueueRequest(BaseModel):
    """Customer join request."""
    customer_id: str = Field(..., min_length=1)
    customer_name: str = Field(..., min_length=1, max_length=255)
    customer_phone: str = Field(..., min_length=1, max_length=32)
    party_size: int = Field(default=1, ge=1, le=50)
    notes: str = ""
    platform: Platform = Platform.WEB
    service_type: str = "dine-in"
    special_requests: str = ""
    session_id: Optional[str] = None


class CompleteRequest(BaseModel):
    """Completion outcome; defaults to completed."""
    resulting_status: EntryStatus = EntryStatus.COMPLETED


class CodeRequest(BaseModel):
    """Verification code presented at the host stand."""
    code: str = Field(..., min_length=4, max_length=4)


class AcceptingRequest(BaseModel):
    """Accepting state; omit to toggle."""
    accepting: Optional[bool] = None


class EntryResponse(BaseModel):
    """Queue entry response schema."""
    id: str
    customer_id: str
    customer_name: str
    customer_phone: str
    position: int
    status: EntryStatus
    platform: Platform
    service_type: str
    party_size: int
    notes: str
    special_requests: str
    session_id: Optional[str] = None
    estimated_wait_time: int
    joined_at: datetime
    called_at: Optional[datetime] = None
    served_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    requeued_at: Optional[datetime] = None
    notification_count: int = 0
    verification_code: Optional[str] = None

    model_config = {"from_attributes": True}


class QueueResponse(BaseModel):
    """Queue response schema."""
    id: str
    merchant_id: str
    name: str
    max_capacity: int
    average_service_time: int
    accepting_customers: bool
    is_active: bool
    current_serving: int
    current_length: int
    total_served: int
    no_show_count: int
    entries: List[EntryResponse] = []

    @classmethod
    def from_queue(cls, queue: QueueAggregate, include_entries: bool = True) -> "QueueResponse":
        return cls(
            id=queue.id,
            merchant_id=queue.merchant_id,
            name=queue.name,
            max_capacity=queue.max_capacity,
            average_service_time=queue.average_service_time,
            accepting_customers=queue.accepting_customers,
            is_active=queue.is_active,
            current_serving=queue.current_serving,
            current_length=queue.current_length,
            total_served=queue.analytics.total_served,
            no_show_count=queue.analytics.no_show_count,
            entries=[EntryResponse.model_validate(e) for e in queue.entries] if include_entries else [],
        )


class CallNextResponse(BaseModel):
    called: bool
    entry: Optional[EntryResponse] = None


class AcceptingResponse(BaseModel):
    accepting_customers: bool


class StatsResponse(BaseModel):
    """Queue statistics response."""
    waiting_count: int
    active_count: int
    served_today: int
    no_shows_today: int
    average_wait_time: float

    model_config = {"from_attributes": True}


# Router
router = APIRouter(prefix="/queues", tags=["queues"])


@router.post("", response_model=QueueResponse, status_code=status.HTTP_201_CREATED)
def create_queue(
    request: CreateQueueRequest,
    service: QueueService = Depends(get_queue_service),
) -> QueueResponse:
    """Create an empty queue for a merchant."""
    queue = service.create_queue(
        merchant_id=request.merchant_id,
        name=request.name,
        max_capacity=request.max_capacity,
        average_service_time=request.average_service_time,
        accepting_customers=request.accepting_customers,
    )
    return QueueResponse.from_queue(queue)


@router.get("", response_model=List[QueueResponse])
def list_queues(
    merchant_id: Optional[str] = Query(None, description="Filter by merchant"),
    service: QueueService = Depends(get_queue_service),
) -> List[QueueResponse]:
    """List queues without their entries."""
    return [
        QueueResponse.from_queue(queue, include_entries=False)
        for queue in service.list_queues(merchant_id)
    ]


@router.get("/{queue_id}", response_model=QueueResponse)
def get_queue(
    queue_id: str,
    service: QueueService = Depends(get_queue_service),
) -> QueueResponse:
    return QueueResponse.from_queue(service.get_queue(queue_id))


@router.get("/{queue_id}/stats", response_model=StatsResponse)
def get_stats(
    queue_id: str,
    service: QueueService = Depends(get_queue_service),
) -> StatsResponse:
    """Waiting count, today's served/no-show counts and average wait minutes."""
    return StatsResponse.model_validate(service.get_stats(queue_id))


@router.post("/{queue_id}/entries", response_model=EntryResponse, status_code=status.HTTP_201_CREATED)
async def join_queue(
    queue_id: str,
    request: JoinQueueRequest,
    service: QueueService = Depends(get_queue_service),
) -> EntryResponse:
    """
    Add a customer to the end of the line.

    Returns 409 when the queue is full or not accepting customers.
    """
    entry = await service.add_customer(queue_id, **request.model_dump())
    return EntryResponse.model_validate(entry)


@router.post("/{queue_id}/call-next", response_model=CallNextResponse)
async def call_next(
    queue_id: str,
    service: QueueService = Depends(get_queue_service),
) -> CallNextResponse:
    """Call the customer who has waited longest."""
    entry = await service.call_next(queue_id)
    if entry is None:
        return CallNextResponse(called=False)
    return CallNextResponse(called=True, entry=EntryResponse.model_validate(entry))


@router.post("/{queue_id}/entries/{entry_id}/call", response_model=EntryResponse)
async def call_specific(
    queue_id: str,
    entry_id: str,
    service: QueueService = Depends(get_queue_service),
) -> EntryResponse:
    """Call a specific waiting customer out of order."""
    return EntryResponse.model_validate(await service.call_specific(queue_id, entry_id))


@router.post("/{queue_id}/entries/{entry_id}/serve", response_model=EntryResponse)
async def mark_serving(
    queue_id: str,
    entry_id: str,
    service: QueueService = Depends(get_queue_service),
) -> EntryResponse:
    return EntryResponse.model_validate(await service.mark_serving(queue_id, entry_id))


@router.post("/{queue_id}/entries/{entry_id}/complete", response_model=EntryResponse)
async def complete_service(
    queue_id: str,
    entry_id: str,
    request: Optional[CompleteRequest] = None,
    service: QueueService = Depends(get_queue_service),
) -> EntryResponse:
    resulting_status = request.resulting_status if request else EntryStatus.COMPLETED
    entry = await service.complete_service(queue_id, entry_id, resulting_status)
    return EntryResponse.model_validate(entry)


@router.post("/{queue_id}/entries/{entry_id}/cancel", response_model=EntryResponse)
async def cancel_entry(
    queue_id: str,
    entry_id: str,
    service: QueueService = Depends(get_queue_service),
) -> EntryResponse:
    """Remove an active customer from the line."""
    return EntryResponse.model_validate(await service.remove_customer(queue_id, entry_id))


@router.post("/{queue_id}/entries/{entry_id}/requeue", response_model=EntryResponse)
async def requeue(
    queue_id: str,
    entry_id: str,
    service: QueueService = Depends(get_queue_service),
) -> EntryResponse:
    """Send a completed customer to the back of the line."""
    return EntryResponse.model_validate(await service.requeue(queue_id, entry_id))


@router.post("/{queue_id}/verify", response_model=EntryResponse)
def verify_code(
    queue_id: str,
    request: CodeRequest,
    service: QueueService = Depends(get_queue_service),
) -> EntryResponse:
    """Look up the called customer holding a verification code."""
    return EntryResponse.model_validate(service.verify_code(queue_id, request.code))


@router.post("/{queue_id}/claim", response_model=EntryResponse)
async def claim(
    queue_id: str,
    request: CodeRequest,
    service: QueueService = Depends(get_queue_service),
) -> EntryResponse:
    """Verify a code and complete the matching entry."""
    return EntryResponse.model_validate(await service.claim(queue_id, request.code))


@router.post("/{queue_id}/accepting", response_model=AcceptingResponse)
async def set_accepting(
    queue_id: str,
    request: AcceptingRequest,
    service: QueueService = Depends(get_queue_service),
) -> AcceptingResponse:
    """Open, close or toggle the queue for new customers."""
    accepting = await service.set_accepting(queue_id, request.accepting)
    return AcceptingResponse(accepting_customers=accepting)
