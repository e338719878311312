from datetime import date
from typing import Any, Optional

from fastapi import APIRouter, Depends, HTTPException, Path, Query
from pydantic import BaseModel, Field

from macrocoach.api.coach import get_memory_store
from macrocoach.core.memory import MemorySearchQuery, MemoryStore, Message

router = APIRouter(prefix="/chat", tags=["chat"])


class MessageItem(BaseModel):
    id: str
    role: str
    content: str
    timestamp: str
    rich_content: list[dict[str, Any]] = Field(default_factory=list)
    metadata: dict[str, Any] = Field(default_factory=dict)


class ConversationDatesResponse(BaseModel):
    dates: list[date]


class ConversationResponse(BaseModel):
    date: date
    topics: list[str]
    messages: list[MessageItem]


class SearchResultItem(BaseModel):
    date: str
    score: int
    summary: Optional[str] = None
    relevant_messages: list[MessageItem]


class SearchResponse(BaseModel):
    query: str
    items: list[SearchResultItem]


class SummaryResponse(BaseModel):
    date: str
    topics: list[str]
    summary: str
    key_decisions: list[str]
    plans_created: list[str]


class PlanItem(BaseModel):
    id: Optional[int] = None
    type: str
    name: str
    details: dict[str, Any]
    created_date: str
    valid_until: Optional[str] = None
    status: str


class PlanListResponse(BaseModel):
    items: list[PlanItem]


def _to_item(message: Message) -> MessageItem:
    return MessageItem(**message.to_dict())


@router.get("/dates", response_model=ConversationDatesResponse)
def conversation_dates(memory: MemoryStore = Depends(get_memory_store)) -> ConversationDatesResponse:
    return ConversationDatesResponse(dates=memory.get_conversation_dates())


@router.get("/conversations/{day}", response_model=ConversationResponse)
def conversation_for_date(
    day: date = Path(...),
    memory: MemoryStore = Depends(get_memory_store),
) -> ConversationResponse:
    session = memory.get_conversation(day)
    if session is None:
        raise HTTPException(status_code=404, detail="Conversation not found")
    return ConversationResponse(
        date=session.date,
        topics=list(session.topics),
        messages=[_to_item(message) for message in session.messages],
    )


@router.get("/search", response_model=SearchResponse)
def search_history(
    q: str = Query(..., min_length=1, max_length=200),
    limit: int = Query(default=10, ge=1, le=50),
    start: Optional[date] = Query(default=None),
    end: Optional[date] = Query(default=None),
    memory: MemoryStore = Depends(get_memory_store),
) -> SearchResponse:
    results = memory.search_memory(MemorySearchQuery(query=q, limit=limit, start_date=start, end_date=end))
    return SearchResponse(query=q, items=[SearchResultItem(**result.to_dict()) for result in results])


@router.get("/summaries/{day}", response_model=SummaryResponse)
def conversation_summary(
    day: date = Path(...),
    memory: MemoryStore = Depends(get_memory_store),
) -> SummaryResponse:
    summary = memory.get_summary(day)
    if summary is None:
        raise HTTPException(status_code=404, detail="Conversation not found")
    return SummaryResponse(**summary.to_dict())


@router.get("/plans", response_model=PlanListResponse)
def active_plans(
    plan_type: Optional[str] = Query(default=None, alias="type", min_length=1, max_length=32),
    memory: MemoryStore = Depends(get_memory_store),
) -> PlanListResponse:
    plans = memory.get_active_plans(plan_type=plan_type)
    return PlanListResponse(items=[PlanItem(**plan.to_dict()) for plan in plans])


@router.delete("/plans/{plan_id}", status_code=204)
def invalidate_plan(
    plan_id: int = Path(..., ge=1),
    memory: MemoryStore = Depends(get_memory_store),
) -> None:
    if not memory.invalidate_plan(plan_id):
        raise HTTPException(status_code=404, detail="Plan not found")
