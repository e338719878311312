import logging
from typing import Any, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from macrocoach.core.context_aggregator import ContextAggregator
from macrocoach.core.memory import MemoryStore
from macrocoach.core.personas import PersonaId, get_all_personas, get_persona, is_persona_available
from macrocoach.db.session import get_db
from macrocoach.db.stores import SqlContextSources, SqlMessageStore, get_or_create_profile
from macrocoach.services.llm import GenerativeBackend, get_generative_backend
from macrocoach.services.orchestrator import CoachOrchestrator

logger = logging.getLogger("uvicorn.error")

router = APIRouter(prefix="/coach", tags=["coach"])


class CoachChatRequest(BaseModel):
    message: str = Field(min_length=1, max_length=4000)
    persona: Optional[str] = Field(default=None, max_length=32)


class RichContentItem(BaseModel):
    type: str
    data: dict[str, Any]


class AdjustmentCauseItem(BaseModel):
    code: str
    delta_kcal: int
    reason: str


class MacroAdjustmentItem(BaseModel):
    reason: str
    original_calories: int
    adjusted_calories: int
    original_protein: int
    adjusted_protein: int
    original_carbs: int
    adjusted_carbs: int
    original_fat: int
    adjusted_fat: int
    valid_for_date: str
    causes: list[AdjustmentCauseItem] = Field(default_factory=list)


class CoachMetadataItem(BaseModel):
    processing_time_ms: int
    tokens_used: int
    confidence: float
    context_areas_used: list[str]
    persona: str
    fallback: bool
    backend_error: Optional[str] = None


class CoachChatResponse(BaseModel):
    message_id: Optional[str] = None
    text: str
    rich_content: list[RichContentItem] = Field(default_factory=list)
    suggestions: list[str] = Field(default_factory=list)
    macro_adjustment: Optional[MacroAdjustmentItem] = None
    metadata: CoachMetadataItem


class MacroAdjustmentResponse(BaseModel):
    adjustment: Optional[MacroAdjustmentItem] = None


class PersonaItem(BaseModel):
    id: str
    name: str
    title: str
    description: str
    strengths: list[str]
    is_premium: bool
    suggested_questions: list[str]
    available: bool


class PersonaListResponse(BaseModel):
    current: str
    items: list[PersonaItem]


class PersonaSelectRequest(BaseModel):
    persona: str = Field(min_length=1, max_length=32)


def get_memory_store(db: Session = Depends(get_db)) -> MemoryStore:
    return MemoryStore(SqlMessageStore(db))


def get_context_aggregator(db: Session = Depends(get_db)) -> ContextAggregator:
    return ContextAggregator(SqlContextSources(db))


def get_coach_orchestrator(
    db: Session = Depends(get_db),
    backend: GenerativeBackend = Depends(get_generative_backend),
) -> CoachOrchestrator:
    profile = get_or_create_profile(db)
    return CoachOrchestrator(
        aggregator=ContextAggregator(SqlContextSources(db)),
        memory=MemoryStore(SqlMessageStore(db)),
        backend=backend,
        persona=profile.coach_persona,
    )


@router.post("/chat", response_model=CoachChatResponse)
def chat(
    payload: CoachChatRequest,
    orchestrator: CoachOrchestrator = Depends(get_coach_orchestrator),
) -> CoachChatResponse:
    response = orchestrator.chat(payload.message.strip(), persona_override=payload.persona)
    return CoachChatResponse(**response.to_dict())


@router.get("/macro-adjustment", response_model=MacroAdjustmentResponse)
def macro_adjustment(
    orchestrator: CoachOrchestrator = Depends(get_coach_orchestrator),
) -> MacroAdjustmentResponse:
    adjustment = orchestrator.get_macro_recommendation()
    if adjustment is None:
        return MacroAdjustmentResponse()
    return MacroAdjustmentResponse(adjustment=MacroAdjustmentItem(**adjustment.to_dict()))


@router.get("/personas", response_model=PersonaListResponse)
def list_personas(db: Session = Depends(get_db)) -> PersonaListResponse:
    profile = get_or_create_profile(db)
    items = [
        PersonaItem(**persona.to_dict(), available=is_persona_available(persona.id, profile.is_premium))
        for persona in get_all_personas()
    ]
    return PersonaListResponse(current=get_persona(profile.coach_persona).id.value, items=items)


@router.put("/persona", response_model=PersonaItem)
def select_persona(payload: PersonaSelectRequest, db: Session = Depends(get_db)) -> PersonaItem:
    requested = payload.persona.strip().lower()
    if requested not in {item.value for item in PersonaId}:
        raise HTTPException(status_code=404, detail="Persona not found")
    profile = get_or_create_profile(db)
    if not is_persona_available(requested, profile.is_premium):
        logger.warning("coach_persona_denied persona=%s", requested)
        raise HTTPException(status_code=403, detail="Persona requires a premium account")
    persona = get_persona(requested)
    profile.coach_persona = persona.id.value
    db.commit()
    return PersonaItem(**persona.to_dict(), available=True)
