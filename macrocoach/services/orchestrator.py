from __future__ import annotations

import logging
import os
import time
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Optional, Union

from macrocoach.core.context_aggregator import ContextAggregator, UserContext, context_areas_used
from macrocoach.core.fallback import (
    ERROR_CONFIDENCE,
    ERROR_REPLY,
    FALLBACK_CONFIDENCE,
    fallback_reply,
    generate_suggestions,
)
from macrocoach.core.macro_adjustment import (
    MacroAdjustment,
    compute_macro_adjustment,
    format_adjustment_for_prompt,
)
from macrocoach.core.memory import (
    MEMORY_INDICATORS,
    ConversationSession,
    MemorySearchQuery,
    MemorySearchResult,
    MemoryStore,
    Message,
    MessageRole,
    needs_memory,
)
from macrocoach.core.personas import (
    DEFAULT_PERSONA_ID,
    PersonaId,
    build_persona_prompt,
    get_persona,
    is_persona_available,
)
from macrocoach.core.rich_content import RichContent, RichContentParser, RichContentType
from macrocoach.services.llm import COACH_MAX_TOKENS, BackendResult, GenerativeBackend, LLMRequestError

logger = logging.getLogger("uvicorn.error")

COACH_HISTORY_LIMIT = int(os.getenv("COACH_HISTORY_LIMIT", "10"))
COACH_MODEL_CONFIDENCE = float(os.getenv("COACH_MODEL_CONFIDENCE", "0.9"))

MEMORY_SEARCH_LIMIT = 3
MEMORY_MESSAGES_PER_SESSION = 2
MEMORY_SNIPPET_CHARS = 150
MEMORY_PLANS_LIMIT = 3


@dataclass(frozen=True)
class ResponseMetadata:
    processing_time_ms: int
    tokens_used: int
    confidence: float
    context_areas_used: tuple[str, ...] = ()
    persona: str = DEFAULT_PERSONA_ID.value
    fallback: bool = False
    backend_error: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "processing_time_ms": self.processing_time_ms,
            "tokens_used": self.tokens_used,
            "confidence": self.confidence,
            "context_areas_used": list(self.context_areas_used),
            "persona": self.persona,
            "fallback": self.fallback,
        }
        if self.backend_error:
            data["backend_error"] = self.backend_error
        return data


@dataclass(frozen=True)
class CoachResponse:
    text: str
    metadata: ResponseMetadata
    rich_content: list[RichContent] = field(default_factory=list)
    suggestions: list[str] = field(default_factory=list)
    macro_adjustment: Optional[MacroAdjustment] = None
    message_id: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "message_id": self.message_id,
            "text": self.text,
            "rich_content": [item.to_dict() for item in self.rich_content],
            "suggestions": list(self.suggestions),
            "macro_adjustment": self.macro_adjustment.to_dict() if self.macro_adjustment else None,
            "metadata": self.metadata.to_dict(),
        }


def _backend_error_flag(exc: Exception) -> str:
    if isinstance(exc, LLMRequestError):
        if exc.status_code == 401:
            return "llm_auth_error"
        if exc.status_code == 404:
            return "llm_model_not_found"
        if exc.status_code == 429:
            return "llm_rate_limited"
        if exc.status_code and exc.status_code >= 500:
            return "llm_provider_error"
        return "llm_unavailable"
    if isinstance(exc, ValueError):
        return "llm_not_configured"
    return "llm_unavailable"


def _snippet(content: str, limit: int = MEMORY_SNIPPET_CHARS) -> str:
    if len(content) <= limit:
        return content
    return content[:limit] + "..."


def _speaker(message: Message) -> str:
    return "User" if message.role == MessageRole.USER else "Coach"


class CoachOrchestrator:
    """Runs one coaching turn end to end and never raises to its caller."""

    def __init__(
        self,
        aggregator: ContextAggregator,
        memory: MemoryStore,
        backend: GenerativeBackend,
        parser: Optional[RichContentParser] = None,
        persona: Union[PersonaId, str] = DEFAULT_PERSONA_ID,
        max_tokens: int = COACH_MAX_TOKENS,
        history_limit: int = COACH_HISTORY_LIMIT,
        model_confidence: float = COACH_MODEL_CONFIDENCE,
        memory_indicators: tuple[str, ...] = MEMORY_INDICATORS,
    ):
        self.aggregator = aggregator
        self.memory = memory
        self.backend = backend
        self.parser = parser or RichContentParser()
        self.persona = get_persona(persona).id
        self.max_tokens = max_tokens
        self.history_limit = history_limit
        self.model_confidence = model_confidence
        self.memory_indicators = memory_indicators
        self._last_backend_error: Optional[str] = None

    def set_persona(self, persona_id: Union[PersonaId, str], is_premium: bool) -> bool:
        if not is_persona_available(persona_id, is_premium):
            return False
        self.persona = get_persona(persona_id).id
        return True

    def resolve_persona(self, persona_override: Optional[Union[PersonaId, str]], is_premium: bool) -> PersonaId:
        requested = persona_override or self.persona
        if is_persona_available(requested, is_premium):
            return get_persona(requested).id
        logger.warning("coach_persona_unavailable persona=%s premium=%s", requested, is_premium)
        return DEFAULT_PERSONA_ID

    def chat(self, message: str, persona_override: Optional[Union[PersonaId, str]] = None) -> CoachResponse:
        started = time.monotonic()
        try:
            return self._run_turn(message, persona_override, started)
        except Exception as exc:
            logger.exception("coach_unhandled_error detail=%s", str(exc))
            return CoachResponse(
                text=ERROR_REPLY,
                metadata=ResponseMetadata(
                    processing_time_ms=int((time.monotonic() - started) * 1000),
                    tokens_used=0,
                    confidence=ERROR_CONFIDENCE,
                    persona=self.persona.value,
                    fallback=True,
                ),
            )

    def _run_turn(
        self, message: str, persona_override: Optional[Union[PersonaId, str]], started: float
    ) -> CoachResponse:
        user_message = Message.create(MessageRole.USER, message)
        self.memory.add_message(user_message)

        context = self.aggregator.build_context()
        memory_section = self.build_memory_section(message, user_message.id)
        adjustment = compute_macro_adjustment(context)
        persona_id = self.resolve_persona(persona_override, context.profile.is_premium)
        history = self._same_day_history(user_message)
        prompt = self.build_prompt(context, persona_id, message, memory_section, adjustment, history)

        result = self._call_backend(prompt)
        if result is None:
            raw_text = fallback_reply(message)
            confidence = FALLBACK_CONFIDENCE
            tokens_used = 0
        else:
            raw_text = result.text
            confidence = result.confidence if result.confidence is not None else self.model_confidence
            tokens_used = result.tokens_used or 0

        parsed = self.parser.parse(raw_text)
        metadata = ResponseMetadata(
            processing_time_ms=int((time.monotonic() - started) * 1000),
            tokens_used=tokens_used,
            confidence=confidence,
            context_areas_used=tuple(context_areas_used(context)),
            persona=persona_id.value,
            fallback=result is None,
            backend_error=self._last_backend_error if result is None else None,
        )
        assistant_message = Message.create(
            MessageRole.ASSISTANT,
            parsed.text,
            rich_content=parsed.rich_content,
            metadata=metadata.to_dict(),
        )
        self.memory.add_message(assistant_message)
        self._save_plans(parsed.rich_content)

        return CoachResponse(
            text=parsed.text,
            metadata=metadata,
            rich_content=parsed.rich_content,
            suggestions=generate_suggestions(message),
            macro_adjustment=adjustment,
            message_id=assistant_message.id,
        )

    def _call_backend(self, prompt: str) -> Optional[BackendResult]:
        """Return the model result, or None for any failure or empty payload."""
        self._last_backend_error = None
        try:
            result = self.backend.invoke(prompt, max_tokens=self.max_tokens)
        except Exception as exc:
            self._last_backend_error = _backend_error_flag(exc)
            logger.warning(
                "coach_backend_error provider=%s flag=%s detail=%s",
                getattr(exc, "provider", "unknown"),
                self._last_backend_error,
                str(exc),
            )
            return None
        if result is None or not (result.text or "").strip():
            self._last_backend_error = "llm_empty_response"
            logger.warning("coach_backend_empty provider=%s", getattr(result, "provider", "unknown"))
            return None
        return result

    def _same_day_history(self, current: Message) -> list[Message]:
        recent = self.memory.get_recent_messages(self.history_limit + 1)
        same_day = [
            m for m in recent if m.id != current.id and m.session_date == current.session_date
        ]
        return same_day[-self.history_limit :] if self.history_limit > 0 else []

    def _save_plans(self, items: list[RichContent]) -> None:
        for item in items:
            if item.type != RichContentType.PLAN_CARD:
                continue
            self.memory.save_plan(
                plan_type=str(item.data.get("type") or "other"),
                name=str(item.data.get("title") or "Coach plan"),
                details=dict(item.data),
            )

    def build_memory_section(self, message: str, current_id: Optional[str] = None) -> str:
        if not needs_memory(message, self.memory_indicators):
            return ""
        query = MemorySearchQuery(
            query=message,
            limit=MEMORY_SEARCH_LIMIT,
            exclude_ids=(current_id,) if current_id else (),
        )
        results = self.memory.search_memory(query)
        plans = self.memory.get_active_plans()[:MEMORY_PLANS_LIMIT]
        if not results and not plans:
            return ""

        lines = ["## RELEVANT MEMORY"]
        for result in results:
            lines.append(f"### {result.date.isoformat()}")
            for past in result.relevant_messages[:MEMORY_MESSAGES_PER_SESSION]:
                lines.append(f"{_speaker(past)}: {_snippet(past.content)}")
            if result.summary:
                lines.append(f"Summary: {result.summary}")
        if plans:
            lines.append("### ACTIVE PLANS")
            for plan in plans:
                lines.append(f"- {plan.plan_type}: {plan.name} (created {plan.created_date.isoformat()})")
        return "\n".join(lines)

    def build_prompt(
        self,
        context: UserContext,
        persona_id: PersonaId,
        message: str,
        memory_section: str = "",
        adjustment: Optional[MacroAdjustment] = None,
        history: Optional[list[Message]] = None,
    ) -> str:
        sections = [build_persona_prompt(persona_id, self.aggregator.format_for_prompt(context))]
        if memory_section:
            sections.append(memory_section)
        if adjustment is not None:
            sections.append(format_adjustment_for_prompt(adjustment))
        if history:
            transcript = "\n".join(f"{_speaker(m)}: {m.content}" for m in history)
            sections.append(f"## TODAY'S CONVERSATION SO FAR\n{transcript}")
        sections.append(f"User: {message}\n\nCoach:")
        return "\n\n".join(sections)

    def get_conversation_for_date(self, day: date) -> Optional[ConversationSession]:
        return self.memory.get_conversation(day)

    def get_conversation_dates(self) -> list[date]:
        return self.memory.get_conversation_dates()

    def search_history(self, query: str, limit: int = 10) -> list[MemorySearchResult]:
        return self.memory.search_memory(MemorySearchQuery(query=query, limit=limit))

    def get_macro_recommendation(self) -> Optional[MacroAdjustment]:
        return compute_macro_adjustment(self.aggregator.build_context())
