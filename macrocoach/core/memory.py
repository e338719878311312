from __future__ import annotations

import logging
import os
import uuid
from dataclasses import dataclass, replace
from datetime import date, datetime, timedelta, timezone
from enum import Enum
from typing import Any, Callable, Optional, Protocol

from macrocoach.core.rich_content import RichContent, RichContentType

logger = logging.getLogger("uvicorn.error")

MEMORY_RETENTION_DAYS = int(os.getenv("MEMORY_RETENTION_DAYS", "90"))
MEMORY_MAX_MESSAGES_PER_DAY = int(os.getenv("MEMORY_MAX_MESSAGES_PER_DAY", "100"))
MEMORY_MAX_PLANS = int(os.getenv("MEMORY_MAX_PLANS", "50"))

DEFAULT_MEMORY_INDICATORS = (
    "remember",
    "last time",
    "previously",
    "you said",
    "we discussed",
    "my plan",
    "the workout",
    "the diet",
)

TOPIC_KEYWORDS = {
    "workout": "workout",
    "exercise": "workout",
    "training": "workout",
    "gym": "workout",
    "diet": "diet",
    "calories": "nutrition",
    "protein": "nutrition",
    "carbs": "nutrition",
    "macros": "nutrition",
    "meal": "nutrition",
    "food": "nutrition",
    "weight": "weight",
    "scale": "weight",
    "sleep": "sleep",
    "tired": "sleep",
    "recovery": "recovery",
    "stress": "stress",
    "cycle": "cycle",
    "period": "cycle",
    "peptide": "peptides",
    "supplement": "supplements",
}

DECISION_MARKERS = ("recommend", "should")
MIN_TERM_LENGTH = 3
MAX_RELEVANT_MESSAGES = 5


def _indicators_from_env() -> tuple[str, ...]:
    raw = os.getenv("COACH_MEMORY_INDICATORS", "")
    phrases = tuple(item.strip().lower() for item in raw.split(",") if item.strip())
    return phrases or DEFAULT_MEMORY_INDICATORS


MEMORY_INDICATORS = _indicators_from_env()


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def utc_today() -> date:
    return utc_now().date()


class MessageRole(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"


class PlanStatus(str, Enum):
    ACTIVE = "active"
    SUPERSEDED = "superseded"
    INVALIDATED = "invalidated"


class PlanPolicy(str, Enum):
    KEEP_ALL = "keep_all"
    SUPERSEDE_SAME_TYPE = "supersede_same_type"


def _policy_from_env() -> PlanPolicy:
    raw = os.getenv("COACH_PLAN_POLICY", PlanPolicy.KEEP_ALL.value).strip().lower()
    try:
        return PlanPolicy(raw)
    except ValueError:
        return PlanPolicy.KEEP_ALL


COACH_PLAN_POLICY = _policy_from_env()


@dataclass(frozen=True)
class Message:
    id: str
    role: MessageRole
    content: str
    timestamp: datetime
    rich_content: tuple[RichContent, ...] = ()
    metadata: Optional[dict[str, Any]] = None

    @classmethod
    def create(
        cls,
        role: MessageRole,
        content: str,
        rich_content: Optional[list[RichContent]] = None,
        metadata: Optional[dict[str, Any]] = None,
        timestamp: Optional[datetime] = None,
    ) -> "Message":
        return cls(
            id=f"msg_{uuid.uuid4().hex}",
            role=role,
            content=content,
            timestamp=timestamp or utc_now(),
            rich_content=tuple(rich_content or ()),
            metadata=metadata,
        )

    @property
    def session_date(self) -> date:
        return self.timestamp.date()

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "role": self.role.value,
            "content": self.content,
            "timestamp": self.timestamp.isoformat(),
            "rich_content": [item.to_dict() for item in self.rich_content],
            "metadata": self.metadata or {},
        }


@dataclass(frozen=True)
class ConversationSession:
    date: date
    messages: tuple[Message, ...]
    topics: tuple[str, ...] = ()


@dataclass(frozen=True)
class Plan:
    plan_type: str
    name: str
    details: dict[str, Any]
    created_date: date
    valid_until: Optional[date] = None
    status: PlanStatus = PlanStatus.ACTIVE
    id: Optional[int] = None

    def is_active(self, today: date) -> bool:
        if self.status != PlanStatus.ACTIVE:
            return False
        return self.valid_until is None or self.valid_until >= today

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": self.plan_type,
            "name": self.name,
            "details": self.details,
            "created_date": self.created_date.isoformat(),
            "valid_until": self.valid_until.isoformat() if self.valid_until else None,
            "status": self.status.value,
        }


@dataclass(frozen=True)
class ConversationSummary:
    date: date
    topics: tuple[str, ...]
    summary: str
    key_decisions: tuple[str, ...] = ()
    plans_created: tuple[str, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {
            "date": self.date.isoformat(),
            "topics": list(self.topics),
            "summary": self.summary,
            "key_decisions": list(self.key_decisions),
            "plans_created": list(self.plans_created),
        }


@dataclass(frozen=True)
class MemorySearchQuery:
    query: str
    limit: int = 10
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    exclude_ids: tuple[str, ...] = ()


@dataclass(frozen=True)
class MemorySearchResult:
    date: date
    relevant_messages: tuple[Message, ...]
    score: int
    summary: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "date": self.date.isoformat(),
            "score": self.score,
            "summary": self.summary,
            "relevant_messages": [message.to_dict() for message in self.relevant_messages],
        }


class MessageStore(Protocol):
    """Append-only persistence behind MemoryStore. Every call may raise."""

    def append(self, message: Message) -> None:
        ...

    def messages_since(self, since: date) -> list[Message]:
        ...

    def last_messages(self, limit: int) -> list[Message]:
        ...

    def messages_for_date(self, day: date) -> list[Message]:
        ...

    def search_messages(self, terms: list[str], since: date, until: Optional[date] = None) -> list[Message]:
        ...

    def session_dates(self) -> list[date]:
        ...

    def add_plan(self, plan: Plan) -> Plan:
        ...

    def active_plans(self, limit: int, today: date, plan_type: Optional[str] = None) -> list[Plan]:
        """Newest active, unexpired plans, optionally of one type."""

    def set_plan_status(self, plan_id: int, status: PlanStatus) -> bool:
        ...

    def supersede_plans(self, plan_type: str) -> int:
        ...

    def load_summary(self, day: date) -> Optional[ConversationSummary]:
        ...

    def save_summary(self, summary: ConversationSummary) -> None:
        ...


def needs_memory(message: str, indicators: tuple[str, ...] = MEMORY_INDICATORS) -> bool:
    lowered = (message or "").lower()
    return any(phrase in lowered for phrase in indicators)


def extract_topics(content: str) -> list[str]:
    lowered = content.lower()
    topics: list[str] = []
    for keyword, topic in TOPIC_KEYWORDS.items():
        if keyword in lowered and topic not in topics:
            topics.append(topic)
    return topics


def search_terms(query: str) -> list[str]:
    return [term for term in query.lower().split() if len(term) >= MIN_TERM_LENGTH]


def summarize_session(session: ConversationSession) -> ConversationSummary:
    """Deterministic local summary; no model call involved."""
    user_messages = [m for m in session.messages if m.role == MessageRole.USER]
    key_decisions: list[str] = []
    plans_created: list[str] = []
    for message in session.messages:
        if message.role != MessageRole.ASSISTANT:
            continue
        if any(marker in message.content for marker in DECISION_MARKERS):
            key_decisions.append(message.content[:100])
        for item in message.rich_content:
            if item.type == RichContentType.PLAN_CARD:
                plans_created.append(str(item.data.get("title", "")))

    topics = session.topics
    if topics:
        summary = (
            f"Discussed {len(topics)} topics including {', '.join(topics[:3])}. "
            f"{len(user_messages)} questions asked."
        )
    else:
        summary = f"General conversation. {len(user_messages)} questions asked."
    return ConversationSummary(
        date=session.date,
        topics=tuple(topics),
        summary=summary,
        key_decisions=tuple(key_decisions[:3]),
        plans_created=tuple(plans_created),
    )


def session_topics(messages: list[Message]) -> list[str]:
    topics: list[str] = []
    for message in messages:
        if message.role != MessageRole.USER:
            continue
        for topic in extract_topics(message.content):
            if topic not in topics:
                topics.append(topic)
    return topics


class MemoryStore:
    """Conversation memory over a MessageStore.

    The store is the source of truth. Search runs as a store query; the
    in-memory index of recent sessions only backs reads when the store fails.
    """

    def __init__(
        self,
        store: MessageStore,
        retention_days: int = MEMORY_RETENTION_DAYS,
        max_messages_per_day: int = MEMORY_MAX_MESSAGES_PER_DAY,
        max_plans: int = MEMORY_MAX_PLANS,
        plan_policy: PlanPolicy = COACH_PLAN_POLICY,
        today: Callable[[], date] = utc_today,
    ):
        self.store = store
        self.retention_days = retention_days
        self.max_messages_per_day = max_messages_per_day
        self.max_plans = max_plans
        self.plan_policy = plan_policy
        self._today = today
        self._sessions: dict[date, list[Message]] = {}
        self._initialized = False

    def _retention_start(self) -> date:
        return self._today() - timedelta(days=self.retention_days)

    def initialize(self) -> None:
        if self._initialized:
            return
        try:
            messages = self.store.messages_since(self._retention_start())
        except Exception as exc:
            logger.warning("memory_load_failed detail=%s", str(exc))
            messages = []
        # Messages written before the first load are merged back in.
        pending = [m for day in sorted(self._sessions) for m in self._sessions[day]]
        self._sessions = {}
        seen: set[str] = set()
        for message in messages + pending:
            if message.id in seen:
                continue
            seen.add(message.id)
            self._index(message)
        self._initialized = True

    def _index(self, message: Message) -> None:
        bucket = self._sessions.setdefault(message.session_date, [])
        bucket.append(message)
        if len(bucket) > self.max_messages_per_day:
            del bucket[: len(bucket) - self.max_messages_per_day]

    def add_message(self, message: Message) -> bool:
        try:
            self.store.append(message)
        except Exception as exc:
            logger.warning("memory_append_failed id=%s detail=%s", message.id, str(exc))
            return False
        self._index(message)
        return True

    def get_recent_messages(self, count: int = 10) -> list[Message]:
        if count <= 0:
            return []
        try:
            return self.store.last_messages(count)
        except Exception as exc:
            logger.warning("memory_recent_failed detail=%s", str(exc))
        self.initialize()
        indexed = [m for day in sorted(self._sessions) for m in self._sessions[day]]
        return indexed[-count:]

    def get_conversation(self, day: date) -> Optional[ConversationSession]:
        try:
            messages = self.store.messages_for_date(day)
        except Exception as exc:
            logger.warning("memory_conversation_failed date=%s detail=%s", day.isoformat(), str(exc))
            self.initialize()
            messages = list(self._sessions.get(day, []))
        if not messages:
            return None
        return ConversationSession(date=day, messages=tuple(messages), topics=tuple(session_topics(messages)))

    def get_conversation_dates(self) -> list[date]:
        try:
            return sorted(self.store.session_dates(), reverse=True)
        except Exception as exc:
            logger.warning("memory_dates_failed detail=%s", str(exc))
        self.initialize()
        return sorted(self._sessions, reverse=True)

    def _stored_summary(self, day: date) -> Optional[ConversationSummary]:
        try:
            return self.store.load_summary(day)
        except Exception as exc:
            logger.warning("memory_summary_load_failed date=%s detail=%s", day.isoformat(), str(exc))
            return None

    def search_memory(self, query: MemorySearchQuery) -> list[MemorySearchResult]:
        """Rank sessions by summed term hits, then by recency."""
        terms = search_terms(query.query)
        if not terms or query.limit <= 0:
            return []
        since = self._retention_start()
        if query.start_date and query.start_date > since:
            since = query.start_date
        try:
            candidates = self.store.search_messages(terms, since, query.end_date)
            by_day: dict[date, list[Message]] = {}
            for message in candidates:
                if message.id in query.exclude_ids:
                    continue
                by_day.setdefault(message.session_date, []).append(message)

            scored: list[tuple[int, date, list[Message]]] = []
            for day, messages in by_day.items():
                score = 0
                relevant: list[Message] = []
                for message in messages:
                    content = message.content.lower()
                    hits = sum(1 for term in terms if term in content)
                    if hits:
                        score += hits
                        relevant.append(message)
                if score > 0:
                    scored.append((score, day, relevant))

            scored.sort(key=lambda item: (-item[0], -item[1].toordinal()))
            results = []
            for score, day, relevant in scored[: query.limit]:
                summary = self._stored_summary(day)
                results.append(
                    MemorySearchResult(
                        date=day,
                        relevant_messages=tuple(relevant[:MAX_RELEVANT_MESSAGES]),
                        score=score,
                        summary=summary.summary if summary else None,
                    )
                )
            return results
        except Exception as exc:
            logger.warning("memory_search_failed query=%s detail=%s", query.query[:80], str(exc))
            return []

    def get_summary(self, day: date) -> Optional[ConversationSummary]:
        stored = self._stored_summary(day)
        if stored is not None:
            return stored
        session = self.get_conversation(day)
        if session is None:
            return None
        summary = summarize_session(session)
        # Today's session is still growing; only closed days are persisted.
        if day < self._today():
            try:
                self.store.save_summary(summary)
            except Exception as exc:
                logger.warning("memory_summary_save_failed date=%s detail=%s", day.isoformat(), str(exc))
        return summary

    def get_active_plans(self, plan_type: Optional[str] = None) -> list[Plan]:
        today = self._today()
        if plan_type is not None:
            plan_type = plan_type.strip().lower()
        try:
            plans = self.store.active_plans(self.max_plans, today, plan_type=plan_type)
        except Exception as exc:
            logger.warning("memory_plans_failed detail=%s", str(exc))
            return []
        return [plan for plan in plans if plan.is_active(today)]

    def save_plan(
        self,
        plan_type: str,
        name: str,
        details: dict[str, Any],
        valid_until: Optional[date] = None,
    ) -> Optional[Plan]:
        plan = Plan(
            plan_type=(plan_type or "other").strip().lower(),
            name=name,
            details=details,
            created_date=self._today(),
            valid_until=valid_until,
        )
        try:
            if self.plan_policy == PlanPolicy.SUPERSEDE_SAME_TYPE:
                self.store.supersede_plans(plan.plan_type)
            return self.store.add_plan(plan)
        except Exception as exc:
            logger.warning("memory_plan_save_failed type=%s detail=%s", plan.plan_type, str(exc))
            return None

    def invalidate_plan(self, plan_id: int) -> bool:
        try:
            return self.store.set_plan_status(plan_id, PlanStatus.INVALIDATED)
        except Exception as exc:
            logger.warning("memory_plan_invalidate_failed id=%s detail=%s", plan_id, str(exc))
            return False


def with_id(plan: Plan, plan_id: int) -> Plan:
    return replace(plan, id=plan_id)
