import os
import tempfile
from dataclasses import dataclass, field, replace
from datetime import date, datetime, timedelta, timezone
from enum import Enum
from pathlib import Path
from typing import Callable, Optional

# Keep the import-time engine away from /var/data.
os.environ.setdefault("DB_PATH", str(Path(tempfile.gettempdir()) / "macrocoach_import.db"))

import httpx
import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import Session

from macrocoach.core.context_aggregator import (
    ActiveProtocols,
    ActivitySnapshot,
    CycleState,
    HealthSnapshot,
    HealthTrends,
    NutritionTotals,
    UserGoals,
    UserProfile,
    WearableState,
)
from macrocoach.core.memory import ConversationSummary, Message, Plan, PlanStatus, with_id
from macrocoach.db import session as db_session_module
from macrocoach.db.models import Base, DailyLog, UserGoals as UserGoalsRow, UserProfile as UserProfileRow, WorkoutLog
from macrocoach.db.session import SessionLocal, configure_database, create_tables
from macrocoach.services.llm import BackendResult, LLMRequestError, get_generative_backend


class FakeScenario(str, Enum):
    PLAIN_TEXT = "PLAIN_TEXT"
    MARKUP = "MARKUP"
    PLAN_MARKUP = "PLAN_MARKUP"
    EMPTY = "EMPTY"
    TIMEOUT = "TIMEOUT"
    NETWORK_ERROR = "NETWORK_ERROR"


PLAIN_REPLY = "You're at 1200 of 2000 kcal. Aim for 40g protein at dinner."
MARKUP_REPLY = (
    "Dinner idea below. "
    '[BUTTON: Log Dinner | /log/meal | {"meal":"dinner"}] '
    "[TABLE: Dinner | Food,Protein | Chicken,40g | Rice,5g] Enjoy!"
)
PLAN_REPLY = "Here is your split. [PLAN: workout | Push Pull Legs | Push day, Pull day, Leg day] Recover well, you should sleep 8h."


class FakeBackend:
    def __init__(self, scenario: FakeScenario) -> None:
        self.scenario = scenario
        self.prompts: list[str] = []

    def invoke(self, prompt: str, max_tokens: Optional[int] = None) -> BackendResult:
        _ = max_tokens
        self.prompts.append(prompt)
        if self.scenario == FakeScenario.PLAIN_TEXT:
            return BackendResult(text=PLAIN_REPLY, tokens_used=42, provider="fake", model="fake-1")
        if self.scenario == FakeScenario.MARKUP:
            return BackendResult(text=MARKUP_REPLY, tokens_used=64, confidence=0.95, provider="fake", model="fake-1")
        if self.scenario == FakeScenario.PLAN_MARKUP:
            return BackendResult(text=PLAN_REPLY, tokens_used=80, provider="fake", model="fake-1")
        if self.scenario == FakeScenario.EMPTY:
            return BackendResult(text="   ", provider="fake", model="fake-1")
        if self.scenario == FakeScenario.TIMEOUT:
            raise LLMRequestError(provider="fake", model="fake-1", message="timed out while waiting for response")
        if self.scenario == FakeScenario.NETWORK_ERROR:
            raise httpx.ConnectError("connection refused")
        raise ValueError("Unknown fake scenario")


class FakeMessageStore:
    """In-memory MessageStore; flip the fail_* flags to simulate a broken database."""

    def __init__(self) -> None:
        self.messages: list[Message] = []
        self.plans: list[Plan] = []
        self.summaries: dict[date, ConversationSummary] = {}
        self.fail_appends = False
        self.fail_reads = False

    def _check_read(self) -> None:
        if self.fail_reads:
            raise RuntimeError("store unavailable")

    def append(self, message: Message) -> None:
        if self.fail_appends:
            raise RuntimeError("disk full")
        self.messages.append(message)

    def messages_since(self, since: date) -> list[Message]:
        self._check_read()
        return sorted((m for m in self.messages if m.session_date >= since), key=lambda m: m.timestamp)

    def last_messages(self, limit: int) -> list[Message]:
        self._check_read()
        return sorted(self.messages, key=lambda m: m.timestamp)[-limit:]

    def messages_for_date(self, day: date) -> list[Message]:
        self._check_read()
        return sorted((m for m in self.messages if m.session_date == day), key=lambda m: m.timestamp)

    def search_messages(self, terms: list[str], since: date, until: Optional[date] = None) -> list[Message]:
        self._check_read()
        matched = [
            m
            for m in self.messages
            if m.session_date >= since
            and (until is None or m.session_date <= until)
            and any(term in m.content.lower() for term in terms)
        ]
        return sorted(matched, key=lambda m: m.timestamp)

    def session_dates(self) -> list[date]:
        self._check_read()
        return sorted({m.session_date for m in self.messages}, reverse=True)

    def add_plan(self, plan: Plan) -> Plan:
        stored = with_id(plan, len(self.plans) + 1)
        self.plans.append(stored)
        return stored

    def active_plans(self, limit: int, today: date, plan_type: Optional[str] = None) -> list[Plan]:
        self._check_read()
        plans = [
            p
            for p in reversed(self.plans)
            if p.is_active(today) and (plan_type is None or p.plan_type == plan_type)
        ]
        return plans[:limit]

    def set_plan_status(self, plan_id: int, status: PlanStatus) -> bool:
        for idx, plan in enumerate(self.plans):
            if plan.id == plan_id:
                self.plans[idx] = replace(plan, status=status)
                return True
        return False

    def supersede_plans(self, plan_type: str) -> int:
        count = 0
        for idx, plan in enumerate(self.plans):
            if plan.plan_type == plan_type and plan.status == PlanStatus.ACTIVE:
                self.plans[idx] = replace(plan, status=PlanStatus.SUPERSEDED)
                count += 1
        return count

    def load_summary(self, day: date) -> Optional[ConversationSummary]:
        self._check_read()
        return self.summaries.get(day)

    def save_summary(self, summary: ConversationSummary) -> None:
        self.summaries[summary.date] = summary


@dataclass
class StaticContextSources:
    """Context sources backed by plain values; names in ``failing`` raise."""

    user_profile: UserProfile = field(default_factory=UserProfile)
    user_goals: UserGoals = field(default_factory=UserGoals)
    nutrition_totals: NutritionTotals = field(default_factory=NutritionTotals)
    activity_snapshot: ActivitySnapshot = field(default_factory=ActivitySnapshot)
    health_snapshot: HealthSnapshot = field(default_factory=HealthSnapshot)
    cycle_state: Optional[CycleState] = None
    active_protocols: ActiveProtocols = field(default_factory=ActiveProtocols)
    wearable_state: WearableState = field(default_factory=WearableState)
    health_trends: HealthTrends = field(default_factory=HealthTrends)
    failing: set[str] = field(default_factory=set)

    def _get(self, name: str, value):
        if name in self.failing:
            raise RuntimeError(f"{name} source offline")
        return value

    def profile(self) -> UserProfile:
        return self._get("profile", self.user_profile)

    def goals(self) -> UserGoals:
        return self._get("goals", self.user_goals)

    def nutrition(self, day: date) -> NutritionTotals:
        return self._get("nutrition", self.nutrition_totals)

    def activity(self, day: date) -> ActivitySnapshot:
        return self._get("activity", self.activity_snapshot)

    def health(self, day: date) -> HealthSnapshot:
        return self._get("health", self.health_snapshot)

    def cycle(self, day: date) -> Optional[CycleState]:
        return self._get("cycle", self.cycle_state)

    def protocols(self) -> ActiveProtocols:
        return self._get("protocols", self.active_protocols)

    def wearables(self) -> WearableState:
        return self._get("wearables", self.wearable_state)

    def trends(self, day: date) -> HealthTrends:
        return self._get("trends", self.health_trends)


def utc_today() -> date:
    return datetime.now(timezone.utc).date()


def message_at(role, content: str, day: date, minute: int = 0, rich_content=None) -> Message:
    timestamp = datetime(day.year, day.month, day.day, 9, 0, tzinfo=timezone.utc) + timedelta(minutes=minute)
    return Message.create(role, content, rich_content=rich_content, timestamp=timestamp)


@pytest.fixture(scope="session")
def test_db_path(tmp_path_factory: pytest.TempPathFactory) -> Path:
    db_path = tmp_path_factory.mktemp("db") / "macrocoach_test.db"
    configure_database(str(db_path))
    create_tables()
    return db_path


@pytest.fixture(autouse=True)
def clean_tables(test_db_path: Path):
    yield
    with db_session_module.engine.begin() as conn:
        for table in reversed(Base.metadata.sorted_tables):
            conn.execute(table.delete())


@pytest.fixture(scope="session")
def app(test_db_path: Path):
    from macrocoach.main import app as fastapi_app

    return fastapi_app


@pytest.fixture
def client(app):
    app.dependency_overrides = {}
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides = {}


@pytest.fixture
def db_session(test_db_path: Path):
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture
def override_backend(app) -> Callable[[FakeScenario], FakeBackend]:
    def _override(scenario: FakeScenario) -> FakeBackend:
        backend = FakeBackend(scenario)
        app.dependency_overrides[get_generative_backend] = lambda: backend
        return backend

    return _override


@pytest.fixture
def fake_store() -> FakeMessageStore:
    return FakeMessageStore()


@pytest.fixture
def seed_profile(db_session: Session):
    def _seed(**overrides) -> UserProfileRow:
        row = UserProfileRow(
            name=overrides.pop("name", "Sam"),
            age_years=overrides.pop("age_years", 32),
            sex=overrides.pop("sex", "female"),
            height_cm=overrides.pop("height_cm", 168.0),
            weight_kg=overrides.pop("weight_kg", 64.0),
            **overrides,
        )
        db_session.add(row)
        db_session.commit()
        db_session.refresh(row)
        return row

    return _seed


@pytest.fixture
def seed_goals(db_session: Session):
    def _seed(**overrides) -> UserGoalsRow:
        row = UserGoalsRow(
            daily_calories=overrides.pop("daily_calories", 2000),
            protein_target=overrides.pop("protein_target", 150),
            carb_target=overrides.pop("carb_target", 200),
            fat_target=overrides.pop("fat_target", 65),
            daily_steps=overrides.pop("daily_steps", 10000),
            **overrides,
        )
        db_session.add(row)
        db_session.commit()
        db_session.refresh(row)
        return row

    return _seed


@pytest.fixture
def seed_daily_log(db_session: Session):
    def _seed(day: Optional[date] = None, **fields) -> DailyLog:
        row = DailyLog(log_date=day or utc_today(), **fields)
        db_session.add(row)
        db_session.commit()
        db_session.refresh(row)
        return row

    return _seed


@pytest.fixture
def seed_workout(db_session: Session):
    def _seed(name: str = "Leg day", calories_burned: float = 400.0, day: Optional[date] = None) -> WorkoutLog:
        row = WorkoutLog(
            log_date=day or utc_today(),
            name=name,
            workout_type="strength",
            duration_min=60,
            calories_burned=calories_burned,
        )
        db_session.add(row)
        db_session.commit()
        db_session.refresh(row)
        return row

    return _seed
