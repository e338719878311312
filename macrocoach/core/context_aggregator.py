from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from enum import Enum
from typing import Any, Callable, Optional, Protocol, TypeVar

logger = logging.getLogger("uvicorn.error")

T = TypeVar("T")


class SleepQuality(str, Enum):
    POOR = "poor"
    FAIR = "fair"
    GOOD = "good"
    EXCELLENT = "excellent"


@dataclass(frozen=True)
class UserProfile:
    name: str = "User"
    age_years: Optional[int] = None
    sex: Optional[str] = None
    height_cm: Optional[float] = None
    weight_kg: Optional[float] = None
    fitness_goal: str = "maintain"
    activity_level: str = "moderate"
    allergies: tuple[str, ...] = ()
    is_premium: bool = False
    is_founder: bool = False


@dataclass(frozen=True)
class UserGoals:
    primary_goal: str = "maintain"
    daily_calories: int = 2000
    protein_target: int = 150
    carb_target: int = 200
    fat_target: int = 65
    daily_steps: int = 10000
    weekly_workouts: int = 4
    water_target_ml: int = 2500
    target_weight_kg: Optional[float] = None


@dataclass(frozen=True)
class NutritionTotals:
    calories: float = 0.0
    protein_g: float = 0.0
    carbs_g: float = 0.0
    fat_g: float = 0.0
    water_ml: float = 0.0


@dataclass(frozen=True)
class Workout:
    name: str
    workout_type: str = "general"
    duration_min: int = 0
    calories_burned: float = 0.0
    intensity: Optional[str] = None


@dataclass(frozen=True)
class ActivitySnapshot:
    steps: int = 0
    active_minutes: int = 0
    active_calories: float = 0.0
    workouts: tuple[Workout, ...] = ()


@dataclass(frozen=True)
class SleepSnapshot:
    duration_hours: Optional[float]
    quality: SleepQuality


@dataclass(frozen=True)
class HealthSnapshot:
    sleep: Optional[SleepSnapshot] = None
    recovery_score: Optional[int] = None
    hrv_ms: Optional[float] = None
    resting_hr: Optional[int] = None


@dataclass(frozen=True)
class CycleState:
    phase: str
    day: int


@dataclass(frozen=True)
class DailySnapshot:
    day: date
    nutrition: NutritionTotals = field(default_factory=NutritionTotals)
    activity: ActivitySnapshot = field(default_factory=ActivitySnapshot)
    health: HealthSnapshot = field(default_factory=HealthSnapshot)
    cycle: Optional[CycleState] = None


@dataclass(frozen=True)
class PeptideProtocol:
    compounds: tuple[str, ...]
    schedule: Optional[str] = None
    disclosed: bool = True


@dataclass(frozen=True)
class ActiveProtocols:
    peptides: Optional[PeptideProtocol] = None


@dataclass(frozen=True)
class WearableState:
    connected: tuple[str, ...] = ()
    last_sync_at: Optional[datetime] = None


@dataclass(frozen=True)
class HealthTrends:
    avg_sleep_hours: Optional[float] = None
    avg_steps: Optional[int] = None
    weight_trend: str = "stable"


@dataclass(frozen=True)
class HealthMetrics:
    wearables: WearableState = field(default_factory=WearableState)
    trends: HealthTrends = field(default_factory=HealthTrends)


@dataclass(frozen=True)
class UserContext:
    profile: UserProfile
    goals: UserGoals
    today: DailySnapshot
    protocols: ActiveProtocols
    health_metrics: HealthMetrics
    generated_at: datetime


class ContextSources(Protocol):
    """Read-only getters over the user's stores. Any of them may raise."""

    def profile(self) -> UserProfile:
        ...

    def goals(self) -> UserGoals:
        ...

    def nutrition(self, day: date) -> NutritionTotals:
        ...

    def activity(self, day: date) -> ActivitySnapshot:
        ...

    def health(self, day: date) -> HealthSnapshot:
        ...

    def cycle(self, day: date) -> Optional[CycleState]:
        ...

    def protocols(self) -> ActiveProtocols:
        ...

    def wearables(self) -> WearableState:
        ...

    def trends(self, day: date) -> HealthTrends:
        ...


class ContextAggregator:
    def __init__(self, sources: ContextSources, today: Optional[Callable[[], date]] = None):
        self.sources = sources
        self._today = today or (lambda: datetime.now(timezone.utc).date())

    def _read(self, source: str, getter: Callable[[], Optional[T]], default: T) -> T:
        try:
            value = getter()
        except Exception as exc:
            logger.warning("context_source_unavailable source=%s detail=%s", source, str(exc))
            return default
        return default if value is None else value

    def _read_cycle(self, day: date) -> Optional[CycleState]:
        try:
            return self.sources.cycle(day)
        except Exception as exc:
            logger.warning("context_source_unavailable source=cycle detail=%s", str(exc))
            return None

    def build_context(self, day: Optional[date] = None) -> UserContext:
        """Snapshot every source into one immutable value.

        A failing source never aborts the snapshot; its neutral default is used.
        """
        day = day or self._today()
        snapshot = DailySnapshot(
            day=day,
            nutrition=self._read("nutrition", lambda: self.sources.nutrition(day), NutritionTotals()),
            activity=self._read("activity", lambda: self.sources.activity(day), ActivitySnapshot()),
            health=self._read("health", lambda: self.sources.health(day), HealthSnapshot()),
            cycle=self._read_cycle(day),
        )
        return UserContext(
            profile=self._read("profile", self.sources.profile, UserProfile()),
            goals=self._read("goals", self.sources.goals, UserGoals()),
            today=snapshot,
            protocols=self._read("protocols", self.sources.protocols, ActiveProtocols()),
            health_metrics=HealthMetrics(
                wearables=self._read("wearables", self.sources.wearables, WearableState()),
                trends=self._read("trends", lambda: self.sources.trends(day), HealthTrends()),
            ),
            generated_at=datetime.now(timezone.utc),
        )

    def format_for_prompt(self, context: UserContext) -> str:
        return format_for_prompt(context)


def _num(value: Any) -> str:
    if value is None:
        return "unknown"
    if isinstance(value, float):
        if value.is_integer():
            return str(int(value))
        return f"{value:.1f}"
    return str(value)


def format_for_prompt(context: UserContext) -> str:
    profile = context.profile
    goals = context.goals
    today = context.today
    nutrition = today.nutrition
    activity = today.activity
    health = today.health
    trends = context.health_metrics.trends

    lines = [
        "## USER PROFILE",
        f"Name: {profile.name}",
        f"Age: {_num(profile.age_years)}, Sex: {profile.sex or 'unknown'}",
        f"Height: {_num(profile.height_cm)}cm, Weight: {_num(profile.weight_kg)}kg",
        f"Goal: {profile.fitness_goal}",
        f"Activity Level: {profile.activity_level}",
    ]
    if profile.allergies:
        lines.append(f"Allergies: {', '.join(profile.allergies)}")
    tier = "Pro" if profile.is_premium else "Free"
    if profile.is_founder:
        tier += " (Founder)"
    lines.append(f"Account: {tier}")

    lines += [
        "",
        f"## TODAY'S PROGRESS ({today.day.isoformat()})",
        "Nutrition:",
        f"- Calories: {_num(nutrition.calories)}/{goals.daily_calories} kcal",
        f"- Protein: {_num(nutrition.protein_g)}/{goals.protein_target}g",
        f"- Carbs: {_num(nutrition.carbs_g)}/{goals.carb_target}g",
        f"- Fat: {_num(nutrition.fat_g)}/{goals.fat_target}g",
        f"- Water: {_num(nutrition.water_ml)}/{goals.water_target_ml}ml",
        "",
        "Activity:",
        f"- Steps: {activity.steps}/{goals.daily_steps}",
        f"- Workouts: {', '.join(w.name for w in activity.workouts) if activity.workouts else 'None'}",
        f"- Calories Burned: {_num(activity.active_calories)} kcal",
    ]

    health_lines = []
    if health.sleep is not None and health.sleep.duration_hours is not None:
        health_lines.append(f"- Sleep: {_num(health.sleep.duration_hours)}h ({health.sleep.quality.value})")
    elif health.sleep is not None:
        health_lines.append(f"- Sleep: {health.sleep.quality.value}")
    if health.recovery_score is not None:
        health_lines.append(f"- Recovery: {health.recovery_score}/100")
    if health.hrv_ms is not None:
        health_lines.append(f"- HRV: {_num(health.hrv_ms)} ms")
    if health.resting_hr is not None:
        health_lines.append(f"- Resting HR: {health.resting_hr} bpm")
    if health_lines:
        lines += ["", "Health:"] + health_lines

    if today.cycle is not None:
        lines += ["", f"Cycle: {today.cycle.phase} phase (Day {today.cycle.day})"]

    lines += [
        "",
        "## GOALS",
        f"- Primary: {goals.primary_goal}",
        f"- Daily Calories: {goals.daily_calories} kcal",
        f"- Protein: {goals.protein_target}g",
        f"- Weekly Workouts: {goals.weekly_workouts}",
    ]
    if goals.target_weight_kg is not None:
        lines.append(f"- Target Weight: {_num(goals.target_weight_kg)}kg")

    if trends.avg_sleep_hours is not None or trends.avg_steps is not None:
        lines += ["", "## HEALTH TRENDS (7-day avg)"]
        if trends.avg_sleep_hours is not None:
            lines.append(f"- Sleep: {trends.avg_sleep_hours:.1f}h")
        if trends.avg_steps is not None:
            lines.append(f"- Steps: {trends.avg_steps}")
        lines.append(f"- Weight Trend: {trends.weight_trend}")

    peptides = context.protocols.peptides
    if peptides is not None:
        lines += [
            "",
            "## PEPTIDE PROTOCOL",
            f"- Compounds: {', '.join(peptides.compounds) if peptides.compounds else 'unspecified'}",
            f"- Schedule: {peptides.schedule or 'unspecified'}",
        ]
        if not peptides.disclosed:
            lines.append("- Disclosure: undisclosed (do not reference compounds unless the user does)")

    wearables = context.health_metrics.wearables
    if wearables.connected:
        lines += ["", f"Wearables: {', '.join(wearables.connected)}"]

    return "\n".join(lines).strip()


def context_areas_used(context: UserContext) -> list[str]:
    """Names of the areas that held non-default data this turn, in fixed order."""
    today = context.today
    areas: list[str] = []
    if today.nutrition.calories > 0:
        areas.append("nutrition")
    if today.activity.workouts:
        areas.append("workouts")
    if today.health.sleep is not None:
        areas.append("sleep")
    if today.health.recovery_score is not None:
        areas.append("recovery")
    if today.cycle is not None:
        areas.append("cycle")
    if context.protocols.peptides is not None:
        areas.append("peptides")
    if context.health_metrics.wearables.connected:
        areas.append("wearables")
    return areas
