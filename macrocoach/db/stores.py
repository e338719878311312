import json
from datetime import date, datetime, timedelta, timezone
from typing import Any, Optional

from sqlalchemy import func, or_
from sqlalchemy.orm import Session

from macrocoach.core.context_aggregator import (
    ActiveProtocols,
    ActivitySnapshot,
    CycleState,
    HealthSnapshot,
    HealthTrends,
    NutritionTotals,
    PeptideProtocol,
    SleepQuality,
    SleepSnapshot,
    UserGoals,
    UserProfile,
    WearableState,
    Workout,
)
from macrocoach.core.memory import ConversationSummary, Message, MessageRole, Plan, PlanStatus, with_id
from macrocoach.core.rich_content import RichContent
from macrocoach.db.models import ChatMessage, CoachPlan, DailyLog, WearableConnection, WorkoutLog
from macrocoach.db.models import ConversationSummary as ConversationSummaryRow
from macrocoach.db.models import UserGoals as UserGoalsRow
from macrocoach.db.models import UserProfile as UserProfileRow

TREND_WINDOW_DAYS = 7
WEIGHT_TREND_TOLERANCE_KG = 0.3


def _loads(raw: Optional[str], fallback: Any) -> Any:
    if not raw:
        return fallback
    try:
        return json.loads(raw)
    except json.JSONDecodeError:
        return fallback


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _message_from_row(row: ChatMessage) -> Message:
    rich = _loads(row.rich_content_json, [])
    return Message(
        id=row.id,
        role=MessageRole(row.role),
        content=row.content,
        timestamp=_as_utc(row.created_at),
        rich_content=tuple(RichContent.from_dict(item) for item in rich if isinstance(item, dict)),
        metadata=_loads(row.metadata_json, None),
    )


def _plan_from_row(row: CoachPlan) -> Plan:
    return Plan(
        id=row.id,
        plan_type=row.plan_type,
        name=row.name,
        details=_loads(row.details_json, {}),
        created_date=row.created_date,
        valid_until=row.valid_until,
        status=PlanStatus(row.status),
    )


def get_or_create_profile(db: Session) -> UserProfileRow:
    row = db.query(UserProfileRow).order_by(UserProfileRow.id.asc()).first()
    if not row:
        row = UserProfileRow(name="User")
        db.add(row)
        db.commit()
        db.refresh(row)
    return row


def get_or_create_goals(db: Session) -> UserGoalsRow:
    row = db.query(UserGoalsRow).order_by(UserGoalsRow.id.asc()).first()
    if not row:
        row = UserGoalsRow()
        db.add(row)
        db.commit()
        db.refresh(row)
    return row


class SqlMessageStore:
    """Chat transcript, plans and summaries persisted through SQLAlchemy."""

    def __init__(self, db: Session):
        self.db = db

    def append(self, message: Message) -> None:
        row = ChatMessage(
            id=message.id,
            session_date=message.session_date,
            role=message.role.value,
            content=message.content,
            rich_content_json=(
                json.dumps([item.to_dict() for item in message.rich_content]) if message.rich_content else None
            ),
            metadata_json=json.dumps(message.metadata) if message.metadata is not None else None,
            created_at=message.timestamp.astimezone(timezone.utc).replace(tzinfo=None),
        )
        try:
            self.db.add(row)
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

    def messages_since(self, since: date) -> list[Message]:
        rows = (
            self.db.query(ChatMessage)
            .filter(ChatMessage.session_date >= since)
            .order_by(ChatMessage.created_at.asc())
            .all()
        )
        return [_message_from_row(row) for row in rows]

    def last_messages(self, limit: int) -> list[Message]:
        rows = self.db.query(ChatMessage).order_by(ChatMessage.created_at.desc()).limit(limit).all()
        return [_message_from_row(row) for row in reversed(rows)]

    def messages_for_date(self, day: date) -> list[Message]:
        rows = (
            self.db.query(ChatMessage)
            .filter(ChatMessage.session_date == day)
            .order_by(ChatMessage.created_at.asc())
            .all()
        )
        return [_message_from_row(row) for row in rows]

    def search_messages(self, terms: list[str], since: date, until: Optional[date] = None) -> list[Message]:
        query = self.db.query(ChatMessage).filter(ChatMessage.session_date >= since)
        if until is not None:
            query = query.filter(ChatMessage.session_date <= until)
        if terms:
            content = func.lower(ChatMessage.content)
            query = query.filter(or_(*[content.contains(term, autoescape=True) for term in terms]))
        rows = query.order_by(ChatMessage.created_at.asc()).all()
        return [_message_from_row(row) for row in rows]

    def session_dates(self) -> list[date]:
        rows = (
            self.db.query(ChatMessage.session_date)
            .group_by(ChatMessage.session_date)
            .order_by(ChatMessage.session_date.desc())
            .all()
        )
        return [row[0] for row in rows]

    def add_plan(self, plan: Plan) -> Plan:
        row = CoachPlan(
            plan_type=plan.plan_type,
            name=plan.name[:180],
            details_json=json.dumps(plan.details),
            created_date=plan.created_date,
            valid_until=plan.valid_until,
            status=plan.status.value,
        )
        try:
            self.db.add(row)
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        self.db.refresh(row)
        return with_id(plan, row.id)

    def active_plans(self, limit: int, today: date, plan_type: Optional[str] = None) -> list[Plan]:
        query = self.db.query(CoachPlan).filter(
            CoachPlan.status == PlanStatus.ACTIVE.value,
            or_(CoachPlan.valid_until.is_(None), CoachPlan.valid_until >= today),
        )
        if plan_type is not None:
            query = query.filter(CoachPlan.plan_type == plan_type)
        rows = (
            query.order_by(CoachPlan.created_at.desc(), CoachPlan.id.desc())
            .limit(limit)
            .all()
        )
        return [_plan_from_row(row) for row in rows]

    def set_plan_status(self, plan_id: int, status: PlanStatus) -> bool:
        row = self.db.query(CoachPlan).filter(CoachPlan.id == plan_id).first()
        if not row:
            return False
        row.status = status.value
        self.db.commit()
        return True

    def supersede_plans(self, plan_type: str) -> int:
        count = (
            self.db.query(CoachPlan)
            .filter(CoachPlan.plan_type == plan_type, CoachPlan.status == PlanStatus.ACTIVE.value)
            .update({CoachPlan.status: PlanStatus.SUPERSEDED.value}, synchronize_session=False)
        )
        self.db.commit()
        return int(count or 0)

    def load_summary(self, day: date) -> Optional[ConversationSummary]:
        row = self.db.query(ConversationSummaryRow).filter(ConversationSummaryRow.session_date == day).first()
        if not row:
            return None
        return ConversationSummary(
            date=row.session_date,
            topics=tuple(t for t in (row.topics_csv or "").split(",") if t),
            summary=row.summary,
            key_decisions=tuple(_loads(row.key_decisions_json, [])),
            plans_created=tuple(_loads(row.plans_created_json, [])),
        )

    def save_summary(self, summary: ConversationSummary) -> None:
        row = (
            self.db.query(ConversationSummaryRow)
            .filter(ConversationSummaryRow.session_date == summary.date)
            .first()
        )
        if not row:
            row = ConversationSummaryRow(session_date=summary.date)
            self.db.add(row)
        row.topics_csv = ",".join(summary.topics)[:512]
        row.summary = summary.summary[:1024]
        row.key_decisions_json = json.dumps(list(summary.key_decisions))
        row.plans_created_json = json.dumps(list(summary.plans_created))
        try:
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise


class SqlContextSources:
    """Read-only view of the profile, goals and daily logs for the context snapshot."""

    def __init__(self, db: Session):
        self.db = db

    def _daily_log(self, day: date) -> Optional[DailyLog]:
        return self.db.query(DailyLog).filter(DailyLog.log_date == day).first()

    def profile(self) -> UserProfile:
        row = self.db.query(UserProfileRow).order_by(UserProfileRow.id.asc()).first()
        if not row:
            return UserProfile()
        allergies = _loads(row.allergies_json, [])
        return UserProfile(
            name=row.name,
            age_years=row.age_years,
            sex=row.sex,
            height_cm=row.height_cm,
            weight_kg=row.weight_kg,
            fitness_goal=row.fitness_goal,
            activity_level=row.activity_level,
            allergies=tuple(str(item) for item in allergies if str(item).strip()),
            is_premium=bool(row.is_premium),
            is_founder=bool(row.is_founder),
        )

    def goals(self) -> UserGoals:
        row = self.db.query(UserGoalsRow).order_by(UserGoalsRow.id.asc()).first()
        if not row:
            return UserGoals()
        return UserGoals(
            primary_goal=row.primary_goal,
            daily_calories=row.daily_calories,
            protein_target=row.protein_target,
            carb_target=row.carb_target,
            fat_target=row.fat_target,
            daily_steps=row.daily_steps,
            weekly_workouts=row.weekly_workouts,
            water_target_ml=row.water_target_ml,
            target_weight_kg=row.target_weight_kg,
        )

    def nutrition(self, day: date) -> NutritionTotals:
        log = self._daily_log(day)
        if not log:
            return NutritionTotals()
        return NutritionTotals(
            calories=log.calories,
            protein_g=log.protein_g,
            carbs_g=log.carbs_g,
            fat_g=log.fat_g,
            water_ml=log.water_ml,
        )

    def activity(self, day: date) -> ActivitySnapshot:
        log = self._daily_log(day)
        workouts = (
            self.db.query(WorkoutLog)
            .filter(WorkoutLog.log_date == day)
            .order_by(WorkoutLog.created_at.asc())
            .all()
        )
        return ActivitySnapshot(
            steps=log.steps if log else 0,
            active_minutes=log.active_minutes if log else 0,
            active_calories=log.active_calories if log else 0.0,
            workouts=tuple(
                Workout(
                    name=w.name,
                    workout_type=w.workout_type,
                    duration_min=w.duration_min,
                    calories_burned=w.calories_burned or 0.0,
                    intensity=w.intensity,
                )
                for w in workouts
            ),
        )

    def health(self, day: date) -> HealthSnapshot:
        log = self._daily_log(day)
        if not log:
            return HealthSnapshot()
        sleep = None
        if log.sleep_quality:
            sleep = SleepSnapshot(duration_hours=log.sleep_hours, quality=SleepQuality(log.sleep_quality))
        return HealthSnapshot(
            sleep=sleep,
            recovery_score=log.recovery_score,
            hrv_ms=log.hrv_ms,
            resting_hr=log.resting_hr,
        )

    def cycle(self, day: date) -> Optional[CycleState]:
        log = self._daily_log(day)
        if not log or not log.cycle_phase:
            return None
        return CycleState(phase=log.cycle_phase, day=log.cycle_day or 1)

    def protocols(self) -> ActiveProtocols:
        row = self.db.query(UserProfileRow).order_by(UserProfileRow.id.asc()).first()
        if not row or row.peptide_status == "none":
            return ActiveProtocols()
        compounds = _loads(row.peptide_compounds_json, [])
        return ActiveProtocols(
            peptides=PeptideProtocol(
                compounds=tuple(str(item) for item in compounds),
                schedule=row.peptide_schedule,
                disclosed=row.peptide_status == "active_disclosed",
            )
        )

    def wearables(self) -> WearableState:
        rows = self.db.query(WearableConnection).order_by(WearableConnection.provider.asc()).all()
        synced = [row.last_sync_at for row in rows if row.last_sync_at is not None]
        return WearableState(
            connected=tuple(row.provider for row in rows),
            last_sync_at=max(synced) if synced else None,
        )

    def trends(self, day: date) -> HealthTrends:
        since = day - timedelta(days=TREND_WINDOW_DAYS - 1)
        sleep_avg, steps_avg = (
            self.db.query(func.avg(DailyLog.sleep_hours), func.avg(DailyLog.steps))
            .filter(DailyLog.log_date >= since, DailyLog.log_date <= day)
            .one()
        )
        profile = self.db.query(UserProfileRow).order_by(UserProfileRow.id.asc()).first()
        goals = self.db.query(UserGoalsRow).order_by(UserGoalsRow.id.asc()).first()
        weight_trend = "stable"
        if profile and goals and profile.weight_kg is not None and goals.target_weight_kg is not None:
            gap = profile.weight_kg - goals.target_weight_kg
            if gap > WEIGHT_TREND_TOLERANCE_KG:
                weight_trend = "above target"
            elif gap < -WEIGHT_TREND_TOLERANCE_KG:
                weight_trend = "below target"
            else:
                weight_trend = "at target"
        return HealthTrends(
            avg_sleep_hours=round(float(sleep_avg), 1) if sleep_avg is not None else None,
            avg_steps=int(round(float(steps_avg))) if steps_avg is not None else None,
            weight_trend=weight_trend,
        )
