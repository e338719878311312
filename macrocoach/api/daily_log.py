from datetime import date, datetime, timedelta, timezone
from typing import Literal, Optional

from fastapi import APIRouter, Depends, Path, Query, status
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from macrocoach.db.models import DailyLog, WorkoutLog
from macrocoach.db.session import get_db

router = APIRouter(prefix="/daily-log", tags=["daily-log"])

# Fields a partial upsert may touch; anything left as None keeps its stored value.
UPSERT_FIELDS = (
    "calories",
    "protein_g",
    "carbs_g",
    "fat_g",
    "water_ml",
    "steps",
    "active_minutes",
    "active_calories",
    "sleep_hours",
    "sleep_quality",
    "recovery_score",
    "hrv_ms",
    "resting_hr",
    "cycle_phase",
    "cycle_day",
)


class DailyLogUpsertRequest(BaseModel):
    calories: Optional[float] = Field(default=None, ge=0, le=20000)
    protein_g: Optional[float] = Field(default=None, ge=0, le=1000)
    carbs_g: Optional[float] = Field(default=None, ge=0, le=2000)
    fat_g: Optional[float] = Field(default=None, ge=0, le=1000)
    water_ml: Optional[float] = Field(default=None, ge=0, le=20000)
    steps: Optional[int] = Field(default=None, ge=0, le=200000)
    active_minutes: Optional[int] = Field(default=None, ge=0, le=1440)
    active_calories: Optional[float] = Field(default=None, ge=0, le=20000)
    sleep_hours: Optional[float] = Field(default=None, ge=0, le=24)
    sleep_quality: Optional[Literal["poor", "fair", "good", "excellent"]] = None
    recovery_score: Optional[int] = Field(default=None, ge=0, le=100)
    hrv_ms: Optional[float] = Field(default=None, ge=0, le=400)
    resting_hr: Optional[int] = Field(default=None, ge=20, le=250)
    cycle_phase: Optional[Literal["menstrual", "follicular", "ovulation", "luteal"]] = None
    cycle_day: Optional[int] = Field(default=None, ge=1, le=60)


class WorkoutCreateRequest(BaseModel):
    name: str = Field(min_length=1, max_length=120)
    workout_type: str = Field(default="general", max_length=32)
    duration_min: int = Field(default=30, ge=1, le=600)
    calories_burned: Optional[float] = Field(default=None, ge=0, le=10000)
    intensity: Optional[Literal["low", "moderate", "high"]] = None
    source: str = Field(default="manual", max_length=16)


class WorkoutItem(BaseModel):
    id: int
    name: str
    workout_type: str
    duration_min: int
    calories_burned: Optional[float] = None
    intensity: Optional[str] = None
    source: str


class DailyLogItem(BaseModel):
    log_date: date
    calories: float
    protein_g: float
    carbs_g: float
    fat_g: float
    water_ml: float
    steps: int
    active_minutes: int
    active_calories: float
    sleep_hours: Optional[float] = None
    sleep_quality: Optional[str] = None
    recovery_score: Optional[int] = None
    hrv_ms: Optional[float] = None
    resting_hr: Optional[int] = None
    cycle_phase: Optional[str] = None
    cycle_day: Optional[int] = None
    workouts: list[WorkoutItem] = Field(default_factory=list)
    updated_at: datetime


class DailyLogListResponse(BaseModel):
    items: list[DailyLogItem]


def _workout_item(row: WorkoutLog) -> WorkoutItem:
    return WorkoutItem(
        id=row.id,
        name=row.name,
        workout_type=row.workout_type,
        duration_min=row.duration_min,
        calories_burned=row.calories_burned,
        intensity=row.intensity,
        source=row.source,
    )


def _to_item(db: Session, row: DailyLog) -> DailyLogItem:
    workouts = (
        db.query(WorkoutLog)
        .filter(WorkoutLog.log_date == row.log_date)
        .order_by(WorkoutLog.created_at.asc())
        .all()
    )
    return DailyLogItem(
        log_date=row.log_date,
        **{name: getattr(row, name) for name in UPSERT_FIELDS},
        workouts=[_workout_item(w) for w in workouts],
        updated_at=row.updated_at,
    )


@router.put("/{log_date}", response_model=DailyLogItem, status_code=status.HTTP_200_OK)
def upsert_daily_log(
    payload: DailyLogUpsertRequest,
    log_date: date = Path(...),
    db: Session = Depends(get_db),
) -> DailyLogItem:
    row = db.query(DailyLog).filter(DailyLog.log_date == log_date).first()
    if not row:
        row = DailyLog(
            log_date=log_date,
            calories=0.0,
            protein_g=0.0,
            carbs_g=0.0,
            fat_g=0.0,
            water_ml=0.0,
            steps=0,
            active_minutes=0,
            active_calories=0.0,
        )
        db.add(row)
    for name, value in payload.model_dump(exclude_none=True).items():
        setattr(row, name, value)
    db.commit()
    db.refresh(row)
    return _to_item(db, row)


@router.get("", response_model=DailyLogListResponse)
def list_daily_logs(
    from_date: Optional[date] = Query(default=None, alias="from"),
    to_date: Optional[date] = Query(default=None, alias="to"),
    db: Session = Depends(get_db),
) -> DailyLogListResponse:
    today = datetime.now(timezone.utc).date()
    start = from_date or (today - timedelta(days=29))
    end = to_date or today
    rows = (
        db.query(DailyLog)
        .filter(DailyLog.log_date >= start, DailyLog.log_date <= end)
        .order_by(DailyLog.log_date.desc())
        .all()
    )
    return DailyLogListResponse(items=[_to_item(db, row) for row in rows])


@router.post("/{log_date}/workouts", response_model=WorkoutItem, status_code=status.HTTP_201_CREATED)
def add_workout(
    payload: WorkoutCreateRequest,
    log_date: date = Path(...),
    db: Session = Depends(get_db),
) -> WorkoutItem:
    row = WorkoutLog(log_date=log_date, **payload.model_dump())
    db.add(row)
    db.commit()
    db.refresh(row)
    return _workout_item(row)
