from datetime import date, datetime
from typing import Optional

from sqlalchemy import Boolean, Date, DateTime, Float, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, declarative_base, mapped_column

Base = declarative_base()


class UserProfile(Base):
    __tablename__ = "user_profile"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(120), nullable=False, default="User")
    age_years: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    sex: Mapped[Optional[str]] = mapped_column(String(16), nullable=True)
    height_cm: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    weight_kg: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    activity_level: Mapped[str] = mapped_column(String(32), nullable=False, default="moderate")
    fitness_goal: Mapped[str] = mapped_column(String(32), nullable=False, default="maintain")
    allergies_json: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    is_premium: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_founder: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    coach_persona: Mapped[str] = mapped_column(String(32), nullable=False, default="balanced")

    # none | active_disclosed | active_undisclosed
    peptide_status: Mapped[str] = mapped_column(String(32), nullable=False, default="none")
    peptide_compounds_json: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    peptide_schedule: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class UserGoals(Base):
    __tablename__ = "user_goals"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    primary_goal: Mapped[str] = mapped_column(String(32), nullable=False, default="maintain")
    daily_calories: Mapped[int] = mapped_column(Integer, nullable=False, default=2000)
    protein_target: Mapped[int] = mapped_column(Integer, nullable=False, default=150)
    carb_target: Mapped[int] = mapped_column(Integer, nullable=False, default=200)
    fat_target: Mapped[int] = mapped_column(Integer, nullable=False, default=65)
    daily_steps: Mapped[int] = mapped_column(Integer, nullable=False, default=10000)
    weekly_workouts: Mapped[int] = mapped_column(Integer, nullable=False, default=4)
    water_target_ml: Mapped[int] = mapped_column(Integer, nullable=False, default=2500)
    target_weight_kg: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class DailyLog(Base):
    __tablename__ = "daily_logs"
    __table_args__ = (UniqueConstraint("log_date", name="uq_daily_logs_log_date"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    log_date: Mapped[date] = mapped_column(Date, nullable=False, index=True)

    calories: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    protein_g: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    carbs_g: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    fat_g: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    water_ml: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)

    steps: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    active_minutes: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    active_calories: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)

    sleep_hours: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    sleep_quality: Mapped[Optional[str]] = mapped_column(String(16), nullable=True)
    recovery_score: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    hrv_ms: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    resting_hr: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    cycle_phase: Mapped[Optional[str]] = mapped_column(String(16), nullable=True)
    cycle_day: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class WorkoutLog(Base):
    __tablename__ = "workout_logs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    log_date: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(120), nullable=False)
    workout_type: Mapped[str] = mapped_column(String(32), nullable=False, default="general")
    duration_min: Mapped[int] = mapped_column(Integer, nullable=False, default=30)
    calories_burned: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    intensity: Mapped[Optional[str]] = mapped_column(String(16), nullable=True)
    source: Mapped[str] = mapped_column(String(16), nullable=False, default="manual")
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)


class WearableConnection(Base):
    __tablename__ = "wearable_connections"
    __table_args__ = (UniqueConstraint("provider", name="uq_wearable_connections_provider"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    provider: Mapped[str] = mapped_column(String(32), nullable=False)
    connected_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)
    last_sync_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)


class ChatMessage(Base):
    __tablename__ = "chat_messages"
    __table_args__ = (Index("ix_chat_messages_session_created", "session_date", "created_at"),)

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    session_date: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    role: Mapped[str] = mapped_column(String(16), nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    rich_content_json: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    metadata_json: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, index=True)


class CoachPlan(Base):
    __tablename__ = "coach_plans"
    __table_args__ = (Index("ix_coach_plans_type_status", "plan_type", "status"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    plan_type: Mapped[str] = mapped_column(String(32), nullable=False)
    name: Mapped[str] = mapped_column(String(180), nullable=False)
    details_json: Mapped[str] = mapped_column(Text, nullable=False, default="{}")
    created_date: Mapped[date] = mapped_column(Date, nullable=False)
    valid_until: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    # active | superseded | invalidated
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="active")
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)


class ConversationSummary(Base):
    __tablename__ = "conversation_summaries"
    __table_args__ = (UniqueConstraint("session_date", name="uq_conversation_summaries_session_date"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    session_date: Mapped[date] = mapped_column(Date, nullable=False)
    topics_csv: Mapped[Optional[str]] = mapped_column(String(512), nullable=True)
    summary: Mapped[str] = mapped_column(String(1024), nullable=False)
    key_decisions_json: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    plans_created_json: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)


class CoachAIConfig(Base):
    __tablename__ = "coach_ai_config"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    ai_provider: Mapped[str] = mapped_column(String(32), nullable=False)
    ai_model: Mapped[str] = mapped_column(String(128), nullable=False)
    encrypted_api_key: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class ModelUsageStat(Base):
    __tablename__ = "model_usage_stats"
    __table_args__ = (
        UniqueConstraint("provider", "model", name="uq_model_usage_provider_model"),
        Index("ix_model_usage_last_used", "last_used_at"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    provider: Mapped[str] = mapped_column(String(32), nullable=False)
    model: Mapped[str] = mapped_column(String(128), nullable=False)
    request_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    prompt_tokens: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    completion_tokens: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_tokens: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_used_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)
