import json
from datetime import datetime, timezone
from enum import Enum
from typing import Literal, Optional

from fastapi import APIRouter, Depends, HTTPException, Path, status
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from macrocoach.core.security import decrypt_api_key, encrypt_api_key, mask_api_key
from macrocoach.db.models import CoachAIConfig, UserGoals, UserProfile, WearableConnection
from macrocoach.db.session import get_db
from macrocoach.db.stores import get_or_create_goals, get_or_create_profile

router = APIRouter(prefix="/profile", tags=["profile"])

SUPPORTED_WEARABLES = {"apple_health", "health_connect", "oura", "whoop", "garmin", "fitbit"}


class AIProvider(str, Enum):
    openai = "openai"
    gemini = "gemini"
    proxy = "proxy"


class ProfileUpdateRequest(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=120)
    age_years: Optional[int] = Field(default=None, ge=13, le=120)
    sex: Optional[Literal["male", "female", "other"]] = None
    height_cm: Optional[float] = Field(default=None, ge=80, le=260)
    weight_kg: Optional[float] = Field(default=None, ge=25, le=400)
    activity_level: Optional[Literal["sedentary", "light", "moderate", "active", "very_active"]] = None
    fitness_goal: Optional[Literal["lose", "maintain", "gain", "recomp", "performance"]] = None
    allergies: Optional[list[str]] = Field(default=None, max_length=20)
    is_premium: Optional[bool] = None
    peptide_status: Optional[Literal["none", "active_disclosed", "active_undisclosed"]] = None
    peptide_compounds: Optional[list[str]] = Field(default=None, max_length=10)
    peptide_schedule: Optional[str] = Field(default=None, max_length=64)


class ProfileResponse(BaseModel):
    name: str
    age_years: Optional[int] = None
    sex: Optional[str] = None
    height_cm: Optional[float] = None
    weight_kg: Optional[float] = None
    activity_level: str
    fitness_goal: str
    allergies: list[str]
    is_premium: bool
    is_founder: bool
    coach_persona: str
    peptide_status: str
    peptide_compounds: list[str]
    peptide_schedule: Optional[str] = None
    wearables: list[str]


class GoalsUpdateRequest(BaseModel):
    primary_goal: Optional[str] = Field(default=None, min_length=1, max_length=32)
    daily_calories: Optional[int] = Field(default=None, ge=800, le=8000)
    protein_target: Optional[int] = Field(default=None, ge=0, le=600)
    carb_target: Optional[int] = Field(default=None, ge=0, le=1200)
    fat_target: Optional[int] = Field(default=None, ge=0, le=400)
    daily_steps: Optional[int] = Field(default=None, ge=0, le=100000)
    weekly_workouts: Optional[int] = Field(default=None, ge=0, le=21)
    water_target_ml: Optional[int] = Field(default=None, ge=0, le=10000)
    target_weight_kg: Optional[float] = Field(default=None, ge=25, le=400)


class GoalsResponse(BaseModel):
    primary_goal: str
    daily_calories: int
    protein_target: int
    carb_target: int
    fat_target: int
    daily_steps: int
    weekly_workouts: int
    water_target_ml: int
    target_weight_kg: Optional[float] = None


class WearableResponse(BaseModel):
    provider: str
    connected_at: datetime
    last_sync_at: Optional[datetime] = None


class AIConfigInput(BaseModel):
    ai_provider: AIProvider
    ai_model: str = Field(min_length=1, max_length=128)
    ai_api_key: str = Field(min_length=8, max_length=512)


class AIConfigResponse(BaseModel):
    ai_provider: AIProvider
    ai_model: str
    api_key_masked: str


def _json_list(raw: Optional[str]) -> list[str]:
    if not raw:
        return []
    try:
        loaded = json.loads(raw)
    except json.JSONDecodeError:
        return []
    if not isinstance(loaded, list):
        return []
    return [str(item) for item in loaded]


def _profile_response(db: Session, row: UserProfile) -> ProfileResponse:
    wearables = db.query(WearableConnection).order_by(WearableConnection.provider.asc()).all()
    return ProfileResponse(
        name=row.name,
        age_years=row.age_years,
        sex=row.sex,
        height_cm=row.height_cm,
        weight_kg=row.weight_kg,
        activity_level=row.activity_level,
        fitness_goal=row.fitness_goal,
        allergies=_json_list(row.allergies_json),
        is_premium=bool(row.is_premium),
        is_founder=bool(row.is_founder),
        coach_persona=row.coach_persona,
        peptide_status=row.peptide_status,
        peptide_compounds=_json_list(row.peptide_compounds_json),
        peptide_schedule=row.peptide_schedule,
        wearables=[item.provider for item in wearables],
    )


def _goals_response(row: UserGoals) -> GoalsResponse:
    return GoalsResponse(
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


@router.get("", response_model=ProfileResponse)
def get_profile(db: Session = Depends(get_db)) -> ProfileResponse:
    return _profile_response(db, get_or_create_profile(db))


@router.put("", response_model=ProfileResponse)
def update_profile(payload: ProfileUpdateRequest, db: Session = Depends(get_db)) -> ProfileResponse:
    row = get_or_create_profile(db)
    updates = payload.model_dump(exclude_none=True)
    allergies = updates.pop("allergies", None)
    compounds = updates.pop("peptide_compounds", None)
    for name, value in updates.items():
        setattr(row, name, value)
    if allergies is not None:
        row.allergies_json = json.dumps([item.strip() for item in allergies if item.strip()])
    if compounds is not None:
        row.peptide_compounds_json = json.dumps([item.strip() for item in compounds if item.strip()])
    if row.peptide_status == "none":
        row.peptide_compounds_json = None
        row.peptide_schedule = None
    db.commit()
    db.refresh(row)
    return _profile_response(db, row)


@router.get("/goals", response_model=GoalsResponse)
def get_goals(db: Session = Depends(get_db)) -> GoalsResponse:
    return _goals_response(get_or_create_goals(db))


@router.put("/goals", response_model=GoalsResponse)
def update_goals(payload: GoalsUpdateRequest, db: Session = Depends(get_db)) -> GoalsResponse:
    row = get_or_create_goals(db)
    for name, value in payload.model_dump(exclude_none=True).items():
        setattr(row, name, value)
    db.commit()
    db.refresh(row)
    return _goals_response(row)


@router.put("/wearables/{provider}", response_model=WearableResponse)
def connect_wearable(provider: str = Path(..., min_length=2, max_length=32), db: Session = Depends(get_db)) -> WearableResponse:
    key = provider.strip().lower()
    if key not in SUPPORTED_WEARABLES:
        raise HTTPException(status_code=404, detail="Unsupported wearable provider")
    row = db.query(WearableConnection).filter(WearableConnection.provider == key).first()
    now = datetime.now(timezone.utc)
    if not row:
        row = WearableConnection(provider=key, connected_at=now)
        db.add(row)
    row.last_sync_at = now
    db.commit()
    db.refresh(row)
    return WearableResponse(provider=row.provider, connected_at=row.connected_at, last_sync_at=row.last_sync_at)


@router.delete("/wearables/{provider}", status_code=status.HTTP_204_NO_CONTENT)
def disconnect_wearable(provider: str = Path(..., min_length=2, max_length=32), db: Session = Depends(get_db)) -> None:
    row = db.query(WearableConnection).filter(WearableConnection.provider == provider.strip().lower()).first()
    if not row:
        raise HTTPException(status_code=404, detail="Wearable not connected")
    db.delete(row)
    db.commit()


@router.put("/ai-config", response_model=AIConfigResponse)
def set_ai_config(payload: AIConfigInput, db: Session = Depends(get_db)) -> AIConfigResponse:
    cfg = db.query(CoachAIConfig).order_by(CoachAIConfig.id.asc()).first()
    encrypted = encrypt_api_key(payload.ai_api_key)
    if not cfg:
        cfg = CoachAIConfig(
            ai_provider=payload.ai_provider.value,
            ai_model=payload.ai_model.strip(),
            encrypted_api_key=encrypted,
        )
        db.add(cfg)
    else:
        cfg.ai_provider = payload.ai_provider.value
        cfg.ai_model = payload.ai_model.strip()
        cfg.encrypted_api_key = encrypted
    db.commit()
    return AIConfigResponse(
        ai_provider=payload.ai_provider,
        ai_model=cfg.ai_model,
        api_key_masked=mask_api_key(payload.ai_api_key),
    )


@router.get("/ai-config", response_model=AIConfigResponse)
def get_ai_config(db: Session = Depends(get_db)) -> AIConfigResponse:
    cfg = db.query(CoachAIConfig).order_by(CoachAIConfig.id.asc()).first()
    if not cfg:
        raise HTTPException(status_code=404, detail="AI config not found")
    try:
        masked = mask_api_key(decrypt_api_key(cfg.encrypted_api_key))
    except ValueError:
        # Stored with a different SECRET_KEY; the key is unusable but still configured.
        masked = "****...****"
    return AIConfigResponse(ai_provider=AIProvider(cfg.ai_provider), ai_model=cfg.ai_model, api_key_masked=masked)


@router.delete("/ai-config", status_code=status.HTTP_204_NO_CONTENT)
def revoke_ai_config(db: Session = Depends(get_db)) -> None:
    cfg = db.query(CoachAIConfig).order_by(CoachAIConfig.id.asc()).first()
    if not cfg:
        raise HTTPException(status_code=404, detail="AI config not found")
    db.delete(cfg)
    db.commit()
