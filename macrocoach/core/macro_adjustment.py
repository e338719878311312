import math
from dataclasses import dataclass
from datetime import date
from fractions import Fraction
from typing import Optional

from macrocoach.core.context_aggregator import SleepQuality, UserContext

HIGH_ACTIVITY_MULTIPLIER = 1.5
HIGH_ACTIVITY_BONUS_KCAL = 150
POOR_SLEEP_PENALTY_KCAL = -100
LOW_RECOVERY_THRESHOLD = 50
WORKOUT_REFUEL_RATIO = Fraction(1, 2)

# Percent of the calorie delta assigned to each macro.
PROTEIN_SHARE_PCT = 30
CARB_SHARE_PCT = 45
FAT_SHARE_PCT = 25
KCAL_PER_G_PROTEIN = 4
KCAL_PER_G_CARB = 4
KCAL_PER_G_FAT = 9


def _round_half_up(value) -> int:
    return int(math.floor(value + Fraction(1, 2)))


def _grams(delta_kcal: int, share_pct: int, kcal_per_g: int) -> int:
    return _round_half_up(Fraction(delta_kcal * share_pct, 100 * kcal_per_g))


@dataclass(frozen=True)
class AdjustmentCause:
    code: str
    delta_kcal: int
    reason: str


@dataclass(frozen=True)
class MacroAdjustment:
    reason: str
    original_calories: int
    adjusted_calories: int
    original_protein: int
    adjusted_protein: int
    original_carbs: int
    adjusted_carbs: int
    original_fat: int
    adjusted_fat: int
    valid_for_date: date
    causes: tuple[AdjustmentCause, ...] = ()

    @property
    def calorie_delta(self) -> int:
        return self.adjusted_calories - self.original_calories

    def to_dict(self) -> dict:
        return {
            "reason": self.reason,
            "original_calories": self.original_calories,
            "adjusted_calories": self.adjusted_calories,
            "original_protein": self.original_protein,
            "adjusted_protein": self.adjusted_protein,
            "original_carbs": self.original_carbs,
            "adjusted_carbs": self.adjusted_carbs,
            "original_fat": self.original_fat,
            "adjusted_fat": self.adjusted_fat,
            "valid_for_date": self.valid_for_date.isoformat(),
            "causes": [
                {"code": cause.code, "delta_kcal": cause.delta_kcal, "reason": cause.reason}
                for cause in self.causes
            ],
        }


def collect_causes(context: UserContext) -> list[AdjustmentCause]:
    """Evaluate every rule in fixed order; each contributes at most one cause."""
    activity = context.today.activity
    health = context.today.health
    causes: list[AdjustmentCause] = []

    if activity.workouts:
        burned = sum(workout.calories_burned or 0 for workout in activity.workouts)
        bonus = _round_half_up(Fraction(burned).limit_denominator(1000) * WORKOUT_REFUEL_RATIO)
        causes.append(AdjustmentCause("workout", bonus, f"Workout detected (+{bonus} kcal for recovery)."))

    if activity.steps > context.goals.daily_steps * HIGH_ACTIVITY_MULTIPLIER:
        causes.append(
            AdjustmentCause("high_activity", HIGH_ACTIVITY_BONUS_KCAL, "High activity day (+150 kcal).")
        )

    if health.sleep is not None and health.sleep.quality == SleepQuality.POOR:
        causes.append(
            AdjustmentCause("poor_sleep", POOR_SLEEP_PENALTY_KCAL, "Poor sleep (-100 kcal to prevent stress eating).")
        )

    if health.recovery_score is not None and health.recovery_score < LOW_RECOVERY_THRESHOLD:
        causes.append(AdjustmentCause("low_recovery", 0, "Low recovery - prioritize protein for recovery."))

    return causes


def compute_macro_adjustment(context: UserContext) -> Optional[MacroAdjustment]:
    causes = collect_causes(context)
    delta = sum(cause.delta_kcal for cause in causes)
    if delta == 0:
        return None

    goals = context.goals
    protein_delta = _grams(delta, PROTEIN_SHARE_PCT, KCAL_PER_G_PROTEIN)
    carb_delta = _grams(delta, CARB_SHARE_PCT, KCAL_PER_G_CARB)
    fat_delta = _grams(delta, FAT_SHARE_PCT, KCAL_PER_G_FAT)

    return MacroAdjustment(
        reason=" ".join(cause.reason for cause in causes).strip(),
        original_calories=goals.daily_calories,
        adjusted_calories=goals.daily_calories + delta,
        original_protein=goals.protein_target,
        adjusted_protein=goals.protein_target + protein_delta,
        original_carbs=goals.carb_target,
        adjusted_carbs=goals.carb_target + carb_delta,
        original_fat=goals.fat_target,
        adjusted_fat=goals.fat_target + fat_delta,
        valid_for_date=context.today.day,
        causes=tuple(causes),
    )


def format_adjustment_for_prompt(adjustment: MacroAdjustment) -> str:
    return "\n".join(
        [
            "## MACRO ADJUSTMENT NEEDED",
            f"Reason: {adjustment.reason}",
            f"Original: {adjustment.original_calories} kcal, {adjustment.original_protein}g P, "
            f"{adjustment.original_carbs}g C, {adjustment.original_fat}g F",
            f"Adjusted: {adjustment.adjusted_calories} kcal, {adjustment.adjusted_protein}g P, "
            f"{adjustment.adjusted_carbs}g C, {adjustment.adjusted_fat}g F",
            "Please inform the user about this adjustment.",
        ]
    )
