from datetime import date, datetime, timezone

from macrocoach.core.context_aggregator import (
    ActiveProtocols,
    ActivitySnapshot,
    DailySnapshot,
    HealthMetrics,
    HealthSnapshot,
    SleepQuality,
    SleepSnapshot,
    UserContext,
    UserGoals,
    UserProfile,
    Workout,
)
from macrocoach.core.macro_adjustment import compute_macro_adjustment, format_adjustment_for_prompt

DAY = date(2026, 3, 14)


def _context(activity: ActivitySnapshot = ActivitySnapshot(), health: HealthSnapshot = HealthSnapshot()) -> UserContext:
    return UserContext(
        profile=UserProfile(),
        goals=UserGoals(),
        today=DailySnapshot(day=DAY, activity=activity, health=health),
        protocols=ActiveProtocols(),
        health_metrics=HealthMetrics(),
        generated_at=datetime(2026, 3, 14, 12, tzinfo=timezone.utc),
    )


def test_quiet_day_returns_none() -> None:
    context = _context(
        activity=ActivitySnapshot(steps=15000),
        health=HealthSnapshot(sleep=SleepSnapshot(7.5, SleepQuality.GOOD), recovery_score=50),
    )
    assert compute_macro_adjustment(context) is None


def test_workout_adds_half_of_burned_calories() -> None:
    context = _context(activity=ActivitySnapshot(workouts=(Workout(name="Legs", calories_burned=400),)))
    adjustment = compute_macro_adjustment(context)

    assert adjustment is not None
    assert adjustment.adjusted_calories == 2200
    assert adjustment.adjusted_protein == 165
    assert adjustment.adjusted_carbs == 223
    assert adjustment.adjusted_fat == 71
    assert adjustment.reason == "Workout detected (+200 kcal for recovery)."
    assert adjustment.valid_for_date == DAY


def test_workout_calories_summed_and_rounded_half_up() -> None:
    workouts = (Workout(name="Run", calories_burned=151), Workout(name="Lift", calories_burned=100))
    adjustment = compute_macro_adjustment(_context(activity=ActivitySnapshot(workouts=workouts)))

    assert adjustment is not None
    assert adjustment.calorie_delta == 126
    assert adjustment.reason == "Workout detected (+126 kcal for recovery)."


def test_high_activity_and_poor_sleep_net_fifty() -> None:
    context = _context(
        activity=ActivitySnapshot(steps=15001),
        health=HealthSnapshot(sleep=SleepSnapshot(5.0, SleepQuality.POOR)),
    )
    adjustment = compute_macro_adjustment(context)

    assert adjustment is not None
    assert adjustment.adjusted_calories == 2050
    assert adjustment.reason == "High activity day (+150 kcal). Poor sleep (-100 kcal to prevent stress eating)."
    assert [cause.code for cause in adjustment.causes] == ["high_activity", "poor_sleep"]


def test_steps_exactly_at_threshold_do_not_trigger() -> None:
    assert compute_macro_adjustment(_context(activity=ActivitySnapshot(steps=15000))) is None


def test_poor_sleep_alone_lowers_targets() -> None:
    context = _context(health=HealthSnapshot(sleep=SleepSnapshot(4.5, SleepQuality.POOR)))
    adjustment = compute_macro_adjustment(context)

    assert adjustment is not None
    assert adjustment.adjusted_calories == 1900
    # -7.5 rounds toward +inf, -11.25 to -11, -2.78 to -3
    assert adjustment.adjusted_protein == 143
    assert adjustment.adjusted_carbs == 189
    assert adjustment.adjusted_fat == 62


def test_low_recovery_alone_is_not_surfaced() -> None:
    assert compute_macro_adjustment(_context(health=HealthSnapshot(recovery_score=30))) is None


def test_low_recovery_appends_reason_when_delta_nonzero() -> None:
    context = _context(
        activity=ActivitySnapshot(workouts=(Workout(name="Row", calories_burned=300),)),
        health=HealthSnapshot(recovery_score=42),
    )
    adjustment = compute_macro_adjustment(context)

    assert adjustment is not None
    assert adjustment.reason.endswith("Low recovery - prioritize protein for recovery.")
    assert sum(cause.delta_kcal for cause in adjustment.causes) == adjustment.calorie_delta


def test_offsetting_rules_cancel_to_none() -> None:
    context = _context(
        activity=ActivitySnapshot(workouts=(Workout(name="Walk", calories_burned=200),)),
        health=HealthSnapshot(sleep=SleepSnapshot(5.0, SleepQuality.POOR), recovery_score=20),
    )
    assert compute_macro_adjustment(context) is None


def test_prompt_section_lists_original_and_adjusted() -> None:
    context = _context(activity=ActivitySnapshot(workouts=(Workout(name="Legs", calories_burned=400),)))
    text = format_adjustment_for_prompt(compute_macro_adjustment(context))

    assert text.startswith("## MACRO ADJUSTMENT NEEDED")
    assert "Original: 2000 kcal" in text
    assert "Adjusted: 2200 kcal" in text
