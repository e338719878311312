from conftest import utc_today


def test_partial_upsert_keeps_existing_values(client) -> None:
    first = client.put("/daily-log/2026-03-14", json={"calories": 1200, "steps": 8000})
    assert first.status_code == 200
    assert first.json()["calories"] == 1200
    assert first.json()["protein_g"] == 0

    second = client.put("/daily-log/2026-03-14", json={"protein_g": 90.5, "sleep_quality": "good", "sleep_hours": 7.5})
    body = second.json()
    assert body["calories"] == 1200
    assert body["steps"] == 8000
    assert body["protein_g"] == 90.5
    assert body["sleep_quality"] == "good"


def test_invalid_values_are_rejected(client) -> None:
    assert client.put("/daily-log/2026-03-14", json={"sleep_quality": "awful"}).status_code == 422
    assert client.put("/daily-log/2026-03-14", json={"recovery_score": 140}).status_code == 422
    assert client.put("/daily-log/not-a-date", json={}).status_code == 422


def test_workouts_are_listed_with_their_day(client) -> None:
    created = client.post(
        "/daily-log/2026-03-14/workouts",
        json={"name": "Leg day", "workout_type": "strength", "duration_min": 55, "calories_burned": 380},
    )
    assert created.status_code == 201
    assert created.json()["source"] == "manual"
    client.put("/daily-log/2026-03-14", json={"steps": 9000})
    client.put("/daily-log/2026-03-12", json={"steps": 4000})

    listing = client.get("/daily-log", params={"from": "2026-03-01", "to": "2026-03-31"}).json()["items"]
    assert [item["log_date"] for item in listing] == ["2026-03-14", "2026-03-12"]
    assert [w["name"] for w in listing[0]["workouts"]] == ["Leg day"]
    assert listing[1]["workouts"] == []


def test_poor_sleep_log_feeds_macro_adjustment(client) -> None:
    client.put(f"/daily-log/{utc_today().isoformat()}", json={"sleep_hours": 4.5, "sleep_quality": "poor"})

    adjustment = client.get("/coach/macro-adjustment").json()["adjustment"]
    assert adjustment["adjusted_calories"] == 1900
    assert adjustment["adjusted_protein"] == 143
    assert adjustment["reason"] == "Poor sleep (-100 kcal to prevent stress eating)."


def test_sleep_quality_without_hours_still_counts(client) -> None:
    client.put(f"/daily-log/{utc_today().isoformat()}", json={"sleep_quality": "poor"})

    adjustment = client.get("/coach/macro-adjustment").json()["adjustment"]
    assert adjustment["adjusted_calories"] == 1900
    assert adjustment["causes"][0]["code"] == "poor_sleep"
