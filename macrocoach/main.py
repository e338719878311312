from fastapi import FastAPI

from macrocoach.api.chat_history import router as chat_history_router
from macrocoach.api.coach import router as coach_router
from macrocoach.api.daily_log import router as daily_log_router
from macrocoach.api.profile import router as profile_router
from macrocoach.db.session import create_tables

app = FastAPI(title="MacroCoach")


@app.on_event("startup")
def on_startup() -> None:
    create_tables()


@app.get("/health")
def health() -> dict[str, str]:
    return {"status": "ok"}


@app.get("/api")
def api_root() -> dict[str, str]:
    return {"service": "MacroCoach API", "status": "ok"}


app.include_router(profile_router)
app.include_router(daily_log_router)
app.include_router(coach_router)
app.include_router(chat_history_router)
