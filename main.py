import logging

from fastapi import FastAPI, HTTPException, Request, status
from pydantic import BaseModel

import db
from app.errors import PersistenceError
from app.runtime import Runtime
from app.types.contracts import LoopConfig, ReminderCreate, ReminderJob
from config import settings

logging.basicConfig(
    level=settings.LOG_LEVEL.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
_LOGGER = logging.getLogger("minder")

app = FastAPI()

# Build the runtime on startup and tear it down on shutdown

@app.on_event("startup")
async def startup_event():
    # Tests install their own runtime before the app starts
    if getattr(app.state, "runtime", None) is None:
        app.state.runtime = Runtime.build()
    await app.state.runtime.start()

@app.on_event("shutdown")
async def shutdown_event():
    runtime = getattr(app.state, "runtime", None)
    if runtime is not None:
        await runtime.close()
        app.state.runtime = None
    await db.dispose_engine()


def _runtime(request: Request) -> Runtime:
    return request.app.state.runtime


class LoopStatus(BaseModel):
    channel_id: str
    channel_name: str
    interval_ms: int
    endpoints: int
    rounds: int


# --------------------------------------------
# Reminders
# --------------------------------------------
@app.post("/v1/reminders", status_code=status.HTTP_201_CREATED, response_model=ReminderJob)
async def create_reminder(body: ReminderCreate, request: Request):
    try:
        return await _runtime(request).scheduler.create(
            body.user_id, body.channel_id, body.message, body.due_timestamp()
        )
    except PersistenceError as e:
        _LOGGER.error("[API] reminder insert failed: %s", e)
        raise HTTPException(503, "DB error") from e


@app.get("/v1/reminders", response_model=list[ReminderJob])
async def list_reminders(user_id: str, request: Request):
    try:
        rows = await _runtime(request).store.list_reminders(user_id)
    except PersistenceError as e:
        raise HTTPException(503, "DB error") from e
    return [ReminderJob.model_validate(r.as_dict()) for r in rows]


@app.delete("/v1/reminders/{reminder_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_reminder(reminder_id: int, request: Request):
    try:
        removed = await _runtime(request).scheduler.remove(reminder_id)
    except PersistenceError as e:
        raise HTTPException(503, "DB error") from e
    if not removed:
        raise HTTPException(404, "Reminder not found")


@app.delete("/v1/users/{user_id}/reminders")
async def clear_reminders(user_id: str, request: Request):
    try:
        removed = await _runtime(request).scheduler.clear_user(user_id)
    except PersistenceError as e:
        raise HTTPException(503, "DB error") from e
    return {"removed": removed}


# --------------------------------------------
# Webhook loops
# --------------------------------------------
@app.post("/v1/loops")
async def start_loop(config: LoopConfig, request: Request):
    try:
        started = await _runtime(request).loops.launch(config)
    except PersistenceError as e:
        raise HTTPException(503, "DB error") from e
    return {"channel_id": config.channel_id, "started": started}


@app.get("/v1/loops", response_model=list[LoopStatus])
async def list_loops(request: Request):
    return [
        LoopStatus(
            channel_id=inst.key,
            channel_name=inst.config.channel_name,
            interval_ms=inst.config.interval_ms,
            endpoints=len(inst.endpoints),
            rounds=inst.rounds,
        )
        for inst in _runtime(request).loops.running()
    ]


@app.delete("/v1/loops/{channel_id}", status_code=status.HTTP_204_NO_CONTENT)
async def stop_loop(channel_id: str, request: Request):
    try:
        found = await _runtime(request).loops.retire(channel_id)
    except PersistenceError as e:
        raise HTTPException(503, "DB error") from e
    if not found:
        raise HTTPException(404, "Loop not found")


@app.get("/healthz")
async def healthz(request: Request):
    runtime = _runtime(request)
    return {"reminders_scheduled": len(runtime.scheduler), "loops_running": len(runtime.loops)}
