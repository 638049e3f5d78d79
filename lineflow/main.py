import asyncio
import os

from fastapi import Depends, FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import select
from sqlalchemy.orm import Session

from lineflow.config import settings
from lineflow.database import SessionLocal, get_db, init_db
from lineflow.logging_config import get_logger, setup_logging
from lineflow.routers import ai_logs, contacts, deliveries, escalations, scenarios, segments, webhook
from lineflow.services.delivery_service import process_scheduled_deliveries
from lineflow.services.line_service import get_line_service

setup_logging(settings.log_level)

app = FastAPI(
    title="Lineflow API",
    description="LINE official account automation: webhooks, scenarios, segments and AI replies",
    version="0.1.0",
)

cors_env = os.environ.get("CORS_ALLOW_ORIGINS", "*")
cors_origins = [origin.strip() for origin in cors_env.split(",") if origin.strip()]
if not cors_origins:
    cors_origins = ["*"]

app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(webhook.router)
app.include_router(scenarios.router)
app.include_router(segments.router)
app.include_router(contacts.router)
app.include_router(deliveries.router)
app.include_router(escalations.router)
app.include_router(ai_logs.router)

worker_logger = get_logger("delivery_worker")
_delivery_worker_task: asyncio.Task | None = None


def _is_delivery_worker_enabled() -> bool:
    if os.environ.get("PYTEST_CURRENT_TEST"):
        return False
    return settings.delivery_worker_enabled


def _run_delivery_batch() -> dict:
    db = SessionLocal()
    try:
        return process_scheduled_deliveries(
            db,
            get_line_service(),
            limit=settings.delivery_batch_size,
            claim_timeout_seconds=settings.delivery_claim_timeout_seconds,
        )
    finally:
        db.close()


async def _delivery_worker_loop() -> None:
    interval_seconds = max(float(settings.delivery_worker_interval_seconds), 1.0)
    while True:
        try:
            await asyncio.sleep(interval_seconds)
            # Sync DB and HTTP work stays off the event loop
            results = await asyncio.to_thread(_run_delivery_batch)
            if results["processed"]:
                worker_logger.info("Delivery worker processed", extra={"context": results})
        except asyncio.CancelledError:
            break
        except Exception as exc:
            worker_logger.error(
                "Delivery worker loop failed",
                extra={"context": {"error": str(exc)}},
            )


@app.on_event("startup")
async def startup() -> None:
    global _delivery_worker_task
    if settings.auto_create_tables:
        init_db()
    if not _is_delivery_worker_enabled():
        return
    if _delivery_worker_task is None or _delivery_worker_task.done():
        _delivery_worker_task = asyncio.create_task(_delivery_worker_loop())
        worker_logger.info("Delivery worker started")


@app.on_event("shutdown")
async def stop_delivery_worker() -> None:
    global _delivery_worker_task
    if _delivery_worker_task is None:
        return
    _delivery_worker_task.cancel()
    try:
        await _delivery_worker_task
    except asyncio.CancelledError:
        pass
    _delivery_worker_task = None


@app.get("/health")
async def health():
    return {"status": "ok"}


@app.get("/db-check")
def db_check(db: Session = Depends(get_db)):
    db.execute(select(1))
    return {"status": "ok"}
