import logging
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.engine import make_url
from starlette.exceptions import HTTPException as StarletteHTTPException

from app.core.config import config
from app.core.db.engine import create_tables
from app.core.error_handler import global_exception_handler
from app.core.logging_config import setup_logging
from app.core.middleware.request_id_middleware import RequestIDMiddleware
from app.core.scheduler.jobs import SYNC_JOB_ID, run_scheduled_sync
from app.core.scheduler.service import SchedulerService

from app.modules.banking.controller import router as banking_router
from app.modules.imports.controller import router as imports_router
from app.modules.known_ibans.controller import router as known_ibans_router
from app.modules.reconciliation.controller import router as transactions_router
from app.modules.warnings.controller import router as warnings_router

setup_logging(level=config.log_level, json_format=config.log_json)
logger = logging.getLogger(__name__)

scheduler = SchedulerService()


def _ensure_sqlite_dir(db_url: str) -> None:
    url = make_url(db_url)
    if url.get_backend_name() == "sqlite" and url.database and url.database != ":memory:":
        Path(url.database).parent.mkdir(parents=True, exist_ok=True)


@asynccontextmanager
async def lifespan(app: FastAPI):
    _ensure_sqlite_dir(config.db_url)
    await create_tables()

    if config.sync_interval_minutes > 0:
        scheduler.add_interval_job(
            run_scheduled_sync, job_id=SYNC_JOB_ID, minutes=config.sync_interval_minutes
        )
        scheduler.start()
        logger.info(f"Next bank sync at {scheduler.next_run_at(SYNC_JOB_ID)}")
    else:
        logger.info("Scheduled bank sync disabled (SYNC_INTERVAL_MINUTES=0)")

    yield

    scheduler.shutdown(wait=False)


app = FastAPI(
    title="Kita Fees API",
    description="Bank transaction reconciliation against daycare fees",
    version="1.0.0",
    lifespan=lifespan,
)

# Add global exception handler
app.add_exception_handler(Exception, global_exception_handler)
app.add_exception_handler(StarletteHTTPException, global_exception_handler)
app.add_exception_handler(RequestValidationError, global_exception_handler)

# Middlewares
app.add_middleware(RequestIDMiddleware)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)

# Routers
app.include_router(transactions_router)
app.include_router(warnings_router)
app.include_router(known_ibans_router)
app.include_router(imports_router)
app.include_router(banking_router)


@app.get("/health")
async def health(request: Request) -> dict[str, str]:
    return {"status": "ok", "request_id": str(request.state.request_id)}
