"""FastAPI application entry point for the rental risk gating API."""
from __future__ import annotations

import logging
import random
from contextlib import asynccontextmanager
from collections.abc import AsyncIterator
from typing import Any

from fastapi import BackgroundTasks, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from faker import Faker
from pydantic import BaseModel, Field

from riskgate.api.routes.bookings import bookings_router
from riskgate.api.routes.fraud import fraud_router
from riskgate.api.routes.hosts import hosts_router
from riskgate.api.routes.verifications import verifications_router
from riskgate.config import settings
from riskgate.errors import InternalError, RiskGateError
from riskgate.models.database import create_tables
from riskgate.pipeline.ingestion import BookingIngestionPipeline

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Configure logging and make sure the schema exists before serving."""
    logging.basicConfig(level=settings.LOG_LEVEL, format=LOG_FORMAT)
    await create_tables()
    logger.info("%s started. Database tables ready.", settings.APP_TITLE)
    yield


app = FastAPI(
    title=settings.APP_TITLE,
    description="Risk scoring and verification gating for rental bookings",
    version=settings.APP_VERSION,
    lifespan=lifespan,
)

# Operator consoles are served from other origins.
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(bookings_router)
app.include_router(verifications_router)
app.include_router(fraud_router)
app.include_router(hosts_router)


# ---------------------------------------------------------------------------
# Error rendering
# ---------------------------------------------------------------------------
@app.exception_handler(RiskGateError)
async def risk_gate_error_handler(request: Request, exc: RiskGateError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    first = exc.errors()[0] if exc.errors() else {}
    location = ".".join(str(part) for part in first.get("loc", ()))
    message = f"{location}: {first.get('msg', 'invalid request')}" if location else "invalid request"
    return JSONResponse(status_code=400, content={"error": "invalid_request", "message": message})


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    error = InternalError("Unexpected error while processing the request")
    return JSONResponse(status_code=error.status_code, content=error.to_dict())


# ---------------------------------------------------------------------------
# Store seeding
# ---------------------------------------------------------------------------
class SeedJobResponse(BaseModel):
    """Acknowledgement returned before a seeding job runs."""

    status: str = "started"
    message: str


class GenerateRequest(BaseModel):
    count: int = Field(default=200, ge=1, le=5000, description="Minimum bookings to generate.")
    seed: int = Field(default=42, description="Seed for random and Faker.")


class IngestFileRequest(BaseModel):
    data_file: str = Field(default="data/bookings.json", description="JSON array of bookings.")


async def _seed_store(label: str, load) -> None:
    """Run *load* against a fresh intake pipeline and log its summary."""
    pipeline = BookingIngestionPipeline()
    try:
        summary = await load(pipeline)
    except Exception:
        logger.exception("Seeding job %s failed", label)
        return
    logger.info(
        "Seeding job %s done: %d bookings, %d flagged, %d blocked, %d gated",
        label,
        summary["total"],
        summary["flagged"],
        summary["blocked"],
        summary["requiring_verification"],
    )


async def _generate_and_ingest(
    pipeline: BookingIngestionPipeline, count: int, seed: int
) -> dict[str, Any]:
    from data.generate_data import generate_dataset

    random.seed(seed)
    Faker.seed(seed)
    bookings = generate_dataset(total=count)
    return await pipeline.ingest_from_list(bookings)


@app.post("/api/pipeline/generate", response_model=SeedJobResponse, status_code=202, tags=["pipeline"])
async def generate_bookings(body: GenerateRequest, background_tasks: BackgroundTasks) -> SeedJobResponse:
    """Generate synthetic bookings and run them through intake in the background."""
    background_tasks.add_task(
        _seed_store,
        f"generate(seed={body.seed})",
        lambda p: _generate_and_ingest(p, body.count, body.seed),
    )
    return SeedJobResponse(message=f"Generating at least {body.count} bookings (seed={body.seed})")


@app.post("/api/pipeline/trigger", response_model=SeedJobResponse, status_code=202, tags=["pipeline"])
async def ingest_file(body: IngestFileRequest, background_tasks: BackgroundTasks) -> SeedJobResponse:
    """Ingest a bookings file in the background."""
    background_tasks.add_task(_seed_store, body.data_file, lambda p: p.ingest_from_json(body.data_file))
    return SeedJobResponse(message=f"Ingesting {body.data_file}")
