"""
FastAPI application for email analysis.
"""

from collections import Counter
from contextlib import asynccontextmanager
from dataclasses import asdict

from fastapi import Depends, FastAPI, HTTPException, Request
from pydantic import BaseModel, Field

from mail_analysis.config import settings
from mail_analysis.core.database import Database
from mail_analysis.core.logging import configure_logging, get_logger
from mail_analysis.core.models import BatchResult
from mail_analysis.jobs.retry import RetryFailedAnalysesJob
from mail_analysis.processors import BatchOptions, BatchProcessor, EmailProcessor
from mail_analysis.scheduler import start_scheduler, stop_scheduler
from mail_analysis.services.analysis_client import AnalysisServiceClient

log = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown events."""
    # Startup
    configure_logging(settings.log_level, settings.json_logs)
    log.info("application_starting")

    db = Database()
    await db.open()
    await db.init_schema()

    client = AnalysisServiceClient()
    email_processor = EmailProcessor.from_client(client, store=db)

    app.state.db = db
    app.state.analysis_client = client
    app.state.batch_processor = BatchProcessor(email_processor)
    app.state.retry_job = RetryFailedAnalysesJob(db, email_processor)

    if settings.retry_scheduler_enabled:
        start_scheduler(app.state.retry_job)
    else:
        log.info("scheduler_disabled", reason="use POST /retry-failed to retry manually")

    yield

    # Shutdown
    if settings.retry_scheduler_enabled:
        stop_scheduler()
    await client.close()
    await db.close()
    log.info("application_stopped")


app = FastAPI(
    title="Email Analysis",
    description="Runs AI analyzers over synced emails and stores the results",
    version="1.0.0",
    lifespan=lifespan,
)


# Dependencies

def get_db(request: Request) -> Database:
    return request.app.state.db


def get_batch_processor(request: Request) -> BatchProcessor:
    return request.app.state.batch_processor


def get_retry_job(request: Request) -> RetryFailedAnalysesJob:
    return request.app.state.retry_job


def get_analysis_client(request: Request) -> AnalysisServiceClient:
    return request.app.state.analysis_client


# Request/Response Models

class AnalyzeRequest(BaseModel):
    user_id: str
    max_emails: int = Field(default=50, ge=1, le=200)
    batch_size: int = Field(default=settings.batch_size, ge=1, le=20)
    skip_analyzed: bool = True


class AnalyzeResponse(BaseModel):
    success: bool = True
    message: str = ""
    total_emails: int = 0
    success_count: int = 0
    failure_count: int = 0
    skipped_count: int = 0
    categories: dict[str, int] = {}
    actions_created: int = 0
    total_tokens_used: int = 0
    estimated_cost: float = 0.0
    total_time_ms: int = 0
    cancelled: bool = False
    errors: list[dict[str, str]] = []


def summarize(batch: BatchResult) -> AnalyzeResponse:
    """Build the API response from a batch result."""
    categories: Counter[str] = Counter()
    actions_created = 0

    for result in batch.results.values():
        analysis = result.analysis
        if analysis.categorization is not None:
            categories[analysis.categorization.category] += 1
        action = analysis.action_extraction
        if action is not None and action.has_action and action.action_type != "none":
            actions_created += 1

    return AnalyzeResponse(
        message=f"Analyzed {batch.success_count} of {batch.total_emails} emails",
        total_emails=batch.total_emails,
        success_count=batch.success_count,
        failure_count=batch.failure_count,
        skipped_count=batch.skipped_count,
        categories=dict(categories),
        actions_created=actions_created,
        total_tokens_used=batch.total_tokens_used,
        estimated_cost=batch.estimated_cost,
        total_time_ms=batch.total_time_ms,
        cancelled=batch.cancelled,
        errors=[{"item_id": e.item_id, "error": e.error} for e in batch.errors],
    )


# Endpoints

@app.get("/health")
async def health(client: AnalysisServiceClient = Depends(get_analysis_client)):
    """Health check endpoint."""
    return {"status": "healthy", "analysis_service": await client.health_check()}


@app.post("/analyze", response_model=AnalyzeResponse)
async def analyze_emails(
    request: AnalyzeRequest,
    db: Database = Depends(get_db),
    batch_processor: BatchProcessor = Depends(get_batch_processor),
):
    """
    Analyze a user's emails in batches.

    Runs every analyzer over up to `max_emails` emails and returns
    statistics, per-category tallies and the number of actions created.
    """
    log.info(
        "analyze_request_received",
        user_id=request.user_id,
        max_emails=request.max_emails,
        batch_size=request.batch_size,
    )

    try:
        items = await db.get_unanalyzed_items(
            request.user_id,
            limit=request.max_emails,
            include_analyzed=not request.skip_analyzed,
        )
        if not items:
            return AnalyzeResponse(message="No emails to analyze")

        context = await db.get_user_context(request.user_id)
        batch = await batch_processor.process_batch(
            items,
            context,
            BatchOptions(
                batch_size=request.batch_size,
                delay_between_batches_ms=settings.delay_between_batches_ms,
                max_emails=request.max_emails,
                item_timeout_seconds=settings.item_timeout_seconds,
                batch_timeout_seconds=settings.batch_timeout_seconds,
                skip_analyzed=request.skip_analyzed,
            ),
        )
    except Exception as e:
        log.error("analyze_request_failed", user_id=request.user_id, error=str(e))
        raise HTTPException(status_code=500, detail=f"Analysis failed: {e}")

    return summarize(batch)


@app.post("/retry-failed")
async def retry_failed(job: RetryFailedAnalysesJob = Depends(get_retry_job)):
    """Re-analyze emails whose last analysis failed."""
    result = await job.run()
    if not result.success:
        raise HTTPException(status_code=500, detail=result.error)
    return asdict(result)


# Run with: uvicorn mail_analysis.main:app --host 0.0.0.0 --port 8000
