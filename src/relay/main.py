"""FastAPI application entry point for the Linear agent relay.

Receives Linear agent session webhooks and GitHub App webhooks, and wires
the correlation store, API clients, orchestrator and routers together
during the application lifespan.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Optional

import httpx
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, PlainTextResponse

from src.relay.config import RelaySettings, get_settings
from src.relay.events.emitter import EventSinkType, create_event_emitter
from src.relay.events.metrics import generate_metrics_output
from src.relay.github.client import GitHubClient
from src.relay.intent.router import IntentRouter
from src.relay.linear.oauth import LinearClientFactory, OAuthTokenService
from src.relay.sessions import SessionHandler
from src.relay.store.base import CorrelationStore
from src.relay.store.memory import InMemoryCorrelationStore
from src.relay.store.repository import PostgresCorrelationStore
from src.relay.webhook.processor import WebhookProcessor
from src.relay.workflow.orchestrator import WorkflowOrchestrator

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

# Global instances, initialized during lifespan startup
settings: RelaySettings
store: Optional[CorrelationStore] = None
processor: Optional[WebhookProcessor] = None
http_client: Optional[httpx.AsyncClient] = None
github_client: Optional[GitHubClient] = None
refresh_task: Optional[asyncio.Task] = None


def _redact_secret(value: str, visible_chars: int = 4) -> str:
    """Redact a secret value, showing only the first few characters.

    Args:
        value: The secret value to redact.
        visible_chars: Number of characters to show at the start.

    Returns:
        Redacted string with asterisks replacing hidden characters.
    """
    if len(value) <= visible_chars:
        return "*" * len(value)
    return value[:visible_chars] + "*" * (len(value) - visible_chars)


def _log_configuration(settings: RelaySettings) -> None:
    """Log configuration values with secrets redacted."""
    logger.info("Relay configuration:")
    logger.info(f"  Linear API URL: {settings.linear_api_url}")
    logger.info(
        f"  Linear Webhook Secret: {_redact_secret(settings.linear_webhook_secret)}"
    )
    logger.info(f"  Linear Client ID: {settings.linear_client_id or '(not set)'}")
    logger.info(
        f"  Linear Client Secret: {_redact_secret(settings.linear_client_secret)}"
    )
    logger.info(f"  Token Refresh Buffer Seconds: {settings.token_refresh_buffer_seconds}")
    logger.info(
        f"  Token Refresh Interval Seconds: {settings.token_refresh_interval_seconds}"
    )
    logger.info(f"  GitHub Base URL: {settings.github_base_url}")
    logger.info(f"  GitHub App ID: {settings.github_app_id}")
    logger.info(f"  GitHub App Slug: {settings.github_app_slug}")
    logger.info(
        f"  GitHub Webhook Secret: {_redact_secret(settings.github_webhook_secret)}"
    )
    logger.info(f"  Workflow File: {settings.workflow_file}")
    logger.info(f"  Database URL: {_redact_secret(settings.database_url)}")
    logger.info(f"  Host: {settings.host}")
    logger.info(f"  Port: {settings.port}")


async def _create_store(cfg: RelaySettings) -> CorrelationStore:
    """Create the correlation store selected by the database URL."""
    if cfg.uses_memory_store:
        logger.warning("Using in-memory correlation store; state is not persisted")
        return InMemoryCorrelationStore()

    postgres = PostgresCorrelationStore(cfg.database_url)
    await postgres.connect()
    return postgres


def _build_processor(
    cfg: RelaySettings,
    correlation_store: CorrelationStore,
    gh_client: GitHubClient,
    tokens: OAuthTokenService,
    shared_http: httpx.AsyncClient,
) -> WebhookProcessor:
    """Wire all relay dependencies into a WebhookProcessor."""
    event_emitter = create_event_emitter(
        [EventSinkType.LOGGING, EventSinkType.METRICS]
    )
    linear_clients = LinearClientFactory(
        tokens=tokens,
        api_url=cfg.linear_api_url,
        http_client=shared_http,
        timeout=cfg.http_timeout_seconds,
    )
    orchestrator = WorkflowOrchestrator(
        store=correlation_store,
        github=gh_client,
        linear_clients=linear_clients,
        event_emitter=event_emitter,
        workflow_file=cfg.workflow_file,
    )
    router = IntentRouter(
        store=correlation_store,
        github=gh_client,
        orchestrator=orchestrator,
    )
    sessions = SessionHandler(
        store=correlation_store,
        linear_clients=linear_clients,
        orchestrator=orchestrator,
        router=router,
    )
    return WebhookProcessor(
        store=correlation_store,
        sessions=sessions,
        orchestrator=orchestrator,
        event_emitter=event_emitter,
        linear_webhook_secret=cfg.linear_webhook_secret,
        github_webhook_secret=cfg.github_webhook_secret,
    )


async def _refresh_tokens_periodically(
    tokens: OAuthTokenService, interval_seconds: int
) -> None:
    """Refresh expiring Linear tokens until cancelled."""
    while True:
        try:
            refreshed = await tokens.refresh_expiring_tokens()
            if refreshed:
                logger.info("Refreshed %d expiring OAuth tokens", refreshed)
        except Exception:
            logger.exception("OAuth token refresh sweep failed")
        await asyncio.sleep(interval_seconds)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager for startup and shutdown.

    Handles:
    - Configuration loading and validation
    - Logging configuration (with secrets redacted)
    - Store connection and dependency wiring
    - The periodic OAuth token refresh task
    - Graceful shutdown and cleanup
    """
    global settings, store, processor, http_client, github_client, refresh_task

    logger.info("Linear agent relay starting up...")

    settings = get_settings()
    _log_configuration(settings)

    store = await _create_store(settings)
    http_client = httpx.AsyncClient(timeout=settings.http_timeout_seconds)
    github_client = GitHubClient(
        app_id=settings.github_app_id,
        private_key=settings.github_app_private_key,
        app_slug=settings.github_app_slug,
        base_url=settings.github_base_url,
        web_url=settings.github_web_url,
        timeout=settings.http_timeout_seconds,
    )
    tokens = OAuthTokenService(
        store=store,
        client_id=settings.linear_client_id,
        client_secret=settings.linear_client_secret,
        token_url=settings.linear_token_url,
        refresh_buffer_seconds=settings.token_refresh_buffer_seconds,
        http_client=http_client,
    )
    processor = _build_processor(settings, store, github_client, tokens, http_client)

    if tokens.can_refresh:
        refresh_task = asyncio.create_task(
            _refresh_tokens_periodically(
                tokens, settings.token_refresh_interval_seconds
            )
        )
    else:
        logger.warning("Linear OAuth client not configured; token refresh disabled")

    logger.info("Linear agent relay started successfully")

    yield

    logger.info("Linear agent relay shutting down...")

    if refresh_task is not None:
        refresh_task.cancel()
        try:
            await refresh_task
        except asyncio.CancelledError:
            pass
        refresh_task = None

    if github_client is not None:
        await github_client.close()
    if http_client is not None:
        await http_client.aclose()
    if isinstance(store, PostgresCorrelationStore):
        await store.disconnect()

    logger.info("Linear agent relay shutdown complete")


app = FastAPI(
    title="Linear Agent Relay",
    description="Dispatches GitHub Actions workflows for Linear agent sessions",
    version="1.0.0",
    lifespan=lifespan,
)


@app.get("/health")
async def health():
    """Liveness probe endpoint.

    Returns:
        dict: Status indicating the application is running.
    """
    return {"status": "healthy"}


@app.get("/ready")
async def ready():
    """Readiness probe endpoint.

    Returns 503 while the correlation store is unreachable.
    """
    database_healthy = store is not None and await store.health_check()
    database_status = "healthy" if database_healthy else "unhealthy"

    return JSONResponse(
        status_code=200 if database_healthy else 503,
        content={
            "status": "ready" if database_healthy else "not_ready",
            "dependencies": {
                "database": database_status,
            },
        },
    )


@app.get("/metrics", response_class=PlainTextResponse)
async def metrics():
    """Prometheus metrics endpoint."""
    return PlainTextResponse(generate_metrics_output())


def _not_initialized() -> JSONResponse:
    logger.error("Relay not initialized")
    return JSONResponse(status_code=503, content={"error": "Relay not initialized"})


@app.post("/webhook/linear")
async def linear_webhook(request: Request):
    """Linear webhook receiver.

    The signature is checked against the raw body before anything is parsed.
    """
    if processor is None:
        return _not_initialized()

    body = await request.body()
    result = await processor.process_linear(
        body, request.headers.get("linear-signature")
    )
    return JSONResponse(status_code=result.status_code, content=result.body)


@app.post("/webhook/github")
async def github_webhook(request: Request):
    """GitHub App webhook receiver."""
    if processor is None:
        return _not_initialized()

    body = await request.body()
    result = await processor.process_github(
        body,
        signature=request.headers.get("x-hub-signature-256"),
        event_type=request.headers.get("x-github-event"),
        delivery_id=request.headers.get("x-github-delivery"),
    )
    return JSONResponse(status_code=result.status_code, content=result.body)


if __name__ == "__main__":
    import uvicorn

    # For local development, load settings to get host/port
    dev_settings = get_settings()
    uvicorn.run(
        "src.relay.main:app",
        host=dev_settings.host,
        port=dev_settings.port,
        reload=True,
    )
