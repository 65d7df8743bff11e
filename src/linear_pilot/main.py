"""FastAPI application entry point for the Linear agent.

This module wires the agent together and exposes its HTTP surface:
- Linear and GitHub webhook receivers (signature verified, dispatched in
  the background)
- Linear OAuth install flow (authorize redirect and code callback)
- Liveness, readiness and Prometheus metrics endpoints
"""

import json
import logging
from contextlib import asynccontextmanager
from typing import Optional, Union

from fastapi import BackgroundTasks, FastAPI, HTTPException, Request
from fastapi.responses import RedirectResponse, Response
from prometheus_client import CONTENT_TYPE_LATEST

from .config import PilotSettings, get_settings
from .events.emitter import CompositeEventEmitter, LoggingEventEmitter
from .events.metrics import MetricsEventEmitter, generate_metrics_output, get_metrics
from .git.repository import GitRepository
from .github.client import GitHubClient
from .jobs.locks import EntityLockTable
from .jobs.queue import WorkQueue
from .linear.client import LinearClient
from .linear.oauth import OAuthError, build_authorize_url, exchange_code
from .orchestrator import PilotOrchestrator
from .phases.base import PhaseServices
from .runner.cursor import CursorRunner
from .state.machine import IssueLifecycle
from .state.repository import (
    InMemoryIssueRepository,
    InMemoryWorkspaceRepository,
    PostgresRepository,
)
from .webhook.handler import GitHubWebhookHandler, LinearWebhookHandler

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

# Global instances, initialized during lifespan startup
settings: PilotSettings
orchestrator: Optional[PilotOrchestrator] = None
linear_webhook_handler: Optional[LinearWebhookHandler] = None
github_webhook_handler: Optional[GitHubWebhookHandler] = None
github_client: Optional[GitHubClient] = None
database: Optional[PostgresRepository] = None
work_queue: Optional[WorkQueue] = None


def _redact_secret(value: Optional[str], visible_chars: int = 4) -> str:
    """Redact a secret value, showing only the first few characters.

    Args:
        value: The secret value to redact.
        visible_chars: Number of characters to show at the start.

    Returns:
        Redacted string with asterisks replacing hidden characters.
    """
    if not value:
        return "(unset)"
    if len(value) <= visible_chars:
        return "*" * len(value)
    return value[:visible_chars] + "*" * (len(value) - visible_chars)


def _log_configuration(settings: PilotSettings) -> None:
    """Log configuration values with secrets redacted."""
    logger.info("Agent configuration:")
    logger.info(f"  GitHub Base URL: {settings.github_base_url}")
    logger.info(f"  GitHub Repository: {settings.github_repo_url}")
    logger.info(f"  GitHub Token: {_redact_secret(settings.github_token)}")
    logger.info(
        f"  GitHub Webhook Secret: {_redact_secret(settings.github_webhook_secret)}"
    )
    logger.info(f"  Mention Handle: @{settings.mention_handle}")
    logger.info(f"  Linear API URL: {settings.linear_api_url}")
    logger.info(
        f"  Linear Webhook Secret: {_redact_secret(settings.linear_webhook_secret)}"
    )
    logger.info(f"  Linear OAuth Configured: {settings.oauth_configured}")
    logger.info(
        f"  Linear Access Token: {_redact_secret(settings.linear_access_token)}"
    )
    logger.info(f"  Cursor Agent Path: {settings.cursor_agent_path}")
    logger.info(f"  Cursor API Key: {_redact_secret(settings.cursor_api_key)}")
    logger.info(f"  Agent Concurrency: {settings.agent_concurrency}")
    logger.info(f"  Branch Prefix: {settings.branch_prefix}")
    logger.info(f"  Work Directory: {settings.work_dir}")
    logger.info(f"  Resume On Startup: {settings.resume_on_startup}")
    logger.info(f"  Database URL: {_redact_secret(settings.database_url)}")
    logger.info(f"  Host: {settings.host}")
    logger.info(f"  Port: {settings.port}")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager for startup and shutdown.

    Handles:
    - Configuration loading and validation
    - Logging configuration (with secrets redacted)
    - Database connection when configured
    - Dependency wiring and resumption of interrupted issues
    - Graceful shutdown and cleanup
    """
    global settings, orchestrator, linear_webhook_handler, github_webhook_handler
    global github_client, database, work_queue

    logger.info("Linear agent starting up...")

    settings = get_settings()
    _log_configuration(settings)

    linear_webhook_handler = LinearWebhookHandler(secret=settings.linear_webhook_secret)
    github_webhook_handler = GitHubWebhookHandler(
        secret=settings.github_webhook_secret,
        mention_handle=settings.mention_handle,
    )
    github_client = GitHubClient(
        token=settings.github_token,
        base_url=settings.github_base_url,
    )

    if settings.database_url:
        database = PostgresRepository(settings.database_url)
        await database.connect()
        issues: Union[PostgresRepository, InMemoryIssueRepository] = database
        workspaces: Union[PostgresRepository, InMemoryWorkspaceRepository] = database
    else:
        logger.warning("PILOT_DATABASE_URL not set, using in-memory storage")
        issues = InMemoryIssueRepository()
        workspaces = InMemoryWorkspaceRepository()

    orchestrator = _build_orchestrator(settings, github_client, issues, workspaces)
    work_queue = orchestrator.services.queue
    get_metrics().set_issue_counts(await orchestrator.services.lifecycle.count_by_state())

    if settings.resume_on_startup:
        resumed = await orchestrator.resume_interrupted()
        logger.info(f"Resumed {resumed} interrupted issue(s)")

    logger.info("Linear agent started successfully")

    yield

    logger.info("Linear agent shutting down...")

    if github_client is not None:
        await github_client.close()
    if database is not None:
        await database.disconnect()

    logger.info("Linear agent shutdown complete")


def _build_orchestrator(
    cfg: PilotSettings,
    gh_client: GitHubClient,
    issues,
    workspaces,
) -> PilotOrchestrator:
    """Wire all dependencies into a PilotOrchestrator.

    Args:
        cfg: Validated settings.
        gh_client: Authenticated GitHub API client.
        issues: Issue record store.
        workspaces: Per-organization token store.

    Returns:
        Fully wired PilotOrchestrator.
    """
    metrics = get_metrics()
    event_emitter = CompositeEventEmitter(
        [LoggingEventEmitter(), MetricsEventEmitter(metrics)]
    )

    services = PhaseServices(
        lifecycle=IssueLifecycle(repository=issues, event_emitter=event_emitter),
        queue=WorkQueue(concurrency=cfg.agent_concurrency, metrics=metrics),
        locks=EntityLockTable(),
        git=GitRepository(
            work_dir=cfg.work_dir,
            repo_url=cfg.github_repo_url,
            token=cfg.github_token,
            author_name=cfg.git_author_name,
            author_email=cfg.git_author_email,
        ),
        github=gh_client,
        runner=CursorRunner(
            agent_path=cfg.cursor_agent_path,
            api_key=cfg.cursor_api_key,
        ),
        linear_factory=lambda token: LinearClient(token, api_url=cfg.linear_api_url),
        event_emitter=event_emitter,
        branch_prefix=cfg.branch_prefix,
    )

    return PilotOrchestrator(
        services=services,
        workspaces=workspaces,
        default_access_token=cfg.linear_access_token,
    )


app = FastAPI(
    title="Linear Pilot",
    description="Autonomous ticket-to-pull-request agent for Linear and GitHub",
    version="1.0.0",
    lifespan=lifespan,
)


@app.get("/health")
async def health():
    """Liveness probe endpoint.

    Returns:
        dict: Status indicating the application is healthy.
    """
    return {"status": "healthy"}


@app.get("/ready")
async def ready():
    """Readiness probe endpoint.

    Reports database connectivity when PostgreSQL is configured and the
    current work queue depth.

    Raises:
        HTTPException: 503 if the database is unreachable.
    """
    database_status = "in_memory"
    if database is not None:
        database_status = "healthy" if await database.health_check() else "unhealthy"

    if database_status == "unhealthy" or orchestrator is None:
        raise HTTPException(
            status_code=503,
            detail={"status": "not_ready", "dependencies": {"database": database_status}},
        )

    return {
        "status": "ready",
        "dependencies": {"database": database_status},
        "queue": {
            "running": work_queue.running if work_queue else 0,
            "pending": work_queue.pending if work_queue else 0,
        },
    }


@app.get("/metrics")
async def metrics():
    """Prometheus metrics endpoint."""
    return Response(content=generate_metrics_output(), media_type=CONTENT_TYPE_LATEST)


def _parse_json(raw_body: bytes):
    try:
        return json.loads(raw_body)
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid JSON body")


@app.post("/webhooks/linear")
async def linear_webhook(request: Request, background_tasks: BackgroundTasks):
    """Linear webhook receiver endpoint.

    Verifies the ``linear-signature`` header, normalizes the payload and
    dispatches it in the background so Linear gets a fast acknowledgement.

    Returns:
        dict: Acknowledgment of webhook receipt.
    """
    if linear_webhook_handler is None or orchestrator is None:
        logger.error("Agent not initialized")
        raise HTTPException(status_code=503, detail="Agent not initialized")

    raw_body = await request.body()
    signature = request.headers.get(LinearWebhookHandler.SIGNATURE_HEADER)
    if not linear_webhook_handler.verify(raw_body, signature):
        logger.warning("Rejected Linear webhook with invalid signature")
        raise HTTPException(status_code=401, detail="Invalid signature")

    payload = _parse_json(raw_body)
    event = linear_webhook_handler.parse(payload)
    if event is None:
        return {"status": "ignored"}

    background_tasks.add_task(orchestrator.dispatch, event)
    return {"status": "accepted", "issue_id": event.issue_id}


@app.post("/webhooks/github")
async def github_webhook(request: Request, background_tasks: BackgroundTasks):
    """GitHub webhook receiver endpoint.

    Verifies ``x-hub-signature-256`` and dispatches ``@handle`` mentions on
    pull requests in the background.

    Returns:
        dict: Acknowledgment of webhook receipt.
    """
    if github_webhook_handler is None or orchestrator is None:
        logger.error("Agent not initialized")
        raise HTTPException(status_code=503, detail="Agent not initialized")

    raw_body = await request.body()
    signature = request.headers.get(GitHubWebhookHandler.SIGNATURE_HEADER)
    if not github_webhook_handler.verify(raw_body, signature):
        logger.warning("Rejected GitHub webhook with invalid signature")
        raise HTTPException(status_code=401, detail="Invalid signature")

    payload = _parse_json(raw_body)
    event_name = request.headers.get(GitHubWebhookHandler.EVENT_HEADER)
    event = github_webhook_handler.parse(event_name, payload)
    if event is None:
        return {"status": "ignored"}

    background_tasks.add_task(orchestrator.dispatch, event)
    return {"status": "accepted", "pull_request": event.pull_request}


@app.get("/oauth/authorize")
async def oauth_authorize():
    """Redirect a workspace admin to Linear to install the agent."""
    if not settings.linear_client_id or not settings.linear_redirect_uri:
        raise HTTPException(
            status_code=500,
            detail="Missing PILOT_LINEAR_CLIENT_ID or PILOT_LINEAR_REDIRECT_URI",
        )
    return RedirectResponse(
        build_authorize_url(settings.linear_client_id, settings.linear_redirect_uri)
    )


@app.get("/oauth/callback")
async def oauth_callback(code: Optional[str] = None, error: Optional[str] = None):
    """Exchange the authorization code and store the workspace token."""
    if error:
        raise HTTPException(status_code=400, detail=error)
    if not code:
        raise HTTPException(status_code=400, detail="Missing authorization code")
    if not settings.oauth_configured or orchestrator is None:
        raise HTTPException(status_code=500, detail="Missing OAuth configuration")

    try:
        access_token = await exchange_code(
            code,
            client_id=settings.linear_client_id,
            client_secret=settings.linear_client_secret,
            redirect_uri=settings.linear_redirect_uri,
        )
        async with LinearClient(access_token, api_url=settings.linear_api_url) as linear:
            organization_id = await linear.organization_id()
        await orchestrator.workspaces.upsert_workspace(organization_id, access_token)
    except OAuthError as e:
        raise HTTPException(status_code=502, detail=e.message)
    except Exception:
        logger.exception("OAuth installation failed")
        raise HTTPException(status_code=500, detail="Token exchange failed")

    logger.info("Workspace installed", extra={"organization_id": organization_id})
    return {"success": True, "organization_id": organization_id}


if __name__ == "__main__":
    import uvicorn

    # For local development, load settings to get host/port
    dev_settings = get_settings()
    uvicorn.run(
        "src.linear_pilot.main:app",
        host=dev_settings.host,
        port=dev_settings.port,
        reload=True,
    )
