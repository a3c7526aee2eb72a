# portal/main.py

import asyncio
import logging
from contextlib import asynccontextmanager
from datetime import timedelta
from typing import Optional, Sequence

import httpx
from fastapi import FastAPI
from fastapi.responses import RedirectResponse
from sqlalchemy.ext.asyncio import async_sessionmaker

from portal.adapters.configuration.config import Settings, get_settings
from portal.adapters.inbound.api.v1.router import api_router as api_v1_router
from portal.adapters.outbound.cache.counter_store import RedisCounterStore
from portal.adapters.outbound.logging.error_tracking import ErrorTrackingForwarder
from portal.adapters.outbound.logging.sinks import (
    LOG_FORMAT,
    DatabaseLogSink,
    LocalLogSink,
    attach_file_handler,
    cleanup_old_log_files,
)
from portal.adapters.outbound.notifications.email_sender import SmtpEmailSender
from portal.adapters.outbound.notifications.webhook_notifier import WebhookAlertNotifier
from portal.adapters.outbound.persistence.database import (
    Base,
    build_engine,
    build_session_factory,
    session_scope,
)
from portal.adapters.outbound.security.token_codec import TokenCodec
from portal.application.ports.outbound import ICounterStore, ILogForwarder, ILogSink
from portal.application.services.alert_service import AlertForwarder, AlertService
from portal.application.services.structured_logger import StructuredLogger
from portal.application.use_cases.log_analytics_use_cases import AsyncLogAnalyticsService
from portal.application.use_cases.log_use_cases import AsyncLogService
from portal.domain.models.log_domain_model import LogLevel
from portal.shared.middleware import (
    AuthGate,
    RateLimiter,
    RequestPipeline,
    parse_rules,
    register_exception_handlers,
)

logger = logging.getLogger(__name__)


# ─── LOGGING CONFIGURATION ────────────────────────────────────────────────────────
def configure_logging(settings: Settings) -> None:
    level = logging.DEBUG if settings.DEBUG else getattr(logging, settings.LOG_LEVEL, logging.INFO)
    logging.basicConfig(level=level, format=LOG_FORMAT)
    if settings.LOG_DIR:
        attach_file_handler(settings.LOG_DIR, settings.LOG_RETENTION_DAYS)
# ────────────────────────────────────────────────────────────────────────────────


# ── LOG RETENTION TASK ────────────────────────────────────────────────────────
async def cleanup_expired_logs(app: FastAPI) -> int:
    """Deletes log records and rotated log files past the retention period."""
    settings: Settings = app.state.settings
    async with session_scope(app.state.session_factory) as db:
        service = AsyncLogService(app.state.structured_logger, db)
        deleted = await service.purge_expired(settings.LOG_RETENTION_DAYS)

    if settings.LOG_DIR:
        files = cleanup_old_log_files(settings.LOG_DIR, settings.LOG_RETENTION_DAYS)
        logger.info(f"Removed {files} log files older than {settings.LOG_RETENTION_DAYS} days")
    return deleted


async def periodic_log_cleanup(app: FastAPI):
    """Background task to periodically apply the log retention policy."""
    interval = app.state.settings.LOG_CLEANUP_INTERVAL_HOURS * 60 * 60
    while True:
        try:
            await asyncio.sleep(interval)
            await cleanup_expired_logs(app)
        except asyncio.CancelledError:
            logger.info("Log cleanup task cancelled")
            break
        except Exception as e:
            logger.exception(f"Error in cleanup_expired_logs: {e}")
            await app.state.alert_service.alert_error(
                f"Log cleanup failed: {e}", source="log-retention", metadata={"error_type": type(e).__name__}
            )


# ── ANOMALY DETECTION TASK ────────────────────────────────────────────────────
async def detect_log_anomalies(app: FastAPI) -> list:
    """Runs one anomaly detection pass over the persisted request logs."""
    settings: Settings = app.state.settings
    async with session_scope(app.state.session_factory) as db:
        service = AsyncLogAnalyticsService(app.state.alert_service, db)
        return await service.detect_anomalies(
            window=timedelta(minutes=settings.ANOMALY_WINDOW_MINUTES),
            baseline_windows=settings.ANOMALY_BASELINE_WINDOWS,
            threshold=settings.ANOMALY_THRESHOLD,
        )


async def periodic_anomaly_detection(app: FastAPI):
    """Background task running anomaly detection once per window."""
    interval = app.state.settings.ANOMALY_WINDOW_MINUTES * 60
    while True:
        try:
            await asyncio.sleep(interval)
            await detect_log_anomalies(app)
        except asyncio.CancelledError:
            logger.info("Anomaly detection task cancelled")
            break
        except Exception as e:
            logger.exception(f"Error in detect_log_anomalies: {e}")


async def stop_task(task: Optional[asyncio.Task]) -> None:
    if task is None:
        return
    task.cancel()
    try:
        await task
    except asyncio.CancelledError:
        pass


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    logger.info("Application starting up...")
    settings: Settings = app.state.settings
    app.state.pipeline.check_routes(app.routes)

    engine = app.state.engine
    if engine is not None and settings.DB_CREATE_TABLES:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    app.state.cleanup_task = asyncio.create_task(periodic_log_cleanup(app))
    app.state.analytics_task = None
    if settings.ANOMALY_DETECTION_ENABLED:
        app.state.analytics_task = asyncio.create_task(periodic_anomaly_detection(app))

    yield

    # Shutdown
    logger.info("Application shutting down...")
    await stop_task(app.state.cleanup_task)
    await stop_task(app.state.analytics_task)

    await app.state.structured_logger.drain(settings.LOG_FORWARD_DRAIN_TIMEOUT)
    await app.state.counter_store.close()
    await app.state.http_client.aclose()
    if engine is not None:
        await engine.dispose()


def build_forwarders(settings: Settings, http_client: httpx.AsyncClient, alert_service: AlertService) -> list:
    forwarders: list = []
    if settings.ERROR_TRACKING_URL:
        forwarders.append(ErrorTrackingForwarder(
            settings.ERROR_TRACKING_URL,
            http_client,
            token=settings.ERROR_TRACKING_TOKEN,
            environment=settings.ENVIRONMENT,
            release=settings.RELEASE,
            service=settings.SERVICE_NAME,
        ))
    if alert_service.email_sender is not None or alert_service.notifier is not None:
        forwarders.append(AlertForwarder(alert_service))
    return forwarders


def build_alert_service(settings: Settings, http_client: httpx.AsyncClient) -> AlertService:
    email_sender = None
    if settings.SMTP_HOST:
        email_sender = SmtpEmailSender(
            settings.SMTP_HOST,
            port=settings.SMTP_PORT,
            username=settings.SMTP_USER,
            password=settings.SMTP_PASSWORD,
            use_tls=settings.SMTP_USE_TLS,
            sender=settings.SMTP_FROM,
            retry_attempts=settings.SMTP_RETRY_ATTEMPTS,
            retry_delay=settings.SMTP_RETRY_DELAY,
        )

    notifier = WebhookAlertNotifier(settings.ALERT_WEBHOOK_URL, http_client) if settings.ALERT_WEBHOOK_URL else None

    return AlertService(
        email_sender=email_sender,
        notifier=notifier,
        recipients={
            LogLevel.ERROR: settings.ERROR_ALERT_RECIPIENTS,
            LogLevel.WARN: settings.WARNING_ALERT_RECIPIENTS,
            LogLevel.INFO: settings.INFO_ALERT_RECIPIENTS,
        },
        service=settings.SERVICE_NAME,
    )


def create_app(
        settings: Optional[Settings] = None,
        *,
        counter_store: Optional[ICounterStore] = None,
        persistence_sink: Optional[ILogSink] = None,
        forwarders: Optional[Sequence[ILogForwarder]] = None,
        session_factory: Optional[async_sessionmaker] = None,
) -> FastAPI:
    """
    Build the application and every process-wide collaborator.

    Collaborators passed in replace the ones built from ``settings``.
    """
    settings = settings or get_settings()
    configure_logging(settings)

    engine = None
    if session_factory is None:
        engine = build_engine(settings)
        session_factory = build_session_factory(engine)

    if counter_store is None:
        counter_store = RedisCounterStore.from_url(settings.REDIS_URL)

    http_client = httpx.AsyncClient(timeout=settings.ERROR_TRACKING_TIMEOUT)
    alert_service = build_alert_service(settings, http_client)
    if forwarders is None:
        forwarders = build_forwarders(settings, http_client, alert_service)

    structured_logger = StructuredLogger(
        persistence=persistence_sink or DatabaseLogSink(session_factory),
        local=LocalLogSink(),
        forwarders=forwarders,
        min_forward_level=LogLevel.parse(settings.ALERT_MIN_LEVEL),
        default_metadata={"service": settings.SERVICE_NAME, "environment": settings.ENVIRONMENT},
        background_forwarding=settings.LOG_FORWARD_IN_BACKGROUND,
    )
    alert_service.structured_logger = structured_logger

    token_codec = TokenCodec(
        settings.JWT_SECRET,
        algorithm=settings.JWT_ALGORITHM,
        default_ttl=timedelta(hours=settings.ACCESS_TOKEN_EXPIRE_HOURS),
    )
    pipeline = RequestPipeline(
        structured_logger,
        AuthGate(token_codec),
        RateLimiter(counter_store, structured_logger, fault_log_interval=settings.RATE_LIMIT_FAULT_LOG_INTERVAL),
        parse_rules(settings.RATE_LIMIT_RULES),
    )

    app = FastAPI(
        title=settings.SERVICE_NAME,
        description="Portal request pipeline",
        version=settings.RELEASE,
        debug=settings.DEBUG,
        lifespan=lifespan,
    )

    app.state.settings = settings
    app.state.engine = engine
    app.state.session_factory = session_factory
    app.state.counter_store = counter_store
    app.state.http_client = http_client
    app.state.alert_service = alert_service
    app.state.structured_logger = structured_logger
    app.state.token_codec = token_codec
    app.state.pipeline = pipeline

    register_exception_handlers(app, settings)
    app.include_router(api_v1_router, prefix="/api/v1")
    pipeline.check_routes(app.routes)

    @app.get("/", include_in_schema=False)
    async def redirect_to_docs():
        return RedirectResponse(url="/docs")

    return app
