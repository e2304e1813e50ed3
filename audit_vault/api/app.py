"""FastAPI application for audit-vault."""

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager
import logging
import redis.asyncio as redis

from audit_vault import DataStore
from audit_vault.backup import BackupManager, JobRunner
from audit_vault.backup.errors import BackupError
from audit_vault.config import AuditVaultConfig
import dataclasses
from .config import settings
from .routers import backup, health
from .exceptions import backup_error_handler

# Configure audit-vault logger with app-managed pattern
# This ensures INFO logs are visible regardless of uvicorn's logging config
import sys
import os

vault_logger = logging.getLogger("audit-vault")
vault_logger.setLevel(logging.INFO)

# App-managed pattern: attach our own handler and don't propagate
vault_logger.propagate = False

# Clear any existing handlers to avoid duplicates
vault_logger.handlers.clear()

console_handler = logging.StreamHandler(sys.stdout)
console_handler.setLevel(logging.INFO)

formatter = logging.Formatter(
    '%(asctime)s - [%(name)s] - %(levelname)s - %(message)s',
    datefmt='%Y-%m-%d %H:%M:%S'
)
console_handler.setFormatter(formatter)
vault_logger.addHandler(console_handler)

# Optional: Allow disabling app-managed logging via env var for production
if os.getenv("DISABLE_APP_LOGGING", "false").lower() == "true":
    vault_logger.handlers.clear()
    vault_logger.propagate = True  # Fall back to server-managed pattern

logger = logging.getLogger(__name__)


def build_config() -> AuditVaultConfig:
    """Engine config from the environment with API setting overrides applied."""
    config = AuditVaultConfig.from_env()

    storage_overrides = {}
    if settings.working_dir:
        storage_overrides["working_dir"] = settings.working_dir
    if settings.collection_backend:
        storage_overrides["collection_backend"] = settings.collection_backend
    if settings.redis_url and config.storage.collection_backend == "redis":
        storage_overrides["redis_url"] = settings.redis_url
        storage_overrides["redis_password"] = settings.redis_password

    backup_overrides = {}
    if settings.backup_dir:
        backup_overrides["backup_dir"] = settings.backup_dir

    return dataclasses.replace(
        config,
        storage=dataclasses.replace(config.storage, **storage_overrides),
        backup=dataclasses.replace(config.backup, **backup_overrides),
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage datastore and backup engine lifecycle."""
    logger.info("Initializing audit-vault...")

    config = build_config()

    try:
        app.state.datastore = DataStore(config=config)
        logger.info(f"DataStore initialized ({len(app.state.datastore.registry)} datasets)")
    except Exception as e:
        logger.error(f"Failed to initialize DataStore: {e}")
        raise

    # Initialize Redis client for job tracking if Redis URL is configured
    if settings.redis_url:
        try:
            app.state.redis_client = redis.from_url(
                settings.redis_url,
                password=settings.redis_password,
                encoding="utf-8",
                decode_responses=True
            )
            await app.state.redis_client.ping()
            logger.info("Redis client initialized for job tracking")
        except Exception as e:
            logger.warning(f"Failed to initialize Redis client: {e}")
            app.state.redis_client = None
    else:
        app.state.redis_client = None
        logger.info("Redis not configured - job tracking kept in memory")

    app.state.backup_manager = BackupManager(
        app.state.datastore,
        job_runner=JobRunner(app.state.redis_client),
    )
    app.state.backup_manager.cleanup()

    yield

    # Cleanup
    logger.info("Shutting down audit-vault...")
    await app.state.backup_manager.shutdown()
    await app.state.datastore.close()
    if app.state.redis_client:
        await app.state.redis_client.aclose()


def create_app() -> FastAPI:
    """Create and configure FastAPI application."""
    app = FastAPI(
        title=settings.api_title,
        version=settings.api_version,
        lifespan=lifespan,
        docs_url=f"{settings.api_prefix}/docs",
        openapi_url=f"{settings.api_prefix}/openapi.json",
    )

    # Add CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(BackupError, backup_error_handler)

    app.include_router(backup.router, prefix=settings.api_prefix)
    app.include_router(health.router, prefix=settings.api_prefix)

    @app.get("/")
    async def root():
        """Root endpoint."""
        return {
            "name": settings.api_title,
            "version": settings.api_version,
            "docs": f"{settings.api_prefix}/docs"
        }

    return app


# Create default app instance
app = create_app()
