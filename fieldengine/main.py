"""FastAPI main application for the voter field schema engine."""

import time
from contextlib import asynccontextmanager

import asyncpg
from fastapi import APIRouter, FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware

from fieldengine.api.routes import fields, voters
from fieldengine.core.config import Settings, settings
from fieldengine.core.database import close_db_pool, init_db_pool
from fieldengine.core.exceptions import FieldEngineError
from fieldengine.core.logging_config import get_logger, setup_logging
from fieldengine.core.responses import error_response, error_response_dict, success_response
from fieldengine.core.validation import ReservedFieldPolicy
from fieldengine.repos.entity_collection import EntityCollection, MemoryEntityCollection
from fieldengine.repos.field_backups import FieldBackupStore, MemoryFieldBackupStore
from fieldengine.repos.field_store import FieldStore, MemoryFieldStore
from fieldengine.repos.postgres_backups import PostgresFieldBackupStore
from fieldengine.repos.postgres_entities import PostgresEntityCollection
from fieldengine.repos.postgres_fields import PostgresFieldStore
from fieldengine.services.bulk_mutations import FieldMutationEngine
from fieldengine.services.field_inspection import FieldInspector
from fieldengine.services.field_locks import FieldLockManager
from fieldengine.services.field_registry import FieldRegistry
from fieldengine.services.voters import VoterService

# Setup logging
setup_logging()
logger = get_logger(__name__)


def attach_services(
    app: FastAPI,
    entities: EntityCollection,
    field_store: FieldStore,
    backups: FieldBackupStore | None = None,
    config: Settings = settings,
) -> None:
    """Wire the field schema services onto ``app.state``."""
    registry = FieldRegistry(
        field_store,
        entities,
        reserved_policy=ReservedFieldPolicy(config.reserved_field_names),
        inference_sample_size=config.INSPECT_SAMPLE_SIZE,
    )
    app.state.entities = entities
    app.state.field_registry = registry
    app.state.field_engine = FieldMutationEngine(
        entities,
        registry,
        locks=FieldLockManager(),
        batch_size=config.FIELD_BATCH_SIZE,
        rename_batch_size=config.RENAME_BATCH_SIZE,
        default_timeout=config.MUTATION_TIMEOUT_SECONDS,
        backups=backups if backups is not None else MemoryFieldBackupStore(),
    )
    app.state.field_inspector = FieldInspector(
        entities,
        registry,
        sample_size=config.INSPECT_SAMPLE_SIZE,
        max_sample_values=config.INSPECT_MAX_SAMPLE_VALUES,
        display_length=config.INSPECT_SAMPLE_DISPLAY_LENGTH,
    )
    app.state.voter_service = VoterService(entities)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager - runs on startup and shutdown."""
    logger.info("Starting voter field schema engine...")
    logger.info(f"Environment: {settings.ENVIRONMENT}, storage: {settings.STORAGE_BACKEND}")

    use_postgres = settings.STORAGE_BACKEND == "postgres" and settings.ENVIRONMENT != "test"
    app.state.pool = None

    if use_postgres:
        pool = await init_db_pool(settings)
        app.state.pool = pool
        attach_services(
            app,
            PostgresEntityCollection(pool),
            PostgresFieldStore(pool),
            PostgresFieldBackupStore(pool),
        )
    else:
        attach_services(app, MemoryEntityCollection(), MemoryFieldStore())

    yield

    if use_postgres:
        await close_db_pool()
    logger.info("Shutting down voter field schema engine...")


# Create FastAPI app
app = FastAPI(
    title="Voter Field Schema Engine",
    description="""
    Dynamic field schema management for voter records.

    Features:
    - Field registry (define, update, list, delete)
    - Bulk rename with merge into existing fields
    - Legacy `{value, visible}` attribute flattening
    - Field visibility, registry-level or embedded per voter
    - Field type normalization (String / Number)
    - Inspection of attributes present on voter documents

    ## API Versioning

    - `/v1/*` - Version 1 (current stable)
    - `/*` - Latest version (may change)
    """,
    version="1.0.0",
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
)

# CORS middleware
if settings.ENVIRONMENT == "development":
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS", "PATCH"],
        allow_headers=["*"],
    )
else:
    logger.info(f"CORS allowed origins: {settings.cors_origins_list}")
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS", "PATCH"],
        allow_headers=["Authorization", "Content-Type", "Accept", "Origin"],
    )


# Exception handlers
@app.exception_handler(FieldEngineError)
async def field_engine_exception_handler(request: Request, exc: FieldEngineError):
    """Map field schema errors to their HTTP status."""
    if exc.status_code >= 500:
        logger.error(f"Field engine error: {exc}")
    return error_response_dict(
        {"success": False, "message": exc.message, "data": None, "errors": exc.details},
        exc.status_code,
    )


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    """Handle HTTP exceptions with standardized error responses."""
    # If the detail is already a dict (from our error_response), use it directly
    if isinstance(exc.detail, dict):
        return error_response_dict(exc.detail, exc.status_code)
    return error_response_dict(
        {"success": False, "message": exc.detail, "data": None, "errors": None},
        exc.status_code,
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Handle Pydantic validation errors."""
    errors = {}
    for error in exc.errors():
        field = ".".join(str(loc) for loc in error["loc"])
        errors[field] = error["msg"]

    return error_response_dict(
        {
            "success": False,
            "message": "Validation failed",
            "data": None,
            "errors": errors,
        },
        422,
    )


@app.exception_handler(asyncpg.exceptions.PostgresError)
async def database_exception_handler(
    request: Request, exc: asyncpg.exceptions.PostgresError
):
    """Handle database errors."""
    logger.error(f"Database error: {exc}", exc_info=True)
    return error_response_dict(
        {
            "success": False,
            "message": "Database error occurred",
            "data": None,
            "errors": None,
        },
        500,
    )


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    """Handle unexpected errors."""
    logger.error(f"Unexpected error: {exc}", exc_info=True)
    return error_response_dict(
        {
            "success": False,
            "message": "An unexpected error occurred",
            "data": None,
            "errors": None,
        },
        500,
    )


# Create versioned API router
v1_router = APIRouter(prefix="/v1")
v1_router.include_router(fields.router)
v1_router.include_router(voters.router)
app.include_router(v1_router)

# Also include routers at root level (latest version)
app.include_router(fields.router)
app.include_router(voters.router)


@app.get("/health")
async def health_check(request: Request):
    """
    Health check endpoint for monitoring and load balancers.

    Returns 200 if storage is reachable, 503 otherwise.
    """
    health_status = {"status": "healthy", "timestamp": time.time(), "checks": {}}
    health_status["checks"]["api"] = {"status": "healthy", "message": "API is running"}

    pool = getattr(request.app.state, "pool", None)
    if pool is None:
        health_status["checks"]["storage"] = {
            "status": "healthy",
            "message": "In-memory storage",
        }
        return success_response(data=health_status)

    try:
        async with pool.acquire() as conn:
            await conn.fetchval("SELECT 1")
        pool_size = pool.get_size()
        pool_idle = pool.get_idle_size()
        health_status["checks"]["storage"] = {
            "status": "healthy",
            "message": "Database is accessible",
            "pool": {
                "size": pool_size,
                "max": pool.get_max_size(),
                "idle": pool_idle,
                "active": pool_size - pool_idle,
            },
        }
    except (OSError, asyncpg.PostgresError, asyncpg.InterfaceError) as e:
        health_status["status"] = "unhealthy"
        health_status["checks"]["storage"] = {
            "status": "unhealthy",
            "message": f"Database check failed: {e!s}",
        }
        return error_response(
            message="Health check failed", data=health_status, status_code=503
        )

    return success_response(data=health_status)
