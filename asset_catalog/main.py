import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from asset_catalog.api.v1.routers import assets, catalog, exports, field_metadata, lineage
from asset_catalog.core.config import settings
from asset_catalog.core.errors import (
    ConflictError,
    ExportCancelledError,
    ExportError,
    NotFoundError,
    UnprocessableError,
    conflict_handler,
    export_cancelled_handler,
    export_error_handler,
    generic_error_handler,
    not_found_handler,
    unprocessable_handler,
)
from asset_catalog.services import build_services

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Tests install their own container before the app starts.
    services = getattr(app.state, "services", None) or build_services(settings)
    app.state.services = services
    adopted = await services.orchestrator.startup()
    if adopted is not None:
        logger.info("Export session %s is waiting to be resumed", adopted.session_id)
    yield
    await services.orchestrator.shutdown()
    await services.store.close()


app = FastAPI(
    title=settings.PROJECT_NAME,
    version=settings.VERSION,
    openapi_url=f"{settings.API_V1_STR}/openapi.json",
    lifespan=lifespan,
)

# --- Middleware ---
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# --- Exception handlers ---
app.add_exception_handler(NotFoundError, not_found_handler)  # type: ignore[arg-type]
app.add_exception_handler(ConflictError, conflict_handler)  # type: ignore[arg-type]
app.add_exception_handler(UnprocessableError, unprocessable_handler)  # type: ignore[arg-type]
app.add_exception_handler(ExportCancelledError, export_cancelled_handler)  # type: ignore[arg-type]
app.add_exception_handler(ExportError, export_error_handler)  # type: ignore[arg-type]
app.add_exception_handler(Exception, generic_error_handler)  # type: ignore[arg-type]

# --- Routers ---
app.include_router(exports.router, prefix=settings.API_V1_STR)
app.include_router(assets.router, prefix=settings.API_V1_STR)
app.include_router(lineage.router, prefix=settings.API_V1_STR)
app.include_router(catalog.router, prefix=settings.API_V1_STR)
app.include_router(field_metadata.router, prefix=settings.API_V1_STR)


# --- Health ---
@app.get("/health", tags=["health"])
async def health_check(request: Request) -> dict:
    services = request.app.state.services
    store = await services.store.health()
    session = services.orchestrator.get_progress()
    return {
        "status": "ok" if store["connected"] else "degraded",
        "version": settings.VERSION,
        "services": {
            "blob_store": store,
            "asset_source": {"mode": settings.ASSET_SOURCE_MODE},
        },
        "export_session": session.session_id if session else None,
    }
