"""
FastAPI service for quota-aware document ingestion.

Endpoints:
  POST   /embed                 - chunk, admit, embed and store texts
  POST   /query                 - nearest-chunk search
  POST   /context               - query results joined into a prompt context
  GET    /documents             - stored document records
  DELETE /documents             - delete one document and its vectors
  GET    /metrics/quota         - vector count against the capacity ceiling
  GET    /metrics/quota/status  - full usage snapshot
  GET    /health                - liveness check

The periodic cleanup sweep runs as a background task started in the
lifespan handler; it has no HTTP surface.
"""

import asyncio
import contextlib
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field

from .cleanup import run_cleanup_schedule
from .config import settings
from .deletion import delete_document, document_listing
from .ingest import ingest
from .metadata import SourceMetadata
from .retrieval import build_context, query
from .services import Services, build_default_services

logger = logging.getLogger(__name__)

# Configure logging
logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
)


def create_app(services: Services | None = None) -> FastAPI:
    """Build the app. Tests pass pre-wired services; production wires defaults."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("Starting quota ingestion service...")
        app.state.services = services or build_default_services(settings)
        config = app.state.services.settings

        cleanup_task = None
        if config.cleanup_interval_hours > 0:
            cleanup_task = asyncio.create_task(
                run_cleanup_schedule(
                    app.state.services, config.cleanup_interval_hours * 3600
                )
            )
        logger.info("Quota ingestion service ready")
        yield

        if cleanup_task is not None:
            cleanup_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await cleanup_task
        logger.info("Shutting down quota ingestion service")

    app = FastAPI(
        title="Quota-Aware Ingestion Service",
        description="Ingest, retrieve and expire documents under a fixed vector quota",
        version="1.0.0",
        lifespan=lifespan,
    )
    _register_handlers(app)
    _register_routes(app)
    return app


# ── Request/Response Models ───────────────────────────────


class EmbedMetadata(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    document_id: str = Field(..., alias="documentId", min_length=1)
    document_name: str = Field(..., alias="documentName", min_length=1)
    document_type: str = Field(..., alias="documentType", min_length=1)
    page_number: int | None = Field(default=None, alias="pageNumber")

    def to_source(self) -> SourceMetadata:
        return SourceMetadata(
            document_id=self.document_id,
            document_name=self.document_name,
            document_type=self.document_type,
            page_number=self.page_number,
            extra=dict(self.model_extra or {}),
        )


class EmbedRequest(BaseModel):
    texts: list[str]
    metadata: EmbedMetadata | None = None


class QueryRequest(BaseModel):
    query: str = Field(..., min_length=1)
    limit: int = Field(default=settings.default_query_limit, ge=1)


class ContextRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    query: str = Field(..., min_length=1)
    top_k: int = Field(default=settings.context_top_k, alias="topK", ge=1)


class DeleteDocumentRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    document_id: str = Field(..., alias="documentId", min_length=1)


# ── Error Handling ────────────────────────────────────────


def _register_handlers(app: FastAPI) -> None:
    @app.exception_handler(RequestValidationError)
    async def validation_error(request: Request, exc: RequestValidationError):
        errors = exc.errors()
        detail = errors[0].get("msg", "Invalid request") if errors else "Invalid request"
        return JSONResponse(
            status_code=400,
            content={"error": f"Invalid input: {detail}"},
        )

    @app.exception_handler(Exception)
    async def unexpected_error(request: Request, exc: Exception):
        logger.exception(f"Unhandled error on {request.url.path}")
        return JSONResponse(
            status_code=500,
            content={"error": str(exc) or "Unknown error"},
        )


# ── Endpoints ─────────────────────────────────────────────


def _register_routes(app: FastAPI) -> None:
    def services_of(request: Request) -> Services:
        return request.app.state.services

    @app.get("/health")
    async def health():
        return {"status": "ok", "service": "quota-ingestion"}

    @app.post("/embed")
    async def embed_documents(body: EmbedRequest, request: Request):
        """Chunk and store texts; metadata defaults to an untitled document."""
        source = body.metadata.to_source() if body.metadata else SourceMetadata.untitled()
        result = await ingest(services_of(request), body.texts, source)
        return result.to_dict()

    @app.post("/query")
    async def query_documents(body: QueryRequest, request: Request):
        results = await query(services_of(request), body.query, body.limit)
        return [r.to_dict() for r in results]

    @app.post("/context")
    async def document_context(body: ContextRequest, request: Request):
        context = await build_context(services_of(request), body.query, body.top_k)
        return {"context": context}

    @app.get("/documents")
    async def list_documents(request: Request):
        return {"documents": await document_listing(services_of(request))}

    @app.delete("/documents")
    async def delete_documents(body: DeleteDocumentRequest, request: Request):
        result = await delete_document(services_of(request), body.document_id)
        return result.to_dict()

    @app.get("/metrics/quota")
    async def metrics_quota(request: Request):
        """Current vector count against the ceiling, never cached."""
        status = await services_of(request).quota.usage_status()
        return JSONResponse(
            content={
                "count": status.current_count,
                "limit": status.max_count,
                "percentUsed": status.percentage_used,
                "timestamp": datetime.now(timezone.utc).isoformat(),
            },
            headers={"Cache-Control": "no-store"},
        )

    @app.get("/metrics/quota/status")
    async def metrics_quota_status(request: Request):
        status = await services_of(request).quota.usage_status()
        return JSONResponse(content=status.to_dict(), headers={"Cache-Control": "no-store"})


app = create_app()


def run() -> None:
    """Serve the app with uvicorn on the configured host and port."""
    import uvicorn

    uvicorn.run("quota_service.main:app", host=settings.host, port=settings.port)
