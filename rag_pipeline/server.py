"""FastAPI server for the RAG pipeline."""
import logging
from contextlib import asynccontextmanager
from typing import List, Optional
from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .config import RAGConfig
from .errors import ConfigurationError, RAGPipelineError, ValidationError
from .models import (
    HealthResponse,
    IngestRequest,
    IngestResponse,
    PipelineInfo,
    QueryRequest,
    RAGResponse,
    RuleRequest,
    RunInfo,
    RunStatus,
    SearchRequest,
    SearchResponse,
    SelectionReport,
    SelectRequest,
    StoreStats,
    UrlRule,
)
from .service import RAGService
from .stages import StageInfo

logger = logging.getLogger(__name__)


def create_app(config: Optional[RAGConfig] = None, service: Optional[RAGService] = None) -> FastAPI:
    """
    Create FastAPI application.

    Args:
        config: RAG configuration (uses environment if not provided)
        service: Pre-built service (built from config if not provided)

    Returns:
        FastAPI application
    """
    if service is None:
        service = RAGService(config or RAGConfig.from_env())
    config = service.config

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await service.startup()
        yield
        await service.shutdown()

    app = FastAPI(
        title="RAG Pipeline Server",
        description="URL-routed ingestion pipelines and vector retrieval",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.service = service

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(ValidationError)
    async def validation_error_handler(request: Request, exc: ValidationError):
        return JSONResponse(status_code=400, content={"detail": exc.message, "errors": exc.errors})

    @app.exception_handler(ConfigurationError)
    async def configuration_error_handler(request: Request, exc: ConfigurationError):
        logger.error(f"Configuration error: {exc.message}")
        return JSONResponse(status_code=500, content={"detail": exc.message, "errors": exc.errors})

    # Ingestion

    @app.post("/v1/rag/ingest", response_model=IngestResponse)
    async def ingest(request: IngestRequest):
        """Run the pipeline selected for a URL."""
        logger.info(f"Ingestion request received: {request.url}")

        result = await service.ingest(request)

        if result.status == RunStatus.CANCELLED:
            raise HTTPException(409, {"run_id": result.run_id, "message": result.message})

        if result.status != RunStatus.COMPLETED:
            raise HTTPException(500, {
                "run_id": result.run_id,
                "pipeline": result.pipeline,
                "message": result.message,
                "failed_stage": result.failed_stage,
                "errors": result.errors,
                "completed_stages": [s.stage for s in result.stages if s.success],
            })

        outputs = result.outputs
        return IngestResponse(
            run_id=result.run_id,
            pipeline=result.pipeline,
            message=result.message,
            url=outputs.get("url", request.url),
            document_id=outputs.get("document_id"),
            chunks_processed=outputs.get("chunks_processed", 0),
            chunks_stored=outputs.get("chunks_stored", 0),
            chunk_size=outputs.get("chunk_size"),
            chunk_overlap=outputs.get("chunk_overlap"),
            stages=result.stages,
            execution_time_ms=result.total_duration_ms,
        )

    @app.get("/v1/runs/{run_id}", response_model=RunInfo)
    async def get_run(run_id: str):
        """Inspect a run context."""
        context = service.get_run(run_id)
        if context is None:
            raise HTTPException(404, f"Run '{run_id}' not found")
        return RunInfo.from_context(context)

    @app.post("/v1/runs/{run_id}/cancel")
    async def cancel_run(run_id: str):
        """Request cancellation of an in-flight run."""
        if not service.cancel(run_id):
            raise HTTPException(404, f"Run '{run_id}' is not running")
        return {"run_id": run_id, "cancelled": True}

    # Retrieval

    @app.post("/v1/rag/search", response_model=SearchResponse)
    async def search(request: SearchRequest):
        """Search for similar chunks (retrieval only)."""
        try:
            return await service.search(request)
        except RAGPipelineError:
            raise
        except Exception as e:
            logger.error(f"Search failed: {e}", exc_info=True)
            raise HTTPException(500, f"Search failed: {e}")

    @app.post("/v1/rag/query", response_model=RAGResponse)
    async def query(request: QueryRequest):
        """RAG query: retrieve and generate an answer."""
        try:
            return await service.query(request)
        except RAGPipelineError:
            raise
        except Exception as e:
            logger.error(f"Query failed: {e}", exc_info=True)
            raise HTTPException(500, f"Query failed: {e}")

    @app.get("/v1/rag/stats", response_model=StoreStats)
    async def stats():
        """Document, chunk and past query counts."""
        return await service.engine.stats()

    # Pipelines and stages

    @app.get("/v1/pipelines", response_model=List[PipelineInfo])
    async def list_pipelines():
        """Active pipelines with their URL patterns."""
        return service.selector.list_pipelines()

    @app.post("/v1/pipelines/select", response_model=SelectionReport)
    async def select_pipeline(request: SelectRequest):
        """Explain which pipeline a URL would get."""
        return service.selector.test_selection(request.url)

    @app.post("/v1/pipelines/rules", response_model=UrlRule)
    async def add_rule(request: RuleRequest):
        """Add or update a URL rule."""
        try:
            return service.selector.add_or_update_rule(
                request.pipeline_id, request.pattern, request.priority, request.active
            )
        except ConfigurationError as e:
            # A rejected registration is a client error, not a server fault
            raise HTTPException(400, {"message": e.message, "errors": e.errors})

    @app.get("/v1/stages", response_model=List[StageInfo])
    async def list_stages():
        """Registered stages."""
        return service.factory.info()

    # Status

    @app.get("/health", response_model=HealthResponse)
    async def health_check():
        """Health check endpoint."""
        store_status = await service.store.health()

        embedding_healthy = await service.embedder.health_check()
        embedding_status = {"connected": embedding_healthy, "url": config.embedding_url}

        llm_healthy = await service.llm.health_check()
        llm_status = {"connected": llm_healthy, "url": config.llm_url}

        all_healthy = store_status.get("status") == "healthy" and embedding_healthy and llm_healthy

        return HealthResponse(
            status="healthy" if all_healthy else "degraded",
            vector_store=store_status,
            embedding=embedding_status,
            llm=llm_status,
            active_runs=service.active_runs,
        )

    @app.get("/")
    async def root():
        """Root endpoint."""
        return {
            "name": "RAG Pipeline Server",
            "version": "1.0.0",
            "status": "running",
            "endpoints": {
                "ingest": "/v1/rag/ingest",
                "search": "/v1/rag/search",
                "query": "/v1/rag/query",
                "stats": "/v1/rag/stats",
                "pipelines": "/v1/pipelines",
                "select": "/v1/pipelines/select",
                "rules": "/v1/pipelines/rules",
                "stages": "/v1/stages",
                "runs": "/v1/runs/{run_id}",
                "health": "/health",
            },
        }

    return app
