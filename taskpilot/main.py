from __future__ import annotations

from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from taskpilot.api.routes import execution, tasks
from taskpilot.config import settings
from taskpilot.errors import LLMError, NotFoundError, StoreError, TaskAnalysisError
from taskpilot.services import logger as log_service
from taskpilot.services.store import TaskStore, create_store


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Only the postgres backend owns its schema.
    init_schema = getattr(app.state.store, "init_schema", None)
    if init_schema is not None:
        await init_schema()
    yield
    await app.state.store.close()


async def _analysis_error(request: Request, exc: TaskAnalysisError) -> JSONResponse:
    log_service.logger.error(f"Task analysis failed: {exc}")
    return JSONResponse(status_code=500, content={"error": "Failed to analyze task", "details": str(exc)})


async def _llm_error(request: Request, exc: LLMError) -> JSONResponse:
    log_service.logger.error(f"LLM request failed on {request.url.path}: {exc}")
    return JSONResponse(status_code=500, content={"error": "LLM request failed", "details": str(exc)})


async def _not_found(request: Request, exc: NotFoundError) -> JSONResponse:
    return JSONResponse(status_code=404, content={"error": str(exc)})


async def _store_error(request: Request, exc: StoreError) -> JSONResponse:
    return JSONResponse(status_code=500, content={"error": "Storage request failed", "details": str(exc)})


def create_app(store: TaskStore | None = None) -> FastAPI:
    app = FastAPI(
        title="TaskPilot",
        description="Task manager with LLM task execution and live web search",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.store = store or create_store()

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origin_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(TaskAnalysisError, _analysis_error)
    app.add_exception_handler(LLMError, _llm_error)
    app.add_exception_handler(NotFoundError, _not_found)
    app.add_exception_handler(StoreError, _store_error)

    app.include_router(execution.router)
    app.include_router(tasks.router)

    @app.get("/api/health")
    async def health():
        return {"status": "ok", "service": "taskpilot"}

    return app


app = create_app()
