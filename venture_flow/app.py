"""Application factory for the VentureForge FastAPI backend."""

import logging
import os

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .config import PipelineSettings, configure_logging, get_llm_settings, get_pipeline_settings
from .llm import GenerationClient
from .memory import SessionRegistry
from .pipeline import PlanPipeline
from .routers import pipeline
from .store import PlanStore, create_store

logger = logging.getLogger(__name__)


DEFAULT_ALLOWED_ORIGINS = [
    "http://localhost:3000",
    "http://127.0.0.1:3000",
    "http://localhost:3001",
    "http://127.0.0.1:3001",
]


def _resolve_allowed_origins() -> list[str]:
    """Return allowed origins, optionally sourced from an env override."""

    raw = os.getenv("VENTUREFORGE_ALLOWED_ORIGINS")
    if raw:
        return [origin.strip() for origin in raw.split(",") if origin.strip()]
    return DEFAULT_ALLOWED_ORIGINS


def create_app(
    *,
    settings: PipelineSettings | None = None,
    generation_client: GenerationClient | None = None,
    store: PlanStore | None = None,
) -> FastAPI:
    """Create and configure a FastAPI application instance.

    The generation client and plan store default to ones built from the
    environment; tests pass their own.
    """
    settings = settings or get_pipeline_settings()
    configure_logging(settings.log_level)

    app = FastAPI(
        title="VentureForge Backend",
        version="0.1.0",
        description="Staged LLM pipeline that turns raw material into persisted business plans.",
    )
    allowed_origins = _resolve_allowed_origins()
    app.add_middleware(
        CORSMiddleware,
        allow_origins=allowed_origins,
        allow_origin_regex=r"http://localhost:\d+$",
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    client = generation_client or GenerationClient(settings=settings, llm_settings=get_llm_settings())
    plan_store = store or create_store(settings.store_path)

    app.state.settings = settings
    app.state.generation_client = client
    app.state.store = plan_store
    app.state.registry = SessionRegistry(
        lambda: PlanPipeline(client, plan_store, settings=settings),
        max_sessions=settings.max_sessions,
        idle_ttl=settings.session_ttl,
    )
    app.include_router(pipeline.router)

    logger.info(
        "VentureForge ready (model=%s, contracts=%s, store=%s)",
        settings.model,
        settings.contract_version,
        type(plan_store).__name__,
    )
    return app


app = create_app()
