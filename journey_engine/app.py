"""Application factory for the journey engine's FastAPI surface."""

from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .calendar_sync import CalendarAdapter, LocalCalendar
from .catalog import StageCatalog
from .config import EngineSettings, configure_logging, get_engine_settings, get_llm_settings
from .engine import JourneyEngine
from .errors import JourneyNotOpen, ValidationError
from .llm import AIClient, OpenAIJourneyClient
from .persistence import JsonFileStore, MemoryStore, ProgressStore
from .registry import JourneyRegistry
from .routers import journey

logger = logging.getLogger(__name__)

DEFAULT_ALLOWED_ORIGINS = [
    "http://localhost:3000",
    "http://127.0.0.1:3000",
]


def _resolve_allowed_origins(settings: EngineSettings) -> list[str]:
    """Return allowed origins, optionally sourced from an env override."""

    if settings.allowed_origins:
        return list(settings.allowed_origins)
    return DEFAULT_ALLOWED_ORIGINS


def _default_store(settings: EngineSettings) -> ProgressStore:
    if settings.data_dir is not None:
        logger.info("Persisting journeys under %s", settings.data_dir)
        return JsonFileStore(settings.data_dir)
    logger.info("JOURNEY_DATA_DIR not set; journeys are kept in memory")
    return MemoryStore()


def create_app(
    *,
    ai_client: AIClient | None = None,
    store: ProgressStore | None = None,
    calendar: CalendarAdapter | None = None,
    settings: EngineSettings | None = None,
) -> FastAPI:
    """Create and configure a FastAPI application instance.

    Collaborators default to the environment-configured implementations and
    can be replaced, e.g. with fakes in tests.
    """

    settings = settings or get_engine_settings()
    configure_logging(settings.log_level)

    app = FastAPI(
        title="Journey Engine",
        version="0.1.0",
        description="Stage-by-stage business journeys with AI-generated islands.",
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=_resolve_allowed_origins(settings),
        allow_origin_regex=r"http://localhost:\d+$",
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    resolved_client = ai_client or OpenAIJourneyClient(get_llm_settings())
    resolved_store = store or _default_store(settings)
    resolved_calendar = calendar or LocalCalendar()
    catalog = StageCatalog(resolved_client, settings)

    def build_engine() -> JourneyEngine:
        return JourneyEngine(
            catalog,
            resolved_store,
            calendar=resolved_calendar,
            ai_client=resolved_client,
        )

    app.state.settings = settings
    app.state.registry = JourneyRegistry(build_engine)

    @app.exception_handler(ValidationError)
    async def _validation_error(request: Request, exc: ValidationError) -> JSONResponse:
        return JSONResponse(status_code=422, content={"detail": exc.reason})

    @app.exception_handler(JourneyNotOpen)
    async def _not_open(request: Request, exc: JourneyNotOpen) -> JSONResponse:
        return JSONResponse(status_code=404, content={"detail": str(exc)})

    app.include_router(journey.router)
    return app
