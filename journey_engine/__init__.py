"""Journey progression engine for stage-by-stage business journeys."""

from .app import create_app
from .catalog import StageCatalog
from .config import get_engine_settings, get_llm_settings
from .engine import JourneyEngine

__all__ = ["JourneyEngine", "StageCatalog", "create_app", "get_engine_settings", "get_llm_settings"]
