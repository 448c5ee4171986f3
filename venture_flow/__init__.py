"""VentureForge backend package."""

from .app import create_app
from .config import get_llm_settings, get_pipeline_settings
from .pipeline import PlanPipeline

__all__ = ["create_app", "get_llm_settings", "get_pipeline_settings", "PlanPipeline"]
