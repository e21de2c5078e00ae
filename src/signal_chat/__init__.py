"""Signal Chat package."""

from .config import OrchestratorConfig, RetrievalConfig, RoutingConfig, Settings

__all__ = ["OrchestratorConfig", "RetrievalConfig", "RoutingConfig", "Settings"]
