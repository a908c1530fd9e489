"""Page editing agent package."""

from .config import AgentConfig, DispatchConfig, DocumentConfig

__all__ = ["AgentConfig", "DispatchConfig", "DocumentConfig"]
