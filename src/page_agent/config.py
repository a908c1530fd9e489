"""Configuration models for the page editing agent."""

from __future__ import annotations

from pydantic import BaseModel, Field


class DocumentConfig(BaseModel):
    """Configures section previews returned to the model."""

    content_preview_chars: int = Field(default=200, ge=20)
    text_preview_chars: int = Field(default=100, ge=10)


class DispatchConfig(BaseModel):
    """Configures store retries and copy-name generation."""

    read_retries: int = Field(default=3, ge=1)
    retry_backoff_seconds: float = Field(default=0.05, ge=0.0)
    conflict_retries: int = Field(default=3, ge=1)
    max_copy_attempts: int = Field(default=1000, ge=1)


class AgentConfig(BaseModel):
    """Configures conversation history and latency targets."""

    history_limit: int = Field(default=10, ge=0)
    target_latency_seconds: float = Field(default=8.0, gt=0.0)
    history_preview_chars: int = Field(default=2000, ge=100)
