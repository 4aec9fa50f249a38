"""Engine settings."""

from __future__ import annotations

from pydantic import BaseModel, Field

from conduit.workflow.constants import DEFAULT_APPROVAL_TIMEOUT_MS, MAX_SUBFLOW_DEPTH


class EngineSettings(BaseModel):
    """Configuration for the workflow engine.

    Attributes:
        default_approval_timeout_ms: Approval wait when a node sets none.
        max_subflow_depth: Maximum nesting of subflow runs.
        load_presets: Whether to register the built-in preset pipelines.
    """

    default_approval_timeout_ms: int = Field(default=DEFAULT_APPROVAL_TIMEOUT_MS, gt=0)
    max_subflow_depth: int = Field(default=MAX_SUBFLOW_DEPTH, ge=0, le=50)
    load_presets: bool = True
