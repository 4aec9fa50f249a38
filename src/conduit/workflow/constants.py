"""Workflow engine constants."""

from __future__ import annotations

# Default approval wait when neither the node nor the settings give one (ms)
DEFAULT_APPROVAL_TIMEOUT_MS: int = 60_000

# Maximum nesting of subflow runs
MAX_SUBFLOW_DEPTH: int = 5

# Maximum retry attempts a node may declare
MAX_RETRY_ATTEMPTS: int = 10

# Maximum nodes per pipeline
MAX_NODES_PER_PIPELINE: int = 200

# Reason attached to node_skipped events emitted by condition nodes
BRANCH_NOT_TAKEN: str = "branch not taken"

# Built-in preset pipeline IDs
PRESET_PIPELINE_IDS: set[str] = {"content-creation", "multi-publish", "daily-report"}
