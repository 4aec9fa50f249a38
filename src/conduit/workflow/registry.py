"""Pipeline registry for managing pipeline definitions."""

from __future__ import annotations

import threading
from pathlib import Path

import structlog

from conduit.exceptions import InvalidDefinitionError, PipelineNotFoundError
from conduit.workflow.constants import PRESET_PIPELINE_IDS
from conduit.workflow.definition import PipelineDefinition
from conduit.workflow.presets import all_presets

logger = structlog.get_logger()

DEFINITION_SUFFIXES = (".yaml", ".yml", ".json")


class PipelineRegistry:
    """Registry for pipeline definitions.

    Every definition is validated when it is registered, so the engine only
    ever traverses graphs whose references resolve and that contain no
    cycles. Registering an id that already exists replaces the old entry.
    """

    def __init__(self, *, presets: bool = False) -> None:
        """Initialize the registry.

        Args:
            presets: Register the built-in preset pipelines right away.
        """
        self._lock = threading.Lock()
        self._pipelines: dict[str, PipelineDefinition] = {}
        if presets:
            self.load_presets()

    def register(self, pipeline: PipelineDefinition) -> None:
        """Validate and store a definition.

        Raises:
            InvalidDefinitionError: Listing every structural problem found.
        """
        problems = pipeline.find_problems()
        if problems:
            msg = f"Pipeline '{pipeline.id}' is invalid: " + "; ".join(problems)
            raise InvalidDefinitionError(msg, pipeline_id=pipeline.id, problems=problems)

        with self._lock:
            replaced = pipeline.id in self._pipelines
            self._pipelines[pipeline.id] = pipeline
        logger.debug("Registered pipeline", id=pipeline.id, replaced=replaced)

    def unregister(self, pipeline_id: str) -> bool:
        """Remove a definition.

        Returns:
            True if the id was registered.
        """
        with self._lock:
            return self._pipelines.pop(pipeline_id, None) is not None

    def get(self, pipeline_id: str) -> PipelineDefinition:
        """Get a pipeline by ID.

        Raises:
            PipelineNotFoundError: If pipeline not found.
        """
        pipeline = self.find(pipeline_id)
        if pipeline is None:
            raise PipelineNotFoundError(pipeline_id)
        return pipeline

    def find(self, pipeline_id: str) -> PipelineDefinition | None:
        with self._lock:
            return self._pipelines.get(pipeline_id)

    def list(self) -> list[PipelineDefinition]:
        """All registered pipelines in registration order."""
        with self._lock:
            return list(self._pipelines.values())

    def exists(self, pipeline_id: str) -> bool:
        with self._lock:
            return pipeline_id in self._pipelines

    def __len__(self) -> int:
        with self._lock:
            return len(self._pipelines)

    def load_file(self, path: Path) -> PipelineDefinition:
        """Load, validate and register a single definition file.

        Raises:
            InvalidDefinitionError: If the file cannot be parsed or is invalid.
        """
        try:
            pipeline = PipelineDefinition.from_file(path)
        except (OSError, ValueError) as e:
            msg = f"Failed to load pipeline from '{path}': {e}"
            raise InvalidDefinitionError(msg) from e

        self.register(pipeline)
        return pipeline

    def load_directory(self, directory: Path) -> list[PipelineDefinition]:
        """Register every definition file in a directory.

        Files that fail to load are logged and skipped.

        Returns:
            The definitions that were registered.
        """
        loaded: list[PipelineDefinition] = []
        if not directory.is_dir():
            logger.warning("Pipeline directory not found", path=str(directory))
            return loaded

        for path in sorted(directory.iterdir()):
            if path.suffix.lower() not in DEFINITION_SUFFIXES:
                continue
            try:
                loaded.append(self.load_file(path))
            except InvalidDefinitionError as e:
                logger.warning("Failed to load pipeline", path=str(path), error=str(e))

        logger.debug("Loaded pipeline directory", path=str(directory), count=len(loaded))
        return loaded

    def load_path(self, path: Path) -> list[PipelineDefinition]:
        """Load a definition file or a directory of them."""
        if path.is_dir():
            return self.load_directory(path)
        return [self.load_file(path)]

    def load_presets(self) -> None:
        """Register the built-in preset pipelines."""
        for pipeline in all_presets():
            self.register(pipeline)
        logger.debug("Loaded preset pipelines", ids=sorted(PRESET_PIPELINE_IDS))
