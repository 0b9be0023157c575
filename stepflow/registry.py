"""
Stepflow Workflow Registry

Storage and retrieval of workflow definitions.
"""

from __future__ import annotations

import asyncio
import json
import uuid
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

import structlog

from stepflow.errors import InvalidWorkflowError, WorkflowNotFoundError
from stepflow.types import WorkflowDefinition

logger = structlog.get_logger(__name__)

WORKFLOWS_FILE = "workflows.json"


class WorkflowRegistry:
    """
    Registry for workflow definitions.

    Features:
    - Copy-on-write: stored definitions are never mutated in place
    - Query by tag, enabled flag and free-text search
    - JSON import/export
    - Optional persistence
    - Event callbacks
    """

    def __init__(
        self,
        persistence_path: Optional[Path] = None,
        auto_persist: bool = True,
    ):
        self.persistence_path = Path(persistence_path) if persistence_path else None
        self.auto_persist = auto_persist

        self._workflows: Dict[str, WorkflowDefinition] = {}
        self._by_tag: Dict[str, List[str]] = {}

        self._on_saved: List[Callable] = []
        self._on_deleted: List[Callable] = []

        self._initialized = False
        self._lock = asyncio.Lock()

    async def initialize(self) -> None:
        """Initialize the registry."""
        if self._initialized:
            return

        if self.persistence_path:
            await self._load_from_disk()

        self._initialized = True
        logger.info("Workflow registry initialized", workflow_count=len(self._workflows))

    async def shutdown(self) -> None:
        """Shutdown the registry."""
        if self.persistence_path and self.auto_persist:
            async with self._lock:
                await self._save_to_disk()

        self._initialized = False

    # === Workflow Operations ===

    async def save(self, workflow: WorkflowDefinition) -> str:
        """Store a validated snapshot of a definition."""
        errors = workflow.validate()
        if errors:
            raise InvalidWorkflowError(errors)

        async with self._lock:
            is_new = workflow.id not in self._workflows
            self._store(workflow.snapshot())

            if self.persistence_path and self.auto_persist:
                await self._save_to_disk()

        logger.info(
            "workflow_saved",
            workflow_id=workflow.id,
            name=workflow.name,
            version=workflow.version,
            is_new=is_new,
        )
        await self._fire_callbacks(self._on_saved, workflow)

        return workflow.id

    async def get(self, workflow_id: str) -> Optional[WorkflowDefinition]:
        """Get a copy of a workflow by ID."""
        workflow = self._workflows.get(workflow_id)
        return workflow.snapshot() if workflow else None

    async def get_by_name(self, name: str) -> Optional[WorkflowDefinition]:
        for workflow in self._workflows.values():
            if workflow.name == name:
                return workflow.snapshot()
        return None

    async def replace(self, workflow_id: str, **changes: Any) -> WorkflowDefinition:
        """
        Copy-on-write edit of a stored workflow.

        Returns the new definition with its version bumped. Runs already
        started keep the snapshot they were started with.
        """
        current = self._workflows.get(workflow_id)
        if current is None:
            raise WorkflowNotFoundError(workflow_id)

        updated = current.with_changes(**changes)
        await self.save(updated)
        return updated

    async def duplicate(self, workflow_id: str, name: Optional[str] = None) -> WorkflowDefinition:
        """Store a copy of a workflow under a new id."""
        current = self._workflows.get(workflow_id)
        if current is None:
            raise WorkflowNotFoundError(workflow_id)

        now = datetime.now()
        copied = current.snapshot()
        copied.id = str(uuid.uuid4())
        copied.name = name or f"{current.name} Copy"
        copied.version = 1
        copied.created_at = now
        copied.modified_at = now
        for trigger in copied.triggers:
            trigger.id = str(uuid.uuid4())

        await self.save(copied)
        return copied

    async def delete(self, workflow_id: str) -> bool:
        """Delete a workflow."""
        async with self._lock:
            workflow = self._workflows.pop(workflow_id, None)
            if not workflow:
                return False

            self._remove_from_indices(workflow)

            if self.persistence_path and self.auto_persist:
                await self._save_to_disk()

        logger.info("workflow_deleted", workflow_id=workflow_id)
        await self._fire_callbacks(self._on_deleted, workflow)

        return True

    async def list(
        self,
        tag: Optional[str] = None,
        enabled: Optional[bool] = None,
        search: Optional[str] = None,
        limit: int = 100,
        offset: int = 0,
    ) -> List[WorkflowDefinition]:
        """List workflows with filters, most recently modified first."""
        workflows = list(self._workflows.values())

        if tag:
            workflow_ids = set(self._by_tag.get(tag, []))
            workflows = [w for w in workflows if w.id in workflow_ids]

        if enabled is not None:
            workflows = [w for w in workflows if w.enabled == enabled]

        if search:
            search_lower = search.lower()
            workflows = [
                w for w in workflows
                if search_lower in w.name.lower() or search_lower in w.description.lower()
            ]

        workflows.sort(key=lambda w: w.modified_at, reverse=True)

        return [w.snapshot() for w in workflows[offset:offset + limit]]

    async def count(self) -> int:
        return len(self._workflows)

    # === Import / Export ===

    async def export_json(self, workflow_id: str) -> str:
        """Export a workflow as a JSON document."""
        workflow = self._workflows.get(workflow_id)
        if workflow is None:
            raise WorkflowNotFoundError(workflow_id)
        return workflow.to_json()

    async def import_json(self, document: str, overwrite: bool = False) -> WorkflowDefinition:
        """
        Import a workflow from a JSON document.

        An imported workflow whose id is already taken gets a fresh id
        unless ``overwrite`` is set.
        """
        try:
            workflow = WorkflowDefinition.from_json(document)
        except (ValueError, KeyError, TypeError) as e:
            raise InvalidWorkflowError([f"Malformed workflow document: {e}"]) from e

        if workflow.id in self._workflows and not overwrite:
            workflow.id = str(uuid.uuid4())

        await self.save(workflow)
        logger.info("workflow_imported", workflow_id=workflow.id, name=workflow.name)
        return workflow

    # === Indexing ===

    def _store(self, workflow: WorkflowDefinition) -> None:
        old_workflow = self._workflows.get(workflow.id)
        if old_workflow:
            self._remove_from_indices(old_workflow)

        self._workflows[workflow.id] = workflow
        for tag in workflow.tags:
            self._by_tag.setdefault(tag, []).append(workflow.id)

    def _remove_from_indices(self, workflow: WorkflowDefinition) -> None:
        for tag in workflow.tags:
            if tag in self._by_tag and workflow.id in self._by_tag[tag]:
                self._by_tag[tag].remove(workflow.id)

    # === Event Callbacks ===

    def on_workflow_saved(self, callback: Callable) -> None:
        """Register callback for created or replaced workflows."""
        self._on_saved.append(callback)

    def on_workflow_deleted(self, callback: Callable) -> None:
        """Register callback for workflow deletion."""
        self._on_deleted.append(callback)

    async def _fire_callbacks(self, callbacks: List[Callable], workflow: WorkflowDefinition) -> None:
        """Fire callbacks with a private copy of the workflow."""
        for callback in callbacks:
            try:
                result = callback(workflow.snapshot())
                if asyncio.iscoroutine(result):
                    await result
            except Exception as e:
                logger.error("callback_error", error=str(e))

    # === Persistence ===

    async def _load_from_disk(self) -> None:
        """Load workflows from disk."""
        workflows_file = self.persistence_path / WORKFLOWS_FILE
        if not workflows_file.exists():
            return

        try:
            with open(workflows_file, "r") as f:
                data = json.load(f)

            for workflow_data in data.get("workflows", []):
                self._store(WorkflowDefinition.from_dict(workflow_data))

            logger.info("workflows_loaded", count=len(self._workflows))

        except (OSError, ValueError, KeyError) as e:
            logger.error("load_error", path=str(workflows_file), error=str(e))

    async def _save_to_disk(self) -> None:
        """Save workflows to disk. Caller holds the lock."""
        try:
            self.persistence_path.mkdir(parents=True, exist_ok=True)
            workflows_file = self.persistence_path / WORKFLOWS_FILE

            data = {
                "workflows": [w.to_dict() for w in self._workflows.values()],
                "saved_at": datetime.now().isoformat(),
            }

            with open(workflows_file, "w") as f:
                json.dump(data, f, indent=2)

        except OSError as e:
            logger.error("save_error", error=str(e))
