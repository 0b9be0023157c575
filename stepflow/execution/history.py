"""
Stepflow Execution History

Append-only log of finished executions, keyed by workflow.
"""

from __future__ import annotations

import asyncio
import copy
import json
from collections import defaultdict
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

import structlog

from stepflow.types import ExecutionResult, ExecutionStatus

logger = structlog.get_logger(__name__)

HISTORY_FILE = "execution_history.json"


class ExecutionHistoryStore:
    """
    Stores ExecutionResults for audit and replay displays.

    Features:
    - Append-only writes serialized by a lock
    - Readers get private copies; stored records never change
    - Per-workflow queries, most recent first
    - Analytics
    - Retention by record count
    - Optional JSON persistence
    """

    def __init__(
        self,
        persistence_path: Optional[Path] = None,
        max_records: int = 1000,
        auto_persist: bool = False,
    ):
        self.persistence_path = Path(persistence_path) if persistence_path else None
        self.max_records = max_records
        self.auto_persist = auto_persist

        # Records in append order
        self._records: Dict[str, ExecutionResult] = {}
        self._by_workflow: Dict[str, List[str]] = defaultdict(list)

        self._initialized = False
        self._lock = asyncio.Lock()

    async def initialize(self) -> None:
        """Initialize the history store."""
        if self._initialized:
            return

        if self.persistence_path:
            await self._load_history()

        self._initialized = True
        logger.info("history_initialized", records=len(self._records))

    async def shutdown(self) -> None:
        """Flush to disk if persistence is configured."""
        if self.persistence_path:
            async with self._lock:
                await self._save_history()

        self._initialized = False

    # === History Operations ===

    async def append(self, result: ExecutionResult) -> None:
        """Append a finished execution."""
        async with self._lock:
            if result.execution_id in self._records:
                logger.warning("history_duplicate_append", execution_id=result.execution_id)
                return

            self._records[result.execution_id] = copy.deepcopy(result)
            self._by_workflow[result.workflow_id].append(result.execution_id)

            self._enforce_limits()

            if self.persistence_path and self.auto_persist:
                await self._save_history()

        logger.debug(
            "history_appended",
            execution_id=result.execution_id,
            workflow_id=result.workflow_id,
            status=result.status.value,
        )

    async def get(self, execution_id: str) -> Optional[ExecutionResult]:
        """Get a record by execution ID."""
        record = self._records.get(execution_id)
        return copy.deepcopy(record) if record else None

    async def query(
        self,
        workflow_id: str,
        status: Optional[ExecutionStatus] = None,
        limit: int = 100,
        offset: int = 0,
    ) -> List[ExecutionResult]:
        """Records for a workflow, most recent first."""
        ids = self._by_workflow.get(workflow_id, [])
        records = [self._records[rid] for rid in reversed(ids) if rid in self._records]

        if status:
            records = [r for r in records if r.status == status]

        return [copy.deepcopy(r) for r in records[offset:offset + limit]]

    async def list(self, limit: int = 100, offset: int = 0) -> List[ExecutionResult]:
        """All records, most recent first."""
        records = list(reversed(list(self._records.values())))
        return [copy.deepcopy(r) for r in records[offset:offset + limit]]

    def __len__(self) -> int:
        return len(self._records)

    # === Analytics ===

    async def stats(self, workflow_id: str) -> Dict[str, Any]:
        """Get statistics for a workflow."""
        records = await self.query(workflow_id, limit=self.max_records)

        if not records:
            return {
                "total_executions": 0,
                "success_rate": 0.0,
                "avg_duration_ms": 0.0,
            }

        total = len(records)
        succeeded = len([r for r in records if r.success])
        durations = [r.duration_ms for r in records]

        return {
            "total_executions": total,
            "completed": len([r for r in records if r.status == ExecutionStatus.COMPLETED]),
            "failed": len([r for r in records if r.status == ExecutionStatus.FAILED]),
            "cancelled": len([r for r in records if r.status == ExecutionStatus.CANCELLED]),
            "success_rate": succeeded / total,
            "avg_duration_ms": sum(durations) / total,
            "last_run_at": records[0].started_at.isoformat(),
        }

    async def error_analysis(self, workflow_id: Optional[str] = None) -> Dict[str, Any]:
        """Most frequent run-level errors."""
        if workflow_id:
            records = await self.query(workflow_id, status=ExecutionStatus.FAILED, limit=self.max_records)
        else:
            records = [r for r in self._records.values() if r.status == ExecutionStatus.FAILED]

        error_counts: Dict[str, int] = defaultdict(int)
        for record in records:
            error_key = record.error[:100] if record.error else "Unknown error"
            error_counts[error_key] += 1

        sorted_errors = sorted(error_counts.items(), key=lambda x: x[1], reverse=True)

        return {
            "total_failures": len(records),
            "unique_errors": len(error_counts),
            "top_errors": [
                {"error": e, "count": c}
                for e, c in sorted_errors[:10]
            ],
        }

    # === Retention ===

    def _enforce_limits(self) -> None:
        """Drop the oldest records beyond max_records. Caller holds the lock."""
        excess = len(self._records) - self.max_records
        if excess <= 0:
            return

        for execution_id in list(self._records.keys())[:excess]:
            record = self._records.pop(execution_id)
            self._by_workflow[record.workflow_id].remove(execution_id)
            if not self._by_workflow[record.workflow_id]:
                del self._by_workflow[record.workflow_id]

        logger.info("history_trimmed", removed=excess)

    # === Persistence ===

    async def _load_history(self) -> None:
        """Load history from disk."""
        history_file = self.persistence_path / HISTORY_FILE
        if not history_file.exists():
            return

        try:
            with open(history_file, "r") as f:
                data = json.load(f)

            for record_data in data.get("records", []):
                record = ExecutionResult.from_dict(record_data)
                self._records[record.execution_id] = record
                self._by_workflow[record.workflow_id].append(record.execution_id)

        except (OSError, ValueError, KeyError) as e:
            logger.error("load_history_error", path=str(history_file), error=str(e))

    async def _save_history(self) -> None:
        """Save history to disk. Caller holds the lock."""
        try:
            self.persistence_path.mkdir(parents=True, exist_ok=True)
            history_file = self.persistence_path / HISTORY_FILE

            data = {
                "records": [r.to_dict() for r in self._records.values()],
                "saved_at": datetime.now().isoformat(),
            }

            with open(history_file, "w") as f:
                json.dump(data, f, default=str)

        except OSError as e:
            logger.error("save_history_error", error=str(e))
