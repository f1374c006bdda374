"""
Backup storage for voter values rewritten by type normalization.

A backup run records which field was rewritten and the registry type it
had. Each entry keeps one voter's stored value as it was before the
rewrite, so a restore puts back exactly what was there, legacy wrapper
included.
"""

import copy
from collections.abc import AsyncIterator
from datetime import UTC, datetime
from typing import Any

from fieldengine.models.fields import BackupRun


class FieldBackupStore:
    """Abstract store for backup runs and their per-voter entries."""

    async def create_run(self, run: BackupRun) -> BackupRun:
        raise NotImplementedError

    async def add_entries(self, run_id: str, entries: list[tuple[str, Any]]) -> None:
        """
        Save ``(entity_id, prior_value)`` pairs for a run.

        A voter already saved for the run keeps its first value.
        """
        raise NotImplementedError

    async def get_run(self, run_id: str) -> BackupRun | None:
        raise NotImplementedError

    async def list_runs(self) -> list[BackupRun]:
        """Return all runs, newest first, with their entry counts."""
        raise NotImplementedError

    def stream_entries(
        self, run_id: str, batch_size: int = 500
    ) -> AsyncIterator[tuple[str, Any]]:
        """Stream a run's ``(entity_id, prior_value)`` pairs in entity id order."""
        raise NotImplementedError


class MemoryFieldBackupStore(FieldBackupStore):
    """In-memory backup store for tests and local demos."""

    def __init__(self) -> None:
        self.runs: dict[str, BackupRun] = {}
        self.entries: dict[str, dict[str, Any]] = {}

    async def create_run(self, run: BackupRun) -> BackupRun:
        stored = run.model_copy(update={"created_at": datetime.now(UTC), "entry_count": 0})
        self.runs[run.id] = stored
        self.entries[run.id] = {}
        return stored.model_copy()

    async def add_entries(self, run_id: str, entries: list[tuple[str, Any]]) -> None:
        saved = self.entries[run_id]
        for entity_id, prior_value in entries:
            saved.setdefault(entity_id, copy.deepcopy(prior_value))

    async def get_run(self, run_id: str) -> BackupRun | None:
        run = self.runs.get(run_id)
        if run is None:
            return None
        return run.model_copy(update={"entry_count": len(self.entries[run_id])})

    async def list_runs(self) -> list[BackupRun]:
        runs = [await self.get_run(run_id) for run_id in self.runs]
        return sorted(runs, key=lambda run: run.created_at, reverse=True)

    async def stream_entries(
        self, run_id: str, batch_size: int = 500
    ) -> AsyncIterator[tuple[str, Any]]:
        saved = self.entries.get(run_id, {})
        for entity_id in sorted(saved):
            yield entity_id, copy.deepcopy(saved[entity_id])
