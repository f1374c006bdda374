"""
Bulk field mutation engine.

Applies one field-level change (add, rename, flatten, visibility, delete,
type normalization) across every voter document. Documents are streamed
page by page and written back in fixed-size unordered batches. A batch
that fails is logged and counted, never rolled back: every operation is
idempotent, so re-running it converges to the same end state.

Every attribute the engine writes is stored flat. The legacy
``{value, visible}`` wrapper is only written by the per-voter visibility
variant of ToggleVisibility, or put back by restoring a normalization
backup that saved one.
"""

import inspect
import math
import time
from collections import Counter
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any
from uuid import uuid4

from fieldengine.core.exceptions import (
    BackupNotFound,
    BulkWriteError,
    CriticalFieldProtected,
    FieldNotFound,
    InvalidFieldName,
    ReservedField,
    UnsupportedConversion,
)
from fieldengine.core.logging_config import get_logger, mutation_logger
from fieldengine.core.validation import (
    SYSTEM_FIELDS,
    FieldNameValidator,
    ensure_not_critical,
)
from fieldengine.models.fields import (
    AddFieldResult,
    BackupRun,
    BulkCounters,
    DefineFieldResult,
    DeleteResult,
    FieldDefinition,
    FieldMeta,
    FieldMetaUpdate,
    FieldType,
    FlattenResult,
    MutationProgress,
    NormalizeResult,
    RenameResult,
    RestoreResult,
    VisibilityResult,
)
from fieldengine.repos.entity_collection import EntityCollection, UpdateOp
from fieldengine.repos.field_backups import FieldBackupStore
from fieldengine.services.field_locks import FieldLockManager
from fieldengine.services.field_registry import FieldRegistry
from fieldengine.services.value_codec import (
    decode,
    encode_flat,
    has_meaningful_value,
    wrap,
)

logger = get_logger(__name__)

ProgressCallback = Callable[[MutationProgress], Awaitable[None] | None]
BeforeWrite = Callable[[list[UpdateOp]], Awaitable[None]]

NORMALIZE_TARGETS = (FieldType.STRING, FieldType.NUMBER)


@dataclass
class PlannedUpdate:
    """
    Update planned for one voter.

    ``tally`` counters are added to the scan totals once ``op`` commits, or
    immediately when there is nothing to write.
    """

    op: UpdateOp | None = None
    tally: dict[str, int] = field(default_factory=dict)


@dataclass
class ScanState:
    counters: BulkCounters
    tally: Counter = field(default_factory=Counter)
    batch_index: int = 0


def normalize_default(value: Any) -> Any:
    """Defaults are stored flat; missing and blank defaults become null."""
    value = encode_flat(value)
    if value is None or value == "":
        return None
    return value


def _parse_number(value: str) -> int | float | None:
    text = value.strip()
    if not text:
        return None
    try:
        return int(text)
    except ValueError:
        pass
    try:
        number = float(text)
    except ValueError:
        return None
    return number if math.isfinite(number) else None


def needs_conversion(value: Any, target_type: FieldType) -> bool:
    """Check whether a value must be rewritten to match ``target_type``."""
    if value is None:
        return False
    if target_type == FieldType.STRING:
        return isinstance(value, (bool, int, float))
    if target_type == FieldType.NUMBER:
        return isinstance(value, str) and _parse_number(value) is not None
    return False


def convert_value(value: Any, target_type: FieldType) -> Any:
    """Convert a value to ``target_type``. Only call after needs_conversion."""
    if target_type == FieldType.STRING:
        if isinstance(value, bool):
            return "true" if value else "false"
        if isinstance(value, float) and value.is_integer():
            return str(int(value))
        return str(value)
    return _parse_number(value)


def new_backup_id(field_name: str) -> str:
    """Backup ids sort by creation time."""
    return f"typefix_{datetime.now(UTC):%Y%m%d%H%M%S}_{field_name}_{uuid4().hex[:6]}"


def _with_outcome_suffix(message: str, counters: BulkCounters) -> str:
    if counters.failed_ids:
        message += f" {len(counters.failed_ids)} voters failed to update; re-run to converge."
    if not counters.completed:
        message += " Stopped before scanning all voters; re-run to resume."
    return message


class FieldMutationEngine:
    """Applies field-level mutations across the voter collection."""

    def __init__(
        self,
        entities: EntityCollection,
        registry: FieldRegistry,
        locks: FieldLockManager | None = None,
        batch_size: int = 500,
        rename_batch_size: int = 100,
        default_timeout: float | None = None,
        backups: FieldBackupStore | None = None,
    ):
        self.entities = entities
        self.registry = registry
        self.locks = locks or FieldLockManager()
        self.batch_size = batch_size
        self.rename_batch_size = rename_batch_size
        self.default_timeout = default_timeout
        self.backups = backups

    # ------------------------------------------------------------------
    # Scan machinery
    # ------------------------------------------------------------------

    def _resolve_deadline(self, deadline: float | None) -> float | None:
        if deadline is None and self.default_timeout:
            return time.monotonic() + self.default_timeout
        return deadline

    async def _commit_batch(
        self,
        operation: str,
        field_name: str,
        batch: list[PlannedUpdate],
        state: ScanState,
        progress: ProgressCallback | None,
        before_write: BeforeWrite | None = None,
    ) -> None:
        counters = state.counters
        ops = [planned.op for planned in batch if planned.op is not None]

        if before_write is not None and ops:
            await before_write(ops)

        try:
            result = await self.entities.bulk_write(ops)
        except BulkWriteError as exc:
            failed = exc.entity_ids or [op.entity_id for op in ops]
            counters.failed_batches += 1
            counters.failed_ids.extend(failed)
            mutation_logger.log_batch_failed(
                operation, field_name, state.batch_index, len(failed), exc.message
            )
        else:
            counters.entities_matched += result.matched
            counters.entities_modified += result.modified
            counters.failed_ids.extend(result.failed_ids)
            failed_ids = set(result.failed_ids)
            for planned in batch:
                if planned.op is not None and planned.op.entity_id not in failed_ids:
                    state.tally.update(planned.tally)
            mutation_logger.log_batch_committed(
                operation, field_name, state.batch_index, result.matched, result.modified
            )

        counters.batches += 1
        state.batch_index += 1

        if progress is not None:
            outcome = progress(
                MutationProgress(
                    operation=operation,
                    field_name=field_name,
                    batch_index=state.batch_index - 1,
                    entities_checked=counters.entities_checked,
                    entities_modified=counters.entities_modified,
                )
            )
            if inspect.isawaitable(outcome):
                await outcome

    async def _scan(
        self,
        operation: str,
        field_name: str,
        plan: Callable[[dict[str, Any]], PlannedUpdate | None],
        counters: BulkCounters,
        batch_size: int,
        where_field_exists: str | None = None,
        where_field_missing: str | None = None,
        progress: ProgressCallback | None = None,
        deadline: float | None = None,
        before_write: BeforeWrite | None = None,
    ) -> Counter:
        """
        Stream voters, plan an update for each one and commit in batches.

        Stops after the in-flight batch commits once ``deadline`` (a
        ``time.monotonic()`` timestamp) has passed.
        """
        state = ScanState(counters=counters)
        pending: list[PlannedUpdate] = []
        deadline = self._resolve_deadline(deadline)

        stream = self.entities.stream_all(
            batch_size=batch_size,
            where_field_exists=where_field_exists,
            where_field_missing=where_field_missing,
        )
        try:
            async for document in stream:
                counters.entities_checked += 1
                planned = plan(document)
                if planned is not None:
                    if planned.op is None:
                        state.tally.update(planned.tally)
                    else:
                        pending.append(planned)

                if len(pending) >= batch_size:
                    await self._commit_batch(
                        operation, field_name, pending, state, progress, before_write
                    )
                    pending = []

                if deadline is not None and time.monotonic() >= deadline:
                    logger.warning(
                        f"[{operation}] Deadline reached after {counters.entities_checked} voters"
                    )
                    counters.completed = False
                    break
        finally:
            await stream.aclose()

        if pending:
            await self._commit_batch(
                operation, field_name, pending, state, progress, before_write
            )

        mutation_logger.log_mutation_finished(
            operation,
            field_name,
            counters.completed,
            entities_checked=counters.entities_checked,
            entities_matched=counters.entities_matched,
            entities_modified=counters.entities_modified,
            failed_count=len(counters.failed_ids),
        )
        return state.tally

    # ------------------------------------------------------------------
    # Add / Define
    # ------------------------------------------------------------------

    async def _backfill(
        self,
        name: str,
        default: Any,
        progress: ProgressCallback | None,
        deadline: float | None,
    ) -> AddFieldResult:
        value = normalize_default(default)
        result = AddFieldResult(field_name=name, default=value)
        result.total_entities = await self.entities.count_all()
        mutation_logger.log_mutation_started("AddField", name, default=value)

        def plan(document: dict[str, Any]) -> PlannedUpdate:
            return PlannedUpdate(op=UpdateOp(entity_id=document["id"], set={name: value}))

        await self._scan(
            "AddField",
            name,
            plan,
            result,
            self.batch_size,
            where_field_missing=name,
            progress=progress,
            deadline=deadline,
        )
        result.message = _with_outcome_suffix(
            f'Field "{name}" has been successfully added to all {result.total_entities} voters. '
            f"{result.entities_modified} voters were updated.",
            result,
        )
        return result

    async def add_field(
        self,
        name: str,
        default: Any = None,
        progress: ProgressCallback | None = None,
        deadline: float | None = None,
    ) -> AddFieldResult:
        """Set ``name`` to ``default`` on every voter that lacks it."""
        name = FieldNameValidator.require_valid(name)
        if name in SYSTEM_FIELDS:
            raise CriticalFieldProtected(name, "backfilled")

        async with self.locks.hold(name):
            return await self._backfill(name, default, progress, deadline)

    async def define_field(
        self,
        definition: FieldDefinition,
        progress: ProgressCallback | None = None,
        deadline: float | None = None,
    ) -> DefineFieldResult:
        """Register a field and backfill its default onto every voter missing it."""
        name = FieldNameValidator.require_valid(definition.name)
        if name in SYSTEM_FIELDS:
            raise ReservedField(name)

        async with self.locks.hold(name):
            meta = await self.registry.define(definition.model_copy(update={"name": name}))
            backfill = await self._backfill(name, definition.default, progress, deadline)
        return DefineFieldResult(field=meta, backfill=backfill)

    # ------------------------------------------------------------------
    # Rename / merge
    # ------------------------------------------------------------------

    async def rename_field(
        self,
        old_name: str,
        new_name: str,
        progress: ProgressCallback | None = None,
        deadline: float | None = None,
    ) -> RenameResult:
        """
        Move ``old_name`` to ``new_name`` on every voter, merging when the
        target already exists.

        On a voter that already carries the target, a meaningful target
        value is kept; otherwise the source value is adopted. The source key
        is always removed.
        """
        old_name = (old_name or "").strip()
        ensure_not_critical(old_name, "renamed")
        new_name = FieldNameValidator.require_valid(new_name)
        ensure_not_critical(new_name, "renamed")
        if new_name == old_name:
            raise InvalidFieldName(new_name, "New field name must differ from the current name")

        async with self.locks.hold(old_name, new_name):
            with_old = await self.entities.count_where_field_exists(old_name)
            with_new = await self.entities.count_where_field_exists(new_name)
            total = await self.entities.count_all()
            old_meta = await self.registry.get(old_name)
            new_meta = await self.registry.get(new_name)

            if with_old == 0 and old_meta is None:
                raise FieldNotFound(
                    old_name,
                    f'Field "{old_name}" not found in any voter documents. Total voters: {total}',
                )

            needs_merge = with_new > 0 or new_meta is not None
            outcome = await self.registry.rename(old_name, new_name)

            result = RenameResult(
                old_field_name=old_name,
                new_field_name=new_name,
                merged=needs_merge,
                registry_outcome=outcome.value,
                total_entities=total,
                entities_with_field=with_old,
                entities_without_field=total - with_old,
            )
            mutation_logger.log_mutation_started(
                "RenameField", old_name, new_field_name=new_name, merge=needs_merge
            )

            def plan(document: dict[str, Any]) -> PlannedUpdate | None:
                if old_name not in document:
                    return None
                source = encode_flat(document[old_name])
                tally = {}

                if new_name in document:
                    target = encode_flat(document[new_name])
                    tally["merged"] = 1
                    if has_meaningful_value(target):
                        final = target
                        tally["target_preserved"] = 1
                    else:
                        final = source
                        if has_meaningful_value(source):
                            tally["source_adopted"] = 1
                else:
                    final = source

                return PlannedUpdate(
                    op=UpdateOp(
                        entity_id=document["id"], set={new_name: final}, unset=[old_name]
                    ),
                    tally=tally,
                )

            if with_old > 0:
                tally = await self._scan(
                    "RenameField",
                    old_name,
                    plan,
                    result,
                    self.rename_batch_size,
                    where_field_exists=old_name,
                    progress=progress,
                    deadline=deadline,
                )
                result.merged_count = tally["merged"]
                result.target_preserved_count = tally["target_preserved"]
                result.source_adopted_count = tally["source_adopted"]

        result.renamed_count = result.entities_modified
        if with_old == 0:
            message = (
                f'Field "{old_name}" has been renamed to "{new_name}" in the field registry. '
                f"No voter documents carried it."
            )
        elif needs_merge:
            message = (
                f'Field "{old_name}" has been merged into "{new_name}" in '
                f"{result.renamed_count} of {total} voter documents, "
                f"{result.entities_without_field} did not have this field."
            )
        else:
            message = (
                f'Field "{old_name}" has been successfully renamed to "{new_name}" in '
                f"{result.renamed_count} voter documents"
            )
        result.message = _with_outcome_suffix(message, result)
        return result

    # ------------------------------------------------------------------
    # Flatten
    # ------------------------------------------------------------------

    async def flatten_all(
        self,
        progress: ProgressCallback | None = None,
        deadline: float | None = None,
    ) -> FlattenResult:
        """Rewrite every legacy-wrapped attribute on every voter to its raw value."""
        result = FlattenResult()

        def plan(document: dict[str, Any]) -> PlannedUpdate | None:
            updates = {}
            for key, stored in document.items():
                if key in SYSTEM_FIELDS:
                    continue
                if decode(stored).was_legacy_format:
                    updates[key] = encode_flat(stored)
            if not updates:
                return None
            return PlannedUpdate(
                op=UpdateOp(entity_id=document["id"], set=updates),
                tally={"flattened": len(updates)},
            )

        async with self.locks.hold_collection():
            mutation_logger.log_mutation_started("FlattenAll", "*")
            tally = await self._scan(
                "FlattenAll", "*", plan, result, self.batch_size, progress=progress, deadline=deadline
            )

        result.flattened_value_count = tally["flattened"]
        result.message = _with_outcome_suffix(
            f"Flattened {result.flattened_value_count} legacy field instances across "
            f"{result.entities_modified} voter documents",
            result,
        )
        return result

    # ------------------------------------------------------------------
    # Visibility
    # ------------------------------------------------------------------

    async def toggle_visibility(
        self,
        name: str,
        visible: bool,
        per_entity: bool = False,
        progress: ProgressCallback | None = None,
        deadline: float | None = None,
    ) -> VisibilityResult:
        """
        Set a field's visibility.

        By default only the registry changes. With ``per_entity`` every voter
        carrying the field also gets the flag embedded in its stored value.
        """
        name = (name or "").strip()
        ensure_not_critical(name, "hidden or shown")

        async with self.locks.hold(name):
            meta = await self.registry.set_visibility(name, visible)
            result = VisibilityResult(field=meta, per_entity=per_entity)

            if per_entity:
                counters = BulkCounters()
                mutation_logger.log_mutation_started("EmbedVisibility", name, visible=visible)

                def plan(document: dict[str, Any]) -> PlannedUpdate | None:
                    stored = document[name]
                    decoded = decode(stored)
                    if decoded.was_legacy_format and decoded.legacy_visible is visible:
                        return None
                    return PlannedUpdate(
                        op=UpdateOp(
                            entity_id=document["id"],
                            set={name: wrap(decoded.actual_value, visible)},
                        )
                    )

                await self._scan(
                    "EmbedVisibility",
                    name,
                    plan,
                    counters,
                    self.batch_size,
                    where_field_exists=name,
                    progress=progress,
                    deadline=deadline,
                )
                counters.message = _with_outcome_suffix(
                    f"{counters.entities_modified} voter documents updated", counters
                )
                result.entities = counters

        result.message = f'Field "{name}" visibility updated to {"visible" if visible else "hidden"}'
        return result

    # ------------------------------------------------------------------
    # Delete
    # ------------------------------------------------------------------

    async def delete_field(
        self,
        name: str,
        progress: ProgressCallback | None = None,
        deadline: float | None = None,
    ) -> DeleteResult:
        """Remove the registry entry and unset the attribute on every voter."""
        name = (name or "").strip()
        ensure_not_critical(name, "deleted")

        async with self.locks.hold(name):
            was_in_registry = await self.registry.remove(name)
            result = DeleteResult(field_name=name, was_in_registry=was_in_registry)
            mutation_logger.log_mutation_started("DeleteField", name, was_in_registry=was_in_registry)

            def plan(document: dict[str, Any]) -> PlannedUpdate:
                return PlannedUpdate(op=UpdateOp(entity_id=document["id"], unset=[name]))

            await self._scan(
                "DeleteField",
                name,
                plan,
                result,
                self.batch_size,
                where_field_exists=name,
                progress=progress,
                deadline=deadline,
            )

        result.entities_affected = result.entities_modified
        result.message = _with_outcome_suffix(
            f'Field "{name}" has been successfully deleted from all voters. '
            f"{result.entities_affected} voter documents were modified.",
            result,
        )
        return result

    # ------------------------------------------------------------------
    # Metadata update
    # ------------------------------------------------------------------

    async def update_field_meta(
        self,
        name: str,
        update: FieldMetaUpdate,
        progress: ProgressCallback | None = None,
        deadline: float | None = None,
    ) -> tuple[FieldMeta, AddFieldResult | None]:
        """
        Apply a partial metadata update.

        A meaningful new default is backfilled onto voters missing the field.
        """
        name = (name or "").strip()
        changes = update.changes()
        if "default" in changes:
            changes["default"] = encode_flat(changes["default"])

        async with self.locks.hold(name):
            meta = await self.registry.update(name, changes)
            backfill = None
            if "default" in changes and has_meaningful_value(changes["default"]):
                backfill = await self._backfill(name, changes["default"], progress, deadline)
        return meta, backfill

    # ------------------------------------------------------------------
    # Type normalization
    # ------------------------------------------------------------------

    async def normalize_field_type(
        self,
        name: str,
        target_type: FieldType,
        dry_run: bool = True,
        progress: ProgressCallback | None = None,
        deadline: float | None = None,
    ) -> NormalizeResult:
        """
        Convert a field's values to one consistent type.

        Numbers and booleans become strings for String; numeric strings
        become numbers for Number. Null values are left alone. With
        ``dry_run`` nothing is written and only the counts are reported.

        When a backup store is configured, each batch's prior values are
        saved before the batch is written; ``result.backup_id`` names the
        backup for ``restore_backup``.
        """
        name = (name or "").strip()
        ensure_not_critical(name, "retyped")
        target_type = FieldType(target_type)
        if target_type not in NORMALIZE_TARGETS:
            raise UnsupportedConversion(name, target_type.value)

        async with self.locks.hold(name):
            with_field = await self.entities.count_where_field_exists(name)
            meta = await self.registry.get(name)
            if with_field == 0 and meta is None:
                raise FieldNotFound(name)

            result = NormalizeResult(field_name=name, target_type=target_type, dry_run=dry_run)
            mutation_logger.log_mutation_started(
                "NormalizeFieldType", name, target_type=target_type.value, dry_run=dry_run
            )
            prior_values: dict[str, Any] = {}

            def plan(document: dict[str, Any]) -> PlannedUpdate | None:
                actual = encode_flat(document[name])
                if not needs_conversion(actual, target_type):
                    return None
                if dry_run:
                    return PlannedUpdate(tally={"needs_fix": 1})
                prior_values[document["id"]] = document[name]
                return PlannedUpdate(
                    op=UpdateOp(
                        entity_id=document["id"],
                        set={name: convert_value(actual, target_type)},
                    ),
                    tally={"fixed": 1},
                )

            async def backup_batch(ops: list[UpdateOp]) -> None:
                if result.backup_id is None:
                    run = await self.backups.create_run(
                        BackupRun(
                            id=new_backup_id(name),
                            field_name=name,
                            operation="NormalizeFieldType",
                            target_type=target_type,
                            previous_type=meta.type if meta is not None else None,
                        )
                    )
                    result.backup_id = run.id
                    logger.info(f"Backing up {name} values to {run.id}")
                await self.backups.add_entries(
                    result.backup_id,
                    [(op.entity_id, prior_values.pop(op.entity_id)) for op in ops],
                )

            tally = await self._scan(
                "NormalizeFieldType",
                name,
                plan,
                result,
                self.batch_size,
                where_field_exists=name,
                progress=progress,
                deadline=deadline,
                before_write=backup_batch if self.backups is not None and not dry_run else None,
            )

            if not dry_run and meta is not None and result.completed:
                await self.registry.update(name, {"type": target_type})

        result.analyzed = result.entities_checked
        result.fixed = tally["fixed"]
        if dry_run:
            result.needs_fix = tally["needs_fix"]
        else:
            result.needs_fix = result.fixed + len(result.failed_ids)
        action = "would be converted" if dry_run else "converted"
        message = (
            f'Field "{name}": {result.needs_fix} of {result.analyzed} values {action} to {target_type.value}'
        )
        if result.backup_id:
            message += f". Prior values saved to backup {result.backup_id}"
        result.message = _with_outcome_suffix(message, result)
        return result

    # ------------------------------------------------------------------
    # Backups
    # ------------------------------------------------------------------

    async def list_backups(self) -> list[BackupRun]:
        """List normalization backups, newest first."""
        if self.backups is None:
            return []
        return await self.backups.list_runs()

    async def restore_backup(
        self,
        backup_id: str,
        dry_run: bool = False,
        progress: ProgressCallback | None = None,
    ) -> RestoreResult:
        """
        Put back the values a normalization run rewrote.

        Voters deleted since the backup are skipped. The registry type is
        reset to the one recorded in the backup once every entry is
        restored. The backup itself is kept.
        """
        backups = self.backups
        run = await backups.get_run(backup_id) if backups is not None else None
        if run is None:
            raise BackupNotFound(backup_id)
        name = run.field_name

        result = RestoreResult(
            backup_id=run.id, field_name=name, dry_run=dry_run, entries=run.entry_count
        )
        if dry_run:
            result.message = (
                f'Backup {run.id} would restore "{name}" on {run.entry_count} voter documents'
            )
            return result

        async with self.locks.hold(name):
            mutation_logger.log_mutation_started("RestoreBackup", name, backup_id=run.id)
            state = ScanState(counters=result)
            pending: list[PlannedUpdate] = []

            async for entity_id, prior_value in backups.stream_entries(
                run.id, batch_size=self.batch_size
            ):
                result.entities_checked += 1
                pending.append(
                    PlannedUpdate(op=UpdateOp(entity_id=entity_id, set={name: prior_value}))
                )
                if len(pending) >= self.batch_size:
                    await self._commit_batch("RestoreBackup", name, pending, state, progress)
                    pending = []

            if pending:
                await self._commit_batch("RestoreBackup", name, pending, state, progress)

            if (
                run.previous_type is not None
                and not result.partial_failure
                and await self.registry.get(name) is not None
            ):
                await self.registry.update(name, {"type": run.previous_type})
                result.registry_type_restored = True

            mutation_logger.log_mutation_finished(
                "RestoreBackup",
                name,
                result.completed,
                entities_checked=result.entities_checked,
                entities_matched=result.entities_matched,
                entities_modified=result.entities_modified,
                failed_count=len(result.failed_ids),
            )

        result.restored = result.entities_matched
        result.message = _with_outcome_suffix(
            f'Restored "{name}" on {result.restored} of {result.entries} voter documents '
            f"from backup {run.id}",
            result,
        )
        return result
