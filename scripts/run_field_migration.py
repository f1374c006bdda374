#!/usr/bin/env python3
"""Run voter field migrations against the configured database.

Examples:
    python scripts/run_field_migration.py inspect --sample-size 200
    python scripts/run_field_migration.py flatten
    python scripts/run_field_migration.py normalize booth_number --to Number
    python scripts/run_field_migration.py normalize booth_number --to Number --apply
    python scripts/run_field_migration.py list-backups
    python scripts/run_field_migration.py rollback typefix_20261019101500_booth_number_3fa9c1 --dry-run
"""

import argparse
import asyncio
import json
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

from fieldengine.core.config import get_settings
from fieldengine.core.database import close_db_pool, init_db_pool
from fieldengine.core.exceptions import FieldEngineError
from fieldengine.core.logging_config import setup_logging
from fieldengine.core.responses import CustomJSONEncoder
from fieldengine.core.validation import ReservedFieldPolicy
from fieldengine.models.fields import FieldType, MutationProgress
from fieldengine.repos.postgres_backups import PostgresFieldBackupStore
from fieldengine.repos.postgres_entities import PostgresEntityCollection
from fieldengine.repos.postgres_fields import PostgresFieldStore
from fieldengine.services.bulk_mutations import FieldMutationEngine
from fieldengine.services.field_inspection import FieldInspector
from fieldengine.services.field_registry import FieldRegistry


def print_progress(progress: MutationProgress) -> None:
    print(
        f"  batch {progress.batch_index}: "
        f"{progress.entities_checked} checked, {progress.entities_modified} modified"
    )


def print_result(result) -> None:
    print()
    print(json.dumps(result.model_dump(), indent=2, cls=CustomJSONEncoder))
    print()


async def execute(
    args: argparse.Namespace, engine: FieldMutationEngine, inspector: FieldInspector
) -> int:
    """Run one subcommand and return the process exit code."""
    try:
        if args.command == "inspect":
            report = await inspector.inspect_observed_fields(args.sample_size)
            print_result(report)
            return 0

        if args.command == "list-backups":
            backups = await engine.list_backups()
            if not backups:
                print("No backups found.")
                return 0
            print("\nAvailable backups:")
            print("=" * 80)
            for backup in backups:
                previous = backup.previous_type.value if backup.previous_type else "untracked"
                target = backup.target_type.value if backup.target_type else "?"
                print(
                    f"  {backup.id}: {backup.field_name} ({previous} -> {target}), "
                    f"{backup.entry_count} voters"
                )
            print("=" * 80)
            print("To roll back: run_field_migration.py rollback <backup_id>")
            return 0

        if args.command == "flatten":
            print("Flattening legacy {value, visible} attributes...")
            result = await engine.flatten_all(progress=print_progress)
        elif args.command == "rollback":
            mode = "Dry run:" if args.dry_run else "Restoring"
            print(f"{mode} backup {args.backup_id}...")
            result = await engine.restore_backup(
                args.backup_id, dry_run=args.dry_run, progress=print_progress
            )
        else:
            mode = "Applying" if args.apply else "Dry run:"
            print(f"{mode} normalize {args.field_name} to {args.to}...")
            result = await engine.normalize_field_type(
                args.field_name,
                FieldType(args.to),
                dry_run=not args.apply,
                progress=print_progress,
            )

        print_result(result)
        print(result.message)
        return 0 if result.completed and not result.partial_failure else 2
    except FieldEngineError as e:
        print(f"❌ {e.message}")
        return 1


async def run(args: argparse.Namespace) -> int:
    settings = get_settings()
    pool = await init_db_pool(settings)
    try:
        entities = PostgresEntityCollection(pool)
        registry = FieldRegistry(
            PostgresFieldStore(pool),
            entities,
            reserved_policy=ReservedFieldPolicy(settings.reserved_field_names),
            inference_sample_size=settings.INSPECT_SAMPLE_SIZE,
        )
        engine = FieldMutationEngine(
            entities,
            registry,
            batch_size=settings.FIELD_BATCH_SIZE,
            rename_batch_size=settings.RENAME_BATCH_SIZE,
            default_timeout=settings.MUTATION_TIMEOUT_SECONDS,
            backups=PostgresFieldBackupStore(pool),
        )
        inspector = FieldInspector(
            entities,
            registry,
            sample_size=settings.INSPECT_SAMPLE_SIZE,
            max_sample_values=settings.INSPECT_MAX_SAMPLE_VALUES,
            display_length=settings.INSPECT_SAMPLE_DISPLAY_LENGTH,
        )
        return await execute(args, engine, inspector)
    finally:
        await close_db_pool()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Run voter field migrations")
    subparsers = parser.add_subparsers(dest="command", required=True)

    inspect_parser = subparsers.add_parser(
        "inspect", help="Describe the attributes present on voter documents"
    )
    inspect_parser.add_argument(
        "--sample-size", type=int, default=None, help="Number of voters to sample"
    )

    subparsers.add_parser(
        "flatten", help="Rewrite legacy wrapped attributes to their raw values"
    )

    normalize_parser = subparsers.add_parser(
        "normalize", help="Convert a field's values to one type"
    )
    normalize_parser.add_argument("field_name", help="Field to normalize")
    normalize_parser.add_argument(
        "--to",
        choices=[FieldType.STRING.value, FieldType.NUMBER.value],
        required=True,
        help="Target type",
    )
    normalize_parser.add_argument(
        "--apply",
        action="store_true",
        help="Write the converted values (default is a dry run)",
    )

    subparsers.add_parser("list-backups", help="List saved normalization backups")

    rollback_parser = subparsers.add_parser(
        "rollback", help="Restore the values a normalization run rewrote"
    )
    rollback_parser.add_argument("backup_id", help="Backup to restore (see list-backups)")
    rollback_parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Show what would be restored without writing",
    )
    return parser


def main() -> None:
    args = build_parser().parse_args()
    setup_logging()
    sys.exit(asyncio.run(run(args)))


if __name__ == "__main__":
    main()
