"""Tests for the field migration command line."""

import pytest

from fieldengine.repos.field_backups import MemoryFieldBackupStore
from fieldengine.services.bulk_mutations import FieldMutationEngine
from scripts.run_field_migration import build_parser, execute

VOTER_A = "00000000-0000-0000-0000-00000000000a"
VOTER_B = "00000000-0000-0000-0000-00000000000b"


@pytest.fixture
def backup_engine(entities, registry) -> FieldMutationEngine:
    return FieldMutationEngine(
        entities, registry, batch_size=2, rename_batch_size=2, backups=MemoryFieldBackupStore()
    )


async def run_cli(argv, engine, inspector):
    return await execute(build_parser().parse_args(argv), engine, inspector)


@pytest.mark.asyncio
async def test_list_backups_empty(backup_engine, inspector, capsys):
    exit_code = await run_cli(["list-backups"], backup_engine, inspector)

    assert exit_code == 0
    assert "No backups found." in capsys.readouterr().out


@pytest.mark.asyncio
async def test_normalize_then_rollback(backup_engine, inspector, entities, capsys):
    """Test that rollback puts back the values an applied normalize rewrote."""
    entities.documents[VOTER_A]["ward"] = "12"
    entities.documents[VOTER_B]["ward"] = {"value": "4", "visible": True}

    exit_code = await run_cli(
        ["normalize", "ward", "--to", "Number", "--apply"], backup_engine, inspector
    )
    assert exit_code == 0
    assert entities.documents[VOTER_A]["ward"] == 12
    assert entities.documents[VOTER_B]["ward"] == 4
    capsys.readouterr()

    exit_code = await run_cli(["list-backups"], backup_engine, inspector)
    out = capsys.readouterr().out
    backup_id = (await backup_engine.list_backups())[0].id
    assert exit_code == 0
    assert f"{backup_id}: ward (untracked -> Number), 2 voters" in out

    exit_code = await run_cli(["rollback", backup_id, "--dry-run"], backup_engine, inspector)
    assert exit_code == 0
    assert "would restore" in capsys.readouterr().out
    assert entities.documents[VOTER_A]["ward"] == 12

    exit_code = await run_cli(["rollback", backup_id], backup_engine, inspector)
    assert exit_code == 0
    assert entities.documents[VOTER_A]["ward"] == "12"
    assert entities.documents[VOTER_B]["ward"] == {"value": "4", "visible": True}


@pytest.mark.asyncio
async def test_rollback_unknown_backup(backup_engine, inspector, capsys):
    exit_code = await run_cli(["rollback", "typefix_missing"], backup_engine, inspector)

    assert exit_code == 1
    assert 'Backup "typefix_missing" not found' in capsys.readouterr().out


def test_rollback_requires_backup_id():
    with pytest.raises(SystemExit):
        build_parser().parse_args(["rollback"])
