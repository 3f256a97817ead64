"""
Tests for the startup schema check and the migration chain.
"""
from pathlib import Path

import pytest
from alembic import command
from alembic.config import Config
from alembic.script import ScriptDirectory
from sqlalchemy import text

from premium_engine.core.config import settings
from premium_engine.core.db import create_db_engine
from premium_engine.core.errors import SchemaVersionMismatch
from premium_engine.core.schema import SCHEMA_REVISION, verify_schema

ROOT = Path(__file__).resolve().parents[1]


def _alembic_config() -> Config:
    cfg = Config()
    cfg.set_main_option("script_location", str(ROOT / "alembic"))
    return cfg


def _stamp(engine, revision):
    with engine.begin() as conn:
        conn.execute(text("CREATE TABLE alembic_version (version_num VARCHAR(32) NOT NULL PRIMARY KEY)"))
        conn.execute(text("INSERT INTO alembic_version (version_num) VALUES (:v)"), {"v": revision})


def test_expected_revision_is_migration_head():
    assert ScriptDirectory.from_config(_alembic_config()).get_current_head() == SCHEMA_REVISION


def test_missing_tables(tmp_path):
    empty = create_db_engine(f"sqlite:///{tmp_path / 'empty.db'}")
    try:
        with pytest.raises(SchemaVersionMismatch, match="missing tables"):
            verify_schema(empty)
    finally:
        empty.dispose()


def test_unversioned_database(engine):
    with pytest.raises(SchemaVersionMismatch, match="None"):
        verify_schema(engine)


def test_wrong_revision(engine):
    _stamp(engine, "0000deadbeef")
    with pytest.raises(SchemaVersionMismatch, match="0000deadbeef"):
        verify_schema(engine)


def test_matching_revision(engine):
    _stamp(engine, SCHEMA_REVISION)
    verify_schema(engine)


def test_upgrade_head_builds_a_valid_schema(tmp_path, monkeypatch):
    url = f"sqlite:///{tmp_path / 'migrated.db'}"
    monkeypatch.setattr(settings, "database_url", url)

    command.upgrade(_alembic_config(), "head")

    migrated = create_db_engine(url)
    try:
        verify_schema(migrated)
        with migrated.connect() as conn:
            codes = conn.scalars(text("SELECT code FROM plans ORDER BY display_order")).all()
        assert codes == ["BASIC_1M", "GOLD_1M", "PLATINUM_1M"]
    finally:
        migrated.dispose()
