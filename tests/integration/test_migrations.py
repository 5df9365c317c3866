"""Test the Alembic migration: upgrade, downgrade, and structural checks."""

import importlib

import pytest
from alembic.migration import MigrationContext
from alembic.operations import Operations
from sqlalchemy import create_engine, inspect

from shopinspect.db.base import Base


pytestmark = [pytest.mark.db, pytest.mark.integration]

migration = importlib.import_module("shopinspect.migrations.versions.0001_initial_schema")


@pytest.fixture
def bare_engine(tmp_path):
    engine = create_engine(f"sqlite:///{tmp_path / 'migrations.db'}")
    yield engine
    engine.dispose()


def _run(engine, step):
    with engine.begin() as conn:
        ctx = MigrationContext.configure(conn)
        with Operations.context(ctx):
            step()


class TestInitialSchema:

    def test_revision_metadata(self):
        assert migration.revision == "0001"
        assert migration.down_revision is None

    def test_upgrade_creates_model_tables(self, bare_engine):
        _run(bare_engine, migration.upgrade)

        tables = set(inspect(bare_engine).get_table_names())
        assert set(Base.metadata.tables) <= tables

    def test_columns_match_models(self, bare_engine):
        _run(bare_engine, migration.upgrade)
        inspector = inspect(bare_engine)

        for name, table in Base.metadata.tables.items():
            migrated = {c["name"] for c in inspector.get_columns(name)}
            assert {c.name for c in table.columns} == migrated, name

    def test_history_metadata_column(self, bare_engine):
        _run(bare_engine, migration.upgrade)
        columns = {c["name"] for c in inspect(bare_engine).get_columns("inspection_state_history")}
        assert "metadata" in columns
        assert "validation_passed" in columns

    def test_downgrade_drops_everything(self, bare_engine):
        _run(bare_engine, migration.upgrade)
        _run(bare_engine, migration.downgrade)
        assert inspect(bare_engine).get_table_names() == []
