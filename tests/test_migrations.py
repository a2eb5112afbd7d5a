from pathlib import Path

import pytest
import sqlalchemy as sa
from alembic import command
from alembic.config import Config

from workshop.config import get_settings
from workshop.models import Base

ROOT = Path(__file__).resolve().parents[1]


@pytest.fixture
def migrated_db(tmp_path, monkeypatch):
    path = tmp_path / "migrated.db"
    monkeypatch.setenv("DATABASE_URL", f"sqlite+aiosqlite:///{path}")
    get_settings.cache_clear()
    config = Config()
    config.set_main_option("script_location", str(ROOT / "alembic"))
    yield config, path
    get_settings.cache_clear()


def test_upgrade_builds_the_model_schema(migrated_db):
    config, path = migrated_db
    command.upgrade(config, "head")

    engine = sa.create_engine(f"sqlite:///{path}")
    inspector = sa.inspect(engine)
    assert set(inspector.get_table_names()) == set(Base.metadata.tables) | {"alembic_version"}
    for name, table in Base.metadata.tables.items():
        assert {c["name"] for c in inspector.get_columns(name)} == set(table.columns.keys()), name
        assert {i["name"] for i in inspector.get_indexes(name)} == {i.name for i in table.indexes}, name
    engine.dispose()


def test_downgrade_drops_everything(migrated_db):
    config, path = migrated_db
    command.upgrade(config, "head")
    command.downgrade(config, "base")

    engine = sa.create_engine(f"sqlite:///{path}")
    assert sa.inspect(engine).get_table_names() == ["alembic_version"]
    engine.dispose()
