"""
Migration tests: the Alembic history builds the same schema the models declare.
"""

from pathlib import Path

import pytest
from alembic import command
from alembic.config import Config
from sqlalchemy import inspect

from core.database import Base, build_engine

BACKEND_DIR = Path(__file__).resolve().parents[2]


@pytest.fixture
def alembic_config(tmp_path):
    url = f"sqlite:///{tmp_path / 'migrations.db'}"
    cfg = Config(str(BACKEND_DIR / "alembic.ini"))
    cfg.set_main_option("script_location", str(BACKEND_DIR / "alembic"))
    cfg.set_main_option("sqlalchemy.url", url)
    cfg.attributes["use_configured_url"] = True
    cfg.attributes["skip_logging_config"] = True
    return cfg, url


def test_upgrade_creates_model_tables(alembic_config):
    cfg, url = alembic_config

    command.upgrade(cfg, "head")

    engine = build_engine(url)
    try:
        inspector = inspect(engine)
        tables = set(inspector.get_table_names())
        assert {"bookings", "booking_messages", "commission_invoices"} <= tables

        for table in Base.metadata.sorted_tables:
            migrated = {column["name"] for column in inspector.get_columns(table.name)}
            assert migrated == set(table.columns.keys()), table.name

        unique_columns = [
            constraint["column_names"] for constraint in inspector.get_unique_constraints("commission_invoices")
        ] + [
            index["column_names"] for index in inspector.get_indexes("commission_invoices") if index["unique"]
        ]
        assert ["booking_id"] in unique_columns
    finally:
        engine.dispose()


def test_downgrade_removes_tables(alembic_config):
    cfg, url = alembic_config

    command.upgrade(cfg, "head")
    command.downgrade(cfg, "base")

    engine = build_engine(url)
    try:
        tables = set(inspect(engine).get_table_names())
        assert not {"bookings", "booking_messages", "commission_invoices"} & tables
    finally:
        engine.dispose()
