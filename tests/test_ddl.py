import pytest
import sqlalchemy as sa

from workshop.ddl import checksum, generate_ddl, main


def test_generate_ddl_orders_types_before_tables():
    sql = generate_ddl()
    assert sql.startswith("BEGIN;")
    assert sql.rstrip().endswith("COMMIT;")
    assert "CREATE TYPE work_order_status AS ENUM ('PENDING', 'IN_PROGRESS', 'COMPLETED', 'CANCELLED')" in sql
    assert sql.index("CREATE TYPE work_order_status") < sql.index("CREATE TABLE IF NOT EXISTS work_orders")
    # Referenced tables come first
    assert sql.index("CREATE TABLE IF NOT EXISTS customers") < sql.index("CREATE TABLE IF NOT EXISTS vehicles")
    assert "CREATE TABLE IF NOT EXISTS invoice_sequences" in sql


def test_generate_ddl_is_deterministic():
    assert checksum(generate_ddl()) == checksum(generate_ddl())


def test_empty_metadata_is_rejected():
    with pytest.raises(ValueError):
        generate_ddl(sa.MetaData())


def test_main_writes_file(tmp_path):
    target = tmp_path / "schema.sql"
    assert main(["--output", str(target)]) == 0
    content = target.read_text()
    assert content.startswith("-- workshop schema, checksum ")
    assert "CREATE TABLE IF NOT EXISTS stock_adjustments" in content
