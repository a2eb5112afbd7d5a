"""Emit PostgreSQL DDL for the workshop models without a database connection.

Used to bootstrap a database by hand or from provisioning scripts:

    python -m workshop.ddl --output schema.sql
"""
import argparse
import hashlib
import sys
from datetime import datetime, timezone
from pathlib import Path

import sqlalchemy as sa
from sqlalchemy.dialects import postgresql
from sqlalchemy.schema import CreateIndex, CreateTable

from .models import Base


def _enum_sql(name: str, labels) -> str:
    values = ", ".join(f"'{v}'" for v in labels)
    return (
        "DO $$ BEGIN\n"
        f"    CREATE TYPE {name} AS ENUM ({values});\n"
        "EXCEPTION WHEN duplicate_object THEN null;\n"
        "END $$;"
    )


def generate_ddl(metadata: sa.MetaData = Base.metadata) -> str:
    """Enum types first, then tables in dependency order, then their indexes."""
    if not metadata.tables:
        raise ValueError("Metadata has no tables to generate SQL for")

    dialect = postgresql.dialect()
    enum_types: dict[str, sa.Enum] = {}
    statements: list[str] = []

    for table in metadata.sorted_tables:
        for col in table.columns:
            if isinstance(col.type, sa.Enum):
                enum_types.setdefault(col.type.name or f"{table.name}_{col.name}_enum", col.type)

        statements.append(str(CreateTable(table, if_not_exists=True).compile(dialect=dialect)).rstrip() + ";")
        for idx in sorted(table.indexes, key=lambda i: i.name or ""):
            statements.append(str(CreateIndex(idx, if_not_exists=True).compile(dialect=dialect)).rstrip() + ";")

    parts = ["BEGIN;"]
    parts.extend(_enum_sql(name, enum.enums) for name, enum in enum_types.items())
    parts.extend(statements)
    parts.append("COMMIT;")
    return "\n\n".join(parts) + "\n"


def checksum(sql: str) -> str:
    return hashlib.sha256(sql.encode()).hexdigest()[:16]


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Print PostgreSQL DDL for the workshop schema")
    parser.add_argument("--output", "-o", help="write to this file instead of stdout")
    args = parser.parse_args(argv)

    sql = generate_ddl()
    header = (
        f"-- workshop schema, checksum {checksum(sql)}\n"
        f"-- generated {datetime.now(timezone.utc).isoformat()}\n\n"
    )
    if args.output:
        Path(args.output).write_text(header + sql)
    else:
        sys.stdout.write(header + sql)
    return 0


if __name__ == "__main__":
    sys.exit(main())
