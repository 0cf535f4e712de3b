"""
Schema capabilities: which columns a table actually has.

Some deployments run behind on migrations, so optional columns of
``tv_interface_marks`` and ``tv_interfaces`` may be missing. Instead of
probing ``information_schema`` on every call, the column set of a table is
resolved once through SQLAlchemy inspection, cached, and injected into the
repositories that need it.
"""

import logging
from dataclasses import dataclass
from typing import Dict, Iterable, Optional

from sqlalchemy import Table, column, inspect, table
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.sql.expression import TableClause

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TableCapabilities:
    """Column set of one table."""

    table_name: str
    columns: frozenset

    def has(self, column: str) -> bool:
        return column in self.columns

    def present(self, columns: Iterable[str]) -> list:
        return [column for column in columns if column in self.columns]

    def missing(self, columns: Iterable[str]) -> list:
        return [column for column in columns if column not in self.columns]

    def project(self, source: Table) -> TableClause:
        """Lightweight copy of ``source`` limited to the present columns."""
        return table(
            source.name,
            *[column(col.name, col.type) for col in source.columns if col.name in self.columns],
        )

    @classmethod
    def of(cls, table_name: str, columns: Iterable[str]) -> "TableCapabilities":
        return cls(table_name=table_name, columns=frozenset(columns))


class SchemaCapabilities:
    """
    Registry of resolved table capabilities.

    Usage:
        caps = await schema_capabilities.resolve(db, "tv_interface_marks")
        if caps.has("step_id"):
            ...
    """

    def __init__(self):
        self._tables: Dict[str, TableCapabilities] = {}

    def get(self, table_name: str) -> Optional[TableCapabilities]:
        return self._tables.get(table_name)

    def register(self, capabilities: TableCapabilities) -> None:
        """Set capabilities explicitly (configuration or tests)."""
        self._tables[capabilities.table_name] = capabilities

    def invalidate(self, table_name: Optional[str] = None) -> None:
        """Forget cached capabilities, e.g. after running migrations."""
        if table_name is None:
            self._tables.clear()
        else:
            self._tables.pop(table_name, None)

    async def resolve(self, db: AsyncSession, table_name: str) -> TableCapabilities:
        """Return cached capabilities, inspecting the table on first use."""
        cached = self._tables.get(table_name)
        if cached is not None:
            return cached

        def _inspect_columns(sync_session) -> list:
            inspector = inspect(sync_session.connection())
            return [column["name"] for column in inspector.get_columns(table_name)]

        columns = await db.run_sync(_inspect_columns)
        capabilities = TableCapabilities.of(table_name, columns)
        self._tables[table_name] = capabilities
        logger.info(f"Resolved columns of {table_name}: {sorted(capabilities.columns)}")
        return capabilities


# Process-wide registry used by the repositories
schema_capabilities = SchemaCapabilities()
