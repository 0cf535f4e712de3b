"""
Maintenance routines for the ``tv_interfaces`` table.

Screenshots are stored inline, so the table grows large and list queries get
slow without the right indexes. ``TVInterfaceOptimizer`` creates the indexes
those queries need, refreshes planner statistics and reports oversized
screenshots. Every statement is idempotent, so it is safe to run repeatedly.

PostgreSQL only: ``CREATE INDEX CONCURRENTLY`` runs outside a transaction, so
statements go through an AUTOCOMMIT connection from
``get_maintenance_connection`` unless a connection is injected.
"""
import json
import logging
from contextlib import asynccontextmanager
from dataclasses import asdict, dataclass, field
from typing import Any, AsyncGenerator, Dict, List, Optional

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine

from core.config import settings
from core.database import get_maintenance_connection
from core.decorators import log_database_operation

logger = logging.getLogger(__name__)

TABLE_NAME = "tv_interfaces"
LEGACY_INDEX = "idx_tv_interfaces_active_only"
MB = 1024 * 1024

OPTIMIZATION_INDEXES = {
    "idx_tv_interfaces_device_active_created": (
        "CREATE INDEX CONCURRENTLY IF NOT EXISTS idx_tv_interfaces_device_active_created "
        "ON tv_interfaces (device_id, is_active, created_at DESC)"
    ),
    "idx_tv_interfaces_id_active": (
        "CREATE INDEX CONCURRENTLY IF NOT EXISTS idx_tv_interfaces_id_active "
        "ON tv_interfaces (id, is_active) WHERE is_active = true"
    ),
    "idx_tv_interfaces_screenshot_size": (
        "CREATE INDEX CONCURRENTLY IF NOT EXISTS idx_tv_interfaces_screenshot_size "
        f"ON tv_interfaces (device_id) WHERE length(screenshot_data) > {settings.diagnostics.large_screenshot_mb * MB}"
    ),
}

# Queries profiled by get_slow_query_analysis with a placeholder id
PROFILED_QUERIES = {
    "get_by_device_id": (
        "SELECT * FROM tv_interfaces WHERE device_id = :value AND is_active = true "
        "ORDER BY created_at DESC"
    ),
    "update_by_id": (
        "UPDATE tv_interfaces SET updated_at = now() WHERE id = :value AND is_active = true"
    ),
}

STORAGE_RECOMMENDATION = (
    "Рекомендуется вынести крупные скриншоты во внешнее хранилище и хранить только ссылки"
)


@dataclass
class OptimizationResult:
    """Outcome of ``optimize_database``."""

    indexes_created: List[str] = field(default_factory=list)
    indexes_dropped: List[str] = field(default_factory=list)
    statistics_updated: bool = False

    def to_dict(self) -> dict:
        return asdict(self)


class TVInterfaceOptimizer:
    """
    Index and statistics maintenance for TV interfaces.

    Args:
        bind: Engine to open maintenance connections on (defaults to the
            application engine)
        connection: Ready AUTOCOMMIT connection; when given, no connection is
            opened or closed by the optimizer
    """

    def __init__(self, bind: Optional[AsyncEngine] = None, connection: Optional[AsyncConnection] = None):
        self.bind = bind
        self.connection = connection

    @asynccontextmanager
    async def _connect(self) -> AsyncGenerator[AsyncConnection, None]:
        if self.connection is not None:
            conn = self.connection
            self._ensure_postgres(conn)
            yield conn
            return

        async with get_maintenance_connection(self.bind) as conn:
            self._ensure_postgres(conn)
            yield conn

    @staticmethod
    def _ensure_postgres(conn: AsyncConnection) -> None:
        dialect = conn.dialect.name
        if dialect != "postgresql":
            raise RuntimeError(f"Оптимизация TV интерфейсов поддерживается только PostgreSQL, получено: {dialect}")

    @log_database_operation("оптимизация таблицы tv_interfaces", level="info")
    async def optimize_database(self) -> OptimizationResult:
        """
        Create the query indexes, drop the legacy partial index and ANALYZE.

        Returns:
            OptimizationResult naming the touched indexes
        """
        result = OptimizationResult()
        async with self._connect() as conn:
            for name, ddl in OPTIMIZATION_INDEXES.items():
                logger.info(f"Ensuring index {name}")
                await conn.execute(text(ddl))
                result.indexes_created.append(name)

            await conn.execute(text(f"DROP INDEX IF EXISTS {LEGACY_INDEX}"))
            result.indexes_dropped.append(LEGACY_INDEX)

            await conn.execute(text(f"ANALYZE {TABLE_NAME}"))
            result.statistics_updated = True

        logger.info(
            f"TV interfaces optimized: created {result.indexes_created}, dropped {result.indexes_dropped}"
        )
        return result

    async def get_optimization_status(self) -> Dict[str, Any]:
        """
        Report table and index sizes, row counts and missing indexes.

        ``is_optimized`` is True when every optimization index exists.
        """
        threshold = settings.diagnostics.large_screenshot_mb * MB
        async with self._connect() as conn:
            indexes = (
                await conn.execute(
                    text(
                        "SELECT indexname, indexdef FROM pg_indexes "
                        "WHERE tablename = :table AND indexname LIKE 'idx_tv_interfaces_%' "
                        "ORDER BY indexname"
                    ),
                    {"table": TABLE_NAME},
                )
            ).mappings().all()
            sizes = (
                await conn.execute(
                    text(
                        "SELECT pg_size_pretty(pg_relation_size(:table)) AS table_size, "
                        "pg_size_pretty(pg_indexes_size(:table)) AS indexes_size"
                    ),
                    {"table": TABLE_NAME},
                )
            ).mappings().one()
            counts = (
                await conn.execute(
                    text(
                        "SELECT count(*) AS total_rows, "
                        "count(*) FILTER (WHERE is_active = true) AS active_rows, "
                        "count(*) FILTER (WHERE length(screenshot_data) > :threshold) AS large_screenshots, "
                        "avg(length(screenshot_data))::bigint AS avg_screenshot_size "
                        "FROM tv_interfaces"
                    ),
                    {"threshold": threshold},
                )
            ).mappings().one()

        existing = [row["indexname"] for row in indexes]
        missing = [name for name in OPTIMIZATION_INDEXES if name not in existing]
        return {
            "is_optimized": not missing,
            "table_size": sizes["table_size"],
            "indexes_size": sizes["indexes_size"],
            "total_rows": int(counts["total_rows"] or 0),
            "active_rows": int(counts["active_rows"] or 0),
            "large_screenshots": int(counts["large_screenshots"] or 0),
            "avg_screenshot_size": int(counts["avg_screenshot_size"] or 0),
            "indexes": [dict(row) for row in indexes],
            "optimization_indexes": list(OPTIMIZATION_INDEXES),
            "missing_indexes": missing,
        }

    async def get_slow_query_analysis(self) -> List[Dict[str, Any]]:
        """
        EXPLAIN ANALYZE the hot TV interface queries.

        The placeholder id matches no row, so the profiled UPDATE changes
        nothing. A failing query is reported with its error instead of
        aborting the analysis.
        """
        analysis = []
        async with self._connect() as conn:
            for name, sql in PROFILED_QUERIES.items():
                entry = {"name": name, "query": sql}
                try:
                    row = (
                        await conn.execute(
                            text(f"EXPLAIN (ANALYZE, BUFFERS, FORMAT JSON) {sql}"),
                            {"value": f"profile_{name}"},
                        )
                    ).first()
                except Exception as e:
                    logger.warning(f"Query analysis of {name} failed: {e}")
                    entry["error"] = str(e)
                    analysis.append(entry)
                    continue

                plan = row[0]
                if isinstance(plan, str):
                    plan = json.loads(plan)
                plan = plan[0]
                entry.update(
                    plan=plan,
                    execution_time=plan.get("Execution Time"),
                    planning_time=plan.get("Planning Time"),
                )
                analysis.append(entry)
        return analysis

    async def cleanup_large_screenshots(self, max_size_mb: int = 10) -> Dict[str, Any]:
        """
        Report screenshots larger than ``max_size_mb`` (largest first, at most 100).

        Nothing is deleted; the report feeds a manual move to external storage.
        """
        max_size = max_size_mb * MB
        async with self._connect() as conn:
            rows = (
                await conn.execute(
                    text(
                        "SELECT id, length(screenshot_data) AS size FROM tv_interfaces "
                        "WHERE length(screenshot_data) > :max_size "
                        "ORDER BY length(screenshot_data) DESC LIMIT 100"
                    ),
                    {"max_size": max_size},
                )
            ).mappings().all()

        large = [{"id": row["id"], "size_mb": round(row["size"] / MB, 2)} for row in rows]
        for item in large:
            logger.info(f"Large screenshot {item['id']}: {item['size_mb']} MB")
        logger.info(f"Found {len(large)} screenshots larger than {max_size_mb} MB")
        return {
            "total_found": len(large),
            "large_screenshots": large,
            "recommendation": STORAGE_RECOMMENDATION,
        }
