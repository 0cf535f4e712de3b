"""
Diagnostic session repository.

A session is active while ``end_time`` is NULL and becomes completed once
``end_time``, ``success`` and ``duration`` are written. Step progress is kept
in ``session_steps``; the session's ``completed_steps`` is recounted from
those rows on every progress write.
"""
import logging
from datetime import timedelta
from typing import Any, Dict, List, Optional

from sqlalchemy import and_, case, delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from core.config import settings
from core.decorators import critical_database_operation, transactional_database_operation
from core.logging_config import DiagnosticSessionLogger
from db.enums import StepResult, TimeBucket
from db.models import Device, DiagnosticSession, DiagnosticStep, Problem, SessionStep, utc_now
from repositories.base_repository import BaseRepository, dialect_name
from repositories.problem_repository import ProblemRepository

logger = logging.getLogger(__name__)
session_logger = DiagnosticSessionLogger()

devices = Device.__table__
problems = Problem.__table__
steps = DiagnosticStep.__table__
session_steps = SessionStep.__table__

# bucket -> (PostgreSQL to_char format, SQLite strftime format, bucket width)
TIME_BUCKETS = {
    TimeBucket.HOUR: ("YYYY-MM-DD HH24:00", "%Y-%m-%d %H:00", timedelta(hours=1)),
    TimeBucket.DAY: ("YYYY-MM-DD", "%Y-%m-%d", timedelta(days=1)),
    TimeBucket.WEEK: ("IYYY-IW", "%Y-%W", timedelta(weeks=1)),
    TimeBucket.MONTH: ("YYYY-MM", "%Y-%m", timedelta(days=31)),
}


def _percent(part: int, total: int) -> int:
    return round(part / total * 100) if total else 0


def _round_or_none(value) -> Optional[int]:
    return round(float(value)) if value is not None else None


class SessionStepRepository(BaseRepository[SessionStep]):
    """Rows recording progress of one step within a session."""

    model = SessionStep
    json_fields = {"user_input": None, "errors": [], "metadata": {}}
    default_sort = "step_number"


class DiagnosticSessionRepository(BaseRepository[DiagnosticSession]):
    """Repository for end-user diagnostic sessions."""

    model = DiagnosticSession
    json_fields = {"error_steps": [], "feedback": None, "metadata": {}}
    default_sort = "start_time"

    @classmethod
    def _elapsed_seconds(cls, session: dict) -> int:
        return int((utc_now() - session["start_time"]).total_seconds())

    @classmethod
    async def _get_open_session(cls, db: AsyncSession, session_id: str, operation: str) -> dict:
        session = await cls._get(db, session_id)
        error = None
        if session is None:
            error = "Сессия не найдена"
        elif session["end_time"] is not None:
            error = "Сессия уже завершена"
        if error:
            session_logger.error_occurred(operation, session_id, error)
            raise ValueError(error)
        return session

    # ------------------------------------------------------------------
    # State transitions
    # ------------------------------------------------------------------

    @classmethod
    @transactional_database_operation("создание сессии диагностики")
    async def create_session(cls, db: AsyncSession, data: Dict[str, Any]) -> dict:
        """
        Start a session for a problem.

        ``total_steps`` is the number of active steps of the problem at this
        moment and is not recomputed later. ``device_id`` defaults to the
        problem's device.

        Raises:
            ValueError: If the problem does not exist
        """
        session = dict(data)
        problem_id = session.get("problem_id")
        total_steps = 0
        if problem_id:
            problem = (
                await db.execute(select(problems.c.device_id).where(problems.c.id == problem_id))
            ).first()
            if problem is None:
                raise ValueError("Проблема не найдена")
            if not session.get("device_id"):
                session["device_id"] = problem.device_id
            total_steps = await cls._scalar(
                db,
                select(func.count()).select_from(steps).where(
                    steps.c.problem_id == problem_id, steps.c.is_active.is_(True)
                ),
            )

        session.update(
            total_steps=total_steps,
            completed_steps=0,
            start_time=utc_now(),
            end_time=None,
            success=None,
            duration=None,
        )
        created = await cls._insert(db, session)
        session_logger.session_created(
            created["id"], problem_id, created["device_id"], total_steps, created.get("user_id")
        )
        return created

    @classmethod
    @transactional_database_operation("обновление прогресса сессии")
    async def update_progress(
        cls, db: AsyncSession, session_id: str, step_id: str, step_result: Dict[str, Any]
    ) -> dict:
        """
        Record the outcome of a step and recount the session's progress.

        The session_steps row for (session, step) is updated when present and
        inserted otherwise.

        Args:
            db: Database session
            session_id: Active session
            step_id: Diagnostic step the result belongs to
            step_result: step_number, completed, result, time_spent,
                user_input, errors, metadata

        Raises:
            ValueError: If the session does not exist or is already completed
        """
        session = await cls._get_open_session(db, session_id, "update_progress")
        now = utc_now()
        completed = bool(step_result.get("completed", False))
        values = {
            "step_number": step_result.get("step_number"),
            "completed": completed,
            "result": step_result.get("result") or StepResult.SUCCESS.value,
            "time_spent": step_result.get("time_spent"),
            "user_input": step_result.get("user_input"),
            "errors": step_result.get("errors") or [],
            "metadata": step_result.get("metadata") or {},
            "completed_at": now if completed else None,
        }

        existing_id = await cls._scalar(
            db,
            select(session_steps.c.id).where(
                session_steps.c.session_id == session_id, session_steps.c.step_id == step_id
            ),
            default=None,
        )
        if existing_id:
            await db.execute(
                SessionStepRepository.build_update_query(
                    existing_id, SessionStepRepository.prepare_for_update(values)
                )
            )
        else:
            await SessionStepRepository._insert(
                db, {**values, "session_id": session_id, "step_id": step_id, "started_at": now}
            )

        completed_steps = await cls._scalar(
            db,
            select(func.count()).select_from(session_steps).where(
                session_steps.c.session_id == session_id, session_steps.c.completed.is_(True)
            ),
        )
        updated = await cls._update(db, session_id, {"completed_steps": completed_steps})
        session_logger.progress_updated(session_id, step_id, completed_steps, session["total_steps"])
        return updated

    @classmethod
    @transactional_database_operation("завершение сессии")
    async def complete_session(
        cls,
        db: AsyncSession,
        session_id: str,
        success: bool,
        feedback: Optional[dict] = None,
        error_steps: Optional[list] = None,
    ) -> dict:
        """
        Close a session.

        ``duration`` is the whole number of seconds between start and end.
        A successful session adds one to the problem's ``completed_count``;
        the problem's ``success_rate`` is recomputed either way.

        Raises:
            ValueError: If the session does not exist or is already completed
        """
        session = await cls._get_open_session(db, session_id, "complete_session")
        end_time = utc_now()
        duration = round((end_time - session["start_time"]).total_seconds())

        values = {"end_time": end_time, "success": bool(success), "duration": duration}
        if feedback is not None:
            values["feedback"] = feedback
        if error_steps is not None:
            values["error_steps"] = error_steps
        completed = await cls._update(db, session_id, values)

        if session["problem_id"]:
            await ProblemRepository._update_stats(
                db, session["problem_id"], increment_completed=bool(success)
            )

        session_logger.session_completed(session_id, bool(success), duration)
        return completed

    @classmethod
    @transactional_database_operation("очистка старых сессий")
    async def cleanup_old_sessions(
        cls,
        db: AsyncSession,
        days_old: Optional[int] = None,
        abandoned_hours: Optional[int] = None,
    ) -> Dict[str, int]:
        """
        Sweep stale sessions.

        Completed sessions that ended more than ``days_old`` days ago are
        deleted. Active sessions started more than ``abandoned_hours`` ago are
        closed as unsuccessful and flagged ``metadata.abandoned``.

        Returns:
            {"deleted_sessions": int, "abandoned_sessions": int}
        """
        if days_old is None:
            days_old = settings.diagnostics.session_retention_days
        if abandoned_hours is None:
            abandoned_hours = settings.diagnostics.abandoned_session_hours
        sessions = cls.table

        deleted = await db.execute(
            delete(sessions).where(
                sessions.c.end_time.isnot(None),
                sessions.c.end_time < cls.cutoff(days=days_old),
            )
        )

        stale = (
            await db.execute(
                select(sessions.c.id, sessions.c.start_time, sessions.c["metadata"]).where(
                    sessions.c.end_time.is_(None),
                    sessions.c.start_time < cls.cutoff(hours=abandoned_hours),
                )
            )
        ).mappings().all()

        now = utc_now()
        for row in stale:
            metadata = dict(cls.to_dict(row)["metadata"])
            metadata["abandoned"] = True
            await db.execute(
                update(sessions)
                .where(sessions.c.id == row["id"])
                .values(
                    end_time=now,
                    success=False,
                    duration=round((now - row["start_time"]).total_seconds()),
                    metadata=metadata,
                    updated_at=now,
                )
            )

        session_logger.sessions_purged(deleted.rowcount, days_old)
        session_logger.sessions_abandoned(len(stale), abandoned_hours)
        return {"deleted_sessions": deleted.rowcount, "abandoned_sessions": len(stale)}

    # ------------------------------------------------------------------
    # Reads and analytics
    # ------------------------------------------------------------------

    @classmethod
    def _with_context(cls):
        sessions = cls.table
        return select(
            sessions,
            devices.c.name.label("device_name"),
            devices.c.brand.label("device_brand"),
            devices.c.model.label("device_model"),
            problems.c.title.label("problem_title"),
            problems.c.category.label("problem_category"),
            problems.c.estimated_time.label("problem_estimated_time"),
        ).select_from(
            sessions.outerjoin(devices, sessions.c.device_id == devices.c.id).outerjoin(
                problems, sessions.c.problem_id == problems.c.id
            )
        )

    @classmethod
    @critical_database_operation("получение активных сессий")
    async def get_active_sessions(cls, db: AsyncSession, *, limit: int = 50, offset: int = 0) -> List[dict]:
        """Unfinished sessions, newest first, with elapsed seconds."""
        sessions = cls.table
        stmt = (
            cls._with_context()
            .where(sessions.c.end_time.is_(None), sessions.c.is_active.is_(True))
            .order_by(sessions.c.start_time.desc())
            .limit(limit)
            .offset(offset)
        )
        rows = await cls._fetch_all(db, stmt)
        for row in rows:
            row["elapsed_seconds"] = cls._elapsed_seconds(row)
        return rows

    @classmethod
    @critical_database_operation("получение сессии с прогрессом")
    async def find_by_id_with_progress(cls, db: AsyncSession, session_id: str) -> Optional[dict]:
        """Session with device/problem context and per-step progress."""
        sessions = cls.table
        session = await cls._fetch_one(db, cls._with_context().where(sessions.c.id == session_id))
        if session is None:
            return None

        progress = await SessionStepRepository._fetch_all(
            db,
            select(
                session_steps,
                steps.c.title.label("step_title"),
                steps.c.description.label("step_description"),
                steps.c.estimated_time.label("step_estimated_time"),
            )
            .select_from(session_steps.outerjoin(steps, session_steps.c.step_id == steps.c.id))
            .where(session_steps.c.session_id == session_id)
            .order_by(session_steps.c.step_number.asc(), session_steps.c.created_at.asc()),
        )

        session["steps_progress"] = progress
        session["completion_percentage"] = _percent(session["completed_steps"], session["total_steps"])
        session["current_duration"] = (
            session["duration"] if session["duration"] is not None else cls._elapsed_seconds(session)
        )
        return session

    @classmethod
    @critical_database_operation("получение статистики сессий")
    async def get_session_stats(cls, db: AsyncSession, filters: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """
        Aggregate counters over sessions.

        Filters: device_id, problem_id, date_from, date_to (on start_time).
        ``success_rate`` is relative to completed sessions.
        """
        sessions = cls.table
        filters = filters or {}
        conditions = [sessions.c.is_active.is_(True)]
        for key in ("device_id", "problem_id"):
            if filters.get(key):
                conditions.append(sessions.c[key] == filters[key])
        if filters.get("date_from"):
            conditions.append(sessions.c.start_time >= filters["date_from"])
        if filters.get("date_to"):
            conditions.append(sessions.c.start_time <= filters["date_to"])

        finished = sessions.c.end_time.isnot(None)
        completion_rate = sessions.c.completed_steps * 100.0 / func.nullif(sessions.c.total_steps, 0)
        row = (
            await db.execute(
                select(
                    func.count().label("total_sessions"),
                    func.count(case((and_(finished, sessions.c.success.is_(True)), 1))).label("successful"),
                    func.count(case((and_(finished, sessions.c.success.is_(False)), 1))).label("failed"),
                    func.count(case((sessions.c.end_time.is_(None), 1))).label("active"),
                    func.avg(sessions.c.duration).label("avg_duration"),
                    func.min(sessions.c.duration).label("min_duration"),
                    func.max(sessions.c.duration).label("max_duration"),
                    func.avg(completion_rate).label("avg_completion_rate"),
                ).where(and_(*conditions))
            )
        ).mappings().one()

        successful = int(row["successful"] or 0)
        failed = int(row["failed"] or 0)
        return {
            "total_sessions": int(row["total_sessions"] or 0),
            "successful_sessions": successful,
            "failed_sessions": failed,
            "active_sessions": int(row["active"] or 0),
            "success_rate": _percent(successful, successful + failed),
            "avg_duration": _round_or_none(row["avg_duration"]),
            "min_duration": row["min_duration"],
            "max_duration": row["max_duration"],
            "avg_completion_rate": _round_or_none(row["avg_completion_rate"]) or 0,
        }

    @classmethod
    @critical_database_operation("получение популярных проблем")
    async def get_popular_problems(cls, db: AsyncSession, limit: int = 10, days: int = 30) -> List[dict]:
        """Problems with the most sessions started in the last ``days`` days."""
        sessions = cls.table
        session_count = func.count(sessions.c.id).label("session_count")
        successful_count = func.count(case((sessions.c.success.is_(True), 1))).label("successful_count")
        stmt = (
            select(
                problems.c.id,
                problems.c.title,
                problems.c.category,
                devices.c.name.label("device_name"),
                session_count,
                successful_count,
                func.avg(sessions.c.duration).label("avg_duration"),
            )
            .select_from(
                sessions.join(problems, sessions.c.problem_id == problems.c.id).outerjoin(
                    devices, problems.c.device_id == devices.c.id
                )
            )
            .where(sessions.c.is_active.is_(True), sessions.c.start_time >= cls.cutoff(days=days))
            .group_by(problems.c.id, problems.c.title, problems.c.category, devices.c.name)
            .order_by(session_count.desc(), successful_count.desc())
            .limit(limit)
        )
        rows = [dict(row) for row in (await db.execute(stmt)).mappings().all()]
        for row in rows:
            row["success_rate"] = _percent(row["successful_count"], row["session_count"])
            row["avg_duration"] = _round_or_none(row["avg_duration"])
        return rows

    @classmethod
    def _bucket_expression(cls, db: AsyncSession, bucket: TimeBucket):
        sessions = cls.table
        pg_format, sqlite_format, _ = TIME_BUCKETS[bucket]
        if dialect_name(db) == "postgresql":
            return func.to_char(func.date_trunc(bucket.value, sessions.c.start_time), pg_format)
        return func.strftime(sqlite_format, sessions.c.start_time)

    @classmethod
    @critical_database_operation("получение временной аналитики")
    async def get_time_analytics(cls, db: AsyncSession, period: str = "day", limit: int = 30) -> List[dict]:
        """
        Session counts per hour, day, week or month, most recent first.

        Only the last ``limit`` buckets are covered.

        Raises:
            ValueError: If ``period`` is not a known bucket
        """
        try:
            bucket = TimeBucket(period)
        except ValueError:
            raise ValueError(f"Неизвестный период аналитики: {period}")

        sessions = cls.table
        label = cls._bucket_expression(db, bucket).label("period")
        width = TIME_BUCKETS[bucket][2]
        stmt = (
            select(
                label,
                func.count().label("total_sessions"),
                func.count(case((sessions.c.success.is_(True), 1))).label("successful_sessions"),
                func.avg(sessions.c.duration).label("avg_duration"),
            )
            .where(sessions.c.is_active.is_(True), sessions.c.start_time >= utc_now() - width * limit)
            .group_by(label)
            .order_by(label.desc())
            .limit(limit)
        )
        rows = [dict(row) for row in (await db.execute(stmt)).mappings().all()]
        for row in rows:
            row["success_rate"] = _percent(row["successful_sessions"], row["total_sessions"])
            row["avg_duration"] = _round_or_none(row["avg_duration"])
        return rows
