"""
Text search expressions shared by the repositories.

PostgreSQL gets full-text search (``to_tsvector``/``plainto_tsquery`` ranked
with ``ts_rank``) in the configured language. Other dialects fall back to a
case-insensitive substring match with a constant rank.
"""
import re
from typing import Sequence, Tuple

from sqlalchemy import cast, func, literal, or_
from sqlalchemy.dialects.postgresql import REGCONFIG
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.sql.elements import ColumnElement

from core.config import settings
from repositories.base_repository import dialect_name

_LANGUAGE_PATTERN = re.compile(r"^[a-z_]+$")


def search_language() -> str:
    language = settings.diagnostics.search_language
    if not _LANGUAGE_PATTERN.match(language):
        raise ValueError(f"Недопустимый язык поиска: {language}")
    return language


def text_document(columns: Sequence[ColumnElement]) -> ColumnElement:
    """Concatenate columns into one text value, treating NULL as empty."""
    document = func.coalesce(columns[0], "")
    for column in columns[1:]:
        document = document + " " + func.coalesce(column, "")
    return document


def text_search(
    db: AsyncSession,
    columns: Sequence[ColumnElement],
    term: str,
) -> Tuple[ColumnElement, ColumnElement]:
    """
    Build a (match condition, rank) pair for ``term`` over ``columns``.

    Args:
        db: Session, used to pick the dialect
        columns: Text columns searched together
        term: User supplied search text

    Returns:
        Tuple of (WHERE condition, rank expression)
    """
    if dialect_name(db) == "postgresql":
        language = cast(literal(search_language()), REGCONFIG)
        vector = func.to_tsvector(language, text_document(columns))
        query = func.plainto_tsquery(language, term)
        return vector.bool_op("@@")(query), func.ts_rank(vector, query)

    pattern = f"%{term}%"
    return or_(*[column.ilike(pattern) for column in columns]), literal(0.0)
