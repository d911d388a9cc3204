"""SQLite FTS5 index over metric names and descriptions."""

from __future__ import annotations

import structlog
from sqlalchemy import column, table, text
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncConnection

logger = structlog.get_logger()

MIN_TERM_LENGTH = 3

metric_search = table("metric_search", column("metric_id"), column("canonical_name"), column("description"))

_CREATE = [
    "CREATE VIRTUAL TABLE IF NOT EXISTS metric_search USING fts5("
    "metric_id UNINDEXED, canonical_name, description, tokenize='trigram')",
    "CREATE TRIGGER IF NOT EXISTS metrics_search_ai AFTER INSERT ON metrics BEGIN "
    "INSERT INTO metric_search(metric_id, canonical_name, description) "
    "VALUES (new.id, new.canonical_name, new.description); END",
    "CREATE TRIGGER IF NOT EXISTS metrics_search_ad AFTER DELETE ON metrics BEGIN "
    "DELETE FROM metric_search WHERE metric_id = old.id; END",
    "CREATE TRIGGER IF NOT EXISTS metrics_search_au AFTER UPDATE OF canonical_name, description ON metrics BEGIN "
    "DELETE FROM metric_search WHERE metric_id = old.id; "
    "INSERT INTO metric_search(metric_id, canonical_name, description) "
    "VALUES (new.id, new.canonical_name, new.description); END",
]


async def install_search_index(conn: AsyncConnection) -> bool:
    """Create the FTS5 table and its triggers.

    Returns False when the SQLite build lacks FTS5 or the trigram tokenizer;
    search then falls back to LIKE matching.
    """
    if conn.dialect.name != "sqlite":
        return False
    try:
        for statement in _CREATE:
            await conn.execute(text(statement))
    except OperationalError as e:
        logger.warning("fts_unavailable", error=str(e))
        return False
    return True


def match_expression(terms: list[str]) -> str:
    """AND-joined phrase query; each term is quoted so punctuation is literal."""
    return " ".join('"' + term.replace('"', '""') + '"' for term in terms)
