from __future__ import annotations

from typing import Any

from psycopg import sql
from psycopg.types.json import Jsonb

from ..db import get_conn

_NON_EMPTY_PREDICATES: dict[str, str] = {
    "scalar": "{column} <> ''",
    "embedded": "{column} <> ''",
    "text_array": "cardinality({column}) > 0",
    "json_array": "jsonb_typeof({column}) = 'array' AND jsonb_array_length({column}) > 0",
}


def _non_empty(column: str, kind: str) -> sql.Composable:
    template = _NON_EMPTY_PREDICATES.get(kind)
    if template is None:
        raise ValueError(f"unsupported reference column kind: {kind}")
    return sql.SQL(template).format(column=sql.Identifier(column))


async def fetch_reference_rows(
    table: str,
    column: str,
    *,
    kind: str,
    after_id: Any | None = None,
    limit: int = 500,
) -> list[dict[str, Any]]:
    """Return ``{id, value}`` rows holding a non-empty media reference, keyset-paged by id."""

    query = sql.SQL(
        """
        SELECT id, {column} AS value
        FROM {table}
        WHERE {column} IS NOT NULL
          AND {non_empty}
          AND (%s::text IS NULL OR id > %s)
        ORDER BY id ASC
        LIMIT %s
        """
    ).format(
        column=sql.Identifier(column),
        table=sql.Identifier(table),
        non_empty=_non_empty(column, kind),
    )
    marker = None if after_id is None else str(after_id)
    async with get_conn() as cur:
        await cur.execute(query, (marker, after_id, limit))
        rows = await cur.fetchall()
    return [dict(row) for row in rows]


async def update_reference_value(
    table: str,
    column: str,
    row_id: Any,
    value: Any,
    *,
    kind: str,
) -> int:
    """Write one row's rewritten reference back; returns the affected row count."""

    parameter = Jsonb(value) if kind == "json_array" else value
    query = sql.SQL("UPDATE {table} SET {column} = %s WHERE id = %s").format(
        table=sql.Identifier(table),
        column=sql.Identifier(column),
    )
    async with get_conn() as cur:
        await cur.execute(query, (parameter, row_id))
        return int(cur.rowcount or 0)


__all__ = ["fetch_reference_rows", "update_reference_value"]
