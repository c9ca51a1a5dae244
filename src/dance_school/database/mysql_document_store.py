from __future__ import annotations

import json
import re
from decimal import Decimal
from typing import Any, Optional, Sequence

from ..core.exceptions import ValidationError
from .connection import DatabaseConnection
from .document_store import DocumentStore, OrderBy, QueryFilter, StoredDocument, apply_window, deep_merge
from .mysql_base import db_cursor, fetchall, fetchone

_FIELD_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")
_COMPARISONS = {"==": "=", "!=": "<>", "<": "<", "<=": "<=", ">": ">", ">=": ">="}


def _path(field: str) -> str:
    if not _FIELD_RE.match(field):
        raise ValidationError(f"Invalid document field {field!r}")
    return f"'$.{field}'"


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float, Decimal)) and not isinstance(value, bool)


def _filter_sql(flt: QueryFilter) -> tuple[str, list[Any]]:
    path = _path(flt.field)
    if flt.op == "array-contains":
        return f"JSON_CONTAINS(JSON_EXTRACT(body, {path}), %s)", [json.dumps(flt.value)]
    if flt.op == "in":
        values = list(flt.value)
        if not values:
            return "1=0", []
        marks = ",".join(["%s"] * len(values))
        return f"JSON_UNQUOTE(JSON_EXTRACT(body, {path})) IN ({marks})", [str(v) for v in values]
    if _is_number(flt.value):
        return f"CAST(JSON_EXTRACT(body, {path}) AS DECIMAL(20,6)) {_COMPARISONS[flt.op]} %s", [flt.value]
    if isinstance(flt.value, bool):
        return f"JSON_EXTRACT(body, {path}) {_COMPARISONS[flt.op]} CAST(%s AS JSON)", [json.dumps(flt.value)]
    return f"JSON_UNQUOTE(JSON_EXTRACT(body, {path})) {_COMPARISONS[flt.op]} %s", [str(flt.value)]


class MySQLDocumentStore(DocumentStore):
    """Documents stored as JSON bodies in a single ``documents`` table."""

    def __init__(self, conn_factory: DatabaseConnection):
        self._conn_factory = conn_factory

    def get(self, collection: str, doc_id: str) -> Optional[dict]:
        with db_cursor(self._conn_factory) as (_, cur):
            cur.execute(
                "SELECT body FROM documents WHERE collection=%s AND doc_id=%s",
                (collection, str(doc_id)),
            )
            row = fetchone(cur)
            return json.loads(row["body"]) if row else None

    def set(self, collection: str, doc_id: str, doc: dict, *, merge: bool = False) -> None:
        with db_cursor(self._conn_factory) as (_, cur):
            body = doc
            if merge:
                cur.execute(
                    "SELECT body FROM documents WHERE collection=%s AND doc_id=%s FOR UPDATE",
                    (collection, str(doc_id)),
                )
                row = fetchone(cur)
                if row:
                    body = deep_merge(json.loads(row["body"]), doc)
            cur.execute(
                """
                INSERT INTO documents(collection, doc_id, body)
                VALUES(%s,%s,%s)
                ON DUPLICATE KEY UPDATE body=VALUES(body)
                """,
                (collection, str(doc_id), json.dumps(body)),
            )

    def set_if(self, collection: str, doc_id: str, doc: dict, *, expected: dict) -> bool:
        with db_cursor(self._conn_factory) as (_, cur):
            # Row lock held until commit: nobody can write between check and update.
            cur.execute(
                "SELECT body FROM documents WHERE collection=%s AND doc_id=%s FOR UPDATE",
                (collection, str(doc_id)),
            )
            row = fetchone(cur)
            if not row:
                return False
            current = json.loads(row["body"])
            if any(current.get(k) != v for k, v in expected.items()):
                return False
            cur.execute(
                "UPDATE documents SET body=%s WHERE collection=%s AND doc_id=%s",
                (json.dumps(doc), collection, str(doc_id)),
            )
            return True

    def delete(self, collection: str, doc_id: str) -> bool:
        with db_cursor(self._conn_factory) as (_, cur):
            cur.execute("DELETE FROM documents WHERE collection=%s AND doc_id=%s", (collection, str(doc_id)))
            return cur.rowcount > 0

    def query(
        self,
        collection: str,
        filters: Sequence[QueryFilter] = (),
        *,
        order_by: Sequence[OrderBy] = (),
        limit: Optional[int] = None,
        start_after: Optional[str] = None,
    ) -> list[StoredDocument]:
        clauses = ["collection=%s"]
        params: list[object] = [collection]
        for flt in filters:
            sql, values = _filter_sql(flt)
            clauses.append(sql)
            params.extend(values)

        order_parts = []
        for order in order_by:
            path = _path(order.field)
            clauses.append(f"JSON_EXTRACT(body, {path}) IS NOT NULL")
            order_parts.append(f"JSON_EXTRACT(body, {path}) {'DESC' if order.descending else 'ASC'}")
        order_parts.append("doc_id ASC")

        where = " AND ".join(clauses)
        with db_cursor(self._conn_factory) as (_, cur):
            cur.execute(
                f"""
                SELECT doc_id, body
                FROM documents
                WHERE {where}
                ORDER BY {', '.join(order_parts)}
                """,
                tuple(params),
            )
            rows = fetchall(cur)

        docs = [StoredDocument(id=r["doc_id"], data=json.loads(r["body"])) for r in rows]
        return apply_window(docs, limit=limit, start_after=start_after)
