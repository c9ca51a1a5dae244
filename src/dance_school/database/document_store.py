from __future__ import annotations

import copy
import threading
from dataclasses import dataclass
from typing import Any, Callable, Optional, Protocol, Sequence

from ..common.retry import retry_transient
from ..core.constants import DEFAULT_RETRY_ATTEMPTS, DEFAULT_RETRY_BASE_DELAY
from ..core.exceptions import ValidationError

OPERATORS = ("==", "!=", "<", "<=", ">", ">=", "in", "array-contains")


@dataclass(frozen=True)
class QueryFilter:
    field: str
    op: str
    value: Any

    def __post_init__(self):
        if self.op not in OPERATORS:
            raise ValidationError(f"Unsupported query operator {self.op!r}")


@dataclass(frozen=True)
class OrderBy:
    field: str
    descending: bool = False


@dataclass(frozen=True)
class StoredDocument:
    id: str
    data: dict


class DocumentStore(Protocol):
    """Document-store abstraction the repositories are written against.

    Lưu ý (DIP): repositories depend on this interface, never on a concrete
    database driver.
    """

    def get(self, collection: str, doc_id: str) -> Optional[dict]:
        raise NotImplementedError

    def set(self, collection: str, doc_id: str, doc: dict, *, merge: bool = False) -> None:
        raise NotImplementedError

    def set_if(self, collection: str, doc_id: str, doc: dict, *, expected: dict) -> bool:
        """Replace the document only while every ``expected`` field still holds.

        Check and write are one atomic step. Returns False, writing nothing,
        when the document is missing or a field differs.
        """
        raise NotImplementedError

    def delete(self, collection: str, doc_id: str) -> bool:
        raise NotImplementedError

    def query(
        self,
        collection: str,
        filters: Sequence[QueryFilter] = (),
        *,
        order_by: Sequence[OrderBy] = (),
        limit: Optional[int] = None,
        start_after: Optional[str] = None,
    ) -> list[StoredDocument]:
        raise NotImplementedError


def deep_merge(base: dict, patch: dict) -> dict:
    out = dict(base)
    for key, value in patch.items():
        if isinstance(value, dict) and isinstance(out.get(key), dict):
            out[key] = deep_merge(out[key], value)
        else:
            out[key] = value
    return out


def matches(doc: dict, flt: QueryFilter) -> bool:
    if flt.field not in doc:
        return False
    value = doc[flt.field]
    try:
        if flt.op == "==":
            return value == flt.value
        if flt.op == "!=":
            return value != flt.value
        if flt.op == "<":
            return value < flt.value
        if flt.op == "<=":
            return value <= flt.value
        if flt.op == ">":
            return value > flt.value
        if flt.op == ">=":
            return value >= flt.value
        if flt.op == "in":
            return value in flt.value
        if flt.op == "array-contains":
            return isinstance(value, list) and flt.value in value
    except TypeError:
        return False
    return False


def apply_window(docs: list[StoredDocument], *, limit: Optional[int], start_after: Optional[str]) -> list[StoredDocument]:
    if start_after is not None:
        ids = [d.id for d in docs]
        docs = docs[ids.index(start_after) + 1:] if start_after in ids else []
    if limit is not None:
        docs = docs[: max(int(limit), 0)]
    return docs


class InMemoryDocumentStore(DocumentStore):
    """Thread-safe in-process store used by tests and the ``memory`` setting."""

    def __init__(self):
        self._lock = threading.Lock()
        self._data: dict[str, dict[str, dict]] = {}

    def get(self, collection: str, doc_id: str) -> Optional[dict]:
        with self._lock:
            doc = self._data.get(collection, {}).get(str(doc_id))
            return copy.deepcopy(doc) if doc is not None else None

    def set(self, collection: str, doc_id: str, doc: dict, *, merge: bool = False) -> None:
        with self._lock:
            bucket = self._data.setdefault(collection, {})
            current = bucket.get(str(doc_id))
            if merge and current is not None:
                bucket[str(doc_id)] = deep_merge(current, copy.deepcopy(doc))
            else:
                bucket[str(doc_id)] = copy.deepcopy(doc)

    def set_if(self, collection: str, doc_id: str, doc: dict, *, expected: dict) -> bool:
        with self._lock:
            bucket = self._data.get(collection, {})
            current = bucket.get(str(doc_id))
            if current is None or any(current.get(k) != v for k, v in expected.items()):
                return False
            bucket[str(doc_id)] = copy.deepcopy(doc)
            return True

    def delete(self, collection: str, doc_id: str) -> bool:
        with self._lock:
            return self._data.get(collection, {}).pop(str(doc_id), None) is not None

    def query(
        self,
        collection: str,
        filters: Sequence[QueryFilter] = (),
        *,
        order_by: Sequence[OrderBy] = (),
        limit: Optional[int] = None,
        start_after: Optional[str] = None,
    ) -> list[StoredDocument]:
        with self._lock:
            items = [
                StoredDocument(id=doc_id, data=copy.deepcopy(doc))
                for doc_id, doc in self._data.get(collection, {}).items()
                if all(matches(doc, f) for f in filters)
            ]

        items.sort(key=lambda d: d.id)
        # Stable multi-key sort: apply the least significant key first.
        for order in reversed(list(order_by)):
            items = [d for d in items if order.field in d.data]
            items.sort(key=lambda d: d.data[order.field], reverse=order.descending)
        return apply_window(items, limit=limit, start_after=start_after)


class RetryingDocumentStore(DocumentStore):
    """Decorator retrying TransientError on every (idempotent) store call."""

    def __init__(
        self,
        inner: DocumentStore,
        *,
        attempts: int = DEFAULT_RETRY_ATTEMPTS,
        base_delay: float = DEFAULT_RETRY_BASE_DELAY,
        sleep: Optional[Callable[[float], None]] = None,
    ):
        self._inner = inner
        self._attempts = attempts
        self._base_delay = base_delay
        self._sleep = sleep

    def _run(self, description: str, fn):
        kwargs = {"attempts": self._attempts, "base_delay": self._base_delay, "description": description}
        if self._sleep is not None:
            kwargs["sleep"] = self._sleep
        return retry_transient(fn, **kwargs)

    def get(self, collection: str, doc_id: str) -> Optional[dict]:
        return self._run(f"get {collection}/{doc_id}", lambda: self._inner.get(collection, doc_id))

    def set(self, collection: str, doc_id: str, doc: dict, *, merge: bool = False) -> None:
        self._run(f"set {collection}/{doc_id}", lambda: self._inner.set(collection, doc_id, doc, merge=merge))

    def set_if(self, collection: str, doc_id: str, doc: dict, *, expected: dict) -> bool:
        calls = 0

        def attempt() -> bool:
            nonlocal calls
            calls += 1
            if self._inner.set_if(collection, doc_id, doc, expected=expected):
                return True
            # A previous attempt may have committed before its connection dropped.
            return calls > 1 and self._inner.get(collection, doc_id) == doc

        return self._run(f"set_if {collection}/{doc_id}", attempt)

    def delete(self, collection: str, doc_id: str) -> bool:
        return self._run(f"delete {collection}/{doc_id}", lambda: self._inner.delete(collection, doc_id))

    def query(
        self,
        collection: str,
        filters: Sequence[QueryFilter] = (),
        *,
        order_by: Sequence[OrderBy] = (),
        limit: Optional[int] = None,
        start_after: Optional[str] = None,
    ) -> list[StoredDocument]:
        return self._run(
            f"query {collection}",
            lambda: self._inner.query(collection, filters, order_by=order_by, limit=limit, start_after=start_after),
        )
