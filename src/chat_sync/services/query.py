"""Filter primitives understood by the document backend.

Queries travel as JSON objects (``{"method": ..., "attribute": ..., "values":
[...]}``) in the ``queries[]`` request parameter. The same objects can be
evaluated in-process, which is how the local document service filters its
collections.
"""

from __future__ import annotations

import json
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any

FILTER_METHODS = frozenset({"equal", "contains", "or", "and"})
ORDER_METHODS = frozenset({"orderAsc", "orderDesc"})


class QueryError(ValueError):
    """Raised when a query cannot be parsed or evaluated."""


@dataclass(frozen=True)
class Query:
    """A single filter or ordering clause."""

    method: str
    attribute: str | None = None
    values: tuple[Any, ...] = field(default_factory=tuple)

    @classmethod
    def equal(cls, attribute: str, values: Any) -> Query:
        return cls("equal", attribute, _as_tuple(values))

    @classmethod
    def contains(cls, attribute: str, values: Any) -> Query:
        return cls("contains", attribute, _as_tuple(values))

    @classmethod
    def or_(cls, queries: Sequence[Query]) -> Query:
        return cls("or", None, tuple(queries))

    @classmethod
    def and_(cls, queries: Sequence[Query]) -> Query:
        return cls("and", None, tuple(queries))

    @classmethod
    def order_desc(cls, attribute: str) -> Query:
        return cls("orderDesc", attribute)

    @classmethod
    def order_asc(cls, attribute: str) -> Query:
        return cls("orderAsc", attribute)

    @property
    def is_order(self) -> bool:
        return self.method in ORDER_METHODS

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"method": self.method}
        if self.attribute is not None:
            payload["attribute"] = self.attribute
        if self.method in {"or", "and"}:
            payload["values"] = [sub.to_dict() for sub in self.values]
        elif self.values:
            payload["values"] = list(self.values)
        return payload

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), separators=(",", ":"))

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> Query:
        method = payload.get("method")
        if method not in FILTER_METHODS | ORDER_METHODS:
            raise QueryError(f"Unsupported query method: {method!r}")
        values = payload.get("values") or []
        if method in {"or", "and"}:
            return cls(method, None, tuple(cls.from_dict(sub) for sub in values))
        attribute = payload.get("attribute")
        if not attribute:
            raise QueryError(f"Query method {method!r} requires an attribute")
        return cls(method, attribute, tuple(values))

    @classmethod
    def from_json(cls, raw: str) -> Query:
        try:
            payload = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise QueryError(f"Malformed query: {raw!r}") from exc
        if not isinstance(payload, dict):
            raise QueryError(f"Malformed query: {raw!r}")
        return cls.from_dict(payload)

    def matches(self, document: Mapping[str, Any]) -> bool:
        """Evaluate a filter clause against a document; ordering clauses match everything."""
        if self.method == "equal":
            return document.get(self.attribute) in self.values  # type: ignore[arg-type]
        if self.method == "contains":
            current = document.get(self.attribute)  # type: ignore[arg-type]
            if isinstance(current, list):
                return any(value in current for value in self.values)
            if isinstance(current, str):
                return any(str(value) in current for value in self.values)
            return False
        if self.method == "or":
            return any(sub.matches(document) for sub in self.values)
        if self.method == "and":
            return all(sub.matches(document) for sub in self.values)
        return True


def _as_tuple(values: Any) -> tuple[Any, ...]:
    if isinstance(values, list | tuple | set | frozenset):
        return tuple(values)
    return (values,)


def apply_queries(
    documents: Iterable[Mapping[str, Any]],
    queries: Sequence[Query],
) -> list[dict[str, Any]]:
    """Filter and order documents the way the backend would."""
    filters = [query for query in queries if not query.is_order]
    orders = [query for query in queries if query.is_order]

    selected = [dict(doc) for doc in documents if all(query.matches(doc) for query in filters)]

    # Apply the last ordering first so earlier clauses take precedence. A
    # descending clause is the exact mirror of the ascending one, ties included.
    for order in reversed(orders):
        selected.sort(key=lambda doc: _sort_key(doc.get(order.attribute)))  # type: ignore[arg-type]
        if order.method == "orderDesc":
            selected.reverse()
    return selected


def _sort_key(value: Any) -> tuple[int, Any]:
    if value is None:
        return (0, "")
    if isinstance(value, bool | int | float):
        return (1, value)
    return (2, str(value))
