# Copyright (c) Syntropy Systems
"""Query catalog: the fixed battery of queries run against every variant."""
from __future__ import annotations

from typing import TYPE_CHECKING

from tablebench.errors import ConfigurationError
from tablebench.models.bench import QueryTemplate

if TYPE_CHECKING:
    from collections.abc import Iterable, Iterator

DEFAULT_TEMPLATES: tuple[QueryTemplate, ...] = (
    QueryTemplate(
        id="full_scan",
        sql="SELECT * FROM {table}",
        description="Unordered full scan",
    ),
    QueryTemplate(
        id="ordered_scan",
        sql="SELECT * FROM {table} ORDER BY payment_key",
        description="Full scan ordered by the leading key column",
    ),
    QueryTemplate(
        id="equality_filter",
        sql="SELECT * FROM {table} WHERE payment_key = 42",
        description="Equality lookup on the leading key column",
    ),
    QueryTemplate(
        id="filtered_aggregate",
        sql=(
            "SELECT store_key, COUNT(*) AS sales, SUM(amount) AS revenue "
            "FROM {table} WHERE time_key BETWEEN 100 AND 200 GROUP BY store_key"
        ),
        description="Range filter with grouped aggregate",
    ),
    QueryTemplate(
        id="store_filter",
        sql="SELECT * FROM {table} WHERE store_key = 6",
        description="Equality filter on a non-key column, whole rows",
    ),
    QueryTemplate(
        id="covering_filter",
        sql="SELECT store_key FROM {table} WHERE store_key = 6",
        description="Equality filter on a non-key column, filtered column only",
    ),
)


class QueryCatalog:
    """Read-only registry of query templates in declaration order."""

    _templates: tuple[QueryTemplate, ...]
    _by_id: dict[str, QueryTemplate]

    def __init__(self, templates: Iterable[QueryTemplate] = DEFAULT_TEMPLATES) -> None:
        self._templates = tuple(templates)
        self._by_id = {}
        for template in self._templates:
            if template.id in self._by_id:
                msg = f"Duplicate query id: {template.id}"
                raise ConfigurationError(msg)
            self._by_id[template.id] = template
        if not self._templates:
            msg = "Query catalog is empty"
            raise ConfigurationError(msg)

    @classmethod
    def from_config(cls, templates: Iterable[QueryTemplate]) -> QueryCatalog:
        """Use the configured queries, or the defaults when none are given."""
        templates = tuple(templates)
        return cls(templates or DEFAULT_TEMPLATES)

    def get(self, template_id: str) -> QueryTemplate:
        """Look up a template by id. Raises KeyError if unknown."""
        try:
            return self._by_id[template_id]
        except KeyError:
            msg = f"Unknown query template: {template_id}"
            raise KeyError(msg) from None

    def all(self) -> tuple[QueryTemplate, ...]:
        """All templates in declaration order."""
        return self._templates

    def ids(self) -> list[str]:
        return [template.id for template in self._templates]

    def __iter__(self) -> Iterator[QueryTemplate]:
        return iter(self._templates)

    def __len__(self) -> int:
        return len(self._templates)

    def __contains__(self, template_id: object) -> bool:
        return template_id in self._by_id
