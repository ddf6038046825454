"""Query execution wrapper and cached entity lookups."""

from fetchguard.query.entities import EntityQueries, EntitySource
from fetchguard.query.executor import QueryExecutor, QueryMetric, QueryResult

__all__ = [
    "EntityQueries",
    "EntitySource",
    "QueryExecutor",
    "QueryMetric",
    "QueryResult",
]
