"""Cached entity lookups built on ``QueryExecutor``.

``EntityQueries`` turns the four common read shapes (by id, paged list,
text search, batch by ids) into ``execute_query`` calls with deterministic
cache keys. The data itself comes from any object implementing
``EntitySource``.

Example:
    >>> listings = EntityQueries(executor, ListingApi(client), entity="listing")
    >>> result = await listings.get("p1")
    >>> if result.ok:
    ...     render(result.data)
"""

from __future__ import annotations

import json
from collections.abc import Mapping, Sequence
from typing import Any, Generic, Protocol, TypeVar

from fetchguard.query.executor import QueryExecutor, QueryResult

T = TypeVar("T")


class EntitySource(Protocol[T]):
    """Async data source for one kind of entity."""

    async def fetch_one(self, entity_id: str) -> T | None: ...

    async def fetch_page(self, filters: Mapping[str, Any], page: int, limit: int) -> list[T]: ...

    async def search(self, text: str, filters: Mapping[str, Any], limit: int) -> list[T]: ...

    async def fetch_many(self, ids: Sequence[str]) -> list[T]: ...


def _serialise(value: Any) -> str:
    return json.dumps(value, sort_keys=True, default=str, separators=(",", ":"))


class EntityQueries(Generic[T]):
    """Cached get/list/search/batch reads for one entity type.

    Cache keys:
        get         ``<entity>_<id>``
        list        ``<entity>s_<json(filters, page, limit)>``
        search      ``search_<entity>_<text>_<json(filters)>_<limit>``
        batch_get   ``batch_<entity>s_<sorted ids>``

    Every entry is also tagged with the entity name, so
    ``cache.invalidate_by_tags([entity])`` drops all of them.
    """

    def __init__(self, executor: QueryExecutor, source: EntitySource[T], *, entity: str = "entity"):
        self._executor = executor
        self._source = source
        self.entity = entity

    async def get(self, entity_id: str) -> QueryResult[T | None]:
        return await self._executor.execute_query(
            lambda: self._source.fetch_one(entity_id),
            name=f"get_{self.entity}",
            cache_key=f"{self.entity}_{entity_id}",
            metadata={"entity_id": entity_id},
            tags=(self.entity,),
        )

    async def list(
        self,
        filters: Mapping[str, Any] | None = None,
        page: int = 1,
        limit: int = 20,
    ) -> QueryResult[list[T]]:
        filters = dict(filters or {})
        params = {"filters": filters, "page": page, "limit": limit}
        return await self._executor.execute_query(
            lambda: self._source.fetch_page(filters, page, limit),
            name=f"list_{self.entity}s",
            cache_key=f"{self.entity}s_{_serialise(params)}",
            metadata=params,
            tags=(self.entity,),
        )

    async def search(
        self,
        text: str,
        filters: Mapping[str, Any] | None = None,
        limit: int = 10,
    ) -> QueryResult[list[T]]:
        filters = dict(filters or {})
        return await self._executor.execute_query(
            lambda: self._source.search(text, filters, limit),
            name=f"search_{self.entity}s",
            cache_key=f"search_{self.entity}_{text}_{_serialise(filters)}_{limit}",
            metadata={"text": text, "filters": filters, "limit": limit},
            tags=(self.entity,),
        )

    async def batch_get(self, ids: Sequence[str]) -> QueryResult[list[T]]:
        """Fetch several entities at once; an empty ``ids`` never hits the source."""
        if not ids:
            return QueryResult(data=[])

        ordered = sorted(ids)
        return await self._executor.execute_query(
            lambda: self._source.fetch_many(list(ids)),
            name=f"batch_get_{self.entity}s",
            cache_key=f"batch_{self.entity}s_{','.join(ordered)}",
            metadata={"count": len(ids)},
            tags=(self.entity,),
        )


__all__ = ["EntityQueries", "EntitySource"]
