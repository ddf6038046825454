"""fetchguard core -- shared primitives every other layer builds on.

Architecture::

    errors.py       Typed error hierarchy, ErrorReport, keyword classification
    settings.py     pydantic / pydantic-settings configuration models
    logging.py      structlog configuration and context helpers
    timestamps.py   Clock type, ULID report IDs, UTC helpers
    cache.py        CacheStore: TTL, LRU eviction, tags, stale-while-revalidate

Submodules are imported directly (``from fetchguard.core.cache import
CacheStore``); this package does not re-export them.
"""
