"""MemOS semantic-memory context enrichment."""

from taskgate.memos.context import (
    ContextEnrichmentProvider,
    DisabledContextProvider,
    EnrichmentMeta,
    HttpContextProvider,
    MemosHit,
    MemosStatus,
    SearchOutcome,
    create_context_provider,
)

__all__ = [
    "ContextEnrichmentProvider",
    "DisabledContextProvider",
    "EnrichmentMeta",
    "HttpContextProvider",
    "MemosHit",
    "MemosStatus",
    "SearchOutcome",
    "create_context_provider",
]
