"""MemOS auto-context: enrich new commands with semantic-memory search hits.

Enrichment runs while a command is being created, before it is stored. It never
raises; any failure leaves the payload unchanged and reports the reason in the
returned metadata.
"""

import logging
import math
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any

import httpx

from taskgate.commands.schemas import CreateCommandInput
from taskgate.config import MemosConfig, build_memos_config
from taskgate.logging_utils import log_info, log_warning
from taskgate.text import normalize_string, slice_text

logger = logging.getLogger(__name__)

MAX_QUERY_CHARS = 500
MAX_RENDERED_HITS = 8
MAX_HIT_CHARS = 420
MAX_CONTEXT_CHARS = 7900
INVALID_QUERY_ERROR = "Invalid MemOS query."


@dataclass(frozen=True)
class MemosHit:
    """One normalized search hit."""

    id: str
    cube_id: str
    memory: str
    relativity: float | None = None


@dataclass(frozen=True)
class EnrichmentMeta:
    """What enrichment did for a create payload."""

    enabled: bool
    query: str
    used: bool
    hit_count: int
    error: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "enabled": self.enabled,
            "query": self.query,
            "used": self.used,
            "hit_count": self.hit_count,
            "error": self.error,
        }


@dataclass(frozen=True)
class SearchOutcome:
    """Rendered context for a query, or an error."""

    context: str
    hit_count: int
    query: str
    error: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "context": self.context,
            "hit_count": self.hit_count,
            "query": self.query,
            "error": self.error,
        }


@dataclass(frozen=True)
class MemosStatus:
    """Read-only provider status."""

    enabled: bool
    reason: str
    base_url: str
    user_id: str
    cubes: list[str] = field(default_factory=list)
    top_k: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "enabled": self.enabled,
            "reason": self.reason,
            "base_url": self.base_url,
            "user_id": self.user_id,
            "cubes": list(self.cubes),
            "top_k": self.top_k,
        }


def normalize_relativity(value: Any) -> float | None:
    """Coerce a relevance score to a finite float, or None."""
    if isinstance(value, bool):
        return None
    if isinstance(value, int | float):
        number = float(value)
    elif isinstance(value, str):
        try:
            number = float(value.strip())
        except ValueError:
            return None
    else:
        return None
    return number if math.isfinite(number) else None


def collect_hits(payload: Any) -> list[MemosHit]:
    """Flatten ``data.text_mem[].memories[]`` into hits, skipping malformed entries."""
    data = payload.get("data") if isinstance(payload, dict) else None
    groups = data.get("text_mem") if isinstance(data, dict) else None
    if not isinstance(groups, list):
        return []

    hits = []
    for group in groups:
        if not isinstance(group, dict):
            continue
        cube_id = normalize_string(group.get("cube_id"))
        memories = group.get("memories")
        if not isinstance(memories, list):
            continue
        for item in memories:
            if not isinstance(item, dict):
                continue
            memory = normalize_string(item.get("memory"))
            if not memory:
                continue
            metadata = item.get("metadata")
            hits.append(
                MemosHit(
                    id=normalize_string(item.get("id")),
                    cube_id=cube_id,
                    memory=memory,
                    relativity=normalize_relativity(
                        metadata.get("relativity") if isinstance(metadata, dict) else None
                    ),
                )
            )
    return hits


def dedupe_hits(hits: list[MemosHit]) -> list[MemosHit]:
    """Drop repeated hits, keyed by id or, when the id is blank, by text."""
    seen: set[str] = set()
    result = []
    for hit in hits:
        key = hit.id or hit.memory
        if not key or key in seen:
            continue
        seen.add(key)
        result.append(hit)
    return result


def sort_hits(hits: list[MemosHit]) -> list[MemosHit]:
    """Sort by relevance descending (missing scores last), then by text."""
    return sorted(
        hits,
        key=lambda hit: (
            -(hit.relativity if hit.relativity is not None else -1.0),
            hit.memory,
        ),
    )


def format_context(query: str, hits: list[MemosHit]) -> str:
    """Render the top hits into a bounded text block."""
    if not hits:
        return f'MemOS: no relevant memories found for "{slice_text(query, 160)}".'

    lines = [f'MemOS auto-context · query: "{slice_text(query, 240)}"']
    for index, hit in enumerate(hits[:MAX_RENDERED_HITS], start=1):
        cube = f" cube={hit.cube_id}" if hit.cube_id else ""
        rel = f" rel={hit.relativity:.2f}" if hit.relativity is not None else ""
        lines.append(f"{index}. {slice_text(hit.memory, MAX_HIT_CHARS)}{cube}{rel}")
    return slice_text("\n".join(lines), MAX_CONTEXT_CHARS)


def derive_query(payload: CreateCommandInput) -> str:
    """Use the explicit memos_query, else title and details truncated."""
    explicit = normalize_string(payload.memos_query)
    if explicit:
        return explicit
    return normalize_string(f"{payload.title}\n{payload.details or ''}")[:MAX_QUERY_CHARS]


class ContextEnrichmentProvider(ABC):
    """Interface for creation-time context enrichment."""

    @abstractmethod
    def status(self) -> MemosStatus:
        """Get provider status."""

    @abstractmethod
    async def enrich_create_payload(
        self, payload: CreateCommandInput
    ) -> tuple[CreateCommandInput, EnrichmentMeta]:
        """Return the payload, possibly with memos_query/memos_context filled in."""

    @abstractmethod
    async def search_to_context(self, query: str) -> SearchOutcome:
        """Search and render a context block for ``query``."""

    async def aclose(self) -> None:
        """Release resources."""


class DisabledContextProvider(ContextEnrichmentProvider):
    """Provider used when MemOS is switched off or not configured."""

    def __init__(self, config: MemosConfig) -> None:
        self.config = config

    def status(self) -> MemosStatus:
        return MemosStatus(
            enabled=False,
            reason=self.config.reason,
            base_url=self.config.base_url,
            user_id=self.config.user_id,
            cubes=list(self.config.readable_cube_ids),
            top_k=self.config.top_k,
        )

    async def enrich_create_payload(
        self, payload: CreateCommandInput
    ) -> tuple[CreateCommandInput, EnrichmentMeta]:
        return payload, EnrichmentMeta(
            enabled=False,
            query=normalize_string(payload.memos_query),
            used=False,
            hit_count=0,
            error=self.config.reason,
        )

    async def search_to_context(self, query: str) -> SearchOutcome:
        return SearchOutcome(
            context="", hit_count=0, query=normalize_string(query), error=self.config.reason
        )


class HttpContextProvider(ContextEnrichmentProvider):
    """Provider calling ``POST <base_url>/product/search`` with httpx."""

    def __init__(self, config: MemosConfig, client: httpx.AsyncClient | None = None) -> None:
        self.config = config
        self._client = client or httpx.AsyncClient(timeout=config.timeout_seconds)
        self._owns_client = client is None

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    def status(self) -> MemosStatus:
        return MemosStatus(
            enabled=self.config.enabled,
            reason=self.config.reason,
            base_url=self.config.base_url,
            user_id=self.config.user_id,
            cubes=list(self.config.readable_cube_ids),
            top_k=self.config.top_k,
        )

    async def enrich_create_payload(
        self, payload: CreateCommandInput
    ) -> tuple[CreateCommandInput, EnrichmentMeta]:
        has_context = bool(normalize_string(payload.memos_context))
        raw_query = derive_query(payload)

        if not self.config.enabled or has_context or not raw_query:
            return payload, EnrichmentMeta(
                enabled=self.config.enabled,
                query=raw_query,
                used=False,
                hit_count=0,
                error="",
            )

        outcome = await self.search_to_context(raw_query)
        if not outcome.context:
            return payload, EnrichmentMeta(
                enabled=True,
                query=outcome.query,
                used=False,
                hit_count=outcome.hit_count,
                error=outcome.error,
            )

        enriched = payload.model_copy(
            update={
                "memos_query": payload.memos_query or outcome.query,
                "memos_context": outcome.context,
            }
        )
        log_info(
            logger,
            "MemOS context attached",
            query=slice_text(outcome.query, 80),
            hits=outcome.hit_count,
        )
        return enriched, EnrichmentMeta(
            enabled=True,
            query=outcome.query,
            used=True,
            hit_count=outcome.hit_count,
            error="",
        )

    async def search_to_context(self, query: str) -> SearchOutcome:
        clean = normalize_string(query)
        if not clean or len(clean) > MAX_QUERY_CHARS:
            return SearchOutcome(context="", hit_count=0, query="", error=INVALID_QUERY_ERROR)
        if not self.config.enabled:
            return SearchOutcome(context="", hit_count=0, query=clean, error=self.config.reason)

        body: dict[str, Any] = {
            "query": clean,
            "user_id": self.config.user_id,
            "top_k": self.config.top_k,
            "relativity": 0,
            "dedup": "mmr",
            "mode": "fast",
            "include_preference": True,
            "search_tool_memory": True,
            "include_skill_memory": True,
        }
        if self.config.readable_cube_ids:
            body["readable_cube_ids"] = list(self.config.readable_cube_ids)

        try:
            response = await self._client.post(
                f"{self.config.base_url}/product/search",
                json=body,
                timeout=self.config.timeout_seconds,
            )
            if response.is_error:
                error = f"MemOS request failed with {response.status_code}."
                log_warning(logger, "MemOS search failed", status=response.status_code)
                return SearchOutcome(context="", hit_count=0, query=clean, error=error)
            payload = response.json()
        except httpx.TimeoutException:
            log_warning(logger, "MemOS search timed out", base_url=self.config.base_url)
            return SearchOutcome(
                context="", hit_count=0, query=clean, error="MemOS request timed out."
            )
        except (httpx.HTTPError, ValueError) as e:
            log_warning(logger, "MemOS search error", error=e)
            return SearchOutcome(
                context="", hit_count=0, query=clean, error=str(e) or type(e).__name__
            )

        hits = sort_hits(dedupe_hits(collect_hits(payload)))
        return SearchOutcome(
            context=format_context(clean, hits),
            hit_count=len(hits),
            query=clean,
            error="",
        )


def create_context_provider(
    config: MemosConfig | None = None,
    client: httpx.AsyncClient | None = None,
) -> ContextEnrichmentProvider:
    """Build the provider matching the configuration."""
    config = config or build_memos_config()
    if not config.enabled:
        return DisabledContextProvider(config)
    return HttpContextProvider(config, client=client)
