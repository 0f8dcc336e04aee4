from __future__ import annotations

"""
In-process catalog store.

The store keeps the tool catalog in insertion order together with its
relational attributes and answers the three questions retrieval asks:
which tools pass a set of structured filters, what are the full records
for an ordered list of ids, and what are the display names of a set of
category ids.  Writes go through :meth:`CatalogStore.update_semantics`,
which swaps canonical text, embedding and model id in one step under the
store lock, so readers never see a record whose embedding and canonical
text disagree.
"""

import threading
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Sequence

from loguru import logger

from .catalog_build import (
    build_canonical_text,
    index_tool,
    is_canonical_current,
    load_catalog_snapshot,
    load_reference_tables,
    write_catalog_snapshot,
)
from .config import CATALOG_SNAPSHOT_PATH, Category, SearchFilters, Tag, Tool, ToolStatus
from .errors import CatalogUnavailableError


def matches_filters(tool: Tool, filters: SearchFilters) -> bool:
    """
    Relational predicate for one tool.

    Filters AND together; list filters match when the tool holds ANY of
    the requested values.  Empty lists and ``None`` do not restrict.
    Approval is always required regardless of ``filters.status``.
    """
    if tool.status != ToolStatus.APPROVED:
        return False
    if filters.status is not None and tool.status != filters.status:
        return False
    if filters.category_ids and not set(filters.category_ids).intersection(tool.category_ids):
        return False
    if filters.tag_ids and not set(filters.tag_ids).intersection(tool.tag_ids):
        return False
    if filters.pricing_models and tool.pricing_model not in filters.pricing_models:
        return False
    if filters.api_available is not None and tool.api_available != filters.api_available:
        return False
    if filters.enterprise_ready is not None and tool.enterprise_ready != filters.enterprise_ready:
        return False
    return True


class CatalogStore:
    def __init__(
        self,
        tools: Optional[Iterable[Tool]] = None,
        snapshot_path: Optional[Path] = None,
        categories: Iterable[Category] = (),
        tags: Iterable[Tag] = (),
    ):
        self.snapshot_path = snapshot_path
        self._lock = threading.RLock()
        self._order: List[str] = []
        self._tools: Dict[str, Tool] = {}
        self._categories: Dict[str, Category] = {c.id: c for c in categories}
        self._tags: Dict[str, Tag] = {t.id: t for t in tags}
        self._loaded = tools is not None
        for t in tools or []:
            self._put(t)

    # ------------------------------------------------------------------
    # Loading / persistence
    # ------------------------------------------------------------------

    @classmethod
    def from_snapshot(cls, path: Path = CATALOG_SNAPSHOT_PATH) -> "CatalogStore":
        store = cls(snapshot_path=path)
        store.reload()
        return store

    def reload(self) -> None:
        if self.snapshot_path is None:
            raise CatalogUnavailableError("No catalog snapshot path configured")
        try:
            tools = load_catalog_snapshot(self.snapshot_path)
            categories, tags = load_reference_tables(self.snapshot_path)
        except Exception as e:
            logger.error("Catalog snapshot {} could not be loaded: {}", self.snapshot_path, e)
            raise CatalogUnavailableError(f"Catalog snapshot unavailable: {e}") from e
        with self._lock:
            self._order = []
            self._tools = {}
            self._categories = {c.id: c for c in categories}
            self._tags = {t.id: t for t in tags}
            for t in tools:
                self._put(t)
            self._loaded = True
        stale = self.stale_ids()
        if stale:
            logger.warning("{} tools have stale or missing embeddings and are not searchable", len(stale))

    def save(self, path: Optional[Path] = None) -> Path:
        path = path or self.snapshot_path or CATALOG_SNAPSHOT_PATH
        with self._lock:
            categories, tags = list(self._categories.values()), list(self._tags.values())
        return write_catalog_snapshot(self.all_tools(), path, categories=categories, tags=tags)

    def _put(self, tool: Tool) -> None:
        if tool.id not in self._tools:
            self._order.append(tool.id)
        self._tools[tool.id] = tool

    def _require_loaded(self) -> None:
        if not self._loaded:
            raise CatalogUnavailableError("Catalog has not been loaded")

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def __len__(self) -> int:
        with self._lock:
            return len(self._order)

    def all_tools(self) -> List[Tool]:
        with self._lock:
            self._require_loaded()
            return [self._tools[i] for i in self._order]

    def get(self, tool_id: str) -> Optional[Tool]:
        with self._lock:
            self._require_loaded()
            return self._tools.get(tool_id)

    def get_many(self, tool_ids: Sequence[str]) -> List[Tool]:
        """Records for ``tool_ids`` in the given order; unknown ids are skipped."""
        with self._lock:
            self._require_loaded()
            return [self._tools[i] for i in tool_ids if i in self._tools]

    def eligible(self, filters: SearchFilters) -> List[Tool]:
        """
        Queryable tools passing ``filters``, in insertion order.

        A tool is queryable when it has an embedding and its canonical
        text still matches its fields.
        """
        with self._lock:
            self._require_loaded()
            snapshot = [self._tools[i] for i in self._order]
        return [t for t in snapshot if matches_filters(t, filters) and self.is_queryable(t)]

    @staticmethod
    def is_queryable(tool: Tool) -> bool:
        return bool(tool.embedding) and is_canonical_current(tool)

    def stale_ids(self, model_id: Optional[str] = None) -> List[str]:
        """
        Ids of tools that need (re)embedding.  With ``model_id``, tools
        embedded by any other model count as stale too.
        """
        return [
            t.id
            for t in self.all_tools()
            if not self.is_queryable(t) or (model_id is not None and t.embedding_model != model_id)
        ]

    def category_names(self, category_ids: Sequence[str]) -> List[str]:
        """
        Resolve category ids to names, in the order requested.

        The category table is consulted first, so categories no tool uses
        still resolve; categories attached to tools fill any gaps.
        """
        if not category_ids:
            return []
        with self._lock:
            names: Dict[str, str] = {c.id: c.name for c in self._categories.values()}
        for t in self.all_tools():
            for c in t.categories:
                names.setdefault(c.id, c.name)
        return [names[c] for c in category_ids if c in names]

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def upsert(self, tool: Tool) -> None:
        with self._lock:
            self._put(tool)
            self._loaded = True

    def update_semantics(
        self,
        tool_id: str,
        canonical_text: str,
        embedding: Sequence[float],
        embedding_model: Optional[str],
    ) -> Tool:
        """Set canonical text, embedding and model id of one tool together."""
        with self._lock:
            self._require_loaded()
            current = self._tools.get(tool_id)
            if current is None:
                raise KeyError(tool_id)
            if canonical_text != build_canonical_text(current):
                raise ValueError(f"Canonical text does not match the fields of tool {tool_id}")
            updated = current.model_copy(
                update={
                    "canonical_text": canonical_text,
                    "embedding": [float(v) for v in embedding],
                    "embedding_model": embedding_model,
                }
            )
            self._tools[tool_id] = updated
            return updated

    def update_tool(self, tool_id: str, changes: Dict[str, object], embedder) -> Tool:
        """
        Apply field ``changes`` and rebuild canonical text and embedding.

        The embedding is computed before the store is touched; if the
        provider fails the stored record is left as it was.
        """
        current = self.get(tool_id)
        if current is None:
            raise KeyError(tool_id)
        candidate = Tool.model_validate({**current.model_dump(), **changes})
        if candidate.canonical_text and is_canonical_current(candidate) and candidate.embedding:
            refreshed = candidate
        else:
            refreshed = index_tool(candidate, embedder)
        with self._lock:
            self._tools[tool_id] = refreshed
        logger.info("Updated tool {} (embedding model {})", tool_id, refreshed.embedding_model)
        return refreshed

    def reindex(self, embedder, only_stale: bool = True) -> int:
        """(Re)embed tools; returns the number of tools updated."""
        targets = self.stale_ids(embedder.model_id) if only_stale else [t.id for t in self.all_tools()]
        if not only_stale:
            logger.info("Re-embedding all {} tools", len(targets))
        tools = self.get_many(targets)
        if not tools:
            return 0
        texts = [build_canonical_text(t) for t in tools]
        vectors = embedder.embed_many(texts)
        for tool, text, vec in zip(tools, texts, vectors):
            self.update_semantics(tool.id, text, vec, embedder.model_id)
        logger.info("Re-embedded {} tools with {}", len(tools), embedder.model_id)
        return len(tools)
