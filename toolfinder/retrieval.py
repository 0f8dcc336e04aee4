from __future__ import annotations

"""
Vector search over the tool catalog.

Retrieval is filter-then-rank: the catalog first narrows to approved,
queryable tools that satisfy every structured filter, and only those
are scored by cosine similarity against the query vector.  Ranking
produces an explicit ordered list of tool ids which is then hydrated
from the catalog, so the order returned is exactly the ranking order.

Example::

    from toolfinder.retrieval import VectorSearchEngine
    engine = VectorSearchEngine(store, embedding_model=embedder.model_id)
    hits = engine.search(embedder.embed("caption videos"), top_k=10,
                         filters=SearchFilters(api_available=True))
    for c in hits:
        ...
"""

from typing import List, Optional, Sequence, Tuple

import numpy as np
from loguru import logger

from .catalog_store import CatalogStore, matches_filters
from .config import SIMILARITY_EPS, Candidate, SearchFilters, Tool, ToolStatus
from .errors import CatalogUnavailableError


def cosine_similarities(query: np.ndarray, matrix: np.ndarray) -> np.ndarray:
    """Cosine similarity of ``query`` against every row of ``matrix``.

    A small epsilon keeps zero vectors from dividing by zero; they score 0.
    """
    q_norm = max(float(np.linalg.norm(query)), SIMILARITY_EPS)
    m_norms = np.maximum(np.linalg.norm(matrix, axis=1), SIMILARITY_EPS)
    return (matrix @ query) / (m_norms * q_norm)


def rank_ids(
    tool_ids: Sequence[str],
    similarities: np.ndarray,
    top_k: int,
) -> List[Tuple[str, float]]:
    """
    Order ids by descending similarity, ties kept in input order.

    ``np.argsort`` with ``kind="stable"`` on the negated scores is what
    guarantees the insertion-order tie break.
    """
    order = np.argsort(-similarities, kind="stable")[:top_k]
    return [(tool_ids[i], float(similarities[i])) for i in order]


class VectorSearchEngine:
    def __init__(self, catalog: CatalogStore, embedding_model: Optional[str] = None):
        self.catalog = catalog
        self.embedding_model = embedding_model

    def _comparable(self, tools: List[Tool], dim: int) -> List[Tool]:
        """Drop tools whose vectors cannot be compared with the query."""
        out: List[Tool] = []
        for t in tools:
            if self.embedding_model and t.embedding_model != self.embedding_model:
                logger.warning(
                    "Skipping tool {}: embedded with {} but queries use {}",
                    t.id,
                    t.embedding_model,
                    self.embedding_model,
                )
                continue
            if len(t.embedding) != dim:
                logger.warning("Skipping tool {}: embedding dim {} != query dim {}", t.id, len(t.embedding), dim)
                continue
            out.append(t)
        return out

    def search(
        self,
        query_vector: Sequence[float],
        top_k: int,
        filters: Optional[SearchFilters] = None,
    ) -> List[Candidate]:
        filters = filters or SearchFilters()
        if filters.status is not None and filters.status != ToolStatus.APPROVED:
            logger.warning("Search requested status {}; only approved tools are retrievable", filters.status.value)
            return []
        if top_k <= 0:
            return []

        query = np.asarray(query_vector, dtype="float32")
        try:
            eligible = self.catalog.eligible(filters)
        except CatalogUnavailableError:
            raise
        except Exception as e:
            raise CatalogUnavailableError(f"Catalog query failed: {e}") from e

        eligible = self._comparable(eligible, int(query.shape[0]))
        if not eligible:
            logger.info("No eligible tools for filters {}", filters.model_dump(exclude_defaults=True))
            return []

        matrix = np.asarray([t.embedding for t in eligible], dtype="float32")
        sims = cosine_similarities(query, matrix)
        ranked = rank_ids([t.id for t in eligible], sims, top_k)

        # hydrate by the ordered id list; records may have been updated since filtering
        ordered_ids = [tool_id for tool_id, _ in ranked]
        records = {t.id: t for t in self.catalog.get_many(ordered_ids)}
        candidates: List[Candidate] = []
        for tool_id, sim in ranked:
            tool = records.get(tool_id)
            if tool is None:
                logger.warning("Tool {} disappeared between ranking and hydration", tool_id)
                continue
            if not (matches_filters(tool, filters) and CatalogStore.is_queryable(tool)):
                logger.warning("Tool {} changed between ranking and hydration; dropped", tool_id)
                continue
            candidates.append(Candidate(tool=tool, similarity=float(np.clip(sim, 0.0, 1.0))))

        logger.info("Retrieved {} candidates (eligible={}, top_k={})", len(candidates), len(eligible), top_k)
        return candidates
