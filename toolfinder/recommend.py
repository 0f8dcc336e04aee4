from __future__ import annotations

"""
Recommendation orchestrator.

Pipeline per request::

    WorkflowInput
      -> WorkflowAnalyzer.analyze          (degrades to raw tasks)
      -> EmbeddingClient.embed(search_query)
      -> VectorSearchEngine.search         (approved tools, category hints)
      -> Reranker.rerank                   (degrades to retrieval order)
      -> top N by reranked order
      -> ExplanationGenerator.explain      (one thread per tool, isolated)

Embedding and catalog failures propagate unchanged; every LLM stage
degrades instead.  Requests share no mutable state beyond the catalog
store and the provider clients.
"""

from concurrent.futures import ThreadPoolExecutor
from typing import Dict, List, Optional, Sequence

from loguru import logger
from pydantic import ValidationError

from .analysis import WorkflowAnalyzer
from .catalog_store import CatalogStore
from .config import (
    CANDIDATE_POOL_SIZE,
    EXPLANATION_WORKERS,
    RESULT_LIMIT,
    SEARCH_DEFAULT_LIMIT,
    Candidate,
    Recommendation,
    SearchFilters,
    Tool,
    ToolStatus,
    WorkflowAnalysis,
    WorkflowInput,
)
from .embed_index import EmbeddingClient, create_embedder
from .errors import InputValidationError
from .explain import ExplanationGenerator
from .llm import create_llm_client
from .prompts import PromptStore
from .rerank import Reranker, summarize_candidate
from .retrieval import VectorSearchEngine


def _validation_message(err: ValidationError) -> str:
    parts = []
    for e in err.errors():
        loc = ".".join(str(p) for p in e.get("loc", ()))
        parts.append(f"{loc}: {e.get('msg')}" if loc else str(e.get("msg")))
    return "; ".join(parts) or "invalid input"


class RecommendationOrchestrator:
    def __init__(
        self,
        analyzer: WorkflowAnalyzer,
        embedder: EmbeddingClient,
        search_engine: VectorSearchEngine,
        reranker: Reranker,
        explainer: ExplanationGenerator,
        candidate_pool: int = CANDIDATE_POOL_SIZE,
        result_limit: int = RESULT_LIMIT,
        max_workers: int = EXPLANATION_WORKERS,
    ):
        self.analyzer = analyzer
        self.embedder = embedder
        self.search_engine = search_engine
        self.reranker = reranker
        self.explainer = explainer
        self.candidate_pool = candidate_pool
        self.result_limit = result_limit
        self.max_workers = max_workers

    # ------------------------------------------------------------------
    # Recommendations
    # ------------------------------------------------------------------

    def recommend_text(
        self,
        tasks: str,
        role: Optional[str] = None,
        category_ids: Optional[Sequence[str]] = None,
    ) -> List[Recommendation]:
        """Validate raw request fields, then run :meth:`recommend`."""
        try:
            workflow_input = WorkflowInput(
                tasks=tasks if tasks is not None else "",
                role=role,
                category_ids=list(category_ids or []),
            )
        except ValidationError as e:
            raise InputValidationError(_validation_message(e)) from e
        return self.recommend(workflow_input)

    def recommend(self, workflow_input: WorkflowInput) -> List[Recommendation]:
        analysis = self.analyzer.analyze(workflow_input)
        query_vector = self.embedder.embed(analysis.search_query)
        filters = SearchFilters(
            status=ToolStatus.APPROVED,
            category_ids=list(workflow_input.category_ids),
        )
        candidates = self.search_engine.search(query_vector, self.candidate_pool, filters)
        if not candidates:
            logger.info("No candidates retrieved; returning no recommendations")
            return []

        by_id: Dict[str, Candidate] = {c.tool.id: c for c in candidates}
        ranked = self.reranker.rerank(analysis, [summarize_candidate(c) for c in candidates])
        selected = [r for r in ranked if r.tool_id in by_id][: self.result_limit]
        tools = [by_id[r.tool_id].tool for r in selected]

        explanations = self._explain_all(tools, workflow_input, analysis)
        recommendations = [
            Recommendation(
                tool_id=r.tool_id,
                tool=tool,
                explanation=text,
                relevance_score=float(r.relevance_score),
                reasoning=r.reasoning,
            )
            for r, tool, text in zip(selected, tools, explanations)
        ]
        logger.info(
            "Recommended {} tools from {} candidates (analysis degraded={})",
            len(recommendations),
            len(candidates),
            analysis.degraded,
        )
        return recommendations

    def _explain_one(self, tool: Tool, workflow_input: WorkflowInput, analysis: WorkflowAnalysis) -> str:
        try:
            return self.explainer.explain(tool, workflow_input, analysis)
        except Exception:
            logger.exception("Explanation task for tool {} failed", tool.id)
            return ""

    def _explain_all(
        self,
        tools: Sequence[Tool],
        workflow_input: WorkflowInput,
        analysis: WorkflowAnalysis,
    ) -> List[str]:
        if not tools:
            return []
        workers = max(1, min(self.max_workers, len(tools)))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="explain") as pool:
            futures = [pool.submit(self._explain_one, t, workflow_input, analysis) for t in tools]
            return [f.result() for f in futures]

    # ------------------------------------------------------------------
    # Plain search
    # ------------------------------------------------------------------

    def search(
        self,
        query: str,
        filters: Optional[SearchFilters] = None,
        top_k: int = SEARCH_DEFAULT_LIMIT,
    ) -> List[Candidate]:
        """Semantic search without reranking or explanations."""
        if query is None or not query.strip():
            raise InputValidationError("Search query must be non-empty")
        query_vector = self.embedder.embed(query.strip())
        return self.search_engine.search(query_vector, top_k, filters)


def create_orchestrator(
    catalog: CatalogStore,
    embedder: Optional[EmbeddingClient] = None,
    prompts: Optional[PromptStore] = None,
) -> RecommendationOrchestrator:
    """Wire the configured providers around ``catalog``."""
    embedder = embedder or create_embedder()
    prompts = prompts or PromptStore()
    llm = create_llm_client()
    return RecommendationOrchestrator(
        analyzer=WorkflowAnalyzer(llm, prompts, catalog=catalog),
        embedder=embedder,
        search_engine=VectorSearchEngine(catalog, embedding_model=embedder.model_id),
        reranker=Reranker(llm, prompts),
        explainer=ExplanationGenerator(llm, prompts),
    )
