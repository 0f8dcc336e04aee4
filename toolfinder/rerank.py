from __future__ import annotations

"""
Reranking of retrieved candidates with the text-generation provider.

After vector search returns a candidate pool the recommender asks the
LLM to score each candidate against the workflow analysis.  This module
prepares the reduced candidate view sent in the prompt, decodes the
model's JSON array and checks that it covers the pool exactly.  When the
provider is unavailable or the answer cannot be trusted the reranking
falls back to the retrieval order with synthesised, decreasing scores.
"""

import json
from typing import List, Sequence

from loguru import logger

from .config import (
    RERANK_FALLBACK_DECAY,
    RERANK_FALLBACK_REASONING,
    RERANK_MAX_TOKENS,
    RERANK_TEMPERATURE,
    Candidate,
    CandidateSummary,
    RerankResult,
    WorkflowAnalysis,
)
from .errors import LLMServiceError
from .llm import LLMClient
from .prompts import PromptStore
from .structured import Fallback, decode_json

TEMPLATE_NAME = "tool_rerank"


def summarize_candidate(candidate: Candidate) -> CandidateSummary:
    """Reduced view of a candidate tool for the rerank prompt."""
    tool = candidate.tool
    return CandidateSummary(
        id=tool.id,
        name=tool.name,
        description=tool.description,
        strengths=list(tool.strengths),
        use_case_personas=list(tool.use_case_personas),
        categories=[c.name for c in tool.categories],
        tags=[t.name for t in tool.tags],
    )


def fallback_ranking(summaries: Sequence[CandidateSummary]) -> List[RerankResult]:
    """Keep input order with scores 1.0, 0.9, ... floored at zero."""
    return [
        RerankResult(
            tool_id=s.id,
            relevance_score=round(max(0.0, 1.0 - i * RERANK_FALLBACK_DECAY), 4),
            reasoning=RERANK_FALLBACK_REASONING,
        )
        for i, s in enumerate(summaries)
    ]


def _parse_results(raw: list) -> List[RerankResult]:
    return [RerankResult.model_validate(item) for item in raw]


def _coverage_problem(results: Sequence[RerankResult], summaries: Sequence[CandidateSummary]) -> str:
    """Empty string when ``results`` name every candidate exactly once."""
    expected = [s.id for s in summaries]
    got = [r.tool_id for r in results]
    if len(set(got)) != len(got):
        return "duplicate tool ids"
    missing = set(expected) - set(got)
    if missing:
        return f"missing tool ids {sorted(missing)}"
    extra = set(got) - set(expected)
    if extra:
        return f"unknown tool ids {sorted(extra)}"
    return ""


class Reranker:
    def __init__(
        self,
        llm: LLMClient,
        prompts: PromptStore,
        temperature: float = RERANK_TEMPERATURE,
        max_tokens: int = RERANK_MAX_TOKENS,
    ):
        self.llm = llm
        self.prompts = prompts
        self.temperature = temperature
        self.max_tokens = max_tokens

    def build_prompt(self, analysis: WorkflowAnalysis, summaries: Sequence[CandidateSummary]) -> str:
        tool_summaries = json.dumps([s.model_dump(by_alias=True) for s in summaries], indent=2)
        return self.prompts.render(
            TEMPLATE_NAME,
            workflowAnalysis=json.dumps(analysis.to_prompt_dict(), indent=2),
            toolSummaries=tool_summaries,
        )

    def rerank(self, analysis: WorkflowAnalysis, summaries: Sequence[CandidateSummary]) -> List[RerankResult]:
        if not summaries:
            return []
        prompt = self.build_prompt(analysis, summaries)
        try:
            text = self.llm.complete(prompt, temperature=self.temperature, max_tokens=self.max_tokens)
        except LLMServiceError as e:
            logger.warning("Reranker unavailable, keeping retrieval order: {}", e)
            return fallback_ranking(summaries)

        result = decode_json(text, list, default=lambda: fallback_ranking(summaries), convert=_parse_results)
        if isinstance(result, Fallback):
            logger.warning("Rerank response rejected ({}); keeping retrieval order", result.reason)
            return result.value

        problem = _coverage_problem(result.value, summaries)
        if problem:
            logger.warning("Rerank response rejected ({}); keeping retrieval order", problem)
            return fallback_ranking(summaries)

        # sorted() is stable, so equal scores keep the model's order
        ranked = sorted(result.value, key=lambda r: -r.relevance_score)
        logger.info("Reranked {} candidates", len(ranked))
        return ranked
