from __future__ import annotations

"""
Mapping utilities for the toolfinder API.

This module converts catalog records and pipeline results into the
strict Pydantic payloads defined in :mod:`toolfinder.config`.  Derived
fields (canonical text, embedding) never leave the service.  All
transformation logic is encapsulated here to keep ``api.py`` simple.
"""

from typing import List, Sequence

from loguru import logger

from .config import (
    Candidate,
    Recommendation,
    RecommendationItem,
    RecommendResponse,
    SearchItem,
    SearchResponse,
    Tool,
    ToolItem,
)


def to_tool_item(tool: Tool) -> ToolItem:
    """Public view of a tool; category and tag ids become names."""
    return ToolItem(
        id=tool.id,
        name=tool.name,
        slug=tool.slug,
        description=tool.description,
        short_description=tool.short_description,
        website=tool.website,
        strengths=list(tool.strengths),
        limitations=list(tool.limitations),
        use_case_personas=list(tool.use_case_personas),
        integrations=list(tool.integrations),
        pricing_model=tool.pricing_model,
        api_available=tool.api_available,
        enterprise_ready=tool.enterprise_ready,
        categories=[c.name for c in tool.categories],
        tags=[t.name for t in tool.tags],
    )


def to_recommendation_item(rec: Recommendation) -> RecommendationItem:
    return RecommendationItem(
        tool_id=rec.tool_id,
        tool=to_tool_item(rec.tool),
        why_this_fits=rec.explanation,
        relevance_score=rec.relevance_score,
        reasoning=rec.reasoning,
    )


def map_recommendations_to_response(recs: Sequence[Recommendation]) -> RecommendResponse:
    items: List[RecommendationItem] = [to_recommendation_item(r) for r in recs]
    logger.info("Mapped {} recommendations into API schema", len(items))
    return RecommendResponse(recommendations=items)


def map_candidates_to_response(candidates: Sequence[Candidate]) -> SearchResponse:
    items = [SearchItem(tool=to_tool_item(c.tool), similarity=c.similarity) for c in candidates]
    return SearchResponse(tools=items)
