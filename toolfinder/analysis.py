from __future__ import annotations

"""
Workflow analysis: free-text workflow description -> structured intent.

The analyzer asks the text-generation provider for a JSON object with
primary tasks, inferred needs, role context, technical requirements and
a search query.  It never raises on provider or parsing problems; the
degraded analysis (raw tasks as the search query) keeps retrieval going.
"""

from typing import Optional

from loguru import logger

from .catalog_store import CatalogStore
from .config import ANALYSIS_MAX_TOKENS, ANALYSIS_TEMPERATURE, WorkflowAnalysis, WorkflowInput
from .errors import LLMServiceError
from .llm import LLMClient
from .prompts import PromptStore
from .structured import Fallback, decode_json

TEMPLATE_NAME = "workflow_analysis"


class WorkflowAnalyzer:
    def __init__(
        self,
        llm: LLMClient,
        prompts: PromptStore,
        catalog: Optional[CatalogStore] = None,
        temperature: float = ANALYSIS_TEMPERATURE,
        max_tokens: int = ANALYSIS_MAX_TOKENS,
    ):
        self.llm = llm
        self.prompts = prompts
        self.catalog = catalog
        self.temperature = temperature
        self.max_tokens = max_tokens

    def _category_text(self, category_ids) -> str:
        if not category_ids or self.catalog is None:
            return "None"
        names = self.catalog.category_names(category_ids)
        return ", ".join(names) if names else "None"

    def build_prompt(self, workflow_input: WorkflowInput) -> str:
        return self.prompts.render(
            TEMPLATE_NAME,
            tasks=workflow_input.tasks,
            role=workflow_input.role or "Not specified",
            categories=self._category_text(workflow_input.category_ids),
        )

    def analyze(self, workflow_input: WorkflowInput) -> WorkflowAnalysis:
        prompt = self.build_prompt(workflow_input)
        try:
            text = self.llm.complete(prompt, temperature=self.temperature, max_tokens=self.max_tokens)
        except LLMServiceError as e:
            logger.warning("Workflow analysis unavailable, using raw tasks: {}", e)
            return WorkflowAnalysis.fallback(workflow_input)

        result = decode_json(
            text,
            dict,
            default=lambda: WorkflowAnalysis.fallback(workflow_input),
            convert=WorkflowAnalysis.model_validate,
        )
        if isinstance(result, Fallback):
            logger.warning("Workflow analysis could not be parsed ({}); using raw tasks", result.reason)
            return result.value

        analysis = result.value
        if not analysis.search_query.strip():
            analysis = analysis.model_copy(update={"search_query": workflow_input.tasks})
        logger.info(
            "Workflow analysis: {} primary tasks, query '{}'",
            len(analysis.primary_tasks),
            analysis.search_query[:80],
        )
        return analysis
