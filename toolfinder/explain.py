from __future__ import annotations

"""Short per-tool "why this fits" explanations."""

from loguru import logger

from .config import (
    EXPLANATION_MAX_TOKENS,
    EXPLANATION_TEMPERATURE,
    Tool,
    WorkflowAnalysis,
    WorkflowInput,
)
from .errors import LLMServiceError
from .llm import LLMClient
from .prompts import PromptStore

TEMPLATE_NAME = "why_this_fits"


class ExplanationGenerator:
    def __init__(
        self,
        llm: LLMClient,
        prompts: PromptStore,
        temperature: float = EXPLANATION_TEMPERATURE,
        max_tokens: int = EXPLANATION_MAX_TOKENS,
    ):
        self.llm = llm
        self.prompts = prompts
        self.temperature = temperature
        self.max_tokens = max_tokens

    def build_prompt(self, tool: Tool, workflow_input: WorkflowInput, analysis: WorkflowAnalysis) -> str:
        primary = ", ".join(analysis.primary_tasks) if analysis.primary_tasks else workflow_input.tasks
        return self.prompts.render(
            TEMPLATE_NAME,
            toolName=tool.name,
            toolDescription=tool.description,
            strengths=", ".join(tool.strengths),
            useCasePersonas=", ".join(tool.use_case_personas),
            userWorkflow=workflow_input.tasks,
            userRole=workflow_input.role or "Not specified",
            primaryTasks=primary,
        )

    def explain(self, tool: Tool, workflow_input: WorkflowInput, analysis: WorkflowAnalysis) -> str:
        """Explanation text for one tool; ``""`` when the provider fails."""
        prompt = self.build_prompt(tool, workflow_input, analysis)
        try:
            text = self.llm.complete(prompt, temperature=self.temperature, max_tokens=self.max_tokens)
        except LLMServiceError as e:
            logger.warning("No explanation for tool {}: {}", tool.id, e)
            return ""
        return (text or "").strip()
