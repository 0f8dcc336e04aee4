from __future__ import annotations
"""
Configuration for the toolfinder recommender.

Constants are read once at import time and may be overridden through
environment variables.  The pydantic models at the bottom of the module
are the shared data model for the whole pipeline.
"""

import os
import sys
from enum import Enum
from pathlib import Path
from typing import List, Optional

from loguru import logger
from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

# Paths
PROJECT_ROOT = Path(__file__).resolve().parents[1]
PACKAGE_DIR = Path(__file__).resolve().parent
DATA_DIR = Path(os.getenv("TOOLFINDER_DATA_DIR", str(PROJECT_ROOT / "data")))
CATALOG_RAW_DIR = DATA_DIR / "catalog_raw"
SEED_CATALOG_PATH = DATA_DIR / "seed_catalog.json"
CATALOG_SNAPSHOT_PATH = Path(
    os.getenv("TOOLFINDER_CATALOG_PATH", str(DATA_DIR / "catalog_snapshot.parquet"))
)

PROMPTS_DIR = PACKAGE_DIR / "prompt_templates" / "versioned"
PROMPT_VERSION = os.getenv("PROMPT_VERSION", "v1")

MODELS_DIR = PROJECT_ROOT / "models"
LOG_DIR = Path(os.getenv("TOOLFINDER_LOG_DIR", str(PROJECT_ROOT / "logs")))

# Embedding provider
EMBEDDING_PROVIDER = os.getenv("EMBEDDING_PROVIDER", "sentence-transformers")
BGE_ENCODER_MODEL = os.getenv("BGE_ENCODER_MODEL", "BAAI/bge-base-en-v1.5")
OPENAI_EMBEDDING_MODEL = os.getenv("OPENAI_EMBEDDING_MODEL", "text-embedding-3-small")
EMBEDDING_BATCH_SIZE = 64
EMBEDDING_TIMEOUT = float(os.getenv("EMBEDDING_TIMEOUT", "30"))

HF_ENV_VARS = {
    "HF_HUB_ENABLE_HF_TRANSFER": os.getenv("HF_HUB_ENABLE_HF_TRANSFER", "0"),
    "HF_HOME": str(MODELS_DIR),
    "HF_HUB_OFFLINE": os.getenv("HF_HUB_OFFLINE", "0"),
}

# Text-generation provider
AI_PROVIDER = os.getenv("AI_PROVIDER", "openai")
OPENAI_API_KEY = os.getenv("OPENAI_API_KEY", "")
OPENAI_BASE_URL = os.getenv("OPENAI_BASE_URL", "https://api.openai.com/v1")
OPENAI_CHAT_MODEL = os.getenv("OPENAI_CHAT_MODEL", "gpt-4o-mini")
GROQ_API_KEY = os.getenv("GROQ_API_KEY", "")
GROQ_BASE_URL = os.getenv("GROQ_BASE_URL", "https://api.groq.com/openai/v1")
GROQ_CHAT_MODEL = os.getenv("GROQ_CHAT_MODEL", "llama-3.1-70b-versatile")
ANTHROPIC_API_KEY = os.getenv("ANTHROPIC_API_KEY", "")
ANTHROPIC_BASE_URL = os.getenv("ANTHROPIC_BASE_URL", "https://api.anthropic.com/v1")
ANTHROPIC_CHAT_MODEL = os.getenv("ANTHROPIC_CHAT_MODEL", "claude-3-5-sonnet-20241022")
ANTHROPIC_VERSION = "2023-06-01"

LLM_DEFAULT_TEMPERATURE = 0.7
LLM_DEFAULT_MAX_TOKENS = 2000

# HTTP hardening (applies to every provider call)
HTTP_CONNECT_TIMEOUT = float(os.getenv("HTTP_CONNECT_TIMEOUT", "5"))
HTTP_READ_TIMEOUT = float(os.getenv("HTTP_READ_TIMEOUT", "30"))
HTTP_USER_AGENT = "toolfinder/1.0"

# Pipeline stages
ANALYSIS_TEMPERATURE = 0.3
ANALYSIS_MAX_TOKENS = 800
RERANK_TEMPERATURE = 0.2
RERANK_MAX_TOKENS = 2000
EXPLANATION_TEMPERATURE = 0.7
EXPLANATION_MAX_TOKENS = 200

RERANK_FALLBACK_DECAY = 0.1
RERANK_FALLBACK_REASONING = "Ranked by semantic similarity"

CANDIDATE_POOL_SIZE = int(os.getenv("CANDIDATE_POOL_SIZE", "20"))
RESULT_LIMIT = int(os.getenv("RESULT_LIMIT", "5"))
EXPLANATION_WORKERS = int(os.getenv("EXPLANATION_WORKERS", "5"))
SEARCH_DEFAULT_LIMIT = 20

SIMILARITY_EPS = 1e-12

# Input limits
TASKS_MIN_CHARS = 10
TASKS_MAX_CHARS = 5000
ROLE_MAX_CHARS = 200
TOOL_NAME_MAX_CHARS = 200
TOOL_DESCRIPTION_MIN_CHARS = 10
TOOL_DESCRIPTION_MAX_CHARS = 5000
TOOL_SHORT_DESCRIPTION_MAX_CHARS = 500
MAX_INPUT_CHARS = 20_000


def configure_logging(level: str | None = None) -> None:
    """Route loguru output to stderr and a rotating file under ``LOG_DIR``."""
    level = level or os.getenv("TOOLFINDER_LOG_LEVEL", "INFO")
    logger.remove()
    logger.add(sys.stderr, level=level)
    LOG_DIR.mkdir(parents=True, exist_ok=True)
    logger.add(LOG_DIR / "toolfinder.log", level=level, rotation="10 MB", retention=5)


# Pydantic schemas
class PricingModel(str, Enum):
    FREE = "FREE"
    FREEMIUM = "FREEMIUM"
    PAID = "PAID"
    ENTERPRISE = "ENTERPRISE"
    USAGE_BASED = "USAGE_BASED"


class ToolStatus(str, Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


class Category(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    slug: str = ""


class Tag(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    slug: str = ""


class Tool(BaseModel):
    """A catalog entry.  ``canonical_text`` and ``embedding`` are derived."""

    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    slug: str = ""
    description: str
    short_description: str = ""
    website: Optional[str] = None
    strengths: List[str] = Field(default_factory=list)
    limitations: List[str] = Field(default_factory=list)
    use_case_personas: List[str] = Field(default_factory=list)
    integrations: List[str] = Field(default_factory=list)
    pricing_model: PricingModel
    api_available: bool = False
    enterprise_ready: bool = False
    categories: List[Category] = Field(default_factory=list)
    tags: List[Tag] = Field(default_factory=list)
    status: ToolStatus = ToolStatus.PENDING
    canonical_text: str = ""
    embedding: Optional[List[float]] = None
    embedding_model: Optional[str] = None

    @property
    def category_ids(self) -> List[str]:
        return [c.id for c in self.categories]

    @property
    def tag_ids(self) -> List[str]:
        return [t.id for t in self.tags]


class WorkflowInput(BaseModel):
    model_config = ConfigDict(frozen=True)

    tasks: str = Field(min_length=TASKS_MIN_CHARS, max_length=TASKS_MAX_CHARS)
    role: Optional[str] = Field(default=None, max_length=ROLE_MAX_CHARS)
    category_ids: List[str] = Field(default_factory=list)

    @field_validator("tasks", mode="before")
    @classmethod
    def _strip_tasks(cls, value):
        return value.strip() if isinstance(value, str) else value

    @field_validator("role", mode="before")
    @classmethod
    def _blank_role_is_none(cls, value):
        if isinstance(value, str):
            value = value.strip()
            return value or None
        return value


class WorkflowAnalysis(BaseModel):
    """Structured intent extracted from a workflow description."""

    model_config = ConfigDict(populate_by_name=True)

    primary_tasks: List[str] = Field(
        default_factory=list, validation_alias=AliasChoices("primaryTasks", "primary_tasks")
    )
    inferred_needs: List[str] = Field(
        default_factory=list, validation_alias=AliasChoices("inferredNeeds", "inferred_needs")
    )
    role_context: str = Field(
        default="", validation_alias=AliasChoices("roleContext", "role_context")
    )
    technical_requirements: List[str] = Field(
        default_factory=list,
        validation_alias=AliasChoices("technicalRequirements", "technical_requirements"),
    )
    search_query: str = Field(
        default="", validation_alias=AliasChoices("searchQuery", "search_query")
    )
    degraded: bool = False

    @classmethod
    def fallback(cls, workflow_input: WorkflowInput) -> "WorkflowAnalysis":
        return cls(
            role_context=workflow_input.role or "",
            search_query=workflow_input.tasks,
            degraded=True,
        )

    def to_prompt_dict(self) -> dict:
        return {
            "primaryTasks": self.primary_tasks,
            "inferredNeeds": self.inferred_needs,
            "roleContext": self.role_context,
            "technicalRequirements": self.technical_requirements,
            "searchQuery": self.search_query,
        }


class Candidate(BaseModel):
    tool: Tool
    similarity: float = Field(ge=0.0, le=1.0)


class CandidateSummary(BaseModel):
    id: str
    name: str
    description: str
    strengths: List[str]
    use_case_personas: List[str] = Field(serialization_alias="useCasePersonas")
    categories: List[str]
    tags: List[str]


class RerankResult(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    tool_id: str = Field(validation_alias=AliasChoices("toolId", "tool_id"))
    # json.loads accepts NaN/Infinity; such scores cannot be ordered
    relevance_score: float = Field(
        allow_inf_nan=False,
        validation_alias=AliasChoices("relevanceScore", "relevance_score"),
    )
    reasoning: Optional[str] = None


class Recommendation(BaseModel):
    tool_id: str
    tool: Tool
    explanation: str
    relevance_score: float
    reasoning: Optional[str] = None


class SearchFilters(BaseModel):
    """Structured filters for vector search.  Unset fields do not restrict."""

    status: Optional[ToolStatus] = None
    category_ids: List[str] = Field(default_factory=list)
    tag_ids: List[str] = Field(default_factory=list)
    pricing_models: List[PricingModel] = Field(default_factory=list)
    api_available: Optional[bool] = None
    enterprise_ready: Optional[bool] = None


# API payloads
class RecommendRequest(BaseModel):
    tasks: str
    role: Optional[str] = None
    category_ids: List[str] = Field(
        default_factory=list, validation_alias=AliasChoices("categoryIds", "category_ids")
    )


class ToolItem(BaseModel):
    id: str
    name: str
    slug: str
    description: str
    short_description: str
    website: Optional[str]
    strengths: List[str]
    limitations: List[str]
    use_case_personas: List[str]
    integrations: List[str]
    pricing_model: PricingModel
    api_available: bool
    enterprise_ready: bool
    categories: List[str]
    tags: List[str]


class RecommendationItem(BaseModel):
    tool_id: str
    tool: ToolItem
    why_this_fits: str
    relevance_score: float
    reasoning: Optional[str] = None


class RecommendResponse(BaseModel):
    recommendations: List[RecommendationItem]


class SearchItem(BaseModel):
    tool: ToolItem
    similarity: float


class SearchResponse(BaseModel):
    tools: List[SearchItem]


class HealthResponse(BaseModel):
    status: str
    catalog_size: int = 0
