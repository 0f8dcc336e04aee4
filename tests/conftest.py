from __future__ import annotations

import json
import threading
from pathlib import Path
from typing import List, Optional

import pytest

from toolfinder.catalog_build import index_tools, load_raw_catalog, normalise_catalog_df
from toolfinder.catalog_store import CatalogStore
from toolfinder.embed_index import EmbeddingClient
from toolfinder.prompts import PromptStore

SEED_PATH = Path(__file__).resolve().parents[1] / "data" / "seed_catalog.json"

# Each keyword is one dimension of the fake embedding space.
VOCAB = [
    "video",
    "caption",
    "transcription",
    "image",
    "code",
    "writing",
    "workspace",
    "audio",
    "design",
    "marketing",
]


class FakeEmbedder(EmbeddingClient):
    """Deterministic keyword-count vectors."""

    def __init__(self, model_id: str = "fake-keywords", fail: bool = False):
        self.model_id = model_id
        self.fail = fail
        self.calls: List[List[str]] = []

    def _embed_batch(self, texts):
        self.calls.append(list(texts))
        if self.fail:
            from toolfinder.errors import EmbeddingServiceError

            raise EmbeddingServiceError("embedding provider down")
        vectors = []
        for text in texts:
            low = text.lower()
            vectors.append([float(low.count(word)) for word in VOCAB] + [0.01])
        return vectors


ANALYSIS_MARK = "Workflow description:"
RERANK_MARK = "Candidate tools:"
EXPLAIN_MARK = "Explain in two or three sentences why"


class FakeLLM:
    """
    Scripted text-generation provider.

    ``routes`` maps a stage name (analysis, rerank, explain) to either a
    string, an exception instance, or a callable taking the prompt.
    """

    def __init__(self, **routes):
        self.routes = routes
        self.prompts: List[str] = []
        self._lock = threading.Lock()

    @staticmethod
    def stage(prompt: str) -> str:
        if ANALYSIS_MARK in prompt:
            return "analysis"
        if RERANK_MARK in prompt:
            return "rerank"
        if EXPLAIN_MARK in prompt:
            return "explain"
        return "unknown"

    def complete(self, prompt: str, temperature: float = 0.7, max_tokens: int = 2000) -> str:
        with self._lock:
            self.prompts.append(prompt)
        route = self.routes.get(self.stage(prompt), "")
        if isinstance(route, Exception):
            raise route
        if callable(route):
            return route(prompt)
        return route

    def calls_for(self, stage: str) -> List[str]:
        with self._lock:
            return [p for p in self.prompts if self.stage(p) == stage]


@pytest.fixture
def embedder() -> FakeEmbedder:
    return FakeEmbedder()


@pytest.fixture
def prompts() -> PromptStore:
    return PromptStore()


@pytest.fixture
def seed_tools(embedder):
    df, categories, tags = load_raw_catalog(SEED_PATH)
    tools = normalise_catalog_df(df, categories, tags)
    return index_tools(tools, embedder)


@pytest.fixture
def store(seed_tools) -> CatalogStore:
    return CatalogStore(seed_tools)


@pytest.fixture
def seed_json() -> dict:
    return json.loads(SEED_PATH.read_text(encoding="utf-8"))


def analysis_json(search_query: str = "video editing captions", primary: Optional[List[str]] = None) -> str:
    return json.dumps(
        {
            "primaryTasks": primary if primary is not None else ["edit videos", "generate captions"],
            "inferredNeeds": ["transcription"],
            "roleContext": "Solo video creator",
            "technicalRequirements": ["export to YouTube"],
            "searchQuery": search_query,
        }
    )


def echo_rerank(prompt: str) -> str:
    """Accept the candidates in the order given with decreasing scores."""
    body = prompt.split(RERANK_MARK, 1)[1]
    start = body.index("[")
    end = body.rindex("]", 0, body.index("Score how well")) + 1
    summaries = json.loads(body[start:end])
    return json.dumps(
        [
            {"toolId": s["id"], "relevanceScore": round(0.95 - i * 0.05, 2), "reasoning": f"fits {s['name']}"}
            for i, s in enumerate(summaries)
        ]
    )
