from __future__ import annotations

"""
Embedding clients and catalog (re)indexing.

Two providers share one small interface::

    vec = embedder.embed("some text")
    vecs = embedder.embed_many(["a", "b"])   # input order preserved
    embedder.model_id                        # identity stored with vectors

* ``SentenceTransformerEmbedder`` runs the BAAI/BGE encoder locally via
  ``sentence_transformers`` with L2-normalised output.
* ``OpenAIEmbeddingClient`` calls a remote ``/embeddings`` endpoint over
  ``httpx``.

Every failure (unreachable provider, timeout, malformed payload, empty
text) surfaces as :class:`~toolfinder.errors.EmbeddingServiceError`.
"""

import math
import os
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from pathlib import Path
from typing import List, Optional, Sequence

import httpx
from loguru import logger

from .config import (
    BGE_ENCODER_MODEL,
    CATALOG_SNAPSHOT_PATH,
    EMBEDDING_BATCH_SIZE,
    EMBEDDING_PROVIDER,
    EMBEDDING_TIMEOUT,
    HF_ENV_VARS,
    HTTP_CONNECT_TIMEOUT,
    HTTP_USER_AGENT,
    OPENAI_API_KEY,
    OPENAI_BASE_URL,
    OPENAI_EMBEDDING_MODEL,
)
from .catalog_store import CatalogStore
from .errors import EmbeddingServiceError


def _ensure_hf_env() -> None:
    """
    Ensure key HuggingFace environment variables are set.

    We only set them if not already present to avoid overriding user
    preferences.
    """
    for key, val in HF_ENV_VARS.items():
        if key not in os.environ:
            os.environ[key] = val


def _check_texts(texts: Sequence[str]) -> List[str]:
    out: List[str] = []
    for i, text in enumerate(texts):
        if not isinstance(text, str) or not text.strip():
            raise EmbeddingServiceError(f"Cannot embed empty text (position {i})")
        out.append(text)
    return out


def _check_vectors(vectors, expected: int) -> List[List[float]]:
    """Validate provider output: right count, numeric, finite, one dimension."""
    if vectors is None or len(vectors) != expected:
        got = None if vectors is None else len(vectors)
        raise EmbeddingServiceError(f"Embedding provider returned {got} vectors for {expected} texts")
    out: List[List[float]] = []
    dim: Optional[int] = None
    for vec in vectors:
        try:
            row = [float(v) for v in vec]
        except (TypeError, ValueError) as e:
            raise EmbeddingServiceError("Embedding provider returned non-numeric data") from e
        if not row or not all(math.isfinite(v) for v in row):
            raise EmbeddingServiceError("Embedding provider returned an empty or non-finite vector")
        if dim is None:
            dim = len(row)
        elif len(row) != dim:
            raise EmbeddingServiceError("Embedding provider returned vectors of mixed dimension")
        out.append(row)
    return out


class EmbeddingClient:
    """Base class: subclasses implement ``_embed_batch``."""

    model_id = "base"

    def embed(self, text: str) -> List[float]:
        return self.embed_many([text])[0]

    def embed_many(self, texts: Sequence[str]) -> List[List[float]]:
        texts = _check_texts(texts)
        if not texts:
            return []
        vectors: List[List[float]] = []
        for start in range(0, len(texts), EMBEDDING_BATCH_SIZE):
            batch = texts[start : start + EMBEDDING_BATCH_SIZE]
            vectors.extend(_check_vectors(self._embed_batch(batch), len(batch)))
        return vectors

    def _embed_batch(self, texts: List[str]):
        raise NotImplementedError


# -----------------------------------------------------------------------------
# Local BGE encoder
# -----------------------------------------------------------------------------

class SentenceTransformerEmbedder(EmbeddingClient):
    """
    Local BGE encoder.

    ``encode`` runs on a single worker thread so each call can be bounded
    by ``timeout``; a call that overruns is reported as a provider failure.
    The stalled thread cannot be interrupted, so its pool is abandoned and
    later calls get a fresh worker.
    """

    def __init__(self, model_name: str = BGE_ENCODER_MODEL, timeout: float = EMBEDDING_TIMEOUT, model=None):
        self.model_id = model_name
        self.timeout = timeout
        self._model = model if model is not None else self._load(model_name)
        self._pool = ThreadPoolExecutor(max_workers=1, thread_name_prefix="encoder")

    @staticmethod
    def _load(model_name: str):
        from sentence_transformers import SentenceTransformer

        _ensure_hf_env()
        logger.info("Loading dense encoder model: {}", model_name)
        try:
            return SentenceTransformer(model_name)
        except Exception as e:
            raise EmbeddingServiceError(f"Failed to load encoder {model_name}: {e}") from e

    def _reset_pool(self) -> None:
        stalled, self._pool = self._pool, ThreadPoolExecutor(max_workers=1, thread_name_prefix="encoder")
        stalled.shutdown(wait=False)

    def _embed_batch(self, texts: List[str]):
        future = self._pool.submit(
            self._model.encode,
            texts,
            batch_size=EMBEDDING_BATCH_SIZE,
            show_progress_bar=False,
            convert_to_numpy=True,
            normalize_embeddings=True,
        )
        try:
            arr = future.result(timeout=self.timeout)
        except FutureTimeout as e:
            future.cancel()
            logger.warning("Encoder call exceeded {}s; replacing worker", self.timeout)
            self._reset_pool()
            raise EmbeddingServiceError("Embedding timed out") from e
        except Exception as e:
            raise EmbeddingServiceError(f"Encoder failed: {e}") from e
        return arr.astype("float32", copy=False).tolist()


# -----------------------------------------------------------------------------
# Remote OpenAI-compatible embeddings
# -----------------------------------------------------------------------------

class OpenAIEmbeddingClient(EmbeddingClient):
    def __init__(
        self,
        model_name: str = OPENAI_EMBEDDING_MODEL,
        api_key: str = OPENAI_API_KEY,
        base_url: str = OPENAI_BASE_URL,
        timeout: float = EMBEDDING_TIMEOUT,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self.model_id = model_name
        self.api_key = api_key
        self.url = base_url.rstrip("/") + "/embeddings"
        self._client = httpx.Client(
            timeout=httpx.Timeout(timeout, connect=HTTP_CONNECT_TIMEOUT),
            headers={"User-Agent": HTTP_USER_AGENT},
            transport=transport,
        )

    def close(self) -> None:
        self._client.close()

    def _embed_batch(self, texts: List[str]):
        if not self.api_key:
            raise EmbeddingServiceError("OPENAI_API_KEY is not set")
        try:
            r = self._client.post(
                self.url,
                json={"model": self.model_id, "input": texts},
                headers={"Authorization": f"Bearer {self.api_key}"},
            )
        except httpx.TimeoutException as e:
            logger.warning("Embedding request timed out ({} texts)", len(texts))
            raise EmbeddingServiceError("Embedding request timed out") from e
        except httpx.HTTPError as e:
            raise EmbeddingServiceError(f"Embedding request failed: {e}") from e
        if r.status_code >= 400:
            logger.warning("Embedding request: HTTP {} {}", r.status_code, r.text[:200])
            raise EmbeddingServiceError(f"Embedding provider returned HTTP {r.status_code}")
        try:
            data = r.json()["data"]
            # The API may return items out of order; each carries its index
            data = sorted(data, key=lambda item: item.get("index", 0))
            return [item["embedding"] for item in data]
        except (ValueError, KeyError, TypeError, AttributeError) as e:
            raise EmbeddingServiceError("Embedding provider returned malformed data") from e


def create_embedder(provider: str = EMBEDDING_PROVIDER) -> EmbeddingClient:
    provider = (provider or "").strip().lower()
    if provider in {"sentence-transformers", "sentence_transformers", "local", "bge"}:
        return SentenceTransformerEmbedder()
    if provider == "openai":
        return OpenAIEmbeddingClient()
    raise ValueError(f"Unknown embedding provider: {provider}")


# -----------------------------------------------------------------------------
# Orchestrator
# -----------------------------------------------------------------------------

def build_all_indices(
    embedder: EmbeddingClient,
    snapshot_path: Path = CATALOG_SNAPSHOT_PATH,
    full: bool = False,
) -> int:
    """
    Re-embed a catalog snapshot in place.

    Steps:
    1) Load the snapshot into a catalog store.
    2) Re-embed stale tools (or every tool with ``full=True``).
    3) Write the snapshot back atomically.
    """
    store = CatalogStore.from_snapshot(snapshot_path)
    logger.info("Starting index build for {} catalog tools", len(store))
    updated = store.reindex(embedder, only_stale=not full)
    store.save(snapshot_path)
    logger.info("Index build complete: {} tools embedded with {}", updated, embedder.model_id)
    return updated
