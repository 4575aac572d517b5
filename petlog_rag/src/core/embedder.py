"""
Petlog RAG - Embedding Provider
================================
Structural type for the embedding provider plus the factory that wires
the configured LangChain backend.

Any LangChain ``Embeddings`` object satisfies ``Embedder``:
  • ``"bedrock"`` → ``langchain_aws.BedrockEmbeddings`` (Titan v2, 1024-d,
    normalised vectors)
  • ``"google"``  → ``langchain_google_genai.GoogleGenerativeAIEmbeddings``

Query embedding for the retrieval path goes through ``embed_query_safely``,
which bounds the call with a timeout and turns every failure into a
failed ``StageResult``.
"""

from __future__ import annotations

import asyncio
import time
from typing import Protocol, runtime_checkable

from petlog_rag.config.settings import Settings
from petlog_rag.src.core.errors import EmbeddingError, StageResult, check_dimension
from petlog_rag.src.utils.logger import get_logger

logger = get_logger(__name__)


@runtime_checkable
class Embedder(Protocol):
    """Anything that can produce embedding vectors from text."""

    def embed_documents(self, texts: list[str]) -> list[list[float]]: ...

    def embed_query(self, text: str) -> list[float]: ...

    async def aembed_query(self, text: str) -> list[float]: ...


def build_embedder(source: Settings) -> Embedder:
    """
    Instantiate the LangChain embedding model selected by
    ``EMBEDDING_PROVIDER``.

    Raises
    ------
    ValueError
        ``"google"`` selected without ``GOOGLE_API_KEY``.
    """
    if source.EMBEDDING_PROVIDER == "google":
        if source.GOOGLE_API_KEY is None:
            raise ValueError("EMBEDDING_PROVIDER=google requires GOOGLE_API_KEY.")
        from langchain_google_genai import GoogleGenerativeAIEmbeddings

        logger.info("Embedding provider: Google (%s)", source.GOOGLE_EMBEDDING_MODEL)
        return GoogleGenerativeAIEmbeddings(model=source.GOOGLE_EMBEDDING_MODEL, google_api_key=source.GOOGLE_API_KEY.get_secret_value())

    from langchain_aws import BedrockEmbeddings

    logger.info("Embedding provider: Bedrock (%s, %d-d, region=%s)", source.BEDROCK_EMBEDDING_MODEL, source.EMBEDDING_DIMENSION, source.AWS_REGION)
    return BedrockEmbeddings(model_id=source.BEDROCK_EMBEDDING_MODEL, region_name=source.AWS_REGION, model_kwargs={"dimensions": source.EMBEDDING_DIMENSION, "normalize": True})


async def embed_query_safely(embedder: Embedder, text: str, dimension: int, timeout: float) -> StageResult[list[float]]:
    """
    Embed *text* within *timeout* seconds.

    Timeouts, provider errors and wrong-length vectors all come back as a
    failed ``StageResult`` carrying an ``EmbeddingError``.  Cancellation of
    the calling task is not intercepted.
    """
    t_start = time.perf_counter()
    try:
        vector = await asyncio.wait_for(embedder.aembed_query(text), timeout=timeout)
        check_dimension(vector, dimension)
    except asyncio.TimeoutError:
        logger.error("[EMBED] Query embedding timed out after %.1fs.", timeout)
        return StageResult.failure(EmbeddingError(f"embedding timed out after {timeout}s"))
    except Exception as exc:
        logger.exception("[EMBED] Query embedding failed.")
        return StageResult.failure(EmbeddingError(str(exc)))

    logger.debug("[EMBED] %d-d query vector in %.1fms", len(vector), (time.perf_counter() - t_start) * 1000)
    return StageResult.success([float(v) for v in vector])
