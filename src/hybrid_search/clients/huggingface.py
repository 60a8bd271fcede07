"""Async HuggingFace Inference API client for embeddings."""

import asyncio
import logging
from typing import Any

import httpx
import numpy as np
from huggingface_hub import AsyncInferenceClient, InferenceTimeoutError

from hybrid_search.errors import PermanentRequestError, TransientNetworkError
from hybrid_search.resilience.retry import RETRYABLE_STATUS_CODES, is_retryable_error

logger = logging.getLogger(__name__)


def _status_code(error: BaseException) -> int | None:
    response = getattr(error, "response", None)
    status = getattr(response, "status_code", None) or getattr(error, "status", None)
    return status if isinstance(status, int) else None


class HuggingFaceEmbedder:
    """Async HuggingFace Inference API client for embedding generation.

    Errors are translated into ``TransientNetworkError`` or
    ``PermanentRequestError``; retrying is left to the caller's resilience
    layer.
    """

    # Model configurations with dimensions and query prefixes
    MODEL_CONFIGS = {
        "BAAI/bge-small-en-v1.5": {
            "dimensions": 384,
            "query_prefix": "Represent this sentence for searching relevant passages: ",
        },
        "BAAI/bge-m3": {
            "dimensions": 1024,
            "query_prefix": "",
        },
        "intfloat/multilingual-e5-small": {
            "dimensions": 384,
            "query_prefix": "query: ",
        },
    }

    def __init__(self, model_id: str, api_token: str, timeout: int = 30) -> None:
        """Initialize the HuggingFace embedder client.

        Args:
            model_id: HuggingFace model identifier (e.g., "BAAI/bge-small-en-v1.5").
            api_token: HuggingFace API token for authentication.
            timeout: Request timeout in seconds.
        """
        self.model_id = model_id
        self.timeout = timeout
        self.config = self.MODEL_CONFIGS.get(model_id, {"dimensions": 768, "query_prefix": ""})
        self._client = AsyncInferenceClient(token=api_token or None, timeout=timeout)

        logger.info(
            f"Initialized HuggingFaceEmbedder with model '{model_id}' "
            f"({self.config['dimensions']} dimensions)"
        )

    @property
    def dimensions(self) -> int:
        """Get embedding dimensions for the model."""
        return self.config["dimensions"]

    async def embed(self, text: str, is_query: bool = True) -> list[float]:
        """Generate embedding for a single text.

        Args:
            text: Text to embed.
            is_query: Whether this is a query (vs document). Queries may use special prefixes.

        Returns:
            Embedding vector as list of floats.

        Raises:
            TransientNetworkError: On timeouts, rate limiting and 5xx responses.
            PermanentRequestError: On other API errors.
        """
        if is_query and self.config["query_prefix"]:
            text = self.config["query_prefix"] + text

        try:
            embedding = await self._client.feature_extraction(text=text, model=self.model_id)
        except (InferenceTimeoutError, httpx.TimeoutException) as e:
            raise TransientNetworkError(f"Embedding request timed out: {e}") from e
        except Exception as e:
            status = _status_code(e)
            if status in RETRYABLE_STATUS_CODES or (status is None and is_retryable_error(e)):
                logger.warning(f"Transient error from HuggingFace API: {e}")
                raise TransientNetworkError(f"Embedding request failed: {e}", status) from e
            logger.error(f"HuggingFace API request failed: {e}")
            raise PermanentRequestError(f"Embedding request failed: {e}", status) from e

        return self._to_vector(embedding)

    def _to_vector(self, embedding: Any) -> list[float]:
        # HuggingFace API returns numpy arrays
        if isinstance(embedding, np.ndarray):
            if embedding.ndim == 1:
                return embedding.tolist()
            if embedding.ndim == 2:
                # Batch result with single item
                return embedding[0].tolist()
            raise PermanentRequestError(f"Unexpected numpy array shape: {embedding.shape}")

        if isinstance(embedding, list):
            if embedding and isinstance(embedding[0], list):
                return embedding[0]
            return embedding

        logger.error(f"Unexpected embedding format: {type(embedding)}")
        raise PermanentRequestError(f"Unexpected embedding format from API: {type(embedding)}")

    async def embed_batch(self, texts: list[str], is_query: bool = True) -> list[list[float]]:
        """Generate embeddings for multiple texts.

        The API has no true batching for feature extraction, so texts are
        embedded concurrently.
        """
        tasks = [self.embed(text, is_query=is_query) for text in texts]
        return list(await asyncio.gather(*tasks))

    async def close(self) -> None:
        """Close the underlying HTTP session."""
        close = getattr(self._client, "close", None)
        if close is None:
            return
        try:
            await close()
        except Exception as e:
            logger.debug(f"Error closing AsyncInferenceClient: {e}")

    async def __aenter__(self) -> "HuggingFaceEmbedder":
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()
