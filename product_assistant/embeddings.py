"""
Embedding client.

Turns text into a fixed-length vector using the OpenAI embeddings API.
Query-time embedding never raises: a failed call yields None and callers
treat that the same as "no results".
"""

import logging
import time
from typing import List, Optional

import openai

from product_assistant import config

logger = logging.getLogger(__name__)


class EmbeddingClient:
    """Wraps the embeddings endpoint for single queries and ingestion batches."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        model: Optional[str] = None,
        client: Optional[openai.OpenAI] = None,
    ):
        """
        Initialize the embedding client.

        Args:
            api_key: OpenAI API key
            base_url: API base URL
            model: Embedding model name
            client: Preconfigured OpenAI client (skips key lookup)
        """
        self.model = model or config.EMBEDDING_MODEL
        if client is None:
            client = openai.OpenAI(
                api_key=config.require_api_key(api_key),
                base_url=base_url or config.OPENAI_BASE_URL,
            )
        self.client = client

    def embed(self, text: str) -> Optional[List[float]]:
        """
        Embed one piece of text.

        Args:
            text: Non-empty text to embed

        Returns:
            The embedding vector, or None if the provider failed or returned
            no usable vector
        """
        if not text or not text.strip():
            logger.warning("Refusing to embed empty text")
            return None

        try:
            response = self.client.embeddings.create(model=self.model, input=text)
            embedding = response.data[0].embedding
        except Exception:
            logger.exception("Embedding request failed")
            return None

        if not isinstance(embedding, list) or not embedding:
            logger.error("Embedding response carried no usable vector")
            return None

        logger.debug("Embedding received (dimension %d)", len(embedding))
        return [float(x) for x in embedding]

    def embed_batch(
        self,
        texts: List[str],
        batch_size: Optional[int] = None,
        delay: Optional[float] = None,
    ) -> List[List[float]]:
        """
        Embed many texts for catalog ingestion.

        Unlike embed(), provider errors propagate: a partial catalog index
        is worse than a failed upload.

        Args:
            texts: Texts to embed, in order
            batch_size: Texts per request
            delay: Seconds to pause between requests

        Returns:
            One vector per input text, in input order

        Raises:
            ValueError: If the provider returned a different number of vectors
        """
        batch_size = batch_size or config.EMBEDDING_BATCH_SIZE
        delay = config.EMBEDDING_BATCH_DELAY if delay is None else delay

        embeddings: List[List[float]] = []
        for i in range(0, len(texts), batch_size):
            batch = texts[i:i + batch_size]
            response = self.client.embeddings.create(model=self.model, input=batch)
            embeddings.extend(list(item.embedding) for item in response.data)
            logger.info(
                "Embedded %d/%d texts", min(i + batch_size, len(texts)), len(texts)
            )
            if delay and i + batch_size < len(texts):
                time.sleep(delay)

        if len(embeddings) != len(texts):
            raise ValueError("Embedding count mismatch")
        return embeddings
