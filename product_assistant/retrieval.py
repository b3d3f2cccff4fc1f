"""
Retrieval gateway.

Product and FAQ search: embed the query, rank against the vector store,
page client-side. Neither operation raises; any failure is logged and
reported as an empty result list.
"""

import logging
from typing import List, Optional

from product_assistant.embeddings import EmbeddingClient
from product_assistant.models import DEFAULT_RESULT_LIMIT, FaqResult, ProductResult
from product_assistant.vector_store import VectorStoreManager

logger = logging.getLogger(__name__)


class RetrievalGateway:
    """Similarity search over the product catalog and its FAQs."""

    def __init__(self, embedding_client: EmbeddingClient, vector_store: VectorStoreManager):
        self.embedding_client = embedding_client
        self.vector_store = vector_store

    def search_products(
        self,
        query: str,
        limit: int = DEFAULT_RESULT_LIMIT,
        offset: int = 0,
        min_price: Optional[float] = None,
        max_price: Optional[float] = None,
        category: Optional[str] = None,
    ) -> List[ProductResult]:
        """
        Search products by semantic similarity.

        The store has no offset cursor, so limit + offset candidates are
        ranked and the first offset dropped. Pages are only stable while the
        catalog is unchanged between calls.

        Args:
            query: Search text
            limit: Page size (non-positive means 3)
            offset: Results to skip
            min_price: Lower price bound
            max_price: Upper price bound
            category: Category filter

        Returns:
            Up to limit products, most relevant first
        """
        limit = limit if limit and limit > 0 else DEFAULT_RESULT_LIMIT
        offset = max(offset or 0, 0)
        logger.info(
            "search_products query=%r limit=%d offset=%d min_price=%s max_price=%s category=%s",
            query, limit, offset, min_price, max_price, category
        )

        try:
            embedding = self.embedding_client.embed(query)
            if embedding is None:
                return []

            ranked = self.vector_store.match_products(
                embedding,
                limit + offset,
                min_price=min_price,
                max_price=max_price,
                category=category
            )
        except Exception:
            logger.exception("Product search failed")
            return []

        page = ranked[offset:offset + limit]
        logger.info("search_products returned %d of %d ranked", len(page), len(ranked))
        return page

    def search_faqs(self, query: str, limit: int = DEFAULT_RESULT_LIMIT) -> List[FaqResult]:
        """Search FAQ entries by semantic similarity."""
        limit = limit if limit and limit > 0 else DEFAULT_RESULT_LIMIT
        logger.info("search_faqs query=%r limit=%d", query, limit)

        try:
            embedding = self.embedding_client.embed(query)
            if embedding is None:
                return []
            faqs = self.vector_store.match_faqs(embedding, limit)
        except Exception:
            logger.exception("FAQ search failed")
            return []

        logger.info("search_faqs returned %d", len(faqs))
        return faqs[:limit]
