"""
Vector Store Module.

Holds product records and their FAQs in ChromaDB collections, ranks them
by cosine similarity against a query embedding, and indexes uploaded
catalog records (embedding generation included).
"""

import json
import logging
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Tuple

import chromadb
from chromadb.config import Settings

from product_assistant import config
from product_assistant.embeddings import EmbeddingClient
from product_assistant.models import CatalogRecord, FaqEntry, FaqResult, ProductResult

logger = logging.getLogger(__name__)

# Collection names
PRODUCTS_COLLECTION = "products"
FAQS_COLLECTION = "product_faqs"

COLLECTION_METADATA = {"hnsw:space": "cosine"}


def distance_to_similarity(distance: Optional[float]) -> float:
    """Map a cosine distance onto a [0, 1] relevance score."""
    if distance is None:
        return 0.0
    return max(0.0, min(1.0, 1.0 - float(distance)))


def build_price_category_filter(
    min_price: Optional[float] = None,
    max_price: Optional[float] = None,
    category: Optional[str] = None,
) -> Optional[Dict[str, Any]]:
    """Build a Chroma where-clause for the optional product filters."""
    conditions: List[Dict[str, Any]] = []
    if min_price is not None:
        conditions.append({"price": {"$gte": float(min_price)}})
    if max_price is not None:
        conditions.append({"price": {"$lte": float(max_price)}})
    if category:
        conditions.append({"category": {"$eq": category}})

    if not conditions:
        return None
    if len(conditions) == 1:
        return conditions[0]
    return {"$and": conditions}


def _first_row(results: Dict[str, Any], key: str) -> List[Any]:
    """Chroma returns one list per query embedding; we always send one."""
    rows = results.get(key)
    if not rows:
        return []
    return rows[0] or []


class VectorStoreManager:
    """
    Manages the ChromaDB collections for products and FAQs.

    Ranking only needs a precomputed query vector. Ingestion needs an
    EmbeddingClient to compute vectors for the uploaded records.
    """

    def __init__(
        self,
        persist_directory: Optional[str] = None,
        embedding_client: Optional[EmbeddingClient] = None,
        chroma_client: Optional[Any] = None,
    ):
        """
        Initialize the vector store manager.

        Args:
            persist_directory: Path to store vector database
            embedding_client: Client used to embed records during ingestion
            chroma_client: Preconfigured Chroma client (overrides persist_directory)
        """
        self.persist_directory = persist_directory or config.VECTOR_STORE_PATH
        self.embedding_client = embedding_client

        self.chroma_client = chroma_client or chromadb.PersistentClient(
            path=self.persist_directory,
            settings=Settings(anonymized_telemetry=False)
        )

        self.products = self.chroma_client.get_or_create_collection(
            name=PRODUCTS_COLLECTION,
            metadata=COLLECTION_METADATA
        )
        self.faqs = self.chroma_client.get_or_create_collection(
            name=FAQS_COLLECTION,
            metadata=COLLECTION_METADATA
        )

    # -------------------------------------------------------------------------
    # Similarity ranking
    # -------------------------------------------------------------------------

    def match_products(
        self,
        query_embedding: List[float],
        match_count: int,
        min_price: Optional[float] = None,
        max_price: Optional[float] = None,
        category: Optional[str] = None,
    ) -> List[ProductResult]:
        """
        Rank products by similarity to a query vector.

        Args:
            query_embedding: Query vector
            match_count: Maximum number of rows to return
            min_price: Only products priced at or above this
            max_price: Only products priced at or below this
            category: Only products in this category

        Returns:
            Matching products, most similar first
        """
        results = self.products.query(
            query_embeddings=[query_embedding],
            n_results=match_count,
            where=build_price_category_filter(min_price, max_price, category),
            include=["metadatas", "distances"]
        )

        ids = _first_row(results, "ids")
        metadatas = _first_row(results, "metadatas")
        distances = _first_row(results, "distances")

        products = []
        for i, product_ref in enumerate(ids):
            metadata = dict(metadatas[i] or {}) if i < len(metadatas) else {}
            distance = distances[i] if i < len(distances) else None
            products.append(ProductResult(
                product_ref=product_ref,
                title=metadata.get("title"),
                description=metadata.get("description"),
                price=metadata.get("price"),
                url=metadata.get("url"),
                image_url=metadata.get("image_url"),
                category=metadata.get("category"),
                technical_data=metadata.get("technical_data"),
                similarity=distance_to_similarity(distance)
            ))

        products.sort(key=lambda p: p.similarity, reverse=True)
        return products

    def match_faqs(self, query_embedding: List[float], match_count: int) -> List[FaqResult]:
        """Rank FAQ entries by similarity to a query vector."""
        results = self.faqs.query(
            query_embeddings=[query_embedding],
            n_results=match_count,
            include=["metadatas", "distances"]
        )

        metadatas = _first_row(results, "metadatas")
        distances = _first_row(results, "distances")

        faqs = []
        for i, metadata in enumerate(metadatas):
            metadata = metadata or {}
            faqs.append(FaqResult(
                question=metadata.get("question", ""),
                answer=metadata.get("answer", ""),
                product_ref=metadata.get("product_ref"),
                similarity=distance_to_similarity(distances[i] if i < len(distances) else None)
            ))

        faqs.sort(key=lambda f: f.similarity, reverse=True)
        return faqs

    # -------------------------------------------------------------------------
    # Ingestion
    # -------------------------------------------------------------------------

    @staticmethod
    def record_to_metadata(record: CatalogRecord) -> Dict[str, Any]:
        """
        Flatten a catalog record into Chroma metadata.

        Chroma rejects None values, so absent fields are left out.
        """
        metadata: Dict[str, Any] = {
            "product_ref": record.product_ref,
            "title": record.title,
            "description": record.description,
            "price": float(record.price) if record.price is not None else None,
            "url": record.url,
            "image_url": record.image_url,
            "category": record.category,
            "technical_data": record.technical_data,
        }
        if record.metadata:
            metadata["extra"] = json.dumps(record.metadata)
        return {k: v for k, v in metadata.items() if v not in (None, "")}

    def _require_embedder(self) -> EmbeddingClient:
        if self.embedding_client is None:
            raise ValueError("An embedding client is required to index records")
        return self.embedding_client

    def upsert_records(self, records: List[CatalogRecord]) -> Tuple[int, int]:
        """
        Index catalog records and replace their FAQ entries.

        Args:
            records: Validated catalog records

        Returns:
            (records upserted, FAQ entries upserted)
        """
        if not records:
            return 0, 0

        embedder = self._require_embedder()

        logger.info("Generating embeddings for %d records", len(records))
        texts = [r.embedding_text() or r.product_ref for r in records]
        embeddings = embedder.embed_batch(texts)

        self.products.upsert(
            ids=[r.product_ref for r in records],
            documents=texts,
            embeddings=embeddings,
            metadatas=[self.record_to_metadata(r) for r in records]
        )

        faq_count = 0
        for record in records:
            faq_count += self._replace_faqs(record.product_ref, record.faq)

        logger.info("Indexed %d records and %d FAQs", len(records), faq_count)
        return len(records), faq_count

    def _replace_faqs(self, product_ref: str, faqs: Iterable[FaqEntry]) -> int:
        """Delete a product's FAQ entries and insert the complete pairs given."""
        faqs = list(faqs)
        if not faqs:
            return 0

        self.faqs.delete(where={"product_ref": product_ref})

        complete = [faq for faq in faqs if faq.is_complete]
        if not complete:
            return 0

        embedder = self._require_embedder()
        texts = [f"{faq.q} {faq.a}" for faq in complete]
        embeddings = embedder.embed_batch(texts)

        self.faqs.add(
            ids=[f"{product_ref}::faq::{n}" for n in range(len(complete))],
            documents=texts,
            embeddings=embeddings,
            metadatas=[
                {"product_ref": product_ref, "question": faq.q, "answer": faq.a}
                for faq in complete
            ]
        )
        return len(complete)

    def find_existing_refs(self, product_refs: List[str]) -> List[str]:
        """Return which of the given product refs are already indexed."""
        if not product_refs:
            return []
        results = self.products.get(ids=list(product_refs), include=["metadatas"])
        return list(results.get("ids") or [])

    # -------------------------------------------------------------------------
    # Listing
    # -------------------------------------------------------------------------

    def list_records(self, limit: int = 1000, category: Optional[str] = None) -> List[Dict[str, Any]]:
        """
        List indexed records with their FAQs attached.

        Args:
            limit: Maximum number of records
            category: Only records in this category

        Returns:
            Record dictionaries in the catalog upload shape
        """
        results = self.products.get(
            where={"category": category} if category else None,
            limit=limit,
            include=["metadatas"]
        )

        refs = list(results.get("ids") or [])
        faqs_by_ref: Dict[str, List[Dict[str, str]]] = {}
        if refs:
            faq_rows = self.faqs.get(where={"product_ref": {"$in": refs}}, include=["metadatas"])
            for metadata in faq_rows.get("metadatas") or []:
                faqs_by_ref.setdefault(metadata["product_ref"], []).append(
                    {"q": metadata.get("question"), "a": metadata.get("answer")}
                )

        records = []
        for i, product_ref in enumerate(refs):
            metadatas = results.get("metadatas") or []
            metadata = dict(metadatas[i] or {}) if i < len(metadatas) else {}
            extra = json.loads(metadata.pop("extra", "{}"))
            records.append({
                "product_ref": product_ref,
                "title": metadata.get("title"),
                "description": metadata.get("description"),
                "price": metadata.get("price"),
                "technical_data": metadata.get("technical_data", ""),
                "url": metadata.get("url"),
                "image_url": metadata.get("image_url"),
                "metadata": extra,
                "faq": faqs_by_ref.get(product_ref, []),
            })
        return records

    def get_record_count(self) -> int:
        """Get the number of products in the vector store."""
        return self.products.count()

    def clear_collections(self):
        """Remove all products and FAQs."""
        self.chroma_client.delete_collection(PRODUCTS_COLLECTION)
        self.chroma_client.delete_collection(FAQS_COLLECTION)
        self.products = self.chroma_client.create_collection(
            name=PRODUCTS_COLLECTION,
            metadata=COLLECTION_METADATA
        )
        self.faqs = self.chroma_client.create_collection(
            name=FAQS_COLLECTION,
            metadata=COLLECTION_METADATA
        )


def load_catalog_file(file_path: Optional[str] = None) -> List[CatalogRecord]:
    """
    Load catalog records from a JSON file.

    Accepts either {"records": [...]} or a bare list. Invalid records are
    skipped with a warning.
    """
    path = Path(file_path or config.CATALOG_PATH)

    with open(path, 'r', encoding='utf-8') as f:
        data = json.load(f)

    items = data if isinstance(data, list) else data.get("records", [])

    records = []
    for item in items:
        try:
            records.append(CatalogRecord(**item))
        except Exception as e:
            logger.warning("Skipping invalid record %s: %s", item.get("product_ref", "unknown"), e)

    return records


def get_vector_store(embedding_client: Optional[EmbeddingClient] = None) -> VectorStoreManager:
    """Get the vector store manager with default settings."""
    return VectorStoreManager(embedding_client=embedding_client)


if __name__ == "__main__":
    import argparse

    config.setup_logging()

    parser = argparse.ArgumentParser(description="Index the product catalog")
    parser.add_argument(
        "--catalog",
        type=str,
        default=config.CATALOG_PATH,
        help="Path to catalog JSON file"
    )
    parser.add_argument(
        "--vector-store",
        type=str,
        default=config.VECTOR_STORE_PATH,
        help="Path for vector store persistence"
    )
    parser.add_argument(
        "--force",
        action="store_true",
        help="Clear the vector store before indexing"
    )
    parser.add_argument(
        "--test-search",
        type=str,
        help="Test search query after indexing"
    )

    args = parser.parse_args()

    print("=" * 50)
    print("Indexing Product Catalog")
    print("=" * 50)

    embedder = EmbeddingClient()
    manager = VectorStoreManager(persist_directory=args.vector_store, embedding_client=embedder)

    if args.force:
        print("Clearing existing vector store...")
        manager.clear_collections()

    catalog = load_catalog_file(args.catalog)
    print(f"Loaded {len(catalog)} records from file")

    indexed, faq_indexed = manager.upsert_records(catalog)
    print(f"\nIndexed {indexed} records and {faq_indexed} FAQs "
          f"({manager.get_record_count()} records in store)")

    if args.test_search:
        print(f"\nTesting search with query: '{args.test_search}'")
        vector = embedder.embed(args.test_search)
        if vector is None:
            print("Embedding failed; no results")
        else:
            for i, result in enumerate(manager.match_products(vector, 3), 1):
                print(f"\n--- Result {i} ---")
                print(f"Product: {result.title or result.product_ref}")
                if result.price is not None:
                    print(f"Price: ${result.price:.2f}")
                print(f"Relevance: {result.similarity:.3f}")
