"""
HTTP API for the Product Assistant.

Routes:
    POST /api/chat                 stream a reply (text/event-stream)
    GET  /api/chat                 stored history for one session
    POST /api/chat/history         save a session's history
    DELETE /api/chat/history       delete a session's history
    GET  /api/chat/history/list    list sessions
    GET  /api/records/list         list catalog records
    POST /api/records/upsert       index records, replacing existing ones
    POST /api/datasets/upload      index new records, reporting duplicates

Run with: uvicorn product_assistant.api:app
"""

import logging
from functools import lru_cache
from typing import Any, Dict, List, Optional, Union

from fastapi import Body, Depends, FastAPI, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import BaseModel, ValidationError

from product_assistant import config, database, vector_store
from product_assistant.chatbot import ProductAssistantChatbot
from product_assistant.completion import CompletionClient, CompletionError
from product_assistant.database import SessionStore
from product_assistant.embeddings import EmbeddingClient
from product_assistant.models import CatalogRecord, ChatRequest
from product_assistant.retrieval import RetrievalGateway
from product_assistant.vector_store import VectorStoreManager

logger = logging.getLogger(__name__)

STREAM_HEADERS = {
    "Cache-Control": "no-cache, no-transform",
    "Connection": "keep-alive",
}


class HistoryRequest(BaseModel):
    session_id: Optional[str] = None
    chats: Optional[List[Dict[str, Any]]] = None
    metadata: Optional[Dict[str, Any]] = None


# =============================================================================
# Dependencies
# =============================================================================

class ServiceUnavailable(Exception):
    """A backing client could not be built from the current configuration."""


@lru_cache
def get_embedding_client() -> EmbeddingClient:
    try:
        return EmbeddingClient()
    except ValueError as e:
        raise ServiceUnavailable(str(e)) from e


@lru_cache
def get_vector_store() -> VectorStoreManager:
    embedder = get_embedding_client()
    try:
        return vector_store.get_vector_store(embedder)
    except Exception as e:
        logger.exception("Vector store could not be opened")
        raise ServiceUnavailable(f"Vector store unavailable: {e}") from e


@lru_cache
def get_chatbot() -> ProductAssistantChatbot:
    gateway = RetrievalGateway(get_embedding_client(), get_vector_store())
    try:
        completion = CompletionClient()
    except ValueError as e:
        raise ServiceUnavailable(str(e)) from e
    return ProductAssistantChatbot(completion=completion, gateway=gateway)


@lru_cache
def get_session_store() -> SessionStore:
    return database.get_session_store()


def error_response(message: str, status_code: int, **extra: Any) -> JSONResponse:
    return JSONResponse({"error": message, **extra}, status_code=status_code)


def parse_items(body: Union[List[Any], Dict[str, Any], None]) -> List[Dict[str, Any]]:
    """Accept either a bare list of records or {"items": [...]}."""
    if isinstance(body, list):
        return body
    if isinstance(body, dict):
        items = body.get("items") or []
        return items if isinstance(items, list) else []
    return []


# =============================================================================
# Application
# =============================================================================

def create_app() -> FastAPI:
    """Build the FastAPI application."""
    app = FastAPI(title="Product Assistant")

    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.CORS_ORIGINS,
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"]
    )

    @app.exception_handler(ServiceUnavailable)
    async def service_unavailable(request: Request, exc: ServiceUnavailable):
        logger.error("%s %s failed: %s", request.method, request.url.path, exc)
        return error_response(str(exc), 500)

    @app.post("/api/chat")
    def chat(
        body: Dict[str, Any] = Body(...),
        chatbot: ProductAssistantChatbot = Depends(get_chatbot),
    ):
        try:
            request = ChatRequest.model_validate(body)
        except ValidationError as e:
            return error_response(f"invalid messages: {e.errors()[0]['msg']}", 400)

        logger.info(
            "POST /api/chat received (messages=%d, session_id=%s)",
            len(request.messages), request.session_id
        )
        if not request.messages:
            return error_response("messages required", 400)

        try:
            frames = chatbot.respond(request.messages, session_id=request.session_id)
        except CompletionError as e:
            logger.error("Chat request failed: %s", e)
            return error_response(str(e), 500)
        except Exception as e:
            logger.exception("Chat request failed unexpectedly")
            return error_response(str(e) or e.__class__.__name__, 500)

        return StreamingResponse(frames, media_type="text/event-stream", headers=STREAM_HEADERS)

    @app.get("/api/chat")
    def get_chat(
        session_id: Optional[str] = Query(None),
        store: SessionStore = Depends(get_session_store),
    ):
        if not session_id:
            return error_response("session_id required", 400)

        session = store.get_session(session_id)
        if session is None:
            return error_response("session not found", 404)

        return {"chats": [chat.model_dump(exclude_none=True) for chat in session.chats]}

    @app.post("/api/chat/history")
    def save_history(
        request: HistoryRequest,
        store: SessionStore = Depends(get_session_store),
    ):
        if not request.session_id:
            return error_response("session_id required", 400)
        if request.chats is None:
            return error_response("chats array required", 400)

        try:
            session = store.save_session(request.session_id, request.chats, request.metadata)
        except ValidationError as e:
            return error_response(f"invalid chats: {e.errors()[0]['msg']}", 400)

        return {"ok": True, "record": session.model_dump(mode="json")}

    @app.delete("/api/chat/history")
    def delete_history(
        session_id: Optional[str] = Query(None),
        store: SessionStore = Depends(get_session_store),
    ):
        if not session_id:
            return error_response("session_id required", 400)
        if not store.delete_session(session_id):
            return error_response("session not found", 404)
        return {"ok": True}

    @app.get("/api/chat/history/list")
    def list_history(store: SessionStore = Depends(get_session_store)):
        return {
            "sessions": [s.model_dump(mode="json") for s in store.list_sessions()],
            "total": store.get_session_count(),
        }

    @app.get("/api/records/list")
    def list_records(
        limit: int = Query(1000, ge=1),
        category: Optional[str] = Query(None),
        vector_store: VectorStoreManager = Depends(get_vector_store),
    ):
        records = vector_store.list_records(limit=limit, category=category)
        return {"ok": True, "records": records, "total": len(records)}

    @app.post("/api/records/upsert")
    def upsert_records(
        body: Union[List[Any], Dict[str, Any]] = Body(...),
        vector_store: VectorStoreManager = Depends(get_vector_store),
    ):
        items = parse_items(body)
        if not items:
            return error_response("No items provided", 400)

        try:
            records = [CatalogRecord(**item) for item in items]
        except (ValidationError, TypeError) as e:
            return error_response(f"invalid record: {e}", 400)

        try:
            upserted, faq_upserted = vector_store.upsert_records(records)
        except Exception as e:
            logger.exception("Record upsert failed")
            return error_response(str(e), 500)

        return {"ok": True, "records": upserted, "faq_upserted": faq_upserted}

    @app.post("/api/datasets/upload")
    def upload_dataset(
        body: Union[List[Any], Dict[str, Any]] = Body(...),
        vector_store: VectorStoreManager = Depends(get_vector_store),
    ):
        items = parse_items(body)
        if not items:
            return error_response("No items provided", 400)

        keyed = [
            (str(item.get("product_ref") or "").strip(), item)
            for item in items
            if isinstance(item, dict)
        ]
        keyed = [(ref, item) for ref, item in keyed if ref]
        if not keyed:
            return error_response("No product_ref values found", 400)

        existing = set(vector_store.find_existing_refs([ref for ref, _ in keyed]))
        duplicates = [item for ref, item in keyed if ref in existing]
        fresh = [item for ref, item in keyed if ref not in existing]

        try:
            records = [CatalogRecord(**item) for item in fresh]
        except ValidationError as e:
            return error_response(f"invalid record: {e}", 400)

        try:
            inserted, faq_inserted = vector_store.upsert_records(records)
        except Exception as e:
            logger.exception("Dataset upload failed")
            return error_response(str(e), 500)

        return {
            "ok": True,
            "inserted": inserted,
            "inserted_refs": [record.product_ref for record in records],
            "faq_inserted": faq_inserted,
            "duplicates": duplicates,
        }

    return app


config.setup_logging()
app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("product_assistant.api:app", host="0.0.0.0", port=8000, reload=True)
