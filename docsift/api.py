"""FastAPI REST API wrapper for the Docsift engine."""

import asyncio
import threading
from contextlib import asynccontextmanager
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, HTTPException, Query, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from .config import DocsiftConfig
from .engine import Docsift
from .errors import CorpusScanError, DocumentNotFoundError, SearchCancelledError
from .logging_setup import setup_logging


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ============ Request/Response Models ============

class IngestRequest(_CamelModel):
    """Request body for document ingestion (already-extracted text)."""
    owner_id: str = Field(..., min_length=1, description="Owner scope")
    text: str = Field(..., description="Extracted plain text, may be empty")
    filename: str = Field(..., min_length=1, description="Original filename")
    mime_type: str = Field(default="text/plain")
    display_name: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)


class SimilarDocument(_CamelModel):
    id: str
    display_name: str


class IngestResponse(_CamelModel):
    """Response from ingestion."""
    status: str
    document_id: Optional[str]
    indexed_chunk_count: int
    total_chunk_count: int
    similar_documents: List[SimilarDocument] = []


class SearchRequest(_CamelModel):
    """Request body for search."""
    query: str = Field(..., min_length=1, description="Search query")
    k: int = Field(default=5, ge=1, le=100, description="Number of results")
    owner_id: Optional[str] = Field(default=None, description="Restrict to one owner")


class SearchResultItem(_CamelModel):
    """Single search result."""
    chunk_id: str
    document_id: str
    score: float
    snippet: str
    source_tier: str
    display_name: str
    ordinal: Optional[int] = None


class SearchResponse(_CamelModel):
    """Response from search."""
    results: List[SearchResultItem]
    query: str
    source_tier: Optional[str]
    attempted_tiers: List[str]
    count: int


class PurgeResponse(_CamelModel):
    vector_purged: bool
    text_purged: bool


class DocumentItem(_CamelModel):
    id: str
    owner_id: str
    display_name: str
    original_name: str
    mime_type: str
    byte_size: int
    content_hash: str
    name_hash: str
    created_at: str
    index_state: str
    indexed_chunk_count: int
    total_chunk_count: int
    metadata: Dict[str, Any] = {}


# ============ App Factory ============

def create_app(
    config: Optional[DocsiftConfig] = None,
    engine: Optional[Docsift] = None,
) -> FastAPI:
    """
    Create a FastAPI app wrapping a Docsift instance.

    Args:
        config: Engine configuration (defaults to ``DocsiftConfig.from_env()``)
        engine: Already-built engine; the app will not close it on shutdown

    Returns:
        FastAPI app instance
    """
    engine_instance: Optional[Docsift] = engine

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        nonlocal engine_instance
        owned = engine_instance is None
        if owned:
            setup_logging()
            engine_instance = Docsift(config or DocsiftConfig.from_env())
        yield
        if owned and engine_instance:
            engine_instance.close()
            engine_instance = None

    app = FastAPI(
        title="Docsift API",
        description="Document indexing with vector, text and live-scan retrieval",
        version="1.0.0",
        lifespan=lifespan,
    )

    def get_engine() -> Docsift:
        if engine_instance is None:
            raise HTTPException(status_code=503, detail="Docsift not initialized")
        return engine_instance

    # ============ Endpoints ============

    @app.post("/documents", response_model=IngestResponse, tags=["Documents"])
    def ingest_document(request: IngestRequest):
        """
        Ingest one document.

        Exact duplicates are not an error: the response carries
        ``status="duplicate"`` and the existing document id.
        """
        result = get_engine().ingest(
            request.owner_id,
            request.text,
            request.filename,
            request.mime_type,
            display_name=request.display_name,
            metadata=request.metadata,
        )
        return IngestResponse.model_validate(result.to_dict())

    @app.post("/search", response_model=SearchResponse, tags=["Search"])
    async def search(request: SearchRequest, http_request: Request):
        """
        Search with the vector -> text -> live cascade.

        A client that disconnects cancels the query.
        """
        engine = get_engine()
        cancel_event = threading.Event()

        async def watch_disconnect():
            while not cancel_event.is_set():
                if await http_request.is_disconnected():
                    cancel_event.set()
                    return
                await asyncio.sleep(0.1)

        watcher = asyncio.create_task(watch_disconnect())
        try:
            outcome = await run_in_threadpool(
                engine.search_outcome,
                request.query,
                request.k,
                owner_id=request.owner_id,
                cancel_event=cancel_event,
            )
        except CorpusScanError as e:
            raise HTTPException(status_code=503, detail=str(e))
        except SearchCancelledError:
            raise HTTPException(status_code=499, detail="Client closed request")
        finally:
            watcher.cancel()

        return SearchResponse(
            results=[SearchResultItem.model_validate(r.to_dict()) for r in outcome.results],
            query=request.query,
            source_tier=outcome.tier.value if outcome.tier else None,
            attempted_tiers=[t.value for t in outcome.attempted],
            count=len(outcome.results),
        )

    @app.delete("/documents/{document_id}", response_model=PurgeResponse, tags=["Documents"])
    def purge_document(document_id: str):
        """Remove a document and all of its chunks from both indexes."""
        try:
            result = get_engine().purge(document_id)
        except DocumentNotFoundError:
            raise HTTPException(status_code=404, detail=f"Document {document_id} not found")
        if not result.ok:
            # One index still references the document
            return JSONResponse(status_code=500, content=result.to_dict())
        return PurgeResponse.model_validate(result.to_dict())

    @app.get("/documents", response_model=List[DocumentItem], tags=["Documents"])
    def list_documents(owner_id: Optional[str] = Query(default=None)):
        """List documents, newest first."""
        docs = get_engine().list_documents(owner_id)
        return [DocumentItem.model_validate(d.to_dict()) for d in docs]

    @app.get("/documents/{document_id}", response_model=DocumentItem, tags=["Documents"])
    def get_document(document_id: str):
        doc = get_engine().get_document(document_id)
        if doc is None:
            raise HTTPException(status_code=404, detail=f"Document {document_id} not found")
        return DocumentItem.model_validate(doc.to_dict())

    @app.get("/stats", tags=["Management"])
    def get_stats():
        """Get engine statistics including cache info."""
        return get_engine().get_stats()

    @app.get("/health", tags=["Health"])
    async def health_check():
        """Health check endpoint."""
        return {"status": "healthy", "service": "docsift"}

    return app


# Default app for `uvicorn docsift.api:app`
app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
