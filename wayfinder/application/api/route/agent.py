from typing import Annotated, Any, Dict

from fastapi import APIRouter, Depends, Request

from wayfinder.application.api.schema import HealthResponse, QueryRequest, SearchRequest, SettingsUpdated
from wayfinder.domain.context.page_indexer import IndexOutcome
from wayfinder.domain.models.memory import EmbeddingSettings, MemoryRecord, MemorySearchResponse, MemoryStats, PageContent
from wayfinder.domain.models.plan import QueryOutcome
from wayfinder.infrastructure.config.settings import AgentComponents

router = APIRouter()


def get_components(request: Request) -> AgentComponents:
    return request.app.state.components


Components = Annotated[AgentComponents, Depends(get_components)]


# Full perceive -> plan -> execute pipeline
@router.post("/api/v1/agent/query", response_model=QueryOutcome)
async def query_endpoint(request: QueryRequest, components: Components):
    return await components.agent.process_query(request.query, request.context)


@router.post("/api/v1/memories")
async def add_memory_endpoint(record: MemoryRecord, components: Components) -> Dict[str, Any]:
    memory = await components.memory_store.add_memory(record)
    return memory.to_snapshot()


@router.post("/api/v1/memories/search", response_model=MemorySearchResponse)
async def search_endpoint(request: SearchRequest, components: Components):
    hits = await components.memory_store.search(
        request.query,
        limit=request.limit,
        type=request.type,
        min_score=request.min_score,
    )
    results = [hit.to_public() for hit in hits]
    return MemorySearchResponse(success=True, query=request.query, results=results, count=len(results))


@router.get("/api/v1/memories/stats", response_model=MemoryStats)
async def stats_endpoint(components: Components):
    return await components.memory_store.get_stats()


@router.post("/api/v1/pages", response_model=IndexOutcome)
async def index_page_endpoint(page: PageContent, components: Components):
    return await components.page_indexer.index_page(page)


@router.put("/api/v1/settings/embedding", response_model=SettingsUpdated)
async def update_embedding_settings(settings: EmbeddingSettings, components: Components):
    await components.embedding_service.update_settings(settings)
    return SettingsUpdated(provider=settings.provider)


@router.get("/health", response_model=HealthResponse)
async def health(components: Components):
    return HealthResponse(
        status="ok" if components.memory_store.is_initialized else "starting",
        memories=len(components.memory_store),
        embedding_provider=components.embedding_service.current_provider,
    )
