import asyncio

import httpx

import pytest

from tests.conftest import DelayedStorage, FailingStorage, KeywordProvider
from wayfinder.domain.context.memory.memory_store import EMBEDDINGS_KEY, MEMORIES_KEY, SESSION_KEY, MemoryStore
from wayfinder.domain.context.memory.storage import InMemoryStorage
from wayfinder.domain.embedding.embedding_service import EmbeddingService
from wayfinder.domain.embedding.providers import build_default_providers
from wayfinder.domain.errors import PersistenceError, StoreNotInitializedError
from wayfinder.domain.models.memory import MemoryRecord
from wayfinder.infrastructure.observability.logging import MetricsCollector


def _service(storage) -> EmbeddingService:
    return EmbeddingService([KeywordProvider()], storage=storage, metrics=MetricsCollector())


@pytest.mark.asyncio
async def test_added_memory_is_found_by_a_related_query(memory_store):
    await memory_store.add_memory(MemoryRecord(
        type="web_page",
        content="The quick brown fox",
        metadata={"url": "https://example.com/fox"},
    ))
    await memory_store.add_memory(MemoryRecord(content="pasta recipe"))

    results = await memory_store.search("fox")

    assert len(results) == 1
    assert results[0].metadata["url"] == "https://example.com/fox"
    assert results[0].score > 0
    assert results[0].score == pytest.approx(1 / 3 ** 0.5)


@pytest.mark.asyncio
async def test_added_memory_carries_timestamp_and_session(memory_store):
    memory = await memory_store.add_memory(MemoryRecord(content="python asyncio guide", tags={"docs"}))

    assert memory.embedding is not None
    assert memory.metadata["session_id"] == memory_store.session_id
    assert isinstance(memory.metadata["timestamp"], int)
    assert memory.tags == {"docs"}
    assert memory_store.get(memory.id) == memory


@pytest.mark.asyncio
async def test_results_are_sorted_and_respect_min_score(memory_store):
    await memory_store.add_memory(MemoryRecord(content="fox"))
    await memory_store.add_memory(MemoryRecord(content="fox dog cat rust"))
    await memory_store.add_memory(MemoryRecord(content="fox dog"))

    results = await memory_store.search("fox", min_score=0.6)

    assert [r.content for r in results] == ["fox", "fox dog"]
    assert results[0].score >= results[1].score
    assert all(r.score >= 0.6 for r in results)


@pytest.mark.asyncio
async def test_equal_scores_keep_insertion_order(memory_store):
    first = await memory_store.add_memory(MemoryRecord(content="vector memory"))
    second = await memory_store.add_memory(MemoryRecord(content="vector memory"))

    results = await memory_store.search("vector memory")

    assert [r.id for r in results] == [first.id, second.id]


@pytest.mark.asyncio
async def test_limit_and_type_filter(memory_store):
    for _ in range(3):
        await memory_store.add_memory(MemoryRecord(type="web_page", content="browser search"))
    await memory_store.add_memory(MemoryRecord(type="query", content="browser search"))

    assert len(await memory_store.search("browser", limit=2)) == 2
    only_queries = await memory_store.search("browser", type="query")
    assert [r.type for r in only_queries] == ["query"]


@pytest.mark.asyncio
async def test_memories_with_another_dimension_are_skipped():
    storage = InMemoryStorage({
        MEMORIES_KEY: [{
            "id": "legacy",
            "type": "general",
            "content": "fox",
            "metadata": {},
            "tags": [],
            "created_at": "2024-01-01T00:00:00Z",
        }],
        EMBEDDINGS_KEY: [{"id": "legacy", "embedding": [1.0, 2.0]}],
        SESSION_KEY: "session-1",
    })
    store = MemoryStore(storage, _service(storage))
    await store.init()

    assert await store.search("fox") == []

    fresh = await store.add_memory(MemoryRecord(content="fox"))
    assert [r.id for r in await store.search("fox")] == [fresh.id]


@pytest.mark.asyncio
async def test_failed_write_keeps_the_memory_in_process():
    storage = FailingStorage()
    store = MemoryStore(storage, _service(storage))
    await store.init()
    storage.fail_writes = True

    with pytest.raises(PersistenceError):
        await store.add_memory(MemoryRecord(content="quick fox"))

    assert len(store) == 1
    assert len(await store.search("fox")) == 1
    assert MEMORIES_KEY not in storage.data


@pytest.mark.asyncio
async def test_operations_before_init_are_rejected(storage, embedding_service):
    store = MemoryStore(storage, embedding_service)

    with pytest.raises(StoreNotInitializedError):
        await store.add_memory(MemoryRecord(content="fox"))
    with pytest.raises(StoreNotInitializedError):
        await store.search("fox")
    with pytest.raises(StoreNotInitializedError):
        await store.get_stats()


@pytest.mark.asyncio
async def test_snapshot_survives_a_restart():
    storage = InMemoryStorage()
    store = MemoryStore(storage, _service(storage))
    await store.init()
    first = await store.add_memory(MemoryRecord(type="web_page", content="rust tutorial"))
    second = await store.add_memory(MemoryRecord(content="pasta recipe", tags={"food"}))
    await store.teardown()

    reloaded = MemoryStore(storage, _service(storage))
    await reloaded.init()

    assert [m.id for m in reloaded.list_memories()] == [first.id, second.id]
    assert reloaded.get(first.id).embedding == first.embedding
    assert reloaded.get(second.id).tags == {"food"}
    assert reloaded.session_id == store.session_id
    assert [r.id for r in await reloaded.search("recipe")] == [second.id]


@pytest.mark.asyncio
async def test_init_is_idempotent_and_creates_one_session(storage, embedding_service):
    store = MemoryStore(storage, embedding_service)
    await store.init()
    session = store.session_id
    await store.init()

    assert store.session_id == session
    assert storage.data[SESSION_KEY] == session


@pytest.mark.asyncio
async def test_stats_count_memories_by_type(memory_store):
    await memory_store.add_memory(MemoryRecord(type="web_page", content="fox"))
    await memory_store.add_memory(MemoryRecord(type="web_page", content="dog"))
    await memory_store.add_memory(MemoryRecord(type="query", content="cat"))

    stats = await memory_store.get_stats()

    assert stats.total_memories == 3
    assert stats.type_stats == {"web_page": 2, "query": 1}


@pytest.mark.asyncio
async def test_concurrent_additions_can_lose_a_durable_write():
    # init writes the session id, then A's snapshot lands late and overwrites B's
    storage = DelayedStorage([0, 0.05, 0])
    store = MemoryStore(storage, _service(storage))
    await store.init()

    a, b = await asyncio.gather(
        store.add_memory(MemoryRecord(content="fox")),
        store.add_memory(MemoryRecord(content="dog")),
    )

    assert {m.id for m in store.list_memories()} == {a.id, b.id}
    assert [m["id"] for m in storage.data[MEMORIES_KEY]] == [a.id]


@pytest.mark.asyncio
async def test_type_filter_keeps_only_matching_memories_at_zero_min_score(memory_store):
    await memory_store.add_memory(MemoryRecord(type="web_page", content="The quick brown fox"))
    await memory_store.add_memory(MemoryRecord(type="query", content="pasta recipe"))

    results = await memory_store.search("fox", type="web_page", min_score=0)

    assert len(results) == 1
    assert results[0].type == "web_page"
    assert results[0].content == "The quick brown fox"


@pytest.mark.asyncio
async def test_store_can_be_initialized_again_after_teardown(storage):
    def client_factory() -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(
            lambda request: httpx.Response(200, json={"embedding": {"values": [1.0, 0.0, 0.0]}})
        ))

    client = client_factory()
    service = EmbeddingService(
        build_default_providers(client, {"gemini": "k"}),
        storage=storage,
        client=client,
        client_factory=client_factory,
        preferred="gemini",
        metrics=MetricsCollector(),
    )
    store = MemoryStore(storage, service)

    await store.init()
    await store.teardown()
    await store.init()
    memory = await store.add_memory(MemoryRecord(content="fox"))

    assert memory.embedding == [1.0, 0.0, 0.0]
    assert service.current_provider == "gemini"
    assert service.providers["gemini"].client is service.client
    assert not service.client.is_closed
    await store.teardown()


@pytest.mark.asyncio
async def test_teardown_leaves_an_injected_client_open(storage):
    client = httpx.AsyncClient(transport=httpx.MockTransport(
        lambda request: httpx.Response(200, json={"embedding": {"values": [0.0, 1.0]}})
    ))
    service = EmbeddingService(
        build_default_providers(client, {"gemini": "k"}),
        storage=storage,
        client=client,
        preferred="gemini",
        metrics=MetricsCollector(),
    )
    store = MemoryStore(storage, service)

    await store.init()
    await store.teardown()
    await store.init()

    assert not client.is_closed
    assert (await store.add_memory(MemoryRecord(content="fox"))).embedding == [0.0, 1.0]
    await store.teardown()
    await client.aclose()
