import pytest

from tests.conftest import KeywordProvider
from wayfinder.domain.context.context_retriever import MemoryRetriever
from wayfinder.domain.context.execution_history import ExecutionHistory
from wayfinder.domain.context.memory.memory_store import MemoryStore
from wayfinder.domain.context.page_indexer import PageIndexer
from wayfinder.domain.embedding.embedding_service import EmbeddingService
from wayfinder.domain.models.memory import MemoryRecord, PageContent
from wayfinder.domain.models.plan import QueryOutcome
from wayfinder.infrastructure.observability.logging import MetricsCollector

LONG_TEXT = "A practical python asyncio tutorial that walks through tasks, events and queues. " * 3


@pytest.mark.asyncio
async def test_page_becomes_a_web_page_memory(memory_store):
    indexer = PageIndexer(memory_store)

    outcome = await indexer.index_page(PageContent(
        url="https://docs.example.com/asyncio",
        title="Asyncio tutorial",
        content=LONG_TEXT,
        metadata={"lang": "en"},
    ))

    assert outcome.indexed
    memory = memory_store.get(outcome.memory_id)
    assert memory.type == "web_page"
    assert memory.tags == {"web_page"}
    assert memory.metadata["url"] == "https://docs.example.com/asyncio"
    assert memory.metadata["title"] == "Asyncio tutorial"
    assert memory.metadata["lang"] == "en"


@pytest.mark.asyncio
@pytest.mark.parametrize("url, reason", [
    ("chrome://settings", "invalid_protocol"),
    ("about:blank", "invalid_protocol"),
    ("file:///home/user/notes.txt", "invalid_protocol"),
    ("https://mail.google.com/mail/u/0", "excluded_site"),
    ("https://www.facebook.com/feed", "excluded_site"),
    ("https://login.example.com/", "excluded_site"),
])
async def test_private_and_internal_pages_are_skipped(memory_store, url, reason):
    outcome = await PageIndexer(memory_store).index_page(PageContent(url=url, content=LONG_TEXT))

    assert not outcome.indexed
    assert outcome.reason == reason
    assert len(memory_store) == 0


@pytest.mark.asyncio
async def test_short_pages_are_skipped(memory_store):
    outcome = await PageIndexer(memory_store).index_page(
        PageContent(url="https://example.com/empty", content="   tiny   ")
    )

    assert outcome.reason == "content_too_short"


@pytest.mark.asyncio
async def test_retriever_returns_only_relevant_web_pages(memory_store):
    await memory_store.add_memory(MemoryRecord(type="web_page", content="python asyncio tutorial"))
    await memory_store.add_memory(MemoryRecord(type="query", content="python asyncio tutorial"))
    await memory_store.add_memory(MemoryRecord(type="web_page", content="pasta recipe"))

    retriever = MemoryRetriever(memory_store)
    hits = await retriever.retrieve_relevant_memories("asyncio tutorial")

    assert [hit.type for hit in hits] == ["web_page"]
    assert hits[0].content == "python asyncio tutorial"


@pytest.mark.asyncio
async def test_retriever_swallows_embedding_failures(storage):
    service = EmbeddingService([KeywordProvider(fail=True)], storage=storage, metrics=MetricsCollector())
    store = MemoryStore(storage, service)
    await store.init()

    assert await MemoryRetriever(store).retrieve_relevant_memories("anything") == []


@pytest.mark.asyncio
async def test_retriever_on_uninitialized_store_returns_nothing(storage, embedding_service):
    store = MemoryStore(storage, embedding_service)

    assert await MemoryRetriever(store).retrieve_relevant_memories("fox") == []


def test_history_is_bounded_and_counts_successes():
    history = ExecutionHistory(max_entries=3)
    for index in range(5):
        history.add(QueryOutcome(success=index % 2 == 0, query=f"q{index}"))

    assert len(history) == 3
    assert [entry.query for entry in history.get_history()] == ["q2", "q3", "q4"]
    assert [entry.query for entry in history.get_history(limit=2)] == ["q3", "q4"]
    assert history.successful == 2
    assert history.last.query == "q4"

    history.clear()
    assert history.total == 0
    assert history.last is None
    assert history.get_history() == []
