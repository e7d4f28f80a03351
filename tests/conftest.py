import asyncio
import copy
from typing import Any, Dict, Iterable, List, Optional

import pytest

from wayfinder.domain.context.memory.memory_store import MemoryStore
from wayfinder.domain.context.memory.storage import InMemoryStorage, KeyValueStorage
from wayfinder.domain.embedding.embedding_service import EmbeddingService
from wayfinder.domain.embedding.providers import EmbeddingProvider
from wayfinder.domain.errors import PersistenceError, ProviderError
from wayfinder.domain.models.plan import HighlightOptions, SearchOptions
from wayfinder.domain.tool.action_executor import ActionExecutor, ActionOutcome, BrowserController, TabInfo
from wayfinder.infrastructure.observability.logging import MetricsCollector

VOCABULARY = [
    "fox", "dog", "quick", "brown", "python", "asyncio", "recipe", "pasta",
    "tutorial", "guide", "vector", "memory", "search", "browser", "cat", "rust",
]


def keyword_vector(text: str) -> List[float]:
    """Bag of words over a fixed vocabulary"""
    words = [w.strip(".,!?\"'").lower() for w in text.split()]
    return [float(words.count(term)) for term in VOCABULARY]


class KeywordProvider(EmbeddingProvider):
    """Deterministic provider whose vectors overlap exactly when texts share vocabulary words"""

    name = "keyword"

    def __init__(self, name: str = "keyword", fail: bool = False):
        super().__init__(api_key="test")
        self.name = name
        self.fail = fail
        self.calls: List[str] = []

    async def embed(self, text: str) -> List[float]:
        self.calls.append(text)
        if self.fail:
            raise ProviderError(self.name, "simulated outage")
        return keyword_vector(text)


class FixedProvider(EmbeddingProvider):
    """Returns the same vector for every input"""

    def __init__(self, name: str, vector: List[float], fail: bool = False, max_input_bytes: Optional[int] = None, chunk_bytes: Optional[int] = None):
        super().__init__(api_key="test")
        self.name = name
        self.vector = vector
        self.fail = fail
        self.max_input_bytes = max_input_bytes
        self.chunk_bytes = chunk_bytes
        self.calls: List[str] = []

    async def embed(self, text: str) -> List[float]:
        self.calls.append(text)
        if self.fail:
            raise ProviderError(self.name, "simulated outage")
        return list(self.vector)


class FailingStorage(InMemoryStorage):
    """Reads work, writes fail once armed"""

    def __init__(self):
        super().__init__()
        self.fail_writes = False

    async def set(self, items: Dict[str, Any]) -> None:
        if self.fail_writes:
            raise PersistenceError("disk full")
        await super().set(items)


class DelayedStorage(KeyValueStorage):
    """Captures each snapshot when set() is called and lands it after a per-call delay"""

    def __init__(self, delays: List[float]):
        self.data: Dict[str, Any] = {}
        self.delays = list(delays)

    async def get(self, keys: Iterable[str]) -> Dict[str, Any]:
        return {key: copy.deepcopy(self.data[key]) for key in keys if key in self.data}

    async def set(self, items: Dict[str, Any]) -> None:
        snapshot = copy.deepcopy(items)
        delay = self.delays.pop(0) if self.delays else 0
        await asyncio.sleep(delay)
        self.data.update(snapshot)


class FakeBrowser(BrowserController):
    """Tabs become ready after a fixed number of status polls"""

    def __init__(self, polls_until_ready: int = 0, highlight_count: int = 2, fail_create: bool = False):
        self.tabs: Dict[int, TabInfo] = {}
        self.polls: Dict[int, int] = {}
        self.polls_until_ready = polls_until_ready
        self.highlight_count = highlight_count
        self.fail_create = fail_create
        self.highlights: List[Dict[str, Any]] = []
        self.activated: List[int] = []
        self._next_id = 1

    def add_tab(self, url: str) -> TabInfo:
        tab = TabInfo(id=self._next_id, url=url, status="complete")
        self.tabs[tab.id] = tab
        self.polls[tab.id] = self.polls_until_ready
        self._next_id += 1
        return tab

    async def query_tabs(self) -> List[TabInfo]:
        return list(self.tabs.values())

    async def activate_tab(self, tab_id: int) -> TabInfo:
        self.activated.append(tab_id)
        return self.tabs[tab_id]

    async def create_tab(self, url: str) -> TabInfo:
        if self.fail_create:
            raise RuntimeError("tab limit reached")
        tab = TabInfo(id=self._next_id, url=url, status="loading")
        self.tabs[tab.id] = tab
        self.polls[tab.id] = 0
        self._next_id += 1
        return tab

    async def get_tab(self, tab_id: int) -> TabInfo:
        self.polls[tab_id] += 1
        tab = self.tabs[tab_id]
        if self.polls[tab_id] > self.polls_until_ready:
            tab = tab.model_copy(update={"status": "complete"})
            self.tabs[tab_id] = tab
        return tab

    async def highlight_text(self, tab_id: int, text: str, options: HighlightOptions) -> int:
        self.highlights.append({"tab_id": tab_id, "text": text, "style": options.style})
        return self.highlight_count


class ScriptedActions(ActionExecutor):
    """Action collaborator returning queued outcomes and recording every call"""

    def __init__(self):
        self.calls: List[tuple] = []
        self.search_outcomes: List[ActionOutcome] = []
        self.navigation_outcomes: List[ActionOutcome] = []
        self.highlight_outcomes: List[ActionOutcome] = []

    @staticmethod
    def _next(queue: List[ActionOutcome], default: ActionOutcome) -> ActionOutcome:
        if not queue:
            return default
        return queue.pop(0) if len(queue) > 1 else queue[0]

    async def execute_search(self, query: str, options: Optional[SearchOptions] = None) -> ActionOutcome:
        self.calls.append(("search", query))
        return self._next(self.search_outcomes, ActionOutcome(success=True, action="search"))

    async def execute_navigation(self, url: str, highlight_text: Optional[str] = None) -> ActionOutcome:
        self.calls.append(("navigation", url))
        return self._next(self.navigation_outcomes, ActionOutcome(success=True, action="navigation", tab_id=7, url=url))

    async def execute_highlight(self, tab_id: Optional[int], text: str, options: Optional[HighlightOptions] = None) -> ActionOutcome:
        self.calls.append(("highlight", tab_id, text))
        return self._next(self.highlight_outcomes, ActionOutcome(success=True, action="highlight", tab_id=tab_id, count=1))


@pytest.fixture
def storage():
    return InMemoryStorage()


@pytest.fixture
def keyword_provider():
    return KeywordProvider()


@pytest.fixture
def embedding_service(storage, keyword_provider):
    return EmbeddingService([keyword_provider], storage=storage, metrics=MetricsCollector())


@pytest.fixture
async def memory_store(storage, embedding_service):
    store = MemoryStore(storage, embedding_service)
    await store.init()
    yield store
    await store.teardown()


@pytest.fixture
def browser():
    return FakeBrowser()


@pytest.fixture
def scripted_actions():
    return ScriptedActions()
