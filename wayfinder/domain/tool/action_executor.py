from abc import ABC, abstractmethod
from typing import Dict, Any, List, Optional
from urllib.parse import urlparse

import structlog
from pydantic import BaseModel, Field

from wayfinder.domain.context.memory.memory_store import MemoryStore
from wayfinder.domain.errors import WayfinderError
from wayfinder.domain.models.plan import HighlightOptions, SearchOptions
from wayfinder.domain.tool.navigation import wait_until

logger = structlog.get_logger(__name__)


class ActionOutcome(BaseModel):
    """Result of one browser-facing action; failures are values, not exceptions"""
    success: bool
    action: str
    results: List[Dict[str, Any]] = Field(default_factory=list)
    count: int = 0
    tab_id: Optional[int] = None
    url: Optional[str] = None
    created: bool = False
    highlighted: bool = False
    error: Optional[str] = None


class ActionExecutor(ABC):
    """Side-effecting collaborator the plan executor dispatches steps to"""

    @abstractmethod
    async def execute_search(self, query: str, options: Optional[SearchOptions] = None) -> ActionOutcome:
        pass

    @abstractmethod
    async def execute_navigation(self, url: str, highlight_text: Optional[str] = None) -> ActionOutcome:
        pass

    @abstractmethod
    async def execute_highlight(self, tab_id: Optional[int], text: str, options: Optional[HighlightOptions] = None) -> ActionOutcome:
        pass


class TabInfo(BaseModel):
    id: int
    url: str
    status: str = "loading"

    @property
    def is_ready(self) -> bool:
        return self.status == "complete"


class BrowserController(ABC):
    """Host tab lifecycle; implemented by the browser integration"""

    @abstractmethod
    async def query_tabs(self) -> List[TabInfo]:
        pass

    @abstractmethod
    async def activate_tab(self, tab_id: int) -> TabInfo:
        pass

    @abstractmethod
    async def create_tab(self, url: str) -> TabInfo:
        pass

    @abstractmethod
    async def get_tab(self, tab_id: int) -> TabInfo:
        pass

    @abstractmethod
    async def highlight_text(self, tab_id: int, text: str, options: HighlightOptions) -> int:
        """Highlight occurrences of text and return how many were marked"""
        pass


def to_search_result(hit) -> Dict[str, Any]:
    """Flatten a ScoredMemory into the search-result shape steps consume"""

    metadata = hit.metadata
    url = metadata.get("url")
    return {
        "id": hit.id,
        "url": url,
        "title": metadata.get("title") or (urlparse(url).hostname if url else None) or "Untitled",
        "snippet": hit.content[:200] + ("..." if len(hit.content) > 200 else ""),
        "score": hit.score,
        "timestamp": metadata.get("timestamp"),
        "match_type": hit.match_type,
    }


class BrowserActionExecutor(ActionExecutor):
    """Searches the memory store and drives tabs through a BrowserController"""

    def __init__(
        self,
        memory_store: MemoryStore,
        browser: BrowserController,
        search_min_score: float = 0.3,
        navigation_timeout: float = 10.0,
        poll_interval: float = 0.5
    ):
        self.memory_store = memory_store
        self.browser = browser
        self.search_min_score = search_min_score
        self.navigation_timeout = navigation_timeout
        self.poll_interval = poll_interval

    async def execute_search(self, query: str, options: Optional[SearchOptions] = None) -> ActionOutcome:
        options = options or SearchOptions()
        min_score = self.search_min_score if options.min_score is None else options.min_score

        try:
            hits = await self.memory_store.search(query, limit=options.limit, type=options.type, min_score=min_score)
        except WayfinderError as e:
            logger.warning("Search action failed", query=query, error=str(e))
            return ActionOutcome(success=False, action="search", error=str(e))

        results = [to_search_result(hit) for hit in hits]
        return ActionOutcome(success=True, action="search", results=results, count=len(results))

    async def execute_navigation(self, url: str, highlight_text: Optional[str] = None) -> ActionOutcome:
        try:
            tabs = await self.browser.query_tabs()
            existing = next((tab for tab in tabs if tab.url == url), None)
            if existing is not None:
                tab = await self.browser.activate_tab(existing.id)
            else:
                tab = await self.browser.create_tab(url)

            await self._wait_for_tab(tab.id)

            highlighted = False
            if highlight_text:
                count = await self.browser.highlight_text(tab.id, highlight_text, HighlightOptions(style="search"))
                highlighted = count > 0
        except Exception as e:
            logger.warning("Navigation action failed", url=url, error=str(e))
            return ActionOutcome(success=False, action="navigation", url=url, error=str(e))

        return ActionOutcome(
            success=True,
            action="navigation",
            tab_id=tab.id,
            url=url,
            created=existing is None,
            highlighted=highlighted,
        )

    async def _wait_for_tab(self, tab_id: int) -> TabInfo:
        async def check() -> Optional[TabInfo]:
            tab = await self.browser.get_tab(tab_id)
            return tab if tab.is_ready else None

        return await wait_until(
            check,
            timeout=self.navigation_timeout,
            interval=self.poll_interval,
            description=f"tab {tab_id} to load",
        )

    async def execute_highlight(self, tab_id: Optional[int], text: str, options: Optional[HighlightOptions] = None) -> ActionOutcome:
        if tab_id is None:
            return ActionOutcome(success=False, action="highlight", error="no tab to highlight in")

        try:
            count = await self.browser.highlight_text(tab_id, text, options or HighlightOptions())
        except Exception as e:
            logger.warning("Highlight action failed", tab_id=tab_id, error=str(e))
            return ActionOutcome(success=False, action="highlight", tab_id=tab_id, error=str(e))

        return ActionOutcome(success=True, action="highlight", tab_id=tab_id, count=count)
