from typing import List, Optional, Sequence
from urllib.parse import urlparse

import structlog
from pydantic import BaseModel

from wayfinder.domain.context.memory.memory_store import MemoryStore
from wayfinder.domain.models.memory import MemoryRecord, PageContent

logger = structlog.get_logger(__name__)

INVALID_SCHEMES = ("chrome", "chrome-extension", "moz-extension", "about", "file")

EXCLUDED_PATTERNS = (
    "mail.google.com", "web.whatsapp.com", "facebook.com", "instagram.com", "twitter.com",
    "accounts.google.com", "login.", ".login.", "signin.", ".signin.", "gmail.com", "outlook.com",
)


class IndexOutcome(BaseModel):
    """Whether a page became a web_page memory, and why not if it did not"""
    indexed: bool
    memory_id: Optional[str] = None
    url: str
    reason: Optional[str] = None


class PageIndexer:
    """Turns extracted page content into web_page memories"""

    def __init__(
        self,
        memory_store: MemoryStore,
        min_content_length: int = 100,
        excluded_patterns: Sequence[str] = EXCLUDED_PATTERNS
    ):
        self.memory_store = memory_store
        self.min_content_length = min_content_length
        self.excluded_patterns: List[str] = list(excluded_patterns)

    def skip_reason(self, page: PageContent) -> Optional[str]:
        """Reason the page must not be indexed, or None"""

        parsed = urlparse(page.url)
        if parsed.scheme.lower() in INVALID_SCHEMES:
            return "invalid_protocol"

        host = (parsed.hostname or "").lower()
        href = page.url.lower()
        if any(pattern in host or pattern in href for pattern in self.excluded_patterns):
            return "excluded_site"

        if len(page.content.strip()) < self.min_content_length:
            return "content_too_short"

        return None

    async def index_page(self, page: PageContent) -> IndexOutcome:
        reason = self.skip_reason(page)
        if reason:
            logger.info("Page skipped", url=page.url, reason=reason)
            return IndexOutcome(indexed=False, url=page.url, reason=reason)

        metadata = dict(page.metadata)
        metadata.update({"url": page.url, "title": page.title})

        memory = await self.memory_store.add_memory(
            MemoryRecord(
                type="web_page",
                content=page.content,
                metadata=metadata,
                tags={"web_page"},
            )
        )

        logger.info("Page indexed", url=page.url, memory_id=memory.id, content_length=len(page.content))
        return IndexOutcome(indexed=True, memory_id=memory.id, url=page.url)
