from typing import List

import structlog

from wayfinder.domain.context.memory.memory_store import MemoryStore
from wayfinder.domain.errors import WayfinderError
from wayfinder.domain.models.memory import ScoredMemory

logger = structlog.get_logger(__name__)


class MemoryRetriever:
    """Retrieves stored pages relevant to a query for planning"""

    def __init__(self, memory_store: MemoryStore, memory_type: str = "web_page", limit: int = 10, min_score: float = 0.3):
        self.memory_store = memory_store
        self.memory_type = memory_type
        self.limit = limit
        self.min_score = min_score

    async def retrieve_relevant_memories(self, query: str) -> List[ScoredMemory]:
        """Search memory; a failed search yields no memories instead of an error"""

        try:
            memories = await self.memory_store.search(
                query,
                limit=self.limit,
                type=self.memory_type,
                min_score=self.min_score,
            )
        except WayfinderError as e:
            logger.warning("Memory retrieval failed", query=query, error=str(e))
            return []

        logger.debug("Memories retrieved", query=query, count=len(memories))
        return memories
