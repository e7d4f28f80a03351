from typing import Dict, Any, List, Optional
from collections import Counter
import time

import structlog

from wayfinder.domain.context.memory.storage import KeyValueStorage
from wayfinder.domain.context.similarity import cosine_similarity, rank
from wayfinder.domain.embedding.embedding_service import EmbeddingService
from wayfinder.domain.errors import PersistenceError, StoreNotInitializedError
from wayfinder.domain.models.memory import Memory, MemoryRecord, MemoryStats, ScoredMemory, generate_id
from wayfinder.infrastructure.observability.logging import agent_logger, metrics

logger = structlog.get_logger(__name__)

MEMORIES_KEY = "memories"
EMBEDDINGS_KEY = "embeddings"
SESSION_KEY = "sessionId"


class MemoryStore:
    """Embedded memories with exact cosine search over a linear scan

    The whole collection is written to storage as one snapshot after every
    addition. There is no lock around add_memory: two concurrent additions can
    land their snapshots out of order, and the later-landing older snapshot then
    drops the other addition from durable storage (it stays in memory).
    """

    def __init__(self, storage: KeyValueStorage, embedding_service: EmbeddingService, default_min_score: float = 0.12):
        self.storage = storage
        self.embedding_service = embedding_service
        self.default_min_score = default_min_score

        self.memories: List[Memory] = []
        self.session_id: Optional[str] = None
        self._initialized = False

    @property
    def is_initialized(self) -> bool:
        return self._initialized

    async def init(self) -> None:
        """Load the snapshot from storage; a second call is a no-op"""

        if self._initialized:
            return

        try:
            stored = await self.storage.get([MEMORIES_KEY, EMBEDDINGS_KEY, SESSION_KEY])
        except PersistenceError:
            raise
        except Exception as e:
            raise PersistenceError(f"Failed to load memory snapshot: {e}") from e

        vectors = {
            entry["id"]: entry.get("embedding")
            for entry in stored.get(EMBEDDINGS_KEY, [])
            if isinstance(entry, dict) and "id" in entry
        }

        self.memories = []
        for raw in stored.get(MEMORIES_KEY, []):
            data = dict(raw)
            data["embedding"] = vectors.get(data.get("id"), data.get("embedding"))
            self.memories.append(Memory.model_validate(data))

        self.session_id = stored.get(SESSION_KEY)
        if not self.session_id:
            self.session_id = generate_id()
            await self._write({SESSION_KEY: self.session_id})

        self.embedding_service.open()
        await self.embedding_service.load_settings()

        self._initialized = True
        logger.info(
            "Memory store initialized",
            memories=len(self.memories),
            embeddings=len(vectors),
            session_id=self.session_id
        )

    async def teardown(self) -> None:
        """Drop in-memory state and release the embedding client"""

        self.memories = []
        self._initialized = False
        await self.embedding_service.close()
        logger.info("Memory store torn down")

    def _require_init(self) -> None:
        if not self._initialized:
            raise StoreNotInitializedError("MemoryStore.init() has not been called")

    async def add_memory(self, record: MemoryRecord) -> Memory:
        """Embed and append a memory, then write the full snapshot"""

        self._require_init()

        embedding = await self.embedding_service.embed(record.content)

        metadata = dict(record.metadata)
        metadata["timestamp"] = int(time.time() * 1000)
        metadata["session_id"] = self.session_id

        memory = Memory(
            id=generate_id(),
            type=record.type,
            content=record.content,
            metadata=metadata,
            tags=set(record.tags),
            embedding=embedding,
        )
        self.memories.append(memory)

        await self._write(self._snapshot())

        agent_logger.log_memory_update(memory.type, "added", {"id": memory.id, "dimensions": len(embedding)})
        metrics.set_gauge("memory.total", len(self.memories))
        return memory

    def _snapshot(self) -> Dict[str, Any]:
        return {
            MEMORIES_KEY: [memory.to_snapshot() for memory in self.memories],
            EMBEDDINGS_KEY: [
                {"id": memory.id, "embedding": list(memory.embedding)}
                for memory in self.memories
                if memory.embedding is not None
            ],
        }

    async def _write(self, items: Dict[str, Any]) -> None:
        try:
            await self.storage.set(items)
        except PersistenceError:
            raise
        except Exception as e:
            raise PersistenceError(f"Failed to save memory snapshot: {e}") from e

    async def search(
        self,
        query: str,
        limit: int = 10,
        type: Optional[str] = None,
        min_score: Optional[float] = None
    ) -> List[ScoredMemory]:
        """Rank memories by cosine similarity to the query

        Memories of another type, without an embedding, or whose dimension
        differs from the query vector are skipped. Embedding failures propagate.
        """

        self._require_init()
        min_score = self.default_min_score if min_score is None else min_score

        start = time.perf_counter()
        query_vector = await self.embedding_service.embed(query)

        scored = []
        skipped = 0
        for memory in self.memories:
            if type and memory.type != type:
                continue
            if memory.embedding is None or len(memory.embedding) != len(query_vector):
                skipped += 1
                continue
            scored.append((memory, cosine_similarity(query_vector, memory.embedding)))

        ranked = rank(scored, min_score, limit)
        results = [ScoredMemory(memory=memory, score=score) for memory, score in ranked]

        metrics.record_latency("search", (time.perf_counter() - start) * 1000)
        logger.debug(
            "Memory search",
            query=query,
            dimensions=len(query_vector),
            candidates=len(scored),
            skipped=skipped,
            results=len(results)
        )
        return results

    async def get_stats(self) -> MemoryStats:
        self._require_init()
        return MemoryStats(
            total_memories=len(self.memories),
            type_stats=dict(Counter(memory.type for memory in self.memories)),
        )

    def get(self, memory_id: str) -> Optional[Memory]:
        for memory in self.memories:
            if memory.id == memory_id:
                return memory
        return None

    def list_memories(self, type: Optional[str] = None) -> List[Memory]:
        return [memory for memory in self.memories if type is None or memory.type == type]

    def __len__(self) -> int:
        return len(self.memories)
