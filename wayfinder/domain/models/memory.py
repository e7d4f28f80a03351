from typing import Dict, Any, List, Optional, Set
from pydantic import BaseModel, ConfigDict, Field
from datetime import datetime, timezone
import secrets
import time

_BASE36 = "0123456789abcdefghijklmnopqrstuvwxyz"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _to_base36(value: int) -> str:
    if value == 0:
        return "0"
    digits = []
    while value:
        value, remainder = divmod(value, 36)
        digits.append(_BASE36[remainder])
    return "".join(reversed(digits))


def generate_id() -> str:
    """Base-36 millisecond timestamp followed by a random base-36 suffix"""
    return _to_base36(int(time.time() * 1000)) + _to_base36(secrets.randbits(52))


class MemoryRecord(BaseModel):
    """Input for MemoryStore.add_memory"""
    type: str = Field(default="general", description="Memory type, e.g. web_page, query, search_result")
    content: str = Field(description="Text that gets embedded")
    metadata: Dict[str, Any] = Field(default_factory=dict)
    tags: Set[str] = Field(default_factory=set)


class Memory(BaseModel):
    """A stored content unit with its embedding; never mutated after creation"""
    model_config = ConfigDict(frozen=True)

    id: str = Field(description="Unique memory identifier")
    type: str = Field(default="general")
    content: str
    metadata: Dict[str, Any] = Field(default_factory=dict)
    tags: Set[str] = Field(default_factory=set)
    embedding: Optional[List[float]] = Field(None, description="Embedding vector, None if never computed")
    created_at: datetime = Field(default_factory=utc_now)

    def to_snapshot(self) -> Dict[str, Any]:
        """Serialize for the durable snapshot; the vector lives in the embeddings list"""
        data = self.model_dump(mode="json", exclude={"embedding"})
        data["tags"] = sorted(self.tags)
        return data


class ScoredMemory(BaseModel):
    """Search hit: a memory plus its similarity to the query"""
    memory: Memory
    score: float
    match_type: str = "cosine"

    @property
    def id(self) -> str:
        return self.memory.id

    @property
    def type(self) -> str:
        return self.memory.type

    @property
    def content(self) -> str:
        return self.memory.content

    @property
    def metadata(self) -> Dict[str, Any]:
        return self.memory.metadata

    def to_public(self) -> Dict[str, Any]:
        data = self.memory.model_dump(mode="json", exclude={"embedding"})
        data["tags"] = sorted(self.memory.tags)
        data["score"] = self.score
        data["match_type"] = self.match_type
        return data


class MemoryStats(BaseModel):
    """Aggregate counts over the collection"""
    total_memories: int
    type_stats: Dict[str, int] = Field(default_factory=dict)
    last_updated: datetime = Field(default_factory=utc_now)


class Chunk(BaseModel):
    """Bounded text segment of an oversized document; never persisted"""
    id: str
    text: str
    metadata: Dict[str, Any] = Field(default_factory=dict)


class PageContent(BaseModel):
    """Normalized page delivered by the content-extraction collaborator"""
    url: str
    title: str = ""
    content: str = ""
    chunks: List[Chunk] = Field(default_factory=list)
    metadata: Dict[str, Any] = Field(default_factory=dict)


class EmbeddingSettings(BaseModel):
    """Provider settings persisted under the embeddingSettings key"""
    provider: str = "gemini"
    api_key: str = ""
    model: Optional[str] = None
    dimensions: Optional[int] = None


class MemorySearchResponse(BaseModel):
    """Direct memory search result as returned to callers"""
    success: bool
    query: str
    results: List[Dict[str, Any]] = Field(default_factory=list)
    count: int = 0
    error: Optional[str] = None
    timestamp: datetime = Field(default_factory=utc_now)
