from typing import Dict, Any, Optional
from pydantic import BaseModel, Field


class QueryRequest(BaseModel):
    """Body of POST /api/v1/agent/query"""
    query: str = Field(description="Natural language request")
    context: Dict[str, Any] = Field(default_factory=dict, description="current_url, recent_searches, tab_id")


class SearchRequest(BaseModel):
    """Body of POST /api/v1/memories/search"""
    query: str
    limit: int = Field(10, ge=1, le=100)
    type: Optional[str] = None
    min_score: Optional[float] = Field(None, ge=-1.0, le=1.0)


class ErrorResponse(BaseModel):
    success: bool = False
    error: str


class SettingsUpdated(BaseModel):
    success: bool = True
    provider: str


class HealthResponse(BaseModel):
    status: str
    memories: int
    embedding_provider: Optional[str] = None
