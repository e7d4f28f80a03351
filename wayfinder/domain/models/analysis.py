from typing import Dict, Any, List, Optional
from pydantic import BaseModel, Field
from datetime import datetime
from enum import Enum

from wayfinder.domain.models.memory import utc_now


class Urgency(str, Enum):
    HIGH = "high"
    NORMAL = "normal"


class Complexity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class Entity(BaseModel):
    """Entity found in a query: url, exact_phrase or number"""
    type: str
    value: str


class QueryPerception(BaseModel):
    """Result of perceiving the raw query text"""
    query: str
    intent: str = "unknown"
    entities: List[Entity] = Field(default_factory=list)
    keywords: List[str] = Field(default_factory=list)
    urgency: Urgency = Urgency.NORMAL
    page_context: Optional[Dict[str, Any]] = None
    timestamp: datetime = Field(default_factory=utc_now)


class RequestAnalysis(BaseModel):
    """Planner input: the classified request"""
    query: str
    intent: str = "information"
    entities: List[Entity] = Field(default_factory=list)
    keywords: List[str] = Field(default_factory=list)
    urgency: Urgency = Urgency.NORMAL
    complexity: Complexity = Complexity.MEDIUM
    content_type: Optional[str] = None
    context: Dict[str, Any] = Field(default_factory=dict)
    confidence: float = 0.5
