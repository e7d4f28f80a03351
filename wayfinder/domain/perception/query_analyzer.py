from typing import Dict, Any, List, Optional, Sequence
import re

import structlog

from wayfinder.domain.models.analysis import Entity, QueryPerception, Urgency

logger = structlog.get_logger(__name__)

URL_PATTERN = re.compile(r"https?://\S+")
QUOTED_PATTERN = re.compile(r'"([^"]+)"')

QUERY_STOP_WORDS = frozenset({
    "the", "a", "an", "and", "or", "but", "in", "on", "at", "to", "for",
    "of", "with", "by", "from", "up", "about", "into", "through", "during",
    "is", "are", "was", "were", "be", "been", "i", "you", "he", "she",
    "it", "we", "they", "what", "where", "when", "why", "how",
})

URGENT_WORDS = ("urgent", "asap", "immediately", "now", "emergency", "critical")


def contains_term(text: str, term: str) -> bool:
    """Whole-word (or whole-phrase) match, case already folded by the caller"""
    return re.search(r"\b" + re.escape(term) + r"\b", text) is not None


def contains_any(text: str, terms: Sequence[str]) -> bool:
    return any(contains_term(text, term) for term in terms)


def extract_keywords(query: str, stop_words: frozenset, limit: int = 10) -> List[str]:
    words = [w for w in query.lower().split() if len(w) > 2 and w not in stop_words]
    return words[:limit]


def extract_urls_and_phrases(query: str) -> List[Entity]:
    entities = [Entity(type="url", value=url) for url in URL_PATTERN.findall(query)]
    entities.extend(Entity(type="exact_phrase", value=phrase) for phrase in QUOTED_PATTERN.findall(query))
    return entities


class QueryAnalyzer:
    """First pipeline stage: classifies the raw query text"""

    def determine_intent(self, query: str) -> str:
        lower = query.lower()

        if lower.startswith("how to") or contains_term(lower, "tutorial"):
            return "instructional"
        if contains_any(lower, ("buy", "price", "shop")):
            return "shopping"
        if contains_any(lower, ("what is", "define")):
            return "definition"
        if contains_any(lower, ("compare", "vs")):
            return "comparison"
        if contains_any(lower, ("find", "search")):
            return "search"
        return "information"

    def assess_urgency(self, query: str) -> Urgency:
        return Urgency.HIGH if contains_any(query.lower(), URGENT_WORDS) else Urgency.NORMAL

    async def analyze_query(self, query: str, page_context: Optional[Dict[str, Any]] = None) -> QueryPerception:
        perception = QueryPerception(
            query=query,
            intent=self.determine_intent(query),
            entities=extract_urls_and_phrases(query),
            keywords=extract_keywords(query, QUERY_STOP_WORDS),
            urgency=self.assess_urgency(query),
            page_context=page_context,
        )
        logger.debug("Query perceived", intent=perception.intent, urgency=perception.urgency.value)
        return perception
