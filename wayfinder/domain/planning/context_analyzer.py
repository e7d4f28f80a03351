from typing import Dict, Any, List, Optional
import re

from wayfinder.domain.models.analysis import Complexity, Entity, QueryPerception, RequestAnalysis, Urgency
from wayfinder.domain.models.memory import ScoredMemory, utc_now
from wayfinder.domain.perception.query_analyzer import contains_any, extract_keywords, extract_urls_and_phrases

NUMBER_PATTERN = re.compile(r"\b\d+(?:\.\d+)?\b")

PLANNING_STOP_WORDS = frozenset({
    "the", "a", "an", "and", "or", "but", "in", "on", "at", "to", "for",
    "of", "with", "by", "from", "is", "are", "was", "were", "be", "been",
})

URGENT_WORDS = ("urgent", "asap", "immediately", "now", "emergency", "quick")
QUESTION_WORDS = ("why", "how", "what", "when", "where", "who")

# Checked in order; the first rule that matches decides the intent
INTENT_RULES = (
    ("learning", ("how to", "tutorial")),
    ("search", ("find", "search", "look for")),
    ("comparison", ("compare", "vs", "difference")),
    ("definition", ("what is", "define", "explain")),
    ("location", ("where", "locate")),
    ("shopping", ("buy", "price", "shop")),
)

CONTENT_TYPE_RULES = (
    ("video", ("video", "youtube")),
    ("image", ("image", "photo")),
    ("document", ("document", "pdf")),
    ("article", ("article", "blog")),
    ("tutorial", ("tutorial", "guide")),
)


class ContextAnalyzer:
    """Keyword-rule classifier producing the planner's RequestAnalysis"""

    async def analyze_request(
        self,
        query: str,
        perception: Optional[QueryPerception] = None,
        memories: Optional[List[ScoredMemory]] = None,
        context: Optional[Dict[str, Any]] = None
    ) -> RequestAnalysis:
        context = context or {}

        entities = self.extract_entities(query)
        keywords = extract_keywords(query, PLANNING_STOP_WORDS)
        complexity = self.assess_complexity(query, entities)

        analysis = RequestAnalysis(
            query=query,
            intent=self.extract_intent(query),
            entities=entities,
            keywords=keywords,
            urgency=self.assess_urgency(query),
            complexity=complexity,
            content_type=self.determine_content_type(query),
            context={
                "current_url": context.get("current_url", ""),
                "recent_searches": context.get("recent_searches", []),
                "time_of_day": utc_now().hour,
                "relevant_memories": len(memories or []),
            },
        )
        analysis.confidence = self.calculate_confidence(analysis)
        return analysis

    def extract_intent(self, query: str) -> str:
        lower = query.lower()
        for intent, terms in INTENT_RULES:
            if contains_any(lower, terms):
                return intent
        return "information"

    def extract_entities(self, query: str) -> List[Entity]:
        entities = extract_urls_and_phrases(query)
        entities.extend(Entity(type="number", value=number) for number in NUMBER_PATTERN.findall(query))
        return entities

    def assess_urgency(self, query: str) -> Urgency:
        return Urgency.HIGH if contains_any(query.lower(), URGENT_WORDS) else Urgency.NORMAL

    def assess_complexity(self, query: str, entities: List[Entity]) -> Complexity:
        score = 1
        if len(query) > 50:
            score += 1
        if len(query) > 100:
            score += 1
        if len(entities) > 3:
            score += 1
        if contains_any(query.lower(), QUESTION_WORDS):
            score += 1

        if score >= 4:
            return Complexity.HIGH
        if score >= 3:
            return Complexity.MEDIUM
        return Complexity.LOW

    def determine_content_type(self, query: str) -> Optional[str]:
        lower = query.lower()
        for content_type, terms in CONTENT_TYPE_RULES:
            if contains_any(lower, terms):
                return content_type
        return None

    def calculate_confidence(self, analysis: RequestAnalysis) -> float:
        confidence = 0.5
        confidence += min(len(analysis.entities) * 0.1, 0.3)
        confidence += min(len(analysis.keywords) * 0.05, 0.2)

        if analysis.complexity == Complexity.LOW:
            confidence += 0.1
        elif analysis.complexity == Complexity.HIGH:
            confidence -= 0.1

        return min(max(confidence, 0.1), 1.0)
