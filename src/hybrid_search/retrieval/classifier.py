"""Heuristic query analysis for fusion strategy selection.

Produces a ``QueryAnalysis`` from the query text alone:
- Query type from intent keywords (compare, summarize, why, predict...)
- Key entities from quoted phrases, capitalized words, acronyms and years
- Complexity (1-5) from length, clause count and intent
- Structural content types the answer likely needs (table, list, text)

Callers with a better classifier (e.g. an LLM) can pass their own
``QueryAnalysis`` to the engine instead.
"""

import re
from dataclasses import dataclass

from hybrid_search.retrieval.types import QueryAnalysis, QueryType


@dataclass
class QueryFeatures:
    """Features extracted from a query for analysis."""

    length: int
    word_count: int
    clause_count: int
    is_question: bool
    has_numbers: bool


class QueryAnalyzer:
    """Regex-based query analyzer.

    Example:
        >>> analysis = QueryAnalyzer().analyze("Compare rainfall in Kerala and Goa")
        >>> analysis.query_type
        <QueryType.COMPARATIVE: 'COMPARATIVE'>
    """

    COMPARATIVE_PATTERN = re.compile(
        r"\b(compare|comparison|compared|versus|vs\.?|difference between|differ|better than"
        r"|worse than|higher than|lower than)\b",
        re.IGNORECASE,
    )
    SYNTHETIC_PATTERN = re.compile(
        r"\b(summari[sz]e|summary|overview|combine|all (?:the )?\w+ (?:of|in|about)"
        r"|comprehensive|list all)\b",
        re.IGNORECASE,
    )
    ANALYTICAL_PATTERN = re.compile(
        r"\b(why|analy[sz]e|analysis|explain|impact|cause[sd]?|effect|trend|relationship"
        r"|correlat\w*)\b",
        re.IGNORECASE,
    )
    INFERENTIAL_PATTERN = re.compile(
        r"\b(predict|likely|would|could|infer|implication|implies|suggests?|expect)\b",
        re.IGNORECASE,
    )
    QUESTION_PATTERN = re.compile(
        r"^(what|how|why|when|where|who|which|can|does|is|are)\b",
        re.IGNORECASE,
    )
    QUOTED_PATTERN = re.compile(r'"([^"]+)"')
    CAPITALIZED_PATTERN = re.compile(r"\b[A-Z][\w-]*(?:\s+[A-Z][\w-]*)*")
    ACRONYM_PATTERN = re.compile(r"\b[A-Z]{2,}\b")
    YEAR_PATTERN = re.compile(r"\b(1[89]\d\d|20\d\d)\b")
    NUMBER_PATTERN = re.compile(r"\d")
    CLAUSE_PATTERN = re.compile(r",|;|\band\b|\bor\b|\bbut\b", re.IGNORECASE)
    TABLE_PATTERN = re.compile(
        r"\b(table|statistics|stats|data|figures|percent(?:age)?|rate|number of|how many"
        r"|how much|total|average)\b|%",
        re.IGNORECASE,
    )
    LIST_PATTERN = re.compile(r"\b(list|steps|types of|kinds of|examples of)\b", re.IGNORECASE)

    STOP_ENTITIES = frozenset(
        {
            "what", "how", "why", "when", "where", "who", "which", "can", "does", "is",
            "are", "the", "a", "an", "compare", "explain", "list", "show", "tell", "give",
            "summarize", "summarise", "i", "in", "of",
        }
    )

    def extract_features(self, query: str) -> QueryFeatures:
        """Extract surface features from a query."""
        words = query.split()
        return QueryFeatures(
            length=len(query),
            word_count=len(words),
            clause_count=1 + len(self.CLAUSE_PATTERN.findall(query)),
            is_question=bool(self.QUESTION_PATTERN.search(query.strip())),
            has_numbers=bool(self.NUMBER_PATTERN.search(query)),
        )

    def classify_type(self, query: str) -> QueryType:
        """Pick the query type from intent keywords, first match wins."""
        if self.COMPARATIVE_PATTERN.search(query):
            return QueryType.COMPARATIVE
        if self.SYNTHETIC_PATTERN.search(query):
            return QueryType.SYNTHETIC
        if self.ANALYTICAL_PATTERN.search(query):
            return QueryType.ANALYTICAL
        if self.INFERENTIAL_PATTERN.search(query):
            return QueryType.INFERENTIAL
        return QueryType.FACTUAL

    def extract_entities(self, query: str) -> list[str]:
        """Extract likely entity names, deduplicated in order of appearance."""
        candidates: list[str] = list(self.QUOTED_PATTERN.findall(query))
        candidates.extend(self.ACRONYM_PATTERN.findall(query))
        candidates.extend(self.YEAR_PATTERN.findall(query))

        for match in self.CAPITALIZED_PATTERN.finditer(query):
            words = [w for w in match.group(0).split() if w.lower() not in self.STOP_ENTITIES]
            if words:
                candidates.append(" ".join(words))

        entities: list[str] = []
        seen: set[str] = set()
        for candidate in candidates:
            key = candidate.lower()
            if key not in seen and key not in self.STOP_ENTITIES:
                seen.add(key)
                entities.append(candidate)
        return entities

    def score_complexity(self, features: QueryFeatures, query_type: QueryType) -> int:
        """Complexity from 1 to 5.

        Scoring:
        - Word count > 8: +1; > 16: +1 more
        - More than one clause: +1
        - Analytical, inferential or synthetic intent: +1
        """
        complexity = 1
        if features.word_count > 8:
            complexity += 1
        if features.word_count > 16:
            complexity += 1
        if features.clause_count > 1:
            complexity += 1
        if query_type in (QueryType.ANALYTICAL, QueryType.INFERENTIAL, QueryType.SYNTHETIC):
            complexity += 1
        return min(complexity, 5)

    def analyze(self, query: str) -> QueryAnalysis:
        """Analyze a query.

        Args:
            query: Query text.

        Returns:
            QueryAnalysis used to select the fusion strategy.
        """
        features = self.extract_features(query)
        query_type = self.classify_type(query)
        entities = self.extract_entities(query)
        complexity = self.score_complexity(features, query_type)

        data_types = ["text"]
        if self.TABLE_PATTERN.search(query) or features.has_numbers:
            data_types.append("table")
        if self.LIST_PATTERN.search(query):
            data_types.append("list")

        requires_cross_reference = (
            query_type in (QueryType.COMPARATIVE, QueryType.SYNTHETIC) or len(entities) > 1
        )
        suggested_k = min(20, 6 + 2 * (complexity - 1) + (4 if requires_cross_reference else 0))

        return QueryAnalysis(
            query_type=query_type,
            complexity=complexity,
            key_entities=entities,
            requires_cross_reference=requires_cross_reference,
            data_types_needed=data_types,
            suggested_k=suggested_k,
        )
