from __future__ import annotations
from textwrap import dedent
from typing import Dict, List, Optional
import logging
import re

from langchain_core.prompts import PromptTemplate

from .embeddings import EmbeddingGateway
from .errors import GraphRAGError
from .llm import TextGenerator
from .schemas import AnswerType, Complexity, QueryAnalysis, QueryType

logger = logging.getLogger(__name__)

MAX_EXPANDED_QUERIES = 10

QUERY_ANALYSIS_PROMPT = PromptTemplate.from_template(
    dedent(
        """
        Please analyze the following user query and extract key information:

        Query: {query}

        Please output in the following format:

        Query Type: [Factual Query/Concept Explanation/Comparative Analysis/Reasoning Q&A/List Query/Others]
        Key Entities: [Entity1, Entity2, ...]
        Query Intent: [Brief description of user's query intent]
        Related Concepts: [Concept1, Concept2, ...]
        Query Complexity: [Simple/Medium/Complex]
        Expected Answer Type: [Brief Answer/Detailed Explanation/List/Comparison Table/Others]

        Note: Please ensure the extracted information is accurate and useful.
        """
    ).strip()
)

# LLM label (lowercased, prefix match) -> enum
_QUERY_TYPE_LABELS = [
    ("factual", QueryType.FACTUAL),
    ("concept", QueryType.CONCEPTUAL),
    ("compar", QueryType.COMPARATIVE),
    ("reasoning", QueryType.REASONING),
    ("list", QueryType.LIST),
]
_COMPLEXITY_LABELS = [
    ("simple", Complexity.SIMPLE),
    ("medium", Complexity.MEDIUM),
    ("complex", Complexity.COMPLEX),
]
_ANSWER_TYPE_LABELS = [
    ("brief", AnswerType.SHORT),
    ("short", AnswerType.SHORT),
    ("detailed", AnswerType.DETAILED),
    ("list", AnswerType.LIST),
    ("compar", AnswerType.COMPARISON),
    ("other", AnswerType.OTHER),
]

QUERY_PATTERNS: Dict[str, re.Pattern] = {
    "question_word": re.compile(r"\b(what|how|why|which|who|when|where)\b"),
    "definition": re.compile(r"\b(is|define|definition|meaning|concept)\b"),
    "comparison": re.compile(r"\b(compare|contrast|difference|similarity|different|same)\b"),
    "list": re.compile(r"\b(list|enumerate|what are|include|types)\b"),
    "causal": re.compile(r"\b(cause|lead to|impact|result|effect)\b"),
    "process": re.compile(r"\b(steps|process|procedure|method|how to)\b"),
}

COMPARATIVE_CUES = re.compile(
    r"\b(compare|contrast|difference|similarity|same|different|pros and cons|vs|versus|and|with)\b"
)

_YEAR = re.compile(r"\b(19\d{2}|20\d{2})\b")
_MONTH = re.compile(
    r"\b(january|february|march|april|may|june|july|august|september|october|november|december)\b"
)
_DAY = re.compile(r"\b(\d{1,2})(?:st|nd|rd|th)\b|\b(\d{1,2})\s+days?\b")
_RELATIVE = re.compile(r"\b(today|yesterday|tomorrow|recent|recently|now|current|past|future|latest)\b")

_CAPITALIZED_RUN = re.compile(r"\b[A-Z][a-z]+(?:\s+[A-Z][a-z]+)*\b")


def _extract_field(text: str, field_name: str):
    match = re.search(re.escape(field_name) + r":[ \t]*([^\n]*)", text)
    if match:
        value = match.group(1).strip().strip("[]").strip()
        return value or None
    return None


def _parse_list(value: Optional[str]):
    if not value:
        return []
    return [item.strip() for item in value.split(",") if item.strip()]


def _match_label(value: Optional[str], labels, default):
    if not value:
        return default
    lowered = value.lower()
    for prefix, member in labels:
        if prefix in lowered:
            return member
    return default


def detect_patterns(query: str) -> List[str]:
    lowered = query.lower()
    return [name for name, regex in QUERY_PATTERNS.items() if regex.search(lowered)]


def extract_temporal_info(query: str) -> Dict[str, str]:
    lowered = query.lower()
    info: Dict[str, str] = {}
    year = _YEAR.search(lowered)
    if year:
        info["year"] = year.group(1)
    month = _MONTH.search(lowered)
    if month:
        info["month"] = month.group(1)
    day = _DAY.search(lowered)
    if day:
        info["day"] = day.group(1) or day.group(2)
    relative = _RELATIVE.search(lowered)
    if relative:
        info["relative"] = relative.group(1)
    return info


def detect_comparative(query: str) -> bool:
    return COMPARATIVE_CUES.search(query.lower()) is not None


def extract_simple_entities(query: str) -> List[str]:
    """Capitalised word runs, e.g. "Neural Networks" or "Python"."""
    return _CAPITALIZED_RUN.findall(query)


def generate_expanded_queries(analysis: QueryAnalysis) -> List[str]:
    expanded: List[str] = []
    original = analysis.original_query

    for entity in analysis.key_entities:
        expanded.append(f"definition of {entity}")
        expanded.append(f"characteristics of {entity}")
        expanded.append(f"applications of {entity}")

    joined_entities = " and ".join(analysis.key_entities)
    for concept in analysis.related_concepts:
        if joined_entities:
            expanded.append(f"relationship between {concept} and {joined_entities}")
        else:
            expanded.append(f"relationship of {concept}")

    if analysis.query_type is QueryType.CONCEPTUAL:
        expanded.append(f"detailed explanation of {original}")
        expanded.append(f"examples of {original}")
    elif analysis.query_type is QueryType.COMPARATIVE:
        expanded.append(f"advantages and disadvantages of {original}")
        expanded.append(f"similarities in {original}")
    elif analysis.query_type is QueryType.REASONING:
        expanded.append(f"reasons for {original}")
        expanded.append(f"impacts of {original}")

    return list(dict.fromkeys(expanded))[:MAX_EXPANDED_QUERIES]


class QueryAnalyzer:
    """
    Classifies a question and prepares retrieval inputs.
    Never raises: any failure in the LLM step yields the heuristic fallback.
    """

    def __init__(self, generator: TextGenerator, embeddings: EmbeddingGateway):
        self.generator = generator
        self.embeddings = embeddings

    def analyze(self, question: str) -> QueryAnalysis:
        logger.debug("Analyzing query: %s", question)
        try:
            prompt = QUERY_ANALYSIS_PROMPT.format(query=question)
            response = self.generator.generate(prompt)
            analysis = self._parse(response, question)
        except Exception as e:
            logger.warning("Query analysis failed, using fallback: %s", e)
            return self._fallback(question)

        self._enhance(analysis)
        logger.info(
            "Query analysis completed, type: %s, complexity: %s",
            analysis.query_type.value,
            analysis.complexity.value,
        )
        return analysis

    def _parse(self, response: str, question: str):
        if not isinstance(response, str):
            raise TypeError(f"expected text from generator, got {type(response).__name__}")
        return QueryAnalysis(
            original_query=question,
            query_type=_match_label(_extract_field(response, "Query Type"), _QUERY_TYPE_LABELS, QueryType.OTHER),
            key_entities=_parse_list(_extract_field(response, "Key Entities")),
            intent=_extract_field(response, "Query Intent") or "unknown intent",
            related_concepts=_parse_list(_extract_field(response, "Related Concepts")),
            complexity=_match_label(_extract_field(response, "Query Complexity"), _COMPLEXITY_LABELS, Complexity.MEDIUM),
            expected_answer_type=_match_label(
                _extract_field(response, "Expected Answer Type"), _ANSWER_TYPE_LABELS, AnswerType.DETAILED
            ),
        )

    def _enhance(self, analysis: QueryAnalysis):
        query = analysis.original_query
        analysis.patterns = detect_patterns(query)
        analysis.temporal_info = extract_temporal_info(query)
        analysis.comparative = detect_comparative(query)
        try:
            analysis.query_vector = self.embeddings.embed(query)
        except GraphRAGError as e:
            # retrieval embeds the query again and fails hard there
            logger.debug("Query embedding unavailable during analysis: %s", e)
            analysis.query_vector = None
        analysis.expanded_queries = generate_expanded_queries(analysis)

    def _fallback(self, question: str):
        return QueryAnalysis(
            original_query=question,
            query_type=QueryType.OTHER,
            key_entities=extract_simple_entities(question),
            intent="general query",
            complexity=Complexity.MEDIUM,
            expected_answer_type=AnswerType.DETAILED,
            patterns=["general"],
        )
