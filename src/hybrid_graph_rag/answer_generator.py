from __future__ import annotations
from textwrap import dedent
from typing import Dict, List, Optional
import logging
import re

from langchain_core.prompts import PromptTemplate

from .cache import Cache
from .llm import TextGenerator
from .schemas import AnswerType, Complexity, FusedContext, QueryAnalysis, QueryType, StructuredAnswer

logger = logging.getLogger(__name__)

INSUFFICIENT_INFORMATION_MESSAGE = (
    "Sorry, I couldn't find enough relevant information to answer your question. "
    "Please try rephrasing your question or provide more context."
)
PARTIAL_ANSWER_PREFIX = "Based on available information, I'll try to answer your question:\n\n"
PARTIAL_ANSWER_SUFFIX = (
    "\n\nPlease note that this answer may be incomplete. "
    "It's recommended to consult additional sources."
)
PARTIAL_CONTEXT_CHARS = 500
COMPARISON_HEADER = "Comparative Analysis:"
MAX_KEY_POINTS = 3
MIN_KEY_POINT_CHARS = 10

COMPLEXITY_FACTORS = {
    Complexity.SIMPLE: 1.0,
    Complexity.MEDIUM: 0.8,
    Complexity.COMPLEX: 0.6,
}
DEFAULT_COMPLEXITY_FACTOR = 0.8


def _template(body: str) -> PromptTemplate:
    return PromptTemplate.from_template(dedent(body).strip())


FACTUAL_TEMPLATE = _template(
    """
    Based on the following context, answer the user's factual question. Please provide accurate and concise answers.

    Context:
    {context}

    User Question: {question}

    Please answer directly, and if the context is insufficient, please clearly state so.

    Answer:
    """
)

CONCEPTUAL_TEMPLATE = _template(
    """
    Based on the following context, explain the relevant concepts in detail. Please provide comprehensive and easy-to-understand explanations.

    Context:
    {context}

    User Question: {question}

    Please provide detailed concept explanations, including definition, characteristics and applications.

    Answer:
    """
)

COMPARATIVE_TEMPLATE = _template(
    """
    Based on the following context, conduct a comparative analysis. Please compare from multiple dimensions.

    Context:
    {context}

    User Question: {question}

    Please provide structured comparative analysis, including similarities, differences, pros and cons.

    Answer:
    """
)

REASONING_TEMPLATE = _template(
    """
    Based on the following context, conduct reasoning analysis. Please provide clear logical reasoning process.

    Context:
    {context}

    User Question: {question}

    Please provide reasoning process and conclusions with rigorous logic.

    Answer:
    """
)

LIST_TEMPLATE = _template(
    """
    Based on the following context, provide answer in list format.

    Context:
    {context}

    User Question: {question}

    Please organize the answer in a clear list format.

    Answer:
    """
)

CONVERSATIONAL_TEMPLATE = _template(
    """
    Based on the following conversation history and context, answer the user's question. Please maintain conversation coherence.

    Conversation History:
    {history}

    Context:
    {context}

    Current Question: {question}

    Please provide a coherent and relevant answer.

    Answer:
    """
)

EXPLANATORY_TEMPLATE = _template(
    """
    Please explain the following question in detail, providing comprehensive background information and in-depth analysis.

    Context:
    {context}

    Question: {question}

    Please provide:
    1. Basic concept explanation
    2. Related background information
    3. Detailed analysis
    4. Practical applications or examples

    Answer:
    """
)

TEMPLATES: Dict[QueryType, PromptTemplate] = {
    QueryType.FACTUAL: FACTUAL_TEMPLATE,
    QueryType.CONCEPTUAL: CONCEPTUAL_TEMPLATE,
    QueryType.COMPARATIVE: COMPARATIVE_TEMPLATE,
    QueryType.REASONING: REASONING_TEMPLATE,
    QueryType.LIST: LIST_TEMPLATE,
}

_SENTENCE_END = re.compile(r"[.!?]")
_LIST_MARKERS = ("1.", "•", "-")
_COMPARISON_MARKERS = ("Similarities", "Differences", "Comparison")


def select_template(query_type: QueryType) -> PromptTemplate:
    """Unknown / other query types get the conceptual template."""
    return TEMPLATES.get(query_type, CONCEPTUAL_TEMPLATE)


def extract_short_answer(answer: str):
    first = _SENTENCE_END.split(answer, maxsplit=1)[0].strip()
    return f"{first}." if first else answer


def format_as_list(answer: str):
    if any(marker in answer for marker in _LIST_MARKERS):
        return answer
    paragraphs = [p.strip() for p in answer.split("\n\n") if p.strip()]
    if len(paragraphs) < 2:
        return answer
    return "\n".join(f"{i}. {p}" for i, p in enumerate(paragraphs, start=1))


def format_as_comparison(answer: str):
    if any(marker in answer for marker in _COMPARISON_MARKERS):
        return answer
    return f"{COMPARISON_HEADER}\n{answer}"


def post_process(answer: str, expected: AnswerType):
    answer = answer.strip()
    if expected is AnswerType.SHORT:
        return extract_short_answer(answer)
    if expected is AnswerType.LIST:
        return format_as_list(answer)
    if expected is AnswerType.COMPARISON:
        return format_as_comparison(answer)
    return answer


def fallback_answer(context: FusedContext):
    text = context.context_text
    if not text.strip():
        return INSUFFICIENT_INFORMATION_MESSAGE
    return PARTIAL_ANSWER_PREFIX + text[:PARTIAL_CONTEXT_CHARS] + PARTIAL_ANSWER_SUFFIX


def extract_key_points(answer: str) -> List[str]:
    sentences = (s.strip() for s in _SENTENCE_END.split(answer))
    return [s for s in sentences if len(s) > MIN_KEY_POINT_CHARS][:MAX_KEY_POINTS]


def confidence(context: FusedContext, analysis: QueryAnalysis):
    factor = COMPLEXITY_FACTORS.get(analysis.complexity, DEFAULT_COMPLEXITY_FACTOR)
    return max(0.0, min(1.0, context.overall_relevance * factor))


class AnswerGenerator:
    def __init__(self, generator: TextGenerator, cache: Optional[Cache] = None, cache_ttl: float = 3600):
        self.generator = generator
        self.cache = cache
        self.cache_ttl = cache_ttl

    def _complete(self, name: str, template: PromptTemplate, question: str, context: FusedContext, **extra):
        key = f"answer:{name}:{question}:{context.context_text}:{sorted(extra.items())}"
        if self.cache is not None:
            cached = self.cache.get(key)
            if cached is not None:
                return cached
        answer = self.generator.generate(
            template.format(question=question, context=context.context_text, **extra)
        )
        if self.cache is not None:
            self.cache.put(key, answer, self.cache_ttl)
        return answer

    def generate(self, question: str, context: FusedContext, analysis: QueryAnalysis) -> str:
        logger.debug("Generating answer, query type: %s", analysis.query_type.value)
        if not context.context_text.strip():
            logger.info("No context to answer from, returning fallback")
            return INSUFFICIENT_INFORMATION_MESSAGE
        try:
            raw = self._complete(analysis.query_type.value, select_template(analysis.query_type), question, context)
            answer = post_process(raw, analysis.expected_answer_type)
        except Exception as e:
            logger.error("Answer generation failed: %s", e)
            return fallback_answer(context)
        logger.info("Answer generation completed, length: %d", len(answer))
        return answer

    def generate_conversational(
        self,
        question: str,
        context: FusedContext,
        analysis: QueryAnalysis,
        history: Optional[str] = None,
    ) -> str:
        logger.debug("Generating conversational answer")
        try:
            return self._complete(
                "conversational", CONVERSATIONAL_TEMPLATE, question, context, history=history or "None"
            )
        except Exception as e:
            logger.error("Conversational answer generation failed: %s", e)
            return self.generate(question, context, analysis)

    def generate_explanatory(self, question: str, context: FusedContext, analysis: QueryAnalysis) -> str:
        logger.debug("Generating explanatory answer")
        try:
            return self._complete("explanatory", EXPLANATORY_TEMPLATE, question, context)
        except Exception as e:
            logger.error("Explanatory answer generation failed: %s", e)
            return self.generate(question, context, analysis)

    def generate_structured(
        self, question: str, context: FusedContext, analysis: QueryAnalysis
    ) -> StructuredAnswer:
        logger.debug("Generating structured answer")
        try:
            main_answer = self.generate(question, context, analysis)
            return StructuredAnswer(
                main_answer=main_answer,
                confidence=confidence(context, analysis),
                source_count=len(context.segments),
                answer_type=analysis.expected_answer_type.value,
                key_points=extract_key_points(main_answer),
            )
        except Exception as e:
            logger.error("Structured answer generation failed: %s", e)
            return self.fallback_structured()

    @staticmethod
    def fallback_structured():
        return StructuredAnswer(
            main_answer="Sorry, unable to generate a satisfactory answer.",
            confidence=0.1,
            source_count=0,
            answer_type="error",
            key_points=["Insufficient information"],
        )
