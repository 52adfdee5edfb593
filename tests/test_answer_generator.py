"""Tests for prompt selection, post-processing and AnswerGenerator fallbacks."""

import pytest

from conftest import FakeEmbeddingProvider, FakeTextGenerator
from hybrid_graph_rag import answer_generator
from hybrid_graph_rag.answer_generator import (
    COMPARATIVE_TEMPLATE,
    CONCEPTUAL_TEMPLATE,
    FACTUAL_TEMPLATE,
    INSUFFICIENT_INFORMATION_MESSAGE,
    PARTIAL_ANSWER_PREFIX,
    AnswerGenerator,
    extract_key_points,
    post_process,
    select_template,
)
from hybrid_graph_rag.cache import InMemoryTTLCache
from hybrid_graph_rag.context_fusion import ContextFusioner
from hybrid_graph_rag.embeddings import EmbeddingGateway
from hybrid_graph_rag.schemas import (
    AnswerType,
    Complexity,
    ContextSegment,
    Entity,
    FusedContext,
    QueryAnalysis,
    QueryType,
    SourceType,
)

QUESTION = "What is machine learning?"


def make_context(text: str = "Related Document Content:\n- Machine learning learns from data.", relevance: float = 0.9) -> FusedContext:
    segments = [ContextSegment(text, SourceType.DOCUMENT, relevance)] if text else []
    return FusedContext(
        context_text=text,
        segments=segments,
        overall_relevance=relevance if text else 0.0,
        segments_by_type={SourceType.DOCUMENT: segments} if segments else {},
    )


def make_analysis(**kwargs) -> QueryAnalysis:
    kwargs.setdefault("query_type", QueryType.CONCEPTUAL)
    return QueryAnalysis(original_query=QUESTION, **kwargs)


class TestTemplates:
    def test_selection(self) -> None:
        assert select_template(QueryType.FACTUAL) is FACTUAL_TEMPLATE
        assert select_template(QueryType.COMPARATIVE) is COMPARATIVE_TEMPLATE
        assert select_template(QueryType.OTHER) is CONCEPTUAL_TEMPLATE

    def test_templates_take_context_and_question(self) -> None:
        assert set(FACTUAL_TEMPLATE.input_variables) == {"context", "question"}
        assert set(answer_generator.CONVERSATIONAL_TEMPLATE.input_variables) == {"context", "question", "history"}


class TestPostProcess:
    def test_short_keeps_first_sentence(self) -> None:
        assert post_process("Paris. It is in France!", AnswerType.SHORT) == "Paris."

    def test_list_numbers_paragraphs(self) -> None:
        assert post_process("Alpha\n\nBeta\n\nGamma", AnswerType.LIST) == "1. Alpha\n2. Beta\n3. Gamma"

    def test_list_left_alone_when_already_a_list(self) -> None:
        answer = "- Alpha\n- Beta"
        assert post_process(answer, AnswerType.LIST) == answer

    def test_list_single_paragraph_unchanged(self) -> None:
        assert post_process("Just one paragraph", AnswerType.LIST) == "Just one paragraph"

    def test_comparison_header(self) -> None:
        assert post_process("A is faster.", AnswerType.COMPARISON) == "Comparative Analysis:\nA is faster."
        assert post_process("Differences: A is faster.", AnswerType.COMPARISON) == "Differences: A is faster."

    def test_detailed_only_trims(self) -> None:
        assert post_process("  text \n", AnswerType.DETAILED) == "text"

    def test_key_points(self) -> None:
        answer = "Short. This sentence is long enough. So is this one here! And a third long one? Fourth long sentence."
        assert extract_key_points(answer) == [
            "This sentence is long enough",
            "So is this one here",
            "And a third long one",
        ]


class TestGenerate:
    def test_uses_selected_template(self) -> None:
        generator = FakeTextGenerator(["Machine learning is learning from data."])
        answer = AnswerGenerator(generator).generate(QUESTION, make_context(), make_analysis(query_type=QueryType.FACTUAL))

        assert answer == "Machine learning is learning from data."
        assert "answer the user's factual question" in generator.prompts[0]
        assert "User Question: What is machine learning?" in generator.prompts[0]

    def test_empty_context_skips_llm(self) -> None:
        generator = FakeTextGenerator(["unused"])
        answer = AnswerGenerator(generator).generate(QUESTION, make_context(""), make_analysis())
        assert answer == INSUFFICIENT_INFORMATION_MESSAGE
        assert generator.prompts == []

    def test_llm_failure_returns_partial_answer(self) -> None:
        """A failing LLM with context in hand returns the context excerpt, not an exception."""
        generator = FakeTextGenerator(error=ConnectionError("model unavailable"))
        answer = AnswerGenerator(generator).generate(QUESTION, make_context("x" * 800), make_analysis())

        assert answer.startswith(PARTIAL_ANSWER_PREFIX)
        assert "x" * 500 in answer
        assert "x" * 501 not in answer
        assert answer.endswith("It's recommended to consult additional sources.")

    def test_cache_hit_skips_llm(self) -> None:
        generator = FakeTextGenerator(["first", "second"])
        generator_under_test = AnswerGenerator(generator, cache=InMemoryTTLCache())
        context, analysis = make_context(), make_analysis()

        assert generator_under_test.generate(QUESTION, context, analysis) == "first"
        assert generator_under_test.generate(QUESTION, context, analysis) == "first"
        assert len(generator.prompts) == 1


class TestConversationalAndExplanatory:
    def test_history_defaults_to_none(self) -> None:
        generator = FakeTextGenerator(["reply"])
        answer = AnswerGenerator(generator).generate_conversational(QUESTION, make_context(), make_analysis())
        assert answer == "reply"
        assert "Conversation History:\nNone" in generator.prompts[0]

    def test_history_is_rendered(self) -> None:
        generator = FakeTextGenerator(["reply"])
        AnswerGenerator(generator).generate_conversational(
            QUESTION, make_context(), make_analysis(), history="User: hi"
        )
        assert "User: hi" in generator.prompts[0]

    def test_conversational_failure_falls_back(self) -> None:
        generator = FakeTextGenerator(error=TimeoutError("slow"))
        answer = AnswerGenerator(generator).generate_conversational(QUESTION, make_context(), make_analysis())
        assert answer.startswith(PARTIAL_ANSWER_PREFIX)
        assert len(generator.prompts) == 2

    def test_explanatory(self) -> None:
        generator = FakeTextGenerator(["explained"])
        assert AnswerGenerator(generator).generate_explanatory(QUESTION, make_context(), make_analysis()) == "explained"
        assert "4. Practical applications or examples" in generator.prompts[0]


class TestStructured:
    @pytest.mark.parametrize(
        "complexity,expected",
        [(Complexity.SIMPLE, 0.9), (Complexity.MEDIUM, 0.72), (Complexity.COMPLEX, 0.54)],
    )
    def test_confidence_scales_with_complexity(self, complexity, expected) -> None:
        generator = FakeTextGenerator(["Machine learning lets programs learn from data."])
        structured = AnswerGenerator(generator).generate_structured(
            QUESTION, make_context(), make_analysis(complexity=complexity)
        )
        assert structured.confidence == pytest.approx(expected)
        assert structured.source_count == 1
        assert structured.answer_type == "detailed"
        assert structured.key_points == ["Machine learning lets programs learn from data"]

    def test_empty_context(self) -> None:
        structured = AnswerGenerator(FakeTextGenerator()).generate_structured(QUESTION, make_context(""), make_analysis())
        assert structured.main_answer == INSUFFICIENT_INFORMATION_MESSAGE
        assert structured.confidence == 0.0
        assert structured.source_count == 0

    def test_unexpected_error_returns_fixed_fallback(self, monkeypatch) -> None:
        def explode(answer):
            raise RuntimeError("boom")

        monkeypatch.setattr(answer_generator, "extract_key_points", explode)
        structured = AnswerGenerator(FakeTextGenerator(["ok"])).generate_structured(
            QUESTION, make_context(), make_analysis()
        )
        assert structured == AnswerGenerator.fallback_structured()
        assert structured.answer_type == "error"
        assert structured.confidence == 0.1

    def test_confidence_never_negative(self) -> None:
        """An entity pointing away from the query fuses to a negative relevance; confidence stays at 0."""
        provider = FakeEmbeddingProvider({QUESTION: [1.0, 0.0, 0.0]})
        entity = Entity(id="e", name="Opposite", type="T", description="unrelated", embedding=[-1.0, 0.0, 0.0])
        context = ContextFusioner(EmbeddingGateway(provider)).fuse([], [entity], [], QUESTION)
        assert context.overall_relevance == pytest.approx(-1.0)

        structured = AnswerGenerator(FakeTextGenerator(["An answer."])).generate_structured(
            QUESTION, context, make_analysis(complexity=Complexity.SIMPLE)
        )
        assert structured.confidence == 0.0
