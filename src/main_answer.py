# src/main_answer.py

from __future__ import annotations
import sys

from hybrid_graph_rag.graph_store import NetworkXGraphStore
from hybrid_graph_rag.logging_utils import setup_logging
from hybrid_graph_rag.service import GraphRAGService


def main():
    """
    Answer one question against the configured graph:
    - entities stored in the local graph form the candidate pool
    - the first key entity seeds the multi-hop traversal
    """
    setup_logging()
    question = " ".join(sys.argv[1:]).strip()
    if not question:
        print("usage: python src/main_answer.py <question>")
        sys.exit(2)

    service = GraphRAGService()
    entities = []
    if isinstance(service.executor, NetworkXGraphStore):
        entities = [e for e in service.executor.entities() if e.embedding is not None]

    try:
        result = service.answer(question, entities=entities)
    finally:
        service.close()

    if not result.ok:
        print(f"Failed [{result.error.error_code}]: {result.reason}")
        sys.exit(1)

    answer = result.value
    print(answer.main_answer)
    print()
    print(f"- Confidence   : {answer.confidence:.2f}")
    print(f"- Sources used : {answer.source_count}")
    print(f"- Answer type  : {answer.answer_type}")
    if answer.key_points:
        print("- Key points:")
        for point in answer.key_points:
            print(f"  - {point}")


if __name__ == "__main__":
    main()
