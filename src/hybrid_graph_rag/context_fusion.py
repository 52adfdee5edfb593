from __future__ import annotations
from typing import Dict, List, Optional, Sequence
import logging
import re

from .embeddings import EmbeddingGateway
from .schemas import (
    ContextSegment,
    Document,
    Entity,
    FusedContext,
    Relation,
    SourceType,
    Vector,
)

logger = logging.getLogger(__name__)

MIN_PARAGRAPH_CHARS = 50
MAX_PARAGRAPHS_PER_DOCUMENT = 3

# header, max segments rendered
SECTIONS = [
    (SourceType.DOCUMENT, "Related Document Content:", 5),
    (SourceType.ENTITY, "Related Entities:", 10),
    (SourceType.RELATION, "Related Relations:", 15),
]

_WORD = re.compile(r"\w+")


def query_keywords(query: str) -> List[str]:
    return list(dict.fromkeys(_WORD.findall(query.lower())))


def key_paragraphs(content: str, keywords: Sequence[str], limit: int = MAX_PARAGRAPHS_PER_DOCUMENT):
    """Paragraphs (blank-line separated) with the most keyword occurrences; short ones are dropped."""
    paragraphs = [p.strip() for p in re.split(r"\n\s*\n", content or "")]
    paragraphs = [p for p in paragraphs if len(p) >= MIN_PARAGRAPH_CHARS]

    def occurrences(paragraph: str):
        lowered = paragraph.lower()
        return sum(lowered.count(k) for k in keywords)

    return sorted(paragraphs, key=occurrences, reverse=True)[:limit]


def keyword_overlap(text: str, keywords: Sequence[str]) -> float:
    if not keywords:
        return 0.0
    lowered = text.lower()
    return sum(1 for k in keywords if k in lowered) / len(keywords)


def entity_text(entity: Entity):
    text = f"{entity.name} ({entity.type})"
    if entity.description and entity.description.strip():
        text += f": {entity.description}"
    return text


def relation_text(relation: Relation):
    text = f"{relation.source} {relation.type} {relation.target}"
    if relation.description and relation.description.strip():
        text += f" ({relation.description})"
    return text


class ContextFusioner:
    def __init__(self, embeddings: EmbeddingGateway):
        self.embeddings = embeddings

    def fuse(
        self,
        documents: Sequence[Document],
        entities: Sequence[Entity],
        relations: Sequence[Relation],
        query: str,
        query_vector: Optional[Vector] = None,
    ) -> FusedContext:
        logger.debug(
            "Fusing context, documents: %d, entities: %d, relations: %d",
            len(documents), len(entities), len(relations),
        )
        needs_vector = any(d.embedding is not None for d in documents) or any(
            e.embedding is not None for e in entities
        )
        if needs_vector and query_vector is None:
            query_vector = self.embeddings.embed(query)
        keywords = query_keywords(query)

        segments: List[ContextSegment] = []
        segments.extend(self._document_segments(documents, keywords, query_vector))
        segments.extend(self._entity_segments(entities, query_vector))
        segments.extend(self._relation_segments(relations, keywords))

        ranked = sorted(self.deduplicate(segments), key=lambda s: s.relevance_score, reverse=True)
        return self._build(ranked)

    def _document_segments(self, documents, keywords, query_vector):
        for doc in documents:
            if doc.embedding is None:
                continue
            score = self.embeddings.cosine(query_vector, doc.embedding)
            for paragraph in key_paragraphs(doc.content, keywords):
                yield ContextSegment(
                    content=paragraph,
                    source_type=SourceType.DOCUMENT,
                    relevance_score=score,
                    metadata={"document_id": doc.id, "title": doc.title, "source": doc.source},
                )

    def _entity_segments(self, entities, query_vector):
        for entity in entities:
            if entity.embedding is None:
                continue
            yield ContextSegment(
                content=entity_text(entity),
                source_type=SourceType.ENTITY,
                relevance_score=self.embeddings.cosine(query_vector, entity.embedding),
                metadata={"entity_id": entity.id, "name": entity.name, "type": entity.type},
            )

    def _relation_segments(self, relations, keywords):
        for relation in relations:
            text = relation_text(relation)
            yield ContextSegment(
                content=text,
                source_type=SourceType.RELATION,
                relevance_score=keyword_overlap(text, keywords),
                metadata=relation._asdict(),
            )

    @staticmethod
    def deduplicate(segments: Sequence[ContextSegment]) -> List[ContextSegment]:
        """Collapse segments with the same lowercase-trimmed content, keeping the higher score."""
        unique: Dict[str, ContextSegment] = {}
        for segment in segments:
            key = segment.content.strip().lower()
            existing = unique.get(key)
            if existing is None or segment.relevance_score > existing.relevance_score:
                unique[key] = segment
        return list(unique.values())

    @staticmethod
    def _build(segments: List[ContextSegment]) -> FusedContext:
        by_type: Dict[SourceType, List[ContextSegment]] = {}
        for segment in segments:
            by_type.setdefault(segment.source_type, []).append(segment)

        blocks = []
        for source_type, header, limit in SECTIONS:
            group = by_type.get(source_type)
            if not group:
                continue
            lines = [header] + [f"- {s.content}" for s in group[:limit]]
            blocks.append("\n".join(lines))
        context_text = "\n\n".join(blocks)

        overall = sum(s.relevance_score for s in segments) / len(segments) if segments else 0.0
        logger.info("Context fusion completed, segments: %d, overall relevance: %.3f", len(segments), overall)
        return FusedContext(
            context_text=context_text,
            segments=segments,
            overall_relevance=overall,
            segments_by_type=by_type,
        )
