"""
Intent-aware re-ranking

Adjusts raw similarity scores with multiplicative boosts chosen by the
query's understanding, then applies a stable descending sort. Boosts only
touch ``adjusted_score``; the underlying hit and its similarity are kept.
"""
from typing import Dict, Iterable, List
from loguru import logger

from knowledge_rag.models import Complexity, QueryUnderstanding, ScoredChunk, SearchHit
from knowledge_rag.text_analysis import has_numeric_data, has_ranking_potential


SORTED_PRICE_TABLE_BOOST = 3.0
PRICE_TABLE_BOOST = 2.0
TABLE_OR_LIST_BLOCK_BOOST = 1.5
SORTED_PRICES_MARKER_BOOST = 1.8
COMPLETE_LIST_MARKER_BOOST = 1.6
NUMERIC_BOOST = 1.4
RANKING_POTENTIAL_BOOST = 1.3
TERM_OVERLAP_STEP = 0.15
CALCULATION_BOOST = 1.25

COMPLEX_THRESHOLD_FACTOR = 0.9
CALCULATION_THRESHOLD_FACTOR = 0.85
MIN_THRESHOLD = 0.5

SORTED_PRICES_MARKERS = ("[precios ordenados", "[sorted prices")
COMPLETE_LIST_MARKERS = ("[lista completa", "[complete list")
TABLE_OR_LIST_BLOCKS = {"table", "list"}


def _has_marker(content: str, markers: Iterable[str]) -> bool:
    lowered = content.lower()
    return any(marker in lowered for marker in markers)


class Reranker:
    """Scores search hits against a query understanding"""
    
    def score(self, hit: SearchHit, similarity: float, understanding: QueryUnderstanding) -> float:
        """
        Compute the adjusted score for one hit
        
        Args:
            hit: Raw vector search hit
            similarity: Hit similarity on the 0..1 scale
            understanding: Analysis of the query being answered
            
        Returns:
            Similarity multiplied by every applicable boost
        """
        score = similarity
        content = hit.content or ""
        metadata: Dict = hit.metadata or {}
        
        if understanding.is_list_intent:
            strong_metadata_boost = False
            if metadata.get("blockType") == "price_table_sorted":
                score *= SORTED_PRICE_TABLE_BOOST
                strong_metadata_boost = True
            elif metadata.get("isPriceTable"):
                score *= PRICE_TABLE_BOOST
                strong_metadata_boost = True
            elif metadata.get("blockType") in TABLE_OR_LIST_BLOCKS:
                score *= TABLE_OR_LIST_BLOCK_BOOST
            
            if not strong_metadata_boost and _has_marker(content, SORTED_PRICES_MARKERS):
                score *= SORTED_PRICES_MARKER_BOOST
            elif _has_marker(content, COMPLETE_LIST_MARKERS):
                score *= COMPLETE_LIST_MARKER_BOOST
        
        if understanding.is_superlative and content:
            if has_numeric_data(content):
                score *= NUMERIC_BOOST
            if has_ranking_potential(content):
                score *= RANKING_POTENTIAL_BOOST
            overlap = self._term_overlap(content, understanding)
            if overlap:
                score *= 1 + TERM_OVERLAP_STEP * overlap
        
        if understanding.requires_calculation and has_numeric_data(content):
            score *= CALCULATION_BOOST
        
        return score
    
    def rerank(
        self,
        chunks: List[ScoredChunk],
        query: str,
        understanding: QueryUnderstanding,
        per_document: int = 2
    ) -> List[ScoredChunk]:
        """
        Boost, sort and diversify candidates
        
        Args:
            chunks: Deduplicated candidates; ``adjusted_score`` is recomputed
                from ``base_similarity``
            query: Query being answered
            understanding: Analysis of the query
            per_document: Leading slots per document before overflow
            
        Returns:
            New scored chunks by descending adjusted score, diversified;
            ties keep input order
        """
        scored = [
            chunk.model_copy(update={
                "adjusted_score": self.score(chunk.hit, chunk.base_similarity, understanding)
            })
            for chunk in chunks
        ]
        scored.sort(key=lambda chunk: chunk.adjusted_score, reverse=True)
        
        logger.debug(
            f"Re-ranked {len(scored)} candidates for '{query}' "
            f"(search type {understanding.search_type.value})"
        )
        return self.diversify(scored, per_document=per_document)
    
    @staticmethod
    def diversify(chunks: List[ScoredChunk], per_document: int = 2) -> List[ScoredChunk]:
        """
        Favor document variety in the leading positions
        
        The first pass keeps at most ``per_document`` chunks per document;
        the chunks it skipped follow in their original order, so nothing is
        dropped.
        """
        seen: Dict[str, int] = {}
        leading: List[ScoredChunk] = []
        overflow: List[ScoredChunk] = []
        for chunk in chunks:
            count = seen.get(chunk.document_id, 0)
            if count < per_document:
                leading.append(chunk)
                seen[chunk.document_id] = count + 1
            else:
                overflow.append(chunk)
        return leading + overflow
    
    @staticmethod
    def effective_threshold(base_threshold: float, understanding: QueryUnderstanding) -> float:
        """Relax the similarity threshold for complex or calculation queries, never below 0.5"""
        threshold = base_threshold
        if understanding.complexity is Complexity.COMPLEX:
            threshold *= COMPLEX_THRESHOLD_FACTOR
        if understanding.requires_calculation:
            threshold *= CALCULATION_THRESHOLD_FACTOR
        return max(threshold, MIN_THRESHOLD)
    
    @staticmethod
    def _term_overlap(content: str, understanding: QueryUnderstanding) -> int:
        lowered = content.lower()
        terms = {t.lower() for t in understanding.entities + understanding.modifiers if t.strip()}
        return sum(1 for term in terms if term in lowered)
