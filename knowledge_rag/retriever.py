"""
Retrieval orchestrator

Turns one user query into a weighted fan-out of semantic searches scoped to a
knowledge base, merges and re-ranks the candidates, and returns the best
chunks with excerpts ready for a chat prompt.
"""
import asyncio
import math
from typing import Dict, List, Optional, Sequence, Tuple
from loguru import logger

from knowledge_rag.config import rag_config
from knowledge_rag.exceptions import EmptyInputError, SearchError
from knowledge_rag.interfaces import EmbeddingAPI, VectorIndex
from knowledge_rag.models import (
    QueryUnderstanding,
    RankedResults,
    ScoredChunk,
    SearchHit,
    SearchResultItem,
    WeightedQuery,
)
from knowledge_rag.query_understanding import QueryUnderstandingService
from knowledge_rag.reranker import Reranker
from knowledge_rag.text_analysis import generate_excerpt


MAX_SUGGESTED_QUERIES = 2
SUGGESTED_QUERY_WEIGHTS = (0.8, 0.7)
COMPARATIVE_QUERY_WEIGHT = 0.7
MIN_CANDIDATES = 30

# (tag, weight, vocabulary by language); appended to the query subject
SUPERLATIVE_EXPANSIONS: List[Tuple[str, float, Dict[str, str]]] = [
    ("superlative_structured", 1.2, {"es": "tabla lista de precios", "en": "table price list"}),
    ("superlative_options", 1.1, {"es": "opciones modelos variedades", "en": "options models variants"}),
    ("superlative_comparative", 1.0, {"es": "comparación más menos", "en": "comparison more less"}),
    ("superlative_range", 0.9, {"es": "rango mínimo máximo desde hasta", "en": "range minimum maximum from to"}),
]
COMPARATIVE_VOCABULARY = {"es": "diferencias comparación ventajas", "en": "differences comparison advantages"}


def _vocabulary(vocabulary: Dict[str, str], language: str) -> str:
    return vocabulary.get(language) or vocabulary["es"]


class RetrievalOrchestrator:
    """
    Intent-aware semantic search over one knowledge base
    
    Features:
    - Query understanding with LLM and heuristic fallback
    - Weighted multi-query fan-out, run concurrently with a per-query deadline
    - Deduplication, intent-aware re-ranking and document diversification
    - Adaptive similarity threshold and intent-dependent result limits
    """
    
    def __init__(
        self,
        embedding_api: EmbeddingAPI,
        vector_index: VectorIndex,
        understanding_service: QueryUnderstandingService | None = None,
        reranker: Reranker | None = None,
        search_timeout: float | None = None,
        score_scale: float | None = None
    ):
        """
        Initialize the orchestrator
        
        Args:
            embedding_api: Embeds each fan-out query
            vector_index: Index searched for candidates
            understanding_service: Query analysis (heuristic-only by default)
            reranker: Candidate re-ranker
            search_timeout: Deadline in seconds for each sub-query
            score_scale: Factor mapping native index scores to 0..1 similarity
        """
        self.embedding_api = embedding_api
        self.vector_index = vector_index
        self.understanding_service = understanding_service or QueryUnderstandingService()
        self.reranker = reranker or Reranker()
        self.search_timeout = search_timeout or rag_config.search_timeout_seconds
        self.score_scale = score_scale if score_scale is not None else rag_config.similarity_score_scale
    
    # ------------------------------------------------------------------
    # Fan-out planning
    # ------------------------------------------------------------------
    
    @staticmethod
    def build_weighted_queries(query: str, understanding: QueryUnderstanding) -> List[WeightedQuery]:
        """
        Expand a query into weighted sub-queries
        
        Args:
            query: Original query text
            understanding: Analysis of the query
            
        Returns:
            Sub-queries by descending weight; the original query keeps weight 1.0
        """
        queries = [WeightedQuery(text=query, weight=1.0, tag="original")]
        seen = {query.strip().lower()}
        
        def add(text: str, weight: float, tag: str) -> None:
            key = text.strip().lower()
            if key and key not in seen:
                seen.add(key)
                queries.append(WeightedQuery(text=text.strip(), weight=weight, tag=tag))
        
        suggestions = understanding.suggested_queries[:MAX_SUGGESTED_QUERIES]
        for i, (suggestion, weight) in enumerate(zip(suggestions, SUGGESTED_QUERY_WEIGHTS), 1):
            add(suggestion, weight, f"suggested_{i}")
        
        language = understanding.language
        if understanding.is_superlative:
            subject = " ".join(understanding.entities[:2]) or query
            for tag, weight, vocabulary in SUPERLATIVE_EXPANSIONS:
                add(f"{subject} {_vocabulary(vocabulary, language)}", weight, tag)
        
        if understanding.is_comparative:
            add(f"{query} {_vocabulary(COMPARATIVE_VOCABULARY, language)}", COMPARATIVE_QUERY_WEIGHT, "comparative")
        
        # stable: equal weights keep insertion order
        return sorted(queries, key=lambda q: q.weight, reverse=True)
    
    @staticmethod
    def dynamic_limit(limit: int, understanding: QueryUnderstanding) -> int:
        if understanding.is_superlative or understanding.is_list_intent:
            return max(limit * 2, 10)
        return limit
    
    @staticmethod
    def final_limit(limit: int, understanding: QueryUnderstanding) -> int:
        if understanding.is_superlative:
            return max(limit, 8)
        if understanding.is_list_intent:
            return max(limit, 5)
        return limit
    
    def score_to_similarity(self, score: float) -> float:
        """Map a native index score onto the 0..1 similarity scale"""
        return min(max(score * self.score_scale, 0.0), 1.0)
    
    # ------------------------------------------------------------------
    # Search
    # ------------------------------------------------------------------
    
    async def search(
        self,
        query: str,
        knowledge_base_id: str,
        limit: int | None = None,
        threshold: float | None = None
    ) -> RankedResults:
        """
        Search a knowledge base
        
        Args:
            query: Query text
            knowledge_base_id: Knowledge base to search
            limit: Requested number of results (default from config)
            threshold: Base similarity threshold (default from config)
            
        Returns:
            Ranked results with excerpts and relevance scores
            
        Raises:
            EmptyInputError: Blank query
            ValueError: Non-positive limit
            SearchError: Every sub-query failed
        """
        if not query or not query.strip():
            raise EmptyInputError("Search query is empty")
        
        limit = limit if limit is not None else rag_config.top_k_results
        if limit <= 0:
            raise ValueError(f"limit must be positive, got {limit}")
        threshold = threshold if threshold is not None else rag_config.similarity_threshold
        
        logger.info(f"Retrieving context for query: '{query[:50]}...'")
        
        understanding = await self.understanding_service.understand(query)
        weighted_queries = self.build_weighted_queries(query, understanding)
        dynamic_limit = self.dynamic_limit(limit, understanding)
        
        logger.debug(
            f"Fan-out of {len(weighted_queries)} queries "
            f"(type={understanding.search_type.value}, dynamic_limit={dynamic_limit})"
        )
        
        outcomes = await self._fan_out(weighted_queries, knowledge_base_id, dynamic_limit)
        if all(hits is None for _, hits in outcomes):
            raise SearchError(f"All {len(outcomes)} sub-queries failed for knowledge base {knowledge_base_id}")
        
        candidates = self._merge(outcomes)
        ranked = self.reranker.rerank(candidates, query, understanding)
        
        effective_threshold = self.reranker.effective_threshold(threshold, understanding)
        passing = [chunk for chunk in ranked if chunk.base_similarity >= effective_threshold]
        selected = passing[: self.final_limit(limit, understanding)]
        
        results = [self._to_result(chunk) for chunk in selected]
        logger.info(
            f"Retrieved {len(results)} chunks from {len(candidates)} candidates "
            f"(threshold {effective_threshold:.2f})"
        )
        
        return RankedResults(
            query=query,
            knowledge_base_id=knowledge_base_id,
            understanding=understanding,
            results=results,
            total_results=len(results)
        )
    
    async def _fan_out(
        self,
        weighted_queries: List[WeightedQuery],
        knowledge_base_id: str,
        dynamic_limit: int
    ) -> List[Tuple[WeightedQuery, Optional[List[SearchHit]]]]:
        tasks = [
            asyncio.ensure_future(self._run_sub_query(wq, knowledge_base_id, dynamic_limit))
            for wq in weighted_queries
        ]
        try:
            hit_lists = await asyncio.gather(*tasks)
        finally:
            for task in tasks:
                if not task.done():
                    task.cancel()
        return list(zip(weighted_queries, hit_lists))
    
    async def _run_sub_query(
        self,
        weighted_query: WeightedQuery,
        knowledge_base_id: str,
        dynamic_limit: int
    ) -> Optional[List[SearchHit]]:
        """Run one sub-query; ``None`` marks a failure or timeout"""
        # round first so 10 * 1.1 * 2 gives 22, not 23
        top_k = math.ceil(round(dynamic_limit * weighted_query.weight * 2, 6))
        num_candidates = max(dynamic_limit * 3, MIN_CANDIDATES)
        
        async def run() -> List[SearchHit]:
            vector = await self.embedding_api.embed(weighted_query.text)
            return await self.vector_index.search(
                vector,
                filters={"knowledge_base_id": knowledge_base_id},
                top_k=top_k,
                num_candidates=num_candidates
            )
        
        try:
            return await asyncio.wait_for(run(), timeout=self.search_timeout)
        except asyncio.TimeoutError:
            logger.warning(f"Sub-query '{weighted_query.tag}' timed out after {self.search_timeout}s")
            return None
        except Exception as e:
            logger.warning(f"Sub-query '{weighted_query.tag}' failed: {str(e)}")
            return None
    
    def _merge(
        self,
        outcomes: Sequence[Tuple[WeightedQuery, Optional[List[SearchHit]]]]
    ) -> List[ScoredChunk]:
        """Deduplicate by chunk id; the highest-weighted query's hit wins"""
        merged: Dict[str, ScoredChunk] = {}
        for weighted_query, hits in outcomes:
            for hit in hits or []:
                if hit.chunk_id in merged:
                    continue
                tagged = hit.model_copy(update={"metadata": {**hit.metadata, "queryTag": weighted_query.tag}})
                similarity = self.score_to_similarity(hit.score)
                merged[hit.chunk_id] = ScoredChunk(
                    hit=tagged,
                    base_similarity=similarity,
                    adjusted_score=similarity
                )
        return list(merged.values())
    
    @staticmethod
    def _to_result(chunk: ScoredChunk) -> SearchResultItem:
        return SearchResultItem(
            chunk_id=chunk.chunk_id,
            document_id=chunk.document_id,
            content=chunk.content,
            similarity=chunk.base_similarity,
            relevance_score=round(chunk.base_similarity * 100),
            excerpt=generate_excerpt(chunk.content),
            query_tag=chunk.metadata.get("queryTag"),
            metadata=chunk.metadata
        )


def format_context(results: RankedResults | List[SearchResultItem]) -> str:
    """
    Combine retrieved chunks into a single context string
    
    Args:
        results: Ranked results or their items, already in rank order
        
    Returns:
        Context string with one numbered block per chunk
    """
    items = results.results if isinstance(results, RankedResults) else results
    if not items:
        return ""
    
    context_parts = []
    for i, item in enumerate(items, 1):
        context_parts.append(f"[Chunk {i} - Relevance: {item.similarity:.2f}]")
        context_parts.append(item.content)
        context_parts.append("")
    
    return "\n".join(context_parts)
