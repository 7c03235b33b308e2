"""
Query understanding

Classifies a search query's intent (comparative, superlative, list,
calculation) and pulls out entities and key terms. An LLM-backed classifier
does the work when available; a keyword and regex heuristic stands in for
trivial queries and whenever the LLM call or its JSON fails.
"""
import json
import re
from typing import Any, List, Optional, Protocol
from loguru import logger

from knowledge_rag.config import rag_config
from knowledge_rag.interfaces import ChatAPI
from knowledge_rag.models import Complexity, QueryUnderstanding, SearchType
from knowledge_rag.text_analysis import (
    STOPWORDS,
    contains_any,
    detect_language,
    extract_entities,
    extract_json_block,
)


HEURISTIC_CONFIDENCE = 0.5
LLM_DEFAULT_CONFIDENCE = 0.8
MIN_QUERY_LENGTH = 4

CONFIRMATION_PATTERNS = [
    re.compile(r"^(si|sí|no|yes|ok|okay|vale|dale|perfecto|correcto|adelante|gracias|thanks)[.!]*$", re.IGNORECASE),
    re.compile(r"^(👍|👎|✅|❌|🙏|👌)+$"),
]

RANKING_TERMS = [
    "el más", "la más", "los más", "las más", "el menos", "la menos",
    "más barato", "más barata", "más caro", "más cara", "más económico",
    "el mejor", "la mejor", "los mejores", "el peor", "la peor",
    "máximo", "mínimo", "mayor", "menor", "ranking",
    "cheapest", "most expensive", "the best", "the worst", "highest", "lowest",
    "top ", "maximum", "minimum",
]
COMPARISON_TERMS = [
    "comparar", "compara", "comparación", "versus", " vs ", "diferencia",
    "mejor que", "peor que", "más que", "menos que",
    "compare", "comparison", "difference", "better than", "worse than",
]
CALCULATION_TERMS = [
    "total", "suma", "sumar", "promedio", "calcular", "cuánto", "cuanto",
    "cuántos", "cuantos", "porcentaje",
    "sum", "average", "calculate", "how much", "how many", "percentage",
]
LIST_TERMS = [
    "lista", "listar", "todos los", "todas las", "catálogo", "enumera",
    "list", "all the", "show all",
]

ANALYSIS_PROMPT = """You analyse search queries against a business knowledge base.
Return ONLY a JSON object with these keys:
{
  "requiresComparison": boolean,   // compares two or more items
  "requiresRanking": boolean,      // asks for a maximum, minimum, best, worst, cheapest...
  "requiresCalculation": boolean,  // needs totals, averages, counts or arithmetic
  "searchType": "simple" | "comparative" | "superlative" | "analytical" | "list_all",
  "entities": [string],            // products, names, codes mentioned
  "keyTerms": [string],            // the words that carry the query's meaning
  "complexity": "simple" | "complex",
  "confidence": number,            // 0..1
  "suggestedSearchQueries": [string] // up to 3 reformulations for semantic search
}"""


class QueryClassifier(Protocol):
    async def classify(self, query: str) -> QueryUnderstanding: ...


def is_simple_confirmation(query: str) -> bool:
    """Short acknowledgements ("ok", "sí", 👍) that are not worth analysing"""
    stripped = query.strip()
    if len(stripped) < MIN_QUERY_LENGTH:
        return True
    return any(pattern.match(stripped) for pattern in CONFIRMATION_PATTERNS)


class HeuristicQueryClassifier:
    """Keyword, regex and stopword based classifier; deterministic and offline"""
    
    def analyze(self, query: str) -> QueryUnderstanding:
        """
        Classify a query without any external call
        
        Args:
            query: Free-text query
            
        Returns:
            Understanding with the fixed heuristic confidence
        """
        padded = f" {query.strip()} "
        ranking = contains_any(padded, RANKING_TERMS)
        comparison = contains_any(padded, COMPARISON_TERMS)
        calculation = contains_any(padded, CALCULATION_TERMS)
        listing = contains_any(padded, LIST_TERMS)
        
        intents = set()
        if ranking:
            intents.add(SearchType.SUPERLATIVE.value)
        if comparison:
            intents.add(SearchType.COMPARATIVE.value)
        if calculation:
            intents.add("aggregation")
        if listing:
            intents.add(SearchType.LIST_ALL.value)
        
        if ranking:
            search_type = SearchType.SUPERLATIVE
        elif comparison:
            search_type = SearchType.COMPARATIVE
        elif listing:
            search_type = SearchType.LIST_ALL
        elif calculation:
            search_type = SearchType.ANALYTICAL
        else:
            search_type = SearchType.SIMPLE
        
        modifiers: List[str] = []
        for term in ranking + comparison + calculation + listing:
            term = term.strip()
            if term not in modifiers:
                modifiers.append(term)
        
        language = detect_language(query)
        complex_query = len(query.split()) > 12 or len(intents) > 1 or bool(calculation)
        
        return QueryUnderstanding(
            intents=intents,
            entities=extract_entities(query),
            modifiers=modifiers,
            requires_calculation=bool(calculation),
            complexity=Complexity.COMPLEX if complex_query else Complexity.SIMPLE,
            language=language,
            confidence=HEURISTIC_CONFIDENCE,
            search_type=search_type,
            suggested_queries=self._simplified(query, language)
        )
    
    async def classify(self, query: str) -> QueryUnderstanding:
        return self.analyze(query)
    
    @staticmethod
    def _simplified(query: str, language: str) -> List[str]:
        stopwords = STOPWORDS.get(language, set())
        words = [w for w in re.findall(r"[\w$%.-]+", query) if w.lower() not in stopwords]
        simplified = " ".join(words)
        if simplified and simplified.lower() != query.strip().lower():
            return [simplified]
        return []


class LLMQueryClassifier:
    """Classifier backed by a chat model returning a JSON analysis"""
    
    def __init__(self, chat_api: ChatAPI, temperature: float | None = None):
        self.chat_api = chat_api
        self.temperature = temperature if temperature is not None else rag_config.analysis_temperature
    
    async def classify(self, query: str) -> QueryUnderstanding:
        """
        Ask the model to analyse the query
        
        Raises:
            ValueError: The reply holds no parseable JSON object
        """
        reply = await self.chat_api.complete(
            [
                {"role": "system", "content": ANALYSIS_PROMPT},
                {"role": "user", "content": query}
            ],
            temperature=self.temperature
        )
        return self.parse(reply, query)
    
    @staticmethod
    def parse(reply: str, query: str) -> QueryUnderstanding:
        block = extract_json_block(reply)
        if block is None:
            raise ValueError("LLM reply contains no JSON")
        
        payload: Any = json.loads(block)
        if isinstance(payload, list) and payload and isinstance(payload[0], dict):
            payload = payload[0]
        if not isinstance(payload, dict):
            raise ValueError("LLM reply JSON is not an object")
        
        intents = set()
        if payload.get("requiresComparison"):
            intents.add(SearchType.COMPARATIVE.value)
        if payload.get("requiresRanking"):
            intents.add(SearchType.SUPERLATIVE.value)
        if payload.get("requiresCalculation"):
            intents.add("aggregation")
        
        try:
            search_type = SearchType(str(payload.get("searchType", "simple")).lower())
        except ValueError:
            search_type = SearchType.SIMPLE
        try:
            complexity = Complexity(str(payload.get("complexity", "simple")).lower())
        except ValueError:
            complexity = Complexity.SIMPLE
        
        try:
            confidence = float(payload.get("confidence", LLM_DEFAULT_CONFIDENCE))
        except (TypeError, ValueError):
            confidence = LLM_DEFAULT_CONFIDENCE
        
        return QueryUnderstanding(
            intents=intents,
            entities=_string_list(payload.get("entities")),
            modifiers=_string_list(payload.get("keyTerms")),
            requires_calculation=bool(payload.get("requiresCalculation")),
            complexity=complexity,
            language=detect_language(query),
            confidence=min(max(confidence, 0.0), 1.0),
            search_type=search_type,
            suggested_queries=_string_list(payload.get("suggestedSearchQueries"))
        )


def _string_list(value: Any) -> List[str]:
    if not isinstance(value, list):
        return []
    return [str(item).strip() for item in value if str(item).strip()]


class QueryUnderstandingService:
    """
    LLM first, heuristic fallback
    
    ``understand`` never raises: trivial queries skip the LLM, and any LLM
    or parsing failure is answered by the heuristic classifier.
    """
    
    def __init__(
        self,
        llm_classifier: Optional[QueryClassifier] = None,
        heuristic_classifier: Optional[HeuristicQueryClassifier] = None
    ):
        self.llm_classifier = llm_classifier
        self.heuristic_classifier = heuristic_classifier or HeuristicQueryClassifier()
    
    async def understand(self, query: str) -> QueryUnderstanding:
        if is_simple_confirmation(query) or self.llm_classifier is None:
            return self._fallback(query)
        
        try:
            understanding = await self.llm_classifier.classify(query)
            logger.debug(
                f"LLM query analysis: type={understanding.search_type.value}, "
                f"intents={sorted(understanding.intents)}"
            )
            return understanding
        except Exception as e:
            logger.warning(f"LLM query analysis failed, using heuristics: {str(e)}")
            return self._fallback(query)
    
    def _fallback(self, query: str) -> QueryUnderstanding:
        try:
            return self.heuristic_classifier.analyze(query)
        except Exception as e:
            logger.error(f"Heuristic query analysis failed: {str(e)}")
            return QueryUnderstanding(language=detect_language(query), confidence=0.0)
