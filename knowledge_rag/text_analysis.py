"""
Text analysis helpers

Pure functions shared by the chunker, the heuristic query classifier and the
re-ranker: normalization, number and entity extraction, stopword based
language detection and line-pattern analysis for tabular content.
"""
import re
from collections import Counter
from typing import Any, Dict, Iterable, List, Optional


_CAPITALIZED_RUN = re.compile(
    r"\b[A-ZÁÉÍÓÚÑÜ][a-záéíóúñü]+(?:\s+[A-ZÁÉÍÓÚÑÜ][a-záéíóúñü]+)*"
)
_QUOTED_SPAN = re.compile(r"[\"'“”«]([^\"'“”«»]+)[\"'“”»]")
_ALNUM_CODE = re.compile(r"\b[A-Z]{2,}\d+\b|\b\d+[A-Z]+\b")
_LINE_TOKEN = re.compile(r"\"[^\"]*\"|'[^']*'|\d+(?:[.,]\d+)*|[^\W\d_]+")
_LIST_ITEM = re.compile(r"^\s*(?:\d+[.)]|[a-z][.)]|[-*•])\s+", re.IGNORECASE)
_MONEY = re.compile(r"\$\s*[\d,]+(?:\.\d{2})?")
_PRICE_TERMS = re.compile(r"\$|\b(?:precio|price|costo|cost|mxn|usd|eur|total|subtotal)")
_UNIT_TERMS = re.compile(r"\b(?:unidad|unit|id|código|codigo|code|item|producto|product)")

_NUMBER_PATTERNS = [
    re.compile(r"\$?\s*(\d{1,3}(?:,\d{3})+(?:\.\d+)?)"),    # 1,234.56 or $1,234.56
    re.compile(r"\$?\s*(\d+(?:\.\d+)?)\s*([kKmMbB])\b"),     # 1.5k, 2.3M
    re.compile(r"(\d+(?:[.,]\d+)?)\s*%"),                    # 85.5%
    re.compile(r"(?<!\w)(\d+(?:\.\d+)?)(?!\w)"),             # plain numbers
]
_SUFFIX_MULTIPLIERS = {"k": 1_000, "m": 1_000_000, "b": 1_000_000_000}

STOPWORDS = {
    "es": {
        "el", "la", "de", "que", "y", "a", "en", "un", "ser", "se", "no", "por",
        "con", "para", "como", "estar", "tener", "su", "al", "lo", "más", "pero",
        "sus", "le", "ya", "o", "este", "sí", "sin", "sobre", "hasta", "también",
        "cual", "cuál", "cuales", "cuáles", "es", "los", "las", "del", "una",
    },
    "en": {
        "the", "be", "to", "of", "and", "a", "in", "that", "have", "i", "it",
        "for", "not", "on", "with", "he", "as", "you", "do", "at", "this", "but",
        "his", "by", "from", "they", "we", "say", "her", "she", "or", "an",
        "will", "my", "one", "all", "would", "there", "their", "is", "what",
        "which", "are",
    },
    "pt": {
        "o", "a", "de", "que", "e", "do", "da", "em", "um", "para", "é", "com",
        "não", "uma", "os", "no", "se", "na", "por", "mais", "as", "dos", "como",
        "mas", "foi", "ao", "ele", "das", "tem", "seu", "sua", "ou", "há",
        "quando", "muito", "nos", "já", "está", "eu", "também", "só", "pelo",
        "pela", "até", "isso", "qual",
    },
}
DEFAULT_LANGUAGE = "es"


def normalize_text(text: str) -> str:
    """Unify line endings, collapse blank-line and space runs, trim"""
    text = text.replace("\r\n", "\n").replace("\r", "\n")
    text = text.replace("\t", " ")
    text = re.sub(r"\n{3,}", "\n\n", text)
    text = re.sub(r" {2,}", " ", text)
    return text.strip()


def split_paragraphs(text: str) -> List[str]:
    """Split on blank lines, dropping empty paragraphs"""
    return [p for p in re.split(r"\n\s*\n", text) if p.strip()]


def contains_any(text: str, terms: Iterable[str]) -> List[str]:
    """Return the terms found in ``text`` by case-insensitive substring match"""
    lowered = text.lower()
    return [term for term in terms if term.lower() in lowered]


def extract_numbers(text: str) -> List[float]:
    """Extract distinct numeric values, expanding k/M/B suffixes"""
    numbers: List[float] = []
    for pattern in _NUMBER_PATTERNS:
        for match in pattern.finditer(text):
            raw = match.group(1)
            # thousands separators in the grouped form, decimal commas elsewhere
            raw = raw.replace(",", "") if pattern is _NUMBER_PATTERNS[0] else raw.replace(",", ".")
            try:
                value = float(raw)
            except ValueError:
                continue
            if pattern is _NUMBER_PATTERNS[1]:
                value *= _SUFFIX_MULTIPLIERS[match.group(2).lower()]
            if value not in numbers:
                numbers.append(value)
    return numbers


def has_numeric_data(text: str) -> bool:
    return bool(text) and bool(extract_numbers(text))


def extract_entities(text: str) -> List[str]:
    """
    Lightweight entity extraction
    
    Picks capitalized word runs, quoted spans and alphanumeric codes such as
    ``AB123``; keeps first-seen order and drops anything two characters or
    shorter.
    """
    candidates: List[str] = []
    candidates.extend(m.group(0) for m in _CAPITALIZED_RUN.finditer(text))
    candidates.extend(m.group(1).strip() for m in _QUOTED_SPAN.finditer(text))
    candidates.extend(m.group(0) for m in _ALNUM_CODE.finditer(text))
    
    entities: List[str] = []
    for candidate in candidates:
        if len(candidate) > 2 and candidate not in entities:
            entities.append(candidate)
    return entities


def detect_language(text: str) -> str:
    """Pick the language whose stopwords match the most tokens"""
    tokens = re.findall(r"\w+", text.lower())
    best_language = DEFAULT_LANGUAGE
    best_score = 0
    for language, stopwords in STOPWORDS.items():
        score = sum(1 for token in tokens if token in stopwords)
        if score > best_score:
            best_language, best_score = language, score
    return best_language


def _token_shape(match: re.Match) -> str:
    token = match.group(0)
    if token[0] in "\"'":
        return "S"
    if token[0].isdigit():
        return "N"
    return "W"


def line_pattern(line: str) -> str:
    """Reduce a line to its shape: quoted strings, numbers and words become tokens"""
    pattern = _LINE_TOKEN.sub(_token_shape, line.strip())
    pattern = re.sub(r"W(?:\s+W)+", "W", pattern)
    return re.sub(r"\s+", " ", pattern)


def repeated_line_patterns(text: str, min_repeats: int = 2) -> int:
    """Count distinct line shapes that occur at least ``min_repeats`` times"""
    lines = [line for line in text.split("\n") if line.strip()]
    counts = Counter(line_pattern(line) for line in lines)
    return sum(1 for count in counts.values() if count >= min_repeats)


def has_ranking_potential(text: str) -> bool:
    """Numeric data laid out as repeated, structurally similar lines"""
    return has_numeric_data(text) and repeated_line_patterns(text) > 0


def column_count(line: str) -> int:
    """Columns of a delimited line: pipes first, then comma-space separated cells"""
    if "|" in line:
        cells = [cell for cell in line.split("|") if cell.strip()]
        if len(cells) > 1:
            return len(cells)
    cells = re.split(r",\s+", line.strip())
    return len(cells) if len(cells) > 1 else 1


def infer_block_type(text: str) -> str:
    """
    Classify a block of lines as ``table``, ``list`` or ``text``

    A table has at least two lines whose column counts average above one and
    stay within one of that average for more than 70% of the lines. A list
    has more than half of its lines starting with a bullet or an enumerator.
    """
    lines = [line for line in text.split("\n") if line.strip()]
    if not lines:
        return "text"

    counts = [column_count(line) for line in lines]
    average = sum(counts) / len(counts)
    consistent = sum(1 for count in counts if abs(count - average) <= 1)
    if len(lines) > 1 and average > 1 and consistent > len(counts) * 0.7:
        return "table"

    if sum(1 for line in lines if _LIST_ITEM.match(line)) > len(lines) * 0.5:
        return "list"
    return "text"


def is_price_table(text: str, min_prices: int = 3) -> bool:
    """Price vocabulary, unit or product vocabulary and at least ``min_prices`` amounts"""
    lowered = text.lower()
    return (
        bool(_PRICE_TERMS.search(lowered))
        and bool(_UNIT_TERMS.search(lowered))
        and len(_MONEY.findall(lowered)) >= min_prices
    )


def block_metadata(text: str) -> Dict[str, Any]:
    """Index-time tags read by the list-intent re-ranking boosts"""
    return {"blockType": infer_block_type(text), "isPriceTable": is_price_table(text)}


def generate_excerpt(content: str, max_length: int = 200) -> str:
    """Short preview, cut at a sentence end when one falls past the midpoint"""
    if not content:
        return ""
    if len(content) <= max_length:
        return content
    truncated = content[:max_length]
    last_period = truncated.rfind(".")
    if last_period > max_length * 0.5:
        return truncated[: last_period + 1]
    return truncated + "..."


def extract_json_block(text: str) -> Optional[str]:
    """
    Locate the outermost JSON object or array in free text
    
    LLMs often wrap JSON in prose or code fences; this takes the substring
    from the first ``{``/``[`` to the last matching ``}``/``]``.
    """
    if not text:
        return None
    starts = [i for i in (text.find("{"), text.find("[")) if i != -1]
    if not starts:
        return None
    start = min(starts)
    closer = "}" if text[start] == "{" else "]"
    end = text.rfind(closer)
    if end <= start:
        return None
    return text[start : end + 1]
