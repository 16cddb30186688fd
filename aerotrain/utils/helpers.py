"""
Common text utilities shared by the parser, extractor and synthesizer.
"""
from typing import Any, Dict, Iterable, List, Set
import dataclasses
import datetime
import enum
import re
import unicodedata


STOPWORDS: Set[str] = {
    'a', 'an', 'the', 'and', 'or', 'but', 'if', 'then', 'else', 'when',
    'at', 'from', 'by', 'on', 'off', 'for', 'in', 'out', 'over', 'to',
    'into', 'with', 'about', 'against', 'between', 'during', 'without',
    'before', 'after', 'above', 'below', 'up', 'down', 'this', 'that',
    'these', 'those', 'is', 'are', 'was', 'were', 'be', 'been', 'being',
    'have', 'has', 'had', 'do', 'does', 'did', 'will', 'would', 'shall',
    'should', 'can', 'could', 'may', 'might', 'must', 'of', 'also', 'as',
}

_PARAGRAPH_SPLIT = re.compile(r'\n\s*\n')


def normalize_text(text: str) -> str:
    """
    Normalize text for processing.

    Args:
        text: Raw text string

    Returns:
        Normalized text
    """
    text = unicodedata.normalize('NFKC', text)
    text = text.replace('\r\n', '\n').replace('\r', '\n')
    # Collapse runs of spaces/tabs but keep line structure
    text = re.sub(r'[ \t\f\v]+', ' ', text)
    return text.strip()


def normalize_key(text: str) -> str:
    """
    Build the normalized part of a content-derived identifier.

    Args:
        text: Node content

    Returns:
        Lower-cased text with whitespace runs replaced by underscores
    """
    return re.sub(r'\s+', '_', text.strip()).lower()


def tokenize(text: str) -> List[str]:
    """
    Split text into lower-case word tokens with punctuation stripped.

    Args:
        text: Input text

    Returns:
        Ordered list of tokens (may contain duplicates)
    """
    words = text.lower().split()
    tokens = []
    for word in words:
        word = re.sub(r'[^\w]', '', word)
        if word:
            tokens.append(word)
    return tokens


def word_set(text: str, min_length: int = 3) -> Set[str]:
    """Lower-case word set, keeping words of at least ``min_length`` characters."""
    return {w for w in re.split(r'\W+', text.lower()) if len(w) >= min_length}


def jaccard_similarity(text1: str, text2: str) -> float:
    """
    Calculate Jaccard similarity between the word sets of two strings.

    Only words longer than two characters take part.

    Args:
        text1: First text
        text2: Second text

    Returns:
        Intersection size over union size (0-1); 0.0 if both sets are empty
    """
    words1 = word_set(text1)
    words2 = word_set(text2)
    union = words1 | words2
    if not union:
        return 0.0
    return len(words1 & words2) / len(union)


def split_paragraphs(text: str) -> List[str]:
    """Split text into trimmed, non-empty blank-line-delimited paragraphs."""
    return [p.strip() for p in _PARAGRAPH_SPLIT.split(text) if p.strip()]


def term_frequencies(tokens: Iterable[str]) -> Dict[str, int]:
    """Count token occurrences, preserving first-seen order."""
    freq: Dict[str, int] = {}
    for token in tokens:
        freq[token] = freq.get(token, 0) + 1
    return freq


def count_occurrences(pattern: str, text: str) -> int:
    """Count case-insensitive whole-word occurrences of a literal phrase."""
    return len(re.findall(rf'\b{re.escape(pattern)}\b', text, re.IGNORECASE))


def clamp(value: float, low: float = 0.0, high: float = 1.0) -> float:
    """Clamp ``value`` into ``[low, high]``."""
    return max(low, min(high, value))


def safe_divide(numerator: float, denominator: float, default: float = 0.0) -> float:
    """
    Safely divide two numbers, returning default if denominator is zero.

    Args:
        numerator: Numerator
        denominator: Denominator
        default: Default value if division fails

    Returns:
        Result of division or default
    """
    return numerator / denominator if denominator != 0 else default


def to_jsonable(value: Any) -> Any:
    """
    Convert dataclasses, enums and dates into JSON-compatible structures.

    Args:
        value: Any result object

    Returns:
        Plain dicts, lists, strings and numbers
    """
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return {f.name: to_jsonable(getattr(value, f.name)) for f in dataclasses.fields(value)}
    if isinstance(value, enum.Enum):
        return value.value
    if isinstance(value, (datetime.date, datetime.datetime)):
        return value.isoformat()
    if isinstance(value, dict):
        return {str(k.value if isinstance(k, enum.Enum) else k): to_jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set)):
        return [to_jsonable(v) for v in value]
    return value
