"""
Token helpers shared by grouping, gating and scoring
"""
import re
from typing import Iterable, List, Set

UNKNOWN_BRANDS = {'', 'unknown', 'n/a', 'none'}
UNKNOWN_PRODUCTS = {'', 'unknown', 'unidentified item', 'n/a', 'none'}

_KEYWORD_RE = re.compile(r"\b\w{3,}\b")


def tokenize(value: str) -> List[str]:
    """Lowercase alphanumeric tokens; separators like _ - . split words."""
    text = str(value or '').lower()
    text = re.sub(r"[_\-.]+", ' ', text)
    text = re.sub(r"[^a-z0-9]+", ' ', text)
    return [t for t in text.split(' ') if t]


def keywords(text: str) -> Set[str]:
    """Distinct words of three or more characters, used for OCR comparison."""
    return set(_KEYWORD_RE.findall(str(text or '').lower()))


def jaccard(a: Iterable[str], b: Iterable[str]) -> float:
    set_a, set_b = set(a), set(b)
    union = set_a | set_b
    if not union:
        return 0.0
    return len(set_a & set_b) / len(union)


def normalize_identity(value: str) -> str:
    return re.sub(r"\s+", ' ', str(value or '')).strip().lower()


def is_unknown_identity(brand: str, product: str) -> bool:
    return normalize_identity(brand) in UNKNOWN_BRANDS or normalize_identity(product) in UNKNOWN_PRODUCTS


def identity_tokens(brand: str, product: str) -> List[str]:
    """Ordered, de-duplicated tokens of a brand + product identity."""
    seen = []
    for token in tokenize(f"{brand} {product}"):
        if token not in seen:
            seen.append(token)
    return seen
