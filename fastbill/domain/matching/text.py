import re
from typing import Dict, List, Optional

from fastbill.utils.config_loader import load_phonetic_map, load_product_synonyms

# Sub-scores for calculate_fuzzy_score
EXACT_MATCH = 1.0
PHONETIC_MATCH = 0.7
SYNONYM_MATCH = 0.6
PARTIAL_MATCH = 0.4

_TOKEN_SPLIT_RE = re.compile(r'[\W_]+')


def normalize_text(text) -> str:
    """Lowercase, drop punctuation, collapse whitespace."""
    cleaned = re.sub(r'[^\w\s]', '', str(text or '').lower())
    return re.sub(r'\s+', ' ', cleaned).strip()


def tokenize(text) -> set:
    return {t for t in _TOKEN_SPLIT_RE.split(str(text or '').lower()) if t}


def similarity(a, b) -> float:
    """
    Token-set similarity: |A ∩ B| / min(|A|, |B|).
    Works better than edit distance for short queries like "milk".
    """
    if not a or not b:
        return 0.0
    ta, tb = tokenize(a), tokenize(b)
    if not ta or not tb:
        return 0.0
    return len(ta & tb) / min(len(ta), len(tb))


def is_phonetically_similar(a: str, b: str, phonetic_map: Optional[Dict[str, List[str]]] = None) -> bool:
    n1, n2 = normalize_text(a), normalize_text(b)
    table = phonetic_map if phonetic_map is not None else load_phonetic_map()
    for correct, variations in table.items():
        if n1 in variations and n2 in variations:
            return True
        if n1 == correct and n2 in variations:
            return True
        if n2 == correct and n1 in variations:
            return True
    return False


def is_synonym(a: str, b: str, synonyms: Optional[Dict[str, List[str]]] = None) -> bool:
    n1, n2 = normalize_text(a), normalize_text(b)
    table = synonyms if synonyms is not None else load_product_synonyms()
    return any(n1 in group and n2 in group for group in table.values())


def calculate_fuzzy_score(a, b) -> float:
    """
    1.0 exact, 0.7 phonetic, 0.6 synonym, else token-set similarity
    with a 0.4 floor when one string contains the other.
    """
    n1, n2 = normalize_text(a), normalize_text(b)
    if not n1 or not n2:
        return 0.0
    if n1 == n2:
        return EXACT_MATCH
    if is_phonetically_similar(n1, n2):
        return PHONETIC_MATCH
    if is_synonym(n1, n2):
        return SYNONYM_MATCH

    score = similarity(n1, n2)
    if n2 in n1 or n1 in n2:
        return max(score, PARTIAL_MATCH)
    return score
