"""
Ranks inventory products against free-text (usually spoken) queries.

Each product field gets a fuzzy sub-score (exact, phonetic, synonym,
token-set, containment) and the final score is the weighted average over
the fields that scored at all. Missing fields are not penalised.
"""
import re
from collections import OrderedDict
from typing import Dict, List, Optional, Sequence

from fastbill.core.config import LEARNING_CAP
from fastbill.domain.schemas import (
    BrandSelection,
    InventoryProduct,
    LearnedCorrection,
    ProductMatch,
    ProductSuggestion,
)
from fastbill.domain.matching.text import calculate_fuzzy_score, normalize_text, similarity
from fastbill.utils.config_loader import load_speech_vocabulary
from fastbill.utils.logging_config import get_logger

logger = get_logger(__name__)

FIELD_WEIGHTS = OrderedDict([
    ("name", 0.40),
    ("brand", 0.25),
    ("category", 0.15),
    ("sku", 0.15),
    ("description", 0.05),
])

BRAND_SELECTION_THRESHOLD = 0.6
LEARNED_SIMILARITY_THRESHOLD = 0.6
LEARNED_CONFIDENCE = 95.0
MAX_LEARNED_SUGGESTIONS = 3


def product_fields(product: InventoryProduct) -> Dict[str, str]:
    return {
        "name": product.name or product.product_name or product.display_name,
        "brand": product.brand or "",
        "category": product.category or "",
        "sku": product.sku or "",
        "description": product.description or "",
    }


def extract_product_info(voice_input: str) -> Dict[str, object]:
    """
    Pulls quantity, unit, brand and category hints out of an utterance.
    """
    vocab = load_speech_vocabulary()
    normalized = normalize_text(voice_input)

    qty_match = re.search(r'(\d+)\s*(?:pieces?|pcs?|units?|nos?|kg|gm|g|ml|l|liters?|litres?)\b', normalized)
    unit_match = re.search(r'(\d+)\s*(kg|gm|g|ml|l|liters?|litres?|pieces?|pcs?|units?|nos?)\b', normalized)

    return {
        "original_input": voice_input,
        "normalized_input": normalized,
        "words": normalized.split(' ') if normalized else [],
        "quantity": int(qty_match.group(1)) if qty_match else 1,
        "unit": unit_match.group(2) if unit_match else "pieces",
        "brand": next((b for b in vocab["known_brands"] if b in normalized), None),
        "category": next((c for c in vocab["known_categories"] if c in normalized), None),
    }


def score_product(query: str, product: InventoryProduct, include_brand: bool = True,
                  include_category: bool = True, include_sku: bool = True) -> Optional[ProductMatch]:
    fields = product_fields(product)
    skipped = set()
    if not include_brand:
        skipped.add("brand")
    if not include_category:
        skipped.add("category")
    if not include_sku:
        skipped.add("sku")

    details = {field: 0.0 for field in FIELD_WEIGHTS}
    weighted, weights = 0.0, 0.0
    for field, weight in FIELD_WEIGHTS.items():
        if field in skipped or not fields[field]:
            continue
        sub = calculate_fuzzy_score(query, fields[field])
        if sub > 0:
            details[field] = sub
            weighted += sub * weight
            weights += weight

    if weights == 0:
        return None
    score = weighted / weights
    return ProductMatch(
        product=product,
        score=score,
        confidence=min(score * 100, 100.0),
        match_details=details,
        matched_fields=[f for f, s in details.items() if s > 0],
        is_brand_match=details["brand"] > 0,
        brand=product.brand,
    )


def find_matching_products(query: str, inventory: Sequence[InventoryProduct], max_results: int = 10,
                           min_score: float = 0.3, include_brand: bool = True,
                           include_category: bool = True, include_sku: bool = True) -> List[ProductMatch]:
    """
    Ranked matches with score >= min_score, best first.
    """
    matches = []
    for product in inventory:
        match = score_product(query, product, include_brand, include_category, include_sku)
        if match is not None and match.score >= min_score:
            matches.append(match)
    matches.sort(key=lambda m: m.score, reverse=True)
    logger.debug(f"Matcher: '{query}' -> {len(matches)} candidates")
    return matches[:max_results]


def group_by_brand(inventory: Sequence[InventoryProduct]) -> Dict[str, List[InventoryProduct]]:
    groups: Dict[str, List[InventoryProduct]] = OrderedDict()
    for product in inventory:
        if product.brand:
            groups.setdefault(normalize_text(product.brand), []).append(product)
    return groups


def should_show_brand_selection(query: str, inventory: Sequence[InventoryProduct]) -> BrandSelection:
    """
    When the query is (nearly) a brand name and that brand has several
    products, the caller should ask which one instead of guessing.
    """
    for brand, products in group_by_brand(inventory).items():
        if calculate_fuzzy_score(query, brand) > BRAND_SELECTION_THRESHOLD and len(products) > 1:
            return BrandSelection(
                should_show=True,
                brand=brand,
                products=products,
                message=f'Found {len(products)} products for brand "{brand}". Please choose:',
            )
    return BrandSelection(should_show=False)


def to_suggestion(match: ProductMatch) -> ProductSuggestion:
    product = match.product
    if match.is_learned:
        sublabel = f'Learned from: "{match.learned_from}"'
    else:
        sublabel = " • ".join(x for x in (product.brand, product.category, product.sku) if x)
    return ProductSuggestion(
        key=product.key,
        label=product.display_name,
        sublabel=sublabel,
        price=product.selling_price or product.price or product.mrp,
        unit=product.unit,
        confidence=match.confidence,
        matched_fields=match.matched_fields,
        is_learned=match.is_learned,
        product=product,
    )


def get_product_suggestions(query: str, inventory: Sequence[InventoryProduct],
                            max_suggestions: int = 5, min_score: float = 0.3) -> List[ProductSuggestion]:
    return [to_suggestion(m) for m in find_matching_products(query, inventory, max_suggestions, min_score)]


# --- Learning ---

def learn_from_correction(store, original_input: str, product: InventoryProduct,
                          cap: int = LEARNING_CAP) -> LearnedCorrection:
    """Records a confirmed query -> product pick and trims the log to `cap`."""
    entry = LearnedCorrection(
        original_input=normalize_text(original_input),
        selected_product={
            "id": product.id,
            "name": product.display_name,
            "brand": product.brand,
            "category": product.category,
            "sku": product.sku,
        },
    )
    store.put(entry)
    store.evict_oldest(cap)
    return entry


def get_learning_matches(query: str, inventory: Sequence[InventoryProduct],
                         entries: Sequence[LearnedCorrection]) -> List[ProductMatch]:
    """
    Past corrections whose query resembles this one (similarity > 0.6),
    best three, resolved against the current inventory.
    """
    normalized = normalize_text(query)
    scored = [(similarity(normalized, e.original_input), e) for e in entries]
    scored = [(s, e) for s, e in scored if s > LEARNED_SIMILARITY_THRESHOLD]
    scored.sort(key=lambda pair: pair[0], reverse=True)

    by_id = {p.id: p for p in inventory if p.id}
    matches = []
    for _, entry in scored[:MAX_LEARNED_SUGGESTIONS]:
        product = by_id.get(entry.selected_product.get("id"))
        if product is None:
            continue
        matches.append(ProductMatch(
            product=product,
            score=LEARNED_CONFIDENCE / 100,
            confidence=LEARNED_CONFIDENCE,
            is_learned=True,
            learned_from=entry.original_input,
            brand=product.brand,
        ))
    return matches


def enhanced_product_matcher(query: str, inventory: Sequence[InventoryProduct], store=None,
                             max_results: int = 7, min_score: float = 0.3,
                             include_learning: bool = True) -> List[ProductMatch]:
    """
    Learned matches merged with fuzzy matches. Duplicates (same product)
    keep whichever has the higher confidence. Best first.
    """
    regular = find_matching_products(query, inventory, max_results=max_results, min_score=min_score)
    learned = []
    if include_learning and store is not None:
        learned = get_learning_matches(query, inventory, store.get_all())

    merged: Dict[str, ProductMatch] = OrderedDict()
    for match in learned + regular:
        key = match.product.key
        existing = merged.get(key)
        if existing is None or match.confidence > existing.confidence:
            merged[key] = match

    results = sorted(merged.values(), key=lambda m: m.confidence, reverse=True)
    return results[:max_results]


# --- Variants ---

def base_product_name(product: InventoryProduct) -> str:
    """'Amul Milk 500ml' -> 'amul milk'"""
    pattern = load_speech_vocabulary()["variant_unit_pattern"]
    name = product.display_name.lower()
    if pattern:
        name = re.sub(pattern, "", name)
    return re.sub(r'\s{2,}', ' ', name).strip()


def find_tied_variants(matches: Sequence[ProductMatch], margin: float = 0.15,
                       limit: int = 5) -> List[ProductMatch]:
    """
    Returns the first group of >= 2 matches that share a base product name
    and score within `margin` of the group's best. Empty when none tie.
    """
    groups: Dict[str, List[ProductMatch]] = OrderedDict()
    for match in matches:
        base = base_product_name(match.product)
        if base:
            groups.setdefault(base, []).append(match)

    for members in groups.values():
        if len(members) < 2:
            continue
        members = sorted(members, key=lambda m: m.confidence, reverse=True)
        best = members[0].confidence / 100
        tied = [m for m in members if best - m.confidence / 100 <= margin]
        if len(tied) >= 2:
            return tied[:limit]
    return []
