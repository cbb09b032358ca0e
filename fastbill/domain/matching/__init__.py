from .text import normalize_text, similarity, calculate_fuzzy_score
from .product_matcher import (
    enhanced_product_matcher,
    extract_product_info,
    find_matching_products,
    find_tied_variants,
    get_product_suggestions,
    learn_from_correction,
    should_show_brand_selection,
)
from .customers import (
    extract_customer_entities,
    extract_phone_from_utterance,
    normalize_phone,
    resolve_customer,
    same_phone,
)

__all__ = [
    'normalize_text', 'similarity', 'calculate_fuzzy_score',
    'enhanced_product_matcher', 'extract_product_info', 'find_matching_products',
    'find_tied_variants', 'get_product_suggestions', 'learn_from_correction',
    'should_show_brand_selection',
    'extract_customer_entities', 'extract_phone_from_utterance', 'normalize_phone',
    'resolve_customer', 'same_phone',
]
