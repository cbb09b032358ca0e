from .parser import (
    clean_product_query,
    find_absent_paths,
    parse_local_intent,
    parse_quantity_and_query,
    strip_absent,
)

__all__ = ['parse_local_intent', 'parse_quantity_and_query', 'clean_product_query',
           'strip_absent', 'find_absent_paths']
