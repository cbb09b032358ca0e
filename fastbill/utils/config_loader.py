import yaml
import os
from functools import lru_cache
from typing import Dict, Any, List

DATA_DIR = os.path.join(os.path.dirname(os.path.dirname(__file__)), "data")

def load_yaml_config(file_path: str) -> Dict[str, Any]:
    """
    Safely loads a YAML configuration file.
    """
    if not os.path.exists(file_path):
        raise FileNotFoundError(f"Configuration file not found: {file_path}")

    with open(file_path, 'r', encoding='utf-8') as f:
        try:
            return yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ValueError(f"Error parsing YAML file {file_path}: {e}")

def _data_path(file_name: str, config_dir: str = None) -> str:
    # FASTBILL_CONFIG_DIR lets a deployment ship its own vocabulary files
    base = config_dir or os.getenv("FASTBILL_CONFIG_DIR") or DATA_DIR
    return os.path.join(base, file_name)

@lru_cache(maxsize=None)
def load_phonetic_map(config_dir: str = None) -> Dict[str, List[str]]:
    """
    Loads phonetic_map.yaml.
    Returns: Dict[canonical, List[spoken variations]].
    """
    data = load_yaml_config(_data_path("phonetic_map.yaml", config_dir))
    return {str(k).lower(): [str(v).lower() for v in (vals or [])]
            for k, vals in (data.get("phonetic_map") or {}).items()}

@lru_cache(maxsize=None)
def load_product_synonyms(config_dir: str = None) -> Dict[str, List[str]]:
    """
    Loads product_synonyms.yaml.
    Returns: Dict[group name, List[synonyms]].
    """
    data = load_yaml_config(_data_path("product_synonyms.yaml", config_dir))
    return {str(k).lower(): [str(v).lower() for v in (vals or [])]
            for k, vals in (data.get("product_synonyms") or {}).items()}

@lru_cache(maxsize=None)
def load_speech_vocabulary(config_dir: str = None) -> Dict[str, Any]:
    """
    Loads speech_vocabulary.yaml (filler words, unit words, customer words,
    variant size pattern, known brands and categories).
    """
    data = load_yaml_config(_data_path("speech_vocabulary.yaml", config_dir))
    return {
        "filler_words": [str(w).lower() for w in data.get("filler_words", [])],
        "unit_words": [str(w).lower() for w in data.get("unit_words", [])],
        "variant_unit_pattern": data.get("variant_unit_pattern", ""),
        "customer_words": [str(w).lower() for w in data.get("customer_words", [])],
        "known_brands": [str(w).lower() for w in data.get("known_brands", [])],
        "known_categories": [str(w).lower() for w in data.get("known_categories", [])],
    }
