import json
import os
from threading import Lock
from typing import List, Protocol

from pydantic import ValidationError

from fastbill.core.config import LEARNING_CAP
from fastbill.domain.schemas import LearnedCorrection
from fastbill.utils.logging_config import get_logger

logger = get_logger("learning")


class LearningStore(Protocol):
    """
    Correction log for the product matcher, keyed by normalized query text.
    One writer (the active session) at a time.
    """

    def get(self, key: str) -> List[LearnedCorrection]:
        return [e for e in self.get_all() if e.original_input == key]

    def get_all(self) -> List[LearnedCorrection]:
        ...

    def put(self, entry: LearnedCorrection) -> None:
        ...

    def evict_oldest(self, cap: int = LEARNING_CAP) -> int:
        ...


class InMemoryLearningStore(LearningStore):
    def __init__(self, entries=None):
        self.lock = Lock()
        self.entries: List[LearnedCorrection] = list(entries or [])

    def get_all(self) -> List[LearnedCorrection]:
        with self.lock:
            return list(self.entries)

    def put(self, entry: LearnedCorrection) -> None:
        with self.lock:
            self.entries.append(entry)

    def evict_oldest(self, cap: int = LEARNING_CAP) -> int:
        with self.lock:
            overflow = max(0, len(self.entries) - cap)
            if overflow:
                del self.entries[:overflow]
            return overflow


class JsonFileLearningStore(LearningStore):
    """
    Correction log persisted to a JSON file. Load/save failures are logged
    and the in-memory copy keeps working.
    """

    def __init__(self, file_path: str):
        self.file_path = file_path
        self.lock = Lock()
        self.entries = self._load_entries()

    def _load_entries(self) -> List[LearnedCorrection]:
        if not os.path.exists(self.file_path):
            return []
        try:
            with open(self.file_path, "r", encoding="utf-8") as f:
                raw = json.load(f)
            return [LearnedCorrection(**item) for item in raw]
        except (OSError, ValueError, TypeError, ValidationError) as e:
            logger.error(f"Failed to load learning log {self.file_path}: {e}")
            return []

    def _save_entries(self):
        try:
            with open(self.file_path, "w", encoding="utf-8") as f:
                json.dump([e.model_dump() for e in self.entries], f, indent=4)
        except OSError as e:
            logger.error(f"Failed to save learning log {self.file_path}: {e}")

    def get_all(self) -> List[LearnedCorrection]:
        with self.lock:
            return list(self.entries)

    def put(self, entry: LearnedCorrection) -> None:
        with self.lock:
            self.entries.append(entry)
            self._save_entries()
            logger.info(f"Learned '{entry.original_input}' -> {entry.selected_product.get('name')}")

    def evict_oldest(self, cap: int = LEARNING_CAP) -> int:
        with self.lock:
            overflow = max(0, len(self.entries) - cap)
            if overflow:
                del self.entries[:overflow]
                self._save_entries()
            return overflow
