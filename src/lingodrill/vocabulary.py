import glob
import logging
import os
from typing import Any, Dict, List

import pandas as pd

from .models import VocabItem

logger = logging.getLogger(__name__)

SPANISH_PREFIXES = ("spanish", "es_")

DUMMY_WORDS = [
    {"word": "مرحبا", "translation": "hello", "transliteration": "marhaba"},
    {"word": "شكرا", "translation": "thank you", "transliteration": "shukran"},
    {"word": "نعم", "translation": "yes", "transliteration": "naam"},
    {"word": "لا", "translation": "no", "transliteration": "la"},
    {"word": "ماء", "translation": "water", "transliteration": "maa"},
]


def _default_language(topic: str) -> str:
    return "spanish" if topic.lower().startswith(SPANISH_PREFIXES) else "arabic"


def _clean(value: Any) -> str:
    if value is None or pd.isna(value):
        return ""
    return str(value).strip()


def _to_items(topic: str, rows: List[Dict[str, Any]]) -> List[VocabItem]:
    language = _default_language(topic)
    items = []
    for i, row in enumerate(rows):
        word = _clean(row.get("word"))
        translation = _clean(row.get("translation"))
        if not word or not translation:
            continue
        items.append(
            VocabItem(
                id=_clean(row.get("id")) or f"{topic}-{i}",
                word=word,
                translation=translation,
                transliteration=_clean(row.get("transliteration")) or None,
                language=_clean(row.get("language")) or language,
            )
        )
    return items


# --- Service Layer: Vocabulary Management ---
class VocabularyManager:
    """Manages loading and accessing vocabulary sets."""

    def __init__(self, directory: str):
        self.directory = directory
        self.vocab_sets: Dict[str, List[VocabItem]] = {}
        self.load_all()

    def load_all(self):
        self.vocab_sets = {}
        if not os.path.exists(self.directory):
            os.makedirs(self.directory)
            logger.warning(f"Created directory {self.directory}. Please add CSV files.")

        csv_files = glob.glob(os.path.join(self.directory, "*.csv"))
        for file_path in csv_files:
            try:
                file_name = os.path.splitext(os.path.basename(file_path))[0]
                df = pd.read_csv(file_path, encoding="utf-8", dtype=str)
                if "word" in df.columns and "translation" in df.columns:
                    items = _to_items(file_name, df.to_dict("records"))
                    if len({item.id for item in items}) != len(items):
                        logger.error(f"Skipping {file_name}: Duplicate ids.")
                        continue
                    self.vocab_sets[file_name] = items
                    logger.info(f"Loaded {len(items)} words from {file_name}")
                else:
                    logger.error(f"Skipping {file_name}: Missing columns.")
            except Exception as e:
                logger.error(f"Failed to load {file_path}: {e}")

        if not self.vocab_sets:
            logger.warning("No CSV files found. Loading dummy data.")
            self.vocab_sets["default_dummy"] = _to_items("default_dummy", DUMMY_WORDS)

    def get_items(self, topic: str) -> List[VocabItem]:
        return self.vocab_sets.get(topic, [])

    def get_topics(self) -> List[Dict[str, Any]]:
        topics = []
        for key, items in self.vocab_sets.items():
            display_name = key.replace("_", " ").title()
            language = items[0].language if items else _default_language(key)
            topics.append(
                {"id": key, "name": display_name, "count": len(items), "language": language}
            )
        topics.sort(key=lambda x: x["name"])
        return topics
