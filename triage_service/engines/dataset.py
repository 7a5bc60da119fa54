"""
Dataset Loader
==============

Loads the disease/symptom knowledge base from three CSV files:

- dataset_cleaned.csv: disease name + symptom columns (one or more rows per disease)
- symptom_description_cleaned.csv: disease name + description
- symptom_precaution_cleaned.csv: disease name + precaution columns

The loaded Dataset is read-only and shared for the lifetime of the process.
If no data directory can be found, a "not loaded" Dataset is returned and
callers degrade to an advisory reply instead of failing.
"""

import csv
import io
import logging
import re
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, FrozenSet, Iterable, List, Optional, Tuple

from triage_service import config

logger = logging.getLogger(__name__)


def normalize_token(value: str) -> str:
    """
    Normalize a symptom token or free text.

    Lowercase, underscores/hyphens become spaces, non-word characters other
    than periods are stripped, whitespace is collapsed.
    """
    value = (value or "").lower().strip()
    value = re.sub(r"[_-]+", " ", value)
    value = re.sub(r"[^\w\s.]", " ", value)
    value = re.sub(r"\s+", " ", value)
    return value.strip()


def parse_csv_rows(text: str) -> List[List[str]]:
    """
    Parse CSV text into rows of stripped cells.

    Quoted fields may contain commas and newlines. Both \\r\\n and \\n line
    endings are accepted. Rows with no non-empty cell are dropped.
    """
    rows = []
    reader = csv.reader(io.StringIO(text, newline=""))
    for row in reader:
        cells = [cell.strip() for cell in row]
        if any(cells):
            rows.append(cells)
    return rows


@dataclass(frozen=True)
class Disease:
    """A disease and its symptom tokens (first-seen order, unique)."""
    name: str
    symptoms: Tuple[str, ...]


@dataclass(frozen=True)
class Dataset:
    """Immutable in-memory knowledge base."""
    loaded: bool
    symptoms: Tuple[str, ...] = ()
    diseases: Tuple[Disease, ...] = ()
    descriptions: Dict[str, str] = field(default_factory=dict)
    precautions: Dict[str, List[str]] = field(default_factory=dict)
    source_dir: Optional[str] = None

    @property
    def symptom_set(self) -> FrozenSet[str]:
        return frozenset(self.symptoms)

    @classmethod
    def not_loaded(cls) -> "Dataset":
        return cls(loaded=False)


def build_dataset(
    matrix_rows: List[List[str]],
    description_rows: List[List[str]],
    precaution_rows: List[List[str]],
    source_dir: Optional[str] = None,
) -> Dataset:
    """Build a Dataset from parsed rows. The first row of each table is a header."""
    symptoms: Dict[str, None] = {}
    disease_map: Dict[str, Dict[str, None]] = {}

    for row in matrix_rows[1:]:
        disease = row[0].strip() if row else ""
        if not disease:
            continue
        entry = disease_map.setdefault(disease, {})
        for cell in row[1:]:
            symptom = normalize_token(cell)
            if not symptom:
                continue
            entry[symptom] = None
            symptoms[symptom] = None

    descriptions = {}
    for row in description_rows[1:]:
        disease = row[0].strip() if row else ""
        if not disease:
            continue
        descriptions[disease] = row[1] if len(row) > 1 else ""

    precautions = {}
    for row in precaution_rows[1:]:
        disease = row[0].strip() if row else ""
        if not disease:
            continue
        precautions[disease] = [p.strip() for p in row[1:] if p and p.strip()]

    return Dataset(
        loaded=True,
        symptoms=tuple(symptoms),
        diseases=tuple(Disease(name, tuple(s)) for name, s in disease_map.items()),
        descriptions=descriptions,
        precautions=precautions,
        source_dir=source_dir,
    )


class DatasetLoader:
    """
    Lazily loads the dataset exactly once per loader instance.

    Thread-safe: concurrent first calls to load() block on a lock and
    all receive the same Dataset object.
    """

    def __init__(self, candidates: Optional[Iterable[Path]] = None):
        self._candidates = list(candidates) if candidates is not None else None
        self._dataset: Optional[Dataset] = None
        self._lock = threading.Lock()

    def _find_data_dir(self) -> Optional[Path]:
        candidates = self._candidates if self._candidates is not None else config.dataset_dir_candidates()
        for directory in candidates:
            directory = Path(directory)
            if (directory / config.DATASET_FILE).exists():
                return directory
        return None

    def load(self) -> Dataset:
        if self._dataset is not None:
            return self._dataset

        with self._lock:
            if self._dataset is None:
                self._dataset = self._read()
        return self._dataset

    def _read(self) -> Dataset:
        data_dir = self._find_data_dir()
        if data_dir is None:
            logger.warning("Dataset directory not found; running in degraded mode")
            return Dataset.not_loaded()

        def read_rows(filename: str) -> List[List[str]]:
            path = data_dir / filename
            if not path.exists():
                logger.warning(f"Dataset file missing: {path}")
                return []
            return parse_csv_rows(path.read_text(encoding="utf-8"))

        dataset = build_dataset(
            read_rows(config.DATASET_FILE),
            read_rows(config.DESCRIPTION_FILE),
            read_rows(config.PRECAUTION_FILE),
            source_dir=str(data_dir),
        )
        logger.info(
            f"Dataset loaded from {data_dir}: "
            f"{len(dataset.diseases)} diseases, {len(dataset.symptoms)} symptoms"
        )
        return dataset
