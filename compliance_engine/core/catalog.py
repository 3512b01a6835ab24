"""Question catalog loading and lookup."""

from __future__ import annotations

import json
import logging
import threading
from collections.abc import Iterable
from pathlib import Path
from typing import Any

from compliance_engine.config.settings import get_config
from compliance_engine.errors.exceptions import ConfigurationError
from compliance_engine.schemas.catalog import Process, Question, Referential

logger = logging.getLogger(__name__)

DEFAULT_CATALOG_PATH = Path(__file__).resolve().parent.parent / "data" / "catalog.json"


class QuestionCatalog:
    """
    Static, queryable set of published questions.

    Questions keep the order they are declared in; referentials and processes
    are ranked by their display order, used for stable question set ordering.
    """

    def __init__(
        self,
        questions: Iterable[Question],
        referentials: Iterable[Referential] = (),
        processes: Iterable[Process] = (),
    ):
        self.questions: tuple[Question, ...] = tuple(questions)
        self.referentials: tuple[Referential, ...] = tuple(
            sorted(referentials, key=lambda r: (r.display_order, r.id))
        )
        self.processes: tuple[Process, ...] = tuple(
            sorted(processes, key=lambda p: (p.display_order, p.id))
        )
        self._by_key: dict[str, Question] = {}
        for question in self.questions:
            if question.key in self._by_key:
                raise ConfigurationError(f"Duplicate question key in catalog: {question.key}")
            self._by_key[question.key] = question
        self._referential_rank = {r.id: i for i, r in enumerate(self.referentials)}
        self._process_rank = {p.id: i for i, p in enumerate(self.processes)}
        self._sequence = {q.key: i for i, q in enumerate(self.questions)}

    def __len__(self) -> int:
        return len(self.questions)

    @property
    def referential_ids(self) -> set[str]:
        return {r.id for r in self.referentials}

    def get(self, key: str) -> Question | None:
        return self._by_key.get(key)

    def referential_rank(self, referential_id: str) -> int:
        return self._referential_rank.get(referential_id, len(self._referential_rank))

    def process_rank(self, process_id: str) -> int:
        return self._process_rank.get(process_id, len(self._process_rank))

    def sequence_of(self, question: Question) -> tuple[int, int]:
        """Catalog position: declared sequence, then load order."""
        return (question.sequence, self._sequence.get(question.key, len(self._sequence)))

    def process_name(self, process_id: str) -> str:
        for process in self.processes:
            if process.id == process_id:
                return process.name
        return process_id


def parse_catalog(data: dict[str, Any]) -> QuestionCatalog:
    """Build a catalog from its JSON document form."""
    try:
        return QuestionCatalog(
            questions=[Question.model_validate(q) for q in data.get("questions", [])],
            referentials=[Referential.model_validate(r) for r in data.get("referentials", [])],
            processes=[Process.model_validate(p) for p in data.get("processes", [])],
        )
    except ValueError as e:
        raise ConfigurationError(f"Invalid question catalog: {e}") from e


def load_catalog(path: Path | None = None) -> QuestionCatalog:
    """Load a catalog JSON file, defaulting to the packaged one."""
    catalog_path = path or DEFAULT_CATALOG_PATH
    try:
        with open(catalog_path, encoding="utf-8") as f:
            data = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        raise ConfigurationError(f"Cannot read question catalog {catalog_path}: {e}") from e

    catalog = parse_catalog(data)
    logger.info(f"Loaded {len(catalog)} questions from {catalog_path}")
    return catalog


# Singleton catalog instance (lazy loaded)
_catalog: QuestionCatalog | None = None
_catalog_lock = threading.Lock()


def get_catalog() -> QuestionCatalog:
    """Get the catalog singleton, loaded from CATALOG_PATH or the packaged file."""
    global _catalog
    with _catalog_lock:
        if _catalog is None:
            _catalog = load_catalog(get_config().catalog_path)
        return _catalog


def set_catalog(catalog: QuestionCatalog | None) -> None:
    """Replace or reset the catalog singleton (useful for testing)."""
    global _catalog
    with _catalog_lock:
        _catalog = catalog
