import logging
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

import yaml
from pydantic import ValidationError

from src.constants import Category, QuestionKind
from services.assessment_engine.models import Question

logger = logging.getLogger(__name__)


class CatalogValidationError(ValueError):
    """Custom exception for catalog problems not covered by Pydantic."""
    pass


class QuestionCatalog:
    """
    Read-only, ordered question set. Sessions take a snapshot at start and never
    look back at the live catalog.
    """

    def __init__(self, questions: Iterable[Question], version: Optional[str] = None):
        questions = list(questions)
        _validate_questions(questions)
        # sorted() is stable, so equal order values keep their file order
        self._questions = tuple(sorted(questions, key=lambda q: q.order))
        self.version = version

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "QuestionCatalog":
        raw_questions = data.get("questions")
        if not isinstance(raw_questions, list):
            raise CatalogValidationError("Catalog must contain a 'questions' list")
        try:
            questions = [Question.model_validate(q) for q in raw_questions]
        except ValidationError as e:
            raise CatalogValidationError(f"Invalid question definition: {e}") from e
        return cls(questions, version=data.get("version"))

    @classmethod
    def from_yaml(cls, file_path: str) -> "QuestionCatalog":
        path = Path(file_path)
        if not path.is_file():
            raise FileNotFoundError(f"Question catalog not found at {file_path}")
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise CatalogValidationError(f"Error parsing YAML file {file_path}: {e}") from e
        catalog = cls.from_dict(data or {})
        logger.info(f"Loaded question catalog {catalog.version or '(unversioned)'} with {len(catalog)} questions from {file_path}")
        return catalog

    def __len__(self) -> int:
        return len(self._questions)

    def list_questions(self, category: Optional[Category] = None) -> List[Question]:
        if category is None:
            return list(self._questions)
        return [q for q in self._questions if q.category == category]

    def snapshot(self) -> List[Question]:
        # Questions are frozen models, so a fresh list is an independent snapshot
        return list(self._questions)

    def categories(self) -> List[Category]:
        seen: List[Category] = []
        for q in self._questions:
            if q.category not in seen:
                seen.append(q.category)
        return seen


def _validate_questions(questions: List[Question]) -> None:
    """Checks for duplicate IDs and malformed option lists."""
    ids = set()
    for question in questions:
        if question.id in ids:
            raise CatalogValidationError(f"Duplicate question ID found: {question.id}")
        ids.add(question.id)

        if not question.options:
            raise CatalogValidationError(f"Question '{question.id}' has no options")
        if question.kind == QuestionKind.YES_NO and len(question.options) != 2:
            raise CatalogValidationError(f"Yes/no question '{question.id}' must have exactly two options")

        values = set()
        for option in question.options:
            if option.value in values:
                raise CatalogValidationError(f"Duplicate option value '{option.value}' in question '{question.id}'")
            values.add(option.value)
            if option.weight < 0:
                raise CatalogValidationError(f"Negative weight for option '{option.value}' in question '{question.id}'")
