"""Class label store: ordered class names indexed by model output position."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from pathlib import Path

from classifyx.ml.errors import LabelLoadError

logger = logging.getLogger(__name__)

DEFAULT_NUM_CLASSES: int = 1000


@dataclass(frozen=True)
class ClassLabel:
    """A class name and its position in the model output."""

    class_id: int
    name: str


def synthesize_class_names(count: int = DEFAULT_NUM_CLASSES) -> list[str]:
    """Return placeholder names ``Class_0 .. Class_{count-1}``."""
    return [f"Class_{i}" for i in range(count)]


class ClassLabelStore:
    """Holds the ordered label set for the loaded model.

    A store is never empty once ``load`` has returned: a missing or omitted
    label file falls back to synthesized names, while an invalid one raises.
    """

    def __init__(self, default_count: int = DEFAULT_NUM_CLASSES) -> None:
        self._default_count = default_count
        self._names: list[str] = []

    def load(self, path: str | Path | None = None) -> None:
        """Load class names from ``path``.

        JSON files must contain a list of strings. Any other file is read as
        newline-delimited text, one label per line. Trailing blank lines are
        dropped; an interior blank line keeps its position as ``Class_<i>``.

        Raises:
            LabelLoadError: If the file exists but is malformed or empty.
        """
        if path is None:
            self._names = synthesize_class_names(self._default_count)
            return

        label_path = Path(path)
        if not label_path.exists():
            logger.warning("Class names file %s not found, using %d synthesized labels", path, self._default_count)
            self._names = synthesize_class_names(self._default_count)
            return

        try:
            content = label_path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as exc:
            raise LabelLoadError(f"Cannot read class names file {path}: {exc}") from exc

        if label_path.suffix.lower() == ".json":
            names = _parse_json_names(content, label_path)
        else:
            names = _parse_text_names(content)

        if not names:
            raise LabelLoadError(f"Class names file {path} contains no labels")

        self._names = names
        logger.info("Loaded %d class names from %s", len(names), path)

    @property
    def names(self) -> list[str]:
        """Return a copy of the ordered class names."""
        return list(self._names)

    def name_for(self, class_id: int) -> str:
        return self._names[class_id]

    def labels(self) -> list[ClassLabel]:
        return [ClassLabel(class_id=i, name=name) for i, name in enumerate(self._names)]

    def __len__(self) -> int:
        return len(self._names)


def _parse_text_names(content: str) -> list[str]:
    lines = [line.strip() for line in content.splitlines()]
    while lines and not lines[-1]:
        lines.pop()
    return [line or f"Class_{i}" for i, line in enumerate(lines)]


def _parse_json_names(content: str, path: Path) -> list[str]:
    try:
        data = json.loads(content)
    except json.JSONDecodeError as exc:
        raise LabelLoadError(f"Invalid JSON in class names file {path}: {exc}") from exc

    if not isinstance(data, list) or not all(isinstance(item, str) for item in data):
        raise LabelLoadError(f"Class names file {path} must contain a JSON list of strings")
    return data
