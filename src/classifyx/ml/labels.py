"""Class label catalog: a read-only mapping from class index to canonical name.

Canonical names use underscores in place of spaces (``great_white_shark``);
:meth:`LabelCatalog.display_name` turns them into display text. Gaps in the
index space are allowed and fall back to ``class_<index>``.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Iterable, Iterator, Mapping
from pathlib import Path
from types import MappingProxyType

logger = logging.getLogger(__name__)

# Leading ImageNet-1k classes. Indices past the table fall back to class_<n>.
IMAGENET_CLASSES: tuple[tuple[int, str], ...] = (
    (0, "tench"),
    (1, "goldfish"),
    (2, "great_white_shark"),
    (3, "tiger_shark"),
    (4, "hammerhead"),
    (5, "electric_ray"),
    (6, "stingray"),
    (7, "cock"),
    (8, "hen"),
    (9, "ostrich"),
    (10, "brambling"),
    (11, "goldfinch"),
    (12, "house_finch"),
    (13, "junco"),
    (14, "indigo_bunting"),
    (15, "robin"),
    (16, "bulbul"),
    (17, "jay"),
    (18, "magpie"),
    (19, "chickadee"),
)


def fallback_name(index: int) -> str:
    return f"class_{index}"


def display_name(labels: Mapping[int, str] | None, index: int) -> str:
    """Look up a class index and turn its canonical name into display text.

    Missing indices (or no table at all) fall back to ``class_<index>``;
    underscores become spaces either way.
    """
    name = labels.get(index) if labels is not None else None
    if name is None:
        name = fallback_name(index)
    return name.replace("_", " ")


class LabelCatalog(Mapping[int, str]):
    """Immutable index -> canonical name table, built once at startup."""

    def __init__(self, entries: Iterable[tuple[int, str]]) -> None:
        table: dict[int, str] = {}
        for index, name in entries:
            if index < 0:
                raise ValueError(f"Negative class index: {index}")
            if index in table:
                raise ValueError(f"Duplicate class index: {index}")
            table[index] = name
        self._table = MappingProxyType(table)

    @classmethod
    def default(cls) -> LabelCatalog:
        """Return the built-in ImageNet table."""
        return cls(IMAGENET_CLASSES)

    @classmethod
    def from_file(cls, path: str | Path) -> LabelCatalog:
        """Load labels from a text or JSON file.

        Text files hold one canonical name per line; the zero-based line
        number is the class index and blank lines are gaps. JSON files hold
        either a list of names or an object mapping index strings to names.

        Raises:
            FileNotFoundError: If the file does not exist.
            ValueError: If the JSON content has an unsupported shape.
        """
        path = Path(path)
        text = path.read_text(encoding="utf-8")

        if path.suffix.lower() == ".json":
            data = json.loads(text)
            if isinstance(data, list):
                entries = [(i, str(name)) for i, name in enumerate(data) if name]
            elif isinstance(data, dict):
                entries = [(int(key), str(name)) for key, name in data.items()]
            else:
                raise ValueError(f"Unsupported label file layout in {path}")
        else:
            entries = [(i, line.strip()) for i, line in enumerate(text.splitlines()) if line.strip()]

        catalog = cls(entries)
        logger.info("Loaded %d labels from %s", len(catalog), path)
        return catalog

    def display_name(self, index: int) -> str:
        """Return the display name for a class index (underscores become spaces)."""
        return display_name(self._table, index)

    def __getitem__(self, index: int) -> str:
        return self._table[index]

    def __iter__(self) -> Iterator[int]:
        return iter(self._table)

    def __len__(self) -> int:
        return len(self._table)
