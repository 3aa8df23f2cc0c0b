"""Stamp catalog: reusable label/colour/coefficient marks shared by every copy."""
import logging
from typing import Iterable, Iterator, List, Optional

from pdfgrade.models import DEFAULT_STAMP_PREFIX, StampColor, StampDefinition

logger = logging.getLogger(__name__)


DEFAULT_STAMPS = (
    StampDefinition(id="default-ok", label="Correct", color=StampColor.GREEN, coefficient=1.0),
    StampDefinition(id="default-calc-error", label="Calculation Error",
                    color=StampColor.YELLOW, coefficient=0.5),
    StampDefinition(id="default-wrong", label="Wrong", color=StampColor.RED, coefficient=0.0),
    StampDefinition(id="default-off-topic", label="Off Topic",
                    color=StampColor.YELLOW, coefficient=0.0),
    StampDefinition(id="default-incomplete", label="Incomplete",
                    color=StampColor.YELLOW, coefficient=0.5),
)


class StampCatalog:
    """Mutable, engine-scoped collection of stamp definitions.

    Seeded with the five built-in stamps.  Built-ins (``default-*`` IDs) can
    never be removed.  Placed stamps keep a snapshot of label and colour, so
    edits here never rewrite existing annotations.
    """

    def __init__(self, definitions: Optional[Iterable[StampDefinition]] = None):
        self._definitions: List[StampDefinition] = list(
            DEFAULT_STAMPS if definitions is None else definitions
        )

    def __iter__(self) -> Iterator[StampDefinition]:
        return iter(list(self._definitions))

    def __len__(self) -> int:
        return len(self._definitions)

    def all(self) -> List[StampDefinition]:
        return list(self._definitions)

    def get(self, stamp_id: str) -> Optional[StampDefinition]:
        return next((s for s in self._definitions if s.id == stamp_id), None)

    def add(self, label: str, color: StampColor, coefficient: float = 1.0) -> StampDefinition:
        stamp = StampDefinition(
            label=label,
            color=StampColor(color),
            coefficient=max(0.0, min(1.0, float(coefficient))),
        )
        self._definitions.append(stamp)
        logger.debug("stamp added: %s (%s, %.2f)", stamp.label, stamp.color.value, stamp.coefficient)
        return stamp

    def remove(self, stamp_id: str) -> bool:
        if stamp_id.startswith(DEFAULT_STAMP_PREFIX):
            return False
        before = len(self._definitions)
        self._definitions = [s for s in self._definitions if s.id != stamp_id]
        return len(self._definitions) != before
