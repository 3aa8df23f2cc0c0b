"""Grading engine: the single owner of mutable grading state.

Every mutation of a graded copy goes through this facade.  After an
effective change the engine refreshes the copy's ``updated_at``, persists the
copy to its sidecar file, bumps ``version`` and notifies subscribers.
Operations referencing unknown IDs are silent no-ops, and persistence errors
are captured into ``save_error`` instead of being raised.
"""
import copy as copy_module
import logging
from dataclasses import dataclass, replace
from enum import Enum
from typing import Callable, List, Optional, Tuple

from pdfgrade import data_store
from pdfgrade.annotation_hits import DEFAULT_PAGE_SIZE, find_annotation_at
from pdfgrade.data_store import FileStore
from pdfgrade.errors import PersistenceError
from pdfgrade.models import (
    Annotation,
    AnnotationContent,
    CopyFeedback,
    DrawingBounds,
    DrawingContent,
    NormalizedPosition,
    QuestionStatus,
    Section,
    StampColor,
    StampContent,
    StampDefinition,
    STRUCTURE_WITH_POSITIONS,
    TextContent,
    clone_rubric,
)
from pdfgrade.stamps import StampCatalog

logger = logging.getLogger(__name__)


class Tool(str, Enum):
    SELECT = "select"
    TEXT = "text"
    STAMP = "stamp"


class PositionKind(str, Enum):
    TOTAL = "total"
    SECTION = "section"
    QUESTION = "question"


@dataclass(frozen=True)
class PositionTarget:
    """A badge-producing element that can be pinned to a page location."""
    kind: PositionKind
    id: Optional[str] = None

    @classmethod
    def total(cls) -> "PositionTarget":
        return cls(PositionKind.TOTAL)

    @classmethod
    def section(cls, section_id: str) -> "PositionTarget":
        return cls(PositionKind.SECTION, section_id)

    @classmethod
    def question(cls, question_id: str) -> "PositionTarget":
        return cls(PositionKind.QUESTION, question_id)


Listener = Callable[[str, Optional[str]], None]


class GradingEngine:
    def __init__(self, store: Optional[FileStore] = None,
                 stamps: Optional[StampCatalog] = None):
        self.store = store or data_store.default_store()
        self.stamps = stamps or StampCatalog()

        self.copies: List[CopyFeedback] = []
        self.selected_copy_id: Optional[str] = None

        # Transient UI-facing state, never persisted.
        self.positioning_target: Optional[PositionTarget] = None
        self.selected_tool: Tool = Tool.SELECT
        self.selected_stamp_id: Optional[str] = None
        self.selected_annotation_id: Optional[str] = None
        self.inline_editing_annotation_id: Optional[str] = None

        self.save_error: Optional[Exception] = None
        self.version = 0
        self._listeners: List[Listener] = []

    # ── Change notification ──────────────────────────────────────────────────

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register *listener(event, copy_id)*; returns an unsubscribe callable."""
        self._listeners.append(listener)

        def unsubscribe():
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _notify(self, event: str, copy_id: Optional[str] = None) -> None:
        self.version += 1
        for listener in list(self._listeners):
            listener(event, copy_id)

    def _commit(self, copy: CopyFeedback, event: str) -> None:
        self._save(copy)
        self._notify(event, copy.id)

    # ── Current copy ─────────────────────────────────────────────────────────

    @property
    def current_copy(self) -> Optional[CopyFeedback]:
        if self.selected_copy_id is None:
            return None
        return self.get_copy(self.selected_copy_id)

    def get_copy(self, copy_id: str) -> Optional[CopyFeedback]:
        return next((c for c in self.copies if c.id == copy_id), None)

    def _mutate(self, event: str, fn: Callable[[CopyFeedback], bool]) -> bool:
        """Apply *fn* to the current copy; commit when it reports a change."""
        copy = self.current_copy
        if copy is None:
            return False
        if not fn(copy):
            return False
        self._commit(copy, event)
        return True

    # ── Student identity ─────────────────────────────────────────────────────

    def set_student_name(self, name: Optional[str]) -> None:
        def apply(copy):
            copy.student_name = name or None
            copy.touch()
            return True
        self._mutate("student", apply)

    def set_student_id(self, student_id: Optional[str]) -> None:
        def apply(copy):
            copy.student_id = student_id or None
            copy.touch()
            return True
        self._mutate("student", apply)

    # ── Scoring ──────────────────────────────────────────────────────────────

    def set_points(self, question_id: str, points: Optional[float]) -> None:
        self._mutate("grade", lambda c: c.set_points(question_id, points))

    def set_question_status(self, question_id: str, status: QuestionStatus) -> None:
        self._mutate("grade", lambda c: c.set_status(question_id, QuestionStatus(status)))

    def set_question_stamp(self, question_id: str, stamp: StampDefinition) -> None:
        self._mutate("grade", lambda c: c.set_stamp(question_id, stamp))

    def clear_question_stamp(self, question_id: str) -> None:
        self._mutate("grade", lambda c: c.clear_stamp(question_id))

    # ── Positions ────────────────────────────────────────────────────────────

    def set_question_position(self, question_id: str,
                              position: Optional[NormalizedPosition]) -> None:
        self._mutate("position", lambda c: c.set_question_position(question_id, position))

    def set_section_position(self, section_id: str,
                             position: Optional[NormalizedPosition]) -> None:
        self._mutate("position", lambda c: c.set_section_position(section_id, position))

    def set_total_position(self, position: Optional[NormalizedPosition]) -> None:
        self._mutate("position", lambda c: c.set_total_position(position))

    def toggle_positioning(self, target: PositionTarget) -> None:
        """Enter positioning mode for *target*, or leave it if already active."""
        self.positioning_target = None if self.positioning_target == target else target
        self._notify("positioning", self.selected_copy_id)

    def cancel_positioning(self) -> None:
        if self.positioning_target is not None:
            self.positioning_target = None
            self._notify("positioning", self.selected_copy_id)

    def position_element(self, target: PositionTarget, position: NormalizedPosition) -> None:
        """Place *target* at *position* and leave positioning mode."""
        self._set_position(target, position)
        self.positioning_target = None

    def clear_position(self, target: PositionTarget) -> None:
        """Remove *target*'s position; positioning mode is left untouched."""
        self._set_position(target, None)

    def _set_position(self, target: PositionTarget,
                      position: Optional[NormalizedPosition]) -> None:
        if target.kind is PositionKind.TOTAL:
            self.set_total_position(position)
        elif target.kind is PositionKind.SECTION:
            self.set_section_position(target.id, position)
        elif target.kind is PositionKind.QUESTION:
            self.set_question_position(target.id, position)

    # ── Rubric structure ─────────────────────────────────────────────────────

    def add_section(self, name: Optional[str] = None) -> Optional[Section]:
        added = []

        def apply(copy):
            added.append(copy.add_section(name))
            return True

        self._mutate("rubric", apply)
        return added[0] if added else None

    def update_section(self, section_id: str, name: str, short_name: str) -> None:
        self._mutate("rubric", lambda c: c.update_section(section_id, name, short_name))

    def delete_section(self, section_id: str) -> None:
        self._mutate("rubric", lambda c: c.delete_section(section_id))

    def add_question(self, section_id: str, name: Optional[str] = None,
                     max_points: float = 1.0):
        added = []

        def apply(copy):
            question = copy.add_question(section_id, name, max_points)
            if question is None:
                return False
            added.append(question)
            return True

        self._mutate("rubric", apply)
        return added[0] if added else None

    def update_question(self, question_id: str, name: str, short_name: str,
                        max_points: float) -> None:
        self._mutate("rubric",
                     lambda c: c.update_question(question_id, name, short_name, max_points))

    def delete_question(self, question_id: str) -> None:
        self._mutate("rubric", lambda c: c.delete_question(question_id))

    def import_rubric(self, sections: List[Section]) -> None:
        """Replace the current copy's rubric with *sections*."""
        def apply(copy):
            copy.sections = list(sections)
            copy.touch()
            return True
        self._mutate("rubric", apply)

    def apply_current_rubric_to_all(self) -> int:
        """Clone the current rubric onto every other copy that has none.

        Structure, short names, max points and badge positions are carried;
        points, statuses and stamps are not.  Copies that already have at
        least one section are never touched.  Returns the number updated.
        """
        source = self.current_copy
        if source is None:
            return 0
        updated = 0
        for target in self.copies:
            if target.id == source.id or target.sections:
                continue
            target.sections = clone_rubric(source.sections, STRUCTURE_WITH_POSITIONS)
            target.total_position = source.total_position
            target.touch()
            self._save(target)
            updated += 1
        if updated:
            self._notify("rubric", None)
        logger.info("applied rubric of %s to %d other copies", source.id, updated)
        return updated

    # ── Annotations ──────────────────────────────────────────────────────────

    def add_annotation(self, content: AnnotationContent,
                       position: NormalizedPosition) -> Optional[Annotation]:
        copy = self.current_copy
        if copy is None:
            return None
        annotation = Annotation(position=position, content=content)
        copy.add_annotation(annotation)
        self._commit(copy, "annotation")
        return annotation

    def add_text_annotation(self, text: str,
                            position: NormalizedPosition) -> Optional[Annotation]:
        return self.add_annotation(TextContent(text), position)

    def add_stamp_annotation(self, stamp: StampDefinition,
                             position: NormalizedPosition) -> Optional[Annotation]:
        content = StampContent(definition_id=stamp.id, text=stamp.label, color=stamp.color)
        return self.add_annotation(content, position)

    def add_drawing_annotation(self, data: bytes, bounds: DrawingBounds,
                               page: int) -> Optional[Annotation]:
        cx, cy = bounds.center()
        return self.add_annotation(DrawingContent(data=data, bounds=bounds),
                                   NormalizedPosition(x=cx, y=cy, page=page))

    def update_text_annotation(self, annotation_id: str, text: str) -> None:
        self._mutate("annotation", lambda c: c.update_text(annotation_id, text))

    def move_annotation(self, annotation_id: str, position: NormalizedPosition) -> None:
        self._mutate("annotation", lambda c: c.move_annotation(annotation_id, position))

    def remove_annotation(self, annotation_id: str) -> None:
        if self._mutate("annotation", lambda c: c.remove_annotation(annotation_id)):
            if self.selected_annotation_id == annotation_id:
                self.selected_annotation_id = None
            if self.inline_editing_annotation_id == annotation_id:
                self.inline_editing_annotation_id = None

    def begin_text_annotation(self, position: NormalizedPosition) -> Optional[Annotation]:
        """Create an empty text note and mark it as being edited inline.

        The note is not written to the sidecar until it has text or editing
        finishes; ``finish_inline_editing`` drops it if it is still blank.
        """
        if self.inline_editing_annotation_id is not None:
            self.finish_inline_editing()
        copy = self.current_copy
        if copy is None:
            return None
        annotation = Annotation(position=position, content=TextContent(""))
        copy.add_annotation(annotation)
        self.inline_editing_annotation_id = annotation.id
        self._notify("annotation", copy.id)
        return annotation

    def finish_inline_editing(self) -> None:
        """Commit the inline note; a note left blank is deleted."""
        editing_id = self.inline_editing_annotation_id
        copy = self.current_copy
        if editing_id is None or copy is None:
            return
        self.inline_editing_annotation_id = None
        annotation = copy.find_annotation(editing_id)
        if (annotation is not None and isinstance(annotation.content, TextContent)
                and not annotation.content.text.strip()):
            copy.remove_annotation(editing_id)
            if self.selected_annotation_id == editing_id:
                self.selected_annotation_id = None
        copy.touch()
        self._commit(copy, "annotation")

    # ── Stamp catalog ────────────────────────────────────────────────────────

    @property
    def stamp_definitions(self) -> List[StampDefinition]:
        return self.stamps.all()

    def stamp_definition(self, stamp_id: str) -> Optional[StampDefinition]:
        return self.stamps.get(stamp_id)

    def add_stamp_definition(self, label: str, color: StampColor,
                             coefficient: float = 1.0) -> StampDefinition:
        stamp = self.stamps.add(label, color, coefficient)
        self._notify("stamps")
        return stamp

    def remove_stamp_definition(self, stamp_id: str) -> None:
        if self.stamps.remove(stamp_id):
            if self.selected_stamp_id == stamp_id:
                self.selected_stamp_id = None
            self._notify("stamps")

    # ── Tools & selection ────────────────────────────────────────────────────

    def select_tool(self, tool: Tool) -> None:
        if self.inline_editing_annotation_id is not None:
            self.finish_inline_editing()
        self.selected_tool = Tool(tool)

    def select_stamp(self, stamp_id: Optional[str]) -> None:
        if stamp_id is not None and self.stamps.get(stamp_id) is None:
            return
        self.selected_stamp_id = stamp_id

    def select_annotation(self, annotation_id: Optional[str]) -> None:
        self.selected_annotation_id = annotation_id

    @property
    def selected_annotation(self) -> Optional[Annotation]:
        copy = self.current_copy
        if copy is None or self.selected_annotation_id is None:
            return None
        return copy.find_annotation(self.selected_annotation_id)

    def handle_tap(self, position: NormalizedPosition,
                   page_size: Tuple[float, float] = DEFAULT_PAGE_SIZE) -> None:
        """Dispatch a tap on the PDF surface according to the current mode."""
        if self.current_copy is None:
            return
        if self.positioning_target is not None:
            self.position_element(self.positioning_target, position)
            return
        if self.inline_editing_annotation_id is not None:
            self.finish_inline_editing()
            return
        if self.selected_tool is Tool.TEXT:
            self.begin_text_annotation(position)
        elif self.selected_tool is Tool.STAMP:
            stamp = self.stamps.get(self.selected_stamp_id) if self.selected_stamp_id else None
            if stamp is not None:
                self.add_stamp_annotation(stamp, position)
        else:
            hit = find_annotation_at(self.current_copy.annotations, position, page_size)
            self.selected_annotation_id = hit.id if hit else None

    # ── Copy collection ──────────────────────────────────────────────────────

    def add_copy(self, copy: CopyFeedback) -> None:
        self.copies.append(copy)
        self._notify("copies", copy.id)

    def add_copies(self, copies: List[CopyFeedback]) -> None:
        self.copies.extend(copies)
        self._notify("copies")

    def remove_copy(self, copy_id: str) -> None:
        """Drop a copy from the session; its PDF and sidecar stay on disk."""
        if self.selected_copy_id == copy_id and self.inline_editing_annotation_id is not None:
            self.finish_inline_editing()
        before = len(self.copies)
        self.copies = [c for c in self.copies if c.id != copy_id]
        if len(self.copies) == before:
            return
        if self.selected_copy_id == copy_id:
            self._clear_selection()
            self.selected_copy_id = None
        self._notify("copies", copy_id)

    def select_copy(self, copy_id: Optional[str]) -> None:
        if copy_id is not None and self.get_copy(copy_id) is None:
            return
        if copy_id != self.selected_copy_id:
            if self.inline_editing_annotation_id is not None:
                self.finish_inline_editing()
            self._clear_selection()
        self.selected_copy_id = copy_id

    def select_next(self) -> None:
        self._select_offset(1)

    def select_previous(self) -> None:
        self._select_offset(-1)

    def _select_offset(self, offset: int) -> None:
        if not self.copies:
            return
        ids = [c.id for c in self.copies]
        if self.selected_copy_id not in ids:
            self.select_copy(ids[0])
            return
        idx = ids.index(self.selected_copy_id) + offset
        if 0 <= idx < len(ids):
            self.select_copy(ids[idx])

    def _clear_selection(self) -> None:
        self.positioning_target = None
        self.selected_annotation_id = None
        self.inline_editing_annotation_id = None

    # ── Persistence ──────────────────────────────────────────────────────────

    def _persistable(self, copy: CopyFeedback) -> CopyFeedback:
        """*copy* without the note being edited inline while it is still blank."""
        editing_id = self.inline_editing_annotation_id
        note = copy.find_annotation(editing_id) if editing_id else None
        if (note is None or not isinstance(note.content, TextContent)
                or note.content.text.strip()):
            return copy
        return replace(
            copy, annotations=[a for a in copy.annotations if a.id != editing_id])

    def _save(self, copy: CopyFeedback) -> bool:
        try:
            data_store.save_copy(self._persistable(copy), self.store)
        except PersistenceError as exc:
            logger.warning("save failed for copy %s: %s", copy.id, exc)
            self.save_error = exc
            return False
        self.save_error = None
        return True

    def save_current(self) -> None:
        copy = self.current_copy
        if copy is not None:
            self._save(copy)

    def save_all(self) -> None:
        last_error = None
        for copy in self.copies:
            if not self._save(copy):
                last_error = self.save_error
        self.save_error = last_error

    def snapshot(self, copy_id: Optional[str] = None) -> Optional[CopyFeedback]:
        """Persist and return a detached deep copy for background export."""
        if self.inline_editing_annotation_id is not None:
            self.finish_inline_editing()
        copy = self.get_copy(copy_id) if copy_id else self.current_copy
        if copy is None:
            return None
        self._save(copy)
        return copy_module.deepcopy(copy)

    def snapshot_all(self) -> List[CopyFeedback]:
        if self.inline_editing_annotation_id is not None:
            self.finish_inline_editing()
        self.save_all()
        return copy_module.deepcopy(self.copies)
