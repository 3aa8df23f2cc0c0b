"""Data models for the PDF grading engine."""
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional, Tuple, Union


def new_id() -> str:
    return str(uuid.uuid4()).upper()


def utcnow() -> datetime:
    """Current UTC time truncated to whole seconds (the persisted precision)."""
    return datetime.now(timezone.utc).replace(microsecond=0)


def _clamp01(v: float) -> float:
    return max(0.0, min(1.0, float(v)))


# ── Geometry ──────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class NormalizedPosition:
    x: float       # 0.0 = left, 1.0 = right
    y: float       # 0.0 = bottom (PDF native origin), 1.0 = top
    page: int = 0  # 0-based page index

    @classmethod
    def from_top_left(cls, fx: float, fy: float, page: int) -> "NormalizedPosition":
        """Build a position from a fractional tap on a top-left-origin surface."""
        return cls(x=_clamp01(fx), y=_clamp01(1.0 - fy), page=page)

    def to_render_point(self, page_width: float, page_height: float) -> Tuple[float, float]:
        """Absolute point on a top-left-origin render surface."""
        return self.x * page_width, (1.0 - self.y) * page_height


@dataclass(frozen=True)
class DrawingBounds:
    x: float       # relative, bottom-left corner of the box
    y: float
    width: float
    height: float

    def to_render_rect(self, page_width: float,
                       page_height: float) -> Tuple[float, float, float, float]:
        """Return *(x0, y0, x1, y1)* on a top-left-origin render surface."""
        x0 = self.x * page_width
        y0 = (1.0 - self.y - self.height) * page_height
        return x0, y0, x0 + self.width * page_width, y0 + self.height * page_height

    def center(self) -> Tuple[float, float]:
        return self.x + self.width / 2, self.y + self.height / 2


# ── Colours & status ──────────────────────────────────────────────────────────

def hex_to_rgb(value: str) -> Tuple[float, float, float]:
    """'#34C759' -> (0.2, 0.78, 0.35), the colour tuple PyMuPDF expects."""
    value = value.strip().lstrip("#")
    rgb = int(value, 16)
    return ((rgb >> 16) & 0xFF) / 255.0, ((rgb >> 8) & 0xFF) / 255.0, (rgb & 0xFF) / 255.0


class StampColor(str, Enum):
    GREEN = "green"
    YELLOW = "yellow"
    RED = "red"

    @property
    def hex(self) -> str:
        return _STAMP_HEX[self]

    @property
    def rgb(self) -> Tuple[float, float, float]:
        return hex_to_rgb(self.hex)


_STAMP_HEX = {
    StampColor.GREEN: "#34C759",
    StampColor.YELLOW: "#FF9500",
    StampColor.RED: "#FF3B30",
}


class QuestionStatus(str, Enum):
    PENDING = "pending"   # not graded
    WRONG = "wrong"       # 0 points
    PARTIAL = "partial"   # half of the points
    CORRECT = "correct"   # all of the points

    @property
    def hex(self) -> str:
        return _STATUS_HEX[self]

    def points_for(self, max_points: float) -> Optional[float]:
        if self is QuestionStatus.PENDING:
            return None
        if self is QuestionStatus.WRONG:
            return 0.0
        if self is QuestionStatus.PARTIAL:
            return max_points / 2
        return max_points


_STATUS_HEX = {
    QuestionStatus.PENDING: "#8E8E93",
    QuestionStatus.WRONG: "#FF5F56",
    QuestionStatus.PARTIAL: "#FFBD2E",
    QuestionStatus.CORRECT: "#27C93F",
}


def status_for_coefficient(coefficient: float) -> QuestionStatus:
    """Status implied by a stamp coefficient.

    This is the single authoritative threshold rule used when a stamp scores a
    question: 1.0 and above is correct, anything strictly between 0 and 1 is
    partial, and 0 is wrong.
    """
    if coefficient >= 1.0:
        return QuestionStatus.CORRECT
    if coefficient > 0:
        return QuestionStatus.PARTIAL
    return QuestionStatus.WRONG


# ── Stamps ────────────────────────────────────────────────────────────────────

DEFAULT_STAMP_PREFIX = "default-"


@dataclass(frozen=True)
class StampDefinition:
    label: str
    color: StampColor
    coefficient: float = 1.0  # fraction of max_points awarded (0.0 – 1.0)
    id: str = field(default_factory=new_id)

    @property
    def is_default(self) -> bool:
        return self.id.startswith(DEFAULT_STAMP_PREFIX)


# ── Annotations ───────────────────────────────────────────────────────────────
# Content is a closed sum type: every consumer matches all three variants.

@dataclass(frozen=True)
class TextContent:
    text: str


@dataclass(frozen=True)
class StampContent:
    definition_id: str
    text: str           # snapshot of the stamp label at placement time
    color: StampColor   # snapshot of the stamp colour at placement time


@dataclass(frozen=True)
class DrawingContent:
    data: bytes          # ink image (PNG or any format PyMuPDF can decode)
    bounds: DrawingBounds


AnnotationContent = Union[TextContent, StampContent, DrawingContent]


@dataclass
class Annotation:
    position: NormalizedPosition
    content: AnnotationContent
    id: str = field(default_factory=new_id)


# ── Rubric ────────────────────────────────────────────────────────────────────

@dataclass
class Question:
    name: str
    max_points: float
    short_name: Optional[str] = None   # defaults to the first 3 chars, upper-cased
    points: Optional[float] = None     # None = not graded yet
    status: QuestionStatus = QuestionStatus.PENDING
    position: Optional[NormalizedPosition] = None
    stamp_text: Optional[str] = None
    stamp_color: Optional[StampColor] = None
    id: str = field(default_factory=new_id)

    def __post_init__(self):
        if self.short_name is None:
            self.short_name = self.name[:3].upper()

    @property
    def is_graded(self) -> bool:
        return self.status is not QuestionStatus.PENDING

    def apply_status(self, status: QuestionStatus) -> None:
        """Set *status*, derive points from it and drop any stamp attribution."""
        self.status = status
        self.points = status.points_for(self.max_points)
        self.stamp_text = None
        self.stamp_color = None

    def apply_stamp(self, stamp: StampDefinition) -> None:
        """Score the question from *stamp* and record its label/colour."""
        self.points = self.max_points * stamp.coefficient
        self.status = status_for_coefficient(stamp.coefficient)
        self.stamp_text = stamp.label
        self.stamp_color = stamp.color

    def clear_stamp(self) -> None:
        self.stamp_text = None
        self.stamp_color = None


@dataclass
class Section:
    name: str
    short_name: Optional[str] = None   # defaults to the first char, upper-cased
    position: Optional[NormalizedPosition] = None
    questions: List[Question] = field(default_factory=list)
    id: str = field(default_factory=new_id)

    def __post_init__(self):
        if self.short_name is None:
            self.short_name = self.name[:1].upper()

    @property
    def subtotal(self) -> float:
        return sum(q.points for q in self.questions if q.points is not None)

    @property
    def max_subtotal(self) -> float:
        return sum(q.max_points for q in self.questions)

    @property
    def is_fully_graded(self) -> bool:
        return all(q.is_graded for q in self.questions)


@dataclass(frozen=True)
class ClonePolicy:
    """Which fields a rubric clone carries over besides names and max points."""
    positions: bool = True
    grades: bool = False


STRUCTURE_WITH_POSITIONS = ClonePolicy(positions=True, grades=False)
STRUCTURE_ONLY = ClonePolicy(positions=False, grades=False)


def clone_rubric(sections: List[Section],
                 policy: ClonePolicy = STRUCTURE_WITH_POSITIONS) -> List[Section]:
    """Deep-copy a section tree with fresh IDs, keeping only what *policy* allows."""
    result = []
    for sec in sections:
        questions = []
        for q in sec.questions:
            clone = Question(
                name=q.name,
                short_name=q.short_name,
                max_points=q.max_points,
                position=q.position if policy.positions else None,
            )
            if policy.grades:
                clone.points = q.points
                clone.status = q.status
                clone.stamp_text = q.stamp_text
                clone.stamp_color = q.stamp_color
            questions.append(clone)
        result.append(Section(
            name=sec.name,
            short_name=sec.short_name,
            position=sec.position if policy.positions else None,
            questions=questions,
        ))
    return result


@dataclass
class FeedbackTemplate:
    """A named section tree used to seed new copies."""
    name: str
    sections: List[Section] = field(default_factory=list)


# ── Graded copy ───────────────────────────────────────────────────────────────

@dataclass
class CopyFeedback:
    pdf_path: str
    student_name: Optional[str] = None
    student_id: Optional[str] = None
    sections: List[Section] = field(default_factory=list)
    annotations: List[Annotation] = field(default_factory=list)
    total_position: Optional[NormalizedPosition] = None
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)
    id: str = field(default_factory=new_id)

    # ── Aggregates ──

    @property
    def total(self) -> float:
        return sum(s.subtotal for s in self.sections)

    @property
    def max_total(self) -> float:
        return sum(s.max_subtotal for s in self.sections)

    @property
    def percentage(self) -> float:
        max_total = self.max_total
        if max_total <= 0:
            return 0.0
        return self.total / max_total * 100

    @property
    def is_fully_graded(self) -> bool:
        return all(s.is_fully_graded for s in self.sections)

    def all_questions(self) -> List[Question]:
        return [q for s in self.sections for q in s.questions]

    # ── Lookup ──

    def find_section(self, section_id: str) -> Optional[Section]:
        return next((s for s in self.sections if s.id == section_id), None)

    def find_question(self, question_id: str) -> Optional[Question]:
        for s in self.sections:
            for q in s.questions:
                if q.id == question_id:
                    return q
        return None

    def find_annotation(self, annotation_id: str) -> Optional[Annotation]:
        return next((a for a in self.annotations if a.id == annotation_id), None)

    def touch(self) -> None:
        self.updated_at = utcnow()

    # ── Mutations ──
    # Each returns True when it changed something; unknown IDs are no-ops.

    def set_points(self, question_id: str, points: Optional[float]) -> bool:
        q = self.find_question(question_id)
        if q is None:
            return False
        q.points = points
        self.touch()
        return True

    def set_status(self, question_id: str, status: QuestionStatus) -> bool:
        q = self.find_question(question_id)
        if q is None:
            return False
        q.apply_status(status)
        self.touch()
        return True

    def set_stamp(self, question_id: str, stamp: StampDefinition) -> bool:
        q = self.find_question(question_id)
        if q is None:
            return False
        q.apply_stamp(stamp)
        self.touch()
        return True

    def clear_stamp(self, question_id: str) -> bool:
        q = self.find_question(question_id)
        if q is None:
            return False
        q.clear_stamp()
        self.touch()
        return True

    def set_question_position(self, question_id: str,
                              position: Optional[NormalizedPosition]) -> bool:
        q = self.find_question(question_id)
        if q is None:
            return False
        q.position = position
        self.touch()
        return True

    def set_section_position(self, section_id: str,
                             position: Optional[NormalizedPosition]) -> bool:
        s = self.find_section(section_id)
        if s is None:
            return False
        s.position = position
        self.touch()
        return True

    def set_total_position(self, position: Optional[NormalizedPosition]) -> bool:
        self.total_position = position
        self.touch()
        return True

    def add_section(self, name: Optional[str] = None) -> Section:
        number = len(self.sections) + 1
        section = Section(name=name or f"Section {number}", short_name=f"S{number}")
        self.sections.append(section)
        self.touch()
        return section

    def update_section(self, section_id: str, name: str, short_name: str) -> bool:
        s = self.find_section(section_id)
        if s is None:
            return False
        s.name = name
        s.short_name = short_name
        self.touch()
        return True

    def delete_section(self, section_id: str) -> bool:
        before = len(self.sections)
        self.sections = [s for s in self.sections if s.id != section_id]
        if len(self.sections) == before:
            return False
        self.touch()
        return True

    def add_question(self, section_id: str, name: Optional[str] = None,
                     max_points: float = 1.0) -> Optional[Question]:
        s = self.find_section(section_id)
        if s is None:
            return None
        number = len(s.questions) + 1
        question = Question(name=name or f"Q{number}", short_name=f"Q{number}",
                            max_points=max_points)
        s.questions.append(question)
        self.touch()
        return question

    def update_question(self, question_id: str, name: str, short_name: str,
                        max_points: float) -> bool:
        q = self.find_question(question_id)
        if q is None:
            return False
        q.name = name
        q.short_name = short_name
        q.max_points = max_points
        self.touch()
        return True

    def delete_question(self, question_id: str) -> bool:
        removed = False
        for s in self.sections:
            kept = [q for q in s.questions if q.id != question_id]
            if len(kept) != len(s.questions):
                s.questions = kept
                removed = True
        if removed:
            self.touch()
        return removed

    def add_annotation(self, annotation: Annotation) -> None:
        self.annotations.append(annotation)
        self.touch()

    def update_text(self, annotation_id: str, text: str) -> bool:
        ann = self.find_annotation(annotation_id)
        if ann is None or not isinstance(ann.content, TextContent):
            return False
        ann.content = TextContent(text)
        self.touch()
        return True

    def move_annotation(self, annotation_id: str, position: NormalizedPosition) -> bool:
        ann = self.find_annotation(annotation_id)
        if ann is None:
            return False
        if isinstance(ann.content, DrawingContent):
            # TODO: drawings keep their placement until product decides how
            # bounds should follow a move.
            return False
        ann.position = position
        self.touch()
        return True

    def remove_annotation(self, annotation_id: str) -> bool:
        before = len(self.annotations)
        self.annotations = [a for a in self.annotations if a.id != annotation_id]
        if len(self.annotations) == before:
            return False
        self.touch()
        return True


# ── Settings ──────────────────────────────────────────────────────────────────

@dataclass
class GraderSettings:
    pdf_dir: str = ""                 # imported / split PDFs; "" = <project>/PDFs
    export_dir: str = ""              # graded output; "" = <project>/export
    debug_mode: bool = False          # write a .log next to each exported PDF
    split_base_name: str = "copy"     # default base name when splitting a scan
    rubric_name: str = "My Rubric"    # default name for rubric export
