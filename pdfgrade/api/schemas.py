from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from pdfgrade.models import DrawingBounds, NormalizedPosition, QuestionStatus, StampColor


class _Body(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class Position(_Body):
    x: float = Field(ge=0.0, le=1.0)
    y: float = Field(ge=0.0, le=1.0)   # 0 = bottom of the page
    page: int = Field(default=0, ge=0)

    def to_model(self) -> NormalizedPosition:
        return NormalizedPosition(x=self.x, y=self.y, page=self.page)


class Bounds(_Body):
    x: float
    y: float
    width: float = Field(ge=0.0)
    height: float = Field(ge=0.0)

    def to_model(self) -> DrawingBounds:
        return DrawingBounds(x=self.x, y=self.y, width=self.width, height=self.height)


# ── Copies ────────────────────────────────────────────────────────────────────

class ImportRequest(_Body):
    path: str


class SplitRequest(_Body):
    path: str
    pages_per_copy: int = Field(alias="pagesPerCopy", ge=1)
    base_name: Optional[str] = Field(default=None, alias="baseName")


class StudentUpdate(_Body):
    student_name: Optional[str] = Field(default=None, alias="studentName")
    student_id: Optional[str] = Field(default=None, alias="studentID")


class CopySummary(_Body):
    id: str
    student_name: Optional[str] = Field(default=None, alias="studentName")
    total: float
    max_total: float = Field(alias="maxTotal")
    percentage: float
    is_fully_graded: bool = Field(alias="isFullyGraded")


# ── Grading ───────────────────────────────────────────────────────────────────

class PointsUpdate(_Body):
    points: Optional[float] = None


class StatusUpdate(_Body):
    status: QuestionStatus


class StampApply(_Body):
    stamp_id: str = Field(alias="stampID")


class PositionUpdate(_Body):
    element: Literal["total", "section", "question"]
    id: Optional[str] = None            # section / question id
    position: Optional[Position] = None  # None clears the position


# ── Rubric ────────────────────────────────────────────────────────────────────

class SectionCreate(_Body):
    name: Optional[str] = None


class SectionUpdate(_Body):
    name: str
    short_name: str = Field(alias="shortName")


class QuestionCreate(_Body):
    name: Optional[str] = None
    max_points: float = Field(default=1.0, alias="maxPoints", gt=0)


class QuestionUpdate(_Body):
    name: str
    short_name: str = Field(alias="shortName")
    max_points: float = Field(alias="maxPoints", gt=0)


class RubricImportRequest(_Body):
    path: str


# ── Annotations ───────────────────────────────────────────────────────────────

class AnnotationCreate(_Body):
    kind: Literal["text", "stamp", "drawing"]
    position: Optional[Position] = None
    text: Optional[str] = None
    stamp_id: Optional[str] = Field(default=None, alias="stampID")
    data: Optional[str] = None          # base64 PNG, drawings only
    bounds: Optional[Bounds] = None     # drawings only
    page: int = Field(default=0, ge=0)  # drawings only


class AnnotationUpdate(_Body):
    text: Optional[str] = None
    position: Optional[Position] = None


# ── Stamps ────────────────────────────────────────────────────────────────────

class StampCreate(_Body):
    label: str = Field(min_length=1)
    color: StampColor
    coefficient: float = 1.0


class StampOut(_Body):
    id: str
    label: str
    color: StampColor
    coefficient: float
    is_default: bool = Field(alias="isDefault")
