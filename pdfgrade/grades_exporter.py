"""Grade reports (JSON, CSV, XLSX), bulk PDF archives and rubric template files."""
import csv
import io
import json
import logging
import os
import zipfile
from datetime import datetime
from typing import Callable, List, Optional, Tuple

import openpyxl
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_serializer

from pdfgrade import data_store
from pdfgrade.data_store import FileStore, format_date
from pdfgrade.errors import ExportCancelled, InvalidTemplate, NotFoundError, SaveFailed
from pdfgrade.models import CopyFeedback, Question, Section, utcnow
from pdfgrade.pdf_exporter import render_graded_pdf

logger = logging.getLogger(__name__)

TIMESTAMP_FORMAT = "%Y-%m-%d_%H%M%S"
BASE_HEADERS = ["Student Name", "Student ID", "Total", "Max Total", "Percentage", "Fully Graded"]


def _timestamp(now: Optional[datetime] = None) -> str:
    return (now or datetime.now()).strftime(TIMESTAMP_FORMAT)


def _write(path: str, data: bytes) -> str:
    try:
        data_store.atomic_write(path, data)
    except OSError as exc:
        raise SaveFailed("Failed to write export file.", {"path": path, "error": str(exc)}) from exc
    logger.info("wrote %s (%d bytes)", path, len(data))
    return path


# ── Export records ────────────────────────────────────────────────────────────

class _CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class QuestionExportItem(_CamelModel):
    name: str
    points: Optional[float] = None
    max_points: float = Field(alias="maxPoints")
    status: str
    stamp: Optional[str] = None


class SectionExportItem(_CamelModel):
    name: str
    subtotal: float
    max_subtotal: float = Field(alias="maxSubtotal")
    questions: List[QuestionExportItem]


class GradeExportItem(_CamelModel):
    student_name: str = Field(alias="studentName")
    student_id: Optional[str] = Field(default=None, alias="studentID")
    total: float
    max_total: float = Field(alias="maxTotal")
    percentage: float
    is_fully_graded: bool = Field(alias="isFullyGraded")
    sections: List[SectionExportItem]
    graded_at: datetime = Field(alias="gradedAt")

    @field_serializer("graded_at")
    def _serialize_graded_at(self, value: datetime) -> str:
        return format_date(value)


def grade_record(copy: CopyFeedback) -> GradeExportItem:
    return GradeExportItem(
        student_name=copy.student_name or "Unknown",
        student_id=copy.student_id,
        total=copy.total,
        max_total=copy.max_total,
        percentage=copy.percentage,
        is_fully_graded=copy.is_fully_graded,
        sections=[
            SectionExportItem(
                name=sec.name,
                subtotal=sec.subtotal,
                max_subtotal=sec.max_subtotal,
                questions=[
                    QuestionExportItem(
                        name=q.name,
                        points=q.points,
                        max_points=q.max_points,
                        status=q.status.value,
                        stamp=q.stamp_text,
                    )
                    for q in sec.questions
                ],
            )
            for sec in copy.sections
        ],
        graded_at=copy.updated_at,
    )


# ── JSON ──────────────────────────────────────────────────────────────────────

def grades_json(copies: List[CopyFeedback]) -> str:
    records = [grade_record(c).model_dump(by_alias=True, exclude_none=True) for c in copies]
    return json.dumps(records, indent=2, sort_keys=True, ensure_ascii=False) + "\n"


def export_json(copies: List[CopyFeedback], output_dir: str) -> str:
    path = os.path.join(output_dir, f"grades_{_timestamp()}.json")
    return _write(path, grades_json(copies).encode("utf-8"))


# ── Tabular (CSV / XLSX) ──────────────────────────────────────────────────────

def _copy_columns(copy: CopyFeedback) -> List[str]:
    return [f"{sec.short_name}-{q.short_name}" for sec in copy.sections for q in sec.questions]


def question_columns(copies: List[CopyFeedback]) -> List[str]:
    """``<section short>-<question short>`` labels, from the first copy with a rubric.

    When a later copy has more questions, the header is widened with that
    copy's labels so no grade cell is dropped.
    """
    columns: List[str] = []
    for copy in copies:
        labels = _copy_columns(copy)
        if len(labels) > len(columns):
            columns.extend(labels[len(columns):])
    return columns


def grade_table(copies: List[CopyFeedback]) -> Tuple[List[str], List[list]]:
    """Header and raw rows shared by the CSV and XLSX reports.

    Every row has exactly one cell per header column: copies with fewer
    questions than the header are padded with ``None``.
    """
    headers = BASE_HEADERS + question_columns(copies)
    rows = []
    for copy in copies:
        row = [
            copy.student_name or "Unknown",
            copy.student_id or "",
            copy.total,
            copy.max_total,
            copy.percentage,
            "Yes" if copy.is_fully_graded else "No",
        ]
        row.extend(q.points for q in copy.all_questions())
        row.extend([None] * (len(headers) - len(row)))
        rows.append(row)
    return headers, rows


_TEXT_COLUMNS = (0, 1, 5)
_PERCENT_COLUMN = 4


def _csv_cell(index: int, value) -> str:
    if value is None:
        return ""
    if index in _TEXT_COLUMNS:
        return str(value)
    if index == _PERCENT_COLUMN:
        return f"{value:.1f}"
    return f"{value:.2f}"


def build_csv_rows(copies: List[CopyFeedback]) -> List[List[str]]:
    headers, rows = grade_table(copies)
    return [headers] + [[_csv_cell(i, v) for i, v in enumerate(row)] for row in rows]


def grades_csv(copies: List[CopyFeedback]) -> str:
    output = io.StringIO()
    writer = csv.writer(output, lineterminator="\n")
    writer.writerows(build_csv_rows(copies))
    return output.getvalue()


def export_csv(copies: List[CopyFeedback], output_dir: str) -> str:
    path = os.path.join(output_dir, f"grades_{_timestamp()}.csv")
    return _write(path, grades_csv(copies).encode("utf-8"))


def grades_xlsx(copies: List[CopyFeedback]) -> bytes:
    headers, rows = grade_table(copies)
    wb = openpyxl.Workbook()
    ws = wb.active
    ws.title = "Grades"
    ws.append(headers)
    for row in rows:
        ws.append(row)

    output = io.BytesIO()
    wb.save(output)
    return output.getvalue()


def export_xlsx(copies: List[CopyFeedback], output_dir: str) -> str:
    path = os.path.join(output_dir, f"grades_{_timestamp()}.xlsx")
    return _write(path, grades_xlsx(copies))


# ── Bulk PDF archive ──────────────────────────────────────────────────────────

def archive_name(copy: CopyFeedback) -> str:
    """File-system safe base name: the student name, else ``copy_<id prefix>``."""
    name = copy.student_name or f"copy_{copy.id[:6]}"
    return name.replace("/", "-").replace(":", "-")


def export_all_pdfs_as_zip(
    copies: List[CopyFeedback],
    output_dir: str,
    store: Optional[FileStore] = None,
    progress_cb: Optional[Callable[[int, int], None]] = None,
    should_cancel: Optional[Callable[[], bool]] = None,
) -> str:
    """Render every copy and bundle the results into one ZIP in *output_dir*.

    The archive is assembled under ``<zip>.tmp`` and renamed into place once
    complete; a failure or cancellation leaves no archive behind.
    """
    os.makedirs(output_dir, exist_ok=True)
    zip_path = os.path.join(output_dir, f"graded_pdfs_{_timestamp()}.zip")
    tmp_path = zip_path + ".tmp"
    used = set()
    try:
        with zipfile.ZipFile(tmp_path, "w", zipfile.ZIP_DEFLATED) as zf:
            for i, copy in enumerate(copies):
                if should_cancel and should_cancel():
                    raise ExportCancelled("PDF archive export cancelled.",
                                          {"exported": i, "total": len(copies)})
                if progress_cb:
                    progress_cb(i, len(copies))
                data = render_graded_pdf(copy, store=store)

                base = archive_name(copy)
                arcname = f"{base}_graded.pdf"
                counter = 2
                while arcname in used:
                    arcname = f"{base}_{counter}_graded.pdf"
                    counter += 1
                used.add(arcname)
                zf.writestr(arcname, data)
        os.replace(tmp_path, zip_path)
    except OSError as exc:
        raise SaveFailed("Failed to write PDF archive.",
                         {"path": zip_path, "error": str(exc)}) from exc
    finally:
        if os.path.exists(tmp_path):
            os.remove(tmp_path)

    if progress_cb:
        progress_cb(len(copies), len(copies))
    logger.info("exported %d graded PDFs -> %s", len(copies), zip_path)
    return zip_path


# ── Rubric templates ──────────────────────────────────────────────────────────

class RubricQuestionTemplate(_CamelModel):
    name: str
    short_name: str = Field(alias="shortName")
    max_points: float = Field(alias="maxPoints")

    def to_question(self) -> Question:
        return Question(name=self.name, short_name=self.short_name, max_points=self.max_points)


class RubricSectionTemplate(_CamelModel):
    name: str
    short_name: str = Field(alias="shortName")
    questions: List[RubricQuestionTemplate] = []

    def to_section(self) -> Section:
        return Section(name=self.name, short_name=self.short_name,
                       questions=[q.to_question() for q in self.questions])


class RubricTemplate(_CamelModel):
    name: str
    created_at: datetime = Field(alias="createdAt")
    sections: List[RubricSectionTemplate]
    max_total: float = Field(alias="maxTotal")

    @field_serializer("created_at")
    def _serialize_created_at(self, value: datetime) -> str:
        return format_date(value)

    @classmethod
    def from_sections(cls, name: str, sections: List[Section]) -> "RubricTemplate":
        return cls(
            name=name,
            created_at=utcnow(),
            sections=[
                RubricSectionTemplate(
                    name=sec.name,
                    short_name=sec.short_name,
                    questions=[
                        RubricQuestionTemplate(name=q.name, short_name=q.short_name,
                                               max_points=q.max_points)
                        for q in sec.questions
                    ],
                )
                for sec in sections
            ],
            max_total=sum(sec.max_subtotal for sec in sections),
        )

    def to_sections(self) -> List[Section]:
        """Fresh section tree: new IDs, no points, status or positions."""
        return [sec.to_section() for sec in self.sections]


def dumps_rubric(template: RubricTemplate) -> str:
    return json.dumps(template.model_dump(by_alias=True), indent=2, sort_keys=True,
                      ensure_ascii=False) + "\n"


def loads_rubric(text) -> List[Section]:
    try:
        template = RubricTemplate.model_validate_json(text)
    except ValidationError as exc:
        raise InvalidTemplate("Rubric template is malformed.",
                              {"errors": exc.error_count()}) from exc
    return template.to_sections()


def rubric_filename(name: str) -> str:
    safe = name.replace(" ", "_").replace("/", "-")
    return f"rubric_{safe}.json"


def export_rubric(copy: CopyFeedback, name: str, output_dir: str) -> str:
    template = RubricTemplate.from_sections(name, copy.sections)
    path = os.path.join(output_dir, rubric_filename(name))
    return _write(path, dumps_rubric(template).encode("utf-8"))


def import_rubric(path: str) -> List[Section]:
    if not os.path.isfile(path):
        raise NotFoundError("Rubric file not found.", {"path": path})
    try:
        with open(path, "rb") as f:
            raw = f.read()
    except OSError as exc:
        raise NotFoundError("Rubric file could not be read.",
                            {"path": path, "error": str(exc)}) from exc
    sections = loads_rubric(raw)
    logger.info("imported rubric %s (%d sections)", path, len(sections))
    return sections
