import csv
import io
import json
import os
import zipfile

import openpyxl
import pytest

from conftest import make_pdf, make_rubric
from pdfgrade import grades_exporter
from pdfgrade.errors import ExportCancelled, FileNotFound, InvalidTemplate, NotFoundError
from pdfgrade.models import CopyFeedback, NormalizedPosition, QuestionStatus


def _copy(name="Alice", sections=None, pdf_path="/tmp/x.pdf", **kwargs):
    return CopyFeedback(pdf_path=pdf_path, student_name=name,
                        sections=make_rubric() if sections is None else sections, **kwargs)


def _graded(copy):
    q1, q2 = copy.sections[0].questions
    copy.set_status(q1.id, QuestionStatus.CORRECT)
    copy.set_status(q2.id, QuestionStatus.PARTIAL)
    return copy


# ── JSON ─────────────────────────────────────────────────────────────────────

def test_json_records():
    copy = _graded(_copy(student_id="S-1"))
    copy.sections[1].questions[0].stamp_text = "Off Topic"
    records = json.loads(grades_exporter.grades_json([copy, _copy(name=None, sections=[])]))

    first = records[0]
    assert first["studentName"] == "Alice"
    assert first["studentID"] == "S-1"
    assert first["total"] == 5.0
    assert first["maxTotal"] == 10.0
    assert first["isFullyGraded"] is False
    assert first["gradedAt"].endswith("Z")
    algebra = first["sections"][0]
    assert (algebra["name"], algebra["subtotal"], algebra["maxSubtotal"]) == ("Algebra", 5.0, 6.0)
    assert algebra["questions"][0] == {"name": "Equation", "points": 4.0, "maxPoints": 4.0, "status": "correct"}
    assert first["sections"][1]["questions"][0]["stamp"] == "Off Topic"
    assert "points" not in first["sections"][1]["questions"][0]

    assert records[1]["studentName"] == "Unknown"
    assert "studentID" not in records[1]


def test_export_json_file_name(tmp_path):
    path = grades_exporter.export_json([_copy()], str(tmp_path))
    name = os.path.basename(path)
    assert name.startswith("grades_") and name.endswith(".json")
    assert json.loads(open(path, encoding="utf-8").read())[0]["studentName"] == "Alice"


# ── CSV / XLSX ───────────────────────────────────────────────────────────────

def test_csv_header_and_formatting():
    rows = grades_exporter.build_csv_rows([_graded(_copy(student_id="7"))])
    assert rows[0] == ["Student Name", "Student ID", "Total", "Max Total", "Percentage",
                       "Fully Graded", "A-Q1", "A-Q2", "G-Q1"]
    assert rows[1] == ["Alice", "7", "5.00", "10.00", "50.0", "No", "4.00", "1.00", ""]


def test_csv_pads_copies_without_rubric():
    two_questions = make_rubric()[:1]
    first = _copy(sections=two_questions)
    first.set_points(two_questions[0].questions[0].id, 2)
    first.set_points(two_questions[0].questions[1].id, 2)
    second = _copy(name="Bob", sections=[])

    rows = grades_exporter.build_csv_rows([first, second])
    assert len(rows) == 3
    assert rows[0][6:] == ["A-Q1", "A-Q2"]
    assert rows[2] == ["Bob", "", "0.00", "0.00", "0.0", "Yes", "", ""]


def test_csv_header_from_first_copy_with_rubric():
    rows = grades_exporter.build_csv_rows([_copy(name="Empty", sections=[]), _copy()])
    assert rows[0][6:] == ["A-Q1", "A-Q2", "G-Q1"]
    assert len(rows[1]) == len(rows[0])


def test_csv_header_widens_for_longer_rubrics():
    short = _copy(sections=make_rubric()[:1])
    longer = _copy(name="Bob")
    triangle = longer.sections[1].questions[0]
    longer.set_points(triangle.id, 3)

    rows = grades_exporter.build_csv_rows([short, longer])
    assert rows[0][6:] == ["A-Q1", "A-Q2", "G-Q1"]
    assert rows[1][6:] == ["", "", ""]
    assert rows[2] == ["Bob", "", "3.00", "10.00", "30.0", "No", "", "", "3.00"]


def test_csv_percentage_one_decimal():
    copy = _copy(sections=make_rubric()[:1])
    q1, q2 = copy.sections[0].questions
    copy.update_question(q1.id, "Equation", "Q1", 2)
    copy.update_question(q2.id, "Inequality", "Q2", 1)
    copy.set_status(q1.id, QuestionStatus.CORRECT)
    copy.set_status(q2.id, QuestionStatus.WRONG)
    assert grades_exporter.build_csv_rows([copy])[1][4] == "66.7"


def test_csv_quotes_special_characters():
    text = grades_exporter.grades_csv([_copy(name='Martin, "Bob"', sections=[])])
    line = text.splitlines()[1]
    assert line.startswith('"Martin, ""Bob"""')
    assert next(csv.reader(io.StringIO(line)))[0] == 'Martin, "Bob"'


def test_xlsx_has_grades_sheet():
    wb = openpyxl.load_workbook(io.BytesIO(grades_exporter.grades_xlsx([_graded(_copy())])))
    ws = wb["Grades"]
    rows = list(ws.iter_rows(values_only=True))
    assert rows[0][:3] == ("Student Name", "Student ID", "Total")
    assert rows[1][0] == "Alice"
    assert rows[1][2] == 5
    assert rows[1][8] is None


def test_export_csv_and_xlsx_files(tmp_path):
    csv_path = grades_exporter.export_csv([_copy()], str(tmp_path))
    xlsx_path = grades_exporter.export_xlsx([_copy()], str(tmp_path))
    assert csv_path.endswith(".csv") and os.path.exists(csv_path)
    assert xlsx_path.endswith(".xlsx") and os.path.exists(xlsx_path)


# ── ZIP archive ──────────────────────────────────────────────────────────────

def test_zip_contains_one_graded_pdf_per_copy(tmp_path):
    pdf_a = make_pdf(tmp_path / "a.pdf", pages=1)
    pdf_b = make_pdf(tmp_path / "b.pdf", pages=1)
    copies = [
        _copy(name="Ana/Lee", pdf_path=pdf_a, total_position=NormalizedPosition(0.5, 0.5)),
        _copy(name=None, pdf_path=pdf_b),
        _copy(name="Ana/Lee", pdf_path=pdf_b),
    ]
    zip_path = grades_exporter.export_all_pdfs_as_zip(copies, str(tmp_path / "out"))
    assert os.path.basename(zip_path).startswith("graded_pdfs_")
    with zipfile.ZipFile(zip_path) as zf:
        names = zf.namelist()
    assert names == [
        "Ana-Lee_graded.pdf",
        f"copy_{copies[1].id[:6]}_graded.pdf",
        "Ana-Lee_2_graded.pdf",
    ]
    assert os.listdir(str(tmp_path / "out")) == [os.path.basename(zip_path)]


def test_zip_cancellation_leaves_nothing(tmp_path):
    pdf = make_pdf(tmp_path / "a.pdf", pages=1)
    calls = []

    def should_cancel():
        calls.append(1)
        return len(calls) > 1

    out = tmp_path / "out"
    with pytest.raises(ExportCancelled):
        grades_exporter.export_all_pdfs_as_zip([_copy(pdf_path=pdf), _copy(pdf_path=pdf)],
                                               str(out), should_cancel=should_cancel)
    assert os.listdir(str(out)) == []


def test_zip_missing_source_fails_cleanly(tmp_path):
    out = tmp_path / "out"
    with pytest.raises(FileNotFound):
        grades_exporter.export_all_pdfs_as_zip([_copy(pdf_path=str(tmp_path / "gone.pdf"))], str(out))
    assert os.listdir(str(out)) == []


# ── Rubric templates ─────────────────────────────────────────────────────────

def test_rubric_export_has_structure_only(tmp_path):
    copy = _graded(_copy())
    copy.sections[0].position = NormalizedPosition(0.1, 0.1)
    path = grades_exporter.export_rubric(copy, "Midterm 2/A", str(tmp_path))
    assert os.path.basename(path) == "rubric_Midterm_2-A.json"

    data = json.loads(open(path, encoding="utf-8").read())
    assert data["name"] == "Midterm 2/A"
    assert data["maxTotal"] == 10.0
    assert data["createdAt"].endswith("Z")
    assert data["sections"][0] == {
        "name": "Algebra",
        "shortName": "A",
        "questions": [
            {"name": "Equation", "shortName": "Q1", "maxPoints": 4.0},
            {"name": "Inequality", "shortName": "Q2", "maxPoints": 2.0},
        ],
    }


def test_rubric_import_gets_fresh_ids(tmp_path):
    copy = _graded(_copy())
    path = grades_exporter.export_rubric(copy, "Midterm", str(tmp_path))
    sections = grades_exporter.import_rubric(path)

    assert [s.name for s in sections] == ["Algebra", "Geometry"]
    assert sections[0].id != copy.sections[0].id
    q = sections[0].questions[0]
    assert q.id != copy.sections[0].questions[0].id
    assert (q.short_name, q.max_points) == ("Q1", 4.0)
    assert q.points is None and q.status is QuestionStatus.PENDING and q.position is None


def test_rubric_import_errors(tmp_path):
    with pytest.raises(NotFoundError):
        grades_exporter.import_rubric(str(tmp_path / "missing.json"))

    bad = tmp_path / "bad.json"
    bad.write_text('{"name": "x", "sections": "nope"}')
    with pytest.raises(InvalidTemplate):
        grades_exporter.import_rubric(str(bad))

    with pytest.raises(InvalidTemplate):
        grades_exporter.loads_rubric("{broken")
