import fitz
import pytest
from fastapi.testclient import TestClient

from pdfgrade import data_store
from pdfgrade.api import state
from pdfgrade.api.main import app
from pdfgrade.grading_engine import GradingEngine
from pdfgrade.models import CopyFeedback, Question, Section

PAGE_WIDTH = 600
PAGE_HEIGHT = 800


def make_pdf(path, pages=3, width=PAGE_WIDTH, height=PAGE_HEIGHT):
    """Write a small PDF whose pages read "Page 1", "Page 2", ..."""
    doc = fitz.open()
    for i in range(pages):
        page = doc.new_page(width=width, height=height)
        page.insert_text((72, 72), f"Page {i + 1}", fontsize=12)
    doc.save(str(path))
    doc.close()
    return str(path)


def make_rubric():
    """Two sections, three questions, 10 points in total."""
    return [
        Section(name="Algebra", short_name="A", questions=[
            Question(name="Equation", short_name="Q1", max_points=4),
            Question(name="Inequality", short_name="Q2", max_points=2),
        ]),
        Section(name="Geometry", short_name="G", questions=[
            Question(name="Triangle", short_name="Q1", max_points=4),
        ]),
    ]


@pytest.fixture()
def tmp_project(tmp_path):
    """A project directory with the default PDFs/ and export/ layout."""
    settings = data_store.load_settings(str(tmp_path))
    data_store.ensure_dirs(settings)
    return tmp_path


@pytest.fixture()
def sample_pdf(tmp_project):
    return make_pdf(tmp_project / "PDFs" / "alice.pdf")


@pytest.fixture()
def engine(sample_pdf):
    """Engine holding one selected copy (with a rubric) for sample_pdf."""
    eng = GradingEngine()
    copy = CopyFeedback(pdf_path=sample_pdf, student_name="Alice", sections=make_rubric())
    eng.add_copy(copy)
    eng.select_copy(copy.id)
    return eng


@pytest.fixture()
def client(tmp_project):
    state.set_state(state.create_state(str(tmp_project)))
    yield TestClient(app)
    state.set_state(None)
