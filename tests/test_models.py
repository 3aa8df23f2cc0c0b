import pytest

from conftest import make_rubric
from pdfgrade.models import (
    Annotation,
    ClonePolicy,
    CopyFeedback,
    DrawingBounds,
    DrawingContent,
    NormalizedPosition,
    Question,
    QuestionStatus,
    Section,
    StampColor,
    StampDefinition,
    STRUCTURE_ONLY,
    STRUCTURE_WITH_POSITIONS,
    TextContent,
    clone_rubric,
    hex_to_rgb,
    status_for_coefficient,
)


def _copy(**kwargs):
    return CopyFeedback(pdf_path="/tmp/x.pdf", sections=make_rubric(), **kwargs)


# ── Geometry ─────────────────────────────────────────────────────────────────

def test_render_point_flips_y():
    pos = NormalizedPosition(x=0.8, y=0.1, page=0)
    assert pos.to_render_point(600, 800) == pytest.approx((480, 720))


def test_from_top_left_clamps_and_flips():
    pos = NormalizedPosition.from_top_left(1.5, 0.25, page=2)
    assert pos == NormalizedPosition(x=1.0, y=0.75, page=2)


def test_drawing_bounds_render_rect():
    bounds = DrawingBounds(x=0.1, y=0.5, width=0.2, height=0.25)
    x0, y0, x1, y1 = bounds.to_render_rect(100, 200)
    assert (x0, y0, x1, y1) == pytest.approx((10, 50, 30, 100))
    assert bounds.center() == pytest.approx((0.2, 0.625))


def test_hex_to_rgb():
    assert hex_to_rgb("#FF0000") == (1.0, 0.0, 0.0)
    assert StampColor.GREEN.hex == "#34C759"


# ── Scoring rules ────────────────────────────────────────────────────────────

@pytest.mark.parametrize("status,expected", [
    (QuestionStatus.PENDING, None),
    (QuestionStatus.WRONG, 0.0),
    (QuestionStatus.PARTIAL, 2.0),
    (QuestionStatus.CORRECT, 4.0),
])
def test_status_sets_points(status, expected):
    q = Question(name="Q", max_points=4)
    q.apply_status(status)
    assert q.points == expected


@pytest.mark.parametrize("coefficient,expected", [
    (1.0, QuestionStatus.CORRECT),
    (0.5, QuestionStatus.PARTIAL),
    (0.01, QuestionStatus.PARTIAL),
    (0.0, QuestionStatus.WRONG),
])
def test_status_for_coefficient(coefficient, expected):
    assert status_for_coefficient(coefficient) is expected


def test_stamp_scores_and_status_clears_stamp():
    q = Question(name="Q", max_points=4)
    q.apply_stamp(StampDefinition(label="Calc", color=StampColor.YELLOW, coefficient=0.5))
    assert q.points == 2.0
    assert q.status is QuestionStatus.PARTIAL
    assert q.stamp_text == "Calc"
    assert q.stamp_color is StampColor.YELLOW

    q.apply_status(QuestionStatus.CORRECT)
    assert q.points == 4.0
    assert q.stamp_text is None
    assert q.stamp_color is None


def test_default_short_names():
    assert Question(name="integral", max_points=1).short_name == "INT"
    assert Section(name="geometry").short_name == "G"


# ── Aggregation ──────────────────────────────────────────────────────────────

def test_totals_and_percentage():
    copy = _copy()
    q1, q2 = copy.sections[0].questions
    copy.set_status(q1.id, QuestionStatus.CORRECT)
    copy.set_points(q2.id, 1.5)
    assert copy.sections[0].subtotal == 5.5
    assert copy.total == 5.5
    assert copy.max_total == 10
    assert copy.percentage == pytest.approx(55.0)
    assert not copy.is_fully_graded


def test_percentage_is_zero_without_rubric():
    copy = CopyFeedback(pdf_path="/tmp/x.pdf")
    assert copy.max_total == 0
    assert copy.percentage == 0.0
    assert copy.is_fully_graded


def test_fully_graded_needs_every_status():
    copy = _copy()
    for q in copy.all_questions():
        copy.set_status(q.id, QuestionStatus.WRONG)
    assert copy.is_fully_graded


# ── Mutations ────────────────────────────────────────────────────────────────

def test_unknown_ids_are_noops():
    copy = _copy()
    before = copy.updated_at
    assert copy.set_points("nope", 3) is False
    assert copy.delete_section("nope") is False
    assert copy.add_question("nope") is None
    assert copy.remove_annotation("nope") is False
    assert copy.updated_at == before


def test_add_section_and_question_defaults():
    copy = CopyFeedback(pdf_path="/tmp/x.pdf")
    section = copy.add_section()
    assert (section.name, section.short_name) == ("Section 1", "S1")
    q = copy.add_question(section.id)
    assert (q.name, q.short_name, q.max_points) == ("Q1", "Q1", 1.0)


def test_delete_question():
    copy = _copy()
    qid = copy.sections[1].questions[0].id
    assert copy.delete_question(qid)
    assert copy.sections[1].questions == []
    assert copy.max_total == 6


def test_update_text_only_applies_to_text_notes():
    copy = _copy()
    drawing = Annotation(position=NormalizedPosition(0.5, 0.5),
                         content=DrawingContent(b"png", DrawingBounds(0.4, 0.4, 0.2, 0.2)))
    note = Annotation(position=NormalizedPosition(0.1, 0.1), content=TextContent("hi"))
    copy.add_annotation(drawing)
    copy.add_annotation(note)
    assert copy.update_text(note.id, "hello")
    assert note.content == TextContent("hello")
    assert copy.update_text(drawing.id, "x") is False


def test_drawings_are_not_movable():
    copy = _copy()
    drawing = Annotation(position=NormalizedPosition(0.5, 0.5),
                         content=DrawingContent(b"png", DrawingBounds(0.4, 0.4, 0.2, 0.2)))
    copy.add_annotation(drawing)
    assert copy.move_annotation(drawing.id, NormalizedPosition(0.1, 0.1)) is False
    assert drawing.position == NormalizedPosition(0.5, 0.5)


# ── Rubric cloning ───────────────────────────────────────────────────────────

def test_clone_keeps_structure_and_positions_not_grades():
    sections = make_rubric()
    pos = NormalizedPosition(0.2, 0.3, 1)
    sections[0].position = pos
    sections[0].questions[0].position = pos
    sections[0].questions[0].apply_status(QuestionStatus.CORRECT)

    clone = clone_rubric(sections, STRUCTURE_WITH_POSITIONS)
    q = clone[0].questions[0]
    assert clone[0].id != sections[0].id
    assert q.id != sections[0].questions[0].id
    assert (q.name, q.short_name, q.max_points) == ("Equation", "Q1", 4)
    assert q.position == pos and clone[0].position == pos
    assert q.points is None and q.status is QuestionStatus.PENDING


def test_clone_policies():
    sections = make_rubric()
    sections[0].position = NormalizedPosition(0.2, 0.3)
    sections[0].questions[0].apply_status(QuestionStatus.CORRECT)
    assert clone_rubric(sections, STRUCTURE_ONLY)[0].position is None
    graded = clone_rubric(sections, ClonePolicy(positions=False, grades=True))
    assert graded[0].questions[0].points == 4
