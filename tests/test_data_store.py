import json
import os

import pytest

from conftest import make_rubric
from pdfgrade import data_store
from pdfgrade.errors import InvalidSidecar, NotFoundError, PersistenceError
from pdfgrade.models import (
    Annotation,
    CopyFeedback,
    DrawingBounds,
    DrawingContent,
    FeedbackTemplate,
    GraderSettings,
    NormalizedPosition,
    QuestionStatus,
    StampColor,
    StampContent,
    StampDefinition,
    TextContent,
)


def _graded_copy(pdf_path):
    copy = CopyFeedback(pdf_path=pdf_path, student_name="Zoé", student_id="42",
                        sections=make_rubric(),
                        total_position=NormalizedPosition(0.8, 0.1, 0))
    q1, q2 = copy.sections[0].questions
    copy.set_status(q1.id, QuestionStatus.CORRECT)
    copy.set_stamp(q2.id, StampDefinition(label="Calc", color=StampColor.YELLOW, coefficient=0.5))
    copy.set_question_position(q1.id, NormalizedPosition(0.5, 0.5, 1))
    copy.add_annotation(Annotation(NormalizedPosition(0.1, 0.9), TextContent("see p. 2")))
    copy.add_annotation(Annotation(NormalizedPosition(0.3, 0.3),
                                   StampContent("default-ok", "Correct", StampColor.GREEN)))
    copy.add_annotation(Annotation(NormalizedPosition(0.5, 0.5),
                                   DrawingContent(b"\x89PNG fake", DrawingBounds(0.4, 0.4, 0.2, 0.2))))
    return copy


def test_sidecar_path():
    assert data_store.sidecar_path("/a/b/exam.pdf") == "/a/b/exam.json"


def test_is_graded_output():
    assert data_store.is_graded_output("/a/exam_graded.pdf")
    assert not data_store.is_graded_output("/a/exam.pdf")


def test_json_layout(tmp_path):
    copy = _graded_copy(str(tmp_path / "exam.pdf"))
    data = json.loads(data_store.dumps_copy(copy))
    assert data["studentID"] == "42"
    assert data["totalPosition"] == {"x": 0.8, "y": 0.1, "page": 0}
    assert data["createdAt"].endswith("Z")
    contents = [a["content"] for a in data["annotations"]]
    assert contents[0] == {"text": {"_0": "see p. 2"}}
    assert contents[1] == {"stamp": {"definitionID": "default-ok", "text": "Correct", "color": "green"}}
    assert set(contents[2]["drawing"]) == {"data", "bounds"}
    # Ungraded optionals are omitted, not null.
    q = data["sections"][1]["questions"][0]
    assert "points" not in q and "position" not in q and "stampText" not in q


def test_round_trip_is_byte_identical(tmp_path):
    copy = _graded_copy(str(tmp_path / "exam.pdf"))
    text = data_store.dumps_copy(copy)
    loaded = data_store.loads_copy(text)
    assert data_store.dumps_copy(loaded) == text
    assert loaded.total == copy.total
    assert loaded.annotations[2].content.data == b"\x89PNG fake"
    assert loaded.sections[0].questions[1].stamp_color is StampColor.YELLOW


def test_save_is_atomic_and_loadable(tmp_path):
    copy = _graded_copy(str(tmp_path / "exam.pdf"))
    path = data_store.save_copy(copy)
    assert path == str(tmp_path / "exam.json")
    assert not os.path.exists(path + ".tmp")
    assert data_store.load_copy(path).id == copy.id


def test_loads_rejects_malformed():
    with pytest.raises(InvalidSidecar):
        data_store.loads_copy("{not json")
    with pytest.raises(InvalidSidecar):
        data_store.loads_copy(json.dumps({"id": "x"}))


def test_load_missing_raises(tmp_path):
    with pytest.raises(NotFoundError):
        data_store.load_copy(str(tmp_path / "nope.json"))


def test_load_or_create_uses_template(tmp_path):
    template = FeedbackTemplate(name="T", sections=make_rubric())
    copy = data_store.load_or_create(str(tmp_path / "new.pdf"), template=template,
                                     student_name="Bob")
    assert copy.student_name == "Bob"
    assert [s.name for s in copy.sections] == ["Algebra", "Geometry"]
    assert copy.sections[0].id != template.sections[0].id


def test_load_or_create_ignores_corrupt_sidecar(tmp_path):
    pdf = tmp_path / "exam.pdf"
    (tmp_path / "exam.json").write_text("garbage")
    copy = data_store.load_or_create(str(pdf))
    assert copy.sections == []


def test_load_copies_skips_graded_outputs(tmp_path):
    for name in ("b.pdf", "a.pdf", "a_graded.pdf", "notes.txt"):
        (tmp_path / name).write_bytes(b"%PDF-1.4")
    copies = data_store.load_copies(str(tmp_path))
    assert [c.student_name for c in copies] == ["a", "b"]


def test_save_failure_is_typed(tmp_path):
    class FailingStore:
        def write(self, path, data):
            raise OSError("disk full")

    copy = CopyFeedback(pdf_path=str(tmp_path / "x.pdf"))
    with pytest.raises(PersistenceError):
        data_store.save_copy(copy, FailingStore())


def test_settings_defaults_and_round_trip(tmp_path):
    settings = data_store.load_settings(str(tmp_path))
    assert settings.pdf_dir == os.path.join(str(tmp_path), "PDFs")
    assert settings.split_base_name == "copy"

    data_store.save_settings(str(tmp_path), GraderSettings(
        pdf_dir="/p", export_dir="/e", debug_mode=True, split_base_name="exam", rubric_name="R"))
    loaded = data_store.load_settings(str(tmp_path))
    assert (loaded.pdf_dir, loaded.debug_mode, loaded.split_base_name) == ("/p", True, "exam")
