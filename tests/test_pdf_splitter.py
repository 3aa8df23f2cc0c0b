import os

import fitz
import pytest

from conftest import make_pdf
from pdfgrade import data_store
from pdfgrade.errors import FileNotFound, InvalidSource
from pdfgrade.pdf_splitter import copy_count, import_pdf, split_pdf, unique_destination


@pytest.mark.parametrize("pages,per_copy,expected", [(6, 2, 3), (7, 2, 4), (1, 4, 1), (0, 2, 0)])
def test_copy_count(pages, per_copy, expected):
    assert copy_count(pages, per_copy) == expected


def test_copy_count_rejects_zero():
    with pytest.raises(ValueError):
        copy_count(4, 0)


def test_split_writes_numbered_copies(tmp_path):
    scan = make_pdf(tmp_path / "scan.pdf", pages=5)
    out_dir = tmp_path / "PDFs"
    progress = []
    copies = split_pdf(scan, str(out_dir), 2, base_name="exam",
                       progress_cb=lambda done, total: progress.append((done, total)))

    assert [os.path.basename(c.pdf_path) for c in copies] == ["exam_001.pdf", "exam_002.pdf", "exam_003.pdf"]
    assert [c.student_name for c in copies] == ["Copy 1", "Copy 2", "Copy 3"]
    assert progress[-1] == (3, 3)

    last = fitz.open(copies[-1].pdf_path)
    assert last.page_count == 1
    assert "Page 5" in last[0].get_text()
    last.close()

    saved = data_store.load_copy(data_store.sidecar_path(copies[0].pdf_path))
    assert saved.id == copies[0].id
    assert os.path.exists(scan)


def test_split_errors(tmp_path):
    with pytest.raises(FileNotFound):
        split_pdf(str(tmp_path / "missing.pdf"), str(tmp_path), 2)

    bad = tmp_path / "bad.pdf"
    bad.write_bytes(b"garbage")
    with pytest.raises(InvalidSource):
        split_pdf(str(bad), str(tmp_path), 2)

    scan = make_pdf(tmp_path / "scan.pdf", pages=2)
    with pytest.raises(ValueError):
        split_pdf(scan, str(tmp_path / "out"), 0)


def test_import_uniquifies_names(tmp_path):
    src = make_pdf(tmp_path / "marie.pdf", pages=1)
    pdf_dir = tmp_path / "PDFs"

    first = import_pdf(src, str(pdf_dir))
    second = import_pdf(src, str(pdf_dir))
    assert os.path.basename(first.pdf_path) == "marie.pdf"
    assert os.path.basename(second.pdf_path) == "marie_1.pdf"
    assert first.student_name == second.student_name == "marie"
    assert unique_destination(str(pdf_dir), "marie.pdf").endswith("marie_2.pdf")
