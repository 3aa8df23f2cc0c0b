from typing import Optional

from fastapi import APIRouter, HTTPException
from fastapi.responses import StreamingResponse
from pdfgrade import grades_exporter
from pdfgrade.api.state import get_state, http_error, select_copy_or_404
from pdfgrade.errors import PDFGradeError
from pdfgrade.pdf_exporter import export_pdf
import logging
import os

logger = logging.getLogger(__name__)

router = APIRouter()


def _attachment(data: bytes, media_type: str, filename: str) -> StreamingResponse:
    return StreamingResponse(
        iter([data]),
        media_type=media_type,
        headers={"Content-Disposition": f"attachment; filename={filename}"},
    )


def _read(path: str) -> bytes:
    with open(path, "rb") as f:
        return f.read()


@router.get("/copies/{copy_id}/export/pdf")
def export_copy_pdf(copy_id: str):
    select_copy_or_404(copy_id)
    state = get_state()
    snapshot = state.engine.snapshot(copy_id)
    logger.info("GET export/pdf — copy: %s", copy_id)
    try:
        path = export_pdf(snapshot, output_dir=state.settings.export_dir,
                          store=state.engine.store, debug=state.settings.debug_mode)
    except PDFGradeError as exc:
        raise http_error(exc)
    logger.info("GET export/pdf — wrote %s", path)
    return _attachment(_read(path), "application/pdf", os.path.basename(path))


@router.get("/export/grades.json")
def export_grades_json():
    copies = get_state().engine.snapshot_all()
    logger.info("GET /export/grades.json — %d copies", len(copies))
    data = grades_exporter.grades_json(copies).encode("utf-8")
    return _attachment(data, "application/json", "grades.json")


@router.get("/export/grades.csv")
def export_grades_csv():
    copies = get_state().engine.snapshot_all()
    logger.info("GET /export/grades.csv — %d copies", len(copies))
    data = grades_exporter.grades_csv(copies).encode("utf-8")
    return _attachment(data, "text/csv", "grades.csv")


@router.get("/export/grades.xlsx")
def export_grades_xlsx():
    copies = get_state().engine.snapshot_all()
    logger.info("GET /export/grades.xlsx — %d copies", len(copies))
    return _attachment(
        grades_exporter.grades_xlsx(copies),
        "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
        "grades.xlsx",
    )


@router.get("/export/pdfs.zip")
def export_pdfs_zip():
    state = get_state()
    copies = state.engine.snapshot_all()
    if not copies:
        logger.warning("GET /export/pdfs.zip — no copies")
        raise HTTPException(status_code=400, detail="No copies to export")
    logger.info("GET /export/pdfs.zip — %d copies", len(copies))
    try:
        path = grades_exporter.export_all_pdfs_as_zip(copies, state.settings.export_dir,
                                                      store=state.engine.store)
    except PDFGradeError as exc:
        raise http_error(exc)
    return _attachment(_read(path), "application/zip", os.path.basename(path))


@router.get("/copies/{copy_id}/export/rubric")
def export_rubric(copy_id: str, name: Optional[str] = None):
    copy = select_copy_or_404(copy_id)
    state = get_state()
    rubric_name = name or state.settings.rubric_name
    logger.info("GET export/rubric — copy: %s, name: %s", copy_id, rubric_name)
    try:
        path = grades_exporter.export_rubric(copy, rubric_name, state.settings.export_dir)
    except PDFGradeError as exc:
        raise http_error(exc)
    return _attachment(_read(path), "application/json", os.path.basename(path))
