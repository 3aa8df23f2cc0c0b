from fastapi import APIRouter, HTTPException
from pdfgrade import data_store, pdf_splitter
from pdfgrade.api.schemas import CopySummary, ImportRequest, SplitRequest, StudentUpdate
from pdfgrade.api.state import get_engine, get_state, http_error, select_copy_or_404
from pdfgrade.errors import PDFGradeError
import logging

logger = logging.getLogger(__name__)

router = APIRouter()


def _summary(copy) -> dict:
    return CopySummary(
        id=copy.id,
        student_name=copy.student_name,
        total=copy.total,
        max_total=copy.max_total,
        percentage=copy.percentage,
        is_fully_graded=copy.is_fully_graded,
    ).model_dump(by_alias=True)


@router.get("/copies")
def list_copies():
    engine = get_engine()
    logger.info("GET /copies — %d copies", len(engine.copies))
    return [_summary(c) for c in engine.copies]


@router.post("/copies/import")
def import_copy(body: ImportRequest):
    logger.info("POST /copies/import — path: %s", body.path)
    state = get_state()
    try:
        copy = pdf_splitter.import_pdf(body.path, state.settings.pdf_dir)
        data_store.save_copy(copy, state.engine.store)
    except PDFGradeError as exc:
        raise http_error(exc)
    state.engine.add_copy(copy)
    logger.info("POST /copies/import — added copy %s", copy.id)
    return _summary(copy)


@router.post("/copies/split")
def split_copies(body: SplitRequest):
    logger.info("POST /copies/split — path: %s, pages per copy: %d", body.path, body.pages_per_copy)
    state = get_state()
    base_name = body.base_name or state.settings.split_base_name
    try:
        copies = pdf_splitter.split_pdf(body.path, state.settings.pdf_dir, body.pages_per_copy,
                                        base_name=base_name, store=state.engine.store)
    except PDFGradeError as exc:
        raise http_error(exc)
    state.engine.add_copies(copies)
    logger.info("POST /copies/split — created %d copies", len(copies))
    return [_summary(c) for c in copies]


@router.get("/copies/{copy_id}")
def get_copy(copy_id: str):
    copy = get_engine().get_copy(copy_id)
    if copy is None:
        logger.warning("GET /copies/%s — not found", copy_id)
        raise HTTPException(status_code=404, detail="Copy not found")
    return data_store.copy_to_dict(copy)


@router.delete("/copies/{copy_id}")
def delete_copy(copy_id: str):
    engine = get_engine()
    if engine.get_copy(copy_id) is None:
        logger.warning("DELETE /copies/%s — not found", copy_id)
        raise HTTPException(status_code=404, detail="Copy not found")
    engine.remove_copy(copy_id)
    logger.info("DELETE /copies/%s — removed from session", copy_id)
    return {"status": "ok"}


@router.post("/copies/{copy_id}/select")
def select_copy(copy_id: str):
    select_copy_or_404(copy_id)
    logger.info("POST /copies/%s/select", copy_id)
    return {"status": "ok", "selectedCopyID": copy_id}


@router.put("/copies/{copy_id}/student")
def update_student(copy_id: str, body: StudentUpdate):
    copy = select_copy_or_404(copy_id)
    engine = get_engine()
    fields = body.model_fields_set
    if "student_name" in fields:
        engine.set_student_name(body.student_name)
    if "student_id" in fields:
        engine.set_student_id(body.student_id)
    logger.info("PUT /copies/%s/student — name: %s, id: %s", copy_id, copy.student_name, copy.student_id)
    return data_store.copy_to_dict(copy)
