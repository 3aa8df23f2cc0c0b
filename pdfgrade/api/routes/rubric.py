from fastapi import APIRouter
from pdfgrade import data_store, grades_exporter
from pdfgrade.api.schemas import (
    QuestionCreate,
    QuestionUpdate,
    RubricImportRequest,
    SectionCreate,
    SectionUpdate,
)
from pdfgrade.api.state import get_engine, http_error, select_copy_or_404
from pdfgrade.errors import PDFGradeError
import logging

logger = logging.getLogger(__name__)

router = APIRouter()


# ── Sections ──────────────────────────────────────────────────────────────────

@router.post("/copies/{copy_id}/sections")
def add_section(copy_id: str, body: SectionCreate):
    select_copy_or_404(copy_id)
    section = get_engine().add_section(body.name)
    logger.info("POST sections — copy: %s, added %s", copy_id, section.name)
    return data_store.section_to_dict(section)


@router.put("/copies/{copy_id}/sections/{section_id}")
def update_section(copy_id: str, section_id: str, body: SectionUpdate):
    copy = select_copy_or_404(copy_id)
    logger.info("PUT sections — copy: %s, section: %s, name: %s", copy_id, section_id, body.name)
    get_engine().update_section(section_id, body.name, body.short_name)
    section = copy.find_section(section_id)
    return {"status": "ok", "section": data_store.section_to_dict(section) if section else None}


@router.delete("/copies/{copy_id}/sections/{section_id}")
def delete_section(copy_id: str, section_id: str):
    select_copy_or_404(copy_id)
    logger.info("DELETE sections — copy: %s, section: %s", copy_id, section_id)
    get_engine().delete_section(section_id)
    return {"status": "ok"}


# ── Questions ─────────────────────────────────────────────────────────────────

@router.post("/copies/{copy_id}/sections/{section_id}/questions")
def add_question(copy_id: str, section_id: str, body: QuestionCreate):
    select_copy_or_404(copy_id)
    question = get_engine().add_question(section_id, body.name, body.max_points)
    if question is None:
        logger.info("POST questions — copy: %s, unknown section %s, ignored", copy_id, section_id)
        return {"status": "ok", "question": None}
    logger.info("POST questions — copy: %s, section: %s, added %s", copy_id, section_id, question.name)
    return {"status": "ok", "question": data_store.question_to_dict(question)}


@router.put("/copies/{copy_id}/questions/{question_id}")
def update_question(copy_id: str, question_id: str, body: QuestionUpdate):
    copy = select_copy_or_404(copy_id)
    logger.info("PUT questions — copy: %s, question: %s, max: %s", copy_id, question_id, body.max_points)
    get_engine().update_question(question_id, body.name, body.short_name, body.max_points)
    question = copy.find_question(question_id)
    return {"status": "ok", "question": data_store.question_to_dict(question) if question else None}


@router.delete("/copies/{copy_id}/questions/{question_id}")
def delete_question(copy_id: str, question_id: str):
    select_copy_or_404(copy_id)
    logger.info("DELETE questions — copy: %s, question: %s", copy_id, question_id)
    get_engine().delete_question(question_id)
    return {"status": "ok"}


# ── Whole rubric ──────────────────────────────────────────────────────────────

@router.post("/copies/{copy_id}/rubric/apply-to-all")
def apply_rubric_to_all(copy_id: str):
    select_copy_or_404(copy_id)
    updated = get_engine().apply_current_rubric_to_all()
    logger.info("POST rubric/apply-to-all — copy: %s, updated %d copies", copy_id, updated)
    return {"status": "ok", "updated": updated}


@router.post("/copies/{copy_id}/rubric/import")
def import_rubric(copy_id: str, body: RubricImportRequest):
    copy = select_copy_or_404(copy_id)
    logger.info("POST rubric/import — copy: %s, path: %s", copy_id, body.path)
    try:
        sections = grades_exporter.import_rubric(body.path)
    except PDFGradeError as exc:
        raise http_error(exc)
    get_engine().import_rubric(sections)
    return data_store.copy_to_dict(copy)
