from fastapi import APIRouter, HTTPException
from pdfgrade import data_store
from pdfgrade.api.schemas import PointsUpdate, PositionUpdate, StampApply, StatusUpdate
from pdfgrade.api.state import get_engine, select_copy_or_404
from pdfgrade.grading_engine import PositionKind, PositionTarget
import logging

logger = logging.getLogger(__name__)

router = APIRouter()


def _question_dict(copy, question_id: str):
    question = copy.find_question(question_id)
    return data_store.question_to_dict(question) if question else None


@router.post("/copies/{copy_id}/questions/{question_id}/points")
def set_points(copy_id: str, question_id: str, body: PointsUpdate):
    copy = select_copy_or_404(copy_id)
    logger.info("POST points — copy: %s, question: %s, points: %s", copy_id, question_id, body.points)
    get_engine().set_points(question_id, body.points)
    return {"status": "ok", "question": _question_dict(copy, question_id), "total": copy.total}


@router.post("/copies/{copy_id}/questions/{question_id}/status")
def set_status(copy_id: str, question_id: str, body: StatusUpdate):
    copy = select_copy_or_404(copy_id)
    logger.info("POST status — copy: %s, question: %s, status: %s", copy_id, question_id, body.status.value)
    get_engine().set_question_status(question_id, body.status)
    return {"status": "ok", "question": _question_dict(copy, question_id), "total": copy.total}


@router.post("/copies/{copy_id}/questions/{question_id}/stamp")
def apply_stamp(copy_id: str, question_id: str, body: StampApply):
    copy = select_copy_or_404(copy_id)
    engine = get_engine()
    stamp = engine.stamp_definition(body.stamp_id)
    if stamp is None:
        logger.warning("POST stamp — unknown stamp %s", body.stamp_id)
        raise HTTPException(status_code=404, detail="Stamp not found")
    logger.info("POST stamp — copy: %s, question: %s, stamp: %s", copy_id, question_id, stamp.label)
    engine.set_question_stamp(question_id, stamp)
    return {"status": "ok", "question": _question_dict(copy, question_id), "total": copy.total}


@router.delete("/copies/{copy_id}/questions/{question_id}/stamp")
def clear_stamp(copy_id: str, question_id: str):
    copy = select_copy_or_404(copy_id)
    logger.info("DELETE stamp — copy: %s, question: %s", copy_id, question_id)
    get_engine().clear_question_stamp(question_id)
    return {"status": "ok", "question": _question_dict(copy, question_id), "total": copy.total}


@router.post("/copies/{copy_id}/positions")
def set_position(copy_id: str, body: PositionUpdate):
    copy = select_copy_or_404(copy_id)
    kind = PositionKind(body.element)
    if kind is not PositionKind.TOTAL and not body.id:
        logger.warning("POST positions — %s position without id", kind.value)
        raise HTTPException(status_code=400, detail=f"An id is required for a {kind.value} position")
    target = PositionTarget(kind, body.id if kind is not PositionKind.TOTAL else None)
    engine = get_engine()
    if body.position is None:
        engine.clear_position(target)
    else:
        engine.position_element(target, body.position.to_model())
    logger.info("POST positions — copy: %s, %s %s -> %s", copy_id, kind.value, body.id or "", body.position)
    return data_store.copy_to_dict(copy)
