from fastapi import APIRouter, HTTPException
from pdfgrade.api.schemas import StampCreate, StampOut
from pdfgrade.api.state import get_engine
import logging

logger = logging.getLogger(__name__)

router = APIRouter()


def _stamp_dict(stamp) -> dict:
    return StampOut(
        id=stamp.id,
        label=stamp.label,
        color=stamp.color,
        coefficient=stamp.coefficient,
        is_default=stamp.is_default,
    ).model_dump(by_alias=True, mode="json")


@router.get("/stamps")
def list_stamps():
    stamps = get_engine().stamp_definitions
    logger.info("GET /stamps — %d definitions", len(stamps))
    return [_stamp_dict(s) for s in stamps]


@router.post("/stamps")
def add_stamp(body: StampCreate):
    logger.info("POST /stamps — label: %s, color: %s, coefficient: %s", body.label, body.color.value, body.coefficient)
    stamp = get_engine().add_stamp_definition(body.label, body.color, body.coefficient)
    return _stamp_dict(stamp)


@router.delete("/stamps/{stamp_id}")
def delete_stamp(stamp_id: str):
    engine = get_engine()
    stamp = engine.stamp_definition(stamp_id)
    if stamp is None:
        logger.warning("DELETE /stamps/%s — not found", stamp_id)
        raise HTTPException(status_code=404, detail="Stamp not found")
    if stamp.is_default:
        logger.warning("DELETE /stamps/%s — built-in stamp", stamp_id)
        raise HTTPException(status_code=400, detail="Built-in stamps cannot be deleted")
    engine.remove_stamp_definition(stamp_id)
    logger.info("DELETE /stamps/%s — removed", stamp_id)
    return {"status": "ok"}
