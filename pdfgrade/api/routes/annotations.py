from fastapi import APIRouter, HTTPException
from pdfgrade import data_store
from pdfgrade.api.schemas import AnnotationCreate, AnnotationUpdate
from pdfgrade.api.state import get_engine, select_copy_or_404
import base64
import binascii
import logging

logger = logging.getLogger(__name__)

router = APIRouter()


def _bad_request(detail: str):
    logger.warning("annotation rejected — %s", detail)
    return HTTPException(status_code=400, detail=detail)


@router.post("/copies/{copy_id}/annotations")
def add_annotation(copy_id: str, body: AnnotationCreate):
    select_copy_or_404(copy_id)
    engine = get_engine()
    logger.info("POST annotations — copy: %s, kind: %s", copy_id, body.kind)

    if body.kind == "drawing":
        if not body.data or body.bounds is None:
            raise _bad_request("A drawing needs data and bounds")
        try:
            data = base64.b64decode(body.data, validate=True)
        except (binascii.Error, ValueError):
            raise _bad_request("Drawing data is not valid base64")
        annotation = engine.add_drawing_annotation(data, body.bounds.to_model(), body.page)
    else:
        if body.position is None:
            raise _bad_request(f"A {body.kind} annotation needs a position")
        position = body.position.to_model()
        if body.kind == "text":
            if not body.text or not body.text.strip():
                raise _bad_request("Text annotation is empty")
            annotation = engine.add_text_annotation(body.text, position)
        else:
            stamp = engine.stamp_definition(body.stamp_id) if body.stamp_id else None
            if stamp is None:
                raise HTTPException(status_code=404, detail="Stamp not found")
            annotation = engine.add_stamp_annotation(stamp, position)

    logger.info("POST annotations — copy: %s, added %s", copy_id, annotation.id)
    return data_store.annotation_to_dict(annotation)


@router.put("/copies/{copy_id}/annotations/{annotation_id}")
def update_annotation(copy_id: str, annotation_id: str, body: AnnotationUpdate):
    copy = select_copy_or_404(copy_id)
    engine = get_engine()
    if body.text is not None:
        engine.update_text_annotation(annotation_id, body.text)
    if body.position is not None:
        engine.move_annotation(annotation_id, body.position.to_model())
    logger.info("PUT annotations — copy: %s, annotation: %s", copy_id, annotation_id)
    annotation = copy.find_annotation(annotation_id)
    return {
        "status": "ok",
        "annotation": data_store.annotation_to_dict(annotation) if annotation else None,
    }


@router.delete("/copies/{copy_id}/annotations/{annotation_id}")
def delete_annotation(copy_id: str, annotation_id: str):
    select_copy_or_404(copy_id)
    logger.info("DELETE annotations — copy: %s, annotation: %s", copy_id, annotation_id)
    get_engine().remove_annotation(annotation_id)
    return {"status": "ok"}
