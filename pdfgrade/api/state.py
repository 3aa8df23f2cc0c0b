"""Process-wide grading session used by the HTTP routes."""
import logging
import os
from dataclasses import dataclass
from typing import Optional

from fastapi import HTTPException

from pdfgrade import data_store
from pdfgrade.errors import InvalidFormatError, IOFailureError, NotFoundError, PDFGradeError
from pdfgrade.grading_engine import GradingEngine
from pdfgrade.models import CopyFeedback, GraderSettings

logger = logging.getLogger(__name__)

PROJECT_DIR_ENV = "PDFGRADE_PROJECT_DIR"


@dataclass
class AppState:
    project_dir: str
    settings: GraderSettings
    engine: GradingEngine


_state: Optional[AppState] = None


def create_state(project_dir: Optional[str] = None) -> AppState:
    """Load settings and every copy found in the project's PDF directory."""
    project_dir = project_dir or os.environ.get(PROJECT_DIR_ENV) or os.getcwd()
    settings = data_store.load_settings(project_dir)
    data_store.ensure_dirs(settings)
    engine = GradingEngine()
    engine.add_copies(data_store.load_copies(settings.pdf_dir, engine.store))
    logger.info("project %s: %d copies", project_dir, len(engine.copies))
    return AppState(project_dir=project_dir, settings=settings, engine=engine)


def get_state() -> AppState:
    global _state
    if _state is None:
        _state = create_state()
    return _state


def set_state(state: Optional[AppState]) -> None:
    global _state
    _state = state


def get_engine() -> GradingEngine:
    return get_state().engine


def select_copy_or_404(copy_id: str) -> CopyFeedback:
    """Make *copy_id* the engine's current copy and return it."""
    engine = get_engine()
    copy = engine.get_copy(copy_id)
    if copy is None:
        logger.warning("unknown copy %s", copy_id)
        raise HTTPException(status_code=404, detail="Copy not found")
    engine.select_copy(copy_id)
    return copy


def http_error(exc: PDFGradeError) -> HTTPException:
    """Map a typed failure onto the HTTP status it is reported with."""
    if isinstance(exc, NotFoundError):
        status = 404
    elif isinstance(exc, InvalidFormatError):
        status = 422
    elif isinstance(exc, IOFailureError):
        status = 500
    else:
        status = 400
    logger.error("%s -> %d", exc, status)
    return HTTPException(status_code=status, detail=str(exc))
