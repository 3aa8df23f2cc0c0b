"""Data persistence: graded-copy sidecars, project settings, file access."""
import base64
import binascii
import json
import logging
import os
from datetime import datetime, timezone
from typing import List, Optional, Protocol

from pdfgrade.errors import InvalidSidecar, NotFoundError, PersistenceError
from pdfgrade.models import (
    Annotation,
    CopyFeedback,
    DrawingBounds,
    DrawingContent,
    FeedbackTemplate,
    GraderSettings,
    NormalizedPosition,
    Question,
    QuestionStatus,
    Section,
    StampColor,
    StampContent,
    TextContent,
    clone_rubric,
)

logger = logging.getLogger(__name__)

DATE_FORMAT = "%Y-%m-%dT%H:%M:%SZ"
SIDECAR_EXT = ".json"
GRADED_SUFFIX = "_graded"


# ── File access ───────────────────────────────────────────────────────────────

class FileStore(Protocol):
    """Read/write access to named byte blobs."""

    def read(self, path: str) -> bytes: ...

    def write(self, path: str, data: bytes) -> None: ...

    def exists(self, path: str) -> bool: ...


class LocalFileStore:
    """FileStore over the local file system.

    ``write`` goes to ``<path>.tmp`` first and is then renamed over *path*, so
    a crash mid-write never replaces a good file with a truncated one.
    """

    def read(self, path: str) -> bytes:
        with open(path, "rb") as f:
            return f.read()

    def write(self, path: str, data: bytes) -> None:
        atomic_write(path, data)

    def exists(self, path: str) -> bool:
        return os.path.isfile(path)


def atomic_write(path: str, data: bytes) -> None:
    directory = os.path.dirname(os.path.abspath(path))
    os.makedirs(directory, exist_ok=True)
    tmp_path = path + ".tmp"
    try:
        with open(tmp_path, "wb") as f:
            f.write(data)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_path, path)
    except OSError:
        if os.path.exists(tmp_path):
            os.remove(tmp_path)
        raise


_default_store = LocalFileStore()


def default_store() -> LocalFileStore:
    return _default_store


# ── Paths ─────────────────────────────────────────────────────────────────────

def sidecar_path(pdf_path: str) -> str:
    """``exam.pdf`` -> ``exam.json`` (same directory, same base name)."""
    return os.path.splitext(pdf_path)[0] + SIDECAR_EXT


def is_graded_output(pdf_path: str) -> bool:
    return os.path.splitext(os.path.basename(pdf_path))[0].endswith(GRADED_SUFFIX)


# ── Dates ─────────────────────────────────────────────────────────────────────

def format_date(value: datetime) -> str:
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc)
    return value.strftime(DATE_FORMAT)


def parse_date(value: str) -> datetime:
    try:
        parsed = datetime.strptime(value, DATE_FORMAT)
    except ValueError:
        # Tolerate fractional seconds / offsets written by other tools.
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc).replace(microsecond=0)


# ── Serialization ─────────────────────────────────────────────────────────────

def _position_to_dict(pos: NormalizedPosition) -> dict:
    return {"x": float(pos.x), "y": float(pos.y), "page": int(pos.page)}


def _position_from_dict(data: Optional[dict]) -> Optional[NormalizedPosition]:
    if data is None:
        return None
    return NormalizedPosition(x=float(data["x"]), y=float(data["y"]), page=int(data["page"]))


def _content_to_dict(content) -> dict:
    if isinstance(content, TextContent):
        return {"text": {"_0": content.text}}
    if isinstance(content, StampContent):
        return {"stamp": {
            "definitionID": content.definition_id,
            "text": content.text,
            "color": content.color.value,
        }}
    if isinstance(content, DrawingContent):
        b = content.bounds
        return {"drawing": {
            "data": base64.b64encode(content.data).decode("ascii"),
            "bounds": {"x": float(b.x), "y": float(b.y),
                       "width": float(b.width), "height": float(b.height)},
        }}
    raise TypeError(f"unknown annotation content: {content!r}")


def _content_from_dict(data: dict):
    if len(data) != 1:
        raise ValueError(f"annotation content must have exactly one variant, got {sorted(data)}")
    kind, body = next(iter(data.items()))
    if kind == "text":
        return TextContent(text=str(body["_0"]))
    if kind == "stamp":
        return StampContent(
            definition_id=body["definitionID"],
            text=body["text"],
            color=StampColor(body["color"]),
        )
    if kind == "drawing":
        b = body["bounds"]
        return DrawingContent(
            data=base64.b64decode(body["data"], validate=True),
            bounds=DrawingBounds(x=float(b["x"]), y=float(b["y"]),
                                 width=float(b["width"]), height=float(b["height"])),
        )
    raise ValueError(f"unknown annotation content kind: {kind!r}")


def _put(item: dict, key: str, value) -> None:
    """Absent optionals are omitted, not written as null."""
    if value is not None:
        item[key] = value


def question_to_dict(q: Question) -> dict:
    item = {
        "id": q.id,
        "name": q.name,
        "shortName": q.short_name,
        "maxPoints": float(q.max_points),
        "status": q.status.value,
    }
    _put(item, "points", float(q.points) if q.points is not None else None)
    _put(item, "position", _position_to_dict(q.position) if q.position else None)
    _put(item, "stampText", q.stamp_text)
    _put(item, "stampColor", q.stamp_color.value if q.stamp_color else None)
    return item


def question_from_dict(data: dict) -> Question:
    points = data.get("points")
    stamp_color = data.get("stampColor")
    return Question(
        id=data["id"],
        name=data["name"],
        short_name=data["shortName"],
        max_points=float(data["maxPoints"]),
        points=float(points) if points is not None else None,
        status=QuestionStatus(data.get("status", "pending")),
        position=_position_from_dict(data.get("position")),
        stamp_text=data.get("stampText"),
        stamp_color=StampColor(stamp_color) if stamp_color else None,
    )


def section_to_dict(s: Section) -> dict:
    item = {
        "id": s.id,
        "name": s.name,
        "shortName": s.short_name,
        "questions": [question_to_dict(q) for q in s.questions],
    }
    _put(item, "position", _position_to_dict(s.position) if s.position else None)
    return item


def section_from_dict(data: dict) -> Section:
    return Section(
        id=data["id"],
        name=data["name"],
        short_name=data["shortName"],
        position=_position_from_dict(data.get("position")),
        questions=[question_from_dict(q) for q in data.get("questions", [])],
    )


def annotation_to_dict(a: Annotation) -> dict:
    return {
        "id": a.id,
        "position": _position_to_dict(a.position),
        "content": _content_to_dict(a.content),
    }


def copy_to_dict(copy: CopyFeedback) -> dict:
    item = {
        "id": copy.id,
        "pdfPath": copy.pdf_path,
        "sections": [section_to_dict(s) for s in copy.sections],
        "annotations": [annotation_to_dict(a) for a in copy.annotations],
        "createdAt": format_date(copy.created_at),
        "updatedAt": format_date(copy.updated_at),
    }
    _put(item, "studentName", copy.student_name)
    _put(item, "studentID", copy.student_id)
    _put(item, "totalPosition",
         _position_to_dict(copy.total_position) if copy.total_position else None)
    return item


def copy_from_dict(data: dict) -> CopyFeedback:
    return CopyFeedback(
        id=data["id"],
        pdf_path=data["pdfPath"],
        student_name=data.get("studentName"),
        student_id=data.get("studentID"),
        sections=[section_from_dict(s) for s in data.get("sections", [])],
        annotations=[
            Annotation(
                id=a["id"],
                position=_position_from_dict(a["position"]),
                content=_content_from_dict(a["content"]),
            )
            for a in data.get("annotations", [])
        ],
        total_position=_position_from_dict(data.get("totalPosition")),
        created_at=parse_date(data["createdAt"]),
        updated_at=parse_date(data["updatedAt"]),
    )


def dumps_copy(copy: CopyFeedback) -> str:
    return json.dumps(copy_to_dict(copy), indent=2, sort_keys=True, ensure_ascii=False) + "\n"


def loads_copy(text: str) -> CopyFeedback:
    try:
        return copy_from_dict(json.loads(text))
    except (ValueError, KeyError, TypeError, AttributeError, binascii.Error) as exc:
        raise InvalidSidecar("Graded copy file is malformed.", {"error": str(exc)}) from exc


# ── Graded copies ─────────────────────────────────────────────────────────────

def save_copy(copy: CopyFeedback, store: Optional[FileStore] = None) -> str:
    """Write *copy* to its sidecar file and return the sidecar path."""
    store = store or _default_store
    path = sidecar_path(copy.pdf_path)
    try:
        store.write(path, dumps_copy(copy).encode("utf-8"))
    except OSError as exc:
        raise PersistenceError("Failed to save graded copy.",
                               {"path": path, "error": str(exc)}) from exc
    return path


def load_copy(path: str, store: Optional[FileStore] = None) -> CopyFeedback:
    store = store or _default_store
    if not store.exists(path):
        raise NotFoundError("Graded copy file not found.", {"path": path})
    try:
        raw = store.read(path)
    except OSError as exc:
        raise NotFoundError("Graded copy file could not be read.",
                            {"path": path, "error": str(exc)}) from exc
    try:
        text = raw.decode("utf-8")
    except UnicodeDecodeError as exc:
        raise InvalidSidecar("Graded copy file is not UTF-8.", {"path": path}) from exc
    return loads_copy(text)


def load_or_create(pdf_path: str, template: Optional[FeedbackTemplate] = None,
                   store: Optional[FileStore] = None,
                   student_name: Optional[str] = None) -> CopyFeedback:
    """Load the sidecar next to *pdf_path*, or build a fresh copy.

    A fresh copy is seeded with a structural clone of *template* when given.
    A corrupt sidecar is logged and treated as absent.
    """
    store = store or _default_store
    path = sidecar_path(pdf_path)
    if store.exists(path):
        try:
            return load_copy(path, store)
        except (InvalidSidecar, NotFoundError) as exc:
            logger.warning("ignoring unreadable sidecar %s: %s", path, exc)
    sections = clone_rubric(template.sections) if template else []
    return CopyFeedback(pdf_path=pdf_path, student_name=student_name, sections=sections)


def load_copies(pdf_dir: str, store: Optional[FileStore] = None,
                template: Optional[FeedbackTemplate] = None) -> List[CopyFeedback]:
    """Load (or create) a copy for every source PDF in *pdf_dir*, by file name."""
    if not os.path.isdir(pdf_dir):
        return []
    copies = []
    for name in sorted(os.listdir(pdf_dir)):
        if not name.lower().endswith(".pdf"):
            continue
        pdf_path = os.path.join(pdf_dir, name)
        if is_graded_output(pdf_path):
            continue
        copies.append(load_or_create(pdf_path, template=template, store=store,
                                     student_name=os.path.splitext(name)[0]))
    logger.info("loaded %d copies from %s", len(copies), pdf_dir)
    return copies


# ── Project config.json (settings) ────────────────────────────────────────────

def config_path(project_dir: str) -> str:
    return os.path.join(project_dir, "config.json")


def load_settings(project_dir: str) -> GraderSettings:
    """Read *project_dir*/config.json; missing file or keys fall back to defaults."""
    path = config_path(project_dir)
    data = {}
    if os.path.exists(path):
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
    defaults = GraderSettings()
    return GraderSettings(
        pdf_dir=data.get("pdf_dir") or os.path.join(project_dir, "PDFs"),
        export_dir=data.get("export_dir") or os.path.join(project_dir, "export"),
        debug_mode=bool(data.get("debug_mode", defaults.debug_mode)),
        split_base_name=data.get("split_base_name", defaults.split_base_name),
        rubric_name=data.get("rubric_name", defaults.rubric_name),
    )


def save_settings(project_dir: str, settings: GraderSettings) -> None:
    data = {
        "pdf_dir": settings.pdf_dir,
        "export_dir": settings.export_dir,
        "debug_mode": settings.debug_mode,
        "split_base_name": settings.split_base_name,
        "rubric_name": settings.rubric_name,
    }
    atomic_write(config_path(project_dir),
                 (json.dumps(data, indent=2) + "\n").encode("utf-8"))


def ensure_dirs(settings: GraderSettings) -> None:
    os.makedirs(settings.pdf_dir, exist_ok=True)
    os.makedirs(settings.export_dir, exist_ok=True)
