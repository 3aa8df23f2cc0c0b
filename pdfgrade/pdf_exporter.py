"""Export graded PDFs by baking badges and annotations into copies of the originals.

Coordinate notes
----------------
Stored positions are normalized with y = 0 at the *bottom* of the page (PDF
native origin).  Layout is computed on a top-left-origin "visual" surface of
``page.rect`` size, so a position maps to ``(x * width, (1 - y) * height)``.

PyMuPDF's ``page.rect`` is rotation-aware, but ``page.draw_*`` and
``insert_text`` operate in the **native** (pre-rotation) space.  Every visual
rectangle and point therefore goes through ``_PageCanvas.to_draw()`` before it
is drawn.

Layering on each page is fixed: section subtotal badges, question badges, the
final-total badge, then free-form annotations.
"""
import logging
import os
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

import fitz

from pdfgrade import data_store
from pdfgrade.data_store import GRADED_SUFFIX, FileStore
from pdfgrade.errors import FileNotFound, InvalidSource, SaveFailed
from pdfgrade.models import (
    Annotation,
    CopyFeedback,
    DrawingContent,
    NormalizedPosition,
    Question,
    Section,
    StampContent,
    TextContent,
    hex_to_rgb,
)

logger = logging.getLogger(__name__)

Color = Tuple[float, float, float]

# ── Colour constants ──────────────────────────────────────────────────────────
_RED    = hex_to_rgb("#FF3B30")   # badge borders and score text
_WHITE  = (1.0, 1.0, 1.0)
_BLACK  = (0.0, 0.0, 0.0)
_YELLOW = hex_to_rgb("#FFCC00")   # free-text note background

_REGULAR = "helv"
_BOLD = "hebo"


# ── Text metrics ──────────────────────────────────────────────────────────────

_fonts: Dict[str, fitz.Font] = {}


def _font(fontname: str) -> fitz.Font:
    if fontname not in _fonts:
        _fonts[fontname] = fitz.Font(fontname)
    return _fonts[fontname]


def line_height(fontsize: float, bold: bool = False) -> float:
    font = _font(_BOLD if bold else _REGULAR)
    return fontsize * (font.ascender - font.descender)


def text_size(text: str, fontsize: float, bold: bool = False) -> Tuple[float, float]:
    """Return *(width, height)* of *text*; each ``\\n`` starts a new line."""
    font = _font(_BOLD if bold else _REGULAR)
    lines = text.split("\n")
    width = max((font.text_length(ln, fontsize=fontsize) for ln in lines), default=0.0)
    return width, len(lines) * line_height(fontsize, bold)


def format_points(value: float) -> str:
    """5 -> '5', 5.5 -> '5.5', 5.25 -> '5.25'."""
    text = f"{value:.2f}".rstrip("0").rstrip(".")
    return "0" if text in ("-0", "") else text


def format_short_date(value) -> str:
    return f"{value.month}/{value.day}/{value:%y}"


# ── Layout ────────────────────────────────────────────────────────────────────

@dataclass
class Box:
    rect: fitz.Rect
    fill: Color
    fill_opacity: float = 1.0
    radius: float = 0.0             # absolute corner radius in points
    border: Optional[Color] = None
    border_width: float = 0.0
    oval: bool = False


@dataclass
class Label:
    text: str
    x: float                        # left edge, visual coordinates
    y: float                        # top edge, visual coordinates
    fontsize: float
    color: Color
    bold: bool = False
    opacity: float = 1.0


@dataclass
class BadgeLayout:
    rect: fitz.Rect                 # the badge outline
    boxes: List[Box] = field(default_factory=list)
    labels: List[Label] = field(default_factory=list)

    @property
    def center(self) -> Tuple[float, float]:
        return (self.rect.x0 + self.rect.x1) / 2, (self.rect.y0 + self.rect.y1) / 2


def anchor_point(position: NormalizedPosition, page_rect: fitz.Rect) -> Tuple[float, float]:
    """Visual point for a stored position (y flipped to a top-left origin)."""
    return position.to_render_point(page_rect.width, page_rect.height)


def _card(rect: fitz.Rect, radius: float, border_width: float,
          shadow_opacity: float) -> List[Box]:
    """Shadow, white background and red border shared by all score badges."""
    return [
        Box(rect + (0, 1, 0, 1), _BLACK, fill_opacity=shadow_opacity, radius=radius),
        Box(fitz.Rect(rect), _WHITE, radius=radius, border=_RED, border_width=border_width),
    ]


def layout_section_badge(section: Section, center: Tuple[float, float]) -> BadgeLayout:
    title = f"Subscore: {section.name}"
    score = f"{format_points(section.subtotal)}/{format_points(section.max_subtotal)}"
    title_w, title_h = text_size(title, 7)
    score_w, score_h = text_size(score, 12, bold=True)

    padding, spacing = 8.0, 2.0
    width = max(title_w, score_w) + padding * 2
    height = title_h + score_h + spacing + padding * 2
    cx, cy = center
    rect = fitz.Rect(cx - width / 2, cy - height / 2, cx + width / 2, cy + height / 2)

    layout = BadgeLayout(rect=rect, boxes=_card(rect, 4, 1.5, 0.1))
    y = rect.y0 + padding
    layout.labels.append(Label(title, cx - title_w / 2, y, 7, _RED, opacity=0.8))
    y += title_h + spacing
    layout.labels.append(Label(score, cx - score_w / 2, y, 12, _RED, bold=True))
    return layout


def layout_question_badge(question: Question, center: Tuple[float, float]) -> BadgeLayout:
    points = question.points if question.points is not None else 0.0
    score = f"{format_points(points)}/{format_points(question.max_points)}"
    score_w, score_h = text_size(score, 10, bold=True)
    stamp = question.stamp_text
    stamp_w, stamp_h = text_size(stamp, 7) if stamp else (0.0, 0.0)

    padding, pill, spacing, stamp_spacing = 6.0, 6.0, 5.0, 3.0
    box_w = score_w + spacing + pill + padding * 2
    box_h = score_h + padding * 2
    total_h = box_h + stamp_spacing + stamp_h if stamp else box_h

    cx, cy = center
    top = cy - total_h / 2
    rect = fitz.Rect(cx - box_w / 2, top, cx + box_w / 2, top + box_h)

    if question.stamp_color is not None:
        pill_color = question.stamp_color.rgb
    else:
        pill_color = hex_to_rgb(question.status.hex)

    layout = BadgeLayout(rect=rect, boxes=_card(rect, 4, 1.5, 0.1))
    layout.labels.append(Label(score, rect.x0 + padding, rect.y0 + padding, 10, _RED, bold=True))
    pill_x = rect.x0 + padding + score_w + spacing
    pill_y = (rect.y0 + rect.y1) / 2 - pill / 2
    layout.boxes.append(Box(fitz.Rect(pill_x, pill_y, pill_x + pill, pill_y + pill),
                            pill_color, oval=True))
    if stamp:
        layout.labels.append(Label(stamp, cx - stamp_w / 2, rect.y1 + stamp_spacing,
                                   7, _RED, opacity=0.8))
    return layout


def layout_total_badge(copy: CopyFeedback, center: Tuple[float, float]) -> BadgeLayout:
    title = "FINAL"
    score = f"{format_points(copy.total)}/{format_points(copy.max_total)}"
    percent = f"{int(copy.percentage)}%"
    date = format_short_date(copy.updated_at)

    title_w, title_h = text_size(title, 10, bold=True)
    score_w, score_h = text_size(score, 22, bold=True)
    percent_w, percent_h = text_size(percent, 14, bold=True)
    date_w, date_h = text_size(date, 9)

    h_pad, v_pad, spacing = 14.0, 8.0, 12.0
    divider_w, divider_h = 1.0, 24.0

    width = (h_pad + title_w + spacing + divider_w + spacing + score_w + spacing
             + percent_w + 4 + spacing + divider_w + spacing + date_w + h_pad)
    height = max(score_h, divider_h) + v_pad * 2
    cx, cy = center
    rect = fitz.Rect(cx - width / 2, cy - height / 2, cx + width / 2, cy + height / 2)

    layout = BadgeLayout(rect=rect, boxes=_card(rect, 6, 2, 0.2))

    def divider(x: float) -> Box:
        return Box(fitz.Rect(x, cy - divider_h / 2, x + divider_w, cy + divider_h / 2),
                   _RED, fill_opacity=0.3)

    x = rect.x0 + h_pad
    layout.labels.append(Label(title, x, cy - title_h / 2, 10, _RED, bold=True))
    x += title_w + spacing

    layout.boxes.append(divider(x))
    x += divider_w + spacing

    layout.labels.append(Label(score, x, cy - score_h / 2, 22, _RED, bold=True))
    x += score_w + spacing

    pill_rect = fitz.Rect(x - 4, cy - percent_h / 2 - 2, x + percent_w + 4, cy + percent_h / 2 + 2)
    layout.boxes.append(Box(pill_rect, _RED, fill_opacity=0.1, radius=pill_rect.height / 2))
    layout.labels.append(Label(percent, x, cy - percent_h / 2, 14, _RED, bold=True, opacity=0.8))
    x += percent_w + spacing + 4

    layout.boxes.append(divider(x))
    x += divider_w + spacing

    layout.labels.append(Label(date, x, cy - date_h / 2, 9, _RED, opacity=0.6))
    return layout


def layout_annotation(annotation: Annotation, page_width: float,
                      page_height: float) -> Optional[BadgeLayout]:
    """Badge layout for text and stamp notes; ``None`` for drawings."""
    content = annotation.content
    center = annotation.position.to_render_point(page_width, page_height)
    if isinstance(content, TextContent):
        return _note_layout(content.text, center, fontsize=9, bold=False, padding=4,
                            fill=_YELLOW, fill_opacity=0.9, text_color=_BLACK,
                            shadow_opacity=0.1)
    if isinstance(content, StampContent):
        return _note_layout(content.text, center, fontsize=9, bold=True, padding=5,
                            fill=content.color.rgb, fill_opacity=1.0, text_color=_WHITE,
                            shadow_opacity=0.15)
    if isinstance(content, DrawingContent):
        return None
    raise TypeError(f"unknown annotation content: {content!r}")


def _note_layout(text: str, center: Tuple[float, float], fontsize: float, bold: bool,
                 padding: float, fill: Color, fill_opacity: float, text_color: Color,
                 shadow_opacity: float) -> BadgeLayout:
    text_w, text_h = text_size(text, fontsize, bold)
    width, height = text_w + padding * 2, text_h + padding * 2
    cx, cy = center
    rect = fitz.Rect(cx - width / 2, cy - height / 2, cx + width / 2, cy + height / 2)
    layout = BadgeLayout(rect=rect, boxes=[
        Box(rect + (0, 1, 0, 1), _BLACK, fill_opacity=shadow_opacity, radius=3),
        Box(fitz.Rect(rect), fill, fill_opacity=fill_opacity, radius=3),
    ])
    lh = line_height(fontsize, bold)
    for i, line in enumerate(text.split("\n")):
        layout.labels.append(Label(line, rect.x0 + padding, rect.y0 + padding + i * lh,
                                   fontsize, text_color, bold=bold))
    return layout


def annotation_rect(annotation: Annotation, page_width: float,
                    page_height: float) -> fitz.Rect:
    """Visual rectangle an annotation occupies once rendered."""
    content = annotation.content
    if isinstance(content, DrawingContent):
        return fitz.Rect(*content.bounds.to_render_rect(page_width, page_height))
    return layout_annotation(annotation, page_width, page_height).rect


# ── Drawing ───────────────────────────────────────────────────────────────────

class _PageCanvas:
    """Draws visual (rotation-aware, top-left origin) geometry onto a page."""

    def __init__(self, page: fitz.Page):
        self.page = page
        self.width = page.rect.width
        self.height = page.rect.height
        self.rot = page.rotation
        self.mw = page.mediabox.width
        self.mh = page.mediabox.height

    def to_draw(self, vx: float, vy: float) -> fitz.Point:
        """Convert visual (page.rect) coords to PyMuPDF draw coords."""
        rot, mw, mh = self.rot, self.mw, self.mh
        if rot == 90:
            return fitz.Point(vy, mh - vx)
        if rot == 180:
            return fitz.Point(mw - vx, mh - vy)
        if rot == 270:
            return fitz.Point(mw - vy, vx)
        return fitz.Point(vx, vy)   # rot == 0

    def native_rect(self, rect: fitz.Rect) -> fitz.Rect:
        return fitz.Rect(self.to_draw(rect.x0, rect.y0),
                         self.to_draw(rect.x1, rect.y1)).normalize()

    def box(self, box: Box) -> None:
        rect = self.native_rect(box.rect)
        if rect.is_empty:
            return
        shape = self.page.new_shape()
        if box.oval:
            shape.draw_oval(rect)
        else:
            radius = None
            if box.radius > 0:
                radius = min(0.5, box.radius / min(rect.width, rect.height))
            shape.draw_rect(rect, radius=radius)
        shape.finish(
            color=box.border,
            fill=box.fill,
            fill_opacity=box.fill_opacity,
            width=box.border_width if box.border else 0,
        )
        shape.commit()

    def label(self, label: Label) -> None:
        if not label.text:
            return
        font = _font(_BOLD if label.bold else _REGULAR)
        baseline = self.to_draw(label.x, label.y + label.fontsize * font.ascender)
        self.page.insert_text(
            baseline, label.text,
            fontsize=label.fontsize,
            fontname=_BOLD if label.bold else _REGULAR,
            color=label.color,
            fill_opacity=label.opacity,
            rotate=self.rot,
        )

    def badge(self, layout: BadgeLayout) -> None:
        for box in layout.boxes:
            self.box(box)
        for label in layout.labels:
            self.label(label)

    def image(self, rect: fitz.Rect, data: bytes) -> bool:
        try:
            self.page.insert_image(self.native_rect(rect), stream=data,
                                   keep_proportion=False, rotate=self.rot)
        except Exception as exc:
            logger.warning("skipping undecodable drawing: %s", exc)
            return False
        return True


def _draw_page(canvas: _PageCanvas, copy: CopyFeedback, page_idx: int, _log) -> None:
    page_rect = fitz.Rect(0, 0, canvas.width, canvas.height)

    for section in copy.sections:
        if section.position is not None and section.position.page == page_idx:
            layout = layout_section_badge(section, anchor_point(section.position, page_rect))
            _log(f"  section {section.name!r}: rect={layout.rect}")
            canvas.badge(layout)

    for question in copy.all_questions():
        if question.position is not None and question.position.page == page_idx:
            layout = layout_question_badge(question, anchor_point(question.position, page_rect))
            _log(f"  question {question.name!r}: rect={layout.rect}")
            canvas.badge(layout)

    if copy.total_position is not None and copy.total_position.page == page_idx:
        layout = layout_total_badge(copy, anchor_point(copy.total_position, page_rect))
        _log(f"  total: rect={layout.rect}")
        canvas.badge(layout)

    for ann in copy.annotations:
        if ann.position.page != page_idx:
            continue
        content = ann.content
        if isinstance(content, DrawingContent):
            rect = annotation_rect(ann, canvas.width, canvas.height)
            ok = canvas.image(rect, content.data)
            _log(f"  drawing {ann.id}: rect={rect} inserted={ok}")
        else:
            layout = layout_annotation(ann, canvas.width, canvas.height)
            _log(f"  note {ann.id}: rect={layout.rect}")
            canvas.badge(layout)


def graded_output_path(copy: CopyFeedback, output_dir: Optional[str] = None) -> str:
    """``<dir>/<source stem>_graded.pdf``; defaults to the source directory."""
    stem = os.path.splitext(os.path.basename(copy.pdf_path))[0]
    directory = output_dir or os.path.dirname(os.path.abspath(copy.pdf_path))
    return os.path.join(directory, f"{stem}{GRADED_SUFFIX}.pdf")


def render_graded_pdf(copy: CopyFeedback, store: Optional[FileStore] = None,
                      log_path: Optional[str] = None) -> bytes:
    """Return new PDF bytes with *copy*'s badges and notes baked into each page.

    The source PDF is opened read-only from memory and never written back.
    If *log_path* is given, a human-readable debug log with every computed
    badge rectangle is written alongside; it is flushed after every entry so
    a partial log survives a crash.
    """
    store = store or data_store.default_store()
    src = copy.pdf_path
    if not store.exists(src):
        raise FileNotFound("PDF file not found. It may have been moved or deleted.",
                           {"path": src})
    try:
        raw = store.read(src)
    except OSError as exc:
        raise InvalidSource("Cannot read source PDF.", {"path": src, "error": str(exc)}) from exc

    log_fh = None
    if log_path:
        try:
            log_fh = open(log_path, "w", encoding="utf-8")
        except OSError as exc:
            logger.warning("could not open debug log %s: %s", log_path, exc)

    def _log(msg: str) -> None:
        if log_fh:
            log_fh.write(msg + "\n")
            log_fh.flush()

    try:
        try:
            doc = fitz.open(stream=raw, filetype="pdf")
        except Exception as exc:
            raise InvalidSource("Cannot read source PDF. The file may be corrupted.",
                                {"path": src, "error": str(exc)}) from exc
        try:
            if doc.needs_pass or doc.page_count == 0:
                raise InvalidSource("Cannot read source PDF. The file may be corrupted.",
                                    {"path": src})
            _log(f"SOURCE : {src}")
            _log(f"COPY   : {copy.id}  total={copy.total}/{copy.max_total}")
            for page_idx in range(doc.page_count):
                canvas = _PageCanvas(doc[page_idx])
                _log(f"=== PAGE {page_idx} === w={canvas.width:.2f} h={canvas.height:.2f}"
                     f" rotation={canvas.rot}")
                _draw_page(canvas, copy, page_idx, _log)

            # Plain serialization first; fall back to a full cleanup pass.
            last_exc = None
            for garbage_level in (0, 4):
                try:
                    data = doc.tobytes(garbage=garbage_level, deflate=True)
                    _log(f"SAVE OK (garbage={garbage_level})")
                    return data
                except (RuntimeError, ValueError) as exc:
                    _log(f"SAVE FAILED (garbage={garbage_level}): {exc}")
                    last_exc = exc
            raise SaveFailed("Failed to save exported PDF.", {"error": str(last_exc)})
        finally:
            doc.close()
    finally:
        if log_fh:
            log_fh.close()


def export_pdf(copy: CopyFeedback, output_dir: Optional[str] = None,
               store: Optional[FileStore] = None, debug: bool = False) -> str:
    """Render *copy* and write it next to the source (or into *output_dir*).

    The write is atomic: the output only appears once fully written.  Returns
    the output path.
    """
    store = store or data_store.default_store()
    dst = graded_output_path(copy, output_dir)
    log_path = os.path.splitext(dst)[0] + ".log" if debug else None
    if log_path:
        try:
            os.makedirs(os.path.dirname(log_path), exist_ok=True)
        except OSError as exc:
            raise SaveFailed("Cannot create export directory.",
                             {"path": dst, "error": str(exc)}) from exc
    data = render_graded_pdf(copy, store=store, log_path=log_path)
    try:
        store.write(dst, data)
    except OSError as exc:
        raise SaveFailed("Failed to save exported PDF.", {"path": dst, "error": str(exc)}) from exc
    logger.info("exported %s -> %s (%d bytes)", copy.pdf_path, dst, len(data))
    return dst
