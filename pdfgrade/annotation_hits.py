"""Hit-testing: which annotation sits under a tap on the page.

All helpers take a :class:`NormalizedPosition` plus the page size in points
and reuse the exporter's layout, so the clickable area matches exactly what
is baked into the exported PDF.
"""
from typing import List, Optional, Tuple

from pdfgrade.models import Annotation, NormalizedPosition
from pdfgrade.pdf_exporter import annotation_rect

# A4 portrait in PDF points, used when the caller does not know the page size.
DEFAULT_PAGE_SIZE: Tuple[float, float] = (595.0, 842.0)


def find_annotation_at(
    annotations: List[Annotation],
    position: NormalizedPosition,
    page_size: Tuple[float, float] = DEFAULT_PAGE_SIZE,
    tolerance: float = 4.0,
) -> Optional[Annotation]:
    """Return the topmost annotation under *position*, or *None*.

    Later annotations are drawn on top, so the list is scanned back to front.
    *tolerance* (points) grows every hit box on all sides.
    """
    pw, ph = page_size
    px, py = position.to_render_point(pw, ph)
    for ann in reversed(annotations):
        if ann.position.page != position.page:
            continue
        rect = annotation_rect(ann, pw, ph)
        if (rect.x0 - tolerance <= px <= rect.x1 + tolerance
                and rect.y0 - tolerance <= py <= rect.y1 + tolerance):
            return ann
    return None
