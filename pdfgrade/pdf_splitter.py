"""Bring PDFs into a project: import single files or split one scan into copies."""
import logging
import math
import os
import shutil
from typing import Callable, List, Optional

import fitz

from pdfgrade import data_store
from pdfgrade.data_store import FileStore
from pdfgrade.errors import FileNotFound, InvalidSource, SaveFailed
from pdfgrade.models import CopyFeedback, FeedbackTemplate

logger = logging.getLogger(__name__)


def copy_count(page_count: int, pages_per_copy: int) -> int:
    """Number of copies a scan of *page_count* pages splits into (last may be short)."""
    if pages_per_copy < 1:
        raise ValueError("pages_per_copy must be at least 1")
    if page_count <= 0:
        return 0
    return math.ceil(page_count / pages_per_copy)


def _open_source(pdf_path: str) -> fitz.Document:
    if not os.path.isfile(pdf_path):
        raise FileNotFound("PDF file not found.", {"path": pdf_path})
    try:
        doc = fitz.open(pdf_path)
    except Exception as exc:
        raise InvalidSource("Cannot read source PDF. The file may be corrupted.",
                            {"path": pdf_path, "error": str(exc)}) from exc
    if not doc.is_pdf or doc.needs_pass or doc.page_count == 0:
        doc.close()
        raise InvalidSource("Cannot read source PDF.", {"path": pdf_path})
    return doc


def split_pdf(
    source: str,
    output_dir: str,
    pages_per_copy: int,
    base_name: str = "copy",
    store: Optional[FileStore] = None,
    template: Optional[FeedbackTemplate] = None,
    progress_cb: Optional[Callable[[int, int], None]] = None,
) -> List[CopyFeedback]:
    """Split *source* into ``<base_name>_001.pdf``, ``_002.pdf``, ... in *output_dir*.

    Creates and saves one graded copy per output file, named "Copy N".
    """
    store = store or data_store.default_store()
    doc = _open_source(source)
    try:
        count = copy_count(doc.page_count, pages_per_copy)
        os.makedirs(output_dir, exist_ok=True)
        results = []
        for i in range(count):
            if progress_cb:
                progress_cb(i, count)
            start = i * pages_per_copy
            end = min(start + pages_per_copy, doc.page_count) - 1
            part = fitz.open()
            try:
                part.insert_pdf(doc, from_page=start, to_page=end)
                data = part.tobytes(garbage=3, deflate=True)
            finally:
                part.close()

            pdf_path = os.path.join(output_dir, f"{base_name}_{i + 1:03d}.pdf")
            try:
                store.write(pdf_path, data)
            except OSError as exc:
                raise SaveFailed("Failed to write split PDF.",
                                 {"path": pdf_path, "error": str(exc)}) from exc

            copy = data_store.load_or_create(pdf_path, template=template, store=store,
                                             student_name=f"Copy {i + 1}")
            data_store.save_copy(copy, store)
            results.append(copy)
        if progress_cb:
            progress_cb(count, count)
    finally:
        doc.close()
    logger.info("split %s into %d copies of %d page(s)", source, len(results), pages_per_copy)
    return results


def unique_destination(directory: str, filename: str) -> str:
    """``name.pdf``, else ``name_1.pdf``, ``name_2.pdf``, ... whichever is free."""
    dest = os.path.join(directory, filename)
    stem, ext = os.path.splitext(filename)
    counter = 1
    while os.path.exists(dest):
        dest = os.path.join(directory, f"{stem}_{counter}{ext}")
        counter += 1
    return dest


def import_pdf(source: str, pdf_dir: str,
               template: Optional[FeedbackTemplate] = None) -> CopyFeedback:
    """Copy *source* into *pdf_dir* and return a copy named after its file stem."""
    doc = _open_source(source)
    doc.close()
    os.makedirs(pdf_dir, exist_ok=True)
    dest = unique_destination(pdf_dir, os.path.basename(source))
    try:
        shutil.copyfile(source, dest)
    except OSError as exc:
        raise SaveFailed("Failed to copy PDF into the project.",
                         {"path": dest, "error": str(exc)}) from exc
    stem = os.path.splitext(os.path.basename(source))[0]
    logger.info("imported %s -> %s", source, dest)
    return data_store.load_or_create(dest, template=template, student_name=stem)
