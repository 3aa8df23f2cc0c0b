"""
Typed failures raised by the export, template and persistence layers.

The grading engine's mutation API never raises these: unknown IDs are no-ops
and persistence failures are captured into ``GradingEngine.save_error``.
"""


class PDFGradeError(Exception):
    """Base exception for all grading-engine errors."""

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} | Details: {self.details}"
        return self.message


# ==================== Not found ====================

class NotFoundError(PDFGradeError):
    """A source file or referenced entity does not exist."""
    pass


class FileNotFound(NotFoundError):
    """Raised when the source PDF has been moved or deleted."""
    pass


# ==================== Invalid format ====================

class InvalidFormatError(PDFGradeError):
    """A file exists but cannot be parsed."""
    pass


class InvalidSource(InvalidFormatError):
    """Raised when the source PDF is unreadable or corrupted."""
    pass


class InvalidTemplate(InvalidFormatError):
    """Raised when a rubric template file is malformed."""
    pass


class InvalidSidecar(InvalidFormatError):
    """Raised when a persisted graded-copy file is malformed."""
    pass


# ==================== I/O failures ====================

class IOFailureError(PDFGradeError):
    """A write failed; the caller may retry the same operation."""
    pass


class SaveFailed(IOFailureError):
    """Raised when an exported PDF, report or archive cannot be written."""
    pass


class PersistenceError(IOFailureError):
    """Raised when a graded-copy sidecar cannot be written."""
    pass


class ExportCancelled(PDFGradeError):
    """Raised when the caller abandons a long-running export."""
    pass
