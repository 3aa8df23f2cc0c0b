"""pdfgrade: rubric-based grading and annotation of PDF copies."""

__version__ = "0.1.0"
