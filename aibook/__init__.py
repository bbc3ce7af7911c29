"""aibook - Generate AI-summarized pocket editions of EPUB books."""

from .models import Book, Chapter, ChapterFailure, ChapterSummary, ImageRef, JobConfig, SummaryPlan

__version__ = '0.1.0'

__all__ = [
	'Book',
	'Chapter',
	'ChapterFailure',
	'ChapterSummary',
	'ImageRef',
	'JobConfig',
	'SummaryPlan',
]
