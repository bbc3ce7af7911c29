"""
Pipeline

Runs one book through extraction, the summary plan, chapter summarization and
output assembly, in that order.
"""

import logging
import threading
from pathlib import Path
from typing import Optional

from .errors import NoChaptersSummarizedError
from .extract import read_book
from .models import ChapterSummary, JobConfig, RunReport
from .output import write_extraction, write_outputs
from .plan import build_plan
from .progress import ProgressTracker
from .retry import RetryPolicy
from .summarize import ChapterSummarizer

logger = logging.getLogger(__name__)


def retry_policy(config: JobConfig) -> RetryPolicy:
	return RetryPolicy(max_attempts=config.max_attempts, base_delay=config.retry_base_delay)


def summarize_book(
	config: JobConfig,
	book_path: Path,
	output_dir: Path,
	provider,
	tracker: Optional[ProgressTracker] = None,
	cancel: Optional[threading.Event] = None,
) -> RunReport:
	"""
	Turn one EPUB into its pocket edition.

	Extraction and plan failures abort before any chapter request is made.
	Chapter failures are recorded and rendered as placeholders. Nothing is
	written unless every chapter was attempted and at least one succeeded.

	Args:
		config: Validated job configuration.
		book_path: EPUB to summarize.
		output_dir: Directory for summary.md, summary.epub and images/.
		provider: Provider selected for the run.
		tracker: Progress tracker; reset to chapters + 1 units.
		cancel: Run-level cancellation signal.

	Returns:
		RunReport with succeeded and failed chapters and the written files.

	Raises:
		ExtractionError: If the EPUB cannot be read or has no chapters.
		PlanGenerationError: If the summary plan cannot be built.
		NoChaptersSummarizedError: If every chapter failed.
		AssemblyError: If the outputs cannot be written.
		RunCancelledError: If the run was cancelled.
	"""
	cancel = cancel or threading.Event()
	tracker = tracker or ProgressTracker()
	policy = retry_policy(config)

	book = read_book(book_path, language=config.language)
	tracker.reset(len(book.chapters) + 1)
	logger.info('Summarizing "%s" (%d chapters) with %s', book.title, len(book.chapters), config.provider)

	plan = build_plan(book, provider, config, policy=policy, tracker=tracker, cancel=cancel)

	summarizer = ChapterSummarizer(provider, config, policy=policy, tracker=tracker, cancel=cancel)
	outcomes = summarizer.summarize_all(book, plan)

	report = RunReport(book_title=book.title, chapter_count=len(book.chapters))
	for outcome in outcomes:
		if isinstance(outcome, ChapterSummary):
			report.succeeded.append(outcome.chapter_index)
		else:
			report.failed.append(outcome)

	if not report.succeeded:
		reasons = '; '.join(f'chapter {f.chapter_index + 1}: {f.reason}' for f in report.failed)
		raise NoChaptersSummarizedError(f'No chapter of "{book.title}" could be summarized ({reasons})')

	report.outputs = write_outputs(output_dir, book, plan, outcomes, config.output_format)
	if report.failed:
		logger.warning('%d of %d chapters failed', len(report.failed), report.chapter_count)
	return report


def extract_book(config: JobConfig, book_path: Path, output_dir: Path) -> RunReport:
	"""Extraction only: write chapter texts and images, no provider calls."""
	book = read_book(book_path, language=config.language)
	report = RunReport(book_title=book.title, chapter_count=len(book.chapters))
	report.outputs = write_extraction(output_dir, book)
	report.succeeded = [chapter.index for chapter in book.chapters]
	return report


def failure_lines(report: RunReport):
	"""Human readable lines for the failed chapters of a report."""
	return [f'Chapter {failure.chapter_index + 1}: {failure.reason}' for failure in report.failed]
