"""
Chapter Summarization Module

This module provides functionality to:
1. Build one templated request per chapter from the summary plan
2. Call the provider under the retry policy, with a corrective retry for
   malformed responses
3. Fan chapters out over a bounded worker pool, keeping results in chapter order
"""

import json
import logging
import threading
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import List, Optional

from .errors import MalformedResponseError, ProviderError, RunCancelledError
from .models import (
	Book,
	Chapter,
	ChapterFailure,
	ChapterOutcome,
	ChapterSummary,
	JobConfig,
	ProviderRequest,
	SummaryPlan,
)
from .progress import ProgressTracker
from .prompts import (
	CHAPTER_TEMPLATE,
	CORRECTIVE_INSTRUCTION,
	DETAIL_INSTRUCTIONS,
	SYSTEM_PROMPT,
	expand_language,
	fill_template,
	parse_summary_response,
)
from .retry import RetryPolicy, call_with_retry

logger = logging.getLogger(__name__)

TRUNCATION_MARKER = '\n\n[Content truncated...]'


class ChapterSummarizer:
	"""Summarize every chapter of a book against a finished summary plan."""

	def __init__(
		self,
		provider,
		config: JobConfig,
		policy: Optional[RetryPolicy] = None,
		tracker: Optional[ProgressTracker] = None,
		cancel: Optional[threading.Event] = None,
	):
		"""
		Args:
			provider: Provider selected for the run.
			config: Job configuration (language, detail level, workers).
			policy: Retry policy. Defaults to the configured attempt bound.
			tracker: Progress tracker, advanced once per chapter.
			cancel: Run-level cancellation signal.
		"""
		self.provider = provider
		self.config = config
		self.policy = policy or RetryPolicy(
			max_attempts=config.max_attempts,
			base_delay=config.retry_base_delay,
		)
		self.tracker = tracker
		self.cancel = cancel or threading.Event()

	def build_request(self, chapter: Chapter, plan: SummaryPlan, corrective: bool = False) -> ProviderRequest:
		prompt = fill_template(
			CHAPTER_TEMPLATE,
			plan=json.dumps(plan.to_dict(), ensure_ascii=False, indent=2),
			text=self._truncate_content(chapter.text),
			language=expand_language(self.config.language),
			detail_level=DETAIL_INSTRUCTIONS.get(self.config.detail_level, self.config.detail_level),
		)
		if corrective:
			prompt += CORRECTIVE_INSTRUCTION
		return ProviderRequest(system_prompt=SYSTEM_PROMPT, user_prompt=prompt, language=self.config.language)

	def summarize_chapter(self, chapter: Chapter, plan: SummaryPlan) -> ChapterOutcome:
		"""
		Generate the summary for a single chapter.

		Any exception from the provider, malformed responses included, is
		caught here and turned into a ChapterFailure, so one chapter never
		aborts the run.

		Args:
			chapter: Chapter with its text loaded.
			plan: Finished summary plan.

		Returns:
			ChapterSummary on success, ChapterFailure otherwise.

		Raises:
			RunCancelledError: If the run was cancelled.
		"""
		try:
			outcome = self._summarize(chapter, plan)
		except RunCancelledError:
			raise
		except ProviderError as e:
			outcome = ChapterFailure(chapter.index, f'{type(e).__name__}: {e}')
		except MalformedResponseError as e:
			outcome = ChapterFailure(chapter.index, f'MalformedResponse: {e}')
		except Exception as e:
			logger.debug('Unexpected error in chapter %d', chapter.index + 1, exc_info=True)
			outcome = ChapterFailure(chapter.index, f'{type(e).__name__}: {e}')

		if isinstance(outcome, ChapterFailure):
			logger.warning('Chapter %d (%s) failed: %s', chapter.index + 1, chapter.title, outcome.reason)
		if self.tracker is not None:
			self.tracker.advance(f'chapter {chapter.index + 1}')
		return outcome

	def summarize_all(self, book: Book, plan: SummaryPlan) -> List[ChapterOutcome]:
		"""
		Summarize all chapters on a bounded worker pool.

		Args:
			book: Extracted book.
			plan: Finished summary plan.

		Returns:
			One outcome per chapter, at the chapter's index.

		Raises:
			RunCancelledError: If the run was cancelled or interrupted. No
				new provider calls are issued once that happens.
		"""
		outcomes: List[Optional[ChapterOutcome]] = [None] * len(book.chapters)
		workers = max(1, min(self.config.workers, len(book.chapters) or 1))
		logger.info('Summarizing %d chapters with %d workers', len(book.chapters), workers)

		executor = ThreadPoolExecutor(max_workers=workers, thread_name_prefix='aibook-chapter')
		try:
			futures = {
				executor.submit(self._run_task, chapter, plan): chapter.index
				for chapter in book.chapters
			}
			for future in as_completed(futures):
				index = futures[future]
				try:
					outcomes[index] = future.result()
				except RunCancelledError:
					self.cancel.set()
		except KeyboardInterrupt:
			self.cancel.set()
			raise RunCancelledError('Interrupted by user') from None
		finally:
			executor.shutdown(wait=True, cancel_futures=True)

		if self.cancel.is_set():
			raise RunCancelledError('Run cancelled before every chapter was attempted')
		return outcomes

	def _run_task(self, chapter: Chapter, plan: SummaryPlan) -> ChapterOutcome:
		if self.cancel.is_set():
			raise RunCancelledError(f'chapter {chapter.index + 1}: cancelled')
		return self.summarize_chapter(chapter, plan)

	def _summarize(self, chapter: Chapter, plan: SummaryPlan) -> ChapterSummary:
		if not chapter.text.strip():
			logger.debug('Chapter %d has no text, nothing to summarize', chapter.index + 1)
			return ChapterSummary(chapter.index, summary='')

		label = f'chapter {chapter.index + 1}'
		corrections = self.policy.corrective_retries
		request = self.build_request(chapter, plan)
		while True:
			response = call_with_retry(
				self.provider, request, self.policy,
				cancel=self.cancel, label=label,
			)
			try:
				fields = parse_summary_response(response.text)
			except MalformedResponseError as e:
				if corrections <= 0:
					raise
				corrections -= 1
				logger.info('%s: malformed response (%s), retrying with a corrective instruction', label, e)
				request = self.build_request(chapter, plan, corrective=True)
				continue
			return ChapterSummary(chapter.index, **fields)

	def _truncate_content(self, content: str) -> str:
		"""Truncate content if too long."""
		max_chars = self.config.max_chapter_chars
		if max_chars and len(content) > max_chars:
			return content[:max_chars] + TRUNCATION_MARKER
		return content
