"""Summary plan: the book-level summary every chapter request is conditioned on."""

import logging
import threading
from typing import Optional

from .errors import MalformedPlanError, MalformedResponseError, PlanGenerationError, ProviderError
from .models import Book, JobConfig, ProviderRequest, SummaryPlan
from .progress import ProgressTracker
from .prompts import PLAN_TEMPLATE, SYSTEM_PROMPT, expand_language, fill_template, parse_summary_response
from .retry import RetryPolicy, call_with_retry

logger = logging.getLogger(__name__)


def build_plan_request(book: Book, language: str) -> ProviderRequest:
	prompt = fill_template(
		PLAN_TEMPLATE,
		toc=book.toc_text(),
		language=expand_language(language),
	)
	return ProviderRequest(system_prompt=SYSTEM_PROMPT, user_prompt=prompt, language=language)


def build_plan(
	book: Book,
	provider,
	config: JobConfig,
	policy: Optional[RetryPolicy] = None,
	tracker: Optional[ProgressTracker] = None,
	cancel: Optional[threading.Event] = None,
) -> SummaryPlan:
	"""
	Generate the summary plan from the book's table of contents.

	Args:
		book: Extracted book.
		provider: Provider selected for the run.
		config: Job configuration (target language).
		policy: Retry policy for transient provider errors.
		tracker: Progress tracker, advanced once when the plan is ready.
		cancel: Run-level cancellation signal.

	Returns:
		SummaryPlan.

	Raises:
		PlanGenerationError: If the provider keeps failing or the response is
			malformed. An unusable plan aborts the run.
	"""
	policy = policy or RetryPolicy()
	request = build_plan_request(book, config.language)
	try:
		response = call_with_retry(provider, request, policy, cancel=cancel, label='summary plan')
	except ProviderError as e:
		raise PlanGenerationError(f'Summary plan request failed: {e}') from e

	try:
		fields = parse_summary_response(response.text)
	except MalformedResponseError as e:
		raise MalformedPlanError(f'Summary plan response is malformed: {e}') from e

	plan = SummaryPlan(**fields)
	logger.info('Summary plan ready: %d keywords, %d glossary entries', len(plan.keywords), len(plan.glossary))
	if tracker is not None:
		tracker.advance('summary plan')
	return plan
