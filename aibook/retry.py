"""
Retry Policy

Which provider errors are retried, how often, and how long to wait in between.
"""

import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Optional, Tuple, Type

from .errors import (
	ProviderError,
	ProviderTimeoutError,
	RateLimitedError,
	RunCancelledError,
	TransportError,
)
from .models import ProviderRequest, ProviderResponse

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RetryPolicy:
	"""
	Retry bound and exponential backoff for provider calls.

	Attributes:
		max_attempts: Total calls allowed for one request, first one included.
		base_delay: Wait before the second attempt, in seconds. Doubles after
			every further failure.
		max_delay: Upper bound for a single wait.
		retryable: Error kinds worth another attempt. Anything else
			(authentication, unknown model) fails on the first call.
		corrective_retries: Extra attempts with a corrective instruction when
			a chapter response is malformed.
	"""

	max_attempts: int = 3
	base_delay: float = 2.0
	max_delay: float = 60.0
	retryable: Tuple[Type[ProviderError], ...] = (RateLimitedError, ProviderTimeoutError, TransportError)
	corrective_retries: int = 1

	def is_retryable(self, error: ProviderError) -> bool:
		return isinstance(error, self.retryable)

	def delay(self, attempt: int, error: Optional[ProviderError] = None) -> float:
		"""Backoff after the given failed attempt (1-based)."""
		delay = self.base_delay * (2 ** (attempt - 1))
		hint = getattr(error, 'retry_after', None)
		if hint is not None:
			delay = max(delay, hint)
		return min(delay, self.max_delay)


def call_with_retry(
	provider,
	request: ProviderRequest,
	policy: RetryPolicy,
	cancel: Optional[threading.Event] = None,
	sleep: Callable[[float], None] = time.sleep,
	label: str = 'request',
) -> ProviderResponse:
	"""
	Call ``provider.summarize`` under a retry policy.

	Args:
		provider: Any object with a ``summarize(request)`` method.
		request: The request to send.
		policy: Retry bound, backoff and retryable error kinds.
		cancel: Run-level cancellation signal. Checked before every attempt;
			backoff waits on it so cancellation is noticed immediately.
		sleep: Wait function used when no cancellation event is given.
		label: Name used in log messages, e.g. "chapter 3".

	Returns:
		The first successful ProviderResponse.

	Raises:
		ProviderError: The last error, once it is not retryable or the
			attempts are exhausted.
		RunCancelledError: If the run was cancelled.
	"""
	attempt = 0
	while True:
		if cancel is not None and cancel.is_set():
			raise RunCancelledError(f'{label}: cancelled before attempt {attempt + 1}')
		attempt += 1
		try:
			return provider.summarize(request)
		except ProviderError as e:
			if not policy.is_retryable(e):
				logger.debug('%s: %s is not retryable', label, type(e).__name__)
				raise
			if attempt >= policy.max_attempts:
				logger.info('%s: giving up after %d attempts (%s)', label, attempt, e)
				raise
			delay = policy.delay(attempt, e)
			logger.info(
				'%s: attempt %d/%d failed with %s, retrying in %.1fs',
				label, attempt, policy.max_attempts, type(e).__name__, delay,
			)
			if cancel is not None:
				if cancel.wait(delay):
					raise RunCancelledError(f'{label}: cancelled during backoff') from e
			else:
				sleep(delay)
