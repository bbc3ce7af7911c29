"""Exception hierarchy for aibook."""

from typing import Optional


class AIBookError(Exception):
	"""Base class for every error raised by aibook."""


class ConfigError(AIBookError):
	"""Invalid or incomplete configuration, detected before any work starts."""


# --- Extraction ---

class ExtractionError(AIBookError):
	"""The input could not be turned into a Book. Fatal for the run."""


class NotAnEpubError(ExtractionError):
	pass


class CorruptArchiveError(ExtractionError):
	pass


class MissingManifestError(ExtractionError):
	pass


class UnsupportedEncodingError(ExtractionError):
	pass


class EmptyBookError(ExtractionError):
	pass


# --- Providers ---

class ProviderError(AIBookError):
	"""A single provider call failed."""

	def __init__(self, message: str, provider: str = ''):
		super().__init__(message)
		self.provider = provider


class AuthenticationFailedError(ProviderError):
	pass


class RateLimitedError(ProviderError):
	"""The backend throttled the call.

	Args:
		retry_after: Suggested wait in seconds, when the backend supplies one.
	"""

	def __init__(self, message: str, provider: str = '', retry_after: Optional[float] = None):
		super().__init__(message, provider)
		self.retry_after = retry_after


class ProviderTimeoutError(ProviderError):
	pass


class TransportError(ProviderError):
	pass


class InvalidModelError(ProviderError):
	pass


class MalformedResponseError(AIBookError):
	"""Response text does not parse as the expected five-field JSON object."""


# --- Pipeline ---

class PlanGenerationError(AIBookError):
	"""The summary plan could not be built. Fatal for the run."""


class MalformedPlanError(PlanGenerationError):
	pass


class NoChaptersSummarizedError(AIBookError):
	"""Every chapter failed, so there is nothing worth packaging."""


class AssemblyError(AIBookError):
	"""Output artifacts could not be written."""


class RunCancelledError(AIBookError):
	"""The run was interrupted; nothing was written."""
