"""
LLM Integration Module

Provides a uniform summarization interface over the supported AI backends.
Supports StackSpot AI, OpenRouter (OpenAI-compatible API) and Anthropic Claude.

Backends never retry: every failure is mapped to a ProviderError subclass and
retry decisions are left to ``aibook.retry``.
"""

import logging
import os
import threading
from abc import ABC, abstractmethod
from typing import Optional

import anthropic
import openai
import requests

from .errors import (
	AuthenticationFailedError,
	ConfigError,
	InvalidModelError,
	ProviderError,
	ProviderTimeoutError,
	RateLimitedError,
	TransportError,
)
from .models import JobConfig, ProviderRequest, ProviderResponse

logger = logging.getLogger(__name__)


class BaseProvider(ABC):
	"""Abstract base class for AI summarization backends."""

	name = ''
	DEFAULT_MODEL = ''

	def __init__(self, model: Optional[str] = None, timeout: float = 300.0, max_tokens: int = 4096):
		self.model = model or self.DEFAULT_MODEL
		self.timeout = timeout
		self.max_tokens = max_tokens

	@abstractmethod
	def _call_api(self, request: ProviderRequest) -> str:
		"""Make API call to the backend. Must be implemented by subclasses."""
		pass

	def summarize(self, request: ProviderRequest) -> ProviderResponse:
		"""
		Send one templated request to the backend.

		Args:
			request: System and user prompts.

		Returns:
			ProviderResponse holding the raw response text.

		Raises:
			ProviderError: One of its subclasses, classifying the failure.
				Unexpected backend exceptions become a TransportError.
		"""
		logger.debug('%s request (%d chars) to %s', self.name, len(request.user_prompt), self.model)
		try:
			text = self._call_api(request)
		except ProviderError:
			raise
		except Exception as e:
			# SDK response parsing and other client bugs
			raise TransportError(f'{self.name}: unexpected {type(e).__name__}: {e}', self.name) from e
		return ProviderResponse(text=text or '', provider=self.name, model=self.model)


class StackSpotProvider(BaseProvider):
	"""StackSpot AI summarize endpoint, plain JSON over HTTP."""

	name = 'stackspot'
	DEFAULT_MODEL = 'stackspot-ai'
	DEFAULT_URL = 'https://ai.stackspot.com/api/summarize'

	def __init__(
		self,
		api_key: str,
		model: Optional[str] = None,
		url: Optional[str] = None,
		timeout: float = 300.0,
		session: Optional[requests.Session] = None,
	):
		super().__init__(model, timeout)
		if not api_key:
			raise ConfigError('API key required for StackSpot. Set API_KEY in your .env file.')
		self.api_key = api_key
		self.url = url or os.environ.get('STACKSPOT_API_URL', self.DEFAULT_URL)
		self._session = session
		self._local = threading.local()

	@property
	def session(self) -> requests.Session:
		"""The injected session, or one Session per worker thread."""
		if self._session is not None:
			return self._session
		session = getattr(self._local, 'session', None)
		if session is None:
			session = self._local.session = requests.Session()
		return session

	def _call_api(self, request: ProviderRequest) -> str:
		payload = {
			'model': self.model,
			'system': request.system_prompt,
			'chapter': request.user_prompt,
			'language': request.language,
		}
		headers = {
			'Authorization': f'Bearer {self.api_key}',
			'Content-Type': 'application/json',
		}
		try:
			response = self.session.post(self.url, json=payload, headers=headers, timeout=self.timeout)
		except requests.Timeout as e:
			raise ProviderTimeoutError(f'StackSpot request timed out: {e}', self.name) from e
		except requests.RequestException as e:
			raise TransportError(f'StackSpot request failed: {e}', self.name) from e

		if response.status_code >= 400:
			raise self._status_error(response)

		try:
			body = response.json()
		except ValueError:
			return response.text
		# the endpoint either wraps the model answer in "summary" or returns it as is
		if isinstance(body, dict) and isinstance(body.get('summary'), str) and 'keywords' not in body:
			return body['summary']
		return response.text

	def _status_error(self, response: requests.Response) -> ProviderError:
		status = response.status_code
		message = f'StackSpot returned {status}: {response.text[:200]}'
		if status in (401, 403):
			return AuthenticationFailedError(message, self.name)
		if status == 429:
			return RateLimitedError(message, self.name, _retry_after(response.headers.get('Retry-After')))
		if status == 404:
			return InvalidModelError(message, self.name)
		if status in (408, 504):
			return ProviderTimeoutError(message, self.name)
		return TransportError(message, self.name)


class OpenRouterProvider(BaseProvider):
	"""OpenRouter chat completions through the OpenAI client."""

	name = 'openrouter'
	DEFAULT_MODEL = 'openai/gpt-4o-mini'
	DEFAULT_BASE_URL = 'https://openrouter.ai/api/v1'

	def __init__(
		self,
		api_key: str,
		model: Optional[str] = None,
		base_url: Optional[str] = None,
		timeout: float = 300.0,
		temperature: float = 0.7,
	):
		super().__init__(model, timeout)
		if not api_key:
			raise ConfigError(
				'API key required for OpenRouter. Set OPENROUTER_API_KEY or API_KEY in your .env file.'
			)
		self.temperature = temperature
		self.client = openai.OpenAI(
			api_key=api_key,
			base_url=base_url or os.environ.get('OPENROUTER_BASE_URL', self.DEFAULT_BASE_URL),
			timeout=timeout,
			max_retries=0,
			default_headers={
				'X-Title': 'AIBook Summarizer',
				'HTTP-Referer': 'https://github.com/felipepimentel/aibook',
			},
		)

	def _call_api(self, request: ProviderRequest) -> str:
		try:
			response = self.client.chat.completions.create(
				model=self.model,
				temperature=self.temperature,
				messages=[
					{'role': 'system', 'content': request.system_prompt},
					{'role': 'user', 'content': request.user_prompt},
				],
			)
		except openai.APIError as e:
			raise _sdk_error(openai, e, self.name) from e
		if not response.choices:
			return ''
		content = response.choices[0].message.content
		return content if content else ''


class AnthropicProvider(BaseProvider):
	"""Claude API wrapper."""

	name = 'anthropic'
	DEFAULT_MODEL = 'claude-haiku-4-5-20251001'

	def __init__(self, api_key: str, model: Optional[str] = None, timeout: float = 300.0, max_tokens: int = 4096):
		super().__init__(model, timeout, max_tokens)
		if not api_key:
			raise ConfigError(
				'API key required for Anthropic. Set ANTHROPIC_API_KEY or API_KEY in your .env file.'
			)
		self.client = anthropic.Anthropic(api_key=api_key, timeout=timeout, max_retries=0)

	def _call_api(self, request: ProviderRequest) -> str:
		try:
			message = self.client.messages.create(
				model=self.model,
				max_tokens=self.max_tokens,
				system=request.system_prompt,
				messages=[
					{'role': 'user', 'content': request.user_prompt}
				],
			)
		except anthropic.APIError as e:
			raise _sdk_error(anthropic, e, self.name) from e
		return ''.join(block.text for block in message.content if getattr(block, 'type', '') == 'text')


def _sdk_error(sdk, error: Exception, provider: str) -> ProviderError:
	"""
	Map an exception from the openai or anthropic SDK to a ProviderError.

	Both SDKs share the same exception names, so the module is passed in.
	"""
	message = f'{provider}: {error}'
	# APITimeoutError subclasses APIConnectionError, check it first
	if isinstance(error, sdk.APITimeoutError):
		return ProviderTimeoutError(message, provider)
	if isinstance(error, sdk.APIConnectionError):
		return TransportError(message, provider)
	if isinstance(error, (sdk.AuthenticationError, sdk.PermissionDeniedError)):
		return AuthenticationFailedError(message, provider)
	if isinstance(error, sdk.RateLimitError):
		return RateLimitedError(message, provider, _retry_after(error.response.headers.get('retry-after')))
	if isinstance(error, sdk.NotFoundError):
		return InvalidModelError(message, provider)
	if isinstance(error, sdk.BadRequestError) and 'model' in str(error).lower():
		return InvalidModelError(message, provider)
	if isinstance(error, sdk.APIStatusError) and error.status_code in (408, 504):
		return ProviderTimeoutError(message, provider)
	return TransportError(message, provider)


def _retry_after(value: Optional[str]) -> Optional[float]:
	if not value:
		return None
	try:
		return max(0.0, float(value))
	except ValueError:
		return None


PROVIDERS = {
	StackSpotProvider.name: StackSpotProvider,
	OpenRouterProvider.name: OpenRouterProvider,
	AnthropicProvider.name: AnthropicProvider,
}


def create_provider(config: JobConfig) -> BaseProvider:
	"""
	Create the provider selected for this run.

	Args:
		config: Validated job configuration.

	Returns:
		BaseProvider instance. The choice never changes during the run.

	Raises:
		ConfigError: If the provider is not supported or lacks an API key.
	"""
	provider = config.provider.lower()
	if provider not in PROVIDERS:
		raise ConfigError(
			f"Unsupported provider: {config.provider}. "
			f"Supported providers: {', '.join(sorted(PROVIDERS))}"
		)
	return PROVIDERS[provider](
		api_key=config.api_key,
		model=config.model or None,
		timeout=config.request_timeout,
	)
