"""
Configuration

Builds the validated JobConfig from command-line flags and the environment
(``.env`` files are loaded by the CLI with python-dotenv). Everything is
checked up front so a bad setting fails before any extraction work begins.
"""

import logging
import os
from pathlib import Path
from typing import Mapping, Optional, Sequence

from .errors import ConfigError
from .llm import PROVIDERS
from .models import DETAIL_LEVELS, LANGUAGES, OUTPUT_FORMATS, JobConfig
from .output import sanitize_filename

logger = logging.getLogger(__name__)

DEFAULT_PROVIDER = 'openrouter'
FALLBACK_LANGUAGE = 'ptbr'
MAX_DEFAULT_WORKERS = 8

_LANGUAGE_ALIASES = {
	'en': 'en',
	'en-us': 'en',
	'english': 'en',
	'pt': 'ptbr',
	'ptbr': 'ptbr',
	'pt-br': 'ptbr',
	'pt_br': 'ptbr',
}

# environment variables holding the API key, most specific first
_API_KEY_VARIABLES = {
	'stackspot': ('API_KEY',),
	'openrouter': ('OPENROUTER_API_KEY', 'API_KEY'),
	'anthropic': ('ANTHROPIC_API_KEY', 'API_KEY'),
}


def normalize_language(value: str) -> str:
	language = _LANGUAGE_ALIASES.get(value.strip().lower())
	if language is None:
		raise ConfigError(f"Unsupported language: {value}. Supported languages: {', '.join(LANGUAGES)}")
	return language


def default_workers() -> int:
	"""One worker per CPU, capped to stay under provider rate limits."""
	return max(1, min(os.cpu_count() or 1, MAX_DEFAULT_WORKERS))


def load_config(
	files: Sequence[str],
	lang: Optional[str] = None,
	provider: Optional[str] = None,
	model: Optional[str] = None,
	output_dir: Optional[str] = None,
	detail_level: str = 'medium',
	output_format: str = 'markdown',
	workers: Optional[int] = None,
	verbose: bool = False,
	require_api_key: bool = True,
	environ: Optional[Mapping[str, str]] = None,
) -> JobConfig:
	"""
	Validate flags and environment into a JobConfig.

	Flags win over environment variables, which win over built-in defaults.

	Args:
		files: EPUB paths from ``-f/--file``.
		lang: ``-l/--lang`` value.
		provider: ``-a/--ai-provider`` value.
		model: Model override.
		output_dir: Output directory; defaults to the sanitized book name.
		detail_level: short, medium or long.
		output_format: markdown or html.
		workers: Chapter worker pool size.
		verbose: Show retries and debug output.
		require_api_key: False for the extraction-only ``process`` command.
		environ: Environment mapping, ``os.environ`` by default.

	Returns:
		JobConfig.

	Raises:
		ConfigError: On the first invalid or missing setting.
	"""
	env = os.environ if environ is None else environ

	if not files:
		raise ConfigError('At least one EPUB file is required (-f/--file).')
	input_paths = []
	for file in files:
		path = Path(file)
		if not path.is_file():
			raise ConfigError(f'The provided file path does not exist or is invalid: {file}')
		if path.suffix.lower() != '.epub':
			raise ConfigError(f'Only EPUB input is supported: {file}')
		input_paths.append(path)

	language = lang or env.get('OUTPUT_LANGUAGE') or env.get('DEFAULT_LANGUAGE')
	if not language:
		logger.warning(
			"DEFAULT_LANGUAGE environment variable is not set. Falling back to default '%s'.",
			FALLBACK_LANGUAGE,
		)
		language = FALLBACK_LANGUAGE
	language = normalize_language(language)

	provider = (provider or env.get('AI_PROVIDER') or DEFAULT_PROVIDER).strip().lower()
	if provider not in PROVIDERS:
		raise ConfigError(
			f"Unsupported provider: {provider}. Supported providers: {', '.join(sorted(PROVIDERS))}"
		)

	if detail_level not in DETAIL_LEVELS:
		raise ConfigError(f"Unsupported detail level: {detail_level}. Choose one of {', '.join(DETAIL_LEVELS)}")
	if output_format not in OUTPUT_FORMATS:
		raise ConfigError(f"Unsupported output format: {output_format}. Choose one of {', '.join(OUTPUT_FORMATS)}")

	if workers is not None and workers < 1:
		raise ConfigError(f'--workers must be at least 1, got {workers}')

	api_key = ''
	for variable in _API_KEY_VARIABLES[provider]:
		api_key = env.get(variable, '').strip()
		if api_key:
			break
	if require_api_key and not api_key:
		raise ConfigError(
			f"Failed to retrieve an API key for {provider}. "
			f"Set {' or '.join(_API_KEY_VARIABLES[provider])} in your .env file."
		)

	return JobConfig(
		input_paths=tuple(input_paths),
		output_dir=Path(output_dir) if output_dir else None,
		provider=provider,
		model=model or env.get('MODEL_NAME', ''),
		language=language,
		detail_level=detail_level,
		output_format=output_format,
		api_key=api_key,
		workers=workers if workers is not None else _env_int(env, 'MAX_WORKERS', default_workers()),
		max_attempts=_env_int(env, 'MAX_RETRIES', 3),
		retry_base_delay=_env_float(env, 'RETRY_BASE_DELAY', 2.0),
		request_timeout=_env_float(env, 'MAX_ELAPSED_TIME_SECS', 300.0),
		max_chapter_chars=_env_int(env, 'MAX_CHAPTER_CHARS', 300000),
		verbose=verbose,
	)


def book_output_dir(config: JobConfig, book_path: Path) -> Path:
	"""
	Where the artifacts of one book go.

	A single book is written to ``--output_dir`` directly; with several
	books each one gets a sub-directory named after its file.
	"""
	name = sanitize_filename(book_path.stem)
	if not name:
		raise ConfigError(
			f'Sanitized book name is empty or malformed: {book_path}. Please provide a valid file name.'
		)
	if config.output_dir is None:
		return Path(name)
	if len(config.input_paths) > 1:
		return config.output_dir / name
	return config.output_dir


def _env_int(env: Mapping[str, str], name: str, default: int) -> int:
	value = env.get(name)
	if value is None or not value.strip():
		return default
	try:
		number = int(value)
	except ValueError:
		raise ConfigError(f'{name} must be an integer, got {value!r}') from None
	if number < 1:
		raise ConfigError(f'{name} must be at least 1, got {number}')
	return number


def _env_float(env: Mapping[str, str], name: str, default: float) -> float:
	value = env.get(name)
	if value is None or not value.strip():
		return default
	try:
		number = float(value)
	except ValueError:
		raise ConfigError(f'{name} must be a number, got {value!r}') from None
	if number < 0:
		raise ConfigError(f'{name} must not be negative, got {number}')
	return number
