import logging
from pathlib import Path

import pytest

from aibook.config import book_output_dir, load_config
from aibook.errors import ConfigError

ENV = {'OPENROUTER_API_KEY': 'or-key'}


@pytest.fixture
def book_file(tmp_path):
	path = tmp_path / 'My Book.epub'
	path.write_bytes(b'PK')
	return path


def test_defaults(book_file):
	config = load_config([str(book_file)], lang='en', environ=ENV)

	assert config.input_paths == (book_file,)
	assert config.output_dir is None
	assert config.provider == 'openrouter'
	assert config.api_key == 'or-key'
	assert config.language == 'en'
	assert config.detail_level == 'medium'
	assert config.output_format == 'markdown'
	assert config.max_attempts == 3
	assert config.workers >= 1


def test_api_key_is_not_in_repr(book_file):
	assert 'or-key' not in repr(load_config([str(book_file)], lang='en', environ=ENV))


def test_flags_override_environment(book_file):
	env = dict(ENV, AI_PROVIDER='openrouter', MODEL_NAME='env-model', OUTPUT_LANGUAGE='en', API_KEY='ss-key')

	config = load_config([str(book_file)], lang='ptbr', provider='stackspot', model='flag-model', environ=env)

	assert config.provider == 'stackspot'
	assert config.api_key == 'ss-key'
	assert config.model == 'flag-model'
	assert config.language == 'ptbr'


def test_language_from_environment(book_file):
	assert load_config([str(book_file)], environ=dict(ENV, DEFAULT_LANGUAGE='pt-BR')).language == 'ptbr'
	assert load_config(
		[str(book_file)], environ=dict(ENV, DEFAULT_LANGUAGE='ptbr', OUTPUT_LANGUAGE='EN'),
	).language == 'en'


def test_language_fallback_warns(book_file, caplog):
	with caplog.at_level(logging.WARNING, logger='aibook.config'):
		config = load_config([str(book_file)], environ=ENV)

	assert config.language == 'ptbr'
	assert 'DEFAULT_LANGUAGE' in caplog.text


def test_numeric_settings_from_environment(book_file):
	env = dict(ENV, MAX_RETRIES='5', MAX_WORKERS='3', RETRY_BASE_DELAY='0.5', MAX_ELAPSED_TIME_SECS='60', MAX_CHAPTER_CHARS='1000')

	config = load_config([str(book_file)], lang='en', environ=env)

	assert config.max_attempts == 5
	assert config.workers == 3
	assert config.retry_base_delay == 0.5
	assert config.request_timeout == 60.0
	assert config.max_chapter_chars == 1000
	assert load_config([str(book_file)], lang='en', workers=2, environ=env).workers == 2


@pytest.mark.parametrize('kwargs, env', [
	({'lang': 'fr'}, ENV),
	({'provider': 'gemini'}, ENV),
	({'detail_level': 'huge'}, ENV),
	({'output_format': 'pdf'}, ENV),
	({'workers': 0}, ENV),
	({}, {}),
	({'provider': 'anthropic'}, ENV),
	({}, dict(ENV, MAX_RETRIES='three')),
	({}, dict(ENV, MAX_WORKERS='0')),
	({}, dict(ENV, RETRY_BASE_DELAY='-1')),
])
def test_invalid_settings(book_file, kwargs, env):
	kwargs.setdefault('lang', 'en')

	with pytest.raises(ConfigError):
		load_config([str(book_file)], environ=env, **kwargs)


def test_input_files_are_checked(tmp_path, book_file):
	text_file = tmp_path / 'notes.txt'
	text_file.write_text('hi')

	with pytest.raises(ConfigError):
		load_config([], lang='en', environ=ENV)
	with pytest.raises(ConfigError):
		load_config([str(tmp_path / 'missing.epub')], lang='en', environ=ENV)
	with pytest.raises(ConfigError):
		load_config([str(text_file)], lang='en', environ=ENV)


def test_extraction_needs_no_api_key(book_file):
	config = load_config([str(book_file)], lang='en', require_api_key=False, environ={})

	assert config.api_key == ''


def test_book_output_dir(tmp_path, book_file):
	other = tmp_path / 'Other.epub'
	other.write_bytes(b'PK')

	single = load_config([str(book_file)], lang='en', environ=ENV)
	assert book_output_dir(single, book_file) == Path('My_Book')

	explicit = load_config([str(book_file)], lang='en', output_dir=str(tmp_path / 'out'), environ=ENV)
	assert book_output_dir(explicit, book_file) == tmp_path / 'out'

	several = load_config([str(book_file), str(other)], lang='en', output_dir=str(tmp_path / 'out'), environ=ENV)
	assert book_output_dir(several, other) == tmp_path / 'out' / 'Other'


def test_book_output_dir_rejects_empty_name(tmp_path):
	path = tmp_path / '....epub'
	path.write_bytes(b'PK')
	config = load_config([str(path)], lang='en', environ=ENV)

	with pytest.raises(ConfigError):
		book_output_dir(config, path)
