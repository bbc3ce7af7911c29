"""
Prompt Templates

Fixed templates for the book-level plan and the per-chapter summary, plus the
parser for the five-field JSON object both of them ask for.
"""

import json
import re
from typing import Dict, List, Union

from .errors import MalformedResponseError
from .models import SUMMARY_FIELDS

SYSTEM_PROMPT = (
	'You are an expert editor who turns books into concise, content-rich pocket editions. '
	'You always answer with a single JSON object and nothing else.'
)

RESPONSE_SHAPE = """{
  "summary": "string",
  "keywords": ["string"],
  "glossary": ["Term: definition"],
  "references": ["string"],
  "additional_resources": ["string"]
}"""

PLAN_TEMPLATE = """Create a comprehensive summary plan for the e-book whose table of contents is listed below.
Focus on the main content and the key learnings of each chapter. Ignore dedications, forewords,
author biographies, acknowledgments and any other meta-information.
Use a direct, note-taking style. Write everything in {{language}}.

Table of Contents:
{{toc}}

Answer with a JSON object with exactly these fields:
""" + RESPONSE_SHAPE

CHAPTER_TEMPLATE = """Using the summary plan below, summarize the chapter text that follows.
Focus on key points, important insights, technical terms and main learnings.
Use a direct, note-taking style and avoid phrases like "the text discusses" or "this chapter explains".
Skip dedications, forewords and author biographies.
Write everything in {{language}}. Level of detail: {{detail_level}}.

Summary Plan:
{{plan}}

Text:
{{text}}

Answer with a JSON object with exactly these fields:
""" + RESPONSE_SHAPE

CORRECTIVE_INSTRUCTION = """

IMPORTANT: your previous answer was not valid JSON. Reply with ONLY the JSON object described
above: no code fences, no commentary, and all five fields present."""

LANGUAGE_NAMES = {
	'en': 'English',
	'ptbr': 'Brazilian Portuguese (pt-BR)',
}

DETAIL_INSTRUCTIONS = {
	'short': 'short (one tight paragraph, only the essentials)',
	'medium': 'medium (a few paragraphs covering every main idea)',
	'long': 'long (thorough notes covering every idea, example and argument)',
}

_PLACEHOLDER = re.compile(r'{{\s*(\w+)\s*}}')
_FENCE_START = re.compile(r'^```(?:json)?\s*', re.IGNORECASE)
_FENCE_END = re.compile(r'\s*```$')


def expand_language(language: str) -> str:
	"""Expand a language tag into a descriptive form the model understands."""
	return LANGUAGE_NAMES.get(language, language)


def fill_template(template: str, **values: str) -> str:
	"""
	Substitute ``{{name}}`` placeholders.

	Raises:
		KeyError: If the template uses a placeholder with no value.
	"""
	def replace(match):
		return str(values[match.group(1)])

	return _PLACEHOLDER.sub(replace, template)


def parse_summary_response(text: str) -> Dict[str, Union[str, List[str]]]:
	"""
	Parse a provider response into the five summary fields.

	Code fences and text around the JSON object are tolerated.

	Raises:
		MalformedResponseError: If no JSON object with all five fields is found.
	"""
	cleaned = (text or '').strip()
	cleaned = _FENCE_START.sub('', cleaned)
	cleaned = _FENCE_END.sub('', cleaned)

	start = cleaned.find('{')
	end = cleaned.rfind('}')
	if start == -1 or end <= start:
		raise MalformedResponseError('Response does not contain a JSON object')
	try:
		data = json.loads(cleaned[start:end + 1])
	except json.JSONDecodeError as e:
		raise MalformedResponseError(f'Response is not valid JSON: {e}') from e
	if not isinstance(data, dict):
		raise MalformedResponseError('Response JSON is not an object')

	missing = [name for name in SUMMARY_FIELDS if name not in data]
	if missing:
		raise MalformedResponseError(f"Response is missing fields: {', '.join(missing)}")

	summary = data['summary']
	if not isinstance(summary, str):
		raise MalformedResponseError('"summary" must be a string')

	result = {'summary': summary.strip()}
	for name in SUMMARY_FIELDS[1:]:
		result[name] = _string_list(name, data[name])
	return result


def _string_list(name: str, value) -> List[str]:
	if value is None:
		return []
	if isinstance(value, str):
		# some models answer "a, b, c" instead of a list
		return [part.strip() for part in value.split(',') if part.strip()]
	if isinstance(value, dict):
		value = [{'term': key, 'definition': text} for key, text in value.items()]
	if not isinstance(value, list):
		raise MalformedResponseError(f'"{name}" must be a list')

	items = []
	for entry in value:
		if isinstance(entry, str):
			entry = entry.strip()
		elif isinstance(entry, dict):
			entry = _join_entry(entry)
		elif isinstance(entry, (int, float)):
			entry = str(entry)
		else:
			raise MalformedResponseError(f'"{name}" contains an unsupported item: {entry!r}')
		if entry:
			items.append(entry)
	return items


def _join_entry(entry: dict) -> str:
	"""Glossary-style objects become "term: definition"."""
	term = entry.get('term') or entry.get('name') or entry.get('title') or ''
	definition = entry.get('definition') or entry.get('description') or entry.get('url') or ''
	if term and definition:
		return f'{str(term).strip()}: {str(definition).strip()}'
	return str(term or definition).strip()
