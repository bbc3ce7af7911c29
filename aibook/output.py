"""
Output Assembly Module

Merges the summary plan and the chapter outcomes into the pocket edition:
a Markdown document, an EPUB and, on request, a standalone HTML document.
Rendering is deterministic: identical inputs give byte-identical files.
"""

import datetime
import hashlib
import html
import io
import logging
import posixpath
import re
import zipfile
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional, Sequence

from ebooklib import epub

from .errors import AssemblyError
from .models import Book, Chapter, ChapterFailure, ChapterOutcome, SummaryPlan

logger = logging.getLogger(__name__)

IMAGES_DIR = 'images'
MARKDOWN_NAME = 'summary.md'
EPUB_NAME = 'summary.epub'
HTML_NAME = 'summary.html'

EPUB_LANGUAGES = {'en': 'en', 'ptbr': 'pt-BR'}

SECTION_TITLES = (
	('keywords', 'Keywords'),
	('glossary', 'Glossary'),
	('references', 'References'),
	('additional_resources', 'Additional Resources'),
)

FAILURE_NOTICE = 'Summary unavailable: this chapter could not be summarized'

# fixed archive timestamps keep the EPUB byte-identical across runs
_EPUB_MTIME = datetime.datetime(2000, 1, 1)
_ZIP_DATE_TIME = (1980, 1, 1, 0, 0, 0)

_EXTENSIONS = {
	'image/jpeg': '.jpg',
	'image/png': '.png',
	'image/gif': '.gif',
	'image/svg+xml': '.svg',
	'image/webp': '.webp',
}

_FILENAME_UNSAFE = re.compile(r'[<>:"/\\|?*\x00-\x1f]')
_FILENAME_SEPARATORS = re.compile(r'[\s_]+')
MAX_FILENAME_LENGTH = 100

_XML_INVALID = re.compile('[\x00-\x08\x0b\x0c\x0e-\x1f\ufffe\uffff]')


def sanitize_filename(name: str) -> str:
	"""Make a book or image name safe to use as a file or directory name."""
	sanitized = _FILENAME_SEPARATORS.sub('_', _FILENAME_UNSAFE.sub('', name))
	return sanitized.strip('_.')[:MAX_FILENAME_LENGTH]


def image_filenames(book: Book) -> Dict[str, str]:
	"""
	Assign a flat, collision-free filename to every distinct image.

	Returns:
		{image path in the source package: filename under images/}, in
		chapter order, then first-appearance order.
	"""
	names = {}
	used = set()
	for image in book.images():
		stem, ext = posixpath.splitext(image.path)
		ext = ext.lower() or _EXTENSIONS.get(image.media_type, '.bin')
		base = sanitize_filename(stem.replace('/', '_')) or 'image'
		name = f'{base}{ext}'
		counter = 2
		while name in used:
			name = f'{base}_{counter}{ext}'
			counter += 1
		used.add(name)
		names[image.path] = name
	return names


def highlight_keywords(
	text: str,
	keywords: Iterable[str],
	start: str = '**',
	end: str = '**',
	escape: Callable[[str], str] = None,
) -> str:
	"""
	Wrap whole-word keyword occurrences, longest keywords first.

	Args:
		text: Plain text to highlight.
		keywords: Terms to highlight, matched case-insensitively.
		start: Opening marker.
		end: Closing marker.
		escape: Applied to every piece of text but not to the markers.
	"""
	escape = escape or (lambda value: value)
	terms = sorted({keyword.strip() for keyword in keywords if keyword.strip()}, key=lambda t: (-len(t), t))
	if not text or not terms:
		return escape(text)
	pattern = re.compile(
		r'(?<!\w)(' + '|'.join(re.escape(term) for term in terms) + r')(?!\w)',
		re.IGNORECASE,
	)
	pieces = []
	last = 0
	for match in pattern.finditer(text):
		pieces.append(escape(text[last:match.start()]))
		pieces.append(f'{start}{escape(match.group(0))}{end}')
		last = match.end()
	pieces.append(escape(text[last:]))
	return ''.join(pieces)


# --- Markdown ---

def render_markdown(
	book: Book,
	plan: SummaryPlan,
	outcomes: Sequence[ChapterOutcome],
	image_names: Optional[Dict[str, str]] = None,
) -> str:
	"""
	Render the pocket edition as Markdown.

	Args:
		book: Source book (titles and images).
		plan: Book-level summary plan.
		outcomes: One ChapterSummary or ChapterFailure per chapter.
		image_names: Filenames from ``image_filenames``.

	Returns:
		The Markdown document.
	"""
	if image_names is None:
		image_names = image_filenames(book)
	lines = [f'# {book.title}', '']
	if book.authors:
		lines += [f"*{', '.join(book.authors)}*", '']

	lines += ['## Book Summary', '']
	if plan.summary:
		lines += [plan.summary, '']
	for name, title in SECTION_TITLES:
		lines += _markdown_list(title, getattr(plan, name), 3)

	for chapter, outcome in _ordered(book, outcomes):
		lines += [f'## {chapter.index + 1}. {chapter.title}', '']
		if isinstance(outcome, ChapterFailure):
			lines += [f'> **{FAILURE_NOTICE}.** {outcome.reason}', '']
		else:
			if outcome.summary:
				keywords = list(plan.keywords) + list(outcome.keywords)
				lines += [highlight_keywords(outcome.summary, keywords), '']
			for name, title in SECTION_TITLES:
				lines += _markdown_list(title, getattr(outcome, name), 3)
		for image in chapter.images:
			filename = image_names[image.path]
			lines += [f'![{posixpath.basename(image.path)}]({IMAGES_DIR}/{filename})', '']

	return '\n'.join(lines).rstrip('\n') + '\n'


def _markdown_list(title: str, items: List[str], level: int) -> List[str]:
	if not items:
		return []
	return [f"{'#' * level} {title}", ''] + [f'- {item}' for item in items] + ['']


def _ordered(book: Book, outcomes: Sequence[ChapterOutcome]):
	"""Pair chapters with outcomes by chapter index."""
	by_index = {outcome.chapter_index: outcome for outcome in outcomes}
	missing = [chapter.index for chapter in book.chapters if chapter.index not in by_index]
	if missing:
		raise AssemblyError(f'No summary or failure recorded for chapters {missing}')
	return [(chapter, by_index[chapter.index]) for chapter in book.chapters]


# --- HTML ---

def _escape(text: str) -> str:
	return html.escape(_XML_INVALID.sub('', text), quote=True)


def _paragraphs(text: str, keywords: Iterable[str] = ()) -> str:
	"""Converts plain text summary into simple HTML paragraphs."""
	paragraphs = []
	for line in text.strip().split('\n'):
		if line.strip():
			escaped = highlight_keywords(line.strip(), keywords, '<strong>', '</strong>', escape=_escape)
			paragraphs.append(f'<p>{escaped}</p>')
	return '\n'.join(paragraphs)


def _html_list(title: str, items: List[str], heading: str) -> str:
	if not items:
		return ''
	entries = '\n'.join(f'<li>{_escape(item)}</li>' for item in items)
	return f'<{heading}>{_escape(title)}</{heading}>\n<ul>\n{entries}\n</ul>\n'


def _plan_html(plan: SummaryPlan, heading: str, sub_heading: str) -> str:
	parts = [f'<{heading}>Book Summary</{heading}>\n']
	if plan.summary:
		parts.append(_paragraphs(plan.summary) + '\n')
	for name, title in SECTION_TITLES:
		parts.append(_html_list(title, getattr(plan, name), sub_heading))
	return ''.join(parts)


def _chapter_html(
	chapter: Chapter,
	outcome: ChapterOutcome,
	plan: SummaryPlan,
	image_names: Dict[str, str],
	heading: str,
	sub_heading: str,
) -> str:
	parts = [f'<{heading}>{chapter.index + 1}. {_escape(chapter.title)}</{heading}>\n']
	if isinstance(outcome, ChapterFailure):
		parts.append(
			f'<blockquote class="failure"><p><strong>{FAILURE_NOTICE}.</strong> '
			f'{_escape(outcome.reason)}</p></blockquote>\n'
		)
	else:
		if outcome.summary:
			parts.append(_paragraphs(outcome.summary, list(plan.keywords) + list(outcome.keywords)) + '\n')
		for name, title in SECTION_TITLES:
			parts.append(_html_list(title, getattr(outcome, name), sub_heading))
	for image in chapter.images:
		src = f'{IMAGES_DIR}/{image_names[image.path]}'
		alt = _escape(posixpath.basename(image.path))
		parts.append(f'<p><img src="{_escape(src)}" alt="{alt}"/></p>\n')
	return ''.join(parts)


def render_html(
	book: Book,
	plan: SummaryPlan,
	outcomes: Sequence[ChapterOutcome],
	image_names: Optional[Dict[str, str]] = None,
) -> str:
	"""Render the pocket edition as a standalone HTML document."""
	if image_names is None:
		image_names = image_filenames(book)
	language = EPUB_LANGUAGES.get(book.language, book.language)
	parts = [
		'<!DOCTYPE html>\n',
		f'<html lang="{_escape(language)}">\n<head>\n<meta charset="utf-8"/>\n',
		f'<title>{_escape(book.title)}</title>\n</head>\n<body>\n',
		f'<h1>{_escape(book.title)}</h1>\n',
	]
	if book.authors:
		parts.append(f"<p><em>{_escape(', '.join(book.authors))}</em></p>\n")
	parts.append(_plan_html(plan, 'h2', 'h3'))
	for chapter, outcome in _ordered(book, outcomes):
		parts.append(_chapter_html(chapter, outcome, plan, image_names, 'h2', 'h3'))
	parts.append('</body>\n</html>\n')
	return ''.join(parts)


# --- EPUB ---

def build_epub(
	book: Book,
	plan: SummaryPlan,
	outcomes: Sequence[ChapterOutcome],
	image_names: Optional[Dict[str, str]] = None,
) -> bytes:
	"""
	Package the pocket edition as an EPUB.

	The overview page holds the plan and is a non-linear spine item; the
	linear spine has exactly one page per source chapter. Every image is in
	the manifest once, ordered by chapter index then first appearance.

	Returns:
		The EPUB archive bytes.
	"""
	if image_names is None:
		image_names = image_filenames(book)
	language = EPUB_LANGUAGES.get(book.language, book.language)
	pairs = _ordered(book, outcomes)

	pocket = epub.EpubBook()
	digest = hashlib.sha1(render_markdown(book, plan, outcomes, image_names).encode('utf-8')).hexdigest()
	pocket.set_identifier(f'urn:aibook:{digest}')
	pocket.set_title(f'{book.title} (Pocket Edition)')
	pocket.set_language(language)
	for author in book.authors or ('AI Generated',):
		pocket.add_author(author)

	overview = epub.EpubHtml(uid='overview', title='Book Summary', file_name='overview.xhtml', lang=language)
	overview.content = _plan_html(plan, 'h1', 'h2')
	overview.is_linear = False
	pocket.add_item(overview)

	pages = []
	for chapter, outcome in pairs:
		number = chapter.index + 1
		page = epub.EpubHtml(
			uid=f'chapter_{number:03d}',
			title=chapter.title,
			file_name=f'chapter_{number:03d}.xhtml',
			lang=language,
		)
		page.content = _chapter_html(chapter, outcome, plan, image_names, 'h1', 'h2')
		pocket.add_item(page)
		pages.append(page)

	for number, image in enumerate(book.images(), 1):
		pocket.add_item(epub.EpubImage(
			uid=f'image_{number:03d}',
			file_name=f'{IMAGES_DIR}/{image_names[image.path]}',
			media_type=image.media_type,
			content=image.content,
		))

	pocket.toc = [epub.Link(overview.file_name, overview.title, overview.id)]
	pocket.toc += [epub.Link(page.file_name, page.title, page.id) for page in pages]
	pocket.add_item(epub.EpubNcx())
	pocket.add_item(epub.EpubNav())
	pocket.spine = [overview] + pages

	buffer = io.BytesIO()
	try:
		epub.write_epub(buffer, pocket, {'mtime': _EPUB_MTIME})
	except epub.EpubException as e:
		raise AssemblyError(f'Could not build EPUB: {e}') from e
	return _normalize_archive(buffer.getvalue())


def _normalize_archive(data: bytes) -> bytes:
	"""Rewrite every archive entry with a fixed timestamp, keeping order and compression."""
	output = io.BytesIO()
	with zipfile.ZipFile(io.BytesIO(data)) as source, zipfile.ZipFile(output, 'w') as target:
		for info in source.infolist():
			entry = zipfile.ZipInfo(info.filename, date_time=_ZIP_DATE_TIME)
			entry.compress_type = info.compress_type
			entry.external_attr = 0o644 << 16
			target.writestr(entry, source.read(info.filename))
	return output.getvalue()


# --- Writing ---

def write_outputs(
	output_dir: Path,
	book: Book,
	plan: SummaryPlan,
	outcomes: Sequence[ChapterOutcome],
	output_format: str = 'markdown',
) -> List[Path]:
	"""
	Render and write every artifact of the pocket edition.

	Everything is rendered in memory first, so nothing is written when
	rendering fails.

	Returns:
		Paths of the written files, images excluded.

	Raises:
		AssemblyError: If an artifact cannot be rendered or written.
	"""
	output_dir = Path(output_dir)
	image_names = image_filenames(book)
	markdown = render_markdown(book, plan, outcomes, image_names)
	epub_bytes = build_epub(book, plan, outcomes, image_names)
	documents = [(MARKDOWN_NAME, markdown.encode('utf-8')), (EPUB_NAME, epub_bytes)]
	if output_format == 'html':
		documents.append((HTML_NAME, render_html(book, plan, outcomes, image_names).encode('utf-8')))

	try:
		_write_images(output_dir, book, image_names)
		written = []
		for name, data in documents:
			path = output_dir / name
			path.write_bytes(data)
			written.append(path)
	except OSError as e:
		raise AssemblyError(f'Could not write output to {output_dir}: {e}') from e

	logger.info('Wrote %s', ', '.join(str(path) for path in written))
	return written


def write_extraction(output_dir: Path, book: Book) -> List[Path]:
	"""
	Write the extracted chapter texts and images (the ``process`` command).

	Returns:
		Paths of the written chapter files.
	"""
	output_dir = Path(output_dir)
	chapters_dir = output_dir / 'chapters'
	try:
		chapters_dir.mkdir(parents=True, exist_ok=True)
		_write_images(output_dir, book, image_filenames(book))
		written = []
		for chapter in book.chapters:
			path = chapters_dir / f'chapter_{chapter.index + 1:03d}.txt'
			path.write_text(f'{chapter.title}\n\n{chapter.text}\n', encoding='utf-8')
			written.append(path)
	except OSError as e:
		raise AssemblyError(f'Could not write extraction to {output_dir}: {e}') from e
	return written


def _write_images(output_dir: Path, book: Book, image_names: Dict[str, str]) -> None:
	images_dir = output_dir / IMAGES_DIR
	images_dir.mkdir(parents=True, exist_ok=True)
	for image in book.images():
		(images_dir / image_names[image.path]).write_bytes(image.content)
