"""
EPUB Extraction Module

This module provides functionality to:
1. Validate an EPUB archive
2. Walk the spine in reading order
3. Extract plain text and referenced images per chapter
"""

import logging
import posixpath
import re
import zipfile
import zlib
from pathlib import Path
from typing import Dict, List, Optional, Tuple, Union
from urllib.parse import unquote

import ebooklib
from bs4 import BeautifulSoup
from ebooklib import epub
from lxml import etree

from .errors import (
	CorruptArchiveError,
	EmptyBookError,
	MissingManifestError,
	NotAnEpubError,
	UnsupportedEncodingError,
)
from .models import Book, Chapter, ImageRef

logger = logging.getLogger(__name__)

CONTAINER_PATH = 'META-INF/container.xml'

_XML_ENCODING = re.compile(rb'<\?xml[^>]*encoding=["\']([A-Za-z0-9._-]+)["\']')
_HEADINGS = ['h1', 'h2', 'h3']
_BLOCKS = [
	'p', 'div', 'h1', 'h2', 'h3', 'h4', 'h5', 'h6', 'li', 'dt', 'dd', 'blockquote', 'pre',
	'section', 'article', 'aside', 'header', 'footer', 'figure', 'figcaption', 'table', 'tr',
	'ul', 'ol', 'dl', 'hr', 'br',
]
# Marks block boundaries before whitespace is folded.
_BLOCK_BREAK = '\u2029'


def read_book(path: Union[str, Path], language: str = 'en') -> Book:
	"""
	Parse an EPUB file into a Book.

	Args:
		path: Path to the EPUB file.
		language: Target language tag recorded on the book.

	Returns:
		Book with one Chapter per linear spine document.

	Raises:
		ExtractionError: One of its subclasses, describing why the file
			could not be read.
	"""
	path = Path(path)
	_check_archive(path)
	doc = _load_package(path)

	toc_titles = _toc_titles(doc.toc)
	chapters = []
	for item in _spine_documents(doc):
		index = len(chapters)
		soup = BeautifulSoup(_decode(item), 'html.parser')
		images = _collect_images(doc, item, soup)
		title = _chapter_title(item, soup, toc_titles) or f'Chapter {index + 1}'
		chapters.append(Chapter(
			index=index,
			title=title,
			text=html_to_text(soup),
			images=tuple(images),
		))

	if not chapters:
		raise EmptyBookError(f'No chapters found in {path}')

	logger.info('Extracted %d chapters from %s', len(chapters), path)
	return Book(
		title=_metadata(doc, 'title') or path.stem,
		language=language,
		source_path=path,
		chapters=tuple(chapters),
		authors=tuple(value for value, _ in doc.get_metadata('DC', 'creator') if value),
	)


def html_to_text(markup: Union[str, BeautifulSoup]) -> str:
	"""
	Extracts plain text from HTML, one blank line between blocks.

	Inline markup stays inside its paragraph and runs of whitespace are
	folded to single spaces. A parsed soup is modified in place.
	"""
	soup = markup if isinstance(markup, BeautifulSoup) else BeautifulSoup(markup, 'html.parser')
	for tag in soup(['script', 'style']):
		tag.decompose()
	body = soup.body or soup
	for tag in body.find_all(_BLOCKS):
		tag.insert_before(_BLOCK_BREAK)
		tag.insert_after(_BLOCK_BREAK)
	blocks = (' '.join(block.split()) for block in body.get_text().split(_BLOCK_BREAK))
	return '\n\n'.join(block for block in blocks if block)


def _check_archive(path: Path) -> None:
	if not path.is_file():
		raise NotAnEpubError(f'Not a file: {path}')
	if not zipfile.is_zipfile(path):
		raise NotAnEpubError(f'Not a ZIP archive: {path}')
	try:
		with zipfile.ZipFile(path) as archive:
			if CONTAINER_PATH not in archive.namelist():
				raise NotAnEpubError(f'{path} has no {CONTAINER_PATH}')
			bad_member = archive.testzip()
	except (zipfile.BadZipFile, zlib.error, EOFError) as e:
		raise CorruptArchiveError(f'Corrupt archive {path}: {e}') from e
	if bad_member is not None:
		raise CorruptArchiveError(f'Corrupt member {bad_member} in {path}')


def _load_package(path: Path) -> epub.EpubBook:
	try:
		return epub.read_epub(str(path), {'ignore_ncx': False})
	except KeyError as e:
		raise MissingManifestError(f'{path} references a missing file: {e}') from e
	except epub.EpubException as e:
		raise MissingManifestError(f'{path}: {e}') from e
	except etree.XMLSyntaxError as e:
		raise CorruptArchiveError(f'Malformed package document in {path}: {e}') from e
	except (zipfile.BadZipFile, zlib.error) as e:
		raise CorruptArchiveError(f'Corrupt archive {path}: {e}') from e


def _spine_documents(doc: epub.EpubBook) -> List[epub.EpubItem]:
	"""Content documents of the linear spine, in reading order."""
	documents = []
	for entry in doc.spine:
		idref, linear = entry if isinstance(entry, tuple) else (entry, 'yes')
		if linear == 'no':
			continue
		item = doc.get_item_with_id(idref)
		if item is None:
			raise MissingManifestError(f'Spine references unknown manifest id {idref!r}')
		if item.get_type() != ebooklib.ITEM_DOCUMENT:
			logger.debug('Skipping non-document spine item %s', item.get_name())
			continue
		documents.append(item)
	return documents


def _decode(item: epub.EpubItem) -> str:
	content = item.content or b''
	if isinstance(content, str):
		return content
	match = _XML_ENCODING.search(content[:512])
	encoding = match.group(1).decode('ascii') if match else 'utf-8'
	if encoding.lower().replace('_', '-') in ('utf-8', 'utf8'):
		encoding = 'utf-8-sig'
	try:
		return content.decode(encoding)
	except (LookupError, UnicodeDecodeError) as e:
		raise UnsupportedEncodingError(
			f'Cannot decode {item.get_name()} as {encoding}: {e}'
		) from e


def _toc_titles(toc, titles: Optional[Dict[str, str]] = None) -> Dict[str, str]:
	"""Flatten the navigation tree into {document href: first label}."""
	if titles is None:
		titles = {}
	for node in _toc_nodes(toc):
		if isinstance(node, tuple):
			section, children = node
			_add_toc_title(titles, getattr(section, 'href', None), getattr(section, 'title', ''))
			_toc_titles(children, titles)
		else:
			_add_toc_title(titles, getattr(node, 'href', None), getattr(node, 'title', ''))
	return titles


def _toc_nodes(toc) -> list:
	"""
	ebooklib gives a list of nodes for most NCX files, but a lone Link for
	an empty navMap and possibly a bare (Section, children) pair.
	"""
	if toc is None:
		return []
	if isinstance(toc, (epub.Link, epub.Section)):
		return [toc]
	if isinstance(toc, tuple) and len(toc) == 2 and isinstance(toc[0], epub.Section):
		return [toc]
	return list(toc)


def _add_toc_title(titles: Dict[str, str], href: Optional[str], title: str) -> None:
	if not href or not title or not title.strip():
		return
	key = posixpath.normpath(unquote(href.split('#')[0]))
	titles.setdefault(key, ' '.join(title.split()))


def _chapter_title(item: epub.EpubItem, soup: BeautifulSoup, toc_titles: Dict[str, str]) -> str:
	title = toc_titles.get(posixpath.normpath(item.get_name()))
	if title:
		return title
	heading = soup.find(_HEADINGS)
	if heading is not None:
		text = ' '.join(heading.get_text(' ', strip=True).split())
		if text:
			return text
	return ''


def _collect_images(doc: epub.EpubBook, item: epub.EpubItem, soup: BeautifulSoup) -> List[ImageRef]:
	base = posixpath.dirname(item.get_name())
	images = []
	seen = set()
	for tag in soup.find_all(['img', 'image']):
		src = tag.get('src') or tag.get('xlink:href') or tag.get('href')
		if not src or src.startswith(('data:', 'http://', 'https://')):
			continue
		href = posixpath.normpath(posixpath.join(base, unquote(src.split('#')[0])))
		if href in seen:
			continue
		resource = doc.get_item_with_href(href)
		if resource is None:
			logger.warning('Image %s referenced by %s is missing from the package', href, item.get_name())
			continue
		seen.add(href)
		images.append(ImageRef(
			path=href,
			content=resource.get_content(),
			media_type=resource.media_type or _guess_media_type(href),
		))
	return images


_MEDIA_TYPES = {
	'.jpg': 'image/jpeg',
	'.jpeg': 'image/jpeg',
	'.png': 'image/png',
	'.gif': 'image/gif',
	'.svg': 'image/svg+xml',
	'.webp': 'image/webp',
}


def _guess_media_type(href: str) -> str:
	return _MEDIA_TYPES.get(posixpath.splitext(href)[1].lower(), 'application/octet-stream')


def _metadata(doc: epub.EpubBook, name: str) -> str:
	values: List[Tuple[str, dict]] = doc.get_metadata('DC', name)
	if values and values[0][0]:
		return values[0][0].strip()
	return ''
