import json
import threading
import zipfile
from pathlib import Path

import pytest

from aibook.models import Book, Chapter, ImageRef, JobConfig, ProviderResponse

PNG_BYTES = b'\x89PNG\r\n\x1a\n' + b'\x00' * 16

CONTAINER_XML = """<?xml version="1.0" encoding="UTF-8"?>
<container version="1.0" xmlns="urn:oasis:names:tc:opendocument:xmlns:container">
  <rootfiles>
    <rootfile full-path="OEBPS/content.opf" media-type="application/oebps-package+xml"/>
  </rootfiles>
</container>
"""


def xhtml(body, title='Chapter', encoding='utf-8'):
	return (
		f'<?xml version="1.0" encoding="{encoding}"?>\n'
		'<html xmlns="http://www.w3.org/1999/xhtml">'
		f'<head><title>{title}</title></head>'
		f'<body>{body}</body></html>'
	)


def nav_points(children, parent=None):
	"""Render the navPoints under ``parent`` from {parent id: [chapter]}."""
	points = []
	for chapter in children.get(parent, []):
		points.append(
			f'<navPoint id="nav-{chapter["id"]}">'
			f'<navLabel><text>{chapter["toc"]}</text></navLabel>'
			f'<content src="{chapter["id"]}.xhtml"/>'
			f'{nav_points(children, chapter["id"])}</navPoint>'
		)
	return ''.join(points)


def write_epub(
	path,
	chapters,
	title='Test Book',
	author='Jane Doe',
	images=None,
	spine_extra=(),
):
	"""
	Write a minimal EPUB 2 package.

	Args:
		chapters: List of dicts with ``id``, ``body`` (str or bytes) and
			optionally ``toc`` (NCX label), ``parent`` (id of the chapter whose
			navPoint holds this one), ``linear`` and ``encoding``.
		images: {path relative to the OPF: bytes}.
		spine_extra: Additional spine idrefs appended verbatim.
	"""
	images = images or {}
	manifest = ['<item id="ncx" href="toc.ncx" media-type="application/x-dtbncx+xml"/>']
	spine = []
	nav_children = {}
	for chapter in chapters:
		manifest.append(
			f'<item id="{chapter["id"]}" href="{chapter["id"]}.xhtml" media-type="application/xhtml+xml"/>'
		)
		linear = '' if chapter.get('linear', True) else ' linear="no"'
		spine.append(f'<itemref idref="{chapter["id"]}"{linear}/>')
		if chapter.get('toc'):
			nav_children.setdefault(chapter.get('parent'), []).append(chapter)
	for number, (href, _) in enumerate(sorted(images.items()), 1):
		manifest.append(f'<item id="img{number}" href="{href}" media-type="image/png"/>')
	for idref in spine_extra:
		spine.append(f'<itemref idref="{idref}"/>')

	opf = f"""<?xml version="1.0" encoding="UTF-8"?>
<package xmlns="http://www.idpf.org/2007/opf" version="2.0" unique-identifier="bookid">
  <metadata xmlns:dc="http://purl.org/dc/elements/1.1/">
    <dc:title>{title}</dc:title>
    <dc:creator>{author}</dc:creator>
    <dc:language>en</dc:language>
    <dc:identifier id="bookid">urn:uuid:12345678-1234-1234-1234-123456789abc</dc:identifier>
  </metadata>
  <manifest>
    {''.join(manifest)}
  </manifest>
  <spine toc="ncx">
    {''.join(spine)}
  </spine>
</package>
"""
	ncx = f"""<?xml version="1.0" encoding="UTF-8"?>
<ncx xmlns="http://www.daisy.org/z3986/2005/ncx/" version="2005-1">
  <head><meta name="dtb:uid" content="urn:uuid:12345678-1234-1234-1234-123456789abc"/></head>
  <docTitle><text>{title}</text></docTitle>
  <navMap>{nav_points(nav_children)}</navMap>
</ncx>
"""
	with zipfile.ZipFile(path, 'w', zipfile.ZIP_STORED) as archive:
		archive.writestr('mimetype', 'application/epub+zip')
		archive.writestr('META-INF/container.xml', CONTAINER_XML)
		archive.writestr('OEBPS/content.opf', opf)
		archive.writestr('OEBPS/toc.ncx', ncx)
		for chapter in chapters:
			body = chapter['body']
			if isinstance(body, str):
				encoding = chapter.get('encoding', 'utf-8')
				body = xhtml(body, encoding=encoding).encode(encoding)
			archive.writestr(f'OEBPS/{chapter["id"]}.xhtml', body)
		for href, data in images.items():
			archive.writestr(f'OEBPS/{href}', data)
	return Path(path)


@pytest.fixture
def epub_factory(tmp_path):
	def factory(chapters, name='book.epub', **kwargs):
		return write_epub(tmp_path / name, chapters, **kwargs)
	return factory


@pytest.fixture
def three_chapter_epub(epub_factory):
	return epub_factory([
		{'id': 'ch1', 'toc': 'Getting Started', 'body': '<h1>Getting Started</h1><p>ALPHA-TEXT about setup.</p>'},
		{'id': 'ch2', 'toc': 'Core Ideas', 'body': '<h1>Core Ideas</h1><p>BETA-TEXT about design.</p>'},
		{'id': 'ch3', 'toc': 'Wrapping Up', 'body': '<h1>Wrapping Up</h1><p>GAMMA-TEXT about release.</p>'},
	])


def summary_json(summary='A summary.', keywords=(), glossary=(), references=(), additional_resources=()):
	return json.dumps({
		'summary': summary,
		'keywords': list(keywords),
		'glossary': list(glossary),
		'references': list(references),
		'additional_resources': list(additional_resources),
	})


PLAN_JSON = summary_json(
	'A practical book about shipping software.',
	keywords=['setup', 'design'],
	glossary=['CI: continuous integration'],
	references=['The Pragmatic Programmer'],
)


def is_plan_request(request):
	return 'Table of Contents:' in request.user_prompt


def chapter_text(request):
	"""The chapter text part of a chapter request."""
	return request.user_prompt.split('\nText:\n', 1)[1]


class FakeProvider:
	"""
	Scripted provider.

	The handler receives each request and returns the response text or an
	exception instance to raise.
	"""

	name = 'fake'

	def __init__(self, handler=None):
		self.handler = handler or default_handler
		self.requests = []
		self._lock = threading.Lock()

	def summarize(self, request):
		with self._lock:
			self.requests.append(request)
		result = self.handler(request)
		if isinstance(result, BaseException):
			raise result
		return ProviderResponse(text=result, provider=self.name, model='fake-model')

	def chapter_requests(self, marker):
		return [r for r in self.requests if not is_plan_request(r) and marker in chapter_text(r)]


def default_handler(request):
	if is_plan_request(request):
		return PLAN_JSON
	text = chapter_text(request)
	for marker in ('ALPHA', 'BETA', 'GAMMA', 'DELTA'):
		if marker in text:
			return summary_json(f'{marker.title()} summary covering design.', keywords=[marker.lower()])
	return summary_json('Generic summary.')


@pytest.fixture
def fake_provider():
	return FakeProvider()


def make_config(tmp_path, **overrides):
	values = {
		'input_paths': (Path(tmp_path) / 'book.epub',),
		'output_dir': Path(tmp_path) / 'out',
		'provider': 'openrouter',
		'model': '',
		'language': 'en',
		'api_key': 'test-key',
		'workers': 2,
		'retry_base_delay': 0.0,
	}
	values.update(overrides)
	return JobConfig(**values)


@pytest.fixture
def config(tmp_path):
	return make_config(tmp_path)


def make_book(texts, images=None, title='Sample Book', language='en'):
	"""Book built in memory, one chapter per text."""
	images = images or {}
	chapters = tuple(
		Chapter(
			index=index,
			title=f'Part {index + 1}',
			text=text,
			images=tuple(images.get(index, ())),
		)
		for index, text in enumerate(texts)
	)
	return Book(
		title=title,
		language=language,
		source_path=Path('sample.epub'),
		chapters=chapters,
		authors=('Jane Doe',),
	)


def image(path, content=PNG_BYTES):
	return ImageRef(path=path, content=content, media_type='image/png')
