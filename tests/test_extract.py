import logging
import zipfile

import pytest

from aibook.errors import (
	CorruptArchiveError,
	EmptyBookError,
	ExtractionError,
	MissingManifestError,
	NotAnEpubError,
	UnsupportedEncodingError,
)
from aibook.extract import html_to_text, read_book

from conftest import PNG_BYTES


def test_chapters_follow_spine_order(three_chapter_epub):
	book = read_book(three_chapter_epub)

	assert book.title == 'Test Book'
	assert book.authors == ('Jane Doe',)
	assert [chapter.index for chapter in book.chapters] == [0, 1, 2]
	assert [chapter.title for chapter in book.chapters] == ['Getting Started', 'Core Ideas', 'Wrapping Up']
	assert 'ALPHA-TEXT about setup.' in book.chapters[0].text
	assert 'GAMMA-TEXT' in book.chapters[2].text


def test_language_is_recorded(three_chapter_epub):
	assert read_book(three_chapter_epub, language='ptbr').language == 'ptbr'


def test_title_falls_back_to_heading_then_position(epub_factory):
	path = epub_factory([
		{'id': 'a', 'body': '<h2>From The Heading</h2><p>text</p>'},
		{'id': 'b', 'body': '<p>no heading here</p>'},
	])

	book = read_book(path)

	assert [chapter.title for chapter in book.chapters] == ['From The Heading', 'Chapter 2']


def test_non_linear_items_are_skipped(epub_factory):
	path = epub_factory([
		{'id': 'cover', 'body': '<p>cover</p>', 'linear': False},
		{'id': 'one', 'toc': 'One', 'body': '<p>first</p>'},
	])

	book = read_book(path)

	assert len(book.chapters) == 1
	assert book.chapters[0].index == 0
	assert book.chapters[0].title == 'One'


def test_images_collected_per_chapter_and_listed_once(epub_factory):
	path = epub_factory(
		[
			{'id': 'a', 'body': '<p><img src="images/fig.png"/><img src="images/fig.png"/></p>'},
			{'id': 'b', 'body': '<p><img src="images/fig.png"/><img src="images/other.png"/></p>'},
		],
		images={'images/fig.png': PNG_BYTES, 'images/other.png': PNG_BYTES + b'x'},
	)

	book = read_book(path)

	assert [image.path for image in book.chapters[0].images] == ['images/fig.png']
	assert [image.path for image in book.chapters[1].images] == ['images/fig.png', 'images/other.png']
	assert [image.path for image in book.images()] == ['images/fig.png', 'images/other.png']
	assert book.images()[0].content == PNG_BYTES
	assert book.images()[0].media_type == 'image/png'


def test_missing_image_is_logged_and_skipped(epub_factory, caplog):
	path = epub_factory([{'id': 'a', 'body': '<p><img src="images/ghost.png"/>text</p>'}])

	with caplog.at_level(logging.WARNING, logger='aibook.extract'):
		book = read_book(path)

	assert book.chapters[0].images == ()
	assert 'images/ghost.png' in caplog.text


def test_declared_encoding_is_honoured(epub_factory):
	path = epub_factory([{'id': 'a', 'body': '<p>café crème</p>', 'encoding': 'iso-8859-1'}])

	assert 'café crème' in read_book(path).chapters[0].text


def test_unknown_encoding(epub_factory):
	body = b'<?xml version="1.0" encoding="x-no-such-codec"?><html><body><p>hi</p></body></html>'
	path = epub_factory([{'id': 'a', 'body': body}])

	with pytest.raises(UnsupportedEncodingError):
		read_book(path)


def test_plain_file_is_not_an_epub(tmp_path):
	path = tmp_path / 'notes.epub'
	path.write_text('just some text')

	with pytest.raises(NotAnEpubError):
		read_book(path)


def test_zip_without_container_is_not_an_epub(tmp_path):
	path = tmp_path / 'archive.epub'
	with zipfile.ZipFile(path, 'w') as archive:
		archive.writestr('readme.txt', 'hello')

	with pytest.raises(NotAnEpubError):
		read_book(path)


def test_missing_file(tmp_path):
	with pytest.raises(NotAnEpubError):
		read_book(tmp_path / 'missing.epub')


def test_corrupt_member(three_chapter_epub):
	data = three_chapter_epub.read_bytes()
	three_chapter_epub.write_bytes(data.replace(b'ALPHA-TEXT', b'OMEGA-TEXT'))

	with pytest.raises(CorruptArchiveError):
		read_book(three_chapter_epub)


def test_spine_reference_missing_from_manifest(epub_factory):
	path = epub_factory([{'id': 'a', 'body': '<p>text</p>'}], spine_extra=['ghost'])

	with pytest.raises(MissingManifestError):
		read_book(path)


def test_book_without_linear_chapters_is_empty(epub_factory):
	path = epub_factory([{'id': 'cover', 'body': '<p>cover</p>', 'linear': False}])

	with pytest.raises(EmptyBookError) as excinfo:
		read_book(path)
	assert isinstance(excinfo.value, ExtractionError)


def test_html_to_text_drops_scripts_and_keeps_blocks():
	text = html_to_text('<html><head><style>p{}</style></head><body><p>One</p><script>x()</script><p>Two</p></body></html>')

	assert text == 'One\n\nTwo'
	assert html_to_text('<p>The <em>quick</em> fox jumps.</p><p>Second.</p>') == 'The quick fox jumps.\n\nSecond.'


def test_html_to_text_keeps_inline_markup_in_its_paragraph():
	text = html_to_text(
		'<body><h1>Title</h1><p>See <a href="x.xhtml">the <strong>next</strong></a>\n   chapter, <span>now</span>.</p>'
		'<ul><li>first</li><li>second<br/>line</li></ul></body>'
	)

	assert text == 'Title\n\nSee the next chapter, now.\n\nfirst\n\nsecond\n\nline'


def test_single_navpoint_titles_its_chapter(epub_factory):
	path = epub_factory([{'id': 'only', 'toc': 'The Only Chapter', 'body': '<p>lonely text</p>'}])

	book = read_book(path)

	assert [chapter.title for chapter in book.chapters] == ['The Only Chapter']
	assert book.chapters[0].text == 'lonely text'


def test_empty_navmap_falls_back_to_headings(epub_factory):
	path = epub_factory([{'id': 'a', 'body': '<h1>Heading Title</h1><p>text</p>'}])

	assert read_book(path).chapters[0].title == 'Heading Title'


def test_nested_navpoints_title_parents_and_children(epub_factory):
	path = epub_factory([
		{'id': 'part', 'toc': 'Part One', 'body': '<p>part text</p>'},
		{'id': 'ch1', 'toc': 'First Chapter', 'parent': 'part', 'body': '<p>one</p>'},
		{'id': 'ch2', 'toc': 'Second Chapter', 'parent': 'part', 'body': '<p>two</p>'},
		{'id': 'epilogue', 'toc': 'Epilogue', 'body': '<p>end</p>'},
	])

	book = read_book(path)

	assert [chapter.title for chapter in book.chapters] == ['Part One', 'First Chapter', 'Second Chapter', 'Epilogue']
