"""
Data Model

Plain dataclasses shared by every stage of the pocket-book pipeline.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Tuple, Union


LANGUAGES = ('en', 'ptbr')
DETAIL_LEVELS = ('short', 'medium', 'long')
OUTPUT_FORMATS = ('markdown', 'html')

SUMMARY_FIELDS = ('summary', 'keywords', 'glossary', 'references', 'additional_resources')


@dataclass(frozen=True)
class ImageRef:
	"""An image resource extracted from the EPUB package."""

	path: str  # resource path inside the package
	content: bytes = field(repr=False)
	media_type: str


@dataclass(frozen=True)
class Chapter:
	"""One spine document of the source book."""

	index: int
	title: str
	text: str
	images: Tuple[ImageRef, ...] = ()


@dataclass(frozen=True)
class Book:
	"""The extracted book, immutable once built."""

	title: str
	language: str
	source_path: Path
	chapters: Tuple[Chapter, ...]
	authors: Tuple[str, ...] = ()

	def toc_text(self) -> str:
		"""Chapter titles in reading order, one per line."""
		return '\n'.join(chapter.title for chapter in self.chapters)

	def images(self) -> List[ImageRef]:
		"""
		Every distinct image of the book.

		Returns:
			Images ordered by chapter index, then by first appearance inside
			the chapter. An image shared by several chapters is listed once.
		"""
		seen = set()
		images = []
		for chapter in self.chapters:
			for image in chapter.images:
				if image.path not in seen:
					seen.add(image.path)
					images.append(image)
		return images


def _unique(values) -> List[str]:
	seen = set()
	result = []
	for value in values:
		key = value.casefold()
		if key not in seen:
			seen.add(key)
			result.append(value)
	return result


@dataclass
class SummaryPlan:
	"""Book-level summary that conditions every chapter request."""

	summary: str
	keywords: List[str] = field(default_factory=list)
	glossary: List[str] = field(default_factory=list)
	references: List[str] = field(default_factory=list)
	additional_resources: List[str] = field(default_factory=list)

	def __post_init__(self):
		# keywords are a set; first-appearance order keeps rendering stable
		self.keywords = _unique(self.keywords)

	def to_dict(self) -> Dict[str, Union[str, List[str]]]:
		return {
			'summary': self.summary,
			'keywords': list(self.keywords),
			'glossary': list(self.glossary),
			'references': list(self.references),
			'additional_resources': list(self.additional_resources),
		}


@dataclass
class ChapterSummary:
	"""Summary of a single chapter, same shape as the plan."""

	chapter_index: int
	summary: str
	keywords: List[str] = field(default_factory=list)
	glossary: List[str] = field(default_factory=list)
	references: List[str] = field(default_factory=list)
	additional_resources: List[str] = field(default_factory=list)

	def __post_init__(self):
		self.keywords = _unique(self.keywords)


@dataclass(frozen=True)
class ChapterFailure:
	"""A chapter that could not be summarized."""

	chapter_index: int
	reason: str


ChapterOutcome = Union[ChapterSummary, ChapterFailure]


@dataclass(frozen=True)
class JobConfig:
	"""Validated configuration for one run. See ``aibook.config.load_config``."""

	input_paths: Tuple[Path, ...]
	output_dir: Optional[Path]
	provider: str
	model: str
	language: str = 'en'
	detail_level: str = 'medium'
	output_format: str = 'markdown'
	api_key: str = field(default='', repr=False)
	workers: int = 4
	max_attempts: int = 3
	retry_base_delay: float = 2.0
	request_timeout: float = 300.0
	max_chapter_chars: int = 300000
	verbose: bool = False


@dataclass(frozen=True)
class ProviderRequest:
	system_prompt: str
	user_prompt: str
	language: str = 'en'


@dataclass(frozen=True)
class ProviderResponse:
	text: str
	provider: str = ''
	model: str = ''


@dataclass
class RunReport:
	"""What the CLI shows once a book has been processed."""

	book_title: str
	chapter_count: int
	succeeded: List[int] = field(default_factory=list)
	failed: List[ChapterFailure] = field(default_factory=list)
	outputs: List[Path] = field(default_factory=list)

	@property
	def partial(self) -> bool:
		return bool(self.failed)
