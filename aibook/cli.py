"""
Command-line interface.

Examples:
  # Full pipeline: summary.md, summary.epub and images/ under ./my_book
  aibook summarize -f my_book.epub -l en

  # Use StackSpot, a longer summary and an extra HTML document
  aibook summarize -f my_book.epub -a stackspot --detail_level long --output_format html

  # Extraction only: chapter texts and images, no AI calls
  aibook process -f my_book.epub --output_dir extracted
"""

import argparse
import logging
import sys
import threading
from typing import List, Optional

from dotenv import load_dotenv
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table
from tqdm import tqdm

from . import __version__
from .config import book_output_dir, load_config
from .errors import AIBookError, ConfigError, RunCancelledError
from .llm import PROVIDERS, create_provider
from .models import DETAIL_LEVELS, LANGUAGES, OUTPUT_FORMATS, JobConfig, RunReport
from .pipeline import extract_book, failure_lines, summarize_book
from .progress import ProgressTracker, TqdmSink

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_CONFIG = 2
EXIT_CANCELLED = 130

console = Console(stderr=True)


def build_parser() -> argparse.ArgumentParser:
	parser = argparse.ArgumentParser(
		prog='aibook',
		description='A CLI tool for generating pocket books from EPUB files',
		formatter_class=argparse.RawDescriptionHelpFormatter,
		epilog=__doc__.split('Examples:', 1)[1].rstrip(),
	)
	parser.add_argument('--version', action='version', version=f'%(prog)s {__version__}')
	subparsers = parser.add_subparsers(dest='command', required=True)

	common = argparse.ArgumentParser(add_help=False)
	common.add_argument(
		'-f', '--file',
		action='append',
		required=True,
		dest='files',
		help='EPUB file to process (repeat for several books)',
	)
	common.add_argument(
		'-l', '--lang',
		choices=LANGUAGES,
		help='Output language (default: OUTPUT_LANGUAGE or DEFAULT_LANGUAGE from .env)',
	)
	common.add_argument(
		'--output_dir',
		help='Output directory (default: the sanitized book file name)',
	)
	common.add_argument('--verbose', action='store_true', help='Show retries, backoff and debug output')

	subparsers.add_parser(
		'process',
		parents=[common],
		help='Extract chapter texts and images only',
	)

	summarize = subparsers.add_parser(
		'summarize',
		parents=[common],
		help='Run the full summarization pipeline',
	)
	summarize.add_argument(
		'-a', '--ai-provider',
		choices=sorted(PROVIDERS),
		dest='ai_provider',
		help='AI provider (default: AI_PROVIDER from .env, then openrouter)',
	)
	summarize.add_argument('-m', '--model', help='Model name (default: MODEL_NAME from .env)')
	summarize.add_argument(
		'--detail_level',
		choices=DETAIL_LEVELS,
		default='medium',
		help='Summary verbosity (default: medium)',
	)
	summarize.add_argument(
		'--output_format',
		choices=OUTPUT_FORMATS,
		default='markdown',
		help='markdown writes summary.md and summary.epub; html also writes summary.html',
	)
	summarize.add_argument('--workers', type=int, help='Chapters summarized in parallel')
	return parser


def configure_logging(verbose: bool) -> None:
	logging.basicConfig(
		level=logging.DEBUG if verbose else logging.WARNING,
		format='%(message)s',
		datefmt='[%X]',
		handlers=[RichHandler(console=console, show_path=False)],
		force=True,
	)
	if not verbose:
		for name in ('httpx', 'openai', 'anthropic', 'urllib3'):
			logging.getLogger(name).setLevel(logging.WARNING)
	logging.getLogger('aibook').setLevel(logging.DEBUG if verbose else logging.WARNING)


def print_report(report: RunReport, failed_lines: Optional[List[str]] = None) -> None:
	table = Table(title=report.book_title)
	table.add_column('Chapters', justify='right')
	table.add_column('Succeeded', justify='right', style='green')
	table.add_column('Failed', justify='right', style='red')
	table.add_row(str(report.chapter_count), str(len(report.succeeded)), str(len(report.failed)))
	console.print(table)
	for line in failed_lines or []:
		console.print(f'  [red]✗[/red] {line}')
	for path in report.outputs:
		console.print(f'  [green]→[/green] {path}')


def run_process(config: JobConfig) -> int:
	status = EXIT_OK
	for path in config.input_paths:
		try:
			report = extract_book(config, path, book_output_dir(config, path))
		except AIBookError as e:
			console.print(f'[red]Error:[/red] {path}: {e}')
			status = EXIT_FAILURE
			continue
		console.print(f'Extracted {report.chapter_count} chapters from [bold]{path}[/bold]')
		print_report(report)
	return status


def run_summarize(config: JobConfig) -> int:
	try:
		provider = create_provider(config)
	except ConfigError as e:
		console.print(f'[red]Configuration error:[/red] {e}')
		return EXIT_CONFIG

	cancel = threading.Event()
	status = EXIT_OK
	for path in config.input_paths:
		try:
			output_dir = book_output_dir(config, path)
			with tqdm(total=0, desc=path.name, unit='step', disable=None) as bar:
				tracker = ProgressTracker(sinks=[TqdmSink(bar)])
				report = summarize_book(config, path, output_dir, provider, tracker=tracker, cancel=cancel)
		except RunCancelledError as e:
			console.print(f'[yellow]Cancelled:[/yellow] {e}. Nothing was written.')
			return EXIT_CANCELLED
		except KeyboardInterrupt:
			console.print('[yellow]Cancelled.[/yellow] Nothing was written.')
			return EXIT_CANCELLED
		except AIBookError as e:
			console.print(f'[red]Error:[/red] {path}: {e}')
			status = EXIT_FAILURE
			continue
		print_report(report, failure_lines(report))
		console.print(f'Pocket book created at [bold]{output_dir}[/bold]')
	return status


def main(argv: Optional[List[str]] = None) -> int:
	load_dotenv()
	args = build_parser().parse_args(argv)
	configure_logging(args.verbose)

	try:
		config = load_config(
			files=args.files,
			lang=args.lang,
			provider=getattr(args, 'ai_provider', None),
			model=getattr(args, 'model', None),
			output_dir=args.output_dir,
			detail_level=getattr(args, 'detail_level', 'medium'),
			output_format=getattr(args, 'output_format', 'markdown'),
			workers=getattr(args, 'workers', None),
			verbose=args.verbose,
			require_api_key=args.command == 'summarize',
		)
	except ConfigError as e:
		console.print(f'[red]Configuration error:[/red] {e}')
		return EXIT_CONFIG

	if args.command == 'process':
		return run_process(config)
	return run_summarize(config)


def run() -> None:
	sys.exit(main())
