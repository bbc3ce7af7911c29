"""Process-wide progress counter observed by rendering sinks."""

import threading
from dataclasses import dataclass
from typing import Callable, List


@dataclass(frozen=True)
class ProgressEvent:
	completed: int
	total: int
	label: str = ''


ProgressSink = Callable[[ProgressEvent], None]


class ProgressTracker:
	"""
	Counts completed units of work (the plan plus every chapter).

	``advance`` may be called from any worker thread; the counter update and
	the event it produces happen under one lock so sinks see events in order.
	"""

	def __init__(self, total: int = 0, sinks: List[ProgressSink] = None):
		self._lock = threading.Lock()
		self._completed = 0
		self.total = total
		self._sinks = list(sinks or [])

	def add_sink(self, sink: ProgressSink) -> None:
		self._sinks.append(sink)

	def reset(self, total: int) -> None:
		with self._lock:
			self._completed = 0
			self.total = total

	@property
	def completed(self) -> int:
		with self._lock:
			return self._completed

	def advance(self, label: str = '') -> ProgressEvent:
		with self._lock:
			self._completed += 1
			event = ProgressEvent(self._completed, self.total, label)
			for sink in self._sinks:
				sink(event)
		return event


class TqdmSink:
	"""Renders progress events on a tqdm bar."""

	def __init__(self, bar):
		self.bar = bar

	def __call__(self, event: ProgressEvent) -> None:
		if self.bar.total != event.total:
			self.bar.total = event.total
			self.bar.refresh()
		if event.label:
			self.bar.set_postfix_str(event.label, refresh=False)
		self.bar.update(1)
