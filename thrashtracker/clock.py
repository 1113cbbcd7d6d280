import asyncio
import dataclasses
import logging
import math
import numbers
import threading
import time
import typing

import thrashtracker.constants
import thrashtracker.errors
import thrashtracker.event_emitter
import thrashtracker.pattern
import thrashtracker.pattern_store
import thrashtracker.voice_allocator


logger = logging.getLogger(__name__)


@dataclasses.dataclass(frozen=True)
class PlaybackState:

	"""
	A consistent snapshot of the transport for status display.
	"""

	is_playing: bool
	bpm: float
	current_step: int
	current_pattern_id: str


def validate_bpm (bpm: float) -> float:

	"""Return ``bpm`` if it is a number in 60-200, else raise ``InvalidArgument``.

	Fractional tempos such as 120.5 are allowed; booleans and non-finite values are not.
	"""

	if isinstance(bpm, bool) or not isinstance(bpm, numbers.Real) or not math.isfinite(bpm):
		raise thrashtracker.errors.InvalidArgument(f"BPM must be a number, got {bpm!r}")

	if not thrashtracker.constants.MIN_BPM <= bpm <= thrashtracker.constants.MAX_BPM:
		raise thrashtracker.errors.InvalidArgument(
			f"BPM must be {thrashtracker.constants.MIN_BPM}-{thrashtracker.constants.MAX_BPM}, got {bpm}"
		)

	return bpm


def step_interval_ms (bpm: float) -> float:

	"""
	Duration of one step (a sixteenth note) in milliseconds: 120 BPM -> 125 ms.
	"""

	return (60.0 / bpm / thrashtracker.constants.STEPS_PER_BEAT) * 1000.0


class PlaybackClock:

	"""
	The step scheduler.

	While running, an asyncio task ticks once per sixteenth note.  Each tick
	plays the next step of the current pattern: for tracks 0 to 7, in that
	order, every active cell is triggered on the voice allocator with a
	duration of one step.  Voices release themselves, so the clock never
	schedules note-offs.

	The first tick comes one step interval after ``start()`` and plays step 0.
	``stop()`` rewinds, so playback always restarts from step 0.

	Pattern and BPM are read at tick time, so a pattern switch or tempo edit is
	heard on the very next tick.  A tempo change does not reschedule the tick
	that is already pending; it sets the interval after it.

	Every start gets a new generation number and ``stop()`` bumps it before
	cancelling the task, so a tick that races with ``stop()`` sees a stale
	generation and triggers nothing.
	"""

	def __init__ (
		self,
		store: thrashtracker.pattern_store.PatternStore,
		allocator: thrashtracker.voice_allocator.VoiceAllocator,
		pattern_id: str = thrashtracker.constants.DEFAULT_PATTERN_ID,
		bpm: float = thrashtracker.constants.DEFAULT_BPM,
		events: typing.Optional[thrashtracker.event_emitter.EventEmitter] = None
	) -> None:

		self._store = store
		self._allocator = allocator
		self.events = events or thrashtracker.event_emitter.EventEmitter()

		self._lock = threading.Lock()
		self._bpm = validate_bpm(bpm)
		self._pattern_id = thrashtracker.pattern.normalize_pattern_id(pattern_id)
		self._running = False
		self._generation = 0
		self._current_step = 0
		self._next_step = 0
		self._task: typing.Optional[asyncio.Task] = None

	@property
	def running (self) -> bool:

		return self._running

	@property
	def bpm (self) -> float:

		return self._bpm

	@property
	def pattern_id (self) -> str:

		return self._pattern_id

	@property
	def current_step (self) -> int:

		return self._current_step

	@property
	def step_interval_ms (self) -> float:

		"""The step duration at the current tempo."""

		return step_interval_ms(self._bpm)

	@property
	def state (self) -> PlaybackState:

		with self._lock:
			return PlaybackState(
				is_playing = self._running,
				bpm = self._bpm,
				current_step = self._current_step,
				current_pattern_id = self._pattern_id
			)

	def set_bpm (self, bpm: float) -> None:

		"""
		Change the tempo. Takes effect from the interval after the pending tick.
		"""

		validate_bpm(bpm)

		with self._lock:
			changed = bpm != self._bpm
			self._bpm = bpm

		if changed:
			logger.info(f"BPM set to {bpm}")
			self.events.emit("bpm", bpm)

	def set_pattern (self, pattern_id: typing.Union[str, int]) -> str:

		"""Make ``pattern_id`` the pattern the next tick reads. Returns the canonical id."""

		pattern_id = self._store.get_pattern(pattern_id).id

		with self._lock:
			self._pattern_id = pattern_id

		return pattern_id

	async def start (self, bpm: typing.Optional[float] = None) -> None:

		"""Start ticking. Raises ``InvalidArgument`` for a BPM outside 60-200.

		If the clock is already running only the tempo is updated.
		"""

		if bpm is not None:
			validate_bpm(bpm)
			self.set_bpm(bpm)

		with self._lock:

			if self._running:
				return

			self._generation += 1
			generation = self._generation
			self._running = True
			self._current_step = 0
			self._next_step = 0

		self._task = asyncio.create_task(self._run_loop(generation))

		logger.info(f"Clock started at {self._bpm} BPM on {self._pattern_id}")

		self.events.emit("start", self._bpm)

	async def stop (self) -> None:

		"""Stop ticking and rewind to step 0.

		Once this returns no further tick can fire and no trigger from a
		cancelled tick can happen.
		"""

		with self._lock:

			was_running = self._running
			self._generation += 1
			self._running = False
			self._current_step = 0
			self._next_step = 0

			task = self._task
			self._task = None

		if task is not None and task is not asyncio.current_task():

			task.cancel()

			try:
				await task
			except asyncio.CancelledError:
				pass

		if was_running:
			logger.info("Clock stopped")
			self.events.emit("stop")

	def tick (self) -> typing.Optional[int]:

		"""Play the next step now, outside the timer. Returns the step played.

		Used by tests and by hosts that drive the clock from an external
		timing source.  Returns ``None`` if the clock is not running.
		"""

		return self._tick(self._generation)

	def _tick (self, generation: int) -> typing.Optional[int]:

		with self._lock:

			if generation != self._generation or not self._running:
				return None

			step = self._next_step
			self._current_step = step
			self._next_step = (step + 1) % thrashtracker.constants.NUM_STEPS

			pattern_id = self._pattern_id
			duration_ms = step_interval_ms(self._bpm)

		for cell in self._store.active_steps(pattern_id, step):

			try:
				self._allocator.trigger(cell.instrument, cell.note, cell.velocity, duration_ms)
			except Exception:
				logger.exception(f"Step {step} track {cell.instrument} failed to trigger")

		self.events.emit("step", step, pattern_id)

		return step

	async def _run_loop (self, generation: int) -> None:

		"""Tick on an accumulated deadline so timer jitter does not drift the tempo."""

		next_tick_time = time.perf_counter()

		while generation == self._generation:

			# Read the interval now: a tempo change made during the sleep
			# applies to the tick after this one.
			interval = self.step_interval_ms / 1000.0
			next_tick_time += interval

			sleep_time = next_tick_time - time.perf_counter()

			if sleep_time > 0:
				await asyncio.sleep(sleep_time)

			elif sleep_time < -interval:
				logger.warning(f"Clock fell {-sleep_time * 1000:.1f} ms behind - resynchronizing")
				next_tick_time = time.perf_counter()

			self._tick(generation)
