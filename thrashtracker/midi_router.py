import asyncio
import logging
import math
import threading
import typing

import mido

import thrashtracker.constants
import thrashtracker.event_emitter
import thrashtracker.errors
import thrashtracker.midi_utils
import thrashtracker.pattern
import thrashtracker.voice_allocator

from thrashtracker.synth import SynthKind


logger = logging.getLogger(__name__)

PatternCallback = typing.Callable[[str], typing.Any]


def note_to_track (note: int) -> int:

	"""Map a MIDI note to a track: one octave per track from C2 (36), wrapping after 8.

	36-47 -> track 0, 48-59 -> track 1, ... 132 -> track 0 again.  Notes below
	36 wrap downwards (35 -> track 7).
	"""

	return ((note - thrashtracker.constants.TRACK_BASE_NOTE) // thrashtracker.constants.NOTES_PER_TRACK) % thrashtracker.constants.NUM_TRACKS


def denormalize_velocity (velocity: float) -> int:

	"""Convert a 0.0-1.0 velocity to the 0-127 MIDI range (rounding down)."""

	return max(0, min(thrashtracker.constants.MAX_VELOCITY, math.floor(velocity * thrashtracker.constants.MAX_VELOCITY)))


def pattern_for_cc_value (value: int) -> str:

	"""The pattern a control-change value selects: ``value + 1``, so 0 -> ``000x01``.

	7-bit CC values (0-127) reach ``000x01`` to ``000x80``.
	"""

	return thrashtracker.pattern.format_pattern_id(value + 1)


class MidiInputRouter:

	"""
	Turns a MIDI controller into a live instrument and a pattern selector.

	- **Note On** plays the note straight away on the track for its octave
	  (see ``note_to_track``) using the FM voices, for a fixed 500 ms.
	  Note Off does nothing: every note releases itself.
	- **Control Change** selects pattern ``value + 1``.  The pattern-change
	  callback runs once per actual change, never for a repeat of the current
	  pattern.

	Only one input is bound at a time; the first one discovered wins.  With no
	input at all the router stays inert and reports ``connected == False``,
	which never stops audio-only use.

	Messages arrive on mido's callback thread.  They are handed to the event
	loop with ``call_soon_threadsafe`` and drained from a bounded queue, so
	all routing runs on the loop alongside the playback clock.
	"""

	def __init__ (
		self,
		allocator: thrashtracker.voice_allocator.VoiceAllocator,
		on_pattern_change: typing.Optional[PatternCallback] = None,
		pattern_id: str = thrashtracker.constants.DEFAULT_PATTERN_ID,
		device_name: typing.Optional[str] = None,
		pattern_cc: typing.Optional[int] = None,
		note_duration_ms: float = thrashtracker.constants.MIDI_NOTE_DURATION_MS,
		queue_size: int = 256,
		poll_interval: typing.Optional[float] = 1.0,
		events: typing.Optional[thrashtracker.event_emitter.EventEmitter] = None
	) -> None:

		"""
		Parameters:
			allocator: Where live notes are played.
			on_pattern_change: Called with the new pattern id after each change.
			pattern_id: The pattern considered current at start.
			device_name: Input to prefer; ``None`` takes the first available.
			pattern_cc: Only this controller number selects patterns.
				``None`` lets every controller select patterns.
			note_duration_ms: How long live notes sound.
			queue_size: Messages buffered between the MIDI thread and the loop.
			poll_interval: Seconds between device scans; ``None`` disables hot-plug.
		"""

		if pattern_cc is not None and not 0 <= pattern_cc <= 127:
			raise thrashtracker.errors.InvalidArgument(f"pattern_cc must be 0-127, got {pattern_cc}")

		if queue_size <= 0:
			raise thrashtracker.errors.InvalidArgument("queue_size must be positive")

		self._allocator = allocator
		self._on_pattern_change = on_pattern_change
		self.events = events or thrashtracker.event_emitter.EventEmitter()

		self.preferred_device = device_name
		self.pattern_cc = pattern_cc
		self.note_duration_ms = note_duration_ms
		self.queue_size = queue_size
		self.poll_interval = poll_interval

		self._lock = threading.Lock()
		self._current_pattern_id = thrashtracker.pattern.normalize_pattern_id(pattern_id)

		self.midi_in: typing.Any = None
		self.device_name: typing.Optional[str] = None

		self._loop: typing.Optional[asyncio.AbstractEventLoop] = None
		self._queue: typing.Optional[asyncio.Queue] = None
		self._drain_task: typing.Optional[asyncio.Task] = None
		self._watch_task: typing.Optional[asyncio.Task] = None
		self._known_devices: typing.Set[str] = set()

	@property
	def connected (self) -> bool:

		return self.midi_in is not None

	@property
	def current_pattern_id (self) -> str:

		return self._current_pattern_id

	def set_pattern_callback (self, callback: typing.Optional[PatternCallback]) -> None:

		self._on_pattern_change = callback

	# ------------------------------------------------------------------
	# Lifecycle
	# ------------------------------------------------------------------

	async def open (self) -> None:

		"""Bind to the first available input and start routing on this event loop."""

		if self._loop is not None:
			return

		self._loop = asyncio.get_running_loop()
		self._queue = asyncio.Queue(maxsize=self.queue_size)
		self._drain_task = asyncio.create_task(self._drain())

		self._known_devices = set(thrashtracker.midi_utils.list_input_names())
		self._bind(self.preferred_device)

		if not self.connected:
			logger.warning("No MIDI inputs found. Connect a MIDI controller to play live and switch patterns.")

		if self.poll_interval:
			self._watch_task = asyncio.create_task(self._watch_devices())

	async def close (self) -> None:

		"""Stop routing and release the input port."""

		for task in (self._watch_task, self._drain_task):

			if task is None:
				continue

			task.cancel()

			try:
				await task
			except asyncio.CancelledError:
				pass

		self._watch_task = None
		self._drain_task = None

		self._unbind()

		self._queue = None
		self._loop = None

	def _bind (self, device_name: typing.Optional[str]) -> None:

		name, midi_in = thrashtracker.midi_utils.select_input_device(device_name, self._on_midi_input)

		if midi_in is None:
			return

		self.midi_in = midi_in
		self.device_name = name

		logger.info(f"Connected to MIDI input: {name}")

		self.events.emit("connected", name)

	def _unbind (self) -> None:

		if self.midi_in is None:
			return

		name = self.device_name

		try:
			self.midi_in.close()
		except Exception:
			logger.exception(f"Failed to close MIDI input {name!r}")

		self.midi_in = None
		self.device_name = None

		self.events.emit("disconnected", name)

	def device_connected (self, name: str) -> None:

		"""A device appeared. Bind to it unless an input is already bound."""

		logger.info(f"MIDI device connected: {name}")

		if not self.connected:
			self._bind(name)

	def device_disconnected (self, name: str) -> None:

		"""A device went away. If it was ours, become disconnected (no automatic rebind)."""

		logger.info(f"MIDI device disconnected: {name}")

		if name == self.device_name:
			self._unbind()

	async def _watch_devices (self) -> None:

		"""Poll the input list and turn differences into connect/disconnect events."""

		assert self.poll_interval is not None

		while True:

			await asyncio.sleep(self.poll_interval)

			current = set(thrashtracker.midi_utils.list_input_names())

			for name in sorted(self._known_devices - current):
				self.device_disconnected(name)

			for name in sorted(current - self._known_devices):
				self.device_connected(name)

			self._known_devices = current

	# ------------------------------------------------------------------
	# Message flow
	# ------------------------------------------------------------------

	def _on_midi_input (self, message: mido.Message) -> None:

		"""Runs on mido's callback thread: hand the message to the event loop."""

		loop = self._loop

		if loop is None or self._queue is None:
			return

		try:
			loop.call_soon_threadsafe(self._enqueue, message)
		except RuntimeError:
			# Loop already closed during shutdown.
			pass

	def _enqueue (self, message: mido.Message) -> None:

		if self._queue is None:
			return

		try:
			self._queue.put_nowait(message)
		except asyncio.QueueFull:
			logger.warning(f"MIDI input queue full - dropped {message.type}")

	async def _drain (self) -> None:

		assert self._queue is not None

		while True:

			message = await self._queue.get()

			try:
				self.handle_message(message)
			except Exception:
				logger.exception(f"Failed to handle MIDI message {message}")

	def handle_message (self, message: mido.Message) -> None:

		"""Route one incoming message. Unrelated message types are ignored."""

		if message.type == 'note_on':

			# Note On with velocity 0 is a Note Off by MIDI convention.
			if message.velocity > 0:
				self.note_on(message.note, message.velocity)

		elif message.type == 'control_change':
			self.control_change(message.control, message.value)

	def note_on (self, note: int, velocity: int) -> int:

		"""Play ``note`` on its track with the FM voices. Returns the track used."""

		track = note_to_track(note)

		self._allocator.trigger(track, note, velocity, self.note_duration_ms, kind=SynthKind.FM)

		logger.debug(f"Note On: {note} (velocity: {velocity}) -> Track {track}")

		return track

	def note_on_normalized (self, note: int, velocity: float) -> int:

		"""``note_on`` for sources that report velocity as 0.0-1.0."""

		return self.note_on(note, denormalize_velocity(velocity))

	def control_change (self, control: int, value: int) -> bool:

		"""Select pattern ``value + 1``. Returns True if the current pattern changed."""

		if self.pattern_cc is not None and control != self.pattern_cc:
			return False

		try:
			pattern_id = pattern_for_cc_value(value)
		except thrashtracker.errors.PatternNotFound:
			logger.warning(f"CC {control} value {value} is outside the pattern bank")
			return False

		changed = self._change_pattern(pattern_id)

		if changed:
			logger.info(f"Pattern switched via CC {control}: {pattern_id}")

		return changed

	def select_pattern (self, pattern_id: typing.Union[str, int]) -> bool:

		"""Select a pattern directly (e.g. from the UI). Same change rule as CC."""

		return self._change_pattern(thrashtracker.pattern.normalize_pattern_id(pattern_id))

	def _change_pattern (self, pattern_id: str) -> bool:

		with self._lock:

			if pattern_id == self._current_pattern_id:
				return False

			self._current_pattern_id = pattern_id

		if self._on_pattern_change is not None:
			try:
				self._on_pattern_change(pattern_id)
			except Exception:
				logger.exception(f"Pattern change callback failed for {pattern_id}")

		self.events.emit("pattern_change", pattern_id)

		return True
