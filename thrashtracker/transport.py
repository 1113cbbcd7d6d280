import logging
import typing

import thrashtracker.clock
import thrashtracker.config
import thrashtracker.event_emitter
import thrashtracker.midi_backend
import thrashtracker.midi_router
import thrashtracker.pattern
import thrashtracker.pattern_store
import thrashtracker.synth
import thrashtracker.voice_allocator

from thrashtracker.synth import SynthKind


logger = logging.getLogger(__name__)


class Transport:

	"""
	The top-level controller: owns the pattern bank, the voices, the playback
	clock and the MIDI input router, and wires them together.

	Nothing here is a process-wide singleton.  Each transport builds its own
	components and tears them down in ``close()``.

	Typical use:

	```python
	async with thrashtracker.Transport() as transport:
		transport.toggle_step(track=0, step=0)
		await transport.start(bpm=120)
		...
		await transport.stop()
	```
	"""

	def __init__ (
		self,
		config: typing.Optional[thrashtracker.config.Config] = None,
		backend: typing.Optional[thrashtracker.synth.SynthBackend] = None,
		on_pattern_change: typing.Optional[thrashtracker.midi_router.PatternCallback] = None,
		midi_input: bool = True
	) -> None:

		"""
		Parameters:
			config: Settings; defaults if omitted.
			backend: Where voices come from.  When omitted a ``MidiSynthBackend``
				is opened on first use and closed by ``close()``.
			on_pattern_change: UI callback, called with the new pattern id.
			midi_input: Set False to run without opening any MIDI input.
		"""

		self.config = config or thrashtracker.config.Config()
		self.events = thrashtracker.event_emitter.EventEmitter()

		self.store = thrashtracker.pattern_store.PatternStore()
		self.allocator = thrashtracker.voice_allocator.VoiceAllocator(kinds=self.config.track_kinds)

		self.clock = thrashtracker.clock.PlaybackClock(
			self.store,
			self.allocator,
			pattern_id = self.config.pattern,
			bpm = self.config.bpm,
			events = self.events
		)

		self.router = thrashtracker.midi_router.MidiInputRouter(
			self.allocator,
			on_pattern_change = self._pattern_changed,
			pattern_id = self.config.pattern,
			device_name = self.config.input_device,
			pattern_cc = self.config.pattern_cc,
			note_duration_ms = self.config.note_duration_ms,
			queue_size = self.config.queue_size,
			poll_interval = self.config.poll_interval,
			events = self.events
		)

		self.on_pattern_change = on_pattern_change
		self.midi_input = midi_input

		self._backend = backend
		self._owns_backend = backend is None

	async def __aenter__ (self) -> "Transport":

		await self.open()
		return self

	async def __aexit__ (self, *exc_info: typing.Any) -> None:

		await self.close()

	@property
	def backend (self) -> typing.Optional[thrashtracker.synth.SynthBackend]:

		return self._backend

	@property
	def state (self) -> thrashtracker.clock.PlaybackState:

		"""Snapshot of playing/BPM/step/pattern for status display."""

		return self.clock.state

	@property
	def current_pattern (self) -> thrashtracker.pattern.Pattern:

		return self.store.get_pattern(self.clock.pattern_id)

	@property
	def midi_connected (self) -> bool:

		return self.router.connected

	@property
	def audio_ready (self) -> bool:

		return self.allocator.initialized

	# ------------------------------------------------------------------
	# Lifecycle
	# ------------------------------------------------------------------

	def initialize (self) -> None:

		"""Create the voices. Safe to call any number of times."""

		if self.allocator.initialized:
			return

		if self._backend is None:
			self._backend = thrashtracker.midi_backend.MidiSynthBackend(
				output_device_name = self.config.output_device,
				channels = self.config.channels
			)

		self.allocator.initialize(self._backend)

	async def open (self) -> None:

		"""Create the voices and start listening for MIDI input."""

		self.initialize()

		if self.midi_input:
			await self.router.open()

	async def close (self) -> None:

		"""Stop playback, release the MIDI input and dispose every voice."""

		await self.stop()
		await self.router.close()

		self.allocator.shutdown()

		if self._owns_backend and self._backend is not None:
			self._backend.close()
			self._backend = None

		logger.info("Transport closed")

	# ------------------------------------------------------------------
	# Transport control
	# ------------------------------------------------------------------

	async def start (self, bpm: typing.Optional[float] = None) -> None:

		"""Start playback from step 0. Raises ``InvalidArgument`` for a BPM outside 60-200."""

		if bpm is not None:
			thrashtracker.clock.validate_bpm(bpm)

		self.initialize()

		await self.clock.start(bpm)

	async def stop (self) -> None:

		"""Stop playback. No step fires after this returns."""

		await self.clock.stop()

	def set_bpm (self, bpm: float) -> None:

		"""Change tempo; while playing this applies from the next step interval."""

		self.clock.set_bpm(bpm)

	# ------------------------------------------------------------------
	# Patterns and tracks
	# ------------------------------------------------------------------

	def select_pattern (self, pattern_id: typing.Union[str, int]) -> bool:

		"""Switch the playing pattern. Returns False if it was already current."""

		return self.router.select_pattern(pattern_id)

	def _pattern_changed (self, pattern_id: str) -> None:

		self.clock.set_pattern(pattern_id)

		if self.on_pattern_change is not None:
			self.on_pattern_change(pattern_id)

	def toggle_step (self, track: int, step: int, pattern_id: typing.Optional[str] = None) -> bool:

		"""Flip a step of ``pattern_id`` (default: the current pattern)."""

		return self.store.toggle_step(pattern_id or self.clock.pattern_id, track, step)

	def set_step_note (self, track: int, step: int, note: typing.Optional[int], pattern_id: typing.Optional[str] = None) -> None:

		self.store.set_step_note(pattern_id or self.clock.pattern_id, track, step, note)

	def bind (self, track: int, kind: typing.Union[SynthKind, str]) -> None:

		"""Choose which kind of voice a track plays."""

		self.allocator.bind(track, kind)

	async def load_sample (self, track: int, source: str, root_note: int = 60) -> bool:

		"""Load a sample for a track's sampler voice (voices are created first if needed)."""

		self.initialize()

		return await self.allocator.load_sample(track, source, root_note)
