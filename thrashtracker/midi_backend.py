"""A synthesis back-end that plays voices as MIDI notes.

ThrashTracker does not synthesize audio in-process.  ``MidiSynthBackend``
turns every voice into a note on a MIDI output port, one channel per track,
so hardware or software instruments do the sound generation:

- FM, subtractive and membrane voices send the nearest MIDI note to the
  requested frequency.
- Noise voices ignore pitch and always send ``NOISE_NOTE``.
- Sampler voices receive the MIDI note number directly.

Each voice schedules its own note-off after the trigger duration.  Triggering
a voice that is still sounding first sends the note-off for the old note, which
is how a stolen voice is cut off.

Voices of one track share a channel, so two of them can hold the same note.
The back-end counts how many voices hold each (channel, note) and only sends
the note-off when the last of them lets go.
"""

import asyncio
import logging
import pathlib
import threading
import typing

import mido

import thrashtracker.constants
import thrashtracker.midi_utils
import thrashtracker.synth

from thrashtracker.synth import SynthKind


logger = logging.getLogger(__name__)

# GM acoustic snare: a sensible target for the noise voices on most drum maps.
NOISE_NOTE = 38

CC_ALL_SOUND_OFF = 120
CC_ALL_NOTES_OFF = 123


class MidiVoice:

	"""One voice: a channel, and at most one sounding note at a time."""

	def __init__ (
		self,
		backend: "MidiSynthBackend",
		kind: SynthKind,
		channel: int,
		params: thrashtracker.synth.VoiceParams
	) -> None:

		self.backend = backend
		self.kind = kind
		self.channel = channel
		self.params = params

		self._lock = threading.Lock()
		self._sounding: typing.Optional[int] = None
		self._release: typing.Optional[typing.Any] = None
		self._disposed = False

	def __repr__ (self) -> str:

		return f"MidiVoice({self.kind.value}, channel={self.channel})"

	def _resolve_note (self, pitch: typing.Optional[float]) -> int:

		if pitch is None or not self.params.accepts_pitch:
			return NOISE_NOTE

		if thrashtracker.synth.uses_note_number(self.kind):
			return max(thrashtracker.constants.MIN_NOTE, min(thrashtracker.constants.MAX_NOTE, int(round(pitch))))

		return thrashtracker.synth.frequency_to_note(pitch)

	def trigger_attack_release (self, pitch: typing.Optional[float], duration: float, velocity: float) -> None:

		note = self._resolve_note(pitch)
		midi_velocity = max(1, min(thrashtracker.constants.MAX_VELOCITY, int(round(velocity * thrashtracker.constants.MAX_VELOCITY))))

		with self._lock:

			if self._disposed:
				return

			self._cut_off()

			# A zero velocity still steals the voice, but sounds nothing.
			if velocity <= 0:
				return

			self.backend.note_on(self.channel, note, midi_velocity)
			self._sounding = note
			self._release = self.backend.schedule(duration, lambda: self._release_note(note))

	def _release_note (self, note: int) -> None:

		with self._lock:
			if self._sounding == note:
				self.backend.note_off(self.channel, note)
				self._sounding = None
				self._release = None

	def _cut_off (self) -> None:

		"""Silence the current note now. Caller holds the voice lock."""

		if self._release is not None:
			self._release.cancel()
			self._release = None

		if self._sounding is not None:
			self.backend.note_off(self.channel, self._sounding)
			self._sounding = None

	def dispose (self) -> None:

		with self._lock:
			self._cut_off()
			self._disposed = True


class MidiSynthBackend:

	"""
	Creates ``MidiVoice`` handles that all share one MIDI output port.
	"""

	def __init__ (
		self,
		output_device_name: typing.Optional[str] = None,
		channels: typing.Optional[typing.Sequence[int]] = None
	) -> None:

		"""Open the output port.

		Parameters:
			output_device_name: Port to open; ``None`` picks the first available.
			channels: MIDI channel (0-15) per track; defaults to track ``n`` on channel ``n``.

		Without an output port the back-end still creates voices; they are
		silent and a warning is logged once.
		"""

		if channels is None:
			channels = list(range(thrashtracker.constants.NUM_TRACKS))

		if len(channels) != thrashtracker.constants.NUM_TRACKS or not all(0 <= c <= 15 for c in channels):
			raise ValueError("channels must list one MIDI channel (0-15) per track")

		self.channels = list(channels)
		self.output_device_name, self.midi_out = thrashtracker.midi_utils.select_output_device(output_device_name)

		if self.midi_out is None:
			logger.warning("No MIDI output - voices will be silent")

		self._timers: typing.Set[threading.Timer] = set()
		self._timers_lock = threading.Lock()

		# (channel, note) -> number of voices currently holding it
		self._held: typing.Dict[typing.Tuple[int, int], int] = {}
		self._held_lock = threading.Lock()

	def create (self, kind: SynthKind, track: int, params: thrashtracker.synth.VoiceParams) -> MidiVoice:

		thrashtracker.synth.check_params(kind, params)

		return MidiVoice(self, kind, self.channels[track], params)

	async def load_sample (self, track: int, params: thrashtracker.synth.SamplerParams) -> MidiVoice:

		"""Check the sample file exists and return a sampler voice for it.

		The sample itself is played by the instrument on the receiving end;
		this only guards against typos in a configured path.
		"""

		if params.source is None:
			raise ValueError("Sampler needs a source")

		exists = await asyncio.to_thread(pathlib.Path(params.source).is_file)

		if not exists:
			raise FileNotFoundError(params.source)

		return self.create(SynthKind.SAMPLER, track, params)

	def send (self, message: mido.Message) -> None:

		if self.midi_out is None:
			return

		try:
			self.midi_out.send(message)
		except Exception:
			logger.exception("MIDI send failed (device may be disconnected)")

	def note_on (self, channel: int, note: int, velocity: int) -> None:

		"""Start a note for one voice; the note stays held until every holder releases it."""

		with self._held_lock:
			self._held[(channel, note)] = self._held.get((channel, note), 0) + 1
			self.send(mido.Message('note_on', channel=channel, note=note, velocity=velocity))

	def note_off (self, channel: int, note: int) -> None:

		"""Release one voice's hold on a note. Sends the note-off when no voice holds it any more."""

		with self._held_lock:

			count = self._held.get((channel, note), 0) - 1

			if count > 0:
				self._held[(channel, note)] = count
				return

			self._held.pop((channel, note), None)
			self.send(mido.Message('note_off', channel=channel, note=note, velocity=0))

	def schedule (self, delay: float, callback: typing.Callable[[], None]) -> typing.Any:

		"""Run ``callback`` after ``delay`` seconds. Returns a handle with ``cancel()``.

		Uses the running event loop when called from it, and a timer thread
		otherwise (e.g. a trigger from a UI thread).
		"""

		try:
			loop = asyncio.get_running_loop()
		except RuntimeError:
			loop = None

		if loop is not None:
			return loop.call_later(delay, callback)

		timer = threading.Timer(delay, self._run_timer, args=(callback,))
		timer.daemon = True

		with self._timers_lock:
			self._timers.add(timer)

		timer.start()

		return timer

	def _run_timer (self, callback: typing.Callable[[], None]) -> None:

		try:
			callback()
		finally:
			with self._timers_lock:
				self._timers = {t for t in self._timers if t.is_alive() and t is not threading.current_thread()}

	def panic (self) -> None:

		"""Send All Notes Off and All Sound Off on every track channel."""

		with self._held_lock:
			self._held.clear()

		for channel in sorted(set(self.channels)):
			self.send(mido.Message('control_change', channel=channel, control=CC_ALL_NOTES_OFF, value=0))
			self.send(mido.Message('control_change', channel=channel, control=CC_ALL_SOUND_OFF, value=0))

	def close (self) -> None:

		with self._timers_lock:
			timers = list(self._timers)
			self._timers.clear()

		for timer in timers:
			timer.cancel()

		if self.midi_out is None:
			return

		logger.info("Panic: sending all notes off.")
		self.panic()

		try:
			self.midi_out.close()
		except Exception:
			logger.exception("Failed to close MIDI output")

		self.midi_out = None
