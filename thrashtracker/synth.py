"""Synthesis back-end interface.

The engine never synthesizes audio itself.  It treats a synthesis voice as an
opaque handle that can be triggered with a pitch, a duration and a velocity,
and disposed of.  Back-ends (see ``thrashtracker.midi_backend``) create those
handles for one of four closed kinds:

- ``FM`` - two-operator FM voice, 4 voices per track
- ``SUBTRACTIVE`` - oscillator into a filter, 4 voices per track
- ``PERCUSSIVE`` - monophonic drum voice; a pitched membrane on tracks 0-3 and
  filtered noise (which ignores pitch) on tracks 4-7
- ``SAMPLER`` - monophonic sample player keyed by root note, loaded asynchronously

Dispatch is always on the ``SynthKind`` tag and on the flags of the voice
parameters, never on the concrete type of a handle.

Every trigger is self-terminating: a voice releases on its own once its
duration has elapsed.  There is no way to hold a note indefinitely.
"""

import dataclasses
import enum
import logging
import math
import typing

import thrashtracker.constants


logger = logging.getLogger(__name__)


class SynthKind (enum.Enum):

	"""The four kinds of synthesis voice a track can be bound to."""

	FM = "fm"
	SUBTRACTIVE = "subtractive"
	PERCUSSIVE = "percussive"
	SAMPLER = "sampler"

	@classmethod
	def parse (cls, value: typing.Union[str, "SynthKind"]) -> "SynthKind":

		"""Accept a kind or its name (``"fm"``, ``"FM"``, ``"drum"`` ...)."""

		if isinstance(value, cls):
			return value

		name = str(value).strip().lower()

		# Legacy name for the percussive kind.
		if name == "drum":
			return cls.PERCUSSIVE

		try:
			return cls(name)
		except ValueError:
			raise ValueError(f"Unknown synth kind {value!r} (expected one of: {', '.join(k.value for k in cls)})") from None


POLYPHONY: typing.Dict[SynthKind, int] = {
	SynthKind.FM:			thrashtracker.constants.MELODIC_POLYPHONY,
	SynthKind.SUBTRACTIVE:	thrashtracker.constants.MELODIC_POLYPHONY,
	SynthKind.PERCUSSIVE:	thrashtracker.constants.MONOPHONIC,
	SynthKind.SAMPLER:		thrashtracker.constants.MONOPHONIC,
}


def note_to_frequency (note: float) -> float:

	"""
	Equal-tempered frequency of a MIDI note, referenced to A4 (69) = 440 Hz.
	"""

	return thrashtracker.constants.A4_FREQUENCY * 2.0 ** ((note - thrashtracker.constants.A4_NOTE) / 12.0)


def frequency_to_note (frequency: float) -> int:

	"""Nearest MIDI note to a frequency, clamped to 0-127."""

	if frequency <= 0:
		raise ValueError("Frequency must be positive")

	note = round(thrashtracker.constants.A4_NOTE + 12.0 * math.log2(frequency / thrashtracker.constants.A4_FREQUENCY))

	return max(thrashtracker.constants.MIN_NOTE, min(thrashtracker.constants.MAX_NOTE, note))


# ---------------------------------------------------------------------------
# Voice parameters
# ---------------------------------------------------------------------------

@dataclasses.dataclass(frozen=True)
class Envelope:

	"""ADSR envelope. Times in seconds, sustain as a 0-1 level."""

	attack: float
	decay: float
	sustain: float
	release: float


@dataclasses.dataclass(frozen=True)
class Filter:

	type: str			# 'lowpass' or 'highpass'
	frequency: float
	q: float = 1.0


@dataclasses.dataclass(frozen=True)
class FmParams:

	"""Two-operator FM voice."""

	harmonicity: float = 3.0
	modulation_index: float = 10.0
	detune: float = 0.0
	oscillator: str = "sine"
	modulation: str = "square"
	envelope: Envelope = Envelope(attack=0.01, decay=0.01, sustain=1.0, release=0.5)
	modulation_envelope: Envelope = Envelope(attack=0.5, decay=0.0, sustain=1.0, release=0.5)

	accepts_pitch: typing.ClassVar[bool] = True


@dataclasses.dataclass(frozen=True)
class SubtractiveParams:

	"""Single oscillator through a filter."""

	oscillator: str = "sawtooth"
	envelope: Envelope = Envelope(attack=0.1, decay=0.2, sustain=0.5, release=0.8)
	filter: Filter = Filter(type="lowpass", frequency=1000.0, q=1.0)

	accepts_pitch: typing.ClassVar[bool] = True


@dataclasses.dataclass(frozen=True)
class PercussiveParams:

	"""A pitched membrane (kick/tom) or a filtered noise burst (snare/hat).

	Noise voices have a fixed spectral shape and are triggered without a pitch.
	"""

	source: str = "membrane"	# 'membrane' or 'noise'
	oscillator: str = "sine"
	pitch_decay: float = 0.05
	octaves: float = 10.0
	envelope: Envelope = Envelope(attack=0.001, decay=0.4, sustain=0.01, release=1.4)
	filter: typing.Optional[Filter] = None

	@property
	def accepts_pitch (self) -> bool:

		return self.source != "noise"

	@classmethod
	def membrane (cls) -> "PercussiveParams":

		return cls()

	@classmethod
	def noise (cls) -> "PercussiveParams":

		return cls(
			source = "noise",
			oscillator = "white",
			pitch_decay = 0.0,
			octaves = 0.0,
			envelope = Envelope(attack=0.005, decay=0.1, sustain=0.3, release=0.4),
			filter = Filter(type="highpass", frequency=2000.0)
		)


@dataclasses.dataclass(frozen=True)
class SamplerParams:

	"""A sample keyed by root note. ``source`` is ``None`` until a sample is loaded."""

	source: typing.Optional[str] = None
	root_note: int = thrashtracker.constants.DEFAULT_HIT_NOTE

	accepts_pitch: typing.ClassVar[bool] = True


VoiceParams = typing.Union[FmParams, SubtractiveParams, PercussiveParams, SamplerParams]

_PARAM_TYPES: typing.Dict[SynthKind, type] = {
	SynthKind.FM:			FmParams,
	SynthKind.SUBTRACTIVE:	SubtractiveParams,
	SynthKind.PERCUSSIVE:	PercussiveParams,
	SynthKind.SAMPLER:		SamplerParams,
}


def default_params (kind: SynthKind, track: int) -> VoiceParams:

	"""The factory voice settings for a kind on a track.

	Percussive voices are membranes on tracks 0-3 and noise on tracks 4-7.
	"""

	if kind is SynthKind.PERCUSSIVE:
		return PercussiveParams.membrane() if track < 4 else PercussiveParams.noise()

	return typing.cast(VoiceParams, _PARAM_TYPES[kind]())


def check_params (kind: SynthKind, params: VoiceParams) -> None:

	"""Raise ``ValueError`` if ``params`` are not the parameter type for ``kind``."""

	expected = _PARAM_TYPES[kind]

	if type(params) is not expected:
		raise ValueError(f"{kind.value} voices take {expected.__name__}, got {type(params).__name__}")


def uses_note_number (kind: SynthKind) -> bool:

	"""Samplers are triggered with the MIDI note number rather than a frequency."""

	return kind is SynthKind.SAMPLER


# ---------------------------------------------------------------------------
# Back-end interface
# ---------------------------------------------------------------------------

@typing.runtime_checkable
class VoiceHandle (typing.Protocol):

	"""
	One synthesis voice, owned by the voice allocator.
	"""

	def trigger_attack_release (self, pitch: typing.Optional[float], duration: float, velocity: float) -> None:

		"""Start a note and release it ``duration`` seconds later.

		Parameters:
			pitch: Frequency in Hz, a MIDI note number for samplers, or ``None``
				for voices that do not accept pitch.
			duration: Seconds until the voice releases itself.
			velocity: Attack strength, 0.0-1.0.

		Retriggering a voice that is still sounding cuts the old note off.
		"""

		...

	def dispose (self) -> None:

		"""Release any resources. The handle is not triggered again."""

		...


@typing.runtime_checkable
class SynthBackend (typing.Protocol):

	"""
	Creates voice handles. Implemented by ``MidiSynthBackend`` and by test fakes.
	"""

	def create (self, kind: SynthKind, track: int, params: VoiceParams) -> VoiceHandle:

		...

	async def load_sample (self, track: int, params: SamplerParams) -> VoiceHandle:

		"""Prepare a sampler voice for ``params.source``. May take a while."""

		...

	def close (self) -> None:

		...


class SilentVoice:

	"""A voice that makes no sound.

	Stands in for a sampler slot until its sample has loaded, so the allocator
	never holds an empty slot.
	"""

	def __init__ (self, reason: str = "") -> None:

		self.reason = reason

	def __repr__ (self) -> str:

		return f"SilentVoice({self.reason!r})"

	def trigger_attack_release (self, pitch: typing.Optional[float], duration: float, velocity: float) -> None:

		logger.debug(f"Dropped trigger on silent voice ({self.reason})")

	def dispose (self) -> None:

		return None
