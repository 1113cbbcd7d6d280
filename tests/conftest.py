import dataclasses
import typing

import asyncio
import mido
import pytest

import thrashtracker.synth
import thrashtracker.voice_allocator

from thrashtracker.synth import SynthKind


class FakeMidiOut:

	"""MIDI output stub that records what was sent."""

	def __init__ (self, name: str = "Dummy MIDI") -> None:

		self.name = name
		self.sent: typing.List[mido.Message] = []
		self.closed = False

	def send (self, message: mido.Message) -> None:

		"""Record outgoing MIDI messages."""

		self.sent.append(message)

	def close (self) -> None:

		self.closed = True


class FakeMidiIn:

	"""Minimal MIDI input stub for tests."""

	def __init__ (self, name: str, callback: typing.Optional[typing.Callable] = None) -> None:

		"""Store the callback for injecting test messages."""

		self.name = name
		self.callback = callback
		self.closed = False

	def close (self) -> None:

		self.closed = True

	def inject (self, message: mido.Message) -> None:

		"""Simulate receiving a MIDI message by calling the stored callback."""

		if self.callback is not None:
			self.callback(message)


# Tests edit these lists to simulate devices appearing and disappearing.
input_names: typing.List[str] = []
output_names: typing.List[str] = []

# The most recently opened fakes, so tests can inject messages or inspect output.
opened_inputs: typing.List[FakeMidiIn] = []
opened_outputs: typing.List[FakeMidiOut] = []


def _fake_get_output_names () -> typing.List[str]:

	return list(output_names)


def _fake_open_output (name: str) -> FakeMidiOut:

	fake = FakeMidiOut(name)
	opened_outputs.append(fake)
	return fake


def _fake_get_input_names () -> typing.List[str]:

	return list(input_names)


def _fake_open_input (name: str, callback: typing.Optional[typing.Callable] = None) -> FakeMidiIn:

	fake = FakeMidiIn(name, callback=callback)
	opened_inputs.append(fake)
	return fake


@pytest.fixture
def patch_midi (monkeypatch: pytest.MonkeyPatch) -> None:

	"""Patch mido to use fake MIDI ports, with one input and one output available."""

	input_names[:] = ["Dummy MIDI"]
	output_names[:] = ["Dummy MIDI"]
	opened_inputs.clear()
	opened_outputs.clear()

	monkeypatch.setattr(mido, "get_output_names", _fake_get_output_names)
	monkeypatch.setattr(mido, "open_output", _fake_open_output)
	monkeypatch.setattr(mido, "get_input_names", _fake_get_input_names)
	monkeypatch.setattr(mido, "open_input", _fake_open_input)


@pytest.fixture
def no_midi_devices (patch_midi: None) -> None:

	"""Patched mido with no devices at all."""

	input_names.clear()
	output_names.clear()


@dataclasses.dataclass
class Trigger:

	"""One call to a fake voice's ``trigger_attack_release``."""

	track: int
	kind: SynthKind
	voice: "FakeVoice"
	pitch: typing.Optional[float]
	duration: float
	velocity: float


class FakeVoice:

	"""Voice handle that records triggers instead of making sound."""

	def __init__ (self, backend: "FakeBackend", kind: SynthKind, track: int, params: thrashtracker.synth.VoiceParams) -> None:

		self.backend = backend
		self.kind = kind
		self.track = track
		self.params = params
		self.disposed = False
		self.fail = False

	def __repr__ (self) -> str:

		return f"FakeVoice({self.kind.value}, track={self.track}, id={id(self):x})"

	def trigger_attack_release (self, pitch: typing.Optional[float], duration: float, velocity: float) -> None:

		if self.fail:
			raise RuntimeError("voice exploded")

		self.backend.triggers.append(Trigger(self.track, self.kind, self, pitch, duration, velocity))

	def dispose (self) -> None:

		self.disposed = True


class FakeBackend:

	"""Synthesis back-end for tests.

	``load_gate`` can be set to an ``asyncio.Event`` to hold sample loads
	until the test releases them; ``load_error`` makes loads fail.
	"""

	def __init__ (self) -> None:

		self.voices: typing.List[FakeVoice] = []
		self.triggers: typing.List[Trigger] = []
		self.closed = False
		self.load_gate: typing.Optional[asyncio.Event] = None
		self.load_error: typing.Optional[Exception] = None

	def create (self, kind: SynthKind, track: int, params: thrashtracker.synth.VoiceParams) -> FakeVoice:

		voice = FakeVoice(self, kind, track, params)
		self.voices.append(voice)
		return voice

	async def load_sample (self, track: int, params: thrashtracker.synth.SamplerParams) -> FakeVoice:

		if self.load_gate is not None:
			await self.load_gate.wait()

		if self.load_error is not None:
			raise self.load_error

		return self.create(SynthKind.SAMPLER, track, params)

	def close (self) -> None:

		self.closed = True

	def triggers_for (self, track: int) -> typing.List[Trigger]:

		return [t for t in self.triggers if t.track == track]


@pytest.fixture
def backend () -> FakeBackend:

	return FakeBackend()


@pytest.fixture
def allocator (backend: FakeBackend) -> thrashtracker.voice_allocator.VoiceAllocator:

	"""A voice allocator initialized on the fake back-end, all tracks FM."""

	allocator = thrashtracker.voice_allocator.VoiceAllocator()
	allocator.initialize(backend)
	return allocator
