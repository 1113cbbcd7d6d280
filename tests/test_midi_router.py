import asyncio
import logging
import typing

import mido
import pytest

import thrashtracker.errors
import thrashtracker.midi_router
import thrashtracker.voice_allocator

import conftest
from thrashtracker.synth import SynthKind


def _make_router (allocator: thrashtracker.voice_allocator.VoiceAllocator, **kwargs: typing.Any) -> typing.Tuple[thrashtracker.midi_router.MidiInputRouter, typing.List[str]]:

	"""Router with a recording pattern callback and hot-plug polling off unless asked for."""

	changes: typing.List[str] = []
	kwargs.setdefault("poll_interval", None)

	router = thrashtracker.midi_router.MidiInputRouter(allocator, on_pattern_change=changes.append, **kwargs)

	return router, changes


# --- Mappings ---


@pytest.mark.parametrize("note, track", [(36, 0), (47, 0), (48, 1), (60, 2), (120, 7), (131, 7), (132, 0), (35, 7), (24, 7), (23, 6), (0, 5)])
def test_note_to_track (note: int, track: int) -> None:

	"""One octave per track from C2, wrapping in both directions."""

	assert thrashtracker.midi_router.note_to_track(note) == track


@pytest.mark.parametrize("value, pattern_id", [(0, "000x01"), (1, "000x02"), (9, "000x0A"), (127, "000x80"), (254, "000xFF")])
def test_cc_value_selects_value_plus_one (value: int, pattern_id: str) -> None:

	assert thrashtracker.midi_router.pattern_for_cc_value(value) == pattern_id


def test_cc_value_past_the_bank_is_rejected () -> None:

	with pytest.raises(thrashtracker.errors.PatternNotFound):
		thrashtracker.midi_router.pattern_for_cc_value(255)


@pytest.mark.parametrize("velocity, expected", [(0.0, 0), (0.5, 63), (1.0, 127), (1.5, 127), (-0.2, 0)])
def test_denormalize_velocity (velocity: float, expected: int) -> None:

	assert thrashtracker.midi_router.denormalize_velocity(velocity) == expected


def test_invalid_settings_are_rejected (allocator: thrashtracker.voice_allocator.VoiceAllocator) -> None:

	with pytest.raises(thrashtracker.errors.InvalidArgument):
		thrashtracker.midi_router.MidiInputRouter(allocator, pattern_cc=128)

	with pytest.raises(thrashtracker.errors.InvalidArgument):
		thrashtracker.midi_router.MidiInputRouter(allocator, queue_size=0)


# --- Live notes ---


def test_note_on_plays_the_fm_voice_for_500_ms (allocator: thrashtracker.voice_allocator.VoiceAllocator, backend: conftest.FakeBackend) -> None:

	"""Live notes use FM on the note's track, whatever the track is bound to."""

	allocator.bind(2, SynthKind.PERCUSSIVE)
	router, _ = _make_router(allocator)

	assert router.note_on(60, 100) == 2

	trigger = backend.triggers[0]

	assert trigger.track == 2
	assert trigger.kind is SynthKind.FM
	assert trigger.duration == pytest.approx(0.5)
	assert trigger.velocity == pytest.approx(100 / 127)
	assert trigger.pitch == pytest.approx(261.63, abs=0.01)


def test_note_on_normalized (allocator: thrashtracker.voice_allocator.VoiceAllocator, backend: conftest.FakeBackend) -> None:

	router, _ = _make_router(allocator)
	router.note_on_normalized(69, 0.5)

	assert backend.triggers[0].velocity == pytest.approx(63 / 127)
	assert backend.triggers[0].pitch == pytest.approx(440.0)


def test_note_off_and_zero_velocity_are_ignored (allocator: thrashtracker.voice_allocator.VoiceAllocator, backend: conftest.FakeBackend) -> None:

	"""Notes release themselves, so note-off messages do nothing."""

	router, _ = _make_router(allocator)

	router.handle_message(mido.Message('note_off', note=60, velocity=64))
	router.handle_message(mido.Message('note_on', note=60, velocity=0))
	router.handle_message(mido.Message('pitchwheel', pitch=100))

	assert backend.triggers == []


def test_note_on_before_voices_exist_is_silent () -> None:

	allocator = thrashtracker.voice_allocator.VoiceAllocator()
	router, _ = _make_router(allocator)

	assert router.note_on(40, 100) == 0


# --- Pattern selection ---


def test_control_change_selects_patterns (allocator: thrashtracker.voice_allocator.VoiceAllocator) -> None:

	router, changes = _make_router(allocator)

	assert router.control_change(20, 4) is True
	assert router.current_pattern_id == "000x05"
	assert changes == ["000x05"]


def test_repeated_cc_value_fires_once (allocator: thrashtracker.voice_allocator.VoiceAllocator) -> None:

	"""The callback only runs on an actual change."""

	router, changes = _make_router(allocator)

	router.control_change(1, 7)
	router.control_change(1, 7)
	router.control_change(2, 7)

	assert changes == ["000x08"]


def test_cc_for_the_current_pattern_is_not_a_change (allocator: thrashtracker.voice_allocator.VoiceAllocator) -> None:

	router, changes = _make_router(allocator)

	assert router.control_change(1, 0) is False
	assert changes == []


def test_pattern_cc_filters_other_controllers (allocator: thrashtracker.voice_allocator.VoiceAllocator) -> None:

	router, changes = _make_router(allocator, pattern_cc=16)

	assert router.control_change(7, 3) is False
	assert router.control_change(16, 3) is True
	assert changes == ["000x04"]


def test_failing_callback_is_logged (allocator: thrashtracker.voice_allocator.VoiceAllocator, caplog: pytest.LogCaptureFixture) -> None:

	"""A broken callback does not undo the switch."""

	def broken (pattern_id: str) -> None:
		raise RuntimeError("ui gone")

	router = thrashtracker.midi_router.MidiInputRouter(allocator, on_pattern_change=broken, poll_interval=None)

	with caplog.at_level(logging.ERROR):
		assert router.control_change(1, 2) is True

	assert router.current_pattern_id == "000x03"
	assert "000x03" in caplog.text


def test_select_pattern_uses_the_same_change_rule (allocator: thrashtracker.voice_allocator.VoiceAllocator) -> None:

	router, changes = _make_router(allocator)
	events: list = []
	router.events.on("pattern_change", events.append)

	assert router.select_pattern("000x0a") is True
	assert router.select_pattern(10) is False
	assert changes == ["000x0A"]
	assert events == ["000x0A"]

	with pytest.raises(thrashtracker.errors.PatternNotFound):
		router.select_pattern("000x00")


# --- Devices ---


@pytest.mark.asyncio
async def test_no_device_leaves_the_router_inert (allocator: thrashtracker.voice_allocator.VoiceAllocator, no_midi_devices: None, caplog: pytest.LogCaptureFixture) -> None:

	"""Without an input the router reports disconnected and does not fail."""

	router, _ = _make_router(allocator)

	with caplog.at_level(logging.WARNING):
		await router.open()

	assert router.connected is False
	assert "No MIDI inputs found" in caplog.text

	await router.close()


@pytest.mark.asyncio
async def test_open_binds_the_first_input (allocator: thrashtracker.voice_allocator.VoiceAllocator, patch_midi: None) -> None:

	conftest.input_names[:] = ["Pads", "Keys"]

	router, _ = _make_router(allocator)
	connected: list = []
	router.events.on("connected", connected.append)

	await router.open()

	assert router.connected is True
	assert router.device_name == "Pads"
	assert connected == ["Pads"]

	await router.close()

	assert conftest.opened_inputs[0].closed is True
	assert router.connected is False


@pytest.mark.asyncio
async def test_missing_preferred_device_falls_back (allocator: thrashtracker.voice_allocator.VoiceAllocator, patch_midi: None) -> None:

	router, _ = _make_router(allocator, device_name="Launchpad")

	await router.open()

	assert router.device_name == "Dummy MIDI"

	await router.close()


@pytest.mark.asyncio
async def test_messages_flow_from_the_midi_thread (allocator: thrashtracker.voice_allocator.VoiceAllocator, backend: conftest.FakeBackend, patch_midi: None) -> None:

	"""Messages from the port's callback thread are routed on the event loop."""

	router, changes = _make_router(allocator)

	await router.open()

	port = conftest.opened_inputs[0]

	await asyncio.to_thread(port.inject, mido.Message('note_on', note=50, velocity=90))
	await asyncio.to_thread(port.inject, mido.Message('control_change', control=1, value=2))
	await asyncio.sleep(0.01)

	assert [t.track for t in backend.triggers] == [1]
	assert changes == ["000x03"]

	await router.close()


@pytest.mark.asyncio
async def test_full_queue_drops_messages (allocator: thrashtracker.voice_allocator.VoiceAllocator, backend: conftest.FakeBackend, patch_midi: None, caplog: pytest.LogCaptureFixture) -> None:

	router, _ = _make_router(allocator, queue_size=1)

	await router.open()

	with caplog.at_level(logging.WARNING):
		router._enqueue(mido.Message('note_on', note=40, velocity=90))
		router._enqueue(mido.Message('note_on', note=41, velocity=90))

	await asyncio.sleep(0.01)

	assert len(backend.triggers) == 1
	assert "queue full" in caplog.text

	await router.close()


@pytest.mark.asyncio
async def test_disconnect_and_reconnect (allocator: thrashtracker.voice_allocator.VoiceAllocator, patch_midi: None) -> None:

	"""Losing the bound device disconnects; the next device to appear is bound."""

	router, _ = _make_router(allocator)
	events: list = []
	router.events.on("connected", lambda name: events.append(("connected", name)))
	router.events.on("disconnected", lambda name: events.append(("disconnected", name)))

	await router.open()

	router.device_disconnected("Other")

	assert router.connected is True

	router.device_disconnected("Dummy MIDI")

	assert router.connected is False

	conftest.input_names[:] = ["Keys"]
	router.device_connected("Keys")

	assert router.device_name == "Keys"
	assert events == [("connected", "Dummy MIDI"), ("disconnected", "Dummy MIDI"), ("connected", "Keys")]

	await router.close()


@pytest.mark.asyncio
async def test_second_device_does_not_replace_the_first (allocator: thrashtracker.voice_allocator.VoiceAllocator, patch_midi: None) -> None:

	router, _ = _make_router(allocator)

	await router.open()

	conftest.input_names.append("Keys")
	router.device_connected("Keys")

	assert router.device_name == "Dummy MIDI"

	await router.close()


@pytest.mark.asyncio
async def test_watcher_notices_hot_plugging (allocator: thrashtracker.voice_allocator.VoiceAllocator, no_midi_devices: None) -> None:

	router, _ = _make_router(allocator, poll_interval=0.01)

	await router.open()

	assert router.connected is False

	conftest.input_names[:] = ["Keys"]
	await asyncio.sleep(0.05)

	assert router.device_name == "Keys"

	conftest.input_names.clear()
	await asyncio.sleep(0.05)

	assert router.connected is False

	await router.close()
