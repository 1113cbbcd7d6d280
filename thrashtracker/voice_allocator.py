import logging
import threading
import typing

import thrashtracker.constants
import thrashtracker.pattern
import thrashtracker.synth

from thrashtracker.synth import SynthKind


logger = logging.getLogger(__name__)


class VoicePool:

	"""
	A fixed ring of voice handles with a rotating cursor.

	The cursor always equals ``trigger_count % size``: allocation hands out the
	slot under the cursor and moves on, so when every voice is busy the oldest
	one is stolen and retriggered.
	"""

	def __init__ (self, kind: SynthKind, params: thrashtracker.synth.VoiceParams, voices: typing.List[thrashtracker.synth.VoiceHandle]) -> None:

		if not voices:
			raise ValueError("A voice pool needs at least one voice")

		self.kind = kind
		self.params = params
		self.voices = voices
		self.cursor = 0
		self.trigger_count = 0

	@property
	def size (self) -> int:

		return len(self.voices)

	def next_voice (self) -> thrashtracker.synth.VoiceHandle:

		"""Return the voice under the cursor and advance. Caller holds the allocator lock."""

		voice = self.voices[self.cursor]
		self.trigger_count += 1
		self.cursor = self.trigger_count % self.size

		return voice

	def dispose (self) -> None:

		for voice in self.voices:
			try:
				voice.dispose()
			except Exception:
				logger.exception(f"Failed to dispose {self.kind.value} voice")


class VoiceAllocator:

	"""
	Owns every synthesis voice and hands them out round-robin, per track.

	On ``initialize()`` each of the 8 tracks gets one pool per synth kind:
	4 voices for FM and subtractive, 1 for percussive and sampler.  A track is
	bound to one kind at a time; rebinding leaves the other pools allocated so
	switching back is instant.

	Calls made before ``initialize()`` (or after ``shutdown()``) are silent
	no-ops: audio start is often gated behind a user gesture, so early triggers
	are expected.
	"""

	def __init__ (self, kinds: typing.Optional[typing.Sequence[SynthKind]] = None) -> None:

		"""
		Parameters:
			kinds: The initial kind for each track (default: FM everywhere).
		"""

		if kinds is None:
			kinds = [SynthKind.FM] * thrashtracker.constants.NUM_TRACKS

		if len(kinds) != thrashtracker.constants.NUM_TRACKS:
			raise ValueError(f"Expected {thrashtracker.constants.NUM_TRACKS} track kinds, got {len(kinds)}")

		self._lock = threading.Lock()
		self._backend: typing.Optional[thrashtracker.synth.SynthBackend] = None
		self._pools: typing.Dict[typing.Tuple[int, SynthKind], VoicePool] = {}
		self._bindings: typing.List[SynthKind] = [SynthKind.parse(kind) for kind in kinds]

		# Bumped whenever a track's sampler slot is replaced, so a slow load
		# cannot overwrite a newer one.
		self._sample_generation: typing.Dict[int, int] = {}

	@property
	def initialized (self) -> bool:

		return self._backend is not None

	def initialize (self, backend: thrashtracker.synth.SynthBackend) -> None:

		"""Create every pool on ``backend``. Calling it again is a no-op."""

		if self._backend is not None:
			return

		pools: typing.Dict[typing.Tuple[int, SynthKind], VoicePool] = {}

		for track in range(thrashtracker.constants.NUM_TRACKS):
			for kind in SynthKind:
				pools[(track, kind)] = self._build_pool(backend, track, kind, thrashtracker.synth.default_params(kind, track))

		with self._lock:
			self._pools = pools
			self._backend = backend

		logger.info(f"Voice allocator initialized ({sum(pool.size for pool in pools.values())} voices)")

	def shutdown (self) -> None:

		"""Dispose every voice. Later triggers become no-ops until re-initialized."""

		with self._lock:
			pools = list(self._pools.values())
			self._pools = {}
			self._backend = None

		if not pools:
			return

		for pool in pools:
			pool.dispose()

		logger.info("Voice allocator shut down")

	def _build_pool (self, backend: thrashtracker.synth.SynthBackend, track: int, kind: SynthKind, params: thrashtracker.synth.VoiceParams) -> VoicePool:

		if kind is SynthKind.SAMPLER and typing.cast(thrashtracker.synth.SamplerParams, params).source is None:
			voices: typing.List[thrashtracker.synth.VoiceHandle] = [thrashtracker.synth.SilentVoice(f"track {track}: no sample loaded")]
		else:
			voices = [backend.create(kind, track, params) for _ in range(thrashtracker.synth.POLYPHONY[kind])]

		return VoicePool(kind, params, voices)

	def bind (self, track: int, kind: typing.Union[SynthKind, str]) -> None:

		"""Switch which kind of voice ``track`` plays."""

		thrashtracker.pattern.validate_track(track)
		kind = SynthKind.parse(kind)

		with self._lock:
			previous = self._bindings[track]
			self._bindings[track] = kind

		if previous is not kind:
			logger.info(f"Track {track} bound to {kind.value}")

	def kind (self, track: int) -> SynthKind:

		"""The kind currently bound to ``track``."""

		return self._bindings[thrashtracker.pattern.validate_track(track)]

	def pool (self, track: int, kind: typing.Optional[SynthKind] = None) -> typing.Optional[VoicePool]:

		"""The pool for a track (its bound kind unless given). ``None`` before initialization."""

		thrashtracker.pattern.validate_track(track)

		with self._lock:
			return self._pools.get((track, kind or self._bindings[track]))

	def allocate (self, track: int, kind: typing.Optional[SynthKind] = None) -> typing.Optional[thrashtracker.synth.VoiceHandle]:

		"""Take the next voice for ``track`` round-robin, stealing the oldest.

		Returns ``None`` before initialization.
		"""

		thrashtracker.pattern.validate_track(track)

		with self._lock:

			pool = self._pools.get((track, kind or self._bindings[track]))

			if pool is None:
				return None

			return pool.next_voice()

	def trigger (
		self,
		track: int,
		pitch: typing.Optional[int],
		velocity: int,
		duration_ms: float,
		kind: typing.Optional[SynthKind] = None
	) -> bool:

		"""Play a note on the next voice of a track.

		Parameters:
			track: Track 0-7.
			pitch: MIDI note number. ``None`` plays ``DEFAULT_HIT_NOTE``.
			velocity: 0-127, passed to the voice as ``velocity / 127``.
			duration_ms: Time until the voice releases itself.
			kind: Play this kind's pool instead of the track's bound kind.

		Returns:
			True if a voice was triggered.  Failures inside the voice are logged
			and reported as False; they never raise.
		"""

		if self._backend is None:
			logger.debug(f"Trigger on track {track} ignored: voices not initialized")
			return False

		note = pitch if pitch is not None else thrashtracker.constants.DEFAULT_HIT_NOTE
		kind = kind or self.kind(track)

		with self._lock:

			pool = self._pools.get((track, kind))

			if pool is None:
				return False

			voice = pool.next_voice()
			params = pool.params

		if not params.accepts_pitch:
			voice_pitch: typing.Optional[float] = None
		elif thrashtracker.synth.uses_note_number(kind):
			voice_pitch = float(note)
		else:
			voice_pitch = thrashtracker.synth.note_to_frequency(note)

		normalized_velocity = velocity / thrashtracker.constants.MAX_VELOCITY

		try:
			voice.trigger_attack_release(voice_pitch, duration_ms / 1000.0, normalized_velocity)
		except Exception:
			logger.exception(f"Trigger failed on track {track} ({kind.value})")
			return False

		logger.debug(f"Track {track} {kind.value}: note {note} vel {velocity} for {duration_ms:.0f} ms")

		return True

	def set_voice_params (self, track: int, kind: typing.Union[SynthKind, str], params: thrashtracker.synth.VoiceParams) -> None:

		"""Rebuild one pool with new voice settings, disposing the old voices.

		Raises ``ValueError`` if ``params`` do not match ``kind``.  Before
		initialization this is a no-op.
		"""

		thrashtracker.pattern.validate_track(track)
		kind = SynthKind.parse(kind)
		thrashtracker.synth.check_params(kind, params)

		backend = self._backend

		if backend is None:
			return

		new_pool = self._build_pool(backend, track, kind, params)

		with self._lock:
			old_pool = self._pools.get((track, kind))
			self._pools[(track, kind)] = new_pool

			if kind is SynthKind.SAMPLER:
				self._sample_generation[track] = self._sample_generation.get(track, 0) + 1

		if old_pool is not None:
			old_pool.dispose()

		logger.info(f"Track {track} {kind.value} voice settings updated")

	async def load_sample (self, track: int, source: str, root_note: int = thrashtracker.constants.DEFAULT_HIT_NOTE) -> bool:

		"""Load a sample into a track's sampler slot.

		The slot keeps its current voice (silent until a first load) until the
		back-end has finished; the new voice is then swapped in under the lock.
		Triggers arriving during the load are dropped, not queued.  If another
		load for the same track finishes first, or the allocator is shut down
		meanwhile, the result is discarded.

		Returns:
			True if the new sample is now active.  Load errors are logged.
		"""

		thrashtracker.pattern.validate_track(track)
		thrashtracker.pattern.validate_note(root_note)

		backend = self._backend

		if backend is None:
			logger.debug(f"Sample load on track {track} ignored: voices not initialized")
			return False

		with self._lock:
			generation = self._sample_generation.get(track, 0) + 1
			self._sample_generation[track] = generation

		params = thrashtracker.synth.SamplerParams(source=source, root_note=root_note)

		try:
			voice = await backend.load_sample(track, params)
		except Exception:
			logger.exception(f"Failed to load sample {source!r} for track {track}")
			return False

		with self._lock:

			current = self._sample_generation.get(track) == generation and self._backend is backend

			if current:
				old_pool = self._pools.get((track, SynthKind.SAMPLER))
				self._pools[(track, SynthKind.SAMPLER)] = VoicePool(SynthKind.SAMPLER, params, [voice])

		if not current:
			voice.dispose()
			logger.info(f"Discarded stale sample load {source!r} for track {track}")
			return False

		if old_pool is not None:
			old_pool.dispose()

		logger.info(f"Sample loaded for track {track}: {source}")

		return True
