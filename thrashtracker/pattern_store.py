import logging
import threading
import typing

import thrashtracker.pattern


logger = logging.getLogger(__name__)

PatternId = typing.Union[str, int]


class PatternStore:

	"""
	The in-memory bank of all 255 patterns.

	Patterns are created once, up front, and edited in place.  Every edit takes
	the store lock for the duration of the read-modify-write only, so the
	playback clock always sees a whole edit or none of it.
	"""

	def __init__ (self) -> None:

		"""
		Preallocate every pattern in the bank, all steps empty.
		"""

		self._lock = threading.Lock()

		self._patterns: typing.Dict[str, thrashtracker.pattern.Pattern] = {
			pattern_id: thrashtracker.pattern.Pattern(pattern_id)
			for pattern_id in thrashtracker.pattern.all_pattern_ids()
		}

	def __len__ (self) -> int:

		return len(self._patterns)

	def __iter__ (self) -> typing.Iterator[thrashtracker.pattern.Pattern]:

		return iter(list(self._patterns.values()))

	def get_pattern (self, pattern_id: PatternId) -> thrashtracker.pattern.Pattern:

		"""
		Return the pattern for an id. Raises ``PatternNotFound`` outside ``000x01`` .. ``000xFF``.
		"""

		return self._patterns[thrashtracker.pattern.normalize_pattern_id(pattern_id)]

	def toggle_step (self, pattern_id: PatternId, track: int, step: int) -> bool:

		"""Flip a step's gate and return the new value.

		The step's note and velocity are left exactly as they were, so toggling
		twice restores the original cell.
		"""

		pattern = self.get_pattern(pattern_id)

		with self._lock:
			cell = pattern.get_step(track, step)
			cell.active = not cell.active
			active = cell.active

		logger.debug(f"{pattern.id} track {track} step {step} -> {'on' if active else 'off'}")

		return active

	def set_step_note (self, pattern_id: PatternId, track: int, step: int, note: typing.Optional[int]) -> None:

		"""Set (or with ``None``, clear) the pitch of a step. The gate is unchanged."""

		note = thrashtracker.pattern.validate_note(note)
		pattern = self.get_pattern(pattern_id)

		with self._lock:
			pattern.get_step(track, step).note = note

	def set_step_velocity (self, pattern_id: PatternId, track: int, step: int, velocity: int) -> None:

		"""Set the velocity (0-127) of a step."""

		velocity = thrashtracker.pattern.validate_velocity(velocity)
		pattern = self.get_pattern(pattern_id)

		with self._lock:
			pattern.get_step(track, step).velocity = velocity

	def set_step (
		self,
		pattern_id: PatternId,
		track: int,
		step: int,
		active: typing.Optional[bool] = None,
		note: typing.Optional[int] = None,
		velocity: typing.Optional[int] = None,
		clear_note: bool = False
	) -> thrashtracker.pattern.Step:

		"""Edit several fields of one step in a single locked update.

		Only the fields passed are changed.  Because ``note=None`` means "leave
		the note alone" here, pass ``clear_note=True`` to remove the pitch.
		All arguments are validated before anything is written, so an invalid
		value leaves the step untouched.

		Returns:
			A snapshot of the step after the edit.
		"""

		if note is not None:
			thrashtracker.pattern.validate_note(note)

		if velocity is not None:
			thrashtracker.pattern.validate_velocity(velocity)

		pattern = self.get_pattern(pattern_id)

		with self._lock:

			cell = pattern.get_step(track, step)

			if active is not None:
				cell.active = bool(active)

			if clear_note:
				cell.note = None
			elif note is not None:
				cell.note = note

			if velocity is not None:
				cell.velocity = velocity

			return cell.snapshot()

	def clear_pattern (self, pattern_id: PatternId) -> None:

		"""Reset every step of a pattern to empty."""

		pattern = self.get_pattern(pattern_id)

		with self._lock:
			pattern.clear()

		logger.info(f"Cleared pattern {pattern.id}")

	def rename_pattern (self, pattern_id: PatternId, name: str) -> None:

		"""Change a pattern's display name. The id never changes."""

		pattern = self.get_pattern(pattern_id)

		with self._lock:
			pattern.name = name

	def active_steps (self, pattern_id: PatternId, step: int) -> typing.List[thrashtracker.pattern.Step]:

		"""Snapshots of the active cells in one step column, in track order 0-7.

		This is what the playback clock reads on every tick.
		"""

		thrashtracker.pattern.validate_step(step)
		pattern = self.get_pattern(pattern_id)

		with self._lock:
			return [row[step].snapshot() for row in pattern.steps if row[step].active]
