import dataclasses
import string
import typing

import thrashtracker.constants
import thrashtracker.errors


def format_pattern_id (index: int) -> str:

	"""
	Render a pattern bank index (1-255) as its hexadecimal tag, e.g. ``10 -> "000x0A"``.
	"""

	if not thrashtracker.constants.MIN_PATTERN_INDEX <= index <= thrashtracker.constants.MAX_PATTERN_INDEX:
		raise thrashtracker.errors.PatternNotFound(index)

	return f"{thrashtracker.constants.PATTERN_ID_PREFIX}{index:02X}"


def parse_pattern_id (pattern_id: typing.Union[str, int]) -> int:

	"""Return the bank index (1-255) for a pattern id.

	Accepts either the hexadecimal tag (``"000x0A"``, case-insensitive hex digits)
	or the integer index itself.  Anything else raises ``PatternNotFound``.
	"""

	if isinstance(pattern_id, bool):
		raise thrashtracker.errors.PatternNotFound(pattern_id)

	if isinstance(pattern_id, int):
		index = pattern_id

	elif isinstance(pattern_id, str):

		prefix = thrashtracker.constants.PATTERN_ID_PREFIX
		digits = pattern_id[len(prefix):]

		if not pattern_id.startswith(prefix) or len(digits) != 2 or not all(c in string.hexdigits for c in digits):
			raise thrashtracker.errors.PatternNotFound(pattern_id)

		index = int(digits, 16)

	else:
		raise thrashtracker.errors.PatternNotFound(pattern_id)

	if not thrashtracker.constants.MIN_PATTERN_INDEX <= index <= thrashtracker.constants.MAX_PATTERN_INDEX:
		raise thrashtracker.errors.PatternNotFound(pattern_id)

	return index


def normalize_pattern_id (pattern_id: typing.Union[str, int]) -> str:

	"""Return the canonical upper-case tag for any accepted pattern id form."""

	return format_pattern_id(parse_pattern_id(pattern_id))


def all_pattern_ids () -> typing.List[str]:

	"""Every id in the bank, in order (``000x01`` .. ``000xFF``)."""

	return [
		format_pattern_id(index)
		for index in range(thrashtracker.constants.MIN_PATTERN_INDEX, thrashtracker.constants.MAX_PATTERN_INDEX + 1)
	]


def validate_track (track: int) -> int:

	if not isinstance(track, int) or not 0 <= track < thrashtracker.constants.NUM_TRACKS:
		raise thrashtracker.errors.InvalidArgument(f"Track must be 0-{thrashtracker.constants.NUM_TRACKS - 1}, got {track!r}")

	return track


def validate_step (step: int) -> int:

	if not isinstance(step, int) or not 0 <= step < thrashtracker.constants.NUM_STEPS:
		raise thrashtracker.errors.InvalidArgument(f"Step must be 0-{thrashtracker.constants.NUM_STEPS - 1}, got {step!r}")

	return step


def validate_note (note: typing.Optional[int]) -> typing.Optional[int]:

	if note is None:
		return None

	if not isinstance(note, int) or not thrashtracker.constants.MIN_NOTE <= note <= thrashtracker.constants.MAX_NOTE:
		raise thrashtracker.errors.InvalidArgument(f"Note must be 0-127 or None, got {note!r}")

	return note


def validate_velocity (velocity: int) -> int:

	if not isinstance(velocity, int) or not thrashtracker.constants.MIN_VELOCITY <= velocity <= thrashtracker.constants.MAX_VELOCITY:
		raise thrashtracker.errors.InvalidArgument(f"Velocity must be 0-127, got {velocity!r}")

	return velocity


@dataclasses.dataclass
class Step:

	"""
	One cell of the grid.

	An inactive step is never sounded.  An active step with no note still
	fires: the clock plays it as an untuned hit at ``DEFAULT_HIT_NOTE``.
	"""

	instrument: int
	note: typing.Optional[int] = None
	velocity: int = thrashtracker.constants.DEFAULT_VELOCITY
	active: bool = False

	@property
	def pitch (self) -> int:

		"""The note to play when this step fires."""

		return self.note if self.note is not None else thrashtracker.constants.DEFAULT_HIT_NOTE

	def snapshot (self) -> "Step":

		"""A detached copy, safe to hand to another thread."""

		return dataclasses.replace(self)


class Pattern:

	"""
	A named grid of 8 tracks x 16 steps, addressed as ``steps[track][step]``.
	"""

	def __init__ (self, pattern_id: str, name: typing.Optional[str] = None) -> None:

		"""
		Create an empty pattern. The display name defaults to the id.
		"""

		self.id = pattern_id
		self.name = name if name is not None else pattern_id

		self.steps: typing.List[typing.List[Step]] = [
			[Step(instrument=track) for _ in range(thrashtracker.constants.NUM_STEPS)]
			for track in range(thrashtracker.constants.NUM_TRACKS)
		]

	def __repr__ (self) -> str:

		return f"Pattern(id={self.id!r}, name={self.name!r}, active={self.active_count()})"

	def get_step (self, track: int, step: int) -> Step:

		"""Return the live step object at ``(track, step)``."""

		return self.steps[validate_track(track)][validate_step(step)]

	def active_count (self) -> int:

		"""Number of active cells across the whole grid."""

		return sum(1 for row in self.steps for cell in row if cell.active)

	def clear (self) -> None:

		"""Return every cell to its empty default."""

		for track, row in enumerate(self.steps):
			for index in range(len(row)):
				row[index] = Step(instrument=track)
