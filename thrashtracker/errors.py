"""Exception types raised by the ThrashTracker engine.

Only argument errors are ever raised to callers.  Triggering before the
engine is initialized and running without a MIDI input are expected
transient states, handled as logged no-ops rather than exceptions.
"""


class ThrashTrackerError (Exception):

	"""Base class for all ThrashTracker errors."""


class InvalidArgument (ThrashTrackerError, ValueError):

	"""A value is outside its allowed range (BPM, track, step, note, velocity)."""


class PatternNotFound (ThrashTrackerError, KeyError):

	"""A pattern id is outside the ``000x01`` .. ``000xFF`` bank."""

	def __init__ (self, pattern_id: object) -> None:

		"""Remember the offending id for the error message."""

		super().__init__(pattern_id)
		self.pattern_id = pattern_id

	def __str__ (self) -> str:

		return f"Pattern {self.pattern_id!r} not found (valid ids are 000x01 to 000xFF)"
